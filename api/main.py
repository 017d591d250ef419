"""FastAPI server for contentforge."""

from __future__ import annotations

import os
from typing import Optional, Dict, Any, List

from fastapi import FastAPI, HTTPException, Header, Depends
from pydantic import BaseModel, Field

from contentforge import (
    ContentType,
    GenerationCoordinator,
    GenerationRequest,
    PlanTier,
    ValidationError,
    __version__,
)
from contentforge.validation import parse_options


def _get_api_key() -> Optional[str]:
    return os.getenv("CONTENTFORGE_API_KEY")


def _require_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
    api_key = _get_api_key()
    if api_key and x_api_key != api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


class Identity(BaseModel):
    user_id: str
    plan: PlanTier


def _identity(
    x_user_id: Optional[str] = Header(default=None),
    x_user_plan: Optional[str] = Header(default=None),
) -> Identity:
    """Identity set by the upstream auth layer."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id")
    try:
        plan = PlanTier(x_user_plan or "free")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Unknown plan: {x_user_plan}") from exc
    return Identity(user_id=x_user_id, plan=plan)


class GenerateOptionsModel(BaseModel):
    image_style: str = Field("modern", pattern="^(modern|minimal|vibrant|professional)$")
    video_duration_seconds: int = 30
    voice_style: str = Field("professional", pattern="^(professional|friendly|energetic)$")
    language: str = Field("ko", pattern="^(ko|en|ja)$")


class GenerateRequestModel(BaseModel):
    product_description: str = Field(..., min_length=1)
    options: GenerateOptionsModel = Field(default_factory=GenerateOptionsModel)
    content_types: Optional[List[ContentType]] = None


class QuotaModel(BaseModel):
    feature: str
    period_key: str
    used: int
    limit: Optional[int]
    remaining: int


def create_app(coordinator: Optional[GenerationCoordinator] = None) -> FastAPI:
    """Build the app around a coordinator (one is created from the environment if omitted)."""
    coordinator = coordinator or GenerationCoordinator.from_config()
    app = FastAPI(title="contentforge API", version=__version__)
    app.state.coordinator = coordinator

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/generate", dependencies=[Depends(_require_api_key)])
    def generate(req: GenerateRequestModel, identity: Identity = Depends(_identity)) -> Dict[str, Any]:
        try:
            options = parse_options(
                image_style=req.options.image_style,
                video_duration_seconds=req.options.video_duration_seconds,
                voice_style=req.options.voice_style,
                language=req.options.language,
            )
            request = GenerationRequest(
                product_description=req.product_description,
                requester_id=identity.user_id,
                options=options,
                plan_tier=identity.plan,
                content_types=(
                    tuple(req.content_types) if req.content_types is not None
                    else tuple(ContentType)
                ),
            )
            result = coordinator.generate(request)
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return result.to_dict()

    @app.get("/usage/{user_id}", response_model=List[QuotaModel], dependencies=[Depends(_require_api_key)])
    def usage(user_id: str, plan: PlanTier = PlanTier.FREE, period: Optional[str] = None) -> List[QuotaModel]:
        states = coordinator.ledger.get_usage(user_id, plan=plan, period_key=period)
        return [
            QuotaModel(
                feature=state.feature,
                period_key=state.period_key,
                used=state.used,
                limit=state.limit,
                remaining=state.remaining,
            )
            for state in states
        ]

    @app.get("/providers", dependencies=[Depends(_require_api_key)])
    def providers() -> Dict[str, Any]:
        health = coordinator.routing.get_stats()
        items = []
        for descriptor in coordinator.registry.descriptors():
            live = coordinator.routing.snapshot(descriptor)
            items.append({
                "name": live.name,
                "content_types": sorted(ct.value for ct in live.supported_types),
                "cost_per_call": live.cost_per_call,
                "quality_score": live.quality_score,
                "average_latency_ms": round(live.average_latency_ms, 1),
                "is_healthy": live.is_healthy,
                "health": health.get(live.name),
            })
        return {"providers": items, "cache": coordinator.cache.get_stats()}

    return app


app = create_app()
