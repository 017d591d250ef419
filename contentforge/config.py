"""Configuration for contentforge."""

from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

from contentforge.schemas import ContentType, PlanTier, QualityTier, UrgencyTier


# Monthly quotas per plan. -1 means unlimited.
DEFAULT_PLAN_QUOTAS: Dict[str, Dict[str, int]] = {
    "free": {
        "content-generation": 5,
        "image-generation": 3,
        "video-generation": 1,
        "audio-generation": 3,
    },
    "basic": {
        "content-generation": 50,
        "image-generation": 25,
        "video-generation": 10,
        "audio-generation": 25,
    },
    "premium": {
        "content-generation": 200,
        "image-generation": 100,
        "video-generation": 50,
        "audio-generation": 100,
    },
    "enterprise": {
        "content-generation": -1,
        "image-generation": -1,
        "video-generation": -1,
        "audio-generation": -1,
    },
}

FEATURE_BY_CONTENT_TYPE: Dict[ContentType, str] = {
    ContentType.BLOG: "content-generation",
    ContentType.IMAGE: "image-generation",
    ContentType.VIDEO: "video-generation",
    ContentType.PODCAST: "audio-generation",
}

# Media URLs are stable once produced, so they outlive generated text.
DEFAULT_CACHE_TTLS: Dict[str, float] = {
    "blog": 3600.0,
    "image": 86400.0,
    "video": 86400.0,
    "podcast": 21600.0,
}

DEFAULT_BUDGET_CEILINGS: Dict[str, float] = {
    "blog": 0.05,
    "image": 0.10,
    "video": 1.50,
    "podcast": 0.25,
}

DEFAULT_SUBREQUEST_TIMEOUTS: Dict[str, float] = {
    "blog": 30.0,
    "image": 60.0,
    "video": 120.0,
    "podcast": 60.0,
}

DEFAULT_URGENCY: Dict[str, UrgencyTier] = {
    "blog": UrgencyTier.INTERACTIVE,
    "image": UrgencyTier.INTERACTIVE,
    "video": UrgencyTier.BATCH,
    "podcast": UrgencyTier.BATCH,
}

PLAN_QUALITY_TIERS: Dict[str, QualityTier] = {
    "free": QualityTier.DRAFT,
    "basic": QualityTier.STANDARD,
    "premium": QualityTier.PREMIUM,
    "enterprise": QualityTier.PREMIUM,
}


def _parse_json_env(var_name: str) -> Dict[str, Any] | None:
    value = os.getenv(var_name)
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _float_env(var_name: str, default: float) -> float:
    value = os.getenv(var_name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _merge(defaults: Dict[str, Any], override: Dict[str, Any] | None) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    if override:
        merged.update(override)
    return merged


@dataclass
class OrchestratorConfig:
    """
    Tunables for one coordinator instance.

    Keys of the per-type dicts are ContentType values.
    """
    plan_quotas: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_PLAN_QUOTAS)
    )
    cache_ttls: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_CACHE_TTLS))
    budget_ceilings: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_BUDGET_CEILINGS))
    subrequest_timeouts: Dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_SUBREQUEST_TIMEOUTS)
    )
    urgency: Dict[str, UrgencyTier] = field(default_factory=lambda: dict(DEFAULT_URGENCY))
    plan_quality_tiers: Dict[str, QualityTier] = field(
        default_factory=lambda: dict(PLAN_QUALITY_TIERS)
    )

    overall_timeout_s: float = 180.0
    first_attempt_share: float = 0.6
    cache_max_entries: int = 2000
    max_workers: int = 16
    quota_db_path: Optional[str] = None
    history_path: Optional[str] = None

    # Provider credentials/endpoints, already validated upstream.
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    media_api_url: Optional[str] = None
    media_api_key: Optional[str] = None
    media_output_dir: str = "generated_media"

    @classmethod
    def from_env(cls) -> OrchestratorConfig:
        """Build configuration from CONTENTFORGE_* environment variables."""
        return cls(
            plan_quotas=_merge(DEFAULT_PLAN_QUOTAS, _parse_json_env("CONTENTFORGE_PLAN_QUOTAS_JSON")),
            cache_ttls=_merge(DEFAULT_CACHE_TTLS, _parse_json_env("CONTENTFORGE_CACHE_TTLS_JSON")),
            budget_ceilings=_merge(
                DEFAULT_BUDGET_CEILINGS, _parse_json_env("CONTENTFORGE_BUDGET_CEILINGS_JSON")
            ),
            subrequest_timeouts=_merge(
                DEFAULT_SUBREQUEST_TIMEOUTS, _parse_json_env("CONTENTFORGE_TIMEOUTS_JSON")
            ),
            overall_timeout_s=_float_env("CONTENTFORGE_OVERALL_TIMEOUT_S", 180.0),
            first_attempt_share=_float_env("CONTENTFORGE_FIRST_ATTEMPT_SHARE", 0.6),
            cache_max_entries=int(_float_env("CONTENTFORGE_CACHE_MAX_ENTRIES", 2000)),
            max_workers=int(_float_env("CONTENTFORGE_MAX_WORKERS", 16)),
            quota_db_path=os.getenv("CONTENTFORGE_QUOTA_DB_PATH"),
            history_path=os.getenv("CONTENTFORGE_HISTORY_PATH"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            media_api_url=os.getenv("CONTENTFORGE_MEDIA_API_URL"),
            media_api_key=os.getenv("CONTENTFORGE_MEDIA_API_KEY"),
            media_output_dir=os.getenv("CONTENTFORGE_MEDIA_DIR", "generated_media"),
        )

    def quota_limit(self, plan: PlanTier | str, feature: str) -> Optional[int]:
        """Monthly limit for a plan/feature, or None when unlimited."""
        plan_key = plan.value if isinstance(plan, PlanTier) else plan
        quotas = self.plan_quotas.get(plan_key)
        if quotas is None or feature not in quotas:
            raise KeyError(f"No quota configured for plan={plan_key!r}, feature={feature!r}")
        limit = quotas[feature]
        return None if limit < 0 else int(limit)

    def quality_tier_for(self, plan: PlanTier) -> QualityTier:
        return self.plan_quality_tiers.get(plan.value, QualityTier.STANDARD)

    def cache_ttl(self, content_type: ContentType) -> float:
        return float(self.cache_ttls.get(content_type.value, 3600.0))

    def budget_ceiling(self, content_type: ContentType) -> float:
        return float(self.budget_ceilings.get(content_type.value, 0.0))

    def subrequest_timeout(self, content_type: ContentType) -> float:
        return float(self.subrequest_timeouts.get(content_type.value, self.overall_timeout_s))

    def urgency_for(self, content_type: ContentType) -> UrgencyTier:
        return self.urgency.get(content_type.value, UrgencyTier.INTERACTIVE)
