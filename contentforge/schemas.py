"""
Data schemas for contentforge.

All request, sub-request, artifact and result data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Optional, Union
import uuid


class ContentType(str, Enum):
    """The four artifacts produced for every product description."""
    BLOG = "blog"
    IMAGE = "image"
    VIDEO = "video"
    PODCAST = "podcast"


ALL_CONTENT_TYPES: tuple[ContentType, ...] = (
    ContentType.BLOG,
    ContentType.IMAGE,
    ContentType.VIDEO,
    ContentType.PODCAST,
)


class ImageStyle(str, Enum):
    MODERN = "modern"
    MINIMAL = "minimal"
    VIBRANT = "vibrant"
    PROFESSIONAL = "professional"


class VoiceStyle(str, Enum):
    PROFESSIONAL = "professional"
    FRIENDLY = "friendly"
    ENERGETIC = "energetic"


class Language(str, Enum):
    KO = "ko"
    EN = "en"
    JA = "ja"


class PlanTier(str, Enum):
    """Subscription plan supplied by the auth context."""
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class QualityTier(str, Enum):
    """Minimum provider quality a sub-request will accept."""
    DRAFT = "draft"
    STANDARD = "standard"
    PREMIUM = "premium"


class UrgencyTier(str, Enum):
    """How strongly provider latency is penalised during routing."""
    REALTIME = "realtime"
    INTERACTIVE = "interactive"
    BATCH = "batch"


class SubRequestState(str, Enum):
    """Lifecycle of one content type within a generation."""
    PENDING = "pending"
    QUOTA_CHECKED = "quota_checked"
    CACHE_CHECKED = "cache_checked"
    ROUTED = "routed"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    FINALIZED = "finalized"


class DegradationCause(str, Enum):
    """Why a sub-request ended with a placeholder artifact."""
    QUOTA_EXCEEDED = "quota_exceeded"
    NO_PROVIDER = "no_provider"
    PROVIDER_ERROR = "provider_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


FALLBACK_PRODUCER = "fallback"

VALID_VIDEO_DURATIONS: tuple[int, ...] = (15, 30, 60)


@dataclass(frozen=True)
class GenerationOptions:
    """Per-request generation options."""
    image_style: ImageStyle = ImageStyle.MODERN
    video_duration_seconds: int = 30
    voice_style: VoiceStyle = VoiceStyle.PROFESSIONAL
    language: Language = Language.KO


@dataclass(frozen=True)
class GenerationRequest:
    """
    Incoming generation request.

    Immutable once created. Identity and plan tier come from an
    already-validated auth context.
    """
    product_description: str
    requester_id: str
    options: GenerationOptions = field(default_factory=GenerationOptions)
    plan_tier: PlanTier = PlanTier.FREE
    content_types: tuple[ContentType, ...] = ALL_CONTENT_TYPES

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    submitted_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class SubRequest:
    """
    One content type's unit of work, derived from a GenerationRequest.

    `deadline` is an absolute time.monotonic() value.
    """
    content_type: ContentType
    fingerprint: str
    quality_tier: QualityTier
    budget_ceiling: float
    deadline: float

    request_id: str
    requester_id: str
    product_description: str
    options: GenerationOptions
    urgency: UrgencyTier = UrgencyTier.INTERACTIVE


@dataclass
class ProviderDescriptor:
    """
    A backend that can serve one or more content types.

    Identity fields are fixed at registration. `average_latency_ms` and
    `is_healthy` are seed values; the live values are owned by the
    RoutingPolicy.
    """
    name: str
    supported_types: frozenset[ContentType]
    cost_per_call: float
    quality_score: float
    average_latency_ms: float = 1000.0
    is_healthy: bool = True

    def supports(self, content_type: ContentType) -> bool:
        return content_type in self.supported_types


@dataclass(frozen=True)
class Capabilities:
    """What an adapter advertises about itself."""
    content_types: frozenset[ContentType]
    cost_per_call: float
    quality_score: float


# =============================================================================
# Artifact content shapes
# =============================================================================

@dataclass(frozen=True)
class BlogContent:
    title: str
    body: str
    tags: tuple[str, ...] = ()
    seo_keywords: tuple[str, ...] = ()
    reading_time_minutes: int = 1


@dataclass(frozen=True)
class ImageContent:
    url: str
    description: str
    dimensions: str = "1080x1080"
    prompt: str = ""


@dataclass(frozen=True)
class VideoContent:
    url: str
    duration_seconds: int
    description: str
    thumbnail_url: Optional[str] = None
    prompt: str = ""


@dataclass(frozen=True)
class PodcastContent:
    script: str
    audio_url: str
    duration_seconds: int
    description: str


ArtifactContent = Union[BlogContent, ImageContent, VideoContent, PodcastContent]


@dataclass(frozen=True)
class ArtifactResult:
    """
    One produced artifact, tagged with how it was produced.

    `produced_by` is a provider name or "fallback". `cause` is set only on
    degraded artifacts.
    """
    content_type: ContentType
    content: ArtifactContent
    produced_by: str
    cache_hit: bool = False
    latency_ms: int = 0
    cause: Optional[DegradationCause] = None
    provider_attempted: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        return self.produced_by == FALLBACK_PRODUCER

    def to_dict(self) -> dict:
        return {
            "content_type": self.content_type.value,
            "content": _content_to_dict(self.content),
            "produced_by": self.produced_by,
            "cache_hit": self.cache_hit,
            "latency_ms": self.latency_ms,
            "cause": self.cause.value if self.cause else None,
            "provider_attempted": self.provider_attempted,
        }


@dataclass(frozen=True)
class GenerationResult:
    """
    Aggregate outcome of one generation.

    Exactly one artifact per requested content type. Handed to the caller
    and to the history sink.
    """
    request_id: str
    artifacts: dict[ContentType, ArtifactResult]
    started_at: datetime
    completed_at: datetime
    total_latency_ms: int
    real_provider_count: int
    fallback_count: int
    failed_count: int

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "artifacts": {
                content_type.value: artifact.to_dict()
                for content_type, artifact in self.artifacts.items()
            },
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "total_latency_ms": self.total_latency_ms,
            "real_provider_count": self.real_provider_count,
            "fallback_count": self.fallback_count,
            "failed_count": self.failed_count,
        }


@dataclass
class QuotaState:
    """Consumption of one feature by one user within one period."""
    user_id: str
    feature: str
    period_key: str
    used: int
    limit: Optional[int]  # None means unlimited

    @property
    def remaining(self) -> int:
        if self.limit is None:
            return -1
        return max(0, self.limit - self.used)


@dataclass
class CacheEntry:
    """A memoised artifact. Times are time.monotonic() values."""
    fingerprint: str
    artifact: ArtifactResult
    created_at: float
    expires_at: float


class UsageEventKind(str, Enum):
    RESERVED = "reserved"
    RELEASED = "released"
    DENIED = "denied"
    PROVIDER_CALL = "provider_call"


@dataclass(frozen=True)
class UsageEvent:
    """Audit record of quota and provider consumption."""
    request_id: str
    user_id: str
    feature: str
    content_type: ContentType
    period_key: str
    kind: UsageEventKind
    units: int = 0
    provider: Optional[str] = None
    cost_usd: float = 0.0
    success: Optional[bool] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "user_id": self.user_id,
            "feature": self.feature,
            "content_type": self.content_type.value,
            "period_key": self.period_key,
            "kind": self.kind.value,
            "units": self.units,
            "provider": self.provider,
            "cost_usd": self.cost_usd,
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class FailureEvent:
    """Structured record emitted whenever a sub-request is degraded."""
    request_id: str
    content_type: ContentType
    cause: DegradationCause
    provider_attempted: Optional[str] = None
    detail: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


def _content_to_dict(content: ArtifactContent) -> dict:
    if isinstance(content, BlogContent):
        return {
            "title": content.title,
            "body": content.body,
            "tags": list(content.tags),
            "seo_keywords": list(content.seo_keywords),
            "reading_time_minutes": content.reading_time_minutes,
        }
    if isinstance(content, ImageContent):
        return {
            "url": content.url,
            "description": content.description,
            "dimensions": content.dimensions,
            "prompt": content.prompt,
        }
    if isinstance(content, VideoContent):
        return {
            "url": content.url,
            "duration_seconds": content.duration_seconds,
            "description": content.description,
            "thumbnail_url": content.thumbnail_url,
            "prompt": content.prompt,
        }
    return {
        "script": content.script,
        "audio_url": content.audio_url,
        "duration_seconds": content.duration_seconds,
        "description": content.description,
    }
