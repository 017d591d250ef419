"""
contentforge - one product description in, four marketing assets out.

Simple usage:
    from contentforge import GenerationCoordinator, GenerationRequest

    with GenerationCoordinator.from_config(simulate=True) as coordinator:
        result = coordinator.generate(
            GenerationRequest(
                product_description="Wireless earbuds with noise cancellation",
                requester_id="user_123",
            )
        )

    print(result.real_provider_count)  # 4
    print(result.artifacts[ContentType.BLOG].content.title)

Progress notifications:
    coordinator.generate(
        request,
        on_finalized=lambda content_type, artifact: print(content_type.value, artifact.produced_by),
    )

Quotas (per user, per feature, per month):
    from contentforge import UsageLedger, PlanTier

    ledger = UsageLedger()
    granted, remaining = ledger.check_and_reserve("user_123", "video-generation", plan=PlanTier.FREE)
"""

from contentforge.cache import ResultCache
from contentforge.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from contentforge.config import OrchestratorConfig
from contentforge.context import CallContext, CancelToken
from contentforge.coordinator import GenerationCoordinator
from contentforge.errors import (
    ContentForgeError,
    ProviderCancelledError,
    ProviderError,
    ProviderTimeoutError,
    QuotaExceededError,
    RoutingExhaustedError,
    ValidationError,
)
from contentforge.fallback import FallbackHandler
from contentforge.history import HistorySink, InMemoryHistorySink, JSONLHistorySink, LoggingHistorySink
from contentforge.ledger import InMemoryQuotaStore, SQLiteQuotaStore, UsageLedger
from contentforge.metrics import MetricsCollector
from contentforge.providers import (
    AnthropicProvider,
    MediaAPIProvider,
    OpenAIProvider,
    PlaceholderProvider,
    ProviderAdapter,
    SimulatedProvider,
)
from contentforge.registry import ProviderRegistry, build_default_registry
from contentforge.router import RoutingDecision, RoutingPolicy
from contentforge.schemas import (
    ArtifactResult,
    ContentType,
    DegradationCause,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    ImageStyle,
    Language,
    PlanTier,
    ProviderDescriptor,
    QualityTier,
    UrgencyTier,
    UsageEvent,
    VoiceStyle,
)


__version__ = "0.1.0"
__all__ = [
    # Coordinator
    "GenerationCoordinator",
    "OrchestratorConfig",
    "CancelToken",
    "CallContext",
    # Components
    "UsageLedger",
    "InMemoryQuotaStore",
    "SQLiteQuotaStore",
    "ResultCache",
    "RoutingPolicy",
    "RoutingDecision",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "FallbackHandler",
    "MetricsCollector",
    "HistorySink",
    "InMemoryHistorySink",
    "JSONLHistorySink",
    "LoggingHistorySink",
    # Providers
    "ProviderRegistry",
    "build_default_registry",
    "ProviderAdapter",
    "PlaceholderProvider",
    "SimulatedProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "MediaAPIProvider",
    # Data
    "GenerationRequest",
    "GenerationOptions",
    "GenerationResult",
    "ArtifactResult",
    "ContentType",
    "DegradationCause",
    "ImageStyle",
    "Language",
    "PlanTier",
    "ProviderDescriptor",
    "QualityTier",
    "UrgencyTier",
    "UsageEvent",
    "VoiceStyle",
    # Errors
    "ContentForgeError",
    "ValidationError",
    "QuotaExceededError",
    "ProviderError",
    "ProviderTimeoutError",
    "ProviderCancelledError",
    "RoutingExhaustedError",
]
