"""
Basic usage examples for contentforge.

Runs entirely on simulated providers; no credentials needed.
"""

import threading

from contentforge import (
    CancelToken,
    ContentType,
    GenerationCoordinator,
    GenerationOptions,
    GenerationRequest,
    Language,
    OrchestratorConfig,
    PlanTier,
    ProviderRegistry,
    SimulatedProvider,
    ValidationError,
)


def example_basic():
    """Generate all four assets."""
    print("=" * 60)
    print("Example 1: Basic Usage")
    print("=" * 60)

    with GenerationCoordinator.from_config(OrchestratorConfig(), simulate=True) as coordinator:
        result = coordinator.generate(
            GenerationRequest(
                product_description="Wireless earbuds with noise cancellation",
                requester_id="demo-user",
                options=GenerationOptions(language=Language.EN, video_duration_seconds=30),
            ),
            on_finalized=lambda ct, artifact: print(f"  finished {ct.value} via {artifact.produced_by}"),
        )

    print(f"Real providers: {result.real_provider_count}")
    print(f"Fallbacks: {result.fallback_count}")
    print(f"Total latency: {result.total_latency_ms}ms")
    print(f"Blog title: {result.artifacts[ContentType.BLOG].content.title}")
    print()


def example_degradation():
    """A failing media backend degrades to placeholders instead of erroring."""
    print("=" * 60)
    print("Example 2: Graceful Degradation")
    print("=" * 60)

    registry = ProviderRegistry()
    registry.register(SimulatedProvider("text", content_types=[ContentType.BLOG], latency_ms=50))
    registry.register(
        SimulatedProvider(
            "flaky-media",
            content_types=[ContentType.IMAGE, ContentType.VIDEO, ContentType.PODCAST],
            failure_rate=1.0,
        )
    )

    with GenerationCoordinator(registry) as coordinator:
        result = coordinator.generate(
            GenerationRequest(
                product_description="Smart watch with health tracking",
                requester_id="demo-user",
                plan_tier=PlanTier.ENTERPRISE,
            )
        )

    for content_type, artifact in result.artifacts.items():
        cause = artifact.cause.value if artifact.cause else "-"
        print(f"  {content_type.value:<8} {artifact.produced_by:<10} cause={cause}")
    print(f"Failed: {result.failed_count}")
    print()


def example_cache_and_quota():
    """Second identical request hits the cache; free plan runs out of video quota."""
    print("=" * 60)
    print("Example 3: Cache and Quota")
    print("=" * 60)

    with GenerationCoordinator.from_config(OrchestratorConfig(), simulate=True) as coordinator:
        request = dict(product_description="Ergonomic office chair", requester_id="free-user")
        first = coordinator.generate(GenerationRequest(**request))
        second = coordinator.generate(GenerationRequest(**request))

        blog = second.artifacts[ContentType.BLOG]
        video = second.artifacts[ContentType.VIDEO]
        print(f"First request fallbacks: {first.fallback_count}")
        print(f"Second blog cache hit: {blog.cache_hit}")
        print(f"Second video: {video.produced_by} ({video.cause.value if video.cause else 'ok'})")

        for state in coordinator.ledger.get_usage("free-user"):
            print(f"  {state.feature:<20} {state.used}/{state.limit}")
    print()


def example_cancellation():
    """Cancel a request mid-flight."""
    print("=" * 60)
    print("Example 4: Cancellation")
    print("=" * 60)

    registry = ProviderRegistry()
    registry.register(SimulatedProvider("slow", latency_ms=5000))

    token = CancelToken()
    threading.Timer(0.2, token.cancel, args=("user navigated away",)).start()
    with GenerationCoordinator(registry) as coordinator:
        result = coordinator.generate(
            GenerationRequest(
                product_description="Portable espresso maker",
                requester_id="demo-user",
                plan_tier=PlanTier.ENTERPRISE,
            ),
            cancel_token=token,
        )
    print(f"Fallbacks after cancel: {result.fallback_count}")
    print()


def example_validation():
    """Malformed requests are the only hard error."""
    print("=" * 60)
    print("Example 5: Validation")
    print("=" * 60)

    with GenerationCoordinator.from_config(OrchestratorConfig(), simulate=True) as coordinator:
        try:
            coordinator.generate(GenerationRequest(product_description="   ", requester_id="demo-user"))
        except ValidationError as exc:
            print(f"Rejected: {exc}")
    print()


if __name__ == "__main__":
    example_basic()
    example_degradation()
    example_cache_and_quota()
    example_cancellation()
    example_validation()
