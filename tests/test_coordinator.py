"""Tests for the generation coordinator."""

import threading
import time

import pytest

from contentforge.cache import ResultCache
from contentforge.config import OrchestratorConfig
from contentforge.context import CancelToken
from contentforge.coordinator import GenerationCoordinator
from contentforge.errors import ValidationError
from contentforge.history import InMemoryHistorySink, LoggingHistorySink
from contentforge.ledger import InMemoryQuotaStore, UsageLedger
from contentforge.providers import SimulatedProvider
from contentforge.registry import ProviderRegistry
from contentforge.schemas import (
    ALL_CONTENT_TYPES,
    ContentType,
    DegradationCause,
    GenerationOptions,
    GenerationRequest,
    Language,
    PlanTier,
    ProviderDescriptor,
    UsageEventKind,
)


DESCRIPTION = "Wireless earbuds with active noise cancellation"


def make_request(
    description: str = DESCRIPTION,
    user: str = "user_123",
    plan: PlanTier = PlanTier.PREMIUM,
    content_types=ALL_CONTENT_TYPES,
) -> GenerationRequest:
    return GenerationRequest(
        product_description=description,
        requester_id=user,
        options=GenerationOptions(language=Language.EN),
        plan_tier=plan,
        content_types=tuple(content_types),
    )


def fast_config(timeout_s: float = 5.0, overall_s: float = 10.0) -> OrchestratorConfig:
    return OrchestratorConfig(
        subrequest_timeouts={ct.value: timeout_s for ct in ContentType},
        overall_timeout_s=overall_s,
    )


class RefusingAfterFirstReserve(InMemoryQuotaStore):
    """Grants the first reservation and refuses every later one."""

    def __init__(self):
        super().__init__()
        self.reserve_calls = 0

    def reserve(self, user_id, feature, period_key, cost, limit):
        self.reserve_calls += 1
        if self.reserve_calls > 1:
            return False, self.get_used(user_id, feature, period_key)
        return super().reserve(user_id, feature, period_key, cost, limit)


class TestGenerationCoordinator:
    """Test suite for GenerationCoordinator."""

    def setup_method(self):
        """Set up test fixtures."""
        self.registry = ProviderRegistry()
        self.history = InMemoryHistorySink()
        self.coordinator = None

    def teardown_method(self):
        if self.coordinator is not None:
            self.coordinator.close()

    def _build(self, *providers, config=None, unhealthy=(), store=None) -> GenerationCoordinator:
        config = config or fast_config()
        for provider in providers:
            caps = provider.capabilities()
            self.registry.register(
                provider,
                descriptor=ProviderDescriptor(
                    name=provider.name,
                    supported_types=caps.content_types,
                    cost_per_call=caps.cost_per_call,
                    quality_score=caps.quality_score,
                    average_latency_ms=100.0,
                    is_healthy=provider.name not in unhealthy,
                ),
            )
        self.ledger = UsageLedger(config, store=store)
        self.cache = ResultCache()
        self.coordinator = GenerationCoordinator(
            registry=self.registry,
            ledger=self.ledger,
            cache=self.cache,
            history=self.history,
            config=config,
        )
        return self.coordinator

    def _used(self, user: str, feature: str, plan: PlanTier = PlanTier.PREMIUM) -> int:
        return self.ledger.get_state(user, feature, plan).used

    # =========================================================================
    # Aggregation
    # =========================================================================

    def test_one_artifact_per_type(self):
        """Test every requested type yields exactly one real artifact."""
        provider = SimulatedProvider("sim", latency_ms=20)
        coordinator = self._build(provider)

        result = coordinator.generate(make_request())

        assert set(result.artifacts) == set(ALL_CONTENT_TYPES)
        assert result.real_provider_count == 4
        assert result.fallback_count == 0
        assert result.failed_count == 0
        assert all(a.produced_by == "sim" for a in result.artifacts.values())
        assert provider.call_count == 4

    def test_subset_of_types(self):
        coordinator = self._build(SimulatedProvider("sim", latency_ms=10))

        result = coordinator.generate(make_request(content_types=[ContentType.BLOG, ContentType.IMAGE]))

        assert set(result.artifacts) == {ContentType.BLOG, ContentType.IMAGE}
        assert result.real_provider_count + result.fallback_count == 2

    def test_sub_requests_run_concurrently(self):
        """Test total latency tracks the slowest sub-request, not the sum."""
        coordinator = self._build(SimulatedProvider("sim", latency_ms=300))

        start = time.monotonic()
        result = coordinator.generate(make_request())
        elapsed = time.monotonic() - start

        assert result.real_provider_count == 4
        assert elapsed < 0.9

    def test_validation_error_propagates(self):
        """Test malformed requests raise and touch no quota."""
        provider = SimulatedProvider("sim", latency_ms=10)
        coordinator = self._build(provider)

        with pytest.raises(ValidationError):
            coordinator.generate(make_request(description="   "))

        assert provider.call_count == 0
        assert len(self.history) == 0

    def test_closed_coordinator_rejects_requests(self):
        coordinator = self._build(SimulatedProvider("sim", latency_ms=10))
        coordinator.close()

        with pytest.raises(RuntimeError):
            coordinator.generate(make_request())

    # =========================================================================
    # Degradation
    # =========================================================================

    def test_all_providers_unhealthy(self):
        """Test every type degrades with no_provider and no call is made."""
        provider = SimulatedProvider("sim", latency_ms=10)
        coordinator = self._build(provider, unhealthy={"sim"})

        result = coordinator.generate(make_request())

        assert result.fallback_count == 4
        assert result.real_provider_count == 0
        assert result.failed_count == 0
        for artifact in result.artifacts.values():
            assert artifact.produced_by == "fallback"
            assert artifact.cause == DegradationCause.NO_PROVIDER
        assert provider.call_count == 0
        assert self._used("user_123", "content-generation") == 0

    def test_provider_error_degrades(self):
        """Test a failed provider plus failed retry yields a labelled placeholder."""
        provider = SimulatedProvider("sim", content_types=[ContentType.BLOG], latency_ms=10, failure_rate=1.0)
        coordinator = self._build(provider)

        result = coordinator.generate(make_request(content_types=[ContentType.BLOG]))

        artifact = result.artifacts[ContentType.BLOG]
        assert artifact.produced_by == "fallback"
        assert artifact.cause == DegradationCause.PROVIDER_ERROR
        assert artifact.provider_attempted == "sim"
        assert result.failed_count == 1
        assert provider.call_count == 2
        assert self._used("user_123", "content-generation") == 0

    def test_hanging_provider_times_out(self):
        """Test a provider that never answers is bounded by the deadline."""
        provider = SimulatedProvider("slow", latency_ms=10_000)
        coordinator = self._build(provider, config=fast_config(timeout_s=0.3, overall_s=0.5))

        start = time.monotonic()
        result = coordinator.generate(make_request())
        elapsed = time.monotonic() - start

        assert elapsed < 1.5
        assert result.fallback_count == 4
        for artifact in result.artifacts.values():
            assert artifact.cause == DegradationCause.TIMEOUT
            assert artifact.provider_attempted == "slow"
        assert result.failed_count == 4
        assert self._used("user_123", "video-generation") == 0

    def test_overall_deadline_forces_finalization(self):
        """Test the join never waits past the overall deadline."""
        provider = SimulatedProvider("slow", latency_ms=10_000)
        coordinator = self._build(provider, config=fast_config(timeout_s=30.0, overall_s=0.3))

        start = time.monotonic()
        result = coordinator.generate(make_request())

        assert time.monotonic() - start < 1.5
        assert {a.cause for a in result.artifacts.values()} == {DegradationCause.TIMEOUT}

    def test_degraded_artifacts_are_not_cached(self):
        provider = SimulatedProvider("sim", content_types=[ContentType.BLOG], latency_ms=10, fail_first=2)
        coordinator = self._build(provider)

        first = coordinator.generate(make_request(content_types=[ContentType.BLOG]))
        second = coordinator.generate(make_request(content_types=[ContentType.BLOG]))

        assert first.artifacts[ContentType.BLOG].produced_by == "fallback"
        assert second.artifacts[ContentType.BLOG].produced_by == "sim"
        assert second.artifacts[ContentType.BLOG].cache_hit is False

    # =========================================================================
    # Retry
    # =========================================================================

    def test_retry_on_alternate_provider(self):
        """Test a failed first choice is retried on the next-ranked provider."""
        cheap = SimulatedProvider("cheap", content_types=[ContentType.BLOG], latency_ms=10,
                                  failure_rate=1.0, cost_per_call=0.001)
        backup = SimulatedProvider("backup", content_types=[ContentType.BLOG], latency_ms=10,
                                   cost_per_call=0.01)
        coordinator = self._build(cheap, backup)

        request = make_request(content_types=[ContentType.BLOG])
        result = coordinator.generate(request)

        assert result.artifacts[ContentType.BLOG].produced_by == "backup"
        assert cheap.call_count == 1
        assert backup.call_count == 1
        assert self._used("user_123", "content-generation") == 1

        kinds = [(e.kind, e.provider, e.success) for e in self.history.events_for(request.id)]
        assert kinds == [
            (UsageEventKind.RESERVED, None, None),
            (UsageEventKind.PROVIDER_CALL, "cheap", False),
            (UsageEventKind.RELEASED, None, None),
            (UsageEventKind.RESERVED, None, None),
            (UsageEventKind.PROVIDER_CALL, "backup", True),
        ]

    def test_retry_same_provider_when_only_one(self):
        provider = SimulatedProvider("sim", content_types=[ContentType.BLOG], latency_ms=10, fail_first=1)
        coordinator = self._build(provider)

        result = coordinator.generate(make_request(content_types=[ContentType.BLOG]))

        assert result.artifacts[ContentType.BLOG].produced_by == "sim"
        assert provider.call_count == 2

    def test_at_most_one_retry(self):
        """Test a sub-request never makes more than two provider calls."""
        a = SimulatedProvider("a", content_types=[ContentType.BLOG], latency_ms=10, failure_rate=1.0)
        b = SimulatedProvider("b", content_types=[ContentType.BLOG], latency_ms=10, failure_rate=1.0)
        c = SimulatedProvider("c", content_types=[ContentType.BLOG], latency_ms=10, failure_rate=1.0)
        coordinator = self._build(a, b, c)

        result = coordinator.generate(make_request(content_types=[ContentType.BLOG]))

        assert a.call_count + b.call_count + c.call_count == 2
        assert result.artifacts[ContentType.BLOG].cause == DegradationCause.PROVIDER_ERROR

    def test_retry_denied_when_quota_taken_meanwhile(self):
        """Test a refused re-reservation degrades the retry with quota_exceeded."""
        store = RefusingAfterFirstReserve()
        provider = SimulatedProvider("sim", content_types=[ContentType.BLOG], latency_ms=10, fail_first=1)
        coordinator = self._build(provider, store=store)

        request = make_request(content_types=[ContentType.BLOG])
        result = coordinator.generate(request)

        artifact = result.artifacts[ContentType.BLOG]
        assert artifact.produced_by == "fallback"
        assert artifact.cause == DegradationCause.QUOTA_EXCEEDED
        assert artifact.provider_attempted == "sim"
        assert result.failed_count == 1
        assert provider.call_count == 1
        assert self._used("user_123", "content-generation") == 0
        assert [e.kind for e in self.history.events_for(request.id)] == [
            UsageEventKind.RESERVED,
            UsageEventKind.PROVIDER_CALL,
            UsageEventKind.RELEASED,
            UsageEventKind.DENIED,
        ]

    # =========================================================================
    # Quota
    # =========================================================================

    def test_quota_exceeded(self):
        """Test the limit+1th request in a period degrades with quota_exceeded."""
        provider = SimulatedProvider("sim", latency_ms=10)
        coordinator = self._build(provider)
        video_only = [ContentType.VIDEO]

        first = coordinator.generate(make_request(plan=PlanTier.FREE, content_types=video_only))
        second = coordinator.generate(make_request(plan=PlanTier.FREE, content_types=video_only))

        assert first.artifacts[ContentType.VIDEO].produced_by == "sim"
        denied = second.artifacts[ContentType.VIDEO]
        assert denied.produced_by == "fallback"
        assert denied.cause == DegradationCause.QUOTA_EXCEEDED
        assert denied.provider_attempted is None
        assert second.failed_count == 0
        assert self._used("user_123", "video-generation", PlanTier.FREE) == 1
        assert provider.call_count == 1

    def test_successful_request_charges_once_per_type(self):
        coordinator = self._build(SimulatedProvider("sim", latency_ms=10))

        coordinator.generate(make_request())

        usage = {state.feature: state.used for state in self.ledger.get_usage("user_123", PlanTier.PREMIUM)}
        assert usage == {
            "audio-generation": 1,
            "content-generation": 1,
            "image-generation": 1,
            "video-generation": 1,
        }

    # =========================================================================
    # Cache and single-flight
    # =========================================================================

    def test_second_identical_request_hits_cache(self):
        """Test a repeat request is served from cache without provider calls."""
        provider = SimulatedProvider("sim", latency_ms=10)
        coordinator = self._build(provider)

        coordinator.generate(make_request())
        result = coordinator.generate(make_request(user="someone_else"))

        assert provider.call_count == 4
        assert result.real_provider_count == 4
        assert all(a.cache_hit for a in result.artifacts.values())
        assert all(a.produced_by == "sim" for a in result.artifacts.values())
        # A cache hit still consumes quota
        assert self._used("someone_else", "image-generation") == 1

    def test_concurrent_identical_requests_share_one_call(self):
        """Test two concurrent identical requests trigger one call per type."""
        provider = SimulatedProvider("sim", latency_ms=300)
        coordinator = self._build(provider)
        results = []
        lock = threading.Lock()

        def run(user):
            result = coordinator.generate(make_request(user=user))
            with lock:
                results.append(result)

        threads = [threading.Thread(target=run, args=(user,)) for user in ("alice", "bob")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert provider.call_count == 4
        assert all(r.real_provider_count == 4 for r in results)
        shared = sum(1 for r in results for a in r.artifacts.values() if a.cache_hit)
        assert shared == 4

    def test_different_options_do_not_share(self):
        provider = SimulatedProvider("sim", content_types=[ContentType.BLOG], latency_ms=10)
        coordinator = self._build(provider)

        coordinator.generate(make_request(content_types=[ContentType.BLOG]))
        coordinator.generate(make_request(description=DESCRIPTION + " v2", content_types=[ContentType.BLOG]))

        assert provider.call_count == 2

    def test_follower_retries_alone_after_shared_failure(self):
        """Test a caller sharing a failed call gets one independent attempt."""
        provider = SimulatedProvider("sim", content_types=[ContentType.BLOG], latency_ms=300, fail_first=2)
        coordinator = self._build(provider)
        results = []
        lock = threading.Lock()

        def run(user):
            result = coordinator.generate(make_request(user=user, content_types=[ContentType.BLOG]))
            with lock:
                results.append(result.artifacts[ContentType.BLOG])

        threads = [threading.Thread(target=run, args=(user,)) for user in ("alice", "bob")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(a.produced_by for a in results) == ["fallback", "sim"]
        degraded = next(a for a in results if a.produced_by == "fallback")
        assert degraded.cause == DegradationCause.PROVIDER_ERROR
        assert provider.call_count == 3

    # =========================================================================
    # Cancellation and progress
    # =========================================================================

    def test_cancellation(self):
        """Test cancelling degrades unfinished types promptly and releases quota."""
        provider = SimulatedProvider("slow", latency_ms=10_000)
        coordinator = self._build(provider, config=fast_config(timeout_s=30.0, overall_s=60.0))
        token = CancelToken()
        threading.Timer(0.1, token.cancel).start()

        start = time.monotonic()
        result = coordinator.generate(make_request(), cancel_token=token)

        assert time.monotonic() - start < 1.5
        assert {a.cause for a in result.artifacts.values()} == {DegradationCause.CANCELLED}
        assert sum(state.used for state in self.ledger.get_usage("user_123", PlanTier.PREMIUM)) == 0

    def test_cancellation_keeps_provider_routable(self):
        """Test a cancelled call does not count against provider health."""
        provider = SimulatedProvider("sim", content_types=[ContentType.BLOG], latency_ms=10_000)
        coordinator = self._build(provider, config=fast_config(timeout_s=30.0, overall_s=60.0))

        for _ in range(4):
            token = CancelToken()
            threading.Timer(0.05, token.cancel).start()
            coordinator.generate(make_request(content_types=[ContentType.BLOG]), cancel_token=token)

        stats = coordinator.routing.get_stats()["sim"]
        assert stats["failures"] == 0
        assert stats["breaker"]["state"] == "closed"

    def test_already_cancelled_token(self):
        provider = SimulatedProvider("sim", latency_ms=10)
        coordinator = self._build(provider)
        token = CancelToken()
        token.cancel()

        result = coordinator.generate(make_request(), cancel_token=token)

        assert result.fallback_count == 4
        assert provider.call_count == 0

    def test_progress_callback_once_per_type(self):
        """Test on_finalized fires exactly once per content type."""
        coordinator = self._build(SimulatedProvider("sim", latency_ms=10))
        seen = []

        result = coordinator.generate(
            make_request(),
            on_finalized=lambda content_type, artifact: seen.append((content_type, artifact)),
        )

        assert sorted(ct.value for ct, _ in seen) == sorted(ct.value for ct in ALL_CONTENT_TYPES)
        for content_type, artifact in seen:
            assert result.artifacts[content_type] == artifact

    def test_progress_callback_errors_are_ignored(self):
        coordinator = self._build(SimulatedProvider("sim", latency_ms=10))

        def broken(content_type, artifact):
            raise RuntimeError("client went away")

        result = coordinator.generate(make_request(), on_finalized=broken)

        assert result.real_provider_count == 4

    def test_caller_token_is_not_retained(self):
        """Test a long-lived caller token holds no callbacks after generate returns."""
        coordinator = self._build(SimulatedProvider("sim", content_types=[ContentType.BLOG], latency_ms=10))
        token = CancelToken()

        for _ in range(5):
            coordinator.generate(make_request(content_types=[ContentType.BLOG]), cancel_token=token)

        assert token._callbacks == []
        assert token.is_cancelled is False

    # =========================================================================
    # History and metrics
    # =========================================================================

    def test_history_records_result_and_usage(self):
        """Test the history sink receives the result and its usage events."""
        coordinator = self._build(SimulatedProvider("sim", latency_ms=10))
        request = make_request()

        result = coordinator.generate(request)

        assert self.history.results == [result]
        events = self.history.events_for(request.id)
        reserved = [e for e in events if e.kind == UsageEventKind.RESERVED]
        calls = [e for e in events if e.kind == UsageEventKind.PROVIDER_CALL]
        assert len(reserved) == 4
        assert len(calls) == 4
        assert all(e.success for e in calls)
        assert all(e.cost_usd == 0.01 for e in calls)

    def test_history_failure_does_not_fail_request(self):
        class BrokenSink(InMemoryHistorySink):
            def write(self, result, usage_events):
                raise OSError("disk full")

        self.history = BrokenSink()
        coordinator = self._build(SimulatedProvider("sim", latency_ms=10))

        result = coordinator.generate(make_request())

        assert result.real_provider_count == 4

    def test_metrics_recorded(self):
        coordinator = self._build(SimulatedProvider("sim", latency_ms=10))

        coordinator.generate(make_request())

        counters = coordinator.metrics.get_stats()["counters"]
        assert counters["generations_total"] == 1
        assert counters["generations_complete"] == 1
        assert counters["subrequests_total"] == 4


    def test_injected_components_are_used(self):
        """Test empty injected stores are kept, not replaced by defaults."""
        coordinator = self._build(SimulatedProvider("sim", latency_ms=10))

        assert coordinator.cache is self.cache
        assert coordinator.history is self.history
        assert coordinator.ledger is self.ledger

        result = coordinator.generate(make_request(content_types=[ContentType.BLOG]))

        assert len(self.cache) == 1
        assert self.history.results == [result]

    def test_default_history_keeps_nothing(self):
        coordinator = GenerationCoordinator(registry=self.registry, config=fast_config())
        try:
            assert isinstance(coordinator.history, LoggingHistorySink)
        finally:
            coordinator.close()


class TestFromConfig:
    """Test wiring from configuration."""

    def test_simulated_wiring_with_persistence(self, tmp_path):
        config = fast_config()
        config.quota_db_path = str(tmp_path / "quota.db")
        config.history_path = str(tmp_path / "history.jsonl")

        with GenerationCoordinator.from_config(config, simulate=True) as coordinator:
            assert "sim-text" in coordinator.registry
            assert "sim-media" in coordinator.registry
            result = coordinator.generate(make_request(content_types=[ContentType.BLOG]))

        assert result.artifacts[ContentType.BLOG].produced_by == "sim-text"
        assert (tmp_path / "history.jsonl").read_text(encoding="utf-8").count("\n") == 1

    def test_default_history_without_path(self):
        """Test production wiring does not retain results in memory."""
        with GenerationCoordinator.from_config(fast_config(), simulate=True) as coordinator:
            assert isinstance(coordinator.history, LoggingHistorySink)
