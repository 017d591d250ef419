"""
Generation coordinator for contentforge.

Fans one GenerationRequest out into concurrent sub-requests (blog, image,
video, podcast), drives each through quota, cache, routing and provider
calls, and joins them under an overall deadline. A caller always gets one
artifact per requested content type; failures become labelled placeholders.

Per sub-request state machine:
    PENDING -> QUOTA_CHECKED -> CACHE_CHECKED -> ROUTED -> IN_FLIGHT
        -> {SUCCEEDED | FAILED} -> FINALIZED
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import replace
from datetime import datetime, UTC
from typing import Callable, Optional

from contentforge.cache import ResultCache
from contentforge.config import FEATURE_BY_CONTENT_TYPE, OrchestratorConfig
from contentforge.context import CallContext, CancelToken
from contentforge.errors import (
    ProviderCancelledError,
    ProviderError,
    ProviderTimeoutError,
    QuotaExceededError,
    RoutingExhaustedError,
)
from contentforge.fallback import FallbackHandler
from contentforge.fingerprint import compute_fingerprint
from contentforge.history import HistorySink, JSONLHistorySink, LoggingHistorySink
from contentforge.ledger import SQLiteQuotaStore, UsageLedger
from contentforge.metrics import MetricsCollector
from contentforge.registry import ProviderRegistry, build_default_registry
from contentforge.router import RoutingDecision, RoutingPolicy
from contentforge.schemas import (
    ArtifactResult,
    ContentType,
    DegradationCause,
    GenerationRequest,
    GenerationResult,
    PlanTier,
    ProviderDescriptor,
    SubRequest,
    SubRequestState,
    UsageEvent,
    UsageEventKind,
)
from contentforge.validation import validate_request


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ContentType, ArtifactResult], None]


class _SubRequestRun:
    """
    Mutable state of one sub-request.

    Quota mutations and the final transition happen under `lock`, so a
    forced finalization can never interleave with a late reservation or a
    late success.
    """

    def __init__(
        self,
        sub_request: SubRequest,
        feature: str,
        plan: PlanTier,
        period_key: str,
        token: CancelToken,
        started: float,
    ):
        self.sub_request = sub_request
        self.feature = feature
        self.plan = plan
        self.period_key = period_key
        self.token = token
        self.started = started
        self.lock = threading.Lock()

        self.state = SubRequestState.PENDING
        self.reserved = False
        self.artifact: Optional[ArtifactResult] = None
        self.provider_attempted: Optional[str] = None
        self.led = False

    @property
    def content_type(self) -> ContentType:
        return self.sub_request.content_type

    @property
    def finalized(self) -> bool:
        return self.state == SubRequestState.FINALIZED

    def transition(self, state: SubRequestState) -> None:
        with self.lock:
            if self.state != SubRequestState.FINALIZED:
                self.state = state

    def remaining(self) -> float:
        return max(0.0, self.sub_request.deadline - time.monotonic())

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class _UsageRecorder:
    """Collects the UsageEvents of one generation from every worker thread."""

    def __init__(self, request: GenerationRequest, period_key: str):
        self.request = request
        self.period_key = period_key
        self._events: list[UsageEvent] = []
        self._lock = threading.Lock()

    def add(
        self,
        run: _SubRequestRun,
        kind: UsageEventKind,
        units: int = 0,
        provider: Optional[ProviderDescriptor] = None,
        success: Optional[bool] = None,
    ) -> None:
        event = UsageEvent(
            request_id=self.request.id,
            user_id=self.request.requester_id,
            feature=run.feature,
            content_type=run.content_type,
            period_key=self.period_key,
            kind=kind,
            units=units,
            provider=provider.name if provider else None,
            cost_usd=provider.cost_per_call if provider else 0.0,
            success=success,
        )
        with self._lock:
            self._events.append(event)

    def snapshot(self) -> list[UsageEvent]:
        with self._lock:
            return list(self._events)


class GenerationCoordinator:
    """
    Single entry point for content generation.

    Example:
        ```python
        with GenerationCoordinator.from_config(simulate=True) as coordinator:
            result = coordinator.generate(
                GenerationRequest(
                    product_description="Wireless earbuds with noise cancellation",
                    requester_id="user_123",
                ),
                on_finalized=lambda ct, artifact: print(ct.value, artifact.produced_by),
            )
        ```
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        ledger: Optional[UsageLedger] = None,
        cache: Optional[ResultCache] = None,
        routing: Optional[RoutingPolicy] = None,
        fallback: Optional[FallbackHandler] = None,
        history: Optional[HistorySink] = None,
        metrics: Optional[MetricsCollector] = None,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.config = config if config is not None else OrchestratorConfig()
        self.registry = registry
        self.ledger = ledger if ledger is not None else UsageLedger(self.config)
        self.cache = cache if cache is not None else ResultCache(max_entries=self.config.cache_max_entries)
        self.routing = routing if routing is not None else RoutingPolicy()
        self.metrics = metrics if metrics is not None else MetricsCollector()
        self.fallback = fallback if fallback is not None else FallbackHandler(metrics=self.metrics)
        self.history = history if history is not None else LoggingHistorySink()

        self._task_pool = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="contentforge-task",
        )
        self._provider_pool = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="contentforge-provider",
        )
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: Optional[OrchestratorConfig] = None,
        simulate: bool = False,
    ) -> "GenerationCoordinator":
        """Wire every component from configuration (environment by default)."""
        config = config or OrchestratorConfig.from_env()
        store = SQLiteQuotaStore(config.quota_db_path) if config.quota_db_path else None
        history = JSONLHistorySink(config.history_path) if config.history_path else None
        return cls(
            registry=build_default_registry(config, simulate=simulate),
            ledger=UsageLedger(config, store=store),
            history=history,
            config=config,
        )

    # =========================================================================
    # Entry point
    # =========================================================================

    def generate(
        self,
        request: GenerationRequest,
        on_finalized: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> GenerationResult:
        """
        Generate every requested content type for a product.

        Args:
            request: The validated-identity generation request.
            on_finalized: Called once per content type as it finalizes.
            cancel_token: Cancelling it degrades every unfinished content
                type with cause "cancelled" and returns promptly.

        Returns:
            GenerationResult with exactly one artifact per requested type.

        Raises:
            ValidationError: If the request is malformed. Nothing else is
                raised; every other failure becomes a degraded artifact.
        """
        if self._closed:
            raise RuntimeError("GenerationCoordinator is closed")

        validate_request(request)

        started_at = datetime.now(UTC)
        start = time.monotonic()
        period_key = self.ledger.current_period()
        usage = _UsageRecorder(request, period_key)

        request_token = CancelToken()

        def forward_cancel() -> None:
            request_token.cancel(cancel_token.reason or "cancelled by caller")

        if cancel_token is not None:
            cancel_token.on_cancel(forward_cancel)
        try:
            return self._generate(request, request_token, usage, period_key, started_at, start, on_finalized)
        finally:
            if cancel_token is not None:
                cancel_token.remove_callback(forward_cancel)

    def _generate(
        self,
        request: GenerationRequest,
        request_token: CancelToken,
        usage: _UsageRecorder,
        period_key: str,
        started_at: datetime,
        start: float,
        on_finalized: Optional[ProgressCallback],
    ) -> GenerationResult:
        overall_deadline = start + self.config.overall_timeout_s
        runs = [
            self._prepare(request, content_type, start, overall_deadline, request_token, period_key)
            for content_type in request.content_types
        ]

        all_done = threading.Event()
        pending = [len(runs)]
        pending_lock = threading.Lock()

        def notify(run: _SubRequestRun) -> None:
            if on_finalized is not None:
                try:
                    on_finalized(run.content_type, run.artifact)
                except Exception:
                    logger.exception("on_finalized callback raised for %s", run.content_type.value)
            with pending_lock:
                pending[0] -= 1
                if pending[0] == 0:
                    all_done.set()

        request_token.on_cancel(all_done.set)

        logger.info(
            "Generating %s for request %s (user=%s, plan=%s)",
            ",".join(ct.value for ct in request.content_types),
            request.id,
            request.requester_id,
            request.plan_tier.value,
        )

        for run in runs:
            self._task_pool.submit(self._run_subrequest, run, usage, notify)

        all_done.wait(timeout=max(0.0, overall_deadline - time.monotonic()))

        cause = DegradationCause.CANCELLED if request_token.is_cancelled else DegradationCause.TIMEOUT
        for run in runs:
            if not run.finalized:
                self._degrade(run, cause, usage, notify, detail="forced at join")

        # Wake anything still running; their results are discarded.
        request_token.cancel("generation finished")

        return self._emit_result(request, runs, usage, started_at, start)

    # =========================================================================
    # Sub-request machine
    # =========================================================================

    def _prepare(
        self,
        request: GenerationRequest,
        content_type: ContentType,
        start: float,
        overall_deadline: float,
        request_token: CancelToken,
        period_key: str,
    ) -> _SubRequestRun:
        sub_request = SubRequest(
            content_type=content_type,
            fingerprint=compute_fingerprint(content_type, request.product_description, request.options),
            quality_tier=self.config.quality_tier_for(request.plan_tier),
            budget_ceiling=self.config.budget_ceiling(content_type),
            deadline=min(start + self.config.subrequest_timeout(content_type), overall_deadline),
            request_id=request.id,
            requester_id=request.requester_id,
            product_description=request.product_description,
            options=request.options,
            urgency=self.config.urgency_for(content_type),
        )
        return _SubRequestRun(
            sub_request=sub_request,
            feature=FEATURE_BY_CONTENT_TYPE[content_type],
            plan=request.plan_tier,
            period_key=period_key,
            token=request_token.child(),
            started=start,
        )

    def _run_subrequest(
        self,
        run: _SubRequestRun,
        usage: _UsageRecorder,
        notify: Callable[[_SubRequestRun], None],
    ) -> None:
        try:
            self._execute(run, usage, notify)
        except Exception as exc:
            logger.exception("Unexpected error in %s sub-request", run.content_type.value)
            self._degrade(run, DegradationCause.PROVIDER_ERROR, usage, notify, detail=str(exc))

    def _execute(
        self,
        run: _SubRequestRun,
        usage: _UsageRecorder,
        notify: Callable[[_SubRequestRun], None],
    ) -> None:
        sub_request = run.sub_request

        if run.token.is_cancelled:
            self._degrade(run, DegradationCause.CANCELLED, usage, notify)
            return

        # PENDING -> QUOTA_CHECKED
        if not self._reserve(run, usage):
            self._degrade(run, DegradationCause.QUOTA_EXCEEDED, usage, notify)
            return
        run.transition(SubRequestState.QUOTA_CHECKED)

        # QUOTA_CHECKED -> CACHE_CHECKED; a hit keeps the reservation
        cached, hit = self.cache.get(sub_request.fingerprint)
        if hit:
            self._succeed(run, replace(cached, cache_hit=True, latency_ms=run.elapsed_ms()), notify)
            return
        run.transition(SubRequestState.CACHE_CHECKED)

        # A follower whose shared call failed gets one fresh pass of its own.
        for shared_pass in range(2):
            decision = self.routing.rank(sub_request, self.registry.descriptors())
            if not decision.ranked:
                self._degrade(run, DegradationCause.NO_PROVIDER, usage, notify, detail=decision.why)
                return
            run.transition(SubRequestState.ROUTED)

            run.led = False
            try:
                artifact, shared = self.cache.do(
                    sub_request.fingerprint,
                    lambda: self._call_providers(run, decision, usage),
                    timeout=run.remaining(),
                )
            except Exception as exc:
                if not run.led and shared_pass == 0 and not run.token.is_cancelled and run.remaining() > 0:
                    logger.info(
                        "Shared %s call failed (%s); re-attempting independently",
                        sub_request.content_type.value, exc,
                    )
                    continue
                if run.provider_attempted is None and isinstance(exc, ProviderError):
                    run.provider_attempted = exc.provider
                self._degrade(run, self._cause_for(exc, run.led), usage, notify, detail=str(exc))
                return

            if shared:
                artifact = replace(artifact, cache_hit=True, latency_ms=run.elapsed_ms())
            self._succeed(run, artifact, notify)
            return

    def _call_providers(
        self,
        run: _SubRequestRun,
        decision: RoutingDecision,
        usage: _UsageRecorder,
    ) -> ArtifactResult:
        """
        Leader path: first attempt plus at most one retry.

        The first attempt gets `first_attempt_share` of the remaining time.
        The retry gets what is left of the same deadline.
        """
        run.led = True
        sub_request = run.sub_request

        first = self._admit(decision.ranked)
        if first is None:
            raise RoutingExhaustedError(sub_request.content_type.value, decision.filter_reasons)

        now = time.monotonic()
        first_deadline = now + max(0.0, sub_request.deadline - now) * self.config.first_attempt_share
        try:
            artifact = self._attempt(run, first, first_deadline, usage)
        except ProviderCancelledError:
            raise
        except ProviderError as exc:
            first_error = exc
            logger.info(
                "%s attempt on %s failed: %s",
                sub_request.content_type.value, first.name, exc,
            )
        else:
            self.cache.put(sub_request.fingerprint, artifact, ttl=self.config.cache_ttl(sub_request.content_type))
            return artifact

        # FAILED: release, then re-reserve for the retry
        self._release(run, usage)
        if run.token.is_cancelled:
            raise ProviderCancelledError("cancelled before retry", provider=first.name)
        if run.remaining() <= 0:
            raise first_error
        if not self._reserve(run, usage):
            state = self.ledger.get_state(run.sub_request.requester_id, run.feature, run.plan, run.period_key)
            raise QuotaExceededError(
                state.user_id, state.feature, state.period_key, state.used, state.limit or 0
            )

        alternates = [d for d in decision.ranked if d.name != first.name] or [first]
        second = self._admit(alternates)
        if second is None:
            raise first_error

        artifact = self._attempt(run, second, sub_request.deadline, usage)
        self.cache.put(sub_request.fingerprint, artifact, ttl=self.config.cache_ttl(sub_request.content_type))
        return artifact

    def _admit(self, candidates: list[ProviderDescriptor]) -> Optional[ProviderDescriptor]:
        for descriptor in candidates:
            if self.routing.try_acquire(descriptor):
                return descriptor
        return None

    def _attempt(
        self,
        run: _SubRequestRun,
        descriptor: ProviderDescriptor,
        deadline: float,
        usage: _UsageRecorder,
    ) -> ArtifactResult:
        """One provider call bounded by `deadline` and the run's cancel token."""
        adapter = self.registry.adapter(descriptor.name)
        token = run.token.child()
        ctx = CallContext(deadline=deadline, token=token)
        run.provider_attempted = descriptor.name
        run.transition(SubRequestState.IN_FLIGHT)

        started = time.monotonic()
        done = threading.Event()
        future = self._provider_pool.submit(adapter.generate, run.sub_request, ctx)
        future.add_done_callback(lambda _: done.set())
        token.on_cancel(done.set)
        done.wait(timeout=max(0.0, deadline - started))
        latency_ms = (time.monotonic() - started) * 1000

        if not future.done():
            run.transition(SubRequestState.FAILED)
            if run.token.is_cancelled:
                self.routing.release(descriptor)
                usage.add(run, UsageEventKind.PROVIDER_CALL, provider=descriptor, success=False)
                raise ProviderCancelledError(f"{descriptor.name}: cancelled", provider=descriptor.name)
            token.cancel("attempt deadline exceeded")
            self.routing.record_failure(descriptor, latency_ms)
            usage.add(run, UsageEventKind.PROVIDER_CALL, provider=descriptor, success=False)
            raise ProviderTimeoutError(
                f"{descriptor.name}: no result within {latency_ms / 1000:.2f}s",
                provider=descriptor.name,
            )

        try:
            artifact = future.result()
        except ProviderCancelledError:
            run.transition(SubRequestState.FAILED)
            self.routing.release(descriptor)
            usage.add(run, UsageEventKind.PROVIDER_CALL, provider=descriptor, success=False)
            raise
        except ProviderError:
            run.transition(SubRequestState.FAILED)
            self.routing.record_failure(descriptor, latency_ms)
            usage.add(run, UsageEventKind.PROVIDER_CALL, provider=descriptor, success=False)
            raise
        except Exception as exc:
            run.transition(SubRequestState.FAILED)
            self.routing.record_failure(descriptor, latency_ms)
            usage.add(run, UsageEventKind.PROVIDER_CALL, provider=descriptor, success=False)
            raise ProviderError(f"{descriptor.name}: {exc}", provider=descriptor.name) from exc

        self.routing.record_success(descriptor, latency_ms)
        usage.add(run, UsageEventKind.PROVIDER_CALL, provider=descriptor, success=True)
        run.transition(SubRequestState.SUCCEEDED)
        return replace(artifact, produced_by=descriptor.name, cache_hit=False, latency_ms=int(latency_ms))

    @staticmethod
    def _cause_for(exc: Exception, led: bool) -> DegradationCause:
        if isinstance(exc, ProviderCancelledError):
            return DegradationCause.CANCELLED
        if isinstance(exc, (ProviderTimeoutError, FutureTimeoutError)):
            return DegradationCause.TIMEOUT
        if led and isinstance(exc, QuotaExceededError):
            return DegradationCause.QUOTA_EXCEEDED
        if led and isinstance(exc, RoutingExhaustedError):
            return DegradationCause.NO_PROVIDER
        return DegradationCause.PROVIDER_ERROR

    # =========================================================================
    # Quota and finalization (all under the run lock)
    # =========================================================================

    def _reserve(self, run: _SubRequestRun, usage: _UsageRecorder) -> bool:
        with run.lock:
            if run.finalized:
                return False
            granted, _ = self.ledger.check_and_reserve(
                run.sub_request.requester_id,
                run.feature,
                plan=run.plan,
                period_key=run.period_key,
            )
            run.reserved = granted
            usage.add(run, UsageEventKind.RESERVED if granted else UsageEventKind.DENIED, units=1)
            return granted

    def _release(self, run: _SubRequestRun, usage: _UsageRecorder) -> None:
        with run.lock:
            if not run.reserved:
                return
            self.ledger.release(run.sub_request.requester_id, run.feature, period_key=run.period_key)
            run.reserved = False
            usage.add(run, UsageEventKind.RELEASED, units=1)

    def _succeed(
        self,
        run: _SubRequestRun,
        artifact: ArtifactResult,
        notify: Callable[[_SubRequestRun], None],
    ) -> bool:
        with run.lock:
            if run.finalized:
                return False
            run.artifact = artifact
            run.state = SubRequestState.FINALIZED
        self._after_finalize(run, notify)
        return True

    def _degrade(
        self,
        run: _SubRequestRun,
        cause: DegradationCause,
        usage: _UsageRecorder,
        notify: Callable[[_SubRequestRun], None],
        detail: Optional[str] = None,
    ) -> bool:
        with run.lock:
            if run.finalized:
                return False
            if run.reserved:
                self.ledger.release(run.sub_request.requester_id, run.feature, period_key=run.period_key)
                run.reserved = False
                usage.add(run, UsageEventKind.RELEASED, units=1)
            run.artifact = self.fallback.degrade(
                run.sub_request,
                cause,
                provider_attempted=run.provider_attempted,
                detail=detail,
                latency_ms=run.elapsed_ms(),
            )
            run.state = SubRequestState.FINALIZED
        self._after_finalize(run, notify)
        return True

    def _after_finalize(self, run: _SubRequestRun, notify: Callable[[_SubRequestRun], None]) -> None:
        artifact = run.artifact
        self.metrics.record_subrequest(
            request_id=run.sub_request.request_id,
            content_type=run.content_type.value,
            produced_by=artifact.produced_by,
            cache_hit=artifact.cache_hit,
            latency_ms=artifact.latency_ms,
        )
        notify(run)

    def _emit_result(
        self,
        request: GenerationRequest,
        runs: list[_SubRequestRun],
        usage: _UsageRecorder,
        started_at: datetime,
        start: float,
    ) -> GenerationResult:
        artifacts = {run.content_type: run.artifact for run in runs}
        real_provider_count = sum(1 for a in artifacts.values() if not a.is_degraded)
        failed_count = sum(
            1 for a in artifacts.values() if a.is_degraded and a.provider_attempted is not None
        )

        result = GenerationResult(
            request_id=request.id,
            artifacts=artifacts,
            started_at=started_at,
            completed_at=datetime.now(UTC),
            total_latency_ms=int((time.monotonic() - start) * 1000),
            real_provider_count=real_provider_count,
            fallback_count=len(artifacts) - real_provider_count,
            failed_count=failed_count,
        )

        self.metrics.record_generation(
            request_id=request.id,
            total_latency_ms=result.total_latency_ms,
            real_provider_count=result.real_provider_count,
            fallback_count=result.fallback_count,
        )
        try:
            self.history.write(result, usage.snapshot())
        except Exception:
            logger.exception("History sink failed for request %s", request.id)

        logger.info(
            "Request %s done in %dms: %d real, %d fallback",
            request.id, result.total_latency_ms, result.real_provider_count, result.fallback_count,
        )
        return result

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._task_pool.shutdown(wait=False, cancel_futures=True)
        self._provider_pool.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "GenerationCoordinator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
