"""
Routing policy for contentforge.

Chooses which provider serves a sub-request. Also owns provider health:
latency averages, multiplicative health weights and circuit breakers.
"""

import time
from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Callable, Optional

from contentforge.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from contentforge.schemas import (
    ProviderDescriptor,
    QualityTier,
    SubRequest,
    UrgencyTier,
)


COST_EPSILON = 1e-3
LATENCY_EMA_ALPHA = 0.2
FAILURE_DECAY = 0.5

QUALITY_TIER_MINIMUMS: dict[QualityTier, float] = {
    QualityTier.DRAFT: 0.0,
    QualityTier.STANDARD: 0.5,
    QualityTier.PREMIUM: 0.75,
}

# Score penalty per second of average latency.
URGENCY_LATENCY_WEIGHTS: dict[UrgencyTier, float] = {
    UrgencyTier.REALTIME: 2.0,
    UrgencyTier.INTERACTIVE: 1.0,
    UrgencyTier.BATCH: 0.25,
}


@dataclass
class ProviderHealth:
    """Mutable health state for one provider. Guarded by its own lock."""
    average_latency_ms: float
    weight: float = 1.0
    successes: int = 0
    failures: int = 0
    breaker: Optional[CircuitBreaker] = None
    lock: Lock = field(default_factory=Lock)


@dataclass
class RoutingDecision:
    """
    Outcome of ranking candidates for one sub-request.

    `ranked` is best-first. Empty when nothing qualifies.
    """
    content_type: str
    ranked: list[ProviderDescriptor]
    scores: dict[str, float]
    filter_reasons: dict[str, str]
    why: str

    @property
    def chosen(self) -> Optional[ProviderDescriptor]:
        return self.ranked[0] if self.ranked else None


class RoutingPolicy:
    """
    Routes sub-requests to the best available provider.

    The routing algorithm:
    1. Filter by capability (content type)
    2. Filter by health (circuit breaker state)
    3. Filter by constraints (budget ceiling, quality tier)
    4. Rank by quality * weight / cost minus a latency penalty
    5. Break ties by provider name
    """

    def __init__(
        self,
        breaker_config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.breaker_config = breaker_config or CircuitBreakerConfig()
        self._clock = clock
        self._health: dict[str, ProviderHealth] = {}
        self._registry_lock = Lock()

    def rank(
        self,
        sub_request: SubRequest,
        candidates: list[ProviderDescriptor],
    ) -> RoutingDecision:
        """
        Rank every qualifying candidate for a sub-request.

        Args:
            sub_request: The unit of work being routed.
            candidates: All registered providers.

        Returns:
            RoutingDecision with best-first ranking and filter reasons.
        """
        filter_reasons: dict[str, str] = {}
        scored: list[tuple[float, str, ProviderDescriptor]] = []

        for descriptor in candidates:
            reason = self._check_candidate(sub_request, descriptor)
            if reason:
                filter_reasons[descriptor.name] = reason
                continue
            scored.append((self.score(sub_request, descriptor), descriptor.name, descriptor))

        # Highest score first, then name ascending for determinism
        scored.sort(key=lambda item: (-item[0], item[1]))
        ranked = [descriptor for _, _, descriptor in scored]
        scores = {name: score for score, name, _ in scored}

        if ranked:
            best = ranked[0]
            why = (
                f"Best score ({scores[best.name]:.3f}) among {len(ranked)} providers "
                f"supporting '{sub_request.content_type.value}' within "
                f"${sub_request.budget_ceiling:.4f} at tier '{sub_request.quality_tier.value}'"
            )
        else:
            why = (
                f"No provider qualified for '{sub_request.content_type.value}': "
                f"{len(filter_reasons)} filtered, check filter_reasons for details"
            )

        return RoutingDecision(
            content_type=sub_request.content_type.value,
            ranked=ranked,
            scores=scores,
            filter_reasons=filter_reasons,
            why=why,
        )

    def select_provider(
        self,
        sub_request: SubRequest,
        candidates: list[ProviderDescriptor],
    ) -> Optional[ProviderDescriptor]:
        """Best candidate for the sub-request, or None if nothing qualifies."""
        return self.rank(sub_request, candidates).chosen

    def score(self, sub_request: SubRequest, descriptor: ProviderDescriptor) -> float:
        health = self._get_health(descriptor)
        with health.lock:
            weight = health.weight
            latency_s = health.average_latency_ms / 1000.0
        latency_penalty = URGENCY_LATENCY_WEIGHTS[sub_request.urgency] * latency_s
        return (descriptor.quality_score * weight) / (descriptor.cost_per_call + COST_EPSILON) - latency_penalty

    def _check_candidate(
        self,
        sub_request: SubRequest,
        descriptor: ProviderDescriptor,
    ) -> Optional[str]:
        """
        Check if a provider can serve the sub-request.

        Returns:
            None if it qualifies, or reason string if not.
        """
        if not descriptor.supports(sub_request.content_type):
            return f"content type '{sub_request.content_type.value}' not supported"

        if not descriptor.is_healthy:
            return "marked unhealthy"

        health = self._get_health(descriptor)
        if not health.breaker.is_available():
            return f"circuit {health.breaker.state.value}"

        if descriptor.cost_per_call > sub_request.budget_ceiling:
            return (
                f"cost ${descriptor.cost_per_call:.4f} > budget "
                f"${sub_request.budget_ceiling:.4f}"
            )

        minimum = QUALITY_TIER_MINIMUMS[sub_request.quality_tier]
        if descriptor.quality_score < minimum:
            return (
                f"quality {descriptor.quality_score:.2f} < "
                f"tier '{sub_request.quality_tier.value}' minimum {minimum:.2f}"
            )

        return None

    # =========================================================================
    # Health feedback
    # =========================================================================

    def try_acquire(self, descriptor: ProviderDescriptor) -> bool:
        """Admit a call to this provider, claiming the half-open trial if needed."""
        return self._get_health(descriptor).breaker.try_acquire()

    def release(self, descriptor: ProviderDescriptor) -> None:
        """Return an admission that ended without a provider outcome (cancellation)."""
        self._get_health(descriptor).breaker.release()

    def record_success(self, descriptor: ProviderDescriptor, latency_ms: float) -> None:
        health = self._get_health(descriptor)
        with health.lock:
            health.successes += 1
            health.weight = 1.0
            health.average_latency_ms = (
                LATENCY_EMA_ALPHA * latency_ms
                + (1 - LATENCY_EMA_ALPHA) * health.average_latency_ms
            )
        health.breaker.record_success()

    def record_failure(self, descriptor: ProviderDescriptor, latency_ms: Optional[float] = None) -> None:
        health = self._get_health(descriptor)
        with health.lock:
            health.failures += 1
            health.weight *= FAILURE_DECAY
            if latency_ms is not None:
                health.average_latency_ms = (
                    LATENCY_EMA_ALPHA * latency_ms
                    + (1 - LATENCY_EMA_ALPHA) * health.average_latency_ms
                )
        health.breaker.record_failure()

    def snapshot(self, descriptor: ProviderDescriptor) -> ProviderDescriptor:
        """Copy of the descriptor with the live latency and health filled in."""
        health = self._get_health(descriptor)
        with health.lock:
            latency = health.average_latency_ms
        healthy = descriptor.is_healthy and health.breaker.state != CircuitState.OPEN
        return replace(descriptor, average_latency_ms=latency, is_healthy=healthy)

    def get_stats(self) -> dict:
        with self._registry_lock:
            items = list(self._health.items())
        stats = {}
        for name, health in items:
            with health.lock:
                stats[name] = {
                    "average_latency_ms": round(health.average_latency_ms, 1),
                    "weight": health.weight,
                    "successes": health.successes,
                    "failures": health.failures,
                }
            stats[name]["breaker"] = health.breaker.get_stats()
        return stats

    def reset(self, name: Optional[str] = None) -> None:
        with self._registry_lock:
            if name is None:
                self._health.clear()
            else:
                self._health.pop(name, None)

    def _get_health(self, descriptor: ProviderDescriptor) -> ProviderHealth:
        with self._registry_lock:
            health = self._health.get(descriptor.name)
            if health is None:
                health = ProviderHealth(
                    average_latency_ms=descriptor.average_latency_ms,
                    breaker=CircuitBreaker(descriptor.name, self.breaker_config, clock=self._clock),
                )
                self._health[descriptor.name] = health
            return health
