"""
Metrics and observability for contentforge.

Collects per-sub-request outcomes, degradation events and per-generation
latency for monitoring.
"""

import json
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import datetime, UTC
from pathlib import Path
from threading import Lock
from typing import Any, Optional


logger = logging.getLogger(__name__)


@dataclass
class MetricEvent:
    """A single metric event."""
    timestamp: str
    event_type: str  # subrequest, failure, generation
    request_id: str
    data: dict[str, Any]


class MetricsCollector:
    """
    Collects and aggregates metrics from generation runs.

    Safe to share between the coordinator's worker threads.
    """

    def __init__(
        self,
        metrics_file: Optional[Path] = None,
        enable_logging: bool = False,
    ):
        """
        Initialize metrics collector.

        Args:
            metrics_file: Optional file to write metrics to (JSONL format)
            enable_logging: Whether to log every event at INFO level
        """
        self.metrics_file = Path(metrics_file) if metrics_file else None
        self.enable_logging = enable_logging
        self._lock = Lock()

        self._events: list[MetricEvent] = []
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, list[float]] = defaultdict(list)

    def record_subrequest(
        self,
        request_id: str,
        content_type: str,
        produced_by: str,
        cache_hit: bool,
        latency_ms: int,
        **extra: Any,
    ) -> None:
        """
        Record one finalized sub-request.

        Args:
            request_id: Generation request identifier
            content_type: blog, image, video or podcast
            produced_by: Provider name or "fallback"
            cache_hit: Whether the artifact came from the cache
            latency_ms: Sub-request latency in milliseconds
            **extra: Additional fields
        """
        self._record_event(
            event_type="subrequest",
            request_id=request_id,
            data={
                "content_type": content_type,
                "produced_by": produced_by,
                "cache_hit": cache_hit,
                "latency_ms": latency_ms,
                **extra,
            },
        )
        with self._lock:
            self._counters["subrequests_total"] += 1
            self._counters[f"subrequests_by_type_{content_type}"] += 1
            self._counters[f"subrequests_by_producer_{produced_by}"] += 1
            if cache_hit:
                self._counters["cache_hits"] += 1
            self._histograms[f"latency_ms_{content_type}"].append(latency_ms)

    def record_failure(
        self,
        request_id: str,
        content_type: str,
        cause: str,
        provider_attempted: Optional[str] = None,
        **extra: Any,
    ) -> None:
        """Record a degraded sub-request."""
        self._record_event(
            event_type="failure",
            request_id=request_id,
            data={
                "content_type": content_type,
                "cause": cause,
                "provider_attempted": provider_attempted,
                **extra,
            },
        )
        with self._lock:
            self._counters["degradations_total"] += 1
            self._counters[f"degradations_{cause}"] += 1
            if provider_attempted:
                self._counters[f"provider_failures_{provider_attempted}"] += 1

    def record_generation(
        self,
        request_id: str,
        total_latency_ms: int,
        real_provider_count: int,
        fallback_count: int,
        **extra: Any,
    ) -> None:
        """Record a completed generation request."""
        self._record_event(
            event_type="generation",
            request_id=request_id,
            data={
                "total_latency_ms": total_latency_ms,
                "real_provider_count": real_provider_count,
                "fallback_count": fallback_count,
                **extra,
            },
        )
        with self._lock:
            self._counters["generations_total"] += 1
            if fallback_count == 0:
                self._counters["generations_complete"] += 1
            else:
                self._counters["generations_degraded"] += 1
            self._histograms["latency_ms"].append(total_latency_ms)

    def _record_event(
        self,
        event_type: str,
        request_id: str,
        data: dict,
    ) -> None:
        """Record a metric event."""
        event = MetricEvent(
            timestamp=datetime.now(UTC).isoformat(),
            event_type=event_type,
            request_id=request_id,
            data=data,
        )

        with self._lock:
            self._events.append(event)

            # Write to file if configured
            if self.metrics_file:
                with open(self.metrics_file, "a") as f:
                    f.write(json.dumps(asdict(event), default=str) + "\n")

        if self.enable_logging:
            logger.info(
                f"{event_type.upper()}: request_id={request_id}, data={data}"
            )

    def get_stats(self) -> dict:
        """
        Get aggregated statistics.

        Returns:
            Dictionary with metrics summary. `latency` covers whole
            generations; `latency_by_type` covers sub-requests per content type.
        """
        with self._lock:
            counters = dict(self._counters)
            histograms = {name: list(values) for name, values in self._histograms.items()}
            total_events = len(self._events)

        prefix = "latency_ms_"
        return {
            "counters": counters,
            "latency": _summarize(histograms.get("latency_ms", [])),
            "latency_by_type": {
                name[len(prefix):]: _summarize(values)
                for name, values in sorted(histograms.items())
                if name.startswith(prefix)
            },
            "total_events": total_events,
        }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._events.clear()
            self._counters.clear()
            self._histograms.clear()


def _summarize(latency_values: list[float]) -> dict:
    return {
        "avg_ms": statistics.mean(latency_values) if latency_values else 0,
        "p50_ms": statistics.median(latency_values) if latency_values else 0,
        "p95_ms": (
            statistics.quantiles(latency_values, n=20)[18]
            if len(latency_values) >= 20
            else (max(latency_values) if latency_values else 0)
        ),
    }
