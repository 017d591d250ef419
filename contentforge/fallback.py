"""
Fallback handler for contentforge.

Turns any failed or skipped sub-request into a labelled placeholder
artifact and reports why.
"""

import logging
from typing import Callable, Optional

from contentforge.metrics import MetricsCollector
from contentforge.providers import PlaceholderProvider
from contentforge.schemas import (
    ArtifactResult,
    DegradationCause,
    FailureEvent,
    SubRequest,
    FALLBACK_PRODUCER,
)


logger = logging.getLogger(__name__)

FailureListener = Callable[[FailureEvent], None]


class FallbackHandler:
    """
    Produces degraded artifacts. Never raises.

    Example:
        ```python
        handler = FallbackHandler()
        handler.add_listener(lambda event: alerts.append(event))
        artifact = handler.degrade(sub_request, DegradationCause.TIMEOUT, "media-api")
        assert artifact.produced_by == "fallback"
        ```
    """

    def __init__(
        self,
        metrics: Optional[MetricsCollector] = None,
        placeholder: Optional[PlaceholderProvider] = None,
    ):
        self.metrics = metrics
        self.placeholder = placeholder if placeholder is not None else PlaceholderProvider()
        self._listeners: list[FailureListener] = []

    def add_listener(self, listener: FailureListener) -> None:
        self._listeners.append(listener)

    def degrade(
        self,
        sub_request: SubRequest,
        cause: DegradationCause,
        provider_attempted: Optional[str] = None,
        detail: Optional[str] = None,
        latency_ms: int = 0,
    ) -> ArtifactResult:
        """
        Build the placeholder artifact for a sub-request and emit a FailureEvent.

        Args:
            sub_request: The sub-request that could not be served.
            cause: Why it degraded.
            provider_attempted: Last provider that was called, if any.
            detail: Free-form error text for the event.
            latency_ms: Time spent before degrading.

        Returns:
            ArtifactResult with produced_by="fallback" and `cause` set.
        """
        artifact = ArtifactResult(
            content_type=sub_request.content_type,
            content=self.placeholder.placeholder(sub_request),
            produced_by=FALLBACK_PRODUCER,
            cache_hit=False,
            latency_ms=latency_ms,
            cause=cause,
            provider_attempted=provider_attempted,
        )

        event = FailureEvent(
            request_id=sub_request.request_id,
            content_type=sub_request.content_type,
            cause=cause,
            provider_attempted=provider_attempted,
            detail=detail,
        )
        self._emit(event)
        return artifact

    def _emit(self, event: FailureEvent) -> None:
        logger.warning(
            "Degraded %s for request %s: cause=%s provider=%s detail=%s",
            event.content_type.value,
            event.request_id,
            event.cause.value,
            event.provider_attempted,
            event.detail,
        )

        if self.metrics is not None:
            self.metrics.record_failure(
                request_id=event.request_id,
                content_type=event.content_type.value,
                cause=event.cause.value,
                provider_attempted=event.provider_attempted,
            )

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Failure listener raised; ignoring")
