"""
Error taxonomy for contentforge.

Only ValidationError ever reaches a caller of the coordinator. Every other
error is absorbed into a degraded artifact.
"""

from typing import Optional


class ContentForgeError(Exception):
    """Base class for all contentforge errors."""
    pass


class ValidationError(ContentForgeError, ValueError):
    """Raised when a generation request is malformed."""
    pass


class QuotaExceededError(ContentForgeError):
    """Raised when a user has no quota left for a feature in the current period."""

    def __init__(self, user_id: str, feature: str, period_key: str, used: int, limit: int):
        self.user_id = user_id
        self.feature = feature
        self.period_key = period_key
        self.used = used
        self.limit = limit
        super().__init__(
            f"User '{user_id}' exhausted '{feature}' quota for {period_key}: "
            f"{used} of {limit} used"
        )


class ProviderError(ContentForgeError):
    """Raised when a provider call fails. Transient: one retry is permitted."""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class ProviderTimeoutError(ProviderError, TimeoutError):
    """Raised when a provider call exceeds its deadline."""
    pass


class ProviderCancelledError(ProviderError):
    """Raised when a provider call observes cancellation before completing."""
    pass


class RoutingExhaustedError(ContentForgeError):
    """Raised when no healthy candidate can serve a sub-request."""

    def __init__(self, content_type: str, filter_reasons: Optional[dict] = None):
        self.content_type = content_type
        self.filter_reasons = filter_reasons or {}
        super().__init__(
            f"No provider available for '{content_type}' "
            f"({len(self.filter_reasons)} candidates filtered)"
        )
