"""Error types raised by the assistant pipeline.

Every error carries the HTTP status it maps to and any extra fields the client
needs (wait time, usage snapshot). ``main.py`` renders them as
``{"error": message, **extra}``.
"""

from typing import Any, Dict


class AssistantError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_body(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class InvalidChatRequest(AssistantError):
    status_code = 400


class Unauthorized(AssistantError):
    status_code = 401


class NotFound(AssistantError):
    status_code = 404


class QuotaExceeded(AssistantError):
    """Monthly token budget used up. No upstream call is made."""
    status_code = 429


class RateLimited(AssistantError):
    """Cooldown active after an upstream throttle."""
    status_code = 429

    def __init__(self, message: str, retry_after: int, **extra: Any):
        super().__init__(message, retryAfter=retry_after, **extra)
        self.retry_after = retry_after


class UpstreamThrottled(RateLimited):
    """The generation service itself answered with a quota/429 error."""


class UpstreamAuthError(AssistantError):
    status_code = 503


class UsageUnavailable(AssistantError):
    status_code = 503


class UpstreamFailure(AssistantError):
    status_code = 500


class SequenceConflict(Exception):
    """Sequence numbers kept colliding after all retry attempts."""


class GenerationError(Exception):
    """Raised by the generation service; the message is used for classification."""
