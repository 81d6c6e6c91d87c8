"""Upstream throttle cooldown.

After the generation service reports a quota/429 error, new requests are
rejected locally until the cooldown elapses. State is in-memory, resets on
server restart, and is per process: a multi-instance deployment gets one
cooldown per instance.
"""

import logging
import math
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

BASE_COOLDOWN_MS = 30_000
MAX_COOLDOWN_MS = 300_000
HINT_BUFFER_MS = 5_000

# "Please retry in 12.5s" / "retry in 3 s" / "retryDelay": "12s"
_RETRY_HINT_PATTERNS = (
    re.compile(r"retry in\s+(\d+(?:\.\d+)?)\s*s", re.IGNORECASE),
    re.compile(r"retryDelay\W+(\d+(?:\.\d+)?)s", re.IGNORECASE),
)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


def parse_retry_hint(message: str) -> Optional[float]:
    """Return the retry delay in seconds suggested by an upstream error, if any."""
    if not message:
        return None
    for pattern in _RETRY_HINT_PATTERNS:
        match = pattern.search(message)
        if match:
            return float(match.group(1))
    return None


@dataclass
class RateLimitStatus:
    limited: bool
    retry_in_seconds: int = 0


class RateLimitGovernor:
    """Two-state machine: Open (requests allowed) and Cooling.

    The backoff multiplier never resets; once the cooldown has elapsed the
    governor is simply Open again and the next throttle doubles from the last
    cooldown. No lock: concurrent requests can only make a cooldown slightly
    shorter or longer.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or _monotonic_ms
        self.last_rate_limit_error: Optional[float] = None
        self.cooldown_ms: int = 0

    def is_limited(self) -> RateLimitStatus:
        if self.last_rate_limit_error is None:
            return RateLimitStatus(limited=False)

        elapsed = self._clock() - self.last_rate_limit_error
        if elapsed >= self.cooldown_ms:
            return RateLimitStatus(limited=False)

        return RateLimitStatus(
            limited=True,
            retry_in_seconds=math.ceil((self.cooldown_ms - elapsed) / 1000),
        )

    def record_throttle(self, upstream_error_message: str) -> int:
        """Enter the Cooling state. Returns the wait in whole seconds."""
        hint_seconds = parse_retry_hint(upstream_error_message)

        if hint_seconds is not None:
            self.cooldown_ms = math.ceil(hint_seconds * 1000) + HINT_BUFFER_MS
        else:
            self.cooldown_ms = min(max(self.cooldown_ms * 2, BASE_COOLDOWN_MS), MAX_COOLDOWN_MS)

        self.last_rate_limit_error = self._clock()
        retry_seconds = math.ceil(self.cooldown_ms / 1000)

        logger.warning(
            f"[RateLimit] Upstream throttled, cooling down for {self.cooldown_ms}ms "
            f"(hint={hint_seconds})"
        )
        return retry_seconds


# Process-wide instance used by the API
_governor = RateLimitGovernor()


def get_governor() -> RateLimitGovernor:
    """Get the process-wide rate limit governor."""
    return _governor
