"""
Per-key fixed-window rate limiting.
"""

import math
import time
from collections.abc import Callable

from lobster.types.common import RateLimitEntry, RateLimitResult


class RateLimiter:
    """
    In-memory fixed-window rate limiter.

    Each key (usually a channel id) may make ``max_per_window`` requests per
    window. The window starts with the key's first request and restarts with
    the first request after it expires.
    """

    def __init__(
        self,
        max_per_window: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the rate limiter.

        Args:
            max_per_window: Requests allowed per key per window.
            window_seconds: Window length.
            clock: Monotonic time source (injectable for tests).
        """
        self._max_per_window = max_per_window
        self._window_seconds = window_seconds
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}

    def check(self, key: str) -> RateLimitResult:
        """
        Count a request for a key.

        Args:
            key: Rate limit key.

        Returns:
            RateLimitResult; when denied, ``retry_after_seconds`` is the
            remaining window rounded up to whole seconds.
        """
        now = self._clock()
        entry = self._entries.get(key)

        if entry is None:
            self._entries[key] = RateLimitEntry(count=1, reset_at=now + self._window_seconds)
            return RateLimitResult(allowed=True)

        if now >= entry.reset_at:
            entry.count = 1
            entry.reset_at = now + self._window_seconds
            return RateLimitResult(allowed=True)

        if entry.count >= self._max_per_window:
            retry_after = max(1, math.ceil(entry.reset_at - now))
            return RateLimitResult(allowed=False, retry_after_seconds=retry_after)

        entry.count += 1
        return RateLimitResult(allowed=True)

    def cleanup(self) -> int:
        """
        Drop entries whose window has expired.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.reset_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def reset(self, key: str) -> None:
        """Reset rate limit for a key."""
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
