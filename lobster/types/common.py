"""
Internal value types shared by the queue, retry and rate-limit layers.
"""

import time
from dataclasses import dataclass
from typing import Any


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class QueueItem:
    """
    A single durable queue record.

    The id sorts lexicographically in enqueue order, so the oldest pending
    item is always the smallest id.
    """

    id: str
    data: Any
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "data": self.data, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "QueueItem":
        return cls(id=raw["id"], data=raw["data"], timestamp=raw["timestamp"])


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff settings. Delays are in seconds."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0


@dataclass
class RateLimitEntry:
    """Request counter for one key within its current window."""

    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate-limit check."""

    allowed: bool
    retry_after_seconds: int | None = None
