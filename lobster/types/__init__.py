"""
Type definitions for the relay kernel.
Contains packet models and internal value types, grouped by module.
"""

from lobster.types.common import (
    QueueItem,
    RateLimitEntry,
    RateLimitResult,
    RetryPolicy,
    now_ms,
)
from lobster.types.packets import (
    AcceptedResponse,
    HealthResponse,
    InboundMessage,
    MessagePacket,
    ResponsePacket,
)

__all__ = [
    # Packets
    "MessagePacket",
    "ResponsePacket",
    "InboundMessage",
    "AcceptedResponse",
    "HealthResponse",
    # Internal values
    "QueueItem",
    "RetryPolicy",
    "RateLimitEntry",
    "RateLimitResult",
    "now_ms",
]
