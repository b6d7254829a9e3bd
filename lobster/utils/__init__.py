"""
Utilities shared by the kernel and adapters.
"""

from lobster.utils.rate_limit import RateLimiter
from lobster.utils.retry import RetryExecutor, retry_with_backoff
from lobster.utils.validation import validate_message_packet

__all__ = [
    "RateLimiter",
    "RetryExecutor",
    "retry_with_backoff",
    "validate_message_packet",
]
