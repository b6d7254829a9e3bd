"""
Bounded retry with exponential backoff for flaky remote calls.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from lobster.errors import RetryExhausted
from lobster.observability.metrics import get_metrics
from lobster.types.common import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Sleep = Callable[[float], Awaitable[None]]


class RetryExecutor:
    """
    Runs an async operation until it succeeds or the attempt budget is spent.

    The delay before the second attempt is ``initial_delay``; each later delay
    is the previous one times ``backoff_multiplier``, capped at ``max_delay``.
    """

    def __init__(self, policy: RetryPolicy | None = None, sleep: Sleep = asyncio.sleep):
        """
        Initialize the executor.

        Args:
            policy: Default policy for ``execute``.
            sleep: Awaitable used to wait between attempts (injectable for tests).
        """
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._metrics = get_metrics()

    async def execute(
        self,
        operation: Operation[T],
        policy: RetryPolicy | None = None,
        *,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        operation_name: str | None = None,
    ) -> T:
        """
        Call ``operation`` with retries.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt.
            policy: Overrides the executor's default policy.
            retry_on: Exception types that trigger a retry. Anything else
                propagates immediately.
            operation_name: Label for logs and metrics.

        Returns:
            The operation's result.

        Raises:
            RetryExhausted: Every attempt failed with a retryable error.
        """
        policy = policy or self.policy
        name = operation_name or getattr(operation, "__name__", "operation")
        delay = policy.initial_delay
        attempts = max(1, policy.max_attempts)

        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except retry_on as e:
                if attempt == attempts:
                    raise RetryExhausted(
                        f"Max retry attempts ({attempts}) reached for {name}",
                        last_error=e,
                        attempts=attempt,
                    ) from e

                logger.warning(
                    f"Attempt {attempt}/{attempts} of {name} failed, retrying in {delay:.2f}s: {e}",
                    extra={"operation": name, "attempt": attempt},
                )
                self._metrics.record_retry(name)

                await self._sleep(delay)
                delay = min(delay * policy.backoff_multiplier, policy.max_delay)

        raise AssertionError("unreachable")


async def retry_with_backoff(
    operation: Operation[T],
    policy: RetryPolicy | None = None,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """Functional form of ``RetryExecutor.execute``."""
    return await RetryExecutor(policy).execute(operation, retry_on=retry_on)
