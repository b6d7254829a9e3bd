"""
Queue reaper for crash recovery and archive housekeeping.

Items found in a processing partition at startup were being handled when the
previous process died. The reaper returns them to pending before the dispatch
loops start, so each one is processed again instead of being stranded. While
running, it periodically prunes old archives from the done partitions.
"""

import asyncio
import logging
from collections.abc import Sequence

from lobster.config import get_settings
from lobster.constants import INCOMING_QUEUE, OUTGOING_QUEUE
from lobster.queue.store import QueueStore

logger = logging.getLogger(__name__)


class Reaper:
    """
    Recovers orphaned items and prunes archives.

    Runs:
    1. Once at startup: move processing -> pending for every managed queue
    2. Periodically: delete done items older than the retention period
    """

    def __init__(
        self,
        queue_store: QueueStore,
        queue_names: Sequence[str] = (INCOMING_QUEUE, OUTGOING_QUEUE),
        interval_seconds: float | None = None,
        done_retention_seconds: float | None = None,
        requeue_on_startup: bool | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            queue_store: Store holding the managed queues.
            queue_names: Queues to recover and prune.
            interval_seconds: Seconds between prune runs.
            done_retention_seconds: Age after which archived items are deleted.
            requeue_on_startup: Whether ``recover_orphans`` requeues anything.
        """
        settings = get_settings()
        self.queue_store = queue_store
        self.queue_names = tuple(queue_names)
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self.done_retention_seconds = (
            done_retention_seconds
            if done_retention_seconds is not None
            else settings.done_retention_days * 24 * 60 * 60
        )
        self.requeue_on_startup = (
            requeue_on_startup if requeue_on_startup is not None else settings.requeue_orphans_on_startup
        )
        self._running = False

    async def recover_orphans(self) -> int:
        """
        Requeue items stranded in processing by a previous run.

        Must run before any consumer starts dequeuing.

        Returns:
            Number of items requeued.
        """
        if not self.requeue_on_startup:
            for name in self.queue_names:
                stranded = await self.queue_store.list_processing(name)
                if stranded:
                    logger.warning(
                        f"{len(stranded)} items left in processing; requeue disabled",
                        extra={"queue": name},
                    )
            return 0

        total = 0
        for name in self.queue_names:
            total += await self.queue_store.requeue_processing(name)

        if total > 0:
            logger.info(f"Recovered {total} orphaned items")
        return total

    async def start(self) -> None:
        """Start the prune loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True

        while self._running:
            try:
                pruned = await self.run_once()
                if pruned > 0:
                    logger.info(f"Pruned {pruned} archived items")
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            await asyncio.sleep(self.interval)

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False

    async def run_once(self) -> int:
        """
        Prune the done partitions once.

        Returns:
            Number of archived items deleted.
        """
        total = 0
        for name in self.queue_names:
            total += await self.queue_store.prune_done(name, self.done_retention_seconds)
        return total
