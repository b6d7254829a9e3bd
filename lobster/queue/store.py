"""
File-backed durable queue store.

Each named queue is three sibling directories under the base path:

    <name>/              pending items, one <id>.json file each
    <name>_processing/   items claimed by a consumer
    <name>_done/         archived items

An item moves between partitions with a single rename, so at any instant it
lives in exactly one of them, even if the process dies mid-transition. The
rename out of the pending directory is also the only mutual exclusion between
concurrent consumers: whoever renames first owns the item.
"""

import asyncio
import json
import logging
import os
import time
from pathlib import Path
from typing import Any
from uuid import uuid4

from lobster.config import get_settings
from lobster.constants import DONE_SUFFIX, ITEM_EXTENSION, PROCESSING_SUFFIX, TEMP_EXTENSION
from lobster.errors import QueueIOError
from lobster.observability.metrics import get_metrics
from lobster.types.common import QueueItem, now_ms

logger = logging.getLogger(__name__)


def generate_item_id() -> str:
    """
    Generate a queue item id whose lexicographic order follows enqueue order.

    Ids created within the same millisecond are ordered by their random suffix,
    so FIFO order is only approximate for same-millisecond enqueues.
    """
    return f"{now_ms():013d}_{uuid4().hex[:9]}"


class QueueStore:
    """
    Durable named FIFO queues with a pending -> processing -> done lifecycle.

    Blocking filesystem work runs in worker threads so the event loop keeps
    serving the other dispatch loop while a file is written or moved.
    """

    def __init__(self, base_path: Path | str | None = None):
        """
        Initialize the queue store.

        Args:
            base_path: Directory holding all queue partitions.
                Defaults to the configured ``queue_base_path``.
        """
        self.base_path = Path(base_path) if base_path is not None else get_settings().queue_base_path
        self._queues: set[str] = set()
        self._depths: dict[str, int] = {}
        self._metrics = get_metrics()

    # ------------------------------------------------------------------
    # Partition layout
    # ------------------------------------------------------------------

    def pending_dir(self, name: str) -> Path:
        return self.base_path / name

    def processing_dir(self, name: str) -> Path:
        return self.base_path / f"{name}{PROCESSING_SUFFIX}"

    def done_dir(self, name: str) -> Path:
        return self.base_path / f"{name}{DONE_SUFFIX}"

    async def register_queue(self, name: str) -> None:
        """
        Ensure the three partitions for a queue exist.

        Idempotent. The first registration seeds the depth counter from the
        pending items already on disk.

        Args:
            name: Queue name.
        """
        if name in self._queues:
            return

        await asyncio.to_thread(self._create_partitions, name)
        self._queues.add(name)

        await self.refresh_depth(name)

    def _create_partitions(self, name: str) -> None:
        for directory in (self.pending_dir(name), self.processing_dir(name), self.done_dir(name)):
            directory.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Depth tracking
    # ------------------------------------------------------------------

    def depth(self, name: str) -> int:
        """Return the tracked number of pending items (0 for unknown queues)."""
        return self._depths.get(name, 0)

    async def refresh_depth(self, name: str) -> None:
        """Resynchronize the tracked depth with the pending items on disk."""
        await self.register_queue(name)
        try:
            items = await asyncio.to_thread(_list_items, self.pending_dir(name))
            self._depths[name] = len(items)
        except OSError:
            self._depths[name] = 0

        self._metrics.update_queue_depth(name, self._depths[name])

    # ------------------------------------------------------------------
    # Item lifecycle
    # ------------------------------------------------------------------

    async def enqueue(self, name: str, data: Any) -> str:
        """
        Durably append an item to a queue.

        The record is written to a hidden temp file and renamed into place, so
        a crash mid-write never leaves a partial item visible to consumers.

        Args:
            name: Queue name.
            data: JSON-serializable payload.

        Returns:
            The new item id.
        """
        await self.register_queue(name)

        item = QueueItem(id=generate_item_id(), data=data, timestamp=now_ms())
        await asyncio.to_thread(_write_item, self.pending_dir(name), item)

        self._depths[name] = self._depths.get(name, 0) + 1
        self._metrics.record_enqueued(name, self._depths[name])

        logger.debug("Enqueued item", extra={"queue": name, "item_id": item.id})
        return item.id

    async def dequeue(self, name: str) -> QueueItem | None:
        """
        Claim the oldest pending item.

        Returns None when the queue is empty, when another consumer claimed the
        item first, or when the item could not be moved or read. Failures are
        logged and the file is left where it is for inspection.

        Args:
            name: Queue name.

        Returns:
            The claimed item, now in the processing partition, or None.
        """
        await self.register_queue(name)

        try:
            pending = await asyncio.to_thread(_list_items, self.pending_dir(name))
        except OSError as e:
            logger.error(f"Could not list queue {name}: {e}", extra={"queue": name})
            return None

        if not pending:
            return None

        file_name = pending[0]
        source = self.pending_dir(name) / file_name
        target = self.processing_dir(name) / file_name

        try:
            await asyncio.to_thread(os.rename, source, target)
        except FileNotFoundError:
            # Claimed by a concurrent consumer
            logger.debug("Item already claimed", extra={"queue": name, "file": file_name})
            return None
        except OSError as e:
            logger.error(
                f"Error moving queue file {file_name}: {e}",
                extra={"queue": name, "file": file_name},
            )
            return None

        self._depths[name] = max(0, self._depths.get(name, 0) - 1)
        self._metrics.update_queue_depth(name, self._depths[name])

        try:
            return await asyncio.to_thread(_read_item, target)
        except (OSError, QueueIOError) as e:
            logger.error(
                f"Error reading queue file {file_name}: {e}",
                extra={"queue": name, "file": file_name},
            )
            return None

    async def complete(self, name: str, item_id: str, outcome: str = "done") -> None:
        """
        Archive a processed item into the done partition.

        Idempotent: completing an item that is not in processing (already
        completed, or never dequeued) is a no-op.

        Args:
            name: Queue name.
            item_id: Id of the item returned by dequeue.
            outcome: Label recorded in metrics (e.g. "succeeded", "failed").
        """
        await self.register_queue(name)

        file_name = f"{item_id}{ITEM_EXTENSION}"
        source = self.processing_dir(name) / file_name
        target = self.done_dir(name) / file_name

        try:
            await asyncio.to_thread(os.rename, source, target)
        except FileNotFoundError:
            logger.debug("Item not in processing", extra={"queue": name, "item_id": item_id})
            return
        except OSError as e:
            logger.warning(
                f"Could not complete item {item_id}: {e}",
                extra={"queue": name, "item_id": item_id},
            )
            return

        self._metrics.record_completed(name, outcome)

    # ------------------------------------------------------------------
    # Recovery and housekeeping
    # ------------------------------------------------------------------

    async def requeue_processing(self, name: str) -> int:
        """
        Move every item left in processing back to pending.

        Items are stranded in processing when the process dies while handling
        them. Only safe to call while no consumer is running.

        Returns:
            Number of items requeued.
        """
        await self.register_queue(name)

        count = await asyncio.to_thread(self._requeue_all, name)
        await self.refresh_depth(name)

        if count:
            self._metrics.record_requeued(name, count)
            logger.info(f"Requeued {count} orphaned items", extra={"queue": name})
        return count

    def _requeue_all(self, name: str) -> int:
        count = 0
        for file_name in _list_items(self.processing_dir(name)):
            try:
                os.rename(self.processing_dir(name) / file_name, self.pending_dir(name) / file_name)
                count += 1
            except FileNotFoundError:
                continue
        return count

    async def prune_done(self, name: str, older_than_seconds: float) -> int:
        """
        Delete archived items older than the given age.

        Returns:
            Number of items removed.
        """
        await self.register_queue(name)
        cutoff = time.time() - older_than_seconds
        return await asyncio.to_thread(self._prune, self.done_dir(name), cutoff)

    @staticmethod
    def _prune(directory: Path, cutoff: float) -> int:
        removed = 0
        for file_name in _list_items(directory):
            path = directory / file_name
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink(missing_ok=True)
                    removed += 1
            except FileNotFoundError:
                continue
        return removed

    async def list_pending(self, name: str) -> list[str]:
        """Ids of pending items, oldest first."""
        await self.register_queue(name)
        return [_item_id(f) for f in await asyncio.to_thread(_list_items, self.pending_dir(name))]

    async def list_processing(self, name: str) -> list[str]:
        """Ids of items currently claimed."""
        await self.register_queue(name)
        return [_item_id(f) for f in await asyncio.to_thread(_list_items, self.processing_dir(name))]

    async def list_done(self, name: str) -> list[str]:
        """Ids of archived items."""
        await self.register_queue(name)
        return [_item_id(f) for f in await asyncio.to_thread(_list_items, self.done_dir(name))]


def _list_items(directory: Path) -> list[str]:
    """Sorted item file names in a partition; temp and foreign files are ignored."""
    try:
        names = os.listdir(directory)
    except FileNotFoundError:
        return []
    return sorted(n for n in names if n.endswith(ITEM_EXTENSION) and not n.startswith("."))


def _item_id(file_name: str) -> str:
    return file_name[: -len(ITEM_EXTENSION)]


def _write_item(directory: Path, item: QueueItem) -> None:
    final_path = directory / f"{item.id}{ITEM_EXTENSION}"
    tmp_path = directory / f".{item.id}{ITEM_EXTENSION}{TEMP_EXTENSION}"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(item.to_dict(), f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, final_path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def _read_item(path: Path) -> QueueItem:
    with open(path, "r", encoding="utf-8") as f:
        try:
            return QueueItem.from_dict(json.load(f))
        except (ValueError, KeyError, TypeError) as e:
            raise QueueIOError(f"Corrupt queue record {path.name}") from e
