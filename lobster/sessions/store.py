"""
Durable channel -> remote session mapping.

The whole mapping is stored as one JSON object and replaced on every save by
writing a temp file and renaming it over the previous snapshot, so readers
never observe a half-written file.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Literal

from lobster.config import get_settings
from lobster.constants import TEMP_EXTENSION
from lobster.errors import SessionPersistError

logger = logging.getLogger(__name__)

PersistMode = Literal["write_through", "debounced"]


class SessionStore:
    """
    Maps a conversation channel to the remote agent session serving it.

    In ``write_through`` mode every mutation is on disk before it returns. In
    ``debounced`` mode mutations schedule a single save after a short delay;
    call ``flush()`` before shutting down.
    """

    def __init__(
        self,
        path: Path | str | None = None,
        persist_mode: PersistMode | None = None,
        debounce_seconds: float | None = None,
    ):
        """
        Initialize the session store.

        Args:
            path: Snapshot file. Defaults to the configured ``session_store_path``.
            persist_mode: ``write_through`` or ``debounced``.
            debounce_seconds: Delay before a debounced save.
        """
        settings = get_settings()

        self.path = Path(path) if path is not None else settings.session_store_path
        self.tmp_path = self.path.with_name(self.path.name + TEMP_EXTENSION)
        self.persist_mode: PersistMode = persist_mode or settings.session_persist_mode
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None else settings.session_save_debounce_seconds
        )

        self._sessions: dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._pending_save: asyncio.Task | None = None
        self._flush_requested = asyncio.Event()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._sessions

    async def load(self) -> None:
        """
        Read the snapshot into memory.

        A missing file is the normal first-run case. An unreadable or corrupt
        file is logged and also yields an empty mapping.
        """
        try:
            data = await asyncio.to_thread(self._read)
        except FileNotFoundError:
            logger.info(
                "No existing sessions found (first run), starting fresh",
                extra={"path": str(self.path)},
            )
            self._sessions = {}
            return
        except (OSError, ValueError) as e:
            logger.warning(
                f"Could not load sessions, starting fresh: {e}",
                extra={"path": str(self.path)},
            )
            self._sessions = {}
            return

        if not isinstance(data, dict):
            logger.warning(
                "Session snapshot is not an object, starting fresh",
                extra={"path": str(self.path)},
            )
            self._sessions = {}
            return

        if not all(isinstance(v, str) and v for v in data.values()):
            logger.warning(
                "Session snapshot has non-string session ids, starting fresh",
                extra={"path": str(self.path)},
            )
            self._sessions = {}
            return

        self._sessions = dict(data)
        logger.info("Loaded sessions", extra={"count": len(self._sessions)})

    async def save(self) -> None:
        """
        Atomically replace the snapshot with the current mapping.

        Raises:
            SessionPersistError: The snapshot could not be written. The temp
                file is removed and the previous snapshot is left intact.
        """
        async with self._lock:
            snapshot = dict(self._sessions)
            try:
                await asyncio.to_thread(self._write, snapshot)
            except OSError as e:
                logger.error(f"Failed to save sessions: {e}", extra={"path": str(self.path)})
                raise SessionPersistError(f"Failed to save sessions to {self.path}") from e

    def get(self, channel_id: str) -> str | None:
        return self._sessions.get(channel_id)

    async def set(self, channel_id: str, session_id: str) -> None:
        """Assign a session to a channel and persist."""
        self._sessions[channel_id] = session_id
        await self._persist()

    async def delete(self, channel_id: str) -> bool:
        """
        Forget a channel's session.

        Returns:
            True if the channel had a session.
        """
        existed = self._sessions.pop(channel_id, None) is not None
        if existed:
            await self._persist()
        return existed

    async def clear(self) -> None:
        """Forget every session and persist."""
        self._sessions.clear()
        await self._persist()

    async def flush(self) -> None:
        """Write any pending debounced change now."""
        task = self._pending_save
        if task is not None and not task.done():
            self._flush_requested.set()
            await task
        else:
            await self.save()

    async def close(self) -> None:
        """Flush pending changes before the store is discarded."""
        await self.flush()
        logger.debug("Session store closed", extra={"count": len(self._sessions)})

    async def _persist(self) -> None:
        if self.persist_mode == "write_through":
            await self.save()
            return

        if self._pending_save is None or self._pending_save.done():
            self._pending_save = asyncio.create_task(self._debounced_save())

    async def _debounced_save(self) -> None:
        try:
            await asyncio.wait_for(self._flush_requested.wait(), timeout=self.debounce_seconds)
        except asyncio.TimeoutError:
            pass

        self._flush_requested.clear()
        # Changes made while this save runs schedule a fresh one
        self._pending_save = None

        try:
            await self.save()
        except SessionPersistError:
            logger.warning("Debounced session save failed; next change will retry")

    def _read(self) -> object:
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, snapshot: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.tmp_path, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(self.tmp_path, self.path)
        except OSError:
            self.tmp_path.unlink(missing_ok=True)
            raise
