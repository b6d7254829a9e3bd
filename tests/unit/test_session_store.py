"""
Unit tests for the session store.
"""

import json
from pathlib import Path

import pytest

from lobster.errors import SessionPersistError
from lobster.sessions import SessionStore
from tests.conftest import wait_for


class TestWriteThrough:
    """Tests for write-through persistence."""

    @pytest.mark.asyncio
    async def test_set_survives_reload(self, session_store: SessionStore):
        """Test that a mapping is visible to a fresh store."""
        await session_store.set("c1", "s1")

        reloaded = SessionStore(session_store.path)
        await reloaded.load()

        assert reloaded.get("c1") == "s1"
        assert "c1" in reloaded
        assert len(reloaded) == 1

    @pytest.mark.asyncio
    async def test_snapshot_is_plain_object(self, session_store: SessionStore):
        """Test the on-disk format."""
        await session_store.set("c1", "s1")
        await session_store.set("c2", "s2")

        data = json.loads(session_store.path.read_text(encoding="utf-8"))
        assert data == {"c1": "s1", "c2": "s2"}

    @pytest.mark.asyncio
    async def test_delete(self, session_store: SessionStore):
        """Test that delete reports whether a mapping existed."""
        await session_store.set("c1", "s1")

        assert await session_store.delete("c1") is True
        assert await session_store.delete("c1") is False
        assert session_store.get("c1") is None

        data = json.loads(session_store.path.read_text(encoding="utf-8"))
        assert data == {}

    @pytest.mark.asyncio
    async def test_clear(self, session_store: SessionStore):
        """Test that clear empties the store."""
        await session_store.set("c1", "s1")
        await session_store.set("c2", "s2")

        await session_store.clear()

        assert len(session_store) == 0
        assert json.loads(session_store.path.read_text(encoding="utf-8")) == {}


class TestLoad:
    """Tests for loading snapshots."""

    @pytest.mark.asyncio
    async def test_missing_file_starts_empty(self, tmp_path: Path):
        """Test the first-run case."""
        store = SessionStore(tmp_path / "absent.json")
        await store.load()

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_corrupt_file_starts_empty(self, tmp_path: Path):
        """Test that a corrupt snapshot is not fatal."""
        path = tmp_path / "sessions.json"
        path.write_text("{not json", encoding="utf-8")

        store = SessionStore(path)
        await store.load()

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_non_object_snapshot_starts_empty(self, tmp_path: Path):
        """Test that a snapshot of the wrong shape is ignored."""
        path = tmp_path / "sessions.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")

        store = SessionStore(path)
        await store.load()

        assert len(store) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [None, 42, "", ["s1"]])
    async def test_non_string_session_id_starts_empty(self, tmp_path: Path, value):
        """Test that a snapshot with a bad session id is treated as corrupt."""
        path = tmp_path / "sessions.json"
        path.write_text(json.dumps({"c1": value, "c2": "s2"}), encoding="utf-8")

        store = SessionStore(path)
        await store.load()

        assert len(store) == 0
        assert store.get("c1") is None
        assert store.get("c2") is None


class TestSaveFailure:
    """Tests for failed snapshot writes."""

    @pytest.mark.asyncio
    async def test_failed_save_raises_and_cleans_up(self, tmp_path: Path):
        """Test that a failed replace surfaces an error and leaves no temp file."""
        path = tmp_path / "sessions.json"
        path.mkdir()

        store = SessionStore(path, persist_mode="write_through")

        with pytest.raises(SessionPersistError):
            await store.set("c1", "s1")

        assert not store.tmp_path.exists()
        assert path.is_dir()


class TestDebounced:
    """Tests for debounced persistence."""

    @pytest.mark.asyncio
    async def test_flush_writes_pending_changes(self, tmp_path: Path):
        """Test that flush saves changes made within the debounce window."""
        store = SessionStore(tmp_path / "sessions.json", persist_mode="debounced", debounce_seconds=60)

        await store.set("c1", "s1")
        await store.set("c2", "s2")
        assert not store.path.exists()

        await store.flush()

        data = json.loads(store.path.read_text(encoding="utf-8"))
        assert data == {"c1": "s1", "c2": "s2"}

    @pytest.mark.asyncio
    async def test_saves_after_delay(self, tmp_path: Path):
        """Test that a debounced change is written without an explicit flush."""
        store = SessionStore(tmp_path / "sessions.json", persist_mode="debounced", debounce_seconds=0.01)

        await store.set("c1", "s1")

        await wait_for(store.path.exists)
        assert json.loads(store.path.read_text(encoding="utf-8")) == {"c1": "s1"}

    @pytest.mark.asyncio
    async def test_close_flushes(self, tmp_path: Path):
        """Test that closing the store writes pending changes."""
        store = SessionStore(tmp_path / "sessions.json", persist_mode="debounced", debounce_seconds=60)
        await store.set("c1", "s1")

        await store.close()

        assert json.loads(store.path.read_text(encoding="utf-8")) == {"c1": "s1"}

    @pytest.mark.asyncio
    async def test_flush_without_changes_writes_snapshot(self, tmp_path: Path):
        """Test that flush with nothing pending still writes the mapping."""
        store = SessionStore(tmp_path / "sessions.json", persist_mode="debounced")

        await store.flush()

        assert json.loads(store.path.read_text(encoding="utf-8")) == {}
