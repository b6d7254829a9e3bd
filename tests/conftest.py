"""
Pytest configuration and shared fixtures.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any
from uuid import uuid4

import pytest

from lobster.adapters.base import AgentAdapter, InputAdapter, OutputAdapter
from lobster.config import Settings
from lobster.queue import QueueStore
from lobster.sessions import SessionStore
from lobster.types import MessagePacket, ResponsePacket


class FakeInput(InputAdapter):
    """Input adapter driven directly by tests through ``emit``."""

    name = "test"

    def __init__(self):
        super().__init__()
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True


class FakeOutput(OutputAdapter):
    """Output adapter that records deliveries, optionally failing each one."""

    name = "test"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[ResponsePacket] = []
        self.attempts = 0
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def send(self, response: ResponsePacket) -> None:
        self.attempts += 1
        if self.fail:
            raise RuntimeError("delivery failed")
        self.sent.append(response)


class EchoAgent(AgentAdapter):
    """
    Agent that replies with ``echo: <payload>``.

    ``gate`` holds every call until it is set; ``fail`` makes each call raise.
    """

    name = "echo"

    def __init__(self, gate: asyncio.Event | None = None, fail: bool = False):
        self.gate = gate
        self.fail = fail
        self.entered: list[MessagePacket] = []
        self.processed: list[MessagePacket] = []
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def process(self, message: MessagePacket) -> str:
        self.entered.append(message)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("agent exploded")
        self.processed.append(message)
        return f"echo: {message.payload}"


async def wait_for(
    predicate: Callable[[], Any | Awaitable[Any]],
    timeout: float = 5.0,
    interval: float = 0.01,
) -> None:
    """Poll a (possibly async) predicate until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return
        if loop.time() >= deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings."""
    return Settings(
        queue_base_path=tmp_path / "queues",
        session_store_path=tmp_path / "sessions.json",
        log_level="DEBUG",
        log_format="console",
        poll_interval_seconds=0.01,
        drain_poll_interval_seconds=0.01,
        shutdown_timeout_seconds=1.0,
    )


@pytest.fixture
def queue_store(tmp_path: Path) -> QueueStore:
    """Queue store rooted in a temporary directory."""
    return QueueStore(tmp_path / "queues")


@pytest.fixture
def session_store(tmp_path: Path) -> SessionStore:
    """Write-through session store in a temporary directory."""
    return SessionStore(tmp_path / "sessions.json", persist_mode="write_through")


@pytest.fixture
def make_message() -> Callable[..., MessagePacket]:
    """Factory for message packets."""

    def factory(payload: str = "hi", **overrides: Any) -> MessagePacket:
        fields: dict[str, Any] = {
            "id": f"msg-{uuid4().hex[:8]}",
            "source": "test",
            "channel_id": "c1",
            "user_id": "u1",
            "payload": payload,
        }
        fields.update(overrides)
        return MessagePacket(**fields)

    return factory
