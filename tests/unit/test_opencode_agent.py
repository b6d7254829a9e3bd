"""
Unit tests for the opencode agent adapter.
"""

import json
from collections.abc import AsyncGenerator, Callable

import httpx
import pytest

from lobster.adapters.opencode import (
    NO_RESPONSE,
    NO_RESPONSE_TEXT,
    RESET_DONE,
    RESET_LOCAL_ONLY,
    RESET_NOTHING,
    OpencodeAgent,
)
from lobster.sessions import SessionStore
from lobster.types import RetryPolicy
from lobster.utils import RetryExecutor


class FakeOpencode:
    """
    Minimal opencode server.

    Responses can be overridden per (method, path) with a list that is
    consumed one entry per request; the last entry repeats.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.overrides: dict[tuple[str, str], list[httpx.Response]] = {}
        self.next_session = 1
        self.reply_parts = [{"type": "text", "text": "Hello"}]

    def override(self, method: str, path: str, *responses: httpx.Response) -> None:
        self.overrides[(method, path)] = list(responses)

    def calls(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)

        if key in self.overrides:
            queued = self.overrides[key]
            return queued.pop(0) if len(queued) > 1 else queued[0]

        if key == ("POST", "/session"):
            session_id = f"s{self.next_session}"
            self.next_session += 1
            return httpx.Response(200, json={"id": session_id})

        if request.method == "DELETE":
            return httpx.Response(200, json=True)

        if request.method == "POST" and request.url.path.endswith("/message"):
            return httpx.Response(200, json={"info": {}, "parts": self.reply_parts})

        return httpx.Response(404)


@pytest.fixture
def server() -> FakeOpencode:
    return FakeOpencode()


@pytest.fixture
def make_agent(server: FakeOpencode, session_store: SessionStore) -> Callable[..., OpencodeAgent]:
    """Factory for agents wired to the fake server with instant retries."""

    async def no_sleep(delay: float) -> None:
        return None

    def factory(**kwargs) -> OpencodeAgent:
        policy = RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0)
        kwargs.setdefault("provider_id", "")
        kwargs.setdefault("model_id", "")
        return OpencodeAgent(
            base_url="http://opencode.test",
            session_store=session_store,
            retry_executor=RetryExecutor(policy, sleep=no_sleep),
            transport=httpx.MockTransport(server),
            **kwargs,
        )

    return factory


@pytest.fixture
async def agent(make_agent) -> AsyncGenerator[OpencodeAgent]:
    agent = make_agent()
    await agent.start()
    yield agent
    await agent.stop()


class TestProcess:
    """Tests for prompting sessions."""

    @pytest.mark.asyncio
    async def test_first_message_creates_session(self, agent, server, make_message, session_store):
        """Test that a new channel gets a session before its prompt."""
        reply = await agent.process(make_message("hi", source="http", channel_id="c1"))

        assert reply == "Hello"
        assert session_store.get("c1") == "s1"
        assert server.calls("POST", "/session") == 1
        assert server.calls("POST", "/session/s1/message") == 1

        create = next(r for r in server.requests if r.url.path == "/session")
        assert json.loads(create.content) == {"title": "http channel c1"}

        prompt = next(r for r in server.requests if r.url.path == "/session/s1/message")
        assert json.loads(prompt.content) == {"parts": [{"type": "text", "text": "hi"}]}

    @pytest.mark.asyncio
    async def test_session_reused(self, agent, server, make_message):
        """Test that later messages reuse the channel's session."""
        await agent.process(make_message("one"))
        await agent.process(make_message("two"))

        assert server.calls("POST", "/session") == 1
        assert server.calls("POST", "/session/s1/message") == 2

    @pytest.mark.asyncio
    async def test_channels_get_separate_sessions(self, agent, session_store, make_message):
        """Test that each channel has its own session."""
        await agent.process(make_message("a", channel_id="c1"))
        await agent.process(make_message("b", channel_id="c2"))

        assert session_store.get("c1") == "s1"
        assert session_store.get("c2") == "s2"

    @pytest.mark.asyncio
    async def test_text_parts_joined(self, agent, server, make_message):
        """Test that only text parts form the reply."""
        server.reply_parts = [
            {"type": "text", "text": "line one"},
            {"type": "tool", "tool": "bash"},
            {"type": "text", "text": "line two"},
        ]

        assert await agent.process(make_message()) == "line one\nline two"

    @pytest.mark.asyncio
    async def test_no_text_parts(self, agent, server, make_message):
        """Test the placeholder for replies without text."""
        server.reply_parts = [{"type": "tool", "tool": "bash"}]

        assert await agent.process(make_message()) == NO_RESPONSE_TEXT

    @pytest.mark.asyncio
    async def test_empty_reply(self, agent, server, make_message, session_store):
        """Test the placeholder for an empty response body."""
        await session_store.set("c1", "s1")
        server.override("POST", "/session/s1/message", httpx.Response(200))

        assert await agent.process(make_message(channel_id="c1")) == NO_RESPONSE

    @pytest.mark.asyncio
    async def test_model_selection(self, make_agent, server, make_message):
        """Test that a configured model is sent with the prompt."""
        agent = make_agent(provider_id="anthropic", model_id="claude")

        await agent.process(make_message("hi"))

        prompt = next(r for r in server.requests if r.url.path.endswith("/message"))
        assert json.loads(prompt.content)["model"] == {"providerID": "anthropic", "modelID": "claude"}
        await agent.stop()

    @pytest.mark.asyncio
    async def test_session_persisted(self, agent, make_message, session_store):
        """Test that a created session survives a restart."""
        await agent.process(make_message(channel_id="c7"))

        reloaded = SessionStore(session_store.path)
        await reloaded.load()
        assert reloaded.get("c7") == "s1"


class TestFailures:
    """Tests for remote failures."""

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, agent, server, make_message, session_store):
        """Test that a 5xx followed by success is retried."""
        await session_store.set("c1", "s1")
        server.override(
            "POST",
            "/session/s1/message",
            httpx.Response(503),
            httpx.Response(200, json={"parts": [{"type": "text", "text": "recovered"}]}),
        )

        assert await agent.process(make_message(channel_id="c1")) == "recovered"
        assert server.calls("POST", "/session/s1/message") == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_become_apology(self, agent, server, make_message, session_store):
        """Test that persistent failure yields an apology reply."""
        await session_store.set("c1", "s1")
        server.override("POST", "/session/s1/message", httpx.Response(500))

        reply = await agent.process(make_message(channel_id="c1"))

        assert reply == (
            "I encountered an error: POST /session/s1/message returned HTTP 500. "
            "Please try again later."
        )
        assert server.calls("POST", "/session/s1/message") == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, agent, server, make_message, session_store):
        """Test that a 4xx fails without retrying."""
        await session_store.set("c1", "s1")
        server.override("POST", "/session/s1/message", httpx.Response(400, text="bad request"))

        reply = await agent.process(make_message(channel_id="c1"))

        assert reply.startswith("I encountered an error: ")
        assert server.calls("POST", "/session/s1/message") == 1

    @pytest.mark.asyncio
    async def test_connection_error_retried(self, make_agent, make_message):
        """Test that transport errors are retried and reported."""
        attempts = []

        def refuse(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        agent = make_agent()
        agent._transport = httpx.MockTransport(refuse)

        reply = await agent.process(make_message())

        assert "connection refused" in reply
        assert len(attempts) == 3
        await agent.stop()

    @pytest.mark.asyncio
    async def test_session_create_without_id(self, agent, server, make_message):
        """Test that a malformed create response is reported."""
        server.override("POST", "/session", httpx.Response(200, json={}))

        reply = await agent.process(make_message())

        assert reply == (
            "I encountered an error: Failed to create session: no data returned. "
            "Please try again later."
        )


class TestReset:
    """Tests for reset commands."""

    @pytest.mark.asyncio
    async def test_reset_then_new_session(self, agent, server, make_message, session_store):
        """Test that reset deletes the session and the next message starts fresh."""
        await agent.process(make_message("hello", channel_id="c1"))
        assert session_store.get("c1") == "s1"

        reply = await agent.process(make_message("/reset", channel_id="c1"))

        assert reply == RESET_DONE
        assert server.calls("DELETE", "/session/s1") == 1
        assert session_store.get("c1") is None

        await agent.process(make_message("again", channel_id="c1"))
        assert session_store.get("c1") == "s2"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", ["/reset", "!reset", "  /RESET  "])
    async def test_reset_commands(self, agent, make_message, session_store, command):
        """Test the accepted reset spellings."""
        await session_store.set("c1", "s1")

        assert await agent.process(make_message(command, channel_id="c1")) == RESET_DONE

    @pytest.mark.asyncio
    async def test_reset_without_session(self, agent, server, make_message):
        """Test reset on a channel with no session."""
        reply = await agent.process(make_message("/reset", channel_id="c1"))

        assert reply == RESET_NOTHING
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_failed_remote_delete_still_clears_local(self, agent, server, make_message, session_store):
        """Test that the local mapping is cleared even when the remote delete fails."""
        await session_store.set("c1", "s1")
        server.override("DELETE", "/session/s1", httpx.Response(500))

        reply = await agent.process(make_message("/reset", channel_id="c1"))

        assert reply == RESET_LOCAL_ONLY
        assert session_store.get("c1") is None
        assert server.calls("DELETE", "/session/s1") == 3
