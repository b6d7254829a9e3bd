"""
Agent adapter for an opencode server.

One opencode session serves each chat channel, so the agent keeps the
conversation context across messages and, via the session store, across
restarts. Every remote call goes through the retry executor.
"""

import logging
from typing import Any

import httpx

from lobster.adapters.base import AgentAdapter
from lobster.config import get_settings
from lobster.constants import RESET_COMMANDS, SPAN_REMOTE_CALL
from lobster.errors import (
    RemoteRequestError,
    RetryExhausted,
    SessionPersistError,
    TransientRemoteError,
)
from lobster.observability.tracing import get_tracer
from lobster.sessions.store import SessionStore
from lobster.types.common import RetryPolicy
from lobster.types.packets import MessagePacket
from lobster.utils.retry import RetryExecutor

logger = logging.getLogger(__name__)

NO_RESPONSE = "[No response received from opencode]"
NO_RESPONSE_TEXT = "[No response text received]"
RESET_DONE = "Session reset! Starting a fresh conversation."
RESET_LOCAL_ONLY = "Session reset (local cache cleared). Starting fresh."
RESET_NOTHING = "No active session to reset. Starting fresh conversation."


class OpencodeAgent(AgentAdapter):
    """
    Relays messages to opencode sessions over its HTTP API.

    Endpoints used:
    - POST /session                 create a session
    - DELETE /session/{id}          delete a session
    - POST /session/{id}/message    prompt a session and wait for the reply
    """

    name = "opencode"

    def __init__(
        self,
        base_url: str | None = None,
        provider_id: str | None = None,
        model_id: str | None = None,
        session_store: SessionStore | None = None,
        retry_policy: RetryPolicy | None = None,
        retry_executor: RetryExecutor | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the agent.

        Args:
            base_url: opencode server URL.
            provider_id: Model provider; used together with ``model_id``.
            model_id: Model to prompt; server default if unset.
            session_store: Channel -> session mapping.
            retry_policy: Backoff for remote calls.
            retry_executor: Overrides the executor built from ``retry_policy``.
            timeout: Per-request timeout in seconds.
            transport: Custom httpx transport (used by tests).
        """
        settings = get_settings()

        self.base_url = base_url or settings.opencode_base_url
        self.provider_id = provider_id if provider_id is not None else settings.opencode_provider_id
        self.model_id = model_id if model_id is not None else settings.opencode_model_id
        self.sessions = session_store or SessionStore()
        self._retry = retry_executor or RetryExecutor(retry_policy or settings.retry_policy())
        self._timeout = timeout if timeout is not None else settings.opencode_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        await self.sessions.load()
        self._get_client()
        logger.info(f"OpencodeAgent initialized (connecting to {self.base_url})")

    async def stop(self) -> None:
        try:
            await self.sessions.close()
        finally:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
        logger.info("OpencodeAgent stopped")

    async def process(self, message: MessagePacket) -> str:
        """
        Produce a reply for a message.

        Reset commands clear the channel's session. Any other text is sent to
        the channel's session, creating one first if needed. Failures become
        an apology reply instead of an exception.
        """
        text = message.payload.strip()

        if text.lower() in RESET_COMMANDS:
            return await self.handle_reset(message.channel_id)

        try:
            session_id = await self._get_or_create_session(message)
            return await self._send_prompt(session_id, text)
        except Exception as e:
            error_message = str(e.last_error) if isinstance(e, RetryExhausted) else str(e)
            logger.error(
                f"OpencodeAgent error for channel {message.channel_id}: {error_message}",
                extra={"channel_id": message.channel_id, "message_id": message.id},
            )
            return f"I encountered an error: {error_message}. Please try again later."

    async def handle_reset(self, channel_id: str) -> str:
        """
        Forget a channel's session.

        The local mapping is cleared even if the remote delete fails, so the
        next message always starts a fresh conversation.
        """
        session_id = self.sessions.get(channel_id)
        if session_id is None:
            return RESET_NOTHING

        remote_deleted = True
        try:
            await self._call("DELETE", f"/session/{session_id}", operation_name="session.delete")
        except Exception as e:
            remote_deleted = False
            logger.error(
                f"Failed to delete session {session_id}: {e}",
                extra={"channel_id": channel_id},
            )

        try:
            await self.sessions.delete(channel_id)
        except SessionPersistError as e:
            logger.error(
                f"Session reset not persisted: {e}",
                extra={"channel_id": channel_id},
            )

        if remote_deleted:
            logger.info(f"Session reset for channel {channel_id}")
            return RESET_DONE
        return RESET_LOCAL_ONLY

    async def _get_or_create_session(self, message: MessagePacket) -> str:
        session_id = self.sessions.get(message.channel_id)
        if session_id is not None:
            return session_id

        logger.info(f"Creating new session for channel {message.channel_id}")
        data = await self._call(
            "POST",
            "/session",
            json={"title": f"{message.source} channel {message.channel_id}"},
            operation_name="session.create",
        )
        if not isinstance(data, dict) or not data.get("id"):
            raise RemoteRequestError("Failed to create session: no data returned")

        session_id = str(data["id"])
        await self.sessions.set(message.channel_id, session_id)
        return session_id

    async def _send_prompt(self, session_id: str, text: str) -> str:
        body: dict[str, Any] = {"parts": [{"type": "text", "text": text}]}
        if self.provider_id and self.model_id:
            body["model"] = {"providerID": self.provider_id, "modelID": self.model_id}

        data = await self._call(
            "POST",
            f"/session/{session_id}/message",
            json=body,
            operation_name="session.prompt",
        )
        if not data:
            return NO_RESPONSE

        parts = data.get("parts") if isinstance(data, dict) else None
        texts = [
            part.get("text", "")
            for part in parts or []
            if isinstance(part, dict) and part.get("type") == "text"
        ]
        if not texts:
            return NO_RESPONSE_TEXT
        return "\n".join(texts)

    async def _call(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        operation_name: str,
    ) -> Any:
        """Send a request with retries on transient failures."""
        return await self._retry.execute(
            lambda: self._request(method, path, json=json),
            retry_on=(TransientRemoteError,),
            operation_name=operation_name,
        )

    async def _request(self, method: str, path: str, *, json: Any = None) -> Any:
        with get_tracer().start_as_current_span(SPAN_REMOTE_CALL) as span:
            span.set_attribute("http.method", method)
            span.set_attribute("http.route", path)
            try:
                response = await self._get_client().request(method, path, json=json)
            except httpx.TransportError as e:
                raise TransientRemoteError(f"{method} {path} failed: {e}") from e
            span.set_attribute("http.status_code", response.status_code)

        if response.status_code >= 500:
            raise TransientRemoteError(f"{method} {path} returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise RemoteRequestError(
                f"{method} {path} returned HTTP {response.status_code}: {response.text[:200]}"
            )

        if not response.content:
            return None
        return response.json()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client
