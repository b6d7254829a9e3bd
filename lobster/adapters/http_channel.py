"""
HTTP input channel.

Serves the FastAPI application in-process with uvicorn. Each accepted
request is rate limited per chat channel, validated and emitted to the
kernel; the reply goes out through the output adapter of the same name.
"""

import asyncio
import contextlib
import logging
from uuid import uuid4

import uvicorn

from lobster.adapters.base import InputAdapter
from lobster.api.main import create_app
from lobster.config import get_settings
from lobster.errors import ConfigurationError, RateLimitExceeded, ValidationError
from lobster.observability.metrics import get_metrics
from lobster.types.packets import InboundMessage, MessagePacket
from lobster.utils.rate_limit import RateLimiter
from lobster.utils.validation import validate_message_packet

logger = logging.getLogger(__name__)


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class HttpInputAdapter(InputAdapter):
    """Accepts chat messages on ``POST /v1/messages``."""

    name = "http"

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        rate_limiter: RateLimiter | None = None,
        max_message_length: int | None = None,
        cleanup_interval: float | None = None,
    ):
        super().__init__()
        settings = get_settings()

        self.host = host or settings.input_host
        self.port = port if port is not None else settings.input_port
        self.rate_limiter = rate_limiter or RateLimiter(
            settings.rate_limit_per_minute,
            settings.rate_limit_window_seconds,
        )
        self.max_message_length = max_message_length or settings.max_message_length
        self.cleanup_interval = cleanup_interval or settings.rate_limit_cleanup_interval_seconds
        self._log_level = settings.log_level.lower()
        self._metrics = get_metrics()

        self.app = create_app(self)
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task | None = None
        self._cleanup_task: asyncio.Task | None = None

    async def submit(self, inbound: InboundMessage) -> MessagePacket | None:
        """
        Admit a submitted message.

        Args:
            inbound: The request body.

        Returns:
            The emitted packet, or None if the kernel is not accepting.

        Raises:
            RateLimitExceeded: If the chat channel is over its limit.
            ValidationError: If the packet is malformed.
        """
        result = self.rate_limiter.check(inbound.channel_id)
        if not result.allowed:
            retry_after = result.retry_after_seconds or 1
            logger.warning(
                f"Rate limit exceeded for channel {inbound.channel_id}. Retry in {retry_after}s",
                extra={"channel_id": inbound.channel_id},
            )
            self._metrics.record_rate_limited(self.name)
            raise RateLimitExceeded(
                f"Rate limit exceeded for channel {inbound.channel_id}",
                retry_after_seconds=retry_after,
            )

        packet = MessagePacket(
            id=inbound.id or uuid4().hex,
            source=self.name,
            channel_id=inbound.channel_id,
            user_id=inbound.user_id,
            payload=inbound.payload,
            metadata=inbound.metadata,
        )

        try:
            validate_message_packet(packet, self.max_message_length)
        except ValidationError as e:
            logger.warning(
                f"Rejected invalid message: {e}",
                extra={"channel_id": inbound.channel_id, "message_id": packet.id},
            )
            self._metrics.record_rejected("invalid")
            raise

        if not await self.emit(packet):
            return None
        return packet

    async def start(self) -> None:
        """
        Serve the app and start the rate limit cleanup timer.

        Returns once the server is accepting connections.

        Raises:
            ConfigurationError: The server could not start, e.g. the port is taken.
        """
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self._log_level,
            log_config=None,
        )
        server = _EmbeddedServer(config)
        task = asyncio.create_task(self._serve(server), name="lobster-http")

        while not server.started:
            if task.done():
                # Raises the startup error, if any
                task.result()
                raise ConfigurationError(f"HTTP channel exited during startup on {self.host}:{self.port}")
            await asyncio.sleep(0.01)

        self._server = server
        self._server_task = task
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="lobster-http-cleanup")
        logger.info(f"HTTP channel listening on {self.host}:{self.bound_port}")

    @property
    def bound_port(self) -> int:
        """Port actually bound, which differs from ``port`` when it is 0."""
        if self._server is None or not self._server.servers:
            return self.port
        return self._server.servers[0].sockets[0].getsockname()[1]

    async def _serve(self, server: uvicorn.Server) -> None:
        try:
            await server.serve()
        except SystemExit as e:
            raise ConfigurationError(
                f"HTTP channel could not start on {self.host}:{self.port} (exit code {e.code})"
            ) from e

    async def stop(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        if self._server is not None:
            self._server.should_exit = True
        if self._server_task is not None:
            await self._server_task
            self._server_task = None
        self._server = None
        logger.info("HTTP channel stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            removed = self.rate_limiter.cleanup()
            if removed:
                logger.debug(f"Removed {removed} expired rate limit entries")
