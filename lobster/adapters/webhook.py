"""
HTTP output channel: POSTs each reply to a configured webhook.
"""

import logging

import httpx

from lobster.adapters.base import OutputAdapter
from lobster.config import get_settings
from lobster.errors import ConfigurationError
from lobster.types.packets import ResponsePacket

logger = logging.getLogger(__name__)


class WebhookOutputAdapter(OutputAdapter):
    """Delivers replies for messages that arrived over HTTP."""

    name = "http"

    def __init__(
        self,
        url: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url or get_settings().output_webhook_url
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        if not self.url:
            raise ConfigurationError("output_webhook_url is not set")
        self._get_client()
        logger.info(f"Webhook output delivering to {self.url}")

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, response: ResponsePacket) -> None:
        """
        POST a reply as JSON.

        Raises:
            ConfigurationError: If no webhook URL is configured.
            httpx.HTTPError: If the request fails or returns an error status.
        """
        if not self.url:
            raise ConfigurationError("output_webhook_url is not set")

        result = await self._get_client().post(self.url, json=response.model_dump(mode="json"))
        result.raise_for_status()
        logger.info(
            f"Delivered reply to channel {response.channel_id}",
            extra={"message_id": response.original_message_id, "status_code": result.status_code},
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client
