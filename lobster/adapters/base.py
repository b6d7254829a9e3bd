"""
Collaborator contracts consumed by the dispatch kernel.

Adapters are looked up by ``name``. A reply is routed to the output adapter
whose name equals the ``source`` of the message it answers, so a channel's
input and output adapters share a name.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from lobster.types.packets import MessagePacket, ResponsePacket

if TYPE_CHECKING:
    from lobster.kernel.channel import MessageChannel

logger = logging.getLogger(__name__)


class Adapter(ABC):
    """Common lifecycle of every collaborator."""

    name: str

    @abstractmethod
    async def start(self) -> None:
        """Acquire connections and begin work."""

    @abstractmethod
    async def stop(self) -> None:
        """Release connections. Must tolerate being called without start."""


class InputAdapter(Adapter):
    """
    Receives messages from an external channel.

    The kernel connects a MessageChannel before ``start``; the adapter
    delivers each normalized packet with ``emit``.
    """

    def __init__(self):
        self._channel: "MessageChannel | None" = None

    def connect(self, channel: "MessageChannel") -> None:
        self._channel = channel

    async def emit(self, packet: MessagePacket) -> bool:
        """
        Hand a packet to the kernel.

        Returns:
            False if no kernel is connected or the channel is closed.
        """
        if self._channel is None:
            logger.warning(
                "No kernel connected, dropping message",
                extra={"adapter": self.name, "message_id": packet.id},
            )
            return False
        return await self._channel.send(packet)


class OutputAdapter(Adapter):
    """Delivers agent replies back to an external channel."""

    @abstractmethod
    async def send(self, response: ResponsePacket) -> None:
        """Deliver a reply. Raise on failure; the kernel logs and moves on."""


class AgentAdapter(Adapter):
    """Turns a message into reply text, usually by calling a remote agent."""

    @abstractmethod
    async def process(self, message: MessagePacket) -> str:
        """Produce the reply text for a message."""
