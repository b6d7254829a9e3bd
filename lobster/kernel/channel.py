"""
Hand-off channel between an input adapter and the kernel's admission step.
"""

import asyncio

from lobster.types.packets import MessagePacket

_CLOSED = object()


class MessageChannel:
    """
    Single-producer, single-consumer stream of inbound packets.

    The input adapter sends packets; the kernel iterates the channel and runs
    admission control on each one. Closing the channel ends the iteration
    after the packets already sent have been consumed.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, packet: MessagePacket) -> bool:
        """
        Hand a packet to the kernel.

        Returns:
            False if the channel is closed and the packet was dropped.
        """
        if self._closed:
            return False
        await self._queue.put(packet)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def pending(self) -> int:
        """Packets sent but not yet received."""
        return self._queue.qsize() - (1 if self._closed else 0)

    def __aiter__(self) -> "MessageChannel":
        return self

    async def __anext__(self) -> MessagePacket:
        packet = await self._queue.get()
        if packet is _CLOSED:
            raise StopAsyncIteration
        return packet
