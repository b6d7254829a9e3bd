"""
Message packet type definitions.
These are the units of work that travel through the incoming and outgoing queues.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from lobster.types.common import now_ms


class MessagePacket(BaseModel):
    """
    A normalized inbound chat message.
    Produced by input adapters and consumed by agents.
    """

    id: str
    source: str  # input channel name, also selects the output adapter for the reply
    channel_id: str
    user_id: str
    payload: str
    timestamp: int = Field(default_factory=now_ms)
    metadata: dict[str, Any] | None = None


class ResponsePacket(MessagePacket):
    """An agent reply addressed back to the channel the message came from."""

    original_message_id: str

    @classmethod
    def from_message(cls, message: MessagePacket, reply: str) -> "ResponsePacket":
        """Build the reply packet for a processed message."""
        return cls(
            **message.model_dump(exclude={"id", "payload", "timestamp"}),
            id=f"{message.id}_response",
            payload=reply,
            original_message_id=message.id,
            timestamp=now_ms(),
        )


class InboundMessage(BaseModel):
    """Request body for submitting a message over the HTTP channel."""

    id: str | None = Field(default=None, description="Client message id; generated if omitted")
    channel_id: str = Field(..., description="Conversation channel the message belongs to")
    user_id: str = Field(..., description="Author of the message")
    payload: str = Field(..., description="Message text")
    metadata: dict[str, Any] | None = None


class AcceptedResponse(BaseModel):
    """Response body after a message is handed to the kernel."""

    id: str
    status: str = "accepted"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    channel: str
    timestamp: datetime
