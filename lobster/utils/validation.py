"""
Inbound message validation.
"""

from lobster.errors import ValidationError
from lobster.types.packets import MessagePacket


def validate_message_packet(packet: MessagePacket, max_message_length: int) -> None:
    """
    Reject packets that must never reach the queue.

    Args:
        packet: The packet built by an input adapter.
        max_message_length: Longest accepted payload, in characters.

    Raises:
        ValidationError: Describes the first problem found.
    """
    if not packet.id.strip():
        raise ValidationError("Invalid message ID")

    if not packet.source.strip():
        raise ValidationError("Invalid source")

    if not packet.channel_id.strip():
        raise ValidationError("Invalid channel ID")

    if not packet.user_id.strip():
        raise ValidationError("Invalid user ID")

    if not packet.payload.strip():
        raise ValidationError("Invalid payload")

    if len(packet.payload) > max_message_length:
        raise ValidationError(f"Message too long (max {max_message_length} characters)")

    if packet.timestamp <= 0:
        raise ValidationError("Invalid timestamp")
