"""
Canonical inbound message envelope.

This is the only message shape forwarded to webhook subscribers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    STICKER = "sticker"


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(frozen=True, slots=True)
class MessageEnvelope:
    """
    Provider-independent message.

    Attributes:
        instance_id: Instance that received the message
        message_id: Provider message id, or a synthesized "msg-<millis>"
        phone: Digits-only sender/chat phone
        sender_name: Display name of the sender
        kind: Content kind
        body: Text body or media caption
        media_url: Media location for non-text kinds
        mime_type: Media MIME type for non-text kinds
        timestamp: ISO-8601 UTC timestamp
        is_group: True if the message came from a group chat
        generated_id: True if message_id was synthesized
    """

    instance_id: str
    message_id: str
    phone: str
    sender_name: str
    kind: MessageKind
    timestamp: str
    body: str | None = None
    media_url: str | None = None
    mime_type: str | None = None
    direction: Direction = Direction.INBOUND
    is_group: bool = False
    generated_id: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "instanceId": self.instance_id,
            "messageId": self.message_id,
            "phone": self.phone,
            "senderName": self.sender_name,
            "kind": self.kind.value,
            "body": self.body,
            "mediaUrl": self.media_url,
            "mimeType": self.mime_type,
            "timestamp": self.timestamp,
            "direction": self.direction.value,
            "isGroup": self.is_group,
            "generatedId": self.generated_id,
        }
