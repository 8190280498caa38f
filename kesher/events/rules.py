"""
Extraction rules for inbound provider events.

Each field is read from an explicit, ordered list of aliases; the first
non-empty value wins. Providers disagree on naming (and sometimes change
it), so new aliases go here rather than into the normalizer.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from ..utils.phone import split_address
from .envelope import MessageKind

# =============================================================================
# Classification
# =============================================================================

# Gateway callback types that never carry a message
IGNORED_CALLBACK_TYPES: frozenset[str] = frozenset(
    {
        "MessageStatusCallback",
        "DeliveryCallback",
        "PresenceChatCallback",
        "ConnectedCallback",
        "DisconnectedCallback",
    }
)

STATUS_BROADCAST = "status@broadcast"

SELF_SENT_FLAGS: tuple[str, ...] = ("isFromMe", "fromMe")

# Content priority: first kind present wins
CONTENT_FIELDS: tuple[tuple[MessageKind, tuple[str, ...]], ...] = (
    (MessageKind.TEXT, ("text",)),
    (MessageKind.IMAGE, ("image",)),
    (MessageKind.AUDIO, ("audio", "voice")),
    (MessageKind.VIDEO, ("video",)),
    (MessageKind.DOCUMENT, ("document",)),
    (MessageKind.STICKER, ("sticker",)),
)

# =============================================================================
# Field aliases
# =============================================================================

PHONE_FIELDS: tuple[str, ...] = ("phone", "from", "chatId")
MESSAGE_ID_FIELDS: tuple[str, ...] = ("messageId", "id")
SENDER_NAME_FIELDS: tuple[str, ...] = ("senderName", "pushName", "notifyName")
TIMESTAMP_FIELDS: tuple[str, ...] = ("momment", "timestamp", "messageTimestamp")
TEXT_FIELDS: tuple[str, ...] = ("message", "text")
MIME_FIELDS: tuple[str, ...] = ("mimeType", "mimetype")
CAPTION_FIELDS: tuple[str, ...] = ("caption",)

DEFAULT_SENDER_NAME = "Unknown"

DEFAULT_MIME_TYPES: dict[MessageKind, str] = {
    MessageKind.IMAGE: "image/jpeg",
    MessageKind.AUDIO: "audio/ogg",
    MessageKind.VIDEO: "video/mp4",
    MessageKind.DOCUMENT: "application/octet-stream",
    MessageKind.STICKER: "image/webp",
}

# Epoch values below this are seconds, above are milliseconds
_MILLIS_THRESHOLD = 10**11


def media_url_fields(kind: MessageKind) -> tuple[str, ...]:
    return (f"{kind.value}Url", "url", "mediaUrl")


# =============================================================================
# Extractors
# =============================================================================


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == {} or value == []


def first_present(source: Mapping[str, Any], fields: Iterable[str]) -> Any | None:
    """Return the first non-empty value among fields, in order."""
    for name in fields:
        value = source.get(name)
        if not _is_empty(value):
            return value
    return None


def is_ignored_callback(raw: Mapping[str, Any]) -> bool:
    if raw.get("type") in IGNORED_CALLBACK_TYPES:
        return True
    chat = first_present(raw, PHONE_FIELDS)
    return isinstance(chat, str) and STATUS_BROADCAST in chat


def find_content(raw: Mapping[str, Any]) -> tuple[MessageKind, Any] | None:
    """Locate the highest-priority content field."""
    for kind, fields in CONTENT_FIELDS:
        value = first_present(raw, fields)
        if value is not None:
            return kind, value
    return None


def is_status_marker(raw: Mapping[str, Any]) -> bool:
    """Connection/status callbacks. A status field alongside content is a receipt flag, not a marker."""
    if raw.get("event") == "status":
        return True
    return not _is_empty(raw.get("status")) and find_content(raw) is None


def is_self_sent(raw: Mapping[str, Any]) -> bool:
    return any(raw.get(flag) is True for flag in SELF_SENT_FLAGS)


def extract_text(value: Any) -> str | None:
    """Text arrives as a bare string or as an object with message/text."""
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        text = first_present(value, TEXT_FIELDS)
        return str(text) if text is not None else None
    return None


def extract_media_url(kind: MessageKind, value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        url = first_present(value, media_url_fields(kind))
        return str(url) if url is not None else None
    return None


def extract_caption(value: Any) -> str | None:
    if isinstance(value, Mapping):
        caption = first_present(value, CAPTION_FIELDS)
        return str(caption) if caption is not None else None
    return None


def extract_mime_type(kind: MessageKind, value: Any) -> str:
    if isinstance(value, Mapping):
        mime = first_present(value, MIME_FIELDS)
        if mime is not None:
            return str(mime)
    return DEFAULT_MIME_TYPES[kind]


def extract_phone(raw: Mapping[str, Any]) -> tuple[str, bool]:
    """
    Returns:
        Tuple of (digits-only phone, is_group)
    """
    value = first_present(raw, PHONE_FIELDS)
    if value is None:
        return "", False
    return split_address(value)


def extract_message_id(raw: Mapping[str, Any]) -> str | None:
    value = first_present(raw, MESSAGE_ID_FIELDS)
    return str(value) if value is not None else None


def extract_sender_name(raw: Mapping[str, Any]) -> str:
    value = first_present(raw, SENDER_NAME_FIELDS)
    return str(value) if value is not None else DEFAULT_SENDER_NAME


def extract_timestamp_millis(raw: Mapping[str, Any]) -> int | None:
    """Epoch seconds, epoch millis or ISO-8601, converted to epoch millis."""
    value = first_present(raw, TIMESTAMP_FIELDS)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            value = int(text)
        else:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            return int(parsed.timestamp() * 1000)
    if isinstance(value, int | float):
        number = float(value)
        if number <= 0:
            return None
        return int(number if number >= _MILLIS_THRESHOLD else number * 1000)
    return None


# =============================================================================
# Nested protocol messages
# =============================================================================

_NESTED_CONTENT: tuple[tuple[str, str], ...] = (
    ("imageMessage", "image"),
    ("audioMessage", "audio"),
    ("videoMessage", "video"),
    ("documentMessage", "document"),
    ("stickerMessage", "sticker"),
)


def is_nested_message(raw: Mapping[str, Any]) -> bool:
    return isinstance(raw.get("key"), Mapping) and "message" in raw


def lift_nested_message(raw: Mapping[str, Any]) -> dict[str, Any]:
    """
    Flatten a protocol message ({key, message, pushName, messageTimestamp})
    into the gateway callback shape.
    """
    key = raw.get("key") or {}
    message = raw.get("message") or {}
    flat: dict[str, Any] = {
        "messageId": key.get("id"),
        "chatId": key.get("remoteJid"),
        "fromMe": key.get("fromMe") is True,
        "pushName": raw.get("pushName"),
        "messageTimestamp": raw.get("messageTimestamp"),
    }
    if not isinstance(message, Mapping):
        return flat

    extended = message.get("extendedTextMessage")
    if not _is_empty(message.get("conversation")):
        flat["text"] = message["conversation"]
    elif isinstance(extended, Mapping) and not _is_empty(extended.get("text")):
        flat["text"] = extended["text"]

    for nested_field, flat_field in _NESTED_CONTENT:
        content = message.get(nested_field)
        if isinstance(content, Mapping):
            flat[flat_field] = dict(content)
    return flat
