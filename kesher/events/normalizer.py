"""
Event Normalizer for Kesher.

Maps raw provider events (flat gateway callbacks or nested protocol
messages) to the canonical MessageEnvelope.

Classification (first match wins):
    a. Known non-message callbacks and status broadcasts -> None
    b. Connection/status markers                         -> None
    c. Self-sent echoes                                  -> None
    d. No recognizable content                           -> None
    e. Message, kind by content priority
       text > image > audio > video > document > sticker

The normalizer has no side effects besides debug logging. With the same
clock reading it returns the same envelope for the same input.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..clock import Clock, SystemClock, utc_iso
from . import rules
from .envelope import MessageEnvelope, MessageKind

logger = logging.getLogger(__name__)


class EventNormalizer:
    """
    Raw event to envelope mapping.

    Example:
        normalizer = EventNormalizer()
        envelope = normalizer.normalize("sales", {"phone": "5511999", "text": {"message": "hi"}})
        envelope.kind  # MessageKind.TEXT
    """

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def normalize(self, instance_id: str, raw: Mapping[str, Any]) -> MessageEnvelope | None:
        if not isinstance(raw, Mapping):
            logger.debug(f"[normalizer:{instance_id}] Non-object event skipped")
            return None

        event = rules.lift_nested_message(raw) if rules.is_nested_message(raw) else raw

        if rules.is_ignored_callback(event):
            logger.debug(f"[normalizer:{instance_id}] Skipped callback {event.get('type')}")
            return None
        if rules.is_status_marker(event):
            logger.debug(f"[normalizer:{instance_id}] Skipped status event")
            return None
        if rules.is_self_sent(event):
            logger.debug(f"[normalizer:{instance_id}] Skipped self-sent echo")
            return None

        content = rules.find_content(event)
        if content is None:
            logger.debug(
                f"[normalizer:{instance_id}] Skipped non-message event "
                f"{event.get('event') or event.get('type')}"
            )
            return None

        kind, value = content
        now = self._clock.epoch_millis()

        message_id = rules.extract_message_id(event)
        generated_id = message_id is None
        if generated_id:
            message_id = f"msg-{now}"

        phone, is_group = rules.extract_phone(event)
        timestamp = rules.extract_timestamp_millis(event) or now

        if kind == MessageKind.TEXT:
            body = rules.extract_text(value)
            media_url = None
            mime_type = None
        else:
            body = rules.extract_caption(value)
            media_url = rules.extract_media_url(kind, value)
            mime_type = rules.extract_mime_type(kind, value)

        return MessageEnvelope(
            instance_id=instance_id,
            message_id=message_id,
            phone=phone,
            sender_name=rules.extract_sender_name(event),
            kind=kind,
            timestamp=utc_iso(timestamp),
            body=body,
            media_url=media_url,
            mime_type=mime_type,
            is_group=is_group,
            generated_id=generated_id,
        )
