"""
Webhook subscription models.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

EVENT_MESSAGE = "message"
EVENT_STATUS = "status"

EVENT_KINDS: frozenset[str] = frozenset({EVENT_MESSAGE, EVENT_STATUS})
DEFAULT_EVENTS: tuple[str, ...] = (EVENT_MESSAGE, EVENT_STATUS)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class Webhook(BaseModel):
    """
    A subscriber endpoint registered on one instance.

    Persisted with the instance record so ids survive restarts.
    """

    id: str = Field(default_factory=_new_id, description="Unique per instance")
    url: str = Field(..., description="Endpoint receiving POSTed events")
    events: list[str] = Field(default_factory=lambda: list(DEFAULT_EVENTS))
    created_at: datetime = Field(default_factory=_utc_now)

    def accepts(self, event_kind: str) -> bool:
        return event_kind in self.events

    def to_public(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "events": list(self.events),
            "createdAt": self.created_at.isoformat(),
        }
