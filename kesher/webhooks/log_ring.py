"""
Bounded diagnostic buffer of recent deliveries.

Holds the last N inbound fan-outs and outbound sends for inspection.
Not persisted; a process restart starts empty.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    PARTIAL = "partial"
    FAILED = "failed"
    NO_SUBSCRIBERS = "no_subscribers"


@dataclass(frozen=True, slots=True)
class DestinationResult:
    """Outcome for one destination (webhook URL or outbound target)."""

    destination: str
    success: bool
    status_code: int | None = None
    error: str | None = None
    latency_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "destination": self.destination,
            "success": self.success,
            "statusCode": self.status_code,
            "error": self.error,
            "latencyMs": round(self.latency_ms, 1),
        }


@dataclass(frozen=True, slots=True)
class DeliveryRecord:
    timestamp: str
    instance_id: str
    # None for status notifications, which are neither inbound nor outbound
    direction: str | None
    event: str
    status: DeliveryStatus
    phone: str | None = None
    kind: str | None = None
    results: tuple[DestinationResult, ...] = ()
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "instanceId": self.instance_id,
            "direction": self.direction,
            "event": self.event,
            "phone": self.phone,
            "kind": self.kind,
            "status": self.status.value,
            "results": [r.to_dict() for r in self.results],
        }


def overall_status(results: tuple[DestinationResult, ...] | list[DestinationResult]) -> DeliveryStatus:
    if not results:
        return DeliveryStatus.NO_SUBSCRIBERS
    succeeded = sum(1 for r in results if r.success)
    if succeeded == len(results):
        return DeliveryStatus.DELIVERED
    if succeeded == 0:
        return DeliveryStatus.FAILED
    return DeliveryStatus.PARTIAL


class LogRing:
    """
    Fixed-capacity FIFO of delivery records; the oldest is evicted first.

    Example:
        ring = LogRing(capacity=100)
        ring.append(record)
        ring.list(limit=10)  # newest first
    """

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._entries: deque[DeliveryRecord] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, record: DeliveryRecord) -> None:
        self._entries.append(record)

    def list(self, limit: int | None = None) -> list[DeliveryRecord]:
        """Most recent records first."""
        newest_first = list(reversed(self._entries))
        if limit is not None:
            return newest_first[: max(limit, 0)]
        return newest_first

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count
