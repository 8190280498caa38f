"""
Tests for the bounded delivery log.
"""

import pytest

from kesher.webhooks import DeliveryRecord, DeliveryStatus, DestinationResult, LogRing
from kesher.webhooks.log_ring import overall_status


def record(n):
    return DeliveryRecord(
        timestamp=f"t{n}",
        instance_id="sales",
        direction="inbound",
        event="message",
        status=DeliveryStatus.DELIVERED,
        phone=str(n),
    )


class TestLogRing:
    def test_evicts_oldest(self):
        ring = LogRing(capacity=3)

        for n in range(5):
            ring.append(record(n))

        assert len(ring) == 3
        assert [r.phone for r in ring.list()] == ["4", "3", "2"]

    def test_limit(self):
        ring = LogRing(capacity=10)
        for n in range(4):
            ring.append(record(n))

        assert [r.phone for r in ring.list(limit=2)] == ["3", "2"]
        assert ring.list(limit=0) == []

    def test_clear_returns_count(self):
        ring = LogRing(capacity=10)
        ring.append(record(1))
        ring.append(record(2))

        assert ring.clear() == 2
        assert len(ring) == 0
        assert ring.capacity == 10

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            LogRing(capacity=0)

    def test_record_to_dict(self):
        entry = DeliveryRecord(
            timestamp="t",
            instance_id="sales",
            direction="outbound",
            event="message",
            status=DeliveryStatus.FAILED,
            kind="text",
            results=(DestinationResult("5511999", False, error="boom", latency_ms=1.234),),
        )

        data = entry.to_dict()

        assert data["instanceId"] == "sales"
        assert data["status"] == "failed"
        assert data["results"][0] == {
            "destination": "5511999",
            "success": False,
            "statusCode": None,
            "error": "boom",
            "latencyMs": 1.2,
        }


class TestOverallStatus:
    def test_statuses(self):
        ok = DestinationResult("a", True)
        bad = DestinationResult("b", False)

        assert overall_status(()) == DeliveryStatus.NO_SUBSCRIBERS
        assert overall_status((ok, ok)) == DeliveryStatus.DELIVERED
        assert overall_status((ok, bad)) == DeliveryStatus.PARTIAL
        assert overall_status((bad,)) == DeliveryStatus.FAILED
