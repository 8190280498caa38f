"""
Webhook Dispatcher for Kesher.

Fans canonical events out to an instance's subscribers:
- One POST per matching subscription, issued concurrently
- Body: {"event", "instanceId", "timestamp", "data"}
- Headers: X-Webhook-Event, X-Instance-Id

Delivery is single-attempt. Failures are recorded in the LogRing and
never touch instance state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from ..clock import Clock, SystemClock, utc_iso
from ..events.envelope import Direction
from .log_ring import DeliveryRecord, DeliveryStatus, DestinationResult, LogRing, overall_status
from .models import EVENT_MESSAGE

if TYPE_CHECKING:
    from .models import Webhook

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FanoutResult:
    """Outcome of one fan-out batch."""

    results: tuple[DestinationResult, ...]

    @property
    def status(self) -> DeliveryStatus:
        return overall_status(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


class WebhookDispatcher:
    """
    Concurrent webhook fan-out.

    Example:
        dispatcher = WebhookDispatcher(LogRing(100))
        result = await dispatcher.fanout("sales", "message", envelope.to_dict(), webhooks)
        result.succeeded, result.failed
    """

    def __init__(
        self,
        log_ring: LogRing,
        *,
        timeout: float = 10.0,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._log_ring = log_ring
        self._timeout = timeout
        self._clock = clock or SystemClock()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def log_ring(self) -> LogRing:
        return self._log_ring

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def fanout(
        self,
        instance_id: str,
        event_kind: str,
        data: dict[str, Any],
        webhooks: list[Webhook],
        *,
        phone: str | None = None,
        kind: str | None = None,
    ) -> FanoutResult:
        """
        Deliver to every subscription accepting event_kind and wait for all.

        Returns:
            Per-destination results in subscription order
        """
        matched = [w for w in webhooks if w.accepts(event_kind)]
        return await self._deliver_all(instance_id, event_kind, data, matched, phone, kind)

    def fanout_nowait(
        self,
        instance_id: str,
        event_kind: str,
        data: dict[str, Any],
        webhooks: list[Webhook],
    ) -> asyncio.Task | None:
        """
        Fire-and-forget fan-out. The task is tracked and drained on close().

        Returns:
            The delivery task, or None if nothing subscribes to event_kind
        """
        matched = [w for w in webhooks if w.accepts(event_kind)]
        if not matched:
            return None

        task = asyncio.ensure_future(
            self._deliver_all(instance_id, event_kind, data, matched, None, event_kind)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver_all(
        self,
        instance_id: str,
        event_kind: str,
        data: dict[str, Any],
        matched: list[Webhook],
        phone: str | None,
        kind: str | None,
    ) -> FanoutResult:
        timestamp = utc_iso(self._clock.epoch_millis())
        body = {
            "event": event_kind,
            "instanceId": instance_id,
            "timestamp": timestamp,
            "data": data,
        }
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Event": event_kind,
            "X-Instance-Id": instance_id,
        }

        results: tuple[DestinationResult, ...] = ()
        if matched:
            results = tuple(
                await asyncio.gather(*(self._deliver(w.url, body, headers) for w in matched))
            )

        outcome = FanoutResult(results=results)
        is_message = event_kind == EVENT_MESSAGE
        if matched or is_message:
            self._log_ring.append(
                DeliveryRecord(
                    timestamp=timestamp,
                    instance_id=instance_id,
                    direction=Direction.INBOUND.value if is_message else None,
                    event=event_kind,
                    status=outcome.status,
                    phone=phone,
                    kind=kind,
                    results=results,
                )
            )

        if outcome.failed:
            logger.warning(
                f"[webhooks:{instance_id}] {event_kind}: "
                f"{outcome.succeeded}/{len(results)} delivered"
            )
        elif results:
            logger.info(f"[webhooks:{instance_id}] {event_kind}: delivered to {len(results)}")
        return outcome

    async def _deliver(
        self,
        url: str,
        body: dict[str, Any],
        headers: dict[str, str],
    ) -> DestinationResult:
        client = await self._get_client()
        start = time.perf_counter()
        try:
            response = await client.post(url, json=body, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            latency = (time.perf_counter() - start) * 1000
            logger.error(f"[webhooks] Delivery to {url} failed: {e}")
            return DestinationResult(
                destination=url,
                success=False,
                error=str(e) or type(e).__name__,
                latency_ms=latency,
            )

        latency = (time.perf_counter() - start) * 1000
        if response.is_success:
            return DestinationResult(
                destination=url,
                success=True,
                status_code=response.status_code,
                latency_ms=latency,
            )
        return DestinationResult(
            destination=url,
            success=False,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}",
            latency_ms=latency,
        )

    def record_outbound(
        self,
        instance_id: str,
        target: str,
        kind: str,
        success: bool,
        error: str | None = None,
    ) -> None:
        """Record an outbound send in the log ring."""
        results = (DestinationResult(destination=target, success=success, error=error),)
        self._log_ring.append(
            DeliveryRecord(
                timestamp=utc_iso(self._clock.epoch_millis()),
                instance_id=instance_id,
                direction=Direction.OUTBOUND.value,
                event=EVENT_MESSAGE,
                status=overall_status(results),
                phone=target,
                kind=kind,
                results=results,
            )
        )

    async def drain(self) -> None:
        """Wait for in-flight fire-and-forget deliveries."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
