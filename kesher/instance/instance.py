"""
Managed account instance.

An Instance owns one account's connection state, pairing artifact,
webhook subscriptions and reconnect counters, and wraps exactly one
TransportAdapter. It is the only writer of its own state.

Push adapters (embedded) deliver events through on_transport_event().
Non-push adapters (gateway) are reconciled by polling after restart and
whenever status or pairing material is requested.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from ..errors import CredentialStoreError, ErrorCode, OperationResult, TransportError
from ..transports.protocol import (
    CloseReason,
    ConnectionPhase,
    ConnectionUpdate,
    MessageReceived,
    PairingArtifact,
    SendResult,
    TransportEvent,
)
from ..webhooks.models import EVENT_MESSAGE, EVENT_STATUS, Webhook
from .reconnect import ReconnectPolicy
from .state import IN_FLIGHT, ConnectionState, can_transition

if TYPE_CHECKING:
    from ..clock import Clock, Scheduler, TimerHandle
    from ..credentials import NamespacedCredentials
    from ..events.normalizer import EventNormalizer
    from ..transports.protocol import TransportAdapter
    from ..webhooks.dispatcher import FanoutResult, WebhookDispatcher

logger = logging.getLogger(__name__)

_SESSION_LOST_CODES = frozenset({ErrorCode.NOT_CONNECTED, ErrorCode.TRANSPORT_UNREACHABLE})


class Instance:
    """
    One managed account.

    Example:
        instance = Instance(
            instance_id="sales",
            adapter=adapter,
            credentials=credentials,
            webhooks=[],
            policy=ReconnectPolicy(),
            clock=SystemClock(),
            scheduler=AsyncioScheduler(),
            normalizer=EventNormalizer(),
            dispatcher=dispatcher,
        )
        result = await instance.connect()
    """

    def __init__(
        self,
        instance_id: str,
        adapter: TransportAdapter,
        credentials: NamespacedCredentials,
        webhooks: list[Webhook],
        policy: ReconnectPolicy,
        clock: Clock,
        scheduler: Scheduler,
        normalizer: EventNormalizer,
        dispatcher: WebhookDispatcher,
        force_reset_delay: float = 2.0,
    ):
        self._id = instance_id
        self._adapter = adapter
        self._credentials = credentials
        self._webhooks = webhooks
        self._policy = policy
        self._clock = clock
        self._scheduler = scheduler
        self._normalizer = normalizer
        self._dispatcher = dispatcher
        self._force_reset_delay = force_reset_delay

        self._state = ConnectionState.DISCONNECTED
        self._artifact: PairingArtifact | None = None
        self._user: dict[str, Any] | None = None
        self._reconnect_attempts = 0
        self._last_connect_attempt: float | None = None
        self._busy = False
        self._timer: TimerHandle | None = None
        self._closed = False

        adapter.subscribe(self)

    # ==================== Properties ====================

    @property
    def id(self) -> str:
        return self._id

    @property
    def family(self) -> str:
        return self._adapter.family

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def artifact(self) -> PairingArtifact | None:
        return self._artifact

    @property
    def user(self) -> dict[str, Any] | None:
        return self._user

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def webhooks(self) -> list[Webhook]:
        return self._webhooks

    @property
    def reconnect_pending(self) -> bool:
        return self._timer is not None and not self._timer.cancelled()

    def __repr__(self) -> str:
        return f"Instance(id='{self._id}', family='{self.family}', state='{self._state.value}')"

    # ==================== State ====================

    def _set_state(self, target: ConnectionState, **extra: Any) -> bool:
        """
        Move along a defined edge and notify status subscribers.

        Returns:
            False if the edge does not exist (the event is ignored)
        """
        previous = self._state
        if not can_transition(previous, target):
            logger.warning(
                f"[instance:{self._id}] Ignoring transition {previous.value} -> {target.value}"
            )
            return False

        self._state = target
        logger.info(f"[instance:{self._id}] {previous.value} -> {target.value}")

        payload: dict[str, Any] = {"status": target.value, "previous": previous.value, **extra}
        self._dispatcher.fanout_nowait(self._id, EVENT_STATUS, payload, self._webhooks)
        return True

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        self._cancel_timer()
        if self._closed:
            return
        self._timer = self._scheduler.call_later(delay, callback)

    # ==================== Connect ====================

    async def connect(self, scheduled: bool = False) -> OperationResult:
        """
        Start a connection attempt.

        Args:
            scheduled: True for policy-driven retries, which bypass the
                manual throttle

        Returns:
            Accepted, or Busy / Throttled / LoggedOut / transport failure
        """
        if self._closed:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Instance {self._id} was removed")

        if self._state == ConnectionState.CONNECTED:
            return OperationResult.ok(status=self._state.value, already_connected=True)

        if self._state == ConnectionState.LOGGED_OUT:
            return OperationResult.fail(
                ErrorCode.LOGGED_OUT,
                "Account logged out; force reset required",
            )

        if self._busy or self._state in IN_FLIGHT:
            return OperationResult.fail(ErrorCode.BUSY, "Connection attempt already in progress")

        now = self._clock.monotonic()
        if not scheduled:
            throttled = self._check_throttle(now)
            if throttled is not None:
                return throttled

        # Claimed before the first await
        self._busy = True
        self._last_connect_attempt = now
        self._cancel_timer()
        try:
            self._set_state(ConnectionState.CONNECTING)
            return await self._start_session(scheduled)
        except Exception as e:
            logger.error(
                f"[instance:{self._id}] Unexpected error during connect: {e}", exc_info=True
            )
            return self._attempt_failed(
                TransportError(f"Connection attempt failed: {type(e).__name__}: {e}"),
                scheduled,
            )
        finally:
            self._busy = False

    def _check_throttle(self, now: float) -> OperationResult | None:
        """Return a Throttled failure if a manual attempt came too recently."""
        if self._last_connect_attempt is None:
            return None
        elapsed = now - self._last_connect_attempt
        interval = self._policy.throttle_interval
        if elapsed >= interval:
            return None
        retry_after = max(0.0, interval - elapsed)
        return OperationResult.fail(
            ErrorCode.THROTTLED,
            f"Wait {retry_after:.0f}s before reconnecting",
            retry_after=retry_after,
        )

    async def _start_session(self, scheduled: bool) -> OperationResult:
        adapter = self._adapter

        if not adapter.supports_push:
            try:
                status = await adapter.status()
            except TransportError as e:
                return self._attempt_failed(e, scheduled)
            if status.connected:
                self._on_open(None)
                return OperationResult.ok(status=self._state.value)

        try:
            await adapter.restart()
        except TransportError as e:
            return self._attempt_failed(e, scheduled)

        if not adapter.supports_push:
            await self._reconcile()

        return OperationResult.ok(status=self._state.value)

    def _attempt_failed(self, error: TransportError, scheduled: bool) -> OperationResult:
        logger.error(f"[instance:{self._id}] Connection attempt failed: {error}")
        if self._state in IN_FLIGHT:
            self._artifact = None
            self._set_state(ConnectionState.DISCONNECTED, reason="transport_error")
        if scheduled:
            self._schedule_reconnect()
        return OperationResult.from_exception(error)

    async def _reconcile(self) -> None:
        """Poll a non-push adapter and synthesize the connection updates it cannot push."""
        try:
            status = await self._adapter.status()
        except TransportError as e:
            logger.warning(f"[instance:{self._id}] Status poll failed: {e}")
            if self._state == ConnectionState.CONNECTING:
                self._on_close(CloseReason.CONNECTION_LOST)
            return

        if status.connected:
            await self.on_transport_event(ConnectionUpdate(phase=ConnectionPhase.OPEN))
            return

        if self._state == ConnectionState.CONNECTED:
            await self.on_transport_event(
                ConnectionUpdate(
                    phase=ConnectionPhase.CLOSE,
                    close_reason=CloseReason.CONNECTION_LOST,
                )
            )
            return

        try:
            artifact = await self._adapter.request_pairing_artifact()
        except TransportError as e:
            logger.warning(f"[instance:{self._id}] Pairing artifact poll failed: {e}")
            return
        if artifact is not None:
            await self.on_transport_event(ConnectionUpdate(artifact=artifact))
        elif self._state == ConnectionState.CONNECTING:
            self._on_close(CloseReason.UNKNOWN)

    async def refresh(self) -> None:
        """Re-poll a non-push adapter while an attempt or session is live."""
        if self._adapter.supports_push or self._busy:
            return
        if self._state in IN_FLIGHT or self._state == ConnectionState.CONNECTED:
            await self._reconcile()

    # ==================== Transport events ====================

    async def on_transport_event(self, event: TransportEvent) -> None:
        if self._closed:
            return
        if isinstance(event, MessageReceived):
            await self.ingest(event.raw)
            return

        if event.artifact is not None:
            self._on_pairing(event.artifact)
        if event.phase == ConnectionPhase.OPEN:
            self._on_open(event.user)
        elif event.phase == ConnectionPhase.CLOSE:
            self._on_close(event.close_reason or CloseReason.UNKNOWN)

    def _on_pairing(self, artifact: PairingArtifact) -> None:
        if not can_transition(self._state, ConnectionState.PAIRING_READY):
            logger.debug(f"[instance:{self._id}] Pairing artifact outside an attempt, ignored")
            return
        self._artifact = artifact
        self._set_state(ConnectionState.PAIRING_READY, artifact=artifact.to_dict())

    def _on_open(self, user: dict[str, Any] | None) -> None:
        if not can_transition(self._state, ConnectionState.CONNECTED):
            logger.debug(f"[instance:{self._id}] Open while {self._state.value}, ignored")
            return
        self._artifact = None
        self._reconnect_attempts = 0
        if user is not None:
            self._user = user
        self._cancel_timer()
        self._set_state(ConnectionState.CONNECTED, user=self._user)

    def _on_close(self, reason: CloseReason) -> None:
        if self._state in (ConnectionState.DISCONNECTED, ConnectionState.LOGGED_OUT):
            logger.debug(f"[instance:{self._id}] Close ({reason.value}) while {self._state.value}")
            return

        self._artifact = None
        self._set_state(ConnectionState.DISCONNECTED, reason=reason.value)

        if reason == CloseReason.LOGGED_OUT:
            self._cancel_timer()
            self._user = None
            self._set_state(ConnectionState.LOGGED_OUT, reason=reason.value)
            logger.warning(f"[instance:{self._id}] Logged out; force reset required")
            return

        self._schedule_reconnect()

    # ==================== Reconnect ====================

    def _schedule_reconnect(self) -> None:
        self._reconnect_attempts += 1
        step = self._policy.next_delay(self._reconnect_attempts)

        if step.extended:
            logger.warning(
                f"[instance:{self._id}] Max attempts ({self._policy.max_attempts}) reached, "
                f"cooling down {step.delay:.0f}s"
            )
            self._schedule(step.delay, self._extended_retry)
            return

        logger.info(
            f"[instance:{self._id}] Reconnect {step.attempt}/{self._policy.max_attempts} "
            f"in {step.delay:.0f}s"
        )
        self._schedule(step.delay, self._scheduled_retry)

    async def _scheduled_retry(self) -> None:
        self._timer = None
        await self.connect(scheduled=True)

    async def _extended_retry(self) -> None:
        self._timer = None
        self._reconnect_attempts = 0
        self._last_connect_attempt = None
        await self.connect(scheduled=True)

    # ==================== Lifecycle ====================

    async def disconnect(self) -> OperationResult:
        """Tear down the session without scheduling a reconnect."""
        self._cancel_timer()
        try:
            await self._adapter.disconnect()
        except TransportError as e:
            logger.warning(f"[instance:{self._id}] Transport disconnect failed: {e}")

        self._artifact = None
        if self._state not in (ConnectionState.DISCONNECTED, ConnectionState.LOGGED_OUT):
            self._user = None
            self._set_state(ConnectionState.DISCONNECTED, reason="manual")
        return OperationResult.ok(status=self._state.value)

    async def restart(self) -> OperationResult:
        """
        Drop the current session and start a fresh attempt.

        Every rejection (LoggedOut, Busy, Throttled) leaves the current
        session and state untouched.
        """
        if self._closed:
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Instance {self._id} was removed")
        if self._state == ConnectionState.LOGGED_OUT:
            return OperationResult.fail(
                ErrorCode.LOGGED_OUT,
                "Account logged out; force reset required",
            )
        if self._busy or self._state in IN_FLIGHT:
            return OperationResult.fail(ErrorCode.BUSY, "Connection attempt already in progress")

        throttled = self._check_throttle(self._clock.monotonic())
        if throttled is not None:
            return throttled

        if self._state == ConnectionState.CONNECTED:
            self._set_state(ConnectionState.DISCONNECTED, reason="restart")
        return await self.connect()

    async def force_reset(self) -> OperationResult:
        """
        Disconnect, wipe stored session material and reconnect shortly after.

        This is the only way out of LoggedOut.
        """
        self._cancel_timer()
        try:
            await self._adapter.disconnect()
        except TransportError as e:
            logger.warning(f"[instance:{self._id}] Transport disconnect failed: {e}")

        await self.wipe_credentials()

        self._artifact = None
        self._user = None
        self._reconnect_attempts = 0
        self._last_connect_attempt = None
        if self._state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED, reason="force_reset")

        self._schedule(self._force_reset_delay, self._scheduled_retry)
        logger.info(
            f"[instance:{self._id}] Force reset, reconnecting in {self._force_reset_delay:.0f}s"
        )
        return OperationResult.ok(reconnect_in=self._force_reset_delay)

    async def wipe_credentials(self) -> int:
        try:
            return await self._credentials.wipe()
        except CredentialStoreError as e:
            logger.error(f"[instance:{self._id}] Credential wipe failed: {e}")
            return 0

    async def close(self, logout: bool = False) -> None:
        """
        Stop the instance for good: cancel timers and release the transport.

        Args:
            logout: Log the account out instead of just ending the session
        """
        self._closed = True
        self._cancel_timer()
        try:
            if logout:
                await self._adapter.disconnect()
        except TransportError as e:
            logger.warning(f"[instance:{self._id}] Transport disconnect failed: {e}")
        finally:
            await self._adapter.close()

    # ==================== Queries ====================

    async def pairing_artifact(self) -> OperationResult:
        await self.refresh()
        if self._artifact is None:
            return OperationResult.fail(
                ErrorCode.NOT_AVAILABLE,
                "Pairing artifact not available",
                status=self._state.value,
            )
        return OperationResult.ok(artifact=self._artifact.to_dict(), status=self._state.value)

    def snapshot(self) -> dict[str, Any]:
        return {
            "instanceId": self._id,
            "family": self.family,
            "state": self._state.value,
            "connected": self._state == ConnectionState.CONNECTED,
            "reconnectAttempts": self._reconnect_attempts,
            "hasPairingArtifact": self._artifact is not None,
            "user": self._user,
            "webhooks": len(self._webhooks),
        }

    # ==================== Sends ====================

    async def send_text(self, target: str, text: str) -> OperationResult:
        return await self._send(lambda: self._adapter.send_text(target, text))

    async def send_image(
        self, target: str, url: str, caption: str | None = None
    ) -> OperationResult:
        return await self._send(lambda: self._adapter.send_image(target, url, caption))

    async def send_audio(self, target: str, url: str) -> OperationResult:
        return await self._send(lambda: self._adapter.send_audio(target, url))

    async def send_document(
        self, target: str, url: str, filename: str | None = None
    ) -> OperationResult:
        return await self._send(lambda: self._adapter.send_document(target, url, filename))

    async def _send(self, call: Callable[[], Awaitable[SendResult]]) -> OperationResult:
        if self._state != ConnectionState.CONNECTED:
            return OperationResult.fail(
                ErrorCode.NOT_CONNECTED,
                f"Instance {self._id} is {self._state.value}",
            )

        try:
            result = await call()
        except TransportError as e:
            result = SendResult.failed(str(e.args[0]), e.code)
        if result.success:
            return OperationResult.ok(message_id=result.message_id)

        code = result.error_code or ErrorCode.TRANSPORT_UNREACHABLE
        if code in _SESSION_LOST_CODES and not self._adapter.supports_push:
            # Provider may have dropped the session without telling us
            await self._reconcile()
        return OperationResult.fail(code, result.error or "Send failed")

    # ==================== Webhooks & inbound ====================

    def add_webhook(self, webhook: Webhook) -> None:
        self._webhooks.append(webhook)

    def remove_webhook(self, webhook_id: str) -> bool:
        for index, webhook in enumerate(self._webhooks):
            if webhook.id == webhook_id:
                del self._webhooks[index]
                return True
        return False

    async def ingest(self, raw: dict[str, Any]) -> FanoutResult | None:
        """
        Normalize a raw inbound event and relay it to message subscribers.

        Delivery of the whole batch completes before this returns.

        Returns:
            The fan-out result, or None if the event was not a message
        """
        envelope = self._normalizer.normalize(self._id, raw)
        if envelope is None:
            return None

        logger.info(
            f"[instance:{self._id}] Inbound {envelope.kind} from {envelope.phone}"
        )
        return await self._dispatcher.fanout(
            self._id,
            EVENT_MESSAGE,
            envelope.to_dict(),
            self._webhooks,
            phone=envelope.phone,
            kind=envelope.kind,
        )
