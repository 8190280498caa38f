"""
Embedded Transport Adapter for Kesher.

Runs an in-process protocol session for one account. The wire protocol
itself is provided by a ProtocolSession implementation plugged in at
startup; this adapter owns everything around it:
- Loading and persisting session material through the credential store
- Translating raw session events into typed transport events
- Sends, logout and restart

Raw session events (dicts emitted by the protocol session):
    {"event": "connection.update", "connection": "open" | "close" | "connecting",
     "qr": "...", "lastDisconnect": {"statusCode": 401}}
    {"event": "creds.update", "creds": {...}}
    {"event": "messages.upsert", "messages": [{...}, ...]}
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol

from ..errors import CredentialStoreError, ErrorCode, TransportError
from ..utils.phone import INDIVIDUAL_SUFFIX, normalize_target, to_jid
from ..utils.qr import pairing_image
from .protocol import (
    CloseReason,
    ConnectionPhase,
    ConnectionUpdate,
    MessageReceived,
    PairingArtifact,
    SendResult,
    TransportEvent,
    TransportListener,
    TransportStatus,
)

if TYPE_CHECKING:
    from ..config.schemas import InstanceRecord
    from ..credentials import NamespacedCredentials

logger = logging.getLogger(__name__)

FAMILY = "embedded"

# Close status codes reported by the protocol session
CLOSE_REASONS: dict[int, CloseReason] = {
    401: CloseReason.LOGGED_OUT,
    408: CloseReason.CONNECTION_LOST,
    428: CloseReason.CONNECTION_CLOSED,
    440: CloseReason.CONNECTION_REPLACED,
    500: CloseReason.BAD_SESSION,
    515: CloseReason.RESTART_REQUIRED,
}

RawEmitter = Callable[[dict[str, Any]], Awaitable[None]]


class ProtocolSession(Protocol):
    """
    Opaque wire-protocol session.

    Implementations wrap a concrete protocol stack. They must call emit()
    for every connection, credential and message event.
    """

    @property
    def user(self) -> dict[str, Any] | None:
        """Account info once the session is open."""
        ...

    async def start(self, auth: SessionAuthState, emit: RawEmitter) -> None: ...

    async def send_message(self, jid: str, content: dict[str, Any]) -> dict[str, Any]:
        """Send content to jid. Returns the provider's message key."""
        ...

    async def logout(self) -> None: ...

    async def end(self) -> None: ...


ProtocolSessionFactory = Callable[[], ProtocolSession]


class SessionAuthState:
    """
    Session material backed by a credential namespace.

    Key layout:
        "creds": account credentials
        "{type}-{id}": signal keys (pre-keys, sessions, sender keys, ...)

    Store failures are logged and swallowed: the session keeps running on
    in-memory state and may need re-pairing after a process restart.
    """

    def __init__(self, credentials: NamespacedCredentials, creds: dict[str, Any]):
        self._credentials = credentials
        self.creds = creds

    @classmethod
    async def load(cls, credentials: NamespacedCredentials) -> SessionAuthState:
        try:
            creds = await credentials.get("creds") or {}
        except CredentialStoreError as e:
            logger.error(f"[embedded] Could not load credentials: {e}")
            creds = {}
        return cls(credentials, creds)

    async def get_keys(self, key_type: str, ids: list[str]) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key_id in ids:
            try:
                value = await self._credentials.get(f"{key_type}-{key_id}")
            except CredentialStoreError as e:
                logger.error(f"[embedded] Key read failed: {e}")
                continue
            if value is not None:
                result[key_id] = value
        return result

    async def set_keys(self, data: dict[str, dict[str, Any]]) -> None:
        for key_type, entries in data.items():
            for key_id, value in entries.items():
                if not value:
                    continue
                try:
                    await self._credentials.set(f"{key_type}-{key_id}", value)
                except CredentialStoreError as e:
                    logger.error(f"[embedded] Key write failed: {e}")

    async def save_creds(self) -> None:
        try:
            await self._credentials.set("creds", self.creds)
        except CredentialStoreError as e:
            logger.error(f"[embedded] Credential save failed: {e}")


class EmbeddedTransport:
    """
    Embedded protocol transport.

    Each restart() opens a new session generation. Events from an older
    generation (a session already torn down) are ignored.

    Example:
        transport = EmbeddedTransport(
            instance_id="sales",
            credentials=NamespacedCredentials(store, "whatsapp-session-sales"),
            session_factory=MyProtocolSession,
        )
        transport.subscribe(instance)
        await transport.restart()
    """

    def __init__(
        self,
        instance_id: str,
        credentials: NamespacedCredentials,
        session_factory: ProtocolSessionFactory,
    ):
        self._instance_id = instance_id
        self._credentials = credentials
        self._session_factory = session_factory
        self._session: ProtocolSession | None = None
        self._auth: SessionAuthState | None = None
        self._generation = 0
        self._open = False
        self._artifact: PairingArtifact | None = None
        self._listener: TransportListener | None = None

    @property
    def family(self) -> str:
        return FAMILY

    @property
    def supports_push(self) -> bool:
        return True

    def subscribe(self, listener: TransportListener) -> None:
        self._listener = listener

    async def _emit(self, event: TransportEvent) -> None:
        if self._listener is not None:
            await self._listener.on_transport_event(event)

    # ==================== Lifecycle ====================

    async def restart(self) -> None:
        await self._teardown(logout=False)

        self._generation += 1
        generation = self._generation
        self._auth = await SessionAuthState.load(self._credentials)
        session = self._session_factory()
        self._session = session

        async def emit(raw: dict[str, Any]) -> None:
            await self._handle_raw(generation, raw)

        try:
            await session.start(self._auth, emit)
        except Exception as e:
            if generation == self._generation:
                self._session = None
            raise TransportError(f"Session start failed: {e}") from e

        logger.info(f"[embedded:{self._instance_id}] Session started (generation {generation})")

    async def disconnect(self) -> None:
        await self._teardown(logout=True)
        logger.info(f"[embedded:{self._instance_id}] Disconnected")

    async def close(self) -> None:
        await self._teardown(logout=False)

    async def _teardown(self, logout: bool) -> None:
        session = self._session
        self._session = None
        self._open = False
        self._artifact = None
        # Invalidate the generation before awaiting so late events are dropped
        self._generation += 1
        if session is None:
            return
        try:
            if logout:
                await session.logout()
            else:
                await session.end()
        except Exception as e:
            logger.warning(f"[embedded:{self._instance_id}] Session teardown error: {e}")

    # ==================== Raw event handling ====================

    async def _handle_raw(self, generation: int, raw: dict[str, Any]) -> None:
        if generation != self._generation:
            logger.debug(f"[embedded:{self._instance_id}] Dropping stale event {raw.get('event')}")
            return

        kind = raw.get("event")
        if kind == "connection.update":
            await self._on_connection_update(raw)
        elif kind == "creds.update":
            if self._auth is not None:
                self._auth.creds.update(raw.get("creds") or {})
                await self._auth.save_creds()
        elif kind == "messages.upsert":
            for message in raw.get("messages") or []:
                if isinstance(message, dict):
                    await self._emit(MessageReceived(raw=message))
        else:
            logger.debug(f"[embedded:{self._instance_id}] Unhandled session event: {kind}")

    async def _on_connection_update(self, raw: dict[str, Any]) -> None:
        qr = raw.get("qr")
        if qr:
            code = str(qr)
            self._artifact = PairingArtifact(code=code, image=pairing_image(code))
            await self._emit(ConnectionUpdate(artifact=self._artifact))

        connection = raw.get("connection")
        if connection == "close":
            self._open = False
            self._session = None
            reason = close_reason_for(raw.get("lastDisconnect"))
            await self._emit(ConnectionUpdate(phase=ConnectionPhase.CLOSE, close_reason=reason))
        elif connection == "open":
            self._open = True
            self._artifact = None
            await self._emit(ConnectionUpdate(phase=ConnectionPhase.OPEN, user=self._user_info()))

    def _user_info(self) -> dict[str, Any] | None:
        user = self._session.user if self._session is not None else None
        if not user:
            return None
        user_id = str(user.get("id") or "")
        return {
            "id": user_id,
            "name": user.get("name") or "WhatsApp API",
            "phone": user_id.split(":")[0].replace(INDIVIDUAL_SUFFIX, ""),
        }

    # ==================== Queries ====================

    async def status(self) -> TransportStatus:
        return TransportStatus(
            connected=self._open,
            raw={"session_active": self._session is not None, "user": self._user_info()},
        )

    async def request_pairing_artifact(self) -> PairingArtifact | None:
        return self._artifact

    # ==================== Sends ====================

    async def send_text(self, target: str, text: str) -> SendResult:
        return await self._send(target, {"text": text})

    async def send_image(self, target: str, url: str, caption: str | None = None) -> SendResult:
        return await self._send(target, {"image": {"url": url}, "caption": caption or ""})

    async def send_audio(self, target: str, url: str) -> SendResult:
        return await self._send(target, {"audio": {"url": url}, "mimetype": "audio/mp4"})

    async def send_document(
        self, target: str, url: str, filename: str | None = None
    ) -> SendResult:
        return await self._send(
            target,
            {"document": {"url": url}, "fileName": filename or "document"},
        )

    async def _send(self, target: str, content: dict[str, Any]) -> SendResult:
        session = self._session
        if session is None or not self._open:
            return SendResult.failed("Session not connected", ErrorCode.NOT_CONNECTED)

        try:
            jid = target if "@" in target else to_jid(normalize_target(target))
        except ValueError as e:
            return SendResult.failed(str(e), ErrorCode.INVALID_TARGET)

        try:
            result = await session.send_message(jid, content)
        except Exception as e:
            logger.error(f"[embedded:{self._instance_id}] Send error: {e}", exc_info=True)
            return SendResult.failed(str(e), ErrorCode.TRANSPORT_UNREACHABLE)

        message_id = (result.get("key") or {}).get("id") if isinstance(result, dict) else None
        logger.info(f"[embedded:{self._instance_id}] Sent {next(iter(content))} message")
        return SendResult(success=True, message_id=message_id)


def close_reason_for(last_disconnect: Any) -> CloseReason:
    """Map the session's lastDisconnect payload to a CloseReason."""
    if not isinstance(last_disconnect, dict):
        return CloseReason.UNKNOWN
    code = last_disconnect.get("statusCode")
    if code is None:
        error = last_disconnect.get("error") or {}
        if isinstance(error, dict):
            code = (error.get("output") or {}).get("statusCode")
    try:
        return CLOSE_REASONS.get(int(code), CloseReason.UNKNOWN)
    except (TypeError, ValueError):
        return CloseReason.UNKNOWN


def create_embedded_factory(
    session_factory: ProtocolSessionFactory,
) -> Callable[[str, InstanceRecord, NamespacedCredentials], EmbeddedTransport]:
    """
    Build a family factory for the transport registry.

    Args:
        session_factory: Zero-arg callable producing a fresh ProtocolSession

    Returns:
        Factory creating one EmbeddedTransport per instance
    """

    def factory(
        instance_id: str,
        record: InstanceRecord,
        credentials: NamespacedCredentials,
    ) -> EmbeddedTransport:
        return EmbeddedTransport(
            instance_id=instance_id,
            credentials=credentials,
            session_factory=session_factory,
        )

    return factory
