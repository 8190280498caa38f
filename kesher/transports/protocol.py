"""
Transport Adapter Protocol for Kesher.

Defines the capability set shared by both backend families:
- Embedded: an in-process protocol session (pushes events)
- Gateway: a remote REST gateway (no push channel; callbacks arrive
  through the registry's ingestion entry point)

Provider-specific shapes stay inside the adapters. What crosses this
boundary are the types below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from ..errors import ErrorCode


@dataclass(frozen=True, slots=True)
class SendResult:
    """
    Result of sending a message via transport.

    Attributes:
        success: Whether the message was sent successfully
        message_id: Provider-issued message identifier (if available)
        error: Error message if sending failed
        error_code: Structured error code if sending failed
    """

    success: bool
    message_id: str | None = None
    error: str | None = None
    error_code: ErrorCode | None = None

    @classmethod
    def failed(cls, error: str, code: ErrorCode) -> SendResult:
        return cls(success=False, error=error, error_code=code)


@dataclass(frozen=True, slots=True)
class TransportStatus:
    """Connection status reported by the transport."""

    connected: bool
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PairingArtifact:
    """
    One-time pairing material used to link a device.

    Attributes:
        code: Raw pairing string (rendered into a QR code by clients)
        image: Pre-rendered image as a data URL, when the provider has one
    """

    code: str | None = None
    image: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "image": self.image}


class CloseReason(str, Enum):
    """Why a session closed."""

    LOGGED_OUT = "logged_out"
    CONNECTION_CLOSED = "connection_closed"
    CONNECTION_LOST = "connection_lost"
    CONNECTION_REPLACED = "connection_replaced"
    BAD_SESSION = "bad_session"
    RESTART_REQUIRED = "restart_required"
    UNKNOWN = "unknown"


class ConnectionPhase(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


@dataclass(frozen=True, slots=True)
class ConnectionUpdate:
    """
    Connection lifecycle event.

    A pairing event carries an artifact and no phase. Open events may
    carry account info in user.
    """

    phase: ConnectionPhase | None = None
    artifact: PairingArtifact | None = None
    close_reason: CloseReason | None = None
    user: dict[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class MessageReceived:
    """Inbound message in the provider's raw shape."""

    raw: dict[str, Any]


TransportEvent = ConnectionUpdate | MessageReceived


@runtime_checkable
class TransportListener(Protocol):
    """Typed subscriber for pushed transport events."""

    async def on_transport_event(self, event: TransportEvent) -> None: ...


@runtime_checkable
class TransportAdapter(Protocol):
    """
    Uniform transport capability set.

    Example usage:
        adapter = families.create("gateway", instance_id, record, credentials)
        status = await adapter.status()
        result = await adapter.send_text("5511999999999", "hello")
    """

    @property
    def family(self) -> str:
        """Backend family name ("embedded", "gateway")."""
        ...

    @property
    def supports_push(self) -> bool:
        """Whether the adapter pushes connection updates itself."""
        ...

    def subscribe(self, listener: TransportListener) -> None:
        """Register the listener that receives pushed events."""
        ...

    async def status(self) -> TransportStatus:
        """
        Report connection status.

        Raises:
            TransportError: If the backend is unreachable
        """
        ...

    async def request_pairing_artifact(self) -> PairingArtifact | None:
        """Return the current pairing artifact, or None if not available."""
        ...

    async def send_text(self, target: str, text: str) -> SendResult: ...

    async def send_image(
        self, target: str, url: str, caption: str | None = None
    ) -> SendResult: ...

    async def send_audio(self, target: str, url: str) -> SendResult: ...

    async def send_document(
        self, target: str, url: str, filename: str | None = None
    ) -> SendResult: ...

    async def disconnect(self) -> None:
        """Tear down the session without emitting a close event."""
        ...

    async def restart(self) -> None:
        """
        (Re)establish the session.

        Raises:
            TransportError: If the backend is unreachable
        """
        ...

    async def close(self) -> None:
        """Release client resources."""
        ...
