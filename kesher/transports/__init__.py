"""
Kesher transport adapters.

Two backend families implement the TransportAdapter protocol:
- embedded: in-process protocol session with pushed events
- gateway: remote REST gateway, callbacks ingested by the registry
"""

from .embedded import (
    EmbeddedTransport,
    ProtocolSession,
    ProtocolSessionFactory,
    SessionAuthState,
    close_reason_for,
    create_embedded_factory,
)
from .gateway import GatewayTransport, create_gateway_factory
from .protocol import (
    CloseReason,
    ConnectionPhase,
    ConnectionUpdate,
    MessageReceived,
    PairingArtifact,
    SendResult,
    TransportAdapter,
    TransportEvent,
    TransportListener,
    TransportStatus,
)
from .registry import FamilyNotFoundError, TransportFactory, TransportFamilyRegistry

__all__ = [
    # Protocol
    "CloseReason",
    "ConnectionPhase",
    "ConnectionUpdate",
    "MessageReceived",
    "PairingArtifact",
    "SendResult",
    "TransportAdapter",
    "TransportEvent",
    "TransportListener",
    "TransportStatus",
    # Families
    "EmbeddedTransport",
    "GatewayTransport",
    "ProtocolSession",
    "ProtocolSessionFactory",
    "SessionAuthState",
    "close_reason_for",
    "create_embedded_factory",
    "create_gateway_factory",
    # Registry
    "FamilyNotFoundError",
    "TransportFactory",
    "TransportFamilyRegistry",
]
