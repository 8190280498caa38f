"""
Kesher - Multi-Account Messaging Gateway

Kesher runs many accounts on a third-party messaging network at once:

- **Lifecycle control**: create, connect, disconnect, restart, force reset
- **Two backend families**: an embedded protocol session or a remote REST gateway
- **Reconnection**: exponential backoff with an extended cooldown, never giving up
- **Inbound relay**: raw provider events normalized to one envelope and fanned
  out to webhook subscribers
- **Outbound sends**: text, image, audio and document

Quick Start:
    >>> from kesher import InstanceRegistry, TransportFamilyRegistry
    >>> from kesher.transports import create_gateway_factory
    >>>
    >>> families = TransportFamilyRegistry()
    >>> families.register("gateway", create_gateway_factory())
    >>> registry = InstanceRegistry(families, credential_store=..., metadata_store=..., dispatcher=...)
    >>> await registry.create("sales", family="gateway", gateway=...)
    >>> await registry.connect("sales")
"""

__version__ = "0.1.0"

from kesher.errors import ErrorCode, OperationResult
from kesher.events import EventNormalizer, MessageEnvelope
from kesher.instance import ConnectionState, Instance, ReconnectPolicy
from kesher.registry import InstanceRegistry
from kesher.transports import TransportAdapter, TransportFamilyRegistry
from kesher.webhooks import LogRing, WebhookDispatcher

__all__ = [
    "__version__",
    "ConnectionState",
    "ErrorCode",
    "EventNormalizer",
    "Instance",
    "InstanceRegistry",
    "LogRing",
    "MessageEnvelope",
    "OperationResult",
    "ReconnectPolicy",
    "TransportAdapter",
    "TransportFamilyRegistry",
    "WebhookDispatcher",
]
