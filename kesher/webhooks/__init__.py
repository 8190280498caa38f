"""
Kesher webhook subscriptions, fan-out delivery and delivery log.
"""

from .dispatcher import FanoutResult, WebhookDispatcher
from .log_ring import DeliveryRecord, DeliveryStatus, DestinationResult, LogRing
from .models import DEFAULT_EVENTS, EVENT_KINDS, EVENT_MESSAGE, EVENT_STATUS, Webhook

__all__ = [
    "DEFAULT_EVENTS",
    "EVENT_KINDS",
    "EVENT_MESSAGE",
    "EVENT_STATUS",
    "DeliveryRecord",
    "DeliveryStatus",
    "DestinationResult",
    "FanoutResult",
    "LogRing",
    "Webhook",
    "WebhookDispatcher",
]
