"""Kesher HTTP routes."""

from .instances import router as instances_router
from .messages import router as messages_router
from .webhooks import router as webhooks_router

__all__ = ["instances_router", "messages_router", "webhooks_router"]
