"""
Kesher instances: one managed account each.
"""

from .instance import Instance
from .reconnect import ReconnectDelay, ReconnectPolicy
from .state import IN_FLIGHT, ConnectionState, can_transition, check_transition

__all__ = [
    "IN_FLIGHT",
    "ConnectionState",
    "Instance",
    "ReconnectDelay",
    "ReconnectPolicy",
    "can_transition",
    "check_transition",
]
