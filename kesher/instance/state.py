"""
Connection state machine for one instance.

    Disconnected ──connect──> Connecting ──pairing──> PairingReady
         ^  │                    │   │                  │  │  ↺ (artifact refresh)
         │  │                    │   └──open──> Connected <┘  │
         │  └──logout──> LoggedOut                 │          │
         └───────────── close / failure ───────────┴──────────┘

LoggedOut leaves only through a forced reset.
"""

from __future__ import annotations

from enum import Enum

from ..errors import InvalidTransitionError


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    PAIRING_READY = "pairing_ready"
    CONNECTED = "connected"
    LOGGED_OUT = "logged_out"


_EDGES: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset(
        {ConnectionState.CONNECTING, ConnectionState.LOGGED_OUT}
    ),
    ConnectionState.CONNECTING: frozenset(
        {
            ConnectionState.PAIRING_READY,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        }
    ),
    ConnectionState.PAIRING_READY: frozenset(
        {
            ConnectionState.PAIRING_READY,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        }
    ),
    ConnectionState.CONNECTED: frozenset({ConnectionState.DISCONNECTED}),
    ConnectionState.LOGGED_OUT: frozenset({ConnectionState.DISCONNECTED}),
}

# States in which a connection attempt is in flight
IN_FLIGHT: frozenset[ConnectionState] = frozenset(
    {ConnectionState.CONNECTING, ConnectionState.PAIRING_READY}
)


def can_transition(current: ConnectionState, target: ConnectionState) -> bool:
    return target in _EDGES[current]


def check_transition(current: ConnectionState, target: ConnectionState) -> None:
    """
    Raises:
        InvalidTransitionError: If target is not reachable from current
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
