"""
Connection status of the live client.

Owned by the reducer state. Only the transitions below exist:

    IDLE -> CONNECTING -> CONNECTED -> DISCONNECTED
    CONNECTING | CONNECTED -> ERROR

Leaving ERROR or DISCONNECTED requires a fresh connect().
"""
from enum import Enum


class ConnectionStatus(str, Enum):
    """Session lifecycle status as reported to callers."""
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
