"""
Authoritative live client state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.

Resources (microphone, output, transport) are NOT state; they live in
LiveSession and are only touched by the runtime when executing commands.
"""
from __future__ import annotations

from dataclasses import dataclass

from session.connection_status import ConnectionStatus
from session.errors import ErrorCategory


@dataclass(frozen=True)
class ClientState:
    """Immutable snapshot of all reducer-owned state."""

    status: ConnectionStatus = ConnectionStatus.IDLE

    # Active session; events for any other session are stale.
    session_id: str | None = None

    voice_id: str | None = None

    # Set on the first TRANSPORT_OPENED of the session.
    capture_started: bool = False

    last_error: ErrorCategory | None = None
