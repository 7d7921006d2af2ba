"""
Side-effect command definitions for the live client.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Commands are immutable value objects emitted by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from audio.frames import AudioBlock
from session.connection_status import ConnectionStatus
from session.errors import ErrorCategory


# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging and runtime dispatch.
    """

    # Caller callbacks
    EMIT_STATUS = "EMIT_STATUS"
    EMIT_ERROR = "EMIT_ERROR"
    EMIT_VOLUME = "EMIT_VOLUME"

    # Capture / transport
    START_CAPTURE = "START_CAPTURE"
    SEND_BLOCK = "SEND_BLOCK"

    # Playback
    INTERRUPT_PLAYBACK = "INTERRUPT_PLAYBACK"
    ENQUEUE_FRAGMENT = "ENQUEUE_FRAGMENT"

    # Lifecycle
    TEARDOWN = "TEARDOWN"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Caller Callbacks
# =============================================================================

@dataclass(frozen=True)
class EmitStatus(Command):
    """Invoke on_status_change with status.value."""
    status: ConnectionStatus
    command_type: CommandType = CommandType.EMIT_STATUS


@dataclass(frozen=True)
class EmitError(Command):
    """Invoke on_error with the category's user-facing message."""
    category: ErrorCategory
    detail: str | None = None
    command_type: CommandType = CommandType.EMIT_ERROR


@dataclass(frozen=True)
class EmitVolume(Command):
    """Invoke on_volume_level. level >= 0."""
    level: float
    command_type: CommandType = CommandType.EMIT_VOLUME


# =============================================================================
# Capture / Transport
# =============================================================================

@dataclass(frozen=True)
class StartCapture(Command):
    """Start feeding microphone blocks of session_id into the event stream."""
    session_id: str
    command_type: CommandType = CommandType.START_CAPTURE


@dataclass(frozen=True)
class SendBlock(Command):
    """Hand one outbound block to the transport. Order is preserved."""
    block: AudioBlock
    command_type: CommandType = CommandType.SEND_BLOCK


# =============================================================================
# Playback
# =============================================================================

@dataclass(frozen=True)
class InterruptPlayback(Command):
    """Stop every scheduled playback source and reset the cursor."""
    command_type: CommandType = CommandType.INTERRUPT_PLAYBACK


@dataclass(frozen=True)
class EnqueueFragment(Command):
    """Decode one fragment and schedule it after the previous one."""
    encoded: str
    command_type: CommandType = CommandType.ENQUEUE_FRAGMENT


# =============================================================================
# Lifecycle
# =============================================================================

@dataclass(frozen=True)
class Teardown(Command):
    """
    Release every resource of the current session.

    Single teardown path for disconnect, remote close, error and
    superseding connect. Idempotent.
    """
    reason: str
    command_type: CommandType = CommandType.TEARDOWN


# =============================================================================
# Observability
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Structured log entry produced by the reducer."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
