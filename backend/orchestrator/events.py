"""
Event definitions for the live client reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Every event is scoped to the session it was produced for. The reducer
ignores events whose session_id is not the active one, so callbacks that
fire late (after teardown or a superseding connect) are harmless.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from adapters.live.base import TransportFailureKind
from audio.frames import AudioBlock
from session.errors import ErrorCategory


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (status, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Caller control
    # ------------------------------------------------------------------
    SESSION_REQUESTED = "SESSION_REQUESTED"
    DISCONNECT_REQUESTED = "DISCONNECT_REQUESTED"

    # ------------------------------------------------------------------
    # Bootstrap failures
    # ------------------------------------------------------------------
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    ACQUISITION_FAILED = "ACQUISITION_FAILED"

    # ------------------------------------------------------------------
    # Transport lifecycle
    # ------------------------------------------------------------------
    TRANSPORT_OPENED = "TRANSPORT_OPENED"
    TRANSPORT_CLOSED = "TRANSPORT_CLOSED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------
    CAPTURE_BLOCK = "CAPTURE_BLOCK"
    INBOUND_FRAGMENT = "INBOUND_FRAGMENT"
    INTERRUPT_SIGNAL = "INTERRUPT_SIGNAL"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    - session_id: the session the event belongs to (None only when idle)
    """

    event_type: EventType
    ts_ms: int
    session_id: str | None


# =============================================================================
# Caller Control
# =============================================================================

@dataclass(frozen=True)
class SessionRequested(Event):
    """connect() was called. session_id is the NEW session."""
    voice_id: str


@dataclass(frozen=True)
class DisconnectRequested(Event):
    """disconnect() was called for the session current at call time."""


# =============================================================================
# Bootstrap Failures
# =============================================================================

@dataclass(frozen=True)
class PreconditionFailed(Event):
    """An environment precondition is not met. Nothing was acquired."""
    category: ErrorCategory
    detail: str | None = None


@dataclass(frozen=True)
class AcquisitionFailed(Event):
    """A device could not be acquired or started."""
    category: ErrorCategory
    detail: str | None = None


# =============================================================================
# Transport Lifecycle
# =============================================================================

@dataclass(frozen=True)
class TransportOpened(Event):
    """Handshake completed; the session is live."""


@dataclass(frozen=True)
class TransportClosed(Event):
    """The connection closed cleanly."""
    reason: str | None = None


@dataclass(frozen=True)
class TransportError(Event):
    """The connection failed during handshake (CONNECT) or after it (RUNTIME)."""
    kind: TransportFailureKind
    detail: str


# =============================================================================
# Audio
# =============================================================================

@dataclass(frozen=True)
class CaptureBlock(Event):
    """One encoded microphone block, in capture order."""
    block: AudioBlock


@dataclass(frozen=True)
class InboundFragment(Event):
    """One transport-encoded PCM16 fragment from the service."""
    encoded: str


@dataclass(frozen=True)
class InterruptSignal(Event):
    """The service detected barge-in; queued playback must stop."""
