"""
Pure live client reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (status, event) pair is handled or explicitly ignored (logged).

State machine:

    IDLE -> CONNECTING -> CONNECTED -> DISCONNECTED
    CONNECTING | CONNECTED -> ERROR

SESSION_REQUESTED is accepted from every status and always tears down the
previous session first. Every other event must carry the active session id.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from adapters.live.base import TransportFailureKind
from orchestrator.commands import (
    Command,
    EmitError,
    EmitStatus,
    EmitVolume,
    EnqueueFragment,
    InterruptPlayback,
    LogEvent,
    SendBlock,
    StartCapture,
    Teardown,
)
from orchestrator.events import (
    AcquisitionFailed,
    CaptureBlock,
    DisconnectRequested,
    Event,
    InboundFragment,
    InterruptSignal,
    PreconditionFailed,
    SessionRequested,
    TransportClosed,
    TransportError,
    TransportOpened,
)
from orchestrator.state_dataclass import ClientState
from session.connection_status import ConnectionStatus
from session.errors import ErrorCategory
from spec import VOLUME_LEVEL_SCALE


_LIVE = (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED)


# =============================================================================
# Helpers
# =============================================================================

def _log(
    state: ClientState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "status": state.status.value,
            "event_type": event.event_type.value,
            "session_id": event.session_id,
            "active_session_id": state.session_id,
            "decision": decision,
            "details": details or {},
        }
    )


def _ignore(
    state: ClientState, event: Event, reason: str
) -> tuple[ClientState, tuple[Command, ...]]:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _transition(
    state: ClientState,
    new_state: ClientState,
    event: Event,
    source: str,
) -> LogEvent:
    return _log(
        new_state,
        event,
        "state_changed",
        {
            "from_status": state.status.value,
            "to_status": new_state.status.value,
            "source": source,
        },
    )


def _enter_error(
    state: ClientState,
    event: Event,
    category: ErrorCategory,
    detail: str | None,
    *,
    teardown: bool,
) -> tuple[ClientState, tuple[Command, ...]]:
    error_state = replace(state, status=ConnectionStatus.ERROR, last_error=category)
    commands: list[Command] = []
    if teardown:
        commands.append(Teardown(reason=f"error:{category.value}"))
    commands.append(_transition(state, error_state, event, category.value))
    commands.append(EmitError(category=category, detail=detail))
    return error_state, tuple(commands)


def _category_for(kind: TransportFailureKind) -> ErrorCategory:
    if kind is TransportFailureKind.CONNECT:
        return ErrorCategory.CONNECT_FAILED
    return ErrorCategory.CONNECTION_LOST


# =============================================================================
# Reducer
# =============================================================================

def reduce(
    state: ClientState, event: Event
) -> tuple[ClientState, tuple[Command, ...]]:
    """
    Pure reducer for the live client state machine.

    Given the current state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (status, event) pair is handled or explicitly ignored
    - Session-safe: ignores events of any session but the active one
    """

    # ------------------------------------------------------------------
    # New session: always accepted, supersedes whatever is active
    # ------------------------------------------------------------------
    if isinstance(event, SessionRequested):
        new_state = ClientState(
            status=ConnectionStatus.CONNECTING,
            session_id=event.session_id,
            voice_id=event.voice_id,
        )
        return new_state, (
            Teardown(reason="superseded" if state.status in _LIVE else "new_session"),
            _transition(state, new_state, event, "connect"),
            EmitStatus(status=ConnectionStatus.CONNECTING),
        )

    # ------------------------------------------------------------------
    # Session gating
    # ------------------------------------------------------------------
    if event.session_id != state.session_id:
        return _ignore(state, event, "stale_session")

    # ------------------------------------------------------------------
    # Disconnect: valid from every status, idempotent
    # ------------------------------------------------------------------
    if isinstance(event, DisconnectRequested):
        if state.status not in _LIVE:
            return state, (
                Teardown(reason="disconnect"),
                _log(state, event, "disconnect_noop"),
            )
        new_state = replace(state, status=ConnectionStatus.DISCONNECTED)
        return new_state, (
            Teardown(reason="disconnect"),
            _transition(state, new_state, event, "disconnect"),
            EmitStatus(status=ConnectionStatus.DISCONNECTED),
        )

    # ------------------------------------------------------------------
    # Terminal statuses: nothing but a new session or disconnect applies
    # ------------------------------------------------------------------
    if state.status not in _LIVE:
        return _ignore(state, event, f"status_{state.status.value}")

    # ------------------------------------------------------------------
    # Bootstrap failures
    # ------------------------------------------------------------------
    if isinstance(event, PreconditionFailed):
        if state.status is not ConnectionStatus.CONNECTING:
            return _ignore(state, event, "precondition_after_connect")
        # Nothing was acquired yet.
        return _enter_error(state, event, event.category, event.detail, teardown=False)

    if isinstance(event, AcquisitionFailed):
        return _enter_error(state, event, event.category, event.detail, teardown=True)

    # ------------------------------------------------------------------
    # Transport lifecycle
    # ------------------------------------------------------------------
    if isinstance(event, TransportOpened):
        if state.status is not ConnectionStatus.CONNECTING:
            return _ignore(state, event, "already_connected")
        new_state = replace(state, status=ConnectionStatus.CONNECTED, capture_started=True)
        return new_state, (
            _transition(state, new_state, event, "transport_opened"),
            EmitStatus(status=ConnectionStatus.CONNECTED),
            StartCapture(session_id=event.session_id or ""),
        )

    if isinstance(event, TransportClosed):
        new_state = replace(state, status=ConnectionStatus.DISCONNECTED)
        return new_state, (
            Teardown(reason=f"remote_close:{event.reason}"),
            _transition(state, new_state, event, "transport_closed"),
            EmitStatus(status=ConnectionStatus.DISCONNECTED),
        )

    if isinstance(event, TransportError):
        return _enter_error(
            state, event, _category_for(event.kind), event.detail, teardown=True
        )

    # ------------------------------------------------------------------
    # Audio (CONNECTED only)
    # ------------------------------------------------------------------
    if state.status is not ConnectionStatus.CONNECTED:
        return _ignore(state, event, "not_connected")

    if isinstance(event, CaptureBlock):
        return state, (
            EmitVolume(level=event.block.amplitude * VOLUME_LEVEL_SCALE),
            SendBlock(block=event.block),
        )

    if isinstance(event, InterruptSignal):
        return state, (
            InterruptPlayback(),
            _log(state, event, "interrupt"),
        )

    if isinstance(event, InboundFragment):
        return state, (EnqueueFragment(encoded=event.encoded),)

    return _ignore(state, event, "unhandled_event")
