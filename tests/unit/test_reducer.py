# pylint: disable=missing-module-docstring,missing-function-docstring
from __future__ import annotations

from adapters.live.base import TransportFailureKind
from audio.frames import AudioBlock
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
    EventType,
    InboundFragment,
    InterruptSignal,
    PreconditionFailed,
    SessionRequested,
    TransportClosed,
    TransportError,
    TransportOpened,
)
from orchestrator.reducer import reduce
from orchestrator.state_dataclass import ClientState
from session.connection_status import ConnectionStatus
from session.errors import ErrorCategory


def effects(commands: tuple[Command, ...]) -> list[Command]:
    """Commands minus log entries."""
    return [c for c in commands if not isinstance(c, LogEvent)]


def requested(sid: str = "s1") -> SessionRequested:
    return SessionRequested(
        event_type=EventType.SESSION_REQUESTED, ts_ms=1, session_id=sid, voice_id="Kore"
    )


def opened(sid: str = "s1") -> TransportOpened:
    return TransportOpened(event_type=EventType.TRANSPORT_OPENED, ts_ms=2, session_id=sid)


def connected(sid: str = "s1") -> ClientState:
    return ClientState(status=ConnectionStatus.CONNECTED, session_id=sid, voice_id="Kore")


def test_connect_then_open():
    state, cmds = reduce(ClientState(), requested())
    assert state.status is ConnectionStatus.CONNECTING
    assert state.session_id == "s1"
    assert effects(cmds) == [
        Teardown(reason="new_session"),
        EmitStatus(status=ConnectionStatus.CONNECTING),
    ]

    state, cmds = reduce(state, opened())
    assert state.status is ConnectionStatus.CONNECTED
    assert effects(cmds) == [
        EmitStatus(status=ConnectionStatus.CONNECTED),
        StartCapture(session_id="s1"),
    ]


def test_connect_while_connected_tears_down_first():
    state, cmds = reduce(connected("old"), requested("new"))
    assert state.session_id == "new"
    assert effects(cmds)[0] == Teardown(reason="superseded")


def test_stale_events_are_ignored():
    state = connected("s2")
    for event in (
        opened("s1"),
        TransportClosed(event_type=EventType.TRANSPORT_CLOSED, ts_ms=3, session_id="s1"),
        InterruptSignal(event_type=EventType.INTERRUPT_SIGNAL, ts_ms=3, session_id="s1"),
    ):
        new_state, cmds = reduce(state, event)
        assert new_state == state
        assert effects(cmds) == []
        assert cmds[0].event["decision"] == "ignore"  # type: ignore[attr-defined]


def test_precondition_failure_enters_error_without_teardown():
    state, _ = reduce(ClientState(), requested())
    state, cmds = reduce(state, PreconditionFailed(
        event_type=EventType.PRECONDITION_FAILED,
        ts_ms=2,
        session_id="s1",
        category=ErrorCategory.MISSING_CONFIG,
    ))
    assert state.status is ConnectionStatus.ERROR
    assert state.last_error is ErrorCategory.MISSING_CONFIG
    assert effects(cmds) == [EmitError(category=ErrorCategory.MISSING_CONFIG)]


def test_acquisition_failure_tears_down_then_reports():
    state, _ = reduce(ClientState(), requested())
    state, cmds = reduce(state, AcquisitionFailed(
        event_type=EventType.ACQUISITION_FAILED,
        ts_ms=2,
        session_id="s1",
        category=ErrorCategory.MIC_PERMISSION_DENIED,
        detail="denied",
    ))
    assert state.status is ConnectionStatus.ERROR
    out = effects(cmds)
    assert isinstance(out[0], Teardown)
    assert out[1] == EmitError(category=ErrorCategory.MIC_PERMISSION_DENIED, detail="denied")


def test_transport_error_categories():
    for kind, category in (
        (TransportFailureKind.CONNECT, ErrorCategory.CONNECT_FAILED),
        (TransportFailureKind.RUNTIME, ErrorCategory.CONNECTION_LOST),
    ):
        state, cmds = reduce(connected(), TransportError(
            event_type=EventType.TRANSPORT_ERROR, ts_ms=5, session_id="s1", kind=kind, detail="x",
        ))
        assert state.status is ConnectionStatus.ERROR
        out = effects(cmds)
        assert isinstance(out[0], Teardown)
        assert out[1] == EmitError(category=category, detail="x")


def test_remote_close_tears_down_then_reports_disconnected():
    state, cmds = reduce(connected(), TransportClosed(
        event_type=EventType.TRANSPORT_CLOSED, ts_ms=5, session_id="s1", reason="bye",
    ))
    assert state.status is ConnectionStatus.DISCONNECTED
    out = effects(cmds)
    assert isinstance(out[0], Teardown)
    assert out[1] == EmitStatus(status=ConnectionStatus.DISCONNECTED)


def test_capture_block_emits_volume_before_send():
    block = AudioBlock(sequence_num=1, encoded="AAAA", amplitude=0.2)
    state, cmds = reduce(connected(), CaptureBlock(
        event_type=EventType.CAPTURE_BLOCK, ts_ms=5, session_id="s1", block=block,
    ))
    assert state == connected()
    out = effects(cmds)
    assert isinstance(out[0], EmitVolume)
    assert out[0].level > 0
    assert out[1] == SendBlock(block=block)


def test_inbound_audio_and_interrupt():
    _, cmds = reduce(connected(), InboundFragment(
        event_type=EventType.INBOUND_FRAGMENT, ts_ms=5, session_id="s1", encoded="AAAA",
    ))
    assert effects(cmds) == [EnqueueFragment(encoded="AAAA")]

    _, cmds = reduce(connected(), InterruptSignal(
        event_type=EventType.INTERRUPT_SIGNAL, ts_ms=5, session_id="s1",
    ))
    assert effects(cmds) == [InterruptPlayback()]


def test_audio_ignored_while_connecting():
    state = ClientState(status=ConnectionStatus.CONNECTING, session_id="s1")
    _, cmds = reduce(state, InboundFragment(
        event_type=EventType.INBOUND_FRAGMENT, ts_ms=5, session_id="s1", encoded="AAAA",
    ))
    assert effects(cmds) == []


def test_disconnect_from_live_and_idle():
    state, cmds = reduce(connected(), DisconnectRequested(
        event_type=EventType.DISCONNECT_REQUESTED, ts_ms=5, session_id="s1",
    ))
    assert state.status is ConnectionStatus.DISCONNECTED
    assert effects(cmds) == [
        Teardown(reason="disconnect"),
        EmitStatus(status=ConnectionStatus.DISCONNECTED),
    ]

    # Repeated / idle disconnect: teardown (no-op) but no status change.
    again, cmds = reduce(state, DisconnectRequested(
        event_type=EventType.DISCONNECT_REQUESTED, ts_ms=6, session_id="s1",
    ))
    assert again == state
    assert effects(cmds) == [Teardown(reason="disconnect")]

    idle, cmds = reduce(ClientState(), DisconnectRequested(
        event_type=EventType.DISCONNECT_REQUESTED, ts_ms=6, session_id=None,
    ))
    assert idle == ClientState()
    assert not any(isinstance(c, EmitStatus) for c in cmds)


def test_error_is_terminal_until_new_connect():
    error_state = ClientState(status=ConnectionStatus.ERROR, session_id="s1")
    state, cmds = reduce(error_state, opened())
    assert state == error_state
    assert effects(cmds) == []

    state, _ = reduce(error_state, requested("s2"))
    assert state.status is ConnectionStatus.CONNECTING
