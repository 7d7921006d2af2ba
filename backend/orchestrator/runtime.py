"""
Runtime execution shell for the live client.

Responsibilities:
- Own the client state
- Call the pure reducer
- Execute commands with side effects (callbacks, capture, playback, teardown)
- Serialize producer events (capture pump, transport reader) through one
  FIFO queue drained by one pump task per session
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Protocol

from adapters.live.base import TransportCallbacks, TransportFailure
from audio.codec import AudioCodecError, decode_binary, pcm16_to_float
from audio.devices import AudioDeviceError
from audio.frames import AudioBlock, AudioFragment
from observability.logger import log_event
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
    Event,
    EventType,
    InboundFragment,
    InterruptSignal,
    TransportClosed,
    TransportError,
    TransportOpened,
)
from orchestrator.reducer import reduce
from orchestrator.state_dataclass import ClientState
from protocol.live_messages import FragmentSignal, ServerMessage
from session.connection_status import ConnectionStatus
from session.errors import category_for_device_error, error_message
from session.live_session import LiveSession
from spec import OUTPUT_SAMPLE_RATE_HZ


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class ClientSink(Protocol):
    """Caller-facing callbacks, as seen by the runtime."""

    def emit_status(self, status: str) -> None: ...
    def emit_error(self, message: str) -> None: ...
    def emit_volume(self, level: float) -> None: ...


class Runtime:
    """
    Runtime execution boundary for the live client.

    Guarantees:
    - Reducer is always called exactly once per incoming event
    - State transitions are serialized (one asyncio.Lock)
    - All side effects occur *after* state has been updated
    - Commands are executed in reducer-emitted order
    - Runtime never performs orchestration logic itself
    """

    def __init__(
        self,
        *,
        sink: ClientSink,
        initial_state: ClientState | None = None,
    ) -> None:
        self._sink = sink
        self._state = initial_state or ClientState()
        self._lock = asyncio.Lock()
        self._session: LiveSession | None = None
        self._events: asyncio.Queue[Event] | None = None
        self._pump_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ClientState:
        """Current immutable state. Read-only for consumers."""
        return self._state

    @property
    def session(self) -> LiveSession | None:
        return self._session

    # ------------------------------------------------------------------
    # Event entry points
    # ------------------------------------------------------------------

    async def handle_event(self, event: Event) -> None:
        """
        Process a single event through the reducer and execute its commands.

        The only entry point that changes state. Producer callbacks go
        through post(); caller control (connect/disconnect) awaits this
        directly.
        """
        async with self._lock:
            new_state, commands = reduce(self._state, event)
            self._state = new_state
            for cmd in commands:
                await self._execute_command(cmd)

    def post(self, event: Event) -> None:
        """
        Enqueue a producer event. Never blocks.

        Called on the loop thread only.
        """
        queue = self._events
        if queue is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "EVENT_DROPPED_NO_SESSION",
                "dropped_event_type": event.event_type.value,
                "session_id": event.session_id,
            })
            return
        queue.put_nowait(event)

    async def attach_session(self, session: LiveSession) -> bool:
        """
        Make session the active resource container and start its pump.

        Returns False (after releasing session) if the state has already
        moved on to another session or out of CONNECTING.
        """
        async with self._lock:
            if (
                self._state.session_id != session.session_id
                or self._state.status is not ConnectionStatus.CONNECTING
                or self._session is not None
            ):
                await session.release()
                return False
            self._session = session
            self._start_pump(session.session_id)
            return True

    async def shutdown(self) -> None:
        """Release any remaining session. Safe to call repeatedly."""
        async with self._lock:
            await self._teardown("runtime_shutdown")

    # ------------------------------------------------------------------
    # Producer adapters
    # ------------------------------------------------------------------

    def capture_callback(self, session_id: str) -> Callable[[AudioBlock], None]:
        def _on_block(block: AudioBlock) -> None:
            self.post(CaptureBlock(
                event_type=EventType.CAPTURE_BLOCK,
                ts_ms=_now_ms(),
                session_id=session_id,
                block=block,
            ))
        return _on_block

    def transport_callbacks(self, session_id: str) -> TransportCallbacks:
        """Callbacks that translate transport activity into events of session_id."""

        def on_open() -> None:
            self.post(TransportOpened(
                event_type=EventType.TRANSPORT_OPENED,
                ts_ms=_now_ms(),
                session_id=session_id,
            ))

        def on_message(message: ServerMessage) -> None:
            # signals() yields an interruption before the fragments of the same message.
            for signal in message.signals():
                if isinstance(signal, FragmentSignal):
                    self.post(InboundFragment(
                        event_type=EventType.INBOUND_FRAGMENT,
                        ts_ms=_now_ms(),
                        session_id=session_id,
                        encoded=signal.encoded,
                    ))
                else:
                    self.post(InterruptSignal(
                        event_type=EventType.INTERRUPT_SIGNAL,
                        ts_ms=_now_ms(),
                        session_id=session_id,
                    ))

        def on_close(reason: str | None) -> None:
            self.post(TransportClosed(
                event_type=EventType.TRANSPORT_CLOSED,
                ts_ms=_now_ms(),
                session_id=session_id,
                reason=reason,
            ))

        def on_error(failure: TransportFailure) -> None:
            self.post(TransportError(
                event_type=EventType.TRANSPORT_ERROR,
                ts_ms=_now_ms(),
                session_id=session_id,
                kind=failure.kind,
                detail=failure.detail,
            ))

        return TransportCallbacks(
            on_open=on_open,
            on_message=on_message,
            on_close=on_close,
            on_error=on_error,
        )

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event(cmd.event)

        elif isinstance(cmd, EmitStatus):
            self._call_sink("status", self._sink.emit_status, cmd.status.value)

        elif isinstance(cmd, EmitError):
            self._call_sink(
                "error", self._sink.emit_error, error_message(cmd.category, cmd.detail)
            )

        elif isinstance(cmd, EmitVolume):
            self._call_sink("volume", self._sink.emit_volume, cmd.level)

        elif isinstance(cmd, StartCapture):
            self._start_capture(cmd.session_id)

        elif isinstance(cmd, SendBlock):
            session = self._session
            if session is not None and session.transport is not None:
                session.transport.send(cmd.block)

        elif isinstance(cmd, InterruptPlayback):
            session = self._session
            if session is not None and session.scheduler is not None:
                session.scheduler.interrupt()

        elif isinstance(cmd, EnqueueFragment):
            self._enqueue_fragment(cmd.encoded)

        elif isinstance(cmd, Teardown):
            await self._teardown(cmd.reason)

        else:
            raise TypeError(f"Unknown command: {type(cmd).__name__}")

    def _start_capture(self, session_id: str) -> None:
        session = self._session
        if session is None or session.session_id != session_id:
            return
        try:
            session.start_capture(self.capture_callback(session_id))
        except AudioDeviceError as e:
            self.post(AcquisitionFailed(
                event_type=EventType.ACQUISITION_FAILED,
                ts_ms=_now_ms(),
                session_id=session_id,
                category=category_for_device_error(e, microphone=True),
                detail=str(e) or None,
            ))

    def _enqueue_fragment(self, encoded: str) -> None:
        session = self._session
        if session is None or session.scheduler is None:
            return
        try:
            pcm = decode_binary(encoded)
        except AudioCodecError as e:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "FRAGMENT_DECODE_FAILED",
                "session_id": session.session_id,
                "error": str(e),
            })
            return
        fragment = AudioFragment(
            samples=pcm16_to_float(pcm),
            sample_rate_hz=OUTPUT_SAMPLE_RATE_HZ,
        )
        session.scheduler.enqueue(fragment)

    async def _teardown(self, reason: str) -> None:
        session, self._session = self._session, None
        self._stop_pump()
        if session is None:
            return
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "TEARDOWN",
            "session_id": session.session_id,
            "reason": reason,
            "resources": session.log_context(),
        })
        await session.release()

    def _call_sink(self, name: str, fn: Callable[[Any], None], value: Any) -> None:
        try:
            fn(value)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "CALLBACK_FAILED",
                "callback": name,
                "session_id": self._state.session_id,
                "error": repr(e),
            })

    # ------------------------------------------------------------------
    # Event pump
    # ------------------------------------------------------------------

    def _start_pump(self, session_id: str) -> None:
        queue: asyncio.Queue[Event] = asyncio.Queue()
        self._events = queue
        self._pump_task = asyncio.create_task(self._pump(queue, session_id))

    def _stop_pump(self) -> None:
        task = self._pump_task
        self._pump_task = None
        self._events = None
        # A pump tearing down its own session finishes its current event and exits.
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _pump(self, queue: asyncio.Queue[Event], session_id: str) -> None:
        while self._events is queue:
            event = await queue.get()
            await self.handle_event(event)
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "EVENT_PUMP_STOPPED",
            "session_id": session_id,
            "unprocessed_events": queue.qsize(),
        })
