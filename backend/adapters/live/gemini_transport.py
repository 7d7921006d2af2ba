"""
Gemini Live WebSocket transport.

Core model:
- One WebSocket per session (BidiGenerateContent).
- Handshake = socket open + setup message + setupComplete reply. Anything
  that fails before setupComplete is a CONNECT failure; after it, a
  RUNTIME failure.
- A reader task parses server frames and hands ServerMessage objects to
  callbacks.on_message in arrival order.
- A writer task drains the outbound FIFO. It starts only after the
  handshake, so early send() calls are buffered, never dropped.

Design constraints:
- Transport never touches playback or capture.
- Transport never retries; the caller decides.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedError,
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
)

from adapters.live.base import (
    LiveTransport,
    TransportCallbacks,
    TransportFailure,
    TransportFailureKind,
)
from audio.frames import AudioBlock
from observability.logger import log_event
from protocol.live_messages import (
    LiveProtocolError,
    build_realtime_input,
    build_setup_message,
    parse_server_message,
)
from spec import (
    LIVE_CLOSE_TIMEOUT_S,
    LIVE_OPEN_TIMEOUT_S,
    LIVE_PING_INTERVAL_S,
    LIVE_SETUP_TIMEOUT_S,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _describe_close(exc: ConnectionClosed) -> str:
    rcvd = exc.rcvd
    if rcvd is None:
        return "connection closed without close frame"
    return f"closed by server: code={rcvd.code} reason={rcvd.reason!r}"


class GeminiLiveTransport(LiveTransport):
    """
    Persistent Gemini Live connection.

    Public interface:
    - open(system_instruction, voice_id, callbacks): start background connect
    - send(block): queue outbound audio
    - close(): idempotent teardown
    """

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        endpoint: str,
        session_id: str = "",
        connect: Callable[..., Any] = ws_connect,
        open_timeout_s: float = LIVE_OPEN_TIMEOUT_S,
        setup_timeout_s: float = LIVE_SETUP_TIMEOUT_S,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._endpoint = endpoint
        self._session_id = session_id
        self._connect = connect
        self._open_timeout_s = open_timeout_s
        self._setup_timeout_s = setup_timeout_s

        self._callbacks: TransportCallbacks | None = None
        self._ws: ClientConnection | None = None
        self._outbound: asyncio.Queue[AudioBlock] = asyncio.Queue()
        self._run_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None

        self._established = False
        self._terminal_reported = False
        self._closing = False

        self.sent_blocks = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def established(self) -> bool:
        return self._established

    @property
    def pending_sends(self) -> int:
        return self._outbound.qsize()

    def open(
        self,
        *,
        system_instruction: str,
        voice_id: str,
        callbacks: TransportCallbacks,
    ) -> None:
        if self._run_task is not None:
            raise RuntimeError("GeminiLiveTransport.open() called twice")
        self._callbacks = callbacks
        self._run_task = asyncio.create_task(
            self._run(system_instruction=system_instruction, voice_id=voice_id)
        )

    def send(self, block: AudioBlock) -> None:
        if self._closing or self._terminal_reported:
            return
        self._outbound.put_nowait(block)

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True

        tasks = [t for t in (self._writer_task, self._run_task) if t is not None]
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._writer_task = None
        self._run_task = None

        await self._close_socket()

        if self._established:
            self._report_close("client_closed")

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "TRANSPORT_CLOSED_BY_CLIENT",
            "session_id": self._session_id,
            "sent_blocks": self.sent_blocks,
            "unsent_blocks": self._outbound.qsize(),
        })

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def _run(self, *, system_instruction: str, voice_id: str) -> None:
        try:
            ws = await self._connect(
                self._endpoint,
                additional_headers={"x-goog-api-key": self._api_key},
                open_timeout=self._open_timeout_s,
                ping_interval=LIVE_PING_INTERVAL_S,
                max_size=None,
            )
        except InvalidStatus as e:
            self._report_error(
                TransportFailureKind.CONNECT,
                f"handshake rejected: HTTP {e.response.status_code}",
            )
            return
        except (InvalidHandshake, InvalidURI, OSError, asyncio.TimeoutError) as e:
            self._report_error(TransportFailureKind.CONNECT, f"connect failed: {e!r}")
            return

        self._ws = ws

        try:
            await ws.send(json.dumps(build_setup_message(
                model=self._model,
                system_instruction=system_instruction,
                voice_id=voice_id,
            )))
            raw = await asyncio.wait_for(ws.recv(), timeout=self._setup_timeout_s)
            first = parse_server_message(raw)
            if not first.setup_complete:
                raise LiveProtocolError("first server frame was not setupComplete")
        except ConnectionClosed as e:
            await self._close_socket()
            self._report_error(TransportFailureKind.CONNECT, _describe_close(e))
            return
        except (LiveProtocolError, OSError, asyncio.TimeoutError) as e:
            await self._close_socket()
            self._report_error(TransportFailureKind.CONNECT, f"setup failed: {e!r}")
            return

        self._established = True
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "TRANSPORT_OPEN",
            "session_id": self._session_id,
            "model": self._model,
            "voice_id": voice_id,
            "queued_before_open": self._outbound.qsize(),
        })
        assert self._callbacks is not None
        self._callbacks.on_open()

        self._writer_task = asyncio.create_task(self._write_loop(ws))

        try:
            async for raw in ws:
                message = parse_server_message(raw)
                if message.go_away_s is not None:
                    log_event({
                        "ts_ms": _now_ms(),
                        "event_type": "TRANSPORT_GO_AWAY",
                        "session_id": self._session_id,
                        "time_left_s": message.go_away_s,
                    })
                self._callbacks.on_message(message)
        except ConnectionClosedError as e:
            self._report_error(TransportFailureKind.RUNTIME, _describe_close(e))
        except LiveProtocolError as e:
            self._report_error(TransportFailureKind.RUNTIME, f"protocol error: {e}")
        except Exception as e:  # pylint: disable=broad-exception-caught
            # An established connection always ends with a terminal callback.
            self._report_error(TransportFailureKind.RUNTIME, f"reader failed: {e!r}")
        else:
            # Iteration ends cleanly only on a normal close.
            self._report_close(f"remote_closed: code={ws.close_code} reason={ws.close_reason!r}")
        finally:
            writer = self._writer_task
            if writer is not None and not writer.done() and writer is not asyncio.current_task():
                writer.cancel()
            await self._close_socket()

    async def _write_loop(self, ws: ClientConnection) -> None:
        while True:
            block = await self._outbound.get()
            try:
                await ws.send(json.dumps(build_realtime_input(block.encoded)))
            except ConnectionClosed:
                # Reader side reports the terminal state.
                return
            self.sent_blocks += 1

    async def _close_socket(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is None:
            return
        try:
            await asyncio.wait_for(ws.close(), timeout=LIVE_CLOSE_TIMEOUT_S)
        except (OSError, asyncio.TimeoutError, ConnectionClosed) as e:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "TRANSPORT_SOCKET_CLOSE_FAILED",
                "session_id": self._session_id,
                "error": repr(e),
            })

    # -------------------------------------------------------------------------
    # Terminal reporting (exactly once)
    # -------------------------------------------------------------------------

    def _report_close(self, reason: str | None) -> None:
        if self._terminal_reported:
            return
        self._terminal_reported = True
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "TRANSPORT_CLOSED",
            "session_id": self._session_id,
            "reason": reason,
        })
        if self._callbacks is not None:
            self._callbacks.on_close(reason)

    def _report_error(self, kind: TransportFailureKind, detail: str) -> None:
        if self._terminal_reported:
            return
        self._terminal_reported = True
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "TRANSPORT_ERROR",
            "session_id": self._session_id,
            "kind": kind.value,
            "detail": detail,
        })
        if self._callbacks is not None:
            self._callbacks.on_error(TransportFailure(kind=kind, detail=detail))
