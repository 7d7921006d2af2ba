"""
Live session container.

- Owns every resource acquired for ONE connect() call:
  microphone, capture pipeline, output context (via PlaybackScheduler),
  transport.
- release() is the single teardown path. It is idempotent and total:
  a failure releasing one resource never prevents releasing the others.
- Resources attached after release() are released immediately, so a
  superseded connect() can never leak what it acquired late.
- NOT a state machine; contains no orchestration logic.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable

from adapters.live.base import LiveTransport
from audio.capture import BlockCallback, CapturePipeline
from audio.devices import MicrophoneStream, OutputContext
from audio.playback import PlaybackScheduler
from observability.logger import log_event


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class LiveSession:
    """Mutable resource container for a single live session."""

    session_id: str
    created_at: float = field(default_factory=time.time)

    microphone: MicrophoneStream | None = None
    capture: CapturePipeline | None = None
    scheduler: PlaybackScheduler | None = None
    transport: LiveTransport | None = None

    released: bool = False

    # ------------------------------------------------------------------
    # Acquisition (called by LiveClient during connect)
    # ------------------------------------------------------------------

    def attach_microphone(self, microphone: MicrophoneStream) -> bool:
        """Take ownership of microphone. Returns False (and closes it) if released."""
        if self.released:
            self._safe("microphone_close", microphone.close)
            return False
        self.microphone = microphone
        return True

    def attach_output(self, output: OutputContext) -> bool:
        """Take ownership of output. Returns False (and closes it) if released."""
        if self.released:
            self._safe("output_close", output.close)
            return False
        self.scheduler = PlaybackScheduler(output, session_id=self.session_id)
        return True

    def attach_transport(self, transport: LiveTransport) -> bool:
        """Take ownership of an unopened transport. Returns False if released."""
        if self.released:
            return False
        self.transport = transport
        return True

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def start_capture(self, on_block: BlockCallback) -> None:
        """
        Start the capture pipeline on the owned microphone.

        Device start failures propagate (AudioDeviceError).
        """
        if self.released or self.microphone is None:
            return
        if self.capture is not None:
            return
        self.capture = CapturePipeline(session_id=self.session_id)
        self.capture.start(self.microphone, on_block)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def release(self) -> None:
        """
        Release everything this session acquired.

        Order: capture, microphone, playback + output, transport.
        """
        if self.released:
            return
        self.released = True

        capture, self.capture = self.capture, None
        if capture is not None:
            capture.stop()

        microphone, self.microphone = self.microphone, None
        if microphone is not None:
            self._safe("microphone_close", microphone.close)

        scheduler, self.scheduler = self.scheduler, None
        if scheduler is not None:
            scheduler.shutdown()

        transport, self.transport = self.transport, None
        if transport is not None:
            try:
                await transport.close()
            except Exception as e:  # pylint: disable=broad-exception-caught
                self._log_release_failure("transport_close", e)

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSION_RELEASED",
            "session_id": self.session_id,
            "lifetime_s": round(time.time() - self.created_at, 3),
        })

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def log_context(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "released": self.released,
            "has_microphone": self.microphone is not None,
            "has_output": self.scheduler is not None,
            "has_transport": self.transport is not None,
            "capturing": self.capture is not None and self.capture.running,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _safe(self, step: str, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._log_release_failure(step, e)

    def _log_release_failure(self, step: str, error: BaseException) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSION_RELEASE_STEP_FAILED",
            "session_id": self.session_id,
            "step": step,
            "error": repr(error),
        })
