"""
Playback scheduler: gapless, non-overlapping sequential playback.

Cursor rule:
    start = max(cursor, device_now)
    cursor = start + fragment.duration_s

Invariants:
- The cursor only moves forward, except on interrupt(), which resets it
  so the next fragment starts at device_now.
- Every handle in the active set is removed when it finishes playing.
- interrupt() stops and clears the whole set before returning.

All methods run on the event loop thread and never block.
"""

from __future__ import annotations

import time

from audio.devices import OutputContext, PlaybackHandle
from audio.frames import AudioFragment
from observability.logger import log_event


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class PlaybackScheduler:
    """Owns the playback cursor and the active source set for one output context."""

    def __init__(self, output: OutputContext, *, session_id: str = "") -> None:
        self._output: OutputContext | None = output
        self._session_id = session_id
        self._cursor: float = 0.0
        self._active: set[PlaybackHandle] = set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def cursor(self) -> float:
        return self._cursor

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def is_shut_down(self) -> bool:
        return self._output is None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(self, fragment: AudioFragment) -> PlaybackHandle | None:
        """
        Schedule fragment right after the previously scheduled one.

        Returns the handle, or None after shutdown or for an empty fragment.
        """
        output = self._output
        if output is None or len(fragment.samples) == 0:
            return None

        now = output.current_time
        if self._cursor < now:
            self._cursor = now

        start = self._cursor
        holder: list[PlaybackHandle] = []

        def _on_ended() -> None:
            if holder:
                self._active.discard(holder[0])

        handle = output.schedule(fragment.samples, start, _on_ended)
        holder.append(handle)
        self._active.add(handle)
        self._cursor = start + fragment.duration_s
        return handle

    def interrupt(self) -> int:
        """
        Barge-in: stop everything scheduled and reset the cursor.

        Returns the number of handles stopped.
        """
        stopped = len(self._active)
        for handle in list(self._active):
            try:
                handle.stop()
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "PLAYBACK_STOP_FAILED",
                    "session_id": self._session_id,
                    "error": repr(e),
                })
        self._active.clear()
        # 0.0 is always behind the device clock, so the next enqueue snaps to now.
        self._cursor = 0.0

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "PLAYBACK_INTERRUPTED",
            "session_id": self._session_id,
            "stopped_sources": stopped,
        })
        return stopped

    def shutdown(self) -> None:
        """interrupt() plus release of the output context. Idempotent."""
        if self._output is None:
            return
        self.interrupt()
        output = self._output
        self._output = None
        try:
            output.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "OUTPUT_CLOSE_FAILED",
                "session_id": self._session_id,
                "error": repr(e),
            })
