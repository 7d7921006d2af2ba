"""
Capture pipeline: microphone blocks -> encoded outbound AudioBlocks.

Flow:
    PortAudio thread            event loop thread
    ----------------            -----------------
    stream callback  --call_soon_threadsafe-->  _accept() -> CaptureBlockQueue
                                                pump task: get() -> encode -> on_block()

Guarantees:
- Blocks reach on_block in capture order, each exactly once.
- A slow on_block (awaitable) delays the pump but never drops blocks; the
  queue grows instead.
- stop() is idempotent and never raises.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Awaitable, Callable

import numpy as np

from audio.codec import encode_binary, float_to_pcm16, rms_amplitude
from audio.devices import MicrophoneStream
from audio.frames import AudioBlock, CapturedBlock
from audio.queues import CaptureBlockQueue
from observability.logger import log_event


BlockCallback = Callable[[AudioBlock], "Awaitable[None] | None"]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def encode_block(block: CapturedBlock) -> AudioBlock:
    """RMS over the float block, then PCM16 conversion and transport encoding."""
    amplitude = rms_amplitude(block.samples)
    pcm = float_to_pcm16(block.samples)
    return AudioBlock(
        sequence_num=block.sequence_num,
        encoded=encode_binary(pcm),
        amplitude=amplitude,
    )


class CapturePipeline:
    """
    One pipeline == one microphone subscription.

    The pipeline does not own the microphone; the session does. stop()
    detaches from the stream, it does not release the device.
    """

    def __init__(self, *, session_id: str = "") -> None:
        self._session_id = session_id
        self._stream: MicrophoneStream | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue = CaptureBlockQueue()
        self._pump_task: asyncio.Task[None] | None = None
        self._next_seq = 1
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._stream is not None and not self._stopped

    @property
    def queue(self) -> CaptureBlockQueue:
        return self._queue

    def start(self, stream: MicrophoneStream, on_block: BlockCallback) -> None:
        """
        Begin delivering blocks from stream to on_block.

        Must be called from a coroutine on the event loop. Microphone start
        failures propagate to the caller after the pipeline is stopped.
        """
        if self._stream is not None or self._stopped:
            raise RuntimeError("CapturePipeline can only be started once")

        self._loop = asyncio.get_running_loop()
        self._stream = stream
        self._pump_task = asyncio.create_task(self._pump(on_block))

        try:
            stream.start(self._on_samples_threadsafe)
        except Exception:
            self.stop()
            raise

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CAPTURE_STARTED",
            "session_id": self._session_id,
            "block_size": stream.block_size,
            "sample_rate_hz": stream.sample_rate_hz,
        })

    def stop(self) -> None:
        """Detach from the microphone and drop undelivered blocks. Never raises."""
        if self._stopped:
            return
        self._stopped = True

        stream = self._stream
        if stream is not None:
            try:
                stream.stop()
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "CAPTURE_STREAM_STOP_FAILED",
                    "session_id": self._session_id,
                    "error": repr(e),
                })

        task = self._pump_task
        self._pump_task = None
        if task is not None and not task.done():
            task.cancel()

        snapshot = self._queue.snapshot()
        self._queue.clear()

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CAPTURE_STOPPED",
            "session_id": self._session_id,
            "queue": snapshot,
        })

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _on_samples_threadsafe(self, samples: np.ndarray) -> None:
        """Called on the audio thread. Only hands the block to the loop."""
        loop = self._loop
        if loop is None or self._stopped:
            return
        try:
            loop.call_soon_threadsafe(self._accept, samples)
        except RuntimeError:
            # Loop closed under us during shutdown.
            return

    def _accept(self, samples: np.ndarray) -> None:
        if self._stopped:
            return
        block = CapturedBlock(sequence_num=self._next_seq, samples=samples)
        self._next_seq += 1
        self._queue.enqueue(block)

    async def _pump(self, on_block: BlockCallback) -> None:
        while True:
            captured = await self._queue.get()
            block = encode_block(captured)
            try:
                result = on_block(block)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "CAPTURE_BLOCK_CALLBACK_FAILED",
                    "session_id": self._session_id,
                    "seq_num": block.sequence_num,
                    "error": repr(e),
                })
