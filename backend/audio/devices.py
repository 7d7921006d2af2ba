"""
Local audio devices (PortAudio via sounddevice).

Two resources are exposed, each with a single release point:

- MicrophoneStream: mono float32 capture framed into fixed-size blocks at
  the requested rate. If the device cannot run at that rate, it captures at
  the device default and resamples with a StreamingResampler, whose filter
  history carries across blocks so block boundaries leave no seams.
- OutputContext: a continuously running output stream with its own clock
  (seconds of audio rendered since open). Sources are scheduled at absolute
  clock times and mixed in the output callback; when a source finishes,
  its on_ended callback is posted back to the event loop.

Threading:
- sounddevice callbacks run on the PortAudio thread.
- Nothing here touches session state from that thread; data crosses to the
  loop via loop.call_soon_threadsafe (capture) or on_ended posting (output).

sounddevice is imported lazily so the package loads without PortAudio.
"""

from __future__ import annotations

import asyncio
import threading
from math import gcd
from typing import Any, Callable, Protocol

import numpy as np
from scipy import signal

from observability.logger import log_event
from spec import AUDIO_CHANNELS


SamplesCallback = Callable[[np.ndarray], None]


# -------------------------
# Exceptions
# -------------------------

class AudioDeviceError(Exception):
    """Base class for audio device failures (init, open, start)."""


class AudioApiUnavailableError(AudioDeviceError):
    """The audio API itself is missing (no sounddevice / PortAudio)."""


class MicrophonePermissionError(AudioDeviceError):
    """The OS refused access to the microphone."""


class MicrophoneUnavailableError(AudioDeviceError):
    """No usable input device, or it could not be opened."""


_PERMISSION_MARKERS = ("permission", "not allowed", "access denied", "denied")


def _classify_input_error(exc: BaseException) -> AudioDeviceError:
    if isinstance(exc, PermissionError):
        return MicrophonePermissionError(str(exc))
    text = str(exc).lower()
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return MicrophonePermissionError(str(exc))
    return MicrophoneUnavailableError(str(exc))


def _import_sounddevice() -> Any:
    """Import sounddevice, raising a clear error if it or PortAudio is missing."""
    try:
        import sounddevice as _sd  # pylint: disable=import-outside-toplevel
    except (ImportError, OSError) as e:
        raise AudioApiUnavailableError(
            f"sounddevice/PortAudio is not available: {e}"
        ) from e
    return _sd


# ---------------------------------------------------------------------
# Protocols (what the session layer depends on)
# ---------------------------------------------------------------------

class MicrophoneStream(Protocol):
    sample_rate_hz: int
    block_size: int
    closed: bool

    def start(self, on_samples: SamplesCallback) -> None: ...
    def stop(self) -> None: ...
    def close(self) -> None: ...


class PlaybackHandle(Protocol):
    start_time: float
    duration_s: float

    def stop(self) -> None: ...


class OutputContext(Protocol):
    sample_rate_hz: int
    closed: bool

    @property
    def current_time(self) -> float: ...

    def schedule(
        self,
        samples: np.ndarray,
        start_time: float,
        on_ended: Callable[[], None] | None = None,
    ) -> PlaybackHandle: ...

    def close(self) -> None: ...


class AudioBackend(Protocol):
    def check_available(self) -> None: ...

    def acquire_microphone(
        self, *, sample_rate_hz: int, block_size: int
    ) -> MicrophoneStream: ...

    def open_output(self, *, sample_rate_hz: int) -> OutputContext: ...


# ---------------------------------------------------------------------
# Resampling
# ---------------------------------------------------------------------

class StreamingResampler:
    """
    Rational polyphase resampler that keeps filter history across blocks.

    Feeding a signal in arbitrary pieces yields exactly what one
    signal.upfirdn(taps, whole_signal, up, down) call would, truncated to
    ceil(n_in * up / down) samples. The filter is the one
    signal.resample_poly designs (Kaiser-windowed FIR, beta 5.0); output lags
    the input by the constant group delay of (len(taps) - 1) / 2 upsampled
    samples.
    """

    def __init__(self, target_rate_hz: int, source_rate_hz: int) -> None:
        ratio = gcd(target_rate_hz, source_rate_hz)
        self.up = target_rate_hz // ratio
        self.down = source_rate_hz // ratio

        max_rate = max(self.up, self.down)
        half_len = 10 * max_rate
        self.taps: np.ndarray = signal.firwin(
            2 * half_len + 1, 1.0 / max_rate, window=("kaiser", 5.0)
        ) * self.up

        # Input samples that reach back over the whole filter span.
        self._span = -(-(len(self.taps) - 1) // self.up)
        # Extra down - 1 samples let each call start on a decimation phase.
        self._keep = self._span + self.down - 1

        self._history = np.zeros(0, dtype=np.float64)
        self._consumed = 0
        self._emitted = 0

    def reset(self) -> None:
        self._history = np.zeros(0, dtype=np.float64)
        self._consumed = 0
        self._emitted = 0

    def process(self, samples: np.ndarray) -> np.ndarray:
        x = np.asarray(samples, dtype=np.float64)
        if x.size == 0:
            return np.zeros(0, dtype=np.float32)

        # Prepend history so the first input of the extended buffer sits on a
        # multiple of down; upfirdn then decimates on the global phase.
        if self._consumed <= self._keep:
            reach = self._consumed
        else:
            reach = self._span + (self._consumed - self._span) % self.down
        extended = np.concatenate((self._history[len(self._history) - reach:], x))

        origin = (self._consumed - reach) * self.up // self.down
        total = self._consumed + len(x)
        end = -(-(total * self.up) // self.down)

        y = signal.upfirdn(self.taps, extended, self.up, self.down)
        out = y[self._emitted - origin : end - origin]

        self._emitted = end
        self._consumed = total
        self._history = extended[-self._keep:] if len(extended) > self._keep else extended
        return out.astype(np.float32)


# ---------------------------------------------------------------------
# Microphone
# ---------------------------------------------------------------------

class SoundDeviceMicrophone:
    """
    Exclusive microphone stream.

    Acquired (opened) on construction, started by the capture pipeline,
    released by close(). on_samples is invoked on the PortAudio thread with
    exactly block_size float32 samples per call.
    """

    def __init__(
        self,
        sd: Any,
        *,
        device: int | str | None,
        sample_rate_hz: int,
        block_size: int,
    ) -> None:
        self._sd = sd
        self.sample_rate_hz = sample_rate_hz
        self.block_size = block_size
        self.closed = False

        self._lock = threading.Lock()
        self._on_samples: SamplesCallback | None = None
        self._pending = np.zeros(0, dtype=np.float32)

        capture_rate = self._pick_capture_rate(device)
        self._resampler = (
            StreamingResampler(sample_rate_hz, capture_rate)
            if capture_rate != sample_rate_hz
            else None
        )
        capture_block = round(block_size * capture_rate / sample_rate_hz)

        try:
            self._stream = sd.InputStream(
                samplerate=capture_rate,
                blocksize=capture_block,
                channels=AUDIO_CHANNELS,
                dtype="float32",
                device=device,
                callback=self._callback,
            )
        except (sd.PortAudioError, ValueError, OSError) as e:
            raise _classify_input_error(e) from e

        log_event({
            "event_type": "MICROPHONE_ACQUIRED",
            "device": device,
            "capture_rate_hz": capture_rate,
            "resampling": self._resampler is not None,
        })

    def _pick_capture_rate(self, device: int | str | None) -> int:
        sd = self._sd
        try:
            info = sd.query_devices(device, kind="input")
        except (sd.PortAudioError, ValueError, OSError) as e:
            raise _classify_input_error(e) from e

        try:
            sd.check_input_settings(
                device=device,
                channels=AUDIO_CHANNELS,
                dtype="float32",
                samplerate=self.sample_rate_hz,
            )
            return self.sample_rate_hz
        except (sd.PortAudioError, ValueError):
            return int(info["default_samplerate"])

    def _callback(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        mono = np.array(indata[:, 0], dtype=np.float32, copy=True)
        if self._resampler is not None:
            mono = self._resampler.process(mono)

        blocks: list[np.ndarray] = []
        with self._lock:
            self._pending = np.concatenate((self._pending, mono))
            while len(self._pending) >= self.block_size:
                blocks.append(self._pending[: self.block_size])
                self._pending = self._pending[self.block_size :]
            on_samples = self._on_samples

        if on_samples is not None:
            for block in blocks:
                on_samples(block)

    def start(self, on_samples: SamplesCallback) -> None:
        if self.closed:
            raise MicrophoneUnavailableError("microphone stream already released")
        with self._lock:
            self._on_samples = on_samples
            self._pending = np.zeros(0, dtype=np.float32)
        if self._resampler is not None:
            self._resampler.reset()
        try:
            self._stream.start()
        except (self._sd.PortAudioError, OSError) as e:
            raise _classify_input_error(e) from e

    def stop(self) -> None:
        with self._lock:
            self._on_samples = None
            self._pending = np.zeros(0, dtype=np.float32)
        if self.closed:
            return
        try:
            self._stream.stop()
        except (self._sd.PortAudioError, OSError) as e:
            log_event({"event_type": "MICROPHONE_STOP_FAILED", "error": str(e)})

    def close(self) -> None:
        if self.closed:
            return
        self.stop()
        self.closed = True
        try:
            self._stream.close()
        except (self._sd.PortAudioError, OSError) as e:
            log_event({"event_type": "MICROPHONE_CLOSE_FAILED", "error": str(e)})
        log_event({"event_type": "MICROPHONE_RELEASED"})


# ---------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------

class _ScheduledSource:
    """One scheduled buffer inside a SoundDeviceOutput."""

    def __init__(
        self,
        owner: SoundDeviceOutput,
        samples: np.ndarray,
        start_frame: int,
        on_ended: Callable[[], None] | None,
    ) -> None:
        self._owner = owner
        self.samples = samples
        self.start_frame = start_frame
        self.on_ended = on_ended
        self.start_time = start_frame / owner.sample_rate_hz
        self.duration_s = len(samples) / owner.sample_rate_hz

    @property
    def end_frame(self) -> int:
        return self.start_frame + len(self.samples)

    def stop(self) -> None:
        """Remove from the mix immediately. Idempotent, never raises."""
        self._owner._unschedule(self)  # pylint: disable=protected-access


class SoundDeviceOutput:
    """
    Output context with a sample-accurate clock.

    current_time advances by the number of frames handed to the device,
    so a source scheduled at t starts exactly t seconds after open.
    """

    def __init__(
        self,
        sd: Any,
        *,
        device: int | str | None,
        sample_rate_hz: int,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._sd = sd
        self._loop = loop
        self.sample_rate_hz = sample_rate_hz
        self.closed = False

        self._lock = threading.Lock()
        self._frames_rendered = 0
        self._sources: list[_ScheduledSource] = []

        try:
            self._stream = sd.OutputStream(
                samplerate=sample_rate_hz,
                channels=AUDIO_CHANNELS,
                dtype="float32",
                device=device,
                callback=self._callback,
            )
        except (sd.PortAudioError, ValueError, OSError) as e:
            raise AudioDeviceError(f"output device init failed: {e}") from e

        try:
            self._stream.start()
        except (sd.PortAudioError, OSError) as e:
            # The constructor never returns, so nobody else can close the stream.
            try:
                self._stream.close()
            except (sd.PortAudioError, OSError) as close_error:
                log_event({"event_type": "OUTPUT_CONTEXT_CLOSE_FAILED", "error": str(close_error)})
            raise AudioDeviceError(f"output device start failed: {e}") from e

        log_event({
            "event_type": "OUTPUT_CONTEXT_OPENED",
            "sample_rate_hz": sample_rate_hz,
        })

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._frames_rendered / self.sample_rate_hz

    def schedule(
        self,
        samples: np.ndarray,
        start_time: float,
        on_ended: Callable[[], None] | None = None,
    ) -> _ScheduledSource:
        start_frame = max(int(round(start_time * self.sample_rate_hz)), 0)
        source = _ScheduledSource(self, samples.astype(np.float32, copy=False), start_frame, on_ended)
        with self._lock:
            if not self.closed:
                self._sources.append(source)
        return source

    def _unschedule(self, source: _ScheduledSource) -> None:
        with self._lock:
            if source in self._sources:
                self._sources.remove(source)

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        mixed = np.zeros(frames, dtype=np.float32)
        finished: list[_ScheduledSource] = []

        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames

            for src in self._sources:
                if src.start_frame >= block_end:
                    continue
                lo = max(src.start_frame, block_start)
                hi = min(src.end_frame, block_end)
                if hi > lo:
                    mixed[lo - block_start : hi - block_start] += (
                        src.samples[lo - src.start_frame : hi - src.start_frame]
                    )
                if src.end_frame <= block_end:
                    finished.append(src)

            for src in finished:
                self._sources.remove(src)
            self._frames_rendered = block_end

        np.clip(mixed, -1.0, 1.0, out=mixed)
        outdata[:, 0] = mixed

        for src in finished:
            if src.on_ended is None:
                continue
            try:
                self._loop.call_soon_threadsafe(src.on_ended)
            except RuntimeError:
                # Loop already closed; nothing left to notify.
                return

    def close(self) -> None:
        if self.closed:
            return
        with self._lock:
            self.closed = True
            self._sources.clear()
        try:
            self._stream.abort()
            self._stream.close()
        except (self._sd.PortAudioError, OSError) as e:
            log_event({"event_type": "OUTPUT_CONTEXT_CLOSE_FAILED", "error": str(e)})
        log_event({"event_type": "OUTPUT_CONTEXT_CLOSED"})


# ---------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------

class SoundDeviceBackend:
    """AudioBackend over the host's PortAudio devices."""

    def __init__(
        self,
        *,
        input_device: int | str | None = None,
        output_device: int | str | None = None,
    ) -> None:
        self._input_device = input_device
        self._output_device = output_device
        self._sd: Any = None

    def _module(self) -> Any:
        if self._sd is None:
            self._sd = _import_sounddevice()
        return self._sd

    def check_available(self) -> None:
        """Raises AudioApiUnavailableError if the audio API cannot be loaded."""
        self._module()

    def acquire_microphone(
        self, *, sample_rate_hz: int, block_size: int
    ) -> SoundDeviceMicrophone:
        return SoundDeviceMicrophone(
            self._module(),
            device=self._input_device,
            sample_rate_hz=sample_rate_hz,
            block_size=block_size,
        )

    def open_output(self, *, sample_rate_hz: int) -> SoundDeviceOutput:
        return SoundDeviceOutput(
            self._module(),
            device=self._output_device,
            sample_rate_hz=sample_rate_hz,
            loop=asyncio.get_running_loop(),
        )
