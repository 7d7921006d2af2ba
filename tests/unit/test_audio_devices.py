# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring
from __future__ import annotations

import asyncio
from typing import Any

import numpy as np
import pytest
from scipy import signal

from audio.devices import (
    AudioDeviceError,
    MicrophonePermissionError,
    MicrophoneUnavailableError,
    SoundDeviceMicrophone,
    SoundDeviceOutput,
    StreamingResampler,
    _classify_input_error,
)
from spec import AUDIO_CHANNELS


class FakeStream:
    def __init__(self, start_error: Exception | None = None, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.start_error = start_error
        self.callback = kwargs["callback"]
        self.started = False
        self.closed = False

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    def stop(self) -> None:
        self.started = False

    def abort(self) -> None:
        self.started = False

    def close(self) -> None:
        self.closed = True


class FakeSoundDevice:
    """Minimal stand-in for the sounddevice module."""

    class PortAudioError(Exception):
        pass

    def __init__(
        self,
        *,
        native_rate: int = 48_000,
        open_error: Exception | None = None,
        start_error: Exception | None = None,
    ) -> None:
        self.native_rate = native_rate
        self.open_error = open_error
        self.start_error = start_error
        self.streams: list[FakeStream] = []

    def query_devices(self, device: Any, kind: str) -> dict[str, Any]:
        return {"name": "fake", "default_samplerate": float(self.native_rate)}

    def check_input_settings(self, *, samplerate: int, **_: Any) -> None:
        if samplerate != self.native_rate:
            raise self.PortAudioError("Invalid sample rate")

    def InputStream(self, **kwargs: Any) -> FakeStream:  # pylint: disable=invalid-name
        if self.open_error is not None:
            raise self.open_error
        stream = FakeStream(start_error=self.start_error, **kwargs)
        self.streams.append(stream)
        return stream

    def OutputStream(self, **kwargs: Any) -> FakeStream:  # pylint: disable=invalid-name
        return self.InputStream(**kwargs)


# ---------------------------------------------------------------------
# Microphone
# ---------------------------------------------------------------------

def test_native_rate_capture_needs_no_resampling():
    sd = FakeSoundDevice(native_rate=16_000)
    mic = SoundDeviceMicrophone(sd, device=None, sample_rate_hz=16_000, block_size=4096)
    assert sd.streams[0].kwargs["samplerate"] == 16_000
    assert sd.streams[0].kwargs["blocksize"] == 4096
    assert sd.streams[0].kwargs["channels"] == AUDIO_CHANNELS

    blocks: list[np.ndarray] = []
    mic.start(blocks.append)
    sd.streams[0].callback(np.full((4096, 1), 0.25, dtype=np.float32), 4096, None, None)
    assert len(blocks) == 1
    assert np.allclose(blocks[0], 0.25)


def test_resampled_capture_is_reframed_to_block_size():
    sd = FakeSoundDevice(native_rate=48_000)
    mic = SoundDeviceMicrophone(sd, device=None, sample_rate_hz=16_000, block_size=4096)
    stream = sd.streams[0]
    assert stream.kwargs["samplerate"] == 48_000

    blocks: list[np.ndarray] = []
    mic.start(blocks.append)
    half = np.zeros((6144, 1), dtype=np.float32)
    stream.callback(half, 6144, None, None)
    assert blocks == []
    stream.callback(half, 6144, None, None)
    assert len(blocks) == 1
    assert len(blocks[0]) == 4096
    assert blocks[0].dtype == np.float32


def test_stopped_microphone_delivers_nothing_and_close_is_idempotent():
    sd = FakeSoundDevice(native_rate=16_000)
    mic = SoundDeviceMicrophone(sd, device=None, sample_rate_hz=16_000, block_size=4)
    blocks: list[np.ndarray] = []
    mic.start(blocks.append)
    mic.stop()
    sd.streams[0].callback(np.zeros((4, 1), dtype=np.float32), 4, None, None)
    assert blocks == []

    mic.close()
    mic.close()
    assert sd.streams[0].closed
    with pytest.raises(MicrophoneUnavailableError):
        mic.start(blocks.append)


def test_open_failure_is_classified():
    sd = FakeSoundDevice(native_rate=16_000)
    sd.open_error = sd.PortAudioError("Error opening InputStream: access denied")
    with pytest.raises(MicrophonePermissionError):
        SoundDeviceMicrophone(sd, device=None, sample_rate_hz=16_000, block_size=4)


def test_classify_input_error():
    assert isinstance(_classify_input_error(PermissionError("nope")), MicrophonePermissionError)
    assert isinstance(_classify_input_error(OSError("Permission denied")), MicrophonePermissionError)
    assert isinstance(_classify_input_error(OSError("No Default Input Device")), MicrophoneUnavailableError)


# ---------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------

def test_output_mixes_at_scheduled_frames_and_reports_end():
    async def scenario() -> None:
        sd = FakeSoundDevice()
        output = SoundDeviceOutput(sd, device=None, sample_rate_hz=1000, loop=asyncio.get_running_loop())
        stream = sd.streams[0]
        assert stream.started

        ended: list[str] = []
        output.schedule(np.full(20, 0.5, dtype=np.float32), 0.010, lambda: ended.append("a"))

        out = np.zeros((16, 1), dtype=np.float32)
        stream.callback(out, 16, None, None)
        assert np.all(out[:10, 0] == 0.0)
        assert np.all(out[10:, 0] == 0.5)
        assert output.current_time == pytest.approx(0.016)

        stream.callback(out, 16, None, None)
        assert np.all(out[:14, 0] == 0.5)
        assert np.all(out[14:, 0] == 0.0)

        await asyncio.sleep(0)
        assert ended == ["a"]
        output.close()

    asyncio.run(scenario())


def test_stopped_source_is_silent():
    async def scenario() -> None:
        sd = FakeSoundDevice()
        output = SoundDeviceOutput(sd, device=None, sample_rate_hz=1000, loop=asyncio.get_running_loop())
        handle = output.schedule(np.full(8, 0.5, dtype=np.float32), 0.0)
        handle.stop()
        handle.stop()

        out = np.ones((8, 1), dtype=np.float32)
        sd.streams[0].callback(out, 8, None, None)
        assert np.all(out == 0.0)

        output.close()
        output.close()
        assert sd.streams[0].closed

    asyncio.run(scenario())


def test_output_open_failure_is_a_device_error():
    async def scenario() -> None:
        sd = FakeSoundDevice()
        sd.open_error = sd.PortAudioError("Device unavailable")
        with pytest.raises(AudioDeviceError):
            SoundDeviceOutput(sd, device=None, sample_rate_hz=24_000, loop=asyncio.get_running_loop())

    asyncio.run(scenario())


def test_output_start_failure_closes_the_opened_stream():
    async def scenario() -> FakeSoundDevice:
        sd = FakeSoundDevice()
        sd.start_error = sd.PortAudioError("Device busy")
        with pytest.raises(AudioDeviceError):
            SoundDeviceOutput(sd, device=None, sample_rate_hz=24_000, loop=asyncio.get_running_loop())
        return sd

    sd = asyncio.run(scenario())
    assert len(sd.streams) == 1
    assert sd.streams[0].closed


# ---------------------------------------------------------------------
# Resampling
# ---------------------------------------------------------------------

def sine(rate_hz: int, n: int, freq_hz: float = 440.0) -> np.ndarray:
    t = np.arange(n) / rate_hz
    return (0.5 * np.sin(2 * np.pi * freq_hz * t)).astype(np.float32)


@pytest.mark.parametrize("source_rate, chunks", [
    (48_000, [12_288, 12_288, 12_288, 12_288]),
    (44_100, [1_000, 2_337, 11_290, 5, 7_001]),
])
def test_streamed_resampling_matches_one_shot(source_rate, chunks):
    x = sine(source_rate, sum(chunks))
    resampler = StreamingResampler(16_000, source_rate)

    pieces = []
    offset = 0
    for size in chunks:
        pieces.append(resampler.process(x[offset : offset + size]))
        offset += size
    streamed = np.concatenate(pieces)

    reference = signal.upfirdn(resampler.taps, x.astype(np.float64), resampler.up, resampler.down)
    expected_len = -(-(len(x) * resampler.up) // resampler.down)
    assert len(streamed) == expected_len
    np.testing.assert_allclose(streamed, reference[:expected_len], atol=1e-5)


def test_resampled_microphone_has_no_block_seams():
    sd = FakeSoundDevice(native_rate=48_000)
    mic = SoundDeviceMicrophone(sd, device=None, sample_rate_hz=16_000, block_size=4096)
    stream = sd.streams[0]

    blocks: list[np.ndarray] = []
    mic.start(blocks.append)
    x = sine(48_000, 4 * 12_288)
    for i in range(4):
        chunk = x[i * 12_288 : (i + 1) * 12_288].reshape(-1, 1)
        stream.callback(chunk, len(chunk), None, None)

    captured = np.concatenate(blocks)
    assert len(captured) == 4 * 4096

    one_shot = StreamingResampler(16_000, 48_000).process(x)
    np.testing.assert_allclose(captured, one_shot, atol=1e-5)

    # Away from the start-up transient, every block seam is as smooth as the
    # interior: no sample-to-sample jump exceeds what a 440 Hz tone allows.
    steps = np.abs(np.diff(captured[200:]))
    assert steps.max() < 2 * np.pi * 440 * 0.5 / 16_000 * 1.1
