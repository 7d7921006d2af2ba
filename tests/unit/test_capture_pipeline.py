# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import threading

import numpy as np
import pytest

from audio.capture import CapturePipeline, encode_block
from audio.codec import decode_binary
from audio.frames import AudioBlock, CapturedBlock
from spec import CAPTURE_BLOCK_SAMPLES, INPUT_SAMPLE_RATE_HZ

from fakes import FakeMicrophone, wait_until


def tagged_block(seq: int) -> np.ndarray:
    """Samples whose first value encodes seq, so receipt order is checkable."""
    samples = np.zeros(CAPTURE_BLOCK_SAMPLES, dtype=np.float32)
    samples[0] = seq / 1000.0
    return samples


def seq_of(block: AudioBlock) -> int:
    first = int.from_bytes(decode_binary(block.encoded)[:2], "little", signed=True)
    return round(first / 32767 * 1000)


def make_mic() -> FakeMicrophone:
    return FakeMicrophone(sample_rate_hz=INPUT_SAMPLE_RATE_HZ, block_size=CAPTURE_BLOCK_SAMPLES)


def test_encode_block_carries_amplitude_and_pcm():
    block = encode_block(CapturedBlock(
        sequence_num=4,
        samples=np.full(CAPTURE_BLOCK_SAMPLES, 0.25, dtype=np.float32),
    ))
    assert block.sequence_num == 4
    assert block.amplitude == pytest.approx(0.25)
    pcm = decode_binary(block.encoded)
    assert len(pcm) == CAPTURE_BLOCK_SAMPLES * 2


def test_ordered_delivery_under_slow_callback():
    async def scenario() -> list[int]:
        received: list[AudioBlock] = []

        async def slow_send(block: AudioBlock) -> None:
            await asyncio.sleep(0.005)
            received.append(block)

        mic = make_mic()
        pipeline = CapturePipeline(session_id="s1")
        pipeline.start(mic, slow_send)

        for seq in range(1, 41):
            mic.feed(tagged_block(seq))

        await wait_until(lambda: len(received) == 40, timeout_s=5.0)
        pipeline.stop()
        return [b.sequence_num for b in received] + [-1] + [seq_of(b) for b in received]

    result = asyncio.run(scenario())
    split = result.index(-1)
    assert result[:split] == list(range(1, 41))
    assert result[split + 1:] == list(range(1, 41))


def test_blocks_from_audio_thread_arrive_in_capture_order():
    async def scenario() -> list[int]:
        received: list[int] = []
        mic = make_mic()
        pipeline = CapturePipeline(session_id="s1")
        pipeline.start(mic, lambda block: received.append(seq_of(block)))

        def audio_thread() -> None:
            for seq in range(1, 26):
                mic.feed(tagged_block(seq))

        worker = threading.Thread(target=audio_thread)
        worker.start()
        await asyncio.to_thread(worker.join)

        await wait_until(lambda: len(received) == 25)
        pipeline.stop()
        return received

    assert asyncio.run(scenario()) == list(range(1, 26))


def test_callback_failure_does_not_stop_pump():
    async def scenario() -> list[int]:
        received: list[int] = []

        def flaky(block: AudioBlock) -> None:
            if block.sequence_num == 2:
                raise RuntimeError("transport hiccup")
            received.append(block.sequence_num)

        mic = make_mic()
        pipeline = CapturePipeline(session_id="s1")
        pipeline.start(mic, flaky)
        for seq in range(1, 4):
            mic.feed(tagged_block(seq))
        await wait_until(lambda: len(received) == 2)
        pipeline.stop()
        return received

    assert asyncio.run(scenario()) == [1, 3]


def test_stop_is_idempotent_and_detaches():
    async def scenario() -> tuple[bool, int, int]:
        received: list[AudioBlock] = []
        mic = make_mic()
        pipeline = CapturePipeline(session_id="s1")
        pipeline.start(mic, received.append)
        pipeline.stop()
        pipeline.stop()
        pipeline.stop()
        mic.feed(tagged_block(1))
        await asyncio.sleep(0.01)
        return pipeline.running, mic.stop_calls, len(received)

    running, stop_calls, delivered = asyncio.run(scenario())
    assert running is False
    assert stop_calls == 1
    assert delivered == 0


def test_start_failure_propagates_and_stops():
    async def scenario() -> CapturePipeline:
        mic = FakeMicrophone(
            sample_rate_hz=INPUT_SAMPLE_RATE_HZ,
            block_size=CAPTURE_BLOCK_SAMPLES,
            start_error=OSError("device busy"),
        )
        pipeline = CapturePipeline(session_id="s1")
        with pytest.raises(OSError):
            pipeline.start(mic, lambda block: None)
        return pipeline

    pipeline = asyncio.run(scenario())
    assert pipeline.running is False
    with pytest.raises(RuntimeError):
        asyncio.run(_restart(pipeline))


async def _restart(pipeline: CapturePipeline) -> None:
    pipeline.start(make_mic(), lambda block: None)
