"""
Audio block/fragment primitives.

Pure data containers only.
No behavior, no queues, no timing logic.
"""

from __future__ import annotations
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class CapturedBlock:
    """
    Raw microphone block as handed over from the capture callback.

    sequence_num:
        Monotonic per-pipeline counter assigned on arrival (starts at 1).
        Capture order == sequence order.

    samples:
        Float32 mono samples at spec.INPUT_SAMPLE_RATE_HZ.
        Length equals spec.CAPTURE_BLOCK_SAMPLES.
    """
    sequence_num: int
    samples: np.ndarray


@dataclass(frozen=True)
class AudioBlock:
    """
    Outbound audio block, ready for the transport.

    encoded:
        Transport-encoded (base64) PCM16 little-endian bytes.

    amplitude:
        RMS of the float block before conversion, in [0.0, 1.0].

    Ephemeral: exists only until the transport has queued it.
    """
    sequence_num: int
    encoded: str
    amplitude: float


@dataclass(frozen=True)
class AudioFragment:
    """
    Inbound synthesized audio, decoded for playback.

    samples:
        Float32 mono samples at spec.OUTPUT_SAMPLE_RATE_HZ.
    """
    samples: np.ndarray
    sample_rate_hz: int

    @property
    def duration_s(self) -> float:
        return len(self.samples) / self.sample_rate_hz
