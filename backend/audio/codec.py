"""
PCM conversion and transport-encoding utilities.

Pure functions only. No state, no resampling, no channel mixing.

Transport encoding is standard base64. decode_binary() raises
AudioCodecError on malformed input; callers treat that as a dropped payload.
"""

from __future__ import annotations

import base64
import binascii
from typing import Sequence

import numpy as np

from spec import AUDIO_SAMPLE_WIDTH_BYTES, PCM16_NEGATIVE_SCALE, PCM16_POSITIVE_SCALE


class AudioCodecError(ValueError):
    """Raised when a transport-encoded payload cannot be decoded."""


def float_to_pcm16(samples: Sequence[float] | np.ndarray) -> np.ndarray:
    """
    Convert float samples in [-1.0, 1.0] to little-endian int16.

    Out-of-range input is clamped. Positive samples scale by 32767,
    negative samples by 32768, and the product is truncated toward zero.
    Vectorized, no per-sample branching.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scale = np.where(clipped < 0.0, PCM16_NEGATIVE_SCALE, PCM16_POSITIVE_SCALE)
    return np.trunc(clipped * scale).astype("<i2")


def pcm16_to_float(pcm_bytes: bytes, sample_count: int | None = None) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    sample_count limits how many samples are read; None reads every
    whole sample in the buffer.
    """
    remainder = len(pcm_bytes) % AUDIO_SAMPLE_WIDTH_BYTES
    if remainder:
        # Truncated sample; drop the dangling byte.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - remainder]

    available = len(pcm_bytes) // AUDIO_SAMPLE_WIDTH_BYTES
    count = available if sample_count is None else min(sample_count, available)
    if count <= 0:
        return np.zeros(0, dtype=np.float32)

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2", count=count)
    return audio_i16.astype(np.float32) / np.float32(PCM16_NEGATIVE_SCALE)


def encode_binary(buffer: bytes | bytearray | memoryview | np.ndarray) -> str:
    """Encode an arbitrary byte buffer as transport-safe ASCII text."""
    if isinstance(buffer, np.ndarray):
        buffer = buffer.tobytes()
    return base64.b64encode(bytes(buffer)).decode("ascii")


def decode_binary(text: str | bytes) -> bytes:
    """
    Inverse of encode_binary().

    Raises:
        AudioCodecError if text is not valid base64.
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AudioCodecError(f"malformed transport payload: {e}") from e


def rms_amplitude(samples: np.ndarray) -> float:
    """Root-mean-square amplitude of a float block. Empty input is silence."""
    if samples.size == 0:
        return 0.0
    as_f64 = samples.astype(np.float64, copy=False)
    return float(np.sqrt(np.mean(as_f64 * as_f64)))
