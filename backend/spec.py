"""
BEHAVIOURAL CONSTANTS
---------------------
Single source of truth for all behavioral invariants of the live roleplay client.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Outbound audio (microphone -> service): PCM16 mono @ 16kHz, 4096-sample blocks
# =============================================================================

INPUT_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)

CAPTURE_BLOCK_SAMPLES: Final[int] = 4096
CAPTURE_BLOCK_DURATION_S: Final[float] = CAPTURE_BLOCK_SAMPLES / INPUT_SAMPLE_RATE_HZ

INPUT_MIME_TYPE: Final[str] = f"audio/pcm;rate={INPUT_SAMPLE_RATE_HZ}"

# =============================================================================
# Inbound audio (service -> speaker): PCM16 mono @ 24kHz, variable-length fragments
# =============================================================================

OUTPUT_SAMPLE_RATE_HZ: Final[int] = 24_000

# =============================================================================
# PCM conversion
# =============================================================================

PCM16_POSITIVE_SCALE: Final[float] = 32767.0
PCM16_NEGATIVE_SCALE: Final[float] = 32768.0

# Volume meter: rms * scale. UI convenience only, no normalization contract.
VOLUME_LEVEL_SCALE: Final[float] = 100.0

# =============================================================================
# Conversational service
# =============================================================================

LIVE_MODEL_DEFAULT: Final[str] = "models/gemini-2.5-flash-native-audio-preview-09-2025"
LIVE_ENDPOINT_DEFAULT: Final[str] = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
DEFAULT_VOICE: Final[str] = "Kore"
SECURE_ENDPOINT_SCHEME: Final[str] = "wss"

LIVE_OPEN_TIMEOUT_S: Final[float] = 10.0
LIVE_SETUP_TIMEOUT_S: Final[float] = 10.0
LIVE_PING_INTERVAL_S: Final[float] = 20.0
LIVE_CLOSE_TIMEOUT_S: Final[float] = 2.0
