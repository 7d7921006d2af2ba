"""
User-facing error taxonomy for the live session.

Every failure path ends in exactly one ErrorCategory. The message text is
what reaches LiveClient.on_error; remediation differs per category, so the
wording must stay distinguishable (permission vs. connection loss).
"""

from __future__ import annotations

from enum import Enum

from audio.devices import (
    AudioApiUnavailableError,
    AudioDeviceError,
    MicrophonePermissionError,
)


class ErrorCategory(str, Enum):
    """Failure categories, grouped by the phase that detects them."""

    # Preconditions (nothing acquired yet)
    MISSING_CONFIG = "MISSING_CONFIG"
    AUDIO_API_UNAVAILABLE = "AUDIO_API_UNAVAILABLE"
    INSECURE_ENDPOINT = "INSECURE_ENDPOINT"

    # Acquisition
    MIC_PERMISSION_DENIED = "MIC_PERMISSION_DENIED"
    MIC_UNAVAILABLE = "MIC_UNAVAILABLE"
    AUDIO_DEVICE = "AUDIO_DEVICE"

    # Connection
    CONNECT_FAILED = "CONNECT_FAILED"
    CONNECTION_LOST = "CONNECTION_LOST"


_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.MISSING_CONFIG:
        "API key is not configured. Set GEMINI_API_KEY and try again.",
    ErrorCategory.AUDIO_API_UNAVAILABLE:
        "Audio is not supported on this system (PortAudio is unavailable).",
    ErrorCategory.INSECURE_ENDPOINT:
        "Refusing to stream audio over an insecure connection. "
        "The service endpoint must use wss://.",
    ErrorCategory.MIC_PERMISSION_DENIED:
        "Microphone access denied. Grant microphone permission and try again.",
    ErrorCategory.MIC_UNAVAILABLE:
        "No usable microphone was found. Connect a microphone and try again.",
    ErrorCategory.AUDIO_DEVICE:
        "The audio output device could not be initialized.",
    ErrorCategory.CONNECT_FAILED:
        "Could not connect to the roleplay service. "
        "Check the API key and model configuration.",
    ErrorCategory.CONNECTION_LOST:
        "We lost connection to the roleplay service. Please try again later.",
}


def error_message(category: ErrorCategory, detail: str | None = None) -> str:
    """
    Human-readable message for category, optionally suffixed with detail.
    """
    base = _MESSAGES[category]
    if detail:
        return f"{base} ({detail})"
    return base


def category_for_device_error(error: AudioDeviceError, *, microphone: bool) -> ErrorCategory:
    """
    Map a device exception to its category.

    microphone=False means the failure came from the output side.
    """
    if isinstance(error, AudioApiUnavailableError):
        return ErrorCategory.AUDIO_API_UNAVAILABLE
    if isinstance(error, MicrophonePermissionError):
        return ErrorCategory.MIC_PERMISSION_DENIED
    if microphone:
        return ErrorCategory.MIC_UNAVAILABLE
    return ErrorCategory.AUDIO_DEVICE
