"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No protocol constants
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from spec import DEFAULT_VOICE, LIVE_ENDPOINT_DEFAULT, LIVE_MODEL_DEFAULT


def _device_from_env(name: str) -> int | str | None:
    """PortAudio accepts either a device index or a (partial) device name."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    raw = raw.strip()
    return int(raw) if raw.isdigit() else raw


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to LiveClient and the CLI.
    """

    # ------------------------------------------------------------------
    # Conversational service
    # ------------------------------------------------------------------

    api_key: str | None
    live_model: str = LIVE_MODEL_DEFAULT
    live_endpoint: str = LIVE_ENDPOINT_DEFAULT
    default_voice: str = DEFAULT_VOICE

    # ------------------------------------------------------------------
    # Audio devices (None = system default)
    # ------------------------------------------------------------------

    input_device: int | str | None = None
    output_device: int | str | None = None

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Scenarios
    # ------------------------------------------------------------------

    scenarios_path: str | None = None

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        A missing API key is NOT an error here; LiveClient reports it as a
        precondition failure at connect() time.
        """
        return AppConfig(
            api_key=os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY"),
            live_model=os.environ.get("LIVE_MODEL", LIVE_MODEL_DEFAULT),
            live_endpoint=os.environ.get("LIVE_ENDPOINT", LIVE_ENDPOINT_DEFAULT),
            default_voice=os.environ.get("DEFAULT_VOICE", DEFAULT_VOICE),
            input_device=_device_from_env("INPUT_DEVICE"),
            output_device=_device_from_env("OUTPUT_DEVICE"),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
            scenarios_path=os.environ.get("SCENARIOS_PATH"),
        )
