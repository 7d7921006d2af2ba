"""
JSONL event log for the live roleplay client.

One JSON object per line on stdout. Every record carries event_type and,
where a session exists, session_id and ts_ms. Producers:

- reducer: state transitions and ignored stale events (LogEvent commands)
- runtime: TEARDOWN, CALLBACK_FAILED, FRAGMENT_DECODE_FAILED, EVENT_DROPPED_NO_SESSION
- transport: TRANSPORT_OPEN / TRANSPORT_CLOSED / TRANSPORT_ERROR / TRANSPORT_GO_AWAY
- devices and capture: MICROPHONE_*, OUTPUT_CONTEXT_*, CAPTURE_STARTED / CAPTURE_STOPPED
- session: SESSION_RELEASED and per-step release failures

The CLI keeps stdout for this log and writes human-facing text to stderr.
ENABLE_JSON_LOGS=0 silences it through set_enabled().
"""

from __future__ import annotations

import json
import sys
from typing import Any, Mapping, Callable


# ------------------------------------------------------------------
# Output sink (tests replace _print to capture records)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_enabled: bool = True


def set_enabled(enabled: bool) -> None:
    """Turn JSONL output on or off (ENABLE_JSON_LOGS)."""
    global _enabled  # pylint: disable=global-statement
    _enabled = enabled


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write one session event as a JSONL line.

    Each call writes and flushes one whole line.

    Records that json cannot encode (numpy scalars, exceptions) are replaced
    by a LOGGER_SERIALIZATION_ERROR record holding their repr. A closed
    stdout at interpreter shutdown is ignored. Never raises.
    """
    if not _enabled:
        return

    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "session_id": event.get("session_id"),
            "failed_event_type": event.get("event_type"),
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    try:
        _print(line)
    except (OSError, ValueError):
        pass
