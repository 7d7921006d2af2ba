"""
LiveClient: the only object the surrounding application talks to.

Public API:
- await connect(system_instruction, voice_id)
- await disconnect()
- on_status_change(status: str)       settable
- on_volume_level(level: float)       settable
- on_error(message: str)              settable

Responsibilities:
- Validate preconditions (config, audio API, secure endpoint)
- Acquire devices into a fresh LiveSession, in order:
  microphone -> output -> transport
- Translate boundary failures into events

Non-responsibilities:
- No state machine logic (reducer)
- No command execution (runtime)
- No wire framing (transport)

Every failure path reaches exactly one of on_error or
on_status_change("disconnected"); every exit path releases through
LiveSession.release().
"""

from __future__ import annotations

import time
import urllib.parse
import uuid
from typing import Callable

from adapters.live.base import LiveTransport
from adapters.live.gemini_transport import GeminiLiveTransport
from audio.devices import (
    AudioApiUnavailableError,
    AudioBackend,
    AudioDeviceError,
    SoundDeviceBackend,
)
from config import AppConfig
from observability.logger import log_event
from orchestrator.events import (
    AcquisitionFailed,
    DisconnectRequested,
    EventType,
    PreconditionFailed,
    SessionRequested,
)
from orchestrator.runtime import Runtime
from session.errors import ErrorCategory, category_for_device_error
from session.live_session import LiveSession
from spec import (
    CAPTURE_BLOCK_SAMPLES,
    INPUT_SAMPLE_RATE_HZ,
    OUTPUT_SAMPLE_RATE_HZ,
    SECURE_ENDPOINT_SCHEME,
)


TransportFactory = Callable[[AppConfig, str], LiveTransport]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _noop(*_args: object) -> None:
    return None


def default_transport_factory(config: AppConfig, session_id: str) -> LiveTransport:
    return GeminiLiveTransport(
        api_key=config.api_key or "",
        model=config.live_model,
        endpoint=config.live_endpoint,
        session_id=session_id,
    )


class LiveClient:
    """
    Real-time voice roleplay client.

    One instance owns at most one session at a time. connect() while a
    session is live tears the old one down completely before acquiring
    anything for the new one.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        backend: AudioBackend | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._config = config
        self._backend: AudioBackend = backend or SoundDeviceBackend(
            input_device=config.input_device,
            output_device=config.output_device,
        )
        self._transport_factory = transport_factory or default_transport_factory
        self._runtime = Runtime(sink=self)

        self.on_status_change: Callable[[str], None] = _noop
        self.on_volume_level: Callable[[float], None] = _noop
        self.on_error: Callable[[str], None] = _noop

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def status(self) -> str:
        return self._runtime.state.status.value

    @property
    def session_id(self) -> str | None:
        return self._runtime.state.session_id

    @property
    def session(self) -> LiveSession | None:
        """Active resource container, None when nothing is held."""
        return self._runtime.session

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def connect(self, system_instruction: str, voice_id: str | None = None) -> None:
        """
        Start a new session.

        Returns once preconditions are checked, devices are acquired and
        the transport has started connecting. The handshake outcome is
        reported through on_status_change / on_error.
        """
        voice = voice_id or self._config.default_voice
        session_id = uuid.uuid4().hex

        await self._runtime.handle_event(SessionRequested(
            event_type=EventType.SESSION_REQUESTED,
            ts_ms=_now_ms(),
            session_id=session_id,
            voice_id=voice,
        ))

        failed = self._check_preconditions()
        if failed is not None:
            category, detail = failed
            await self._runtime.handle_event(PreconditionFailed(
                event_type=EventType.PRECONDITION_FAILED,
                ts_ms=_now_ms(),
                session_id=session_id,
                category=category,
                detail=detail,
            ))
            return

        session = LiveSession(session_id=session_id)
        if not await self._runtime.attach_session(session):
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "CONNECT_SUPERSEDED",
                "session_id": session_id,
            })
            return

        # No awaits from here until transport.open(): acquisition cannot
        # interleave with another connect() or disconnect().
        try:
            session.attach_microphone(self._backend.acquire_microphone(
                sample_rate_hz=INPUT_SAMPLE_RATE_HZ,
                block_size=CAPTURE_BLOCK_SAMPLES,
            ))
        except AudioDeviceError as e:
            await self._acquisition_failed(session_id, e, microphone=True)
            return

        try:
            session.attach_output(self._backend.open_output(
                sample_rate_hz=OUTPUT_SAMPLE_RATE_HZ,
            ))
        except AudioDeviceError as e:
            await self._acquisition_failed(session_id, e, microphone=False)
            return

        transport = self._transport_factory(self._config, session_id)
        session.attach_transport(transport)
        transport.open(
            system_instruction=system_instruction,
            voice_id=voice,
            callbacks=self._runtime.transport_callbacks(session_id),
        )

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CONNECT_STARTED",
            "session_id": session_id,
            "voice_id": voice,
            "model": self._config.live_model,
        })

    async def disconnect(self) -> None:
        """
        User-initiated teardown. Safe from any status and repeatedly.
        """
        await self._runtime.handle_event(DisconnectRequested(
            event_type=EventType.DISCONNECT_REQUESTED,
            ts_ms=_now_ms(),
            session_id=self._runtime.state.session_id,
        ))

    # ------------------------------------------------------------------
    # ClientSink (invoked by the runtime)
    # ------------------------------------------------------------------

    def emit_status(self, status: str) -> None:
        self.on_status_change(status)

    def emit_error(self, message: str) -> None:
        self.on_error(message)

    def emit_volume(self, level: float) -> None:
        self.on_volume_level(level)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_preconditions(self) -> tuple[ErrorCategory, str | None] | None:
        """First unmet precondition, or None. Touches no hardware."""
        if not self._config.api_key:
            return ErrorCategory.MISSING_CONFIG, None

        try:
            self._backend.check_available()
        except AudioApiUnavailableError as e:
            return ErrorCategory.AUDIO_API_UNAVAILABLE, str(e) or None

        scheme = urllib.parse.urlparse(self._config.live_endpoint).scheme
        if scheme != SECURE_ENDPOINT_SCHEME:
            return ErrorCategory.INSECURE_ENDPOINT, f"scheme={scheme or 'none'}"

        return None

    async def _acquisition_failed(
        self, session_id: str, error: AudioDeviceError, *, microphone: bool
    ) -> None:
        await self._runtime.handle_event(AcquisitionFailed(
            event_type=EventType.ACQUISITION_FAILED,
            ts_ms=_now_ms(),
            session_id=session_id,
            category=category_for_device_error(error, microphone=microphone),
            detail=str(error) or None,
        ))
