"""
Live transport contract.

This module defines the *interface only*. No session state, no playback,
no retries live here.

Key invariants:
- One transport instance == one connection attempt == at most one session.
- Exactly one terminal callback per connection: on_close (clean close,
  including our own close()) OR on_error (handshake or runtime failure).
- send() never blocks, never raises, never drops before close(): blocks
  issued before the handshake completes are queued and written in order.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from audio.frames import AudioBlock
from protocol.live_messages import ServerMessage


class TransportFailureKind(str, Enum):
    """
    Where in the connection lifetime a failure happened.

    CONNECT:  the session was never established (credentials, config, network).
    RUNTIME:  an established session was lost.
    """
    CONNECT = "CONNECT"
    RUNTIME = "RUNTIME"


@dataclass(frozen=True)
class TransportFailure:
    kind: TransportFailureKind
    detail: str


@dataclass(frozen=True)
class TransportCallbacks:
    """
    Callbacks invoked from the transport's own tasks on the event loop.

    Implementations must be quick and must not raise.
    """
    on_open: Callable[[], None]
    on_message: Callable[[ServerMessage], None]
    on_close: Callable[[str | None], None]
    on_error: Callable[[TransportFailure], None]


class LiveTransport(ABC):
    """
    Abstract persistent bidirectional stream to the conversational service.
    """

    @abstractmethod
    def open(
        self,
        *,
        system_instruction: str,
        voice_id: str,
        callbacks: TransportCallbacks,
    ) -> None:
        """
        Start connecting in the background. Returns immediately.

        The outcome is reported via callbacks.on_open or callbacks.on_error.
        """
        raise NotImplementedError

    @abstractmethod
    def send(self, block: AudioBlock) -> None:
        """Queue one outbound audio block. Order is preserved."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """
        Terminate the connection.

        Idempotent. Fires on_close once if the session had been established
        and no terminal callback was reported yet.
        """
        raise NotImplementedError
