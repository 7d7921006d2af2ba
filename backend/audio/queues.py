# backend/audio/queues.py
"""
Ordered capture block queue with canonical depth measurement.

Requirements:
- Depth measured in seconds (not block count)
- Never drops: a slow consumer grows the queue instead
- Strict FIFO; sequence gaps are counted for observability
- enqueue() is synchronous and must be called on the event loop thread
"""

from __future__ import annotations
import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from audio.frames import CapturedBlock
from spec import CAPTURE_BLOCK_DURATION_S


@dataclass
class QueueCounters:
    """
    Counters for observability.
    """
    enqueued: int = 0
    dequeued: int = 0
    max_depth: int = 0
    sequence_gaps: int = 0


class CaptureBlockQueue:
    """
    Unbounded FIFO queue for CapturedBlock objects.

    Producer side (loop thread, fed by call_soon_threadsafe):
        enqueue()
    Consumer side (single pump task):
        await get()
    """

    def __init__(self) -> None:
        self._blocks: Deque[CapturedBlock] = deque()
        self._ready = asyncio.Event()
        self._last_seq: int | None = None
        self.counters: QueueCounters = QueueCounters()

    # -------------------------
    # Core queue operations
    # -------------------------

    def enqueue(self, block: CapturedBlock) -> None:
        """Append a block. Never drops."""
        if self._last_seq is not None and block.sequence_num != self._last_seq + 1:
            self.counters.sequence_gaps += 1
        self._last_seq = block.sequence_num

        self._blocks.append(block)
        self.counters.enqueued += 1
        self.counters.max_depth = max(self.counters.max_depth, len(self._blocks))
        self._ready.set()

    def dequeue(self) -> Optional[CapturedBlock]:
        """
        Dequeue the oldest block without waiting.

        Returns None if queue is empty.
        """
        if not self._blocks:
            return None
        self.counters.dequeued += 1
        block = self._blocks.popleft()
        if not self._blocks:
            self._ready.clear()
        return block

    async def get(self) -> CapturedBlock:
        """Wait for and dequeue the oldest block."""
        while True:
            block = self.dequeue()
            if block is not None:
                return block
            await self._ready.wait()

    def clear(self) -> None:
        """
        Drop all queued blocks.

        Used only on capture stop, when nothing downstream will consume them.
        """
        self._blocks.clear()
        self._ready.clear()

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._blocks)

    def is_empty(self) -> bool:
        """Check if the queue is empty."""
        return not self._blocks

    def depth_seconds(self) -> float:
        """
        Canonical queue depth in seconds.

        depth_s = num_blocks × CAPTURE_BLOCK_DURATION_S
        """
        return len(self._blocks) * CAPTURE_BLOCK_DURATION_S

    def snapshot(self) -> dict[str, float | int]:
        """
        Lightweight snapshot for logging.
        """
        return {
            "blocks": len(self._blocks),
            "depth_s": self.depth_seconds(),
            "enqueued": self.counters.enqueued,
            "dequeued": self.counters.dequeued,
            "max_depth": self.counters.max_depth,
            "sequence_gaps": self.counters.sequence_gaps,
        }
