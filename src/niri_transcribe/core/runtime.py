"""Runtime context holding shared queues."""

from __future__ import annotations

import queue
from dataclasses import dataclass

from ..audio.types import AudioFrame, AudioSegment
from .events import ControlEvent

# ~10 s of 4096-byte reads at 16 kHz mono
FRAMES_QUEUE_SIZE = 80


@dataclass
class RuntimeContext:
    """
    Shared runtime objects owned by the Orchestrator.

    Queues live here (not as globals) and are injected into components that need them.
    """

    frames_queue: "queue.Queue[AudioFrame]"
    segments_queue: "queue.Queue[AudioSegment]"
    events_queue: "queue.Queue[ControlEvent]"

    @classmethod
    def create(cls) -> "RuntimeContext":
        return cls(
            frames_queue=queue.Queue(maxsize=FRAMES_QUEUE_SIZE),
            segments_queue=queue.Queue(),
            events_queue=queue.Queue(),
        )
