"""Reusable worker thread utilities."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Generic, TypeVar

from .shutdown import StopSignal

T = TypeVar("T")

logger = logging.getLogger(__name__)


class QueueWorker(threading.Thread, Generic[T]):
    """
    Base class for a queue-consuming worker thread.

    This keeps lifecycle + polling logic consistent and reduces duplication across worker threads.
    Subclasses only implement `handle(item)`. Items are handled one at a time in queue order;
    an exception raised by `handle` is logged and the worker moves on to the next item.
    """

    def __init__(
        self,
        *,
        name: str,
        stop_signal: StopSignal,
        input_queue: "queue.Queue[T]",
        poll_interval_s: float = 0.1,
        daemon: bool = True,
    ):
        super().__init__(name=name, daemon=daemon)
        self._stop_signal = stop_signal
        self._input_queue = input_queue
        self._poll_interval_s = poll_interval_s

    def run(self) -> None:
        while not self._stop_signal.is_set():
            try:
                item = self._input_queue.get(timeout=self._poll_interval_s)
            except queue.Empty:
                continue

            try:
                self.handle(item)
            except Exception as e:
                logger.error(f"{self.name}: failed to handle item: {e}", exc_info=True)
            finally:
                self._input_queue.task_done()

    def drain(self) -> int:
        """Discard all pending items. Returns how many were dropped."""
        dropped = 0
        while True:
            try:
                self._input_queue.get_nowait()
            except queue.Empty:
                return dropped
            self._input_queue.task_done()
            dropped += 1

    def handle(self, item: T) -> None:
        raise NotImplementedError
