"""Fixed-capacity sample ring buffer."""

from __future__ import annotations

import threading

import numpy as np


class RingBuffer:
    """
    Holds the most recent `capacity` float32 samples.

    Writers call `append`; readers call `snapshot`, which always returns a copy so a
    concurrent append can never tear what the reader sees.
    """

    def __init__(self, capacity: int, sample_rate: int):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._buf = np.zeros(capacity, dtype=np.float32)
        self._capacity = capacity
        self._sample_rate = sample_rate
        self._write_pos = 0
        self._size = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return self._size

    def duration_s(self) -> float:
        return len(self) / self._sample_rate

    def append(self, samples: np.ndarray) -> None:
        data = np.asarray(samples, dtype=np.float32)
        if len(data) == 0:
            return
        with self._lock:
            if len(data) >= self._capacity:
                self._buf[:] = data[-self._capacity:]
                self._write_pos = 0
                self._size = self._capacity
                return

            end = self._write_pos + len(data)
            if end <= self._capacity:
                self._buf[self._write_pos:end] = data
            else:
                first = self._capacity - self._write_pos
                self._buf[self._write_pos:] = data[:first]
                self._buf[:end - self._capacity] = data[first:]
            self._write_pos = end % self._capacity
            self._size = min(self._size + len(data), self._capacity)

    def snapshot(self, duration_s: float) -> np.ndarray:
        """Copy of the most recent `duration_s` seconds (or everything held, if less)."""
        wanted = max(0, int(self._sample_rate * duration_s))
        with self._lock:
            n = min(wanted, self._size)
            if n == 0:
                return np.zeros(0, dtype=np.float32)
            start = (self._write_pos - n) % self._capacity
            if start + n <= self._capacity:
                return self._buf[start:start + n].copy()
            return np.concatenate((self._buf[start:], self._buf[:self._write_pos]))

    def clear(self) -> None:
        with self._lock:
            self._write_pos = 0
            self._size = 0
