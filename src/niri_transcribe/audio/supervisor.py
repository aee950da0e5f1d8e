"""Restart policy for the long-lived capture process."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ProcessState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    BACKOFF = "backoff"
    FAILED = "failed"


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with a ceiling and a bounded number of consecutive attempts."""
    base_s: float = 1.0
    cap_s: float = 10.0
    max_attempts: int = 5
    multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        """Delay before restart `attempt` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        return min(self.base_s * self.multiplier ** (attempt - 1), self.cap_s)

    def exhausted(self, attempt: int) -> bool:
        return attempt > self.max_attempts
