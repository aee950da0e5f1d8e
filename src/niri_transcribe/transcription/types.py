from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Backend(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"


@dataclass(frozen=True)
class TranscriptionResult:
    """Text recognized from one audio segment."""
    text: str
    service_used: Backend
    duration_ms: float
    confidence: Optional[float] = None
    language: Optional[str] = None
    fallback_used: bool = False
