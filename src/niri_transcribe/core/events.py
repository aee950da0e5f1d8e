from dataclasses import dataclass, field
from typing import Union
import time

from ..audio.types import AudioSegment
from ..transcription.types import TranscriptionResult


@dataclass(frozen=True)
class SpeechStarted:
    """VAD confirmed the start of an utterance (after the start debounce)."""
    timestamp_s: float


@dataclass(frozen=True)
class SpeechSegmentReady:
    """A bounded segment is ready for transcription."""
    segment: AudioSegment
    forced: bool = False


@dataclass(frozen=True)
class SilenceTimeout:
    """No speech frame has been seen for the configured idle period."""
    silent_for_s: float


@dataclass(frozen=True)
class TranscriptionCompleted:
    """A segment was transcribed; `result.text` is about to be typed."""
    result: TranscriptionResult
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CaptureFailed:
    """The capture process could not be kept alive."""
    error: Exception
    timestamp: float = field(default_factory=time.time)


VADEvent = Union[SpeechStarted, SpeechSegmentReady, SilenceTimeout]
ControlEvent = Union[SilenceTimeout, CaptureFailed]
