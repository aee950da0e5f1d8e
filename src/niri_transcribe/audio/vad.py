"""Energy-based voice activity detection with adaptive noise floor."""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, List, Optional

import numpy as np

from ..core.events import SilenceTimeout, SpeechSegmentReady, SpeechStarted, VADEvent
from .format import calculate_rms
from .types import AudioSegment, SegmenterConfig

logger = logging.getLogger("VAD")


@dataclass(frozen=True)
class VADState:
    """Read-only view of the detector state."""
    is_speaking: bool
    speech_start_time: Optional[float]
    last_speech_time: Optional[float]
    noise_floor: float
    adaptive_threshold: float


class VoiceActivityDetector:
    """
    Splits a continuous float sample stream into bounded speech segments.

    Audio is cut into fixed frames; a frame is speech when its RMS exceeds
    max(adaptive_threshold, 3 * noise_floor). The noise floor is an exponential moving
    average over non-speech frames only, and the adaptive threshold follows it at 5x
    (never below `vad_threshold`).

    Debounce windows and segment lengths are measured on the sample clock (samples
    consumed / sample rate) rather than wall time, so the detector behaves identically
    whether it is fed live audio or a recording.
    """

    def __init__(
        self,
        cfg: SegmenterConfig = SegmenterConfig(),
        sample_rate: int = 16000,
        clock: Callable[[], float] = time.time,
    ):
        self._cfg = cfg
        self._sample_rate = sample_rate
        self._clock = clock

        self._frame_size = int(sample_rate * cfg.frame_ms / 1000)
        self._start_frames = max(1, math.ceil(cfg.speech_start_delay_ms / cfg.frame_ms))
        self._end_frames = max(1, math.ceil(cfg.speech_end_delay_ms / cfg.frame_ms))
        self._pre_roll_frames = math.ceil(cfg.pre_roll_ms / cfg.frame_ms)
        self._post_roll_samples = self._ms_to_samples(cfg.post_roll_ms)
        self._min_samples = self._ms_to_samples(cfg.min_chunk_ms)
        self._max_samples = self._ms_to_samples(cfg.max_chunk_ms)
        self._silence_timeout_samples = self._ms_to_samples(cfg.silence_timeout_ms)

        self.reset()

    def _ms_to_samples(self, ms: float) -> int:
        return int(round(self._sample_rate * ms / 1000))

    def _sample_time(self, sample_index: int) -> float:
        return self._origin + sample_index / self._sample_rate

    @property
    def frame_size(self) -> int:
        return self._frame_size

    @property
    def state(self) -> VADState:
        return VADState(
            is_speaking=self._is_speaking,
            speech_start_time=self._sample_time(self._segment_start) if self._is_speaking else None,
            last_speech_time=self._sample_time(self._last_speech_sample) if self._last_speech_sample is not None else None,
            noise_floor=self._noise_floor,
            adaptive_threshold=self._adaptive_threshold,
        )

    def reset(self) -> None:
        """Forget everything: buffers, debounce counters, noise estimate and timers."""
        self._origin = self._clock()
        self._pending = np.zeros(0, dtype=np.float32)
        self._samples_seen = 0
        self._history: deque[np.ndarray] = deque(maxlen=self._start_frames + self._pre_roll_frames)

        self._noise_floor = 0.0
        self._adaptive_threshold = self._cfg.vad_threshold

        self._candidate_frames = 0
        self._is_speaking = False
        self._silence_run = 0
        self._last_speech_sample: Optional[int] = None
        self._silence_fired = False

        self._segment_parts: List[np.ndarray] = []
        self._segment_samples = 0
        self._segment_start = 0
        self._last_voice_offset = 0

    def process(self, samples: np.ndarray) -> List[VADEvent]:
        """Feed samples (any length); returns the events produced by every complete frame."""
        data = np.asarray(samples, dtype=np.float32)
        if len(self._pending):
            data = np.concatenate((self._pending, data))

        n_frames = len(data) // self._frame_size
        events: List[VADEvent] = []
        for i in range(n_frames):
            frame = data[i * self._frame_size:(i + 1) * self._frame_size]
            events.extend(self._process_frame(frame))
        self._pending = data[n_frames * self._frame_size:].copy()
        return events

    def flush(self) -> List[VADEvent]:
        """Finalize an in-progress segment as if speech had ended now."""
        self._pending = np.zeros(0, dtype=np.float32)
        if not self._is_speaking:
            return []
        events = self._finish_segment(self._last_voice_offset + self._post_roll_samples, forced=False)
        self._end_speech()
        return events

    def _classify(self, rms: float) -> bool:
        is_speech = rms > max(self._adaptive_threshold, 3 * self._noise_floor)
        if not is_speech:
            alpha = self._cfg.noise_floor_alpha
            self._noise_floor = (1 - alpha) * self._noise_floor + alpha * rms
            self._adaptive_threshold = max(self._cfg.vad_threshold, 5 * self._noise_floor)
        return is_speech

    def _process_frame(self, frame: np.ndarray) -> List[VADEvent]:
        events: List[VADEvent] = []
        self._samples_seen += len(frame)
        self._history.append(frame)

        is_speech = self._classify(calculate_rms(frame))
        if is_speech:
            self._last_speech_sample = self._samples_seen
            self._silence_fired = False
        elif self._silence_timeout_samples and not self._silence_fired:
            last = self._last_speech_sample or 0
            silent_for = self._samples_seen - last
            if silent_for >= self._silence_timeout_samples:
                self._silence_fired = True
                events.append(SilenceTimeout(silent_for_s=silent_for / self._sample_rate))

        if not self._is_speaking:
            if not is_speech:
                self._candidate_frames = 0
                return events
            self._candidate_frames += 1
            if self._candidate_frames < self._start_frames:
                return events

            # Confirmed: seed the segment with the debounce frames plus the pre-roll before them.
            take = min(len(self._history), self._candidate_frames + self._pre_roll_frames)
            parts = list(self._history)[-take:]
            self._is_speaking = True
            self._silence_run = 0
            self._segment_parts = []
            self._segment_samples = 0
            self._segment_start = self._samples_seen - sum(len(p) for p in parts)
            onset = self._samples_seen - self._candidate_frames * self._frame_size
            self._candidate_frames = 0
            events.append(SpeechStarted(timestamp_s=self._sample_time(onset)))
            logger.debug(f"VAD speech started at {self._sample_time(onset):.3f}")
            for part in parts:
                events.extend(self._append(part, voiced=True))
            return events

        if is_speech:
            self._silence_run = 0
        else:
            self._silence_run += 1
        events.extend(self._append(frame, voiced=is_speech))

        if self._is_speaking and self._silence_run >= self._end_frames:
            events.extend(self._finish_segment(self._last_voice_offset + self._post_roll_samples, forced=False))
            self._end_speech()
        return events

    def _append(self, frame: np.ndarray, voiced: bool) -> List[VADEvent]:
        """Add audio to the open segment, force-cutting it when it reaches the maximum length."""
        events: List[VADEvent] = []
        room = self._max_samples - self._segment_samples
        if len(frame) < room:
            self._segment_parts.append(frame)
            self._segment_samples += len(frame)
            if voiced:
                self._last_voice_offset = self._segment_samples
            return events

        self._segment_parts.append(frame[:room])
        self._segment_samples += room
        if voiced:
            self._last_voice_offset = self._segment_samples

        # Cut inside a pause ends the segment where the voice stopped; otherwise cut at the cap.
        cut = self._max_samples
        if self._silence_run > 0:
            cut = min(cut, self._last_voice_offset + self._post_roll_samples)

        audio = np.concatenate(self._segment_parts)
        carry = np.concatenate((audio[cut:], frame[room:]))
        next_start = self._segment_start + cut
        events.extend(self._finish_segment(cut, forced=True, audio=audio))

        logger.debug("VAD max segment length reached, continuing in a new segment")
        self._segment_start = next_start
        self._segment_parts = [carry] if len(carry) else []
        self._segment_samples = len(carry)
        self._last_voice_offset = len(carry) if voiced else 0
        return events

    def _finish_segment(self, keep: int, forced: bool, audio: Optional[np.ndarray] = None) -> List[VADEvent]:
        if audio is None:
            audio = np.concatenate(self._segment_parts) if self._segment_parts else np.zeros(0, dtype=np.float32)
        samples = audio[:max(0, min(keep, len(audio)))].copy()
        start = self._sample_time(self._segment_start)
        self._segment_parts = []
        self._segment_samples = 0
        self._last_voice_offset = 0

        duration_ms = len(samples) * 1000.0 / self._sample_rate
        if len(samples) < self._min_samples:
            logger.debug(f"VAD dropping {duration_ms:.0f} ms segment (shorter than {self._cfg.min_chunk_ms} ms)")
            return []

        logger.info(f"VAD segment ready: start={start:.3f} duration_ms={duration_ms:.0f} forced={forced}")
        segment = AudioSegment(
            samples=samples,
            sample_rate=self._sample_rate,
            start_timestamp=start,
            duration_ms=duration_ms,
        )
        return [SpeechSegmentReady(segment=segment, forced=forced)]

    def _end_speech(self) -> None:
        self._is_speaking = False
        self._silence_run = 0
        self._candidate_frames = 0
        self._segment_parts = []
        self._segment_samples = 0
        self._last_voice_offset = 0
