"""Audio subsystem data types and configuration."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class AudioFormat:
    """Audio format specification."""
    sample_rate: int = 16000
    channels: int = 1


@dataclass(frozen=True)
class SegmenterConfig:
    """Voice activity detection and segmentation configuration (all durations in ms)."""
    vad_threshold: float = 0.01
    frame_ms: int = 30
    noise_floor_alpha: float = 0.01
    speech_start_delay_ms: int = 300
    speech_end_delay_ms: int = 1000
    pre_roll_ms: int = 300
    post_roll_ms: int = 200
    min_chunk_ms: int = 1000
    max_chunk_ms: int = 3000
    silence_timeout_ms: int = 10000


@dataclass
class AudioFrame:
    """Chunk of normalized mono samples as delivered by the capture process."""
    pcm: np.ndarray          # shape: (n_samples,) float32 in [-1.0, 1.0]
    sample_rate: int
    timestamp_s: float


@dataclass(frozen=True)
class AudioSegment:
    """One bounded utterance, ready for transcription."""
    samples: np.ndarray
    sample_rate: int
    start_timestamp: float
    duration_ms: float


@dataclass(frozen=True)
class Device:
    """Capture source reported by the audio system."""
    id: str
    name: str
    state: str = "available"
