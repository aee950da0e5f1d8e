"""Audio subsystem: capture, format conversion and voice activity detection."""

from .format import float32_to_int16, float32_to_wav, int16_to_float32
from .types import AudioFormat, AudioFrame, AudioSegment, Device, SegmenterConfig

__all__ = [
    "AudioFormat",
    "AudioFrame",
    "AudioSegment",
    "Device",
    "SegmenterConfig",
    "float32_to_int16",
    "float32_to_wav",
    "int16_to_float32",
]
