"""PCM / float conversions, WAV framing and small DSP helpers.

All functions are pure: they never modify their input and always return new arrays.
Float samples are float32 in [-1.0, 1.0]; integer samples are signed 16-bit little-endian.
"""

from __future__ import annotations

import io
import math
import wave
from typing import Union

import numpy as np

INT16_SCALE = 32768.0
WAV_HEADER_SIZE = 44


def int16_to_float32(data: Union[bytes, bytearray, memoryview, np.ndarray]) -> np.ndarray:
    """Convert 16-bit PCM (raw little-endian bytes or an int16 array) to normalized float32."""
    if isinstance(data, np.ndarray):
        if data.dtype != np.int16:
            raise TypeError(f"expected int16 samples, got {data.dtype}")
        samples = data
    elif isinstance(data, (bytes, bytearray, memoryview)):
        if len(data) % 2:
            raise ValueError("16-bit PCM byte length must be even")
        samples = np.frombuffer(data, dtype="<i2")
    else:
        raise TypeError("input must be bytes or an int16 ndarray")
    return samples.astype(np.float32) / INT16_SCALE


def float32_to_int16(samples: np.ndarray) -> np.ndarray:
    """Convert normalized float samples to int16, clamping out-of-range values."""
    scaled = np.round(np.asarray(samples, dtype=np.float64) * INT16_SCALE)
    return np.clip(scaled, -32768, 32767).astype(np.int16)


def float32_to_wav(samples: np.ndarray, sample_rate: int, channels: int = 1) -> bytes:
    """Encode float samples as a canonical 16-bit PCM WAV file (44-byte header)."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wave_file:
        wave_file.setnchannels(channels)
        wave_file.setsampwidth(2)
        wave_file.setframerate(sample_rate)
        wave_file.writeframes(float32_to_int16(samples).astype("<i2").tobytes())
    return buffer.getvalue()


def calculate_rms(samples: np.ndarray) -> float:
    if len(samples) == 0:
        return 0.0
    x = np.asarray(samples, dtype=np.float64)
    return float(np.sqrt(np.mean(x * x)))


def high_pass_filter(samples: np.ndarray, cutoff_hz: float, sample_rate: int) -> np.ndarray:
    """Single-pole RC high-pass filter, mainly to remove DC offset."""
    x = np.asarray(samples, dtype=np.float32)
    if len(x) == 0:
        return x.copy()

    rc = 1.0 / (cutoff_hz * 2 * math.pi)
    dt = 1.0 / sample_rate
    alpha = rc / (rc + dt)

    out = np.empty_like(x)
    out[0] = x[0]
    prev_in = float(x[0])
    prev_out = float(x[0])
    for i in range(1, len(x)):
        cur = float(x[i])
        prev_out = alpha * (prev_out + cur - prev_in)
        prev_in = cur
        out[i] = prev_out
    return out


def normalize(samples: np.ndarray, target_peak: float = 0.95) -> np.ndarray:
    """Scale samples so the absolute peak equals `target_peak`. Silence is returned unchanged."""
    x = np.asarray(samples, dtype=np.float32)
    if len(x) == 0:
        return x.copy()
    peak = float(np.max(np.abs(x)))
    if peak == 0.0:
        return x.copy()
    return (x * (target_peak / peak)).astype(np.float32)


def resample(samples: np.ndarray, input_rate: int, output_rate: int) -> np.ndarray:
    """Linear-interpolation resampler between arbitrary rates."""
    x = np.asarray(samples, dtype=np.float32)
    if input_rate == output_rate or len(x) == 0:
        return x.copy()

    ratio = input_rate / output_rate
    out_len = int(math.ceil(len(x) / ratio))
    positions = np.arange(out_len, dtype=np.float64) * ratio
    lower = np.floor(positions).astype(np.int64)
    lower = np.minimum(lower, len(x) - 1)
    upper = np.minimum(lower + 1, len(x) - 1)
    frac = positions - lower
    out = x[lower] * (1.0 - frac) + x[upper] * frac
    return out.astype(np.float32)
