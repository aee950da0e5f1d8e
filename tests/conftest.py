import numpy as np
import pytest

from niri_transcribe.core.shutdown import GracefulShutdown

from tests.helpers import SAMPLE_RATE, FakeRunner


@pytest.fixture
def stop_signal():
    """Stop signal."""
    signal = GracefulShutdown()
    yield signal
    signal.stop()


@pytest.fixture
def pipewire_runner():
    return FakeRunner({("pw-cli", "--version"): "pw-cli\nCompiled with libpipewire 1.0.5\n"})


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable the config loader reacts to."""
    for name in (
        "OPENAI_API_KEY",
        "AUDIO_DEVICE",
        "VAD_THRESHOLD",
        "SILENCE_TIMEOUT",
        "TRANSCRIPTION_PROVIDER",
        "LOCAL_MODEL_SIZE",
        "HOST",
        "PORT",
        "DEBUG",
        "LOG_LEVEL",
        "TRANSCRIBE_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def mock_audio_data():
    """Mock audio data for testing"""
    return np.random.rand(SAMPLE_RATE).astype(np.float32) * 2 - 1  # 1 second at 16kHz
