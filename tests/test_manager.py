"""Tests for backend failover and health-driven switching."""

from unittest.mock import MagicMock

import httpx
import numpy as np
import openai
import pytest

from niri_transcribe.audio.types import AudioSegment
from niri_transcribe.config.settings import Provider, RemoteTranscriptionConfig, TranscriptionConfig
from niri_transcribe.transcription.errors import (
    LocalEngineError,
    NonRetryableError,
    RetryableTransportError,
    TranscriptionFailedError,
)
from niri_transcribe.transcription.manager import TranscriptionManager
from niri_transcribe.transcription.remote import RemoteBackend
from niri_transcribe.transcription.types import Backend, TranscriptionResult


class FakeBackend:
    def __init__(self, name, configured=True, healthy=True, error=None):
        self.name = name
        self.configured = configured
        self.healthy = healthy
        self.error = error
        self.calls = 0
        self.started = False
        self.stopped = False
        self.model_path = "/models/ggml-base.bin"

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def check_health(self):
        return self.healthy

    def transcribe(self, segment):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return TranscriptionResult(text=f"from {self.name.value}", service_used=self.name, duration_ms=5.0)


@pytest.fixture
def segment():
    return AudioSegment(samples=np.zeros(16000, dtype=np.float32), sample_rate=16000, start_timestamp=0.0, duration_ms=1000)


def make_manager(provider, remote=None, local=None):
    remote = remote or FakeBackend(Backend.REMOTE)
    local = local or FakeBackend(Backend.LOCAL)
    cfg = TranscriptionConfig(provider=provider)
    return TranscriptionManager(cfg, remote=remote, local=local), remote, local


class TestTranscriptionManager:
    def test_remote_primary(self, segment):
        manager, remote, local = make_manager(Provider.REMOTE)
        result = manager.transcribe(segment)

        assert result.service_used is Backend.REMOTE
        assert not result.fallback_used
        assert local.calls == 0

    @pytest.mark.parametrize("error", [RetryableTransportError("503"), NonRetryableError("401")])
    def test_remote_failure_falls_back_to_local(self, segment, error):
        manager, remote, local = make_manager(Provider.REMOTE, remote=FakeBackend(Backend.REMOTE, error=error))
        result = manager.transcribe(segment)

        assert result.service_used is Backend.LOCAL
        assert result.fallback_used
        assert result.text == "from local"

    def test_local_primary_has_no_fallback(self, segment):
        manager, remote, local = make_manager(
            Provider.LOCAL, local=FakeBackend(Backend.LOCAL, error=LocalEngineError("timed out"))
        )
        with pytest.raises(TranscriptionFailedError, match="timed out"):
            manager.transcribe(segment)
        assert remote.calls == 0

    def test_all_backends_failing(self, segment):
        manager, _, _ = make_manager(
            Provider.REMOTE,
            remote=FakeBackend(Backend.REMOTE, error=RetryableTransportError("down")),
            local=FakeBackend(Backend.LOCAL, error=LocalEngineError("crashed")),
        )
        with pytest.raises(TranscriptionFailedError) as exc:
            manager.transcribe(segment)
        assert "remote: down" in str(exc.value)
        assert "local: crashed" in str(exc.value)

    def test_auto_prefers_remote_with_credentials(self):
        manager, _, _ = make_manager(Provider.AUTO)
        assert manager.current_backend is Backend.REMOTE

    def test_auto_without_credentials_uses_local(self):
        manager, _, _ = make_manager(Provider.AUTO, remote=FakeBackend(Backend.REMOTE, configured=False))
        assert manager.current_backend is Backend.LOCAL

    def test_auto_switches_on_health_and_back(self, segment):
        manager, remote, local = make_manager(Provider.AUTO)

        remote.healthy = False
        manager.check_health()
        assert manager.current_backend is Backend.LOCAL
        assert manager.transcribe(segment).service_used is Backend.LOCAL
        assert remote.calls == 0

        remote.healthy = True
        manager.check_health()
        assert manager.current_backend is Backend.REMOTE

    def test_pinned_provider_ignores_health(self):
        manager, remote, _ = make_manager(Provider.REMOTE)
        remote.healthy = False
        manager.check_health()
        assert manager.current_backend is Backend.REMOTE
        assert manager.get_status()["remote_healthy"] is False

    def test_openai_alias(self):
        assert TranscriptionConfig(provider="openai").provider is Provider.REMOTE

    def test_start_and_stop(self):
        manager, remote, _ = make_manager(Provider.AUTO)
        manager.start()
        manager.stop()

        assert remote.started and remote.stopped

    def test_status(self):
        manager, _, _ = make_manager(Provider.AUTO)
        status = manager.get_status()

        assert status["provider"] == "auto"
        assert status["current"] == "remote"
        assert status["remote_configured"] is True
        assert status["last_health_check"] is None

    def test_unusable_remote_response_falls_back_to_local(self, segment):
        client = MagicMock()
        response = httpx.Response(200, request=httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions"))
        client.audio.transcriptions.create.side_effect = openai.APIResponseValidationError(response=response, body=None)
        remote = RemoteBackend(RemoteTranscriptionConfig(api_key="sk-test", min_request_interval_ms=0), client=client)
        manager, _, local = make_manager(Provider.REMOTE, remote=remote)

        try:
            result = manager.transcribe(segment)
        finally:
            remote.stop()

        assert result.service_used is Backend.LOCAL
        assert result.fallback_used
        assert local.calls == 1
