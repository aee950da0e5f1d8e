"""Tests for the HTTP control surface."""

import pytest
from fastapi.testclient import TestClient

from niri_transcribe.api.server import create_app
from niri_transcribe.config.settings import TranscribeConfig
from niri_transcribe.core.orchestrator import Orchestrator
from niri_transcribe.errors import AlreadyCapturingError, NoAudioSystemError

from tests.helpers import FakeCapture, FakeManager


class StrictCapture(FakeCapture):
    def start(self):
        if self.is_capturing:
            raise AlreadyCapturingError("Audio capture already running")
        super().start()


@pytest.fixture
def capture():
    return StrictCapture()


@pytest.fixture
def client(capture):
    def factory(config):
        return Orchestrator(config, capture=capture, manager=FakeManager())

    app = create_app(TranscribeConfig(), orchestrator_factory=factory)
    with TestClient(app) as c:
        yield c


class TestSessionRoutes:
    def test_start_and_stop(self, client):
        response = client.post("/start")
        assert response.status_code == 200
        assert response.json() == {"status": "started", "state": "running"}

        response = client.post("/stop")
        assert response.status_code == 200
        assert response.json() == {"status": "stopped", "state": "stopped"}

    def test_double_start_conflicts(self, client):
        client.post("/start")
        response = client.post("/start")
        assert response.status_code == 409
        assert "running" in response.json()["error"]

    def test_stop_is_idempotent(self, client):
        client.post("/start")
        client.post("/stop")
        response = client.post("/stop")
        assert response.status_code == 200
        assert response.json() == {"status": "already_stopped", "state": "stopped"}

    def test_start_without_audio_system(self, capture, client):
        capture.start_error = NoAudioSystemError("Neither PipeWire nor PulseAudio tools found")

        response = client.post("/start")
        assert response.status_code == 503
        assert "PipeWire" in response.json()["error"]

        health = client.get("/health").json()
        assert health["session"]["state"] == "stopped"
        assert health["metrics"]["error_count"] == 1


class TestAudioRoutes:
    def test_devices(self, client):
        response = client.get("/audio/devices")
        assert response.status_code == 200
        assert response.json() == {"devices": [{"id": "alsa_input.mic", "name": "Mic", "state": "available"}]}

    def test_start_and_stop_capture(self, client):
        response = client.post("/audio/start")
        assert response.status_code == 200
        assert response.json() == {"status": "started", "is_capturing": True}

        response = client.post("/audio/start")
        assert response.status_code == 409

        response = client.post("/audio/stop")
        assert response.json() == {"status": "stopped", "is_capturing": False}

    def test_audio_start_without_audio_system(self, capture, client):
        capture.start_error = NoAudioSystemError("no audio")
        assert client.post("/audio/start").status_code == 503


class TestHealth:
    def test_health_shape(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        body = response.json()
        assert body["status"] == "healthy"
        assert body["session"]["state"] == "stopped"
        assert body["components"] == {"segmenter": True, "transcriber": True, "typer": True, "control": True}
        assert body["transcription"]["provider"] == "auto"
        assert body["config"]["serverPort"] == 3000
        assert set(body["environment"]) == {"waylandDisplay", "pulseServer"}

    def test_health_tracks_session(self, client):
        client.post("/start")
        assert client.get("/health").json()["session"]["state"] == "running"
