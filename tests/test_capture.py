"""Tests for the supervised audio capture adapter."""

import queue

import numpy as np
import pytest

from niri_transcribe.audio.capture import AudioCapture
from niri_transcribe.audio.supervisor import BackoffPolicy, ProcessState
from niri_transcribe.audio.types import AudioFormat
from niri_transcribe.core.events import CaptureFailed
from niri_transcribe.errors import AlreadyCapturingError, CaptureExhaustedError, NoAudioSystemError

from tests.helpers import ExitingSpawner, FakeRunner, FakeSpawner, wait_for

FAST_BACKOFF = BackoffPolicy(base_s=0.001, cap_s=0.005, max_attempts=5)


class TestAudioCapture:
    @pytest.fixture
    def frames_queue(self):
        return queue.Queue(maxsize=100)

    @pytest.fixture
    def events_queue(self):
        return queue.Queue()

    @pytest.fixture
    def spawner(self):
        return FakeSpawner()

    @pytest.fixture
    def capture(self, frames_queue, events_queue, pipewire_runner, spawner):
        cap = AudioCapture(
            AudioFormat(sample_rate=16000, channels=1),
            frames_queue=frames_queue,
            events_queue=events_queue,
            runner=pipewire_runner,
            spawner=spawner,
            backoff=FAST_BACKOFF,
            grace_period_s=0.05,
        )
        yield cap
        cap.stop()

    def test_start_spawns_recorder_and_queues_frames(self, capture, spawner, frames_queue):
        capture.start()

        assert capture.is_capturing
        assert capture.state is ProcessState.RUNNING
        assert spawner.processes[0].args[:1] == ["pw-record"]
        assert "@DEFAULT_SOURCE@" in spawner.processes[0].args

        pcm = np.array([16384, -16384, 0, 32767], dtype="<i2").tobytes()
        spawner.processes[0].stdout.feed(pcm)

        frame = frames_queue.get(timeout=2)
        np.testing.assert_allclose(frame.pcm, [0.5, -0.5, 0.0, 32767 / 32768])
        assert frame.sample_rate == 16000
        assert wait_for(lambda: len(capture.get_buffered_audio(1.0)) == 4)

    def test_odd_byte_is_carried_to_next_read(self, capture, spawner, frames_queue):
        capture.start()
        stream = spawner.processes[0].stdout
        stream.feed(b"\x00")
        stream.feed(b"\x40\x00\x00")

        samples = []
        while len(samples) < 2:
            samples.extend(frames_queue.get(timeout=2).pcm.tolist())
        assert samples == [0.5, 0.0]

    def test_start_twice_raises(self, capture):
        capture.start()
        with pytest.raises(AlreadyCapturingError):
            capture.start()

    def test_no_audio_system(self, frames_queue):
        cap = AudioCapture(
            AudioFormat(),
            frames_queue=frames_queue,
            runner=FakeRunner(failing=["pw-cli", "pactl"]),
            spawner=FakeSpawner(),
        )
        with pytest.raises(NoAudioSystemError):
            cap.start()
        assert not cap.is_capturing
        assert cap.state is ProcessState.STOPPED

    def test_spawn_requires_detected_audio_system(self, frames_queue):
        spawner = FakeSpawner()
        cap = AudioCapture(AudioFormat(), frames_queue=frames_queue, runner=FakeRunner(), spawner=spawner)

        with pytest.raises(NoAudioSystemError):
            cap._spawn()
        assert spawner.processes == []

    def test_stop_terminates_and_is_idempotent(self, capture, spawner):
        capture.start()
        proc = spawner.processes[0]

        capture.stop()
        capture.stop()

        assert proc.terminated
        assert not proc.killed
        assert not capture.is_capturing
        assert capture.state is ProcessState.STOPPED

    def test_stop_kills_process_ignoring_sigterm(self, frames_queue, pipewire_runner):
        spawner = FakeSpawner(ignore_sigterm=True)
        cap = AudioCapture(
            AudioFormat(),
            frames_queue=frames_queue,
            runner=pipewire_runner,
            spawner=spawner,
            grace_period_s=0.05,
        )
        cap.start()
        cap.stop()
        assert spawner.processes[0].terminated
        assert spawner.processes[0].killed

    def test_no_frames_after_stop(self, capture, frames_queue):
        capture.start()
        capture.stop()

        capture._process_audio_data(np.zeros(8, dtype="<i2").tobytes())
        assert frames_queue.empty()

    def test_restarts_after_unexpected_exit(self, capture, spawner, frames_queue):
        capture.start()
        spawner.processes[0].exit(1)

        assert wait_for(lambda: len(spawner.processes) == 2)
        assert wait_for(lambda: capture.state is ProcessState.RUNNING)
        assert capture.get_status()["restart_count"] == 1

        spawner.processes[1].stdout.feed(np.zeros(16, dtype="<i2").tobytes())
        frames_queue.get(timeout=2)
        assert wait_for(lambda: capture.get_status()["restart_count"] == 0)
        assert capture.is_capturing

    def test_gives_up_after_restart_budget(self, frames_queue, events_queue, pipewire_runner):
        spawner = ExitingSpawner()
        cap = AudioCapture(
            AudioFormat(),
            frames_queue=frames_queue,
            events_queue=events_queue,
            runner=pipewire_runner,
            spawner=spawner,
            backoff=FAST_BACKOFF,
        )
        cap.start()

        event = events_queue.get(timeout=2)
        assert isinstance(event, CaptureFailed)
        assert isinstance(event.error, CaptureExhaustedError)
        assert cap.state is ProcessState.FAILED
        assert not cap.is_capturing
        assert isinstance(cap.last_error, CaptureExhaustedError)
        # initial process plus five restarts
        assert len(spawner.processes) == 6

    def test_list_devices_failure_returns_empty(self, frames_queue):
        runner = FakeRunner(failing=["pw-cli", "pactl"])
        cap = AudioCapture(AudioFormat(), frames_queue=frames_queue, runner=runner, spawner=FakeSpawner())
        assert cap.list_devices() == []

    def test_status_reports_configuration(self, capture, spawner):
        capture.start()
        status = capture.get_status()

        assert status["is_capturing"] is True
        assert status["audio_system"] == "pipewire"
        assert status["configured_device"] == "default"
        assert status["actual_device"] == "@DEFAULT_SOURCE@"
        assert status["process_id"] == spawner.processes[0].pid
        assert status["last_error"] is None

    def test_status_resolves_default_source(self, frames_queue):
        runner = FakeRunner(
            {("pactl", "--version"): "pactl 16.1\n", ("pactl", "info"): "Server Name: pulseaudio\nDefault Source: alsa_input.mic\n"},
            failing=["pw-cli"],
        )
        cap = AudioCapture(AudioFormat(), frames_queue=frames_queue, runner=runner, spawner=FakeSpawner())
        cap.start()
        try:
            status = cap.get_status()
        finally:
            cap.stop()

        assert status["audio_system"] == "pulseaudio"
        assert status["resolved_device"] == "alsa_input.mic"

    def test_status_skips_lookup_for_explicit_device(self, frames_queue, pipewire_runner):
        cap = AudioCapture(
            AudioFormat(), frames_queue=frames_queue, device="alsa_input.usb", runner=pipewire_runner, spawner=FakeSpawner()
        )
        cap.start()
        try:
            status = cap.get_status()
        finally:
            cap.stop()

        assert status["resolved_device"] is None
        assert ["wpctl", "status"] not in pipewire_runner.calls
