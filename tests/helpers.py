"""Shared test doubles and signal generators."""

import io
import time
import subprocess
import threading
from typing import Dict, List, Optional, Sequence

import numpy as np

from niri_transcribe.audio.devices import CommandError
from niri_transcribe.audio.types import Device
from niri_transcribe.errors import TextInjectionError
from niri_transcribe.transcription.types import Backend, TranscriptionResult

SAMPLE_RATE = 16000


def tone(seconds: float, amplitude: float = 0.3, freq: float = 440.0, sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    """Sine tone; RMS is amplitude / sqrt(2)."""
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def silence(seconds: float, sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    return np.zeros(int(seconds * sample_rate), dtype=np.float32)


class FakeRunner:
    """CommandRunner double: maps the first two args of a command to canned output."""

    def __init__(self, outputs: Optional[Dict[tuple, str]] = None, failing: Sequence[str] = ()):
        self.outputs = outputs or {}
        self.failing = set(failing)
        self.calls: List[List[str]] = []

    def run(self, args):
        args = list(args)
        self.calls.append(args)
        if args[0] in self.failing:
            raise CommandError(f"{args[0]}: command not found")
        key = tuple(args[:2])
        if key in self.outputs:
            return self.outputs[key]
        if tuple(args[:1]) in self.outputs:
            return self.outputs[tuple(args[:1])]
        return ""


class FakeStream:
    """Blocking byte stream fed from the test thread."""

    def __init__(self):
        self._buf = io.BytesIO()
        self._cond = threading.Condition()
        self._closed = False
        self._pos = 0

    def feed(self, data: bytes):
        with self._cond:
            self._buf.seek(0, io.SEEK_END)
            self._buf.write(data)
            self._cond.notify_all()

    def close(self):
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def read(self, n: int) -> bytes:
        with self._cond:
            while True:
                size = self._buf.getbuffer().nbytes
                if self._pos < size:
                    self._buf.seek(self._pos)
                    data = self._buf.read(n)
                    self._pos += len(data)
                    return data
                if self._closed:
                    return b""
                self._cond.wait(0.05)

    def readline(self) -> bytes:
        return b""


class FakeProcess:
    """Stands in for subprocess.Popen of a capture utility."""

    _next_pid = 1000

    def __init__(self, args, ignore_sigterm: bool = False):
        self.args = list(args)
        self.stdout = FakeStream()
        self.stderr = None
        self.returncode: Optional[int] = None
        self.ignore_sigterm = ignore_sigterm
        self.terminated = False
        self.killed = False
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        if not self.ignore_sigterm:
            self.exit(-15)

    def kill(self):
        self.killed = True
        self.exit(-9)

    def wait(self, timeout=None):
        if self.returncode is None:
            raise subprocess.TimeoutExpired(self.args, timeout)
        return self.returncode

    def exit(self, code: int = 1):
        if self.returncode is None:
            self.returncode = code
        self.stdout.close()


class FakeSpawner:
    def __init__(self, fail_first: int = 0, ignore_sigterm: bool = False):
        self.processes: List[FakeProcess] = []
        self.fail_first = fail_first
        self.ignore_sigterm = ignore_sigterm
        self.spawned = threading.Event()

    def __call__(self, args):
        if self.fail_first > 0:
            self.fail_first -= 1
            raise FileNotFoundError(args[0])
        proc = FakeProcess(args, ignore_sigterm=self.ignore_sigterm)
        self.processes.append(proc)
        self.spawned.set()
        return proc




class ExitingSpawner(FakeSpawner):
    """Every spawned process dies immediately without producing audio."""

    def __call__(self, args):
        proc = super().__call__(args)
        proc.exit(1)
        return proc


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RecordingInjector:
    """KeyInjector double that records what would have been typed."""

    def __init__(self, fail_on: Optional[str] = None):
        self.events: List[str] = []
        self.fail_on = fail_on
        self.lock = threading.Lock()

    def type_char(self, ch: str) -> None:
        if ch == self.fail_on:
            raise TextInjectionError(f"cannot type {ch!r}")
        with self.lock:
            self.events.append(ch)

    def press_key(self, key: str) -> None:
        with self.lock:
            self.events.append(f"<{key}>")

    @property
    def typed(self) -> str:
        return "".join(e if len(e) == 1 else {"<Return>": "\n", "<Tab>": "\t"}.get(e, e) for e in self.events)


class FakeCapture:
    def __init__(self, start_error: Optional[Exception] = None):
        self.is_capturing = False
        self.start_error = start_error
        self.start_calls = 0
        self.stop_calls = 0

    def start(self):
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self.is_capturing = True

    def stop(self):
        self.stop_calls += 1
        self.is_capturing = False

    def list_devices(self):
        return [Device(id="alsa_input.mic", name="Mic")]

    def get_status(self):
        return {"is_capturing": self.is_capturing, "state": "running" if self.is_capturing else "stopped"}


class FakeManager:
    """TranscriptionManager double keyed by segment start timestamp."""

    def __init__(self, texts=None, delays=None, error: Optional[Exception] = None):
        self.texts = texts or {}
        self.delays = delays or {}
        self.error = error
        self.seen: List[float] = []

    def start(self):
        pass

    def stop(self):
        pass

    def get_status(self):
        return {"provider": "auto", "current": "remote"}

    def transcribe(self, segment):
        self.seen.append(segment.start_timestamp)
        if self.error is not None:
            raise self.error
        time.sleep(self.delays.get(segment.start_timestamp, 0.0))
        text = self.texts.get(segment.start_timestamp, "Hello")
        return TranscriptionResult(text=text, service_used=Backend.REMOTE, duration_ms=12.5)
