"""Continuous audio capture through pw-record / parecord."""

from __future__ import annotations

import logging
import queue
import subprocess
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from ..core.events import CaptureFailed, ControlEvent
from ..errors import AlreadyCapturingError, CaptureExhaustedError, NoAudioSystemError
from .devices import (
    AudioSystem,
    CommandError,
    CommandRunner,
    SubprocessRunner,
    build_capture_command,
    detect_audio_system,
    list_sources,
    resolve_default_device,
)
from .format import int16_to_float32
from .ring_buffer import RingBuffer
from .supervisor import BackoffPolicy, ProcessState
from .types import AudioFormat, AudioFrame, Device

logger = logging.getLogger("AudioCapture")

Spawner = Callable[[List[str]], Any]

BUFFER_SECONDS = 30


def spawn_capture_process(args: List[str]) -> "subprocess.Popen[bytes]":
    # Unbuffered so each read returns as soon as the recorder has written something.
    return subprocess.Popen(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE, bufsize=0)


class AudioCapture:
    """
    Runs the capture utility of the active audio system and turns its raw s16le output
    into AudioFrame items on `frames_queue`.

    The capture process is supervised: if it exits while we are capturing it is restarted
    with exponential backoff (see BackoffPolicy). When the restart budget is used up the
    adapter stops and publishes CaptureFailed on `events_queue`.
    """

    def __init__(
        self,
        audio_format: AudioFormat,
        frames_queue: "queue.Queue[AudioFrame]",
        events_queue: Optional["queue.Queue[ControlEvent]"] = None,
        device: str = "default",
        runner: Optional[CommandRunner] = None,
        spawner: Optional[Spawner] = None,
        backoff: BackoffPolicy = BackoffPolicy(),
        read_size: int = 4096,
        grace_period_s: float = 1.0,
    ):
        self._audio_format = audio_format
        self._frames_queue = frames_queue
        self._events_queue = events_queue
        self._device = device
        self._runner = runner or SubprocessRunner()
        self._spawner = spawner or spawn_capture_process
        self._backoff = backoff
        self._read_size = read_size
        self._grace_period_s = grace_period_s

        self._buffer = RingBuffer(audio_format.sample_rate * BUFFER_SECONDS, audio_format.sample_rate)
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._state = ProcessState.STOPPED
        self._capturing = False
        self._process: Optional[Any] = None
        self._reader: Optional[threading.Thread] = None
        # Bumped on every spawn and on stop; readers of an older generation exit quietly.
        self._generation = 0
        self._restart_count = 0
        self._audio_system: Optional[AudioSystem] = None
        self.last_error: Optional[Exception] = None

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    @property
    def audio_system(self) -> Optional[AudioSystem]:
        return self._audio_system

    def start(self) -> None:
        with self._lock:
            if self._capturing:
                raise AlreadyCapturingError("Audio capture already in progress")

            self._state = ProcessState.STARTING
            self._stop_event.clear()
            self._capturing = True
            try:
                self._audio_system = detect_audio_system(self._runner)
                self._spawn()
            except Exception as e:
                self._capturing = False
                self._state = ProcessState.STOPPED
                self.last_error = e
                logger.error(f"Failed to start audio capture: {e}")
                raise

            self._restart_count = 0
            self.last_error = None
            self._state = ProcessState.RUNNING

        logger.info(
            f"Audio capture service started successfully (system={self._audio_system.value}, "
            f"rate={self._audio_format.sample_rate}, channels={self._audio_format.channels}, device={self._device})"
        )

    def stop(self) -> None:
        with self._lock:
            was_capturing = self._capturing
            self._capturing = False
            self._generation += 1
            self._stop_event.set()
            proc, self._process = self._process, None
            reader, self._reader = self._reader, None
            self._state = ProcessState.STOPPED

        if not was_capturing and proc is None:
            return

        logger.info("Stopping audio capture service")
        if proc is not None:
            self._terminate(proc)
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self._grace_period_s)

    def _terminate(self, proc: Any) -> None:
        if proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=self._grace_period_s)
        except subprocess.TimeoutExpired:
            logger.warning("Capture process ignored SIGTERM, sending SIGKILL")
            proc.kill()
            try:
                proc.wait(timeout=self._grace_period_s)
            except subprocess.TimeoutExpired:
                logger.error(f"Capture process did not exit after SIGKILL (pid={getattr(proc, 'pid', None)})")

    def _spawn(self) -> None:
        """Launch the capture process and its reader threads. Caller holds the lock."""
        if self._audio_system is None:
            raise NoAudioSystemError("Audio system has not been detected")
        args = build_capture_command(
            self._audio_system,
            self._audio_format.sample_rate,
            self._audio_format.channels,
            self._device,
        )
        logger.debug(f"Starting audio capture process: {' '.join(args)}")
        try:
            proc = self._spawner(args)
        except OSError as e:
            raise NoAudioSystemError(f"Failed to launch {args[0]}: {e}") from e

        self._generation += 1
        self._process = proc
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(proc, self._generation),
            name="AudioCaptureReader",
            daemon=True,
        )
        self._reader.start()
        if getattr(proc, "stderr", None) is not None:
            threading.Thread(
                target=self._log_stderr,
                args=(proc,),
                name="AudioCaptureStderr",
                daemon=True,
            ).start()

    def _log_stderr(self, proc: Any) -> None:
        try:
            for line in iter(proc.stderr.readline, b""):
                msg = line.decode("utf-8", errors="replace").strip()
                if msg:
                    logger.warning(f"Audio capture stderr: {msg}")
        except (OSError, ValueError):
            pass

    def _read_loop(self, proc: Any, generation: int) -> None:
        carry = b""
        got_audio = False
        try:
            while generation == self._generation:
                data = proc.stdout.read(self._read_size)
                if not data:
                    break
                if generation != self._generation:
                    return

                data = carry + data
                if len(data) % 2:
                    carry, data = data[-1:], data[:-1]
                else:
                    carry = b""
                if not data:
                    continue

                if not got_audio:
                    got_audio = True
                    with self._lock:
                        if self._restart_count:
                            logger.info(f"Audio capture recovered after {self._restart_count} restart(s)")
                        self._restart_count = 0
                self._process_audio_data(data)
        except (OSError, ValueError) as e:
            logger.error(f"Audio capture read error: {e}")

        if generation != self._generation or not self._capturing:
            return

        code = proc.poll()
        if code is None:
            try:
                code = proc.wait(timeout=self._grace_period_s)
            except subprocess.TimeoutExpired:
                proc.kill()
        logger.warning(f"Audio capture process exited unexpectedly (code={code}, restart_count={self._restart_count})")
        self._handle_process_exit()

    def _process_audio_data(self, data: bytes) -> None:
        try:
            samples = int16_to_float32(data)
        except (TypeError, ValueError) as e:
            logger.error(f"Error processing audio data: {e}")
            return

        self._buffer.append(samples)
        if not self._capturing:
            return

        frame = AudioFrame(
            pcm=samples,
            sample_rate=self._audio_format.sample_rate,
            timestamp_s=time.time(),
        )
        try:
            self._frames_queue.put_nowait(frame)
        except queue.Full:
            logger.warning("Frames queue is full, dropping audio frame")

    def _handle_process_exit(self) -> None:
        while True:
            with self._lock:
                if not self._capturing:
                    return
                self._restart_count += 1
                attempt = self._restart_count
                if self._backoff.exhausted(attempt):
                    self._fail(CaptureExhaustedError(
                        f"Audio capture failed after {self._backoff.max_attempts} restart attempts"
                    ))
                    return
                delay = self._backoff.delay(attempt)
                self._state = ProcessState.BACKOFF
                generation = self._generation

            logger.info(f"Restarting audio capture in {delay:.1f}s (attempt {attempt}/{self._backoff.max_attempts})")
            if self._stop_event.wait(delay):
                return

            with self._lock:
                if not self._capturing or generation != self._generation:
                    return
                self._state = ProcessState.STARTING
                old, self._process = self._process, None
                if old is not None and old.poll() is None:
                    old.kill()
                try:
                    # The host may have switched audio servers since the last start.
                    self._audio_system = detect_audio_system(self._runner)
                    self._spawn()
                except Exception as e:
                    logger.error(f"Failed to restart audio capture: {e}")
                    self.last_error = e
                    continue
                self._state = ProcessState.RUNNING
                logger.info("Audio capture restarted successfully")
                return

    def _fail(self, error: CaptureExhaustedError) -> None:
        """Give up on capturing. Caller holds the lock."""
        logger.error(f"Maximum restart attempts reached, stopping audio capture: {error}")
        self._capturing = False
        self._generation += 1
        self._process = None
        self._state = ProcessState.FAILED
        self.last_error = error
        if self._events_queue is not None:
            self._events_queue.put(CaptureFailed(error=error))

    def list_devices(self) -> List[Device]:
        try:
            if self._audio_system is None:
                self._audio_system = detect_audio_system(self._runner)
            return list_sources(self._audio_system, self._runner)
        except (CommandError, NoAudioSystemError) as e:
            logger.error(f"Failed to list audio devices: {e}")
            return []

    def get_buffered_audio(self, duration_s: float) -> np.ndarray:
        return self._buffer.snapshot(duration_s)

    def get_status(self) -> Dict[str, Any]:
        resolved = None
        if self._device == "default" and self._audio_system is not None:
            resolved = resolve_default_device(self._audio_system, self._runner)

        buffered = len(self._buffer)
        proc = self._process
        return {
            "is_capturing": self._capturing,
            "state": self._state.value,
            "audio_system": self._audio_system.value if self._audio_system else None,
            "configured_device": self._device,
            "actual_device": "@DEFAULT_SOURCE@" if self._device == "default" else self._device,
            "resolved_device": resolved,
            "buffer_length": buffered,
            "buffer_duration_s": buffered / self._audio_format.sample_rate,
            "restart_count": self._restart_count,
            "process_id": getattr(proc, "pid", None) if proc is not None else None,
            "last_error": str(self.last_error) if self.last_error else None,
        }
