"""Session orchestration: capture -> VAD -> transcription -> typing."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..audio.capture import AudioCapture
from ..audio.types import AudioFormat, AudioFrame, AudioSegment, Device, SegmenterConfig
from ..audio.vad import VoiceActivityDetector
from ..config.settings import TranscribeConfig
from ..errors import InvalidSessionStateError
from ..output.typer import TextTyper
from ..transcription.errors import TranscriptionError
from ..transcription.manager import TranscriptionManager
from .events import CaptureFailed, ControlEvent, SilenceTimeout, SpeechSegmentReady, SpeechStarted, TranscriptionCompleted
from .runtime import RuntimeContext
from .shutdown import GracefulShutdown, StopSignal
from .worker import QueueWorker

logger = logging.getLogger("Orchestrator")


class SessionState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class SessionMetrics:
    segments_processed: int = 0
    transcription_time_ms: float = 0.0
    error_count: int = 0
    segments_dropped: int = 0
    sessions_started: int = 0
    last_error: Optional[str] = None
    last_transcript: Optional[str] = None


def segmenter_config_from(config: TranscribeConfig) -> SegmenterConfig:
    return SegmenterConfig(
        vad_threshold=config.audio.vad_threshold,
        min_chunk_ms=config.audio.min_chunk_duration,
        max_chunk_ms=config.audio.max_chunk_duration,
        silence_timeout_ms=config.audio.silence_timeout,
    )


class SegmenterWorker(QueueWorker[AudioFrame]):
    """Feeds captured frames through the VAD while a session is running."""

    def __init__(
        self,
        *,
        stop_signal: StopSignal,
        runtime: RuntimeContext,
        vad: VoiceActivityDetector,
        is_active: Callable[[], bool],
    ):
        super().__init__(name="SegmenterThread", stop_signal=stop_signal, input_queue=runtime.frames_queue)
        self._runtime = runtime
        self._vad = vad
        self._is_active = is_active
        self._vad_lock = threading.Lock()

    @property
    def vad(self) -> VoiceActivityDetector:
        return self._vad

    def reset(self) -> None:
        with self._vad_lock:
            self._vad.reset()

    def handle(self, frame: AudioFrame) -> None:
        if not self._is_active():
            return

        with self._vad_lock:
            events = self._vad.process(frame.pcm)

        for event in events:
            if isinstance(event, SpeechSegmentReady):
                # The session may have stopped while this frame was being processed.
                if not self._is_active():
                    logger.info(f"Session stopped, discarding {event.segment.duration_ms:.0f} ms segment")
                    continue
                self._runtime.segments_queue.put(event.segment)
            elif isinstance(event, SilenceTimeout):
                self._runtime.events_queue.put(event)
            elif isinstance(event, SpeechStarted):
                logger.debug(f"Speech started at {event.timestamp_s:.3f}")


class TranscriptionWorker(QueueWorker[AudioSegment]):
    """Transcribes segments strictly in emission order and hands text to the typer."""

    def __init__(
        self,
        *,
        stop_signal: StopSignal,
        runtime: RuntimeContext,
        manager: TranscriptionManager,
        typer: TextTyper,
        on_result: Callable[[TranscriptionCompleted], None],
        on_error: Callable[[Exception], None],
    ):
        super().__init__(name="TranscriptionThread", stop_signal=stop_signal, input_queue=runtime.segments_queue)
        self._manager = manager
        self._typer = typer
        self._on_result = on_result
        self._on_error = on_error

    def handle(self, segment: AudioSegment) -> None:
        try:
            result = self._manager.transcribe(segment)
        except TranscriptionError as e:
            self._on_error(e)
            return
        except Exception as e:
            logger.error(f"Unexpected transcription failure: {e}", exc_info=True)
            self._on_error(e)
            return

        if result.text:
            self._typer.type_text(result.text)
        self._on_result(TranscriptionCompleted(result=result))


class ControlWorker(QueueWorker[ControlEvent]):
    """Turns control events (idle timeout, dead capture) into session stops."""

    def __init__(self, *, stop_signal: StopSignal, runtime: RuntimeContext, orchestrator: "Orchestrator"):
        super().__init__(name="ControlThread", stop_signal=stop_signal, input_queue=runtime.events_queue)
        self._orchestrator = orchestrator

    def handle(self, event: ControlEvent) -> None:
        if isinstance(event, SilenceTimeout):
            logger.info(f"No speech for {event.silent_for_s:.1f}s, stopping session")
            self._orchestrator.stop_session()
        elif isinstance(event, CaptureFailed):
            self._orchestrator.record_error(event.error)
            logger.error(f"Audio capture failed, stopping session: {event.error}")
            self._orchestrator.stop_session()


class Orchestrator:
    """
    Main orchestrator for the transcription service.

    Manages:
    - Audio capture (supervised recorder process)
    - Segmenter thread (VAD over captured frames)
    - Transcription thread (one segment at a time, FIFO)
    - Typer thread (keystroke injection, FIFO)
    - Control thread (silence timeout / capture failure -> session stop)
    """

    def __init__(
        self,
        config: TranscribeConfig,
        capture: Optional[AudioCapture] = None,
        vad: Optional[VoiceActivityDetector] = None,
        manager: Optional[TranscriptionManager] = None,
        typer: Optional[TextTyper] = None,
    ):
        self._config = config
        self.shutdown_signal = GracefulShutdown()
        self.runtime = RuntimeContext.create()

        self.capture = capture or AudioCapture(
            AudioFormat(sample_rate=config.audio.sample_rate, channels=config.audio.channels),
            frames_queue=self.runtime.frames_queue,
            events_queue=self.runtime.events_queue,
            device=config.audio.device,
        )
        self.manager = manager or TranscriptionManager(config.transcription)
        self.typer = typer or TextTyper(config.output, stop_signal=self.shutdown_signal)

        self.segmenter = SegmenterWorker(
            stop_signal=self.shutdown_signal,
            runtime=self.runtime,
            vad=vad or VoiceActivityDetector(segmenter_config_from(config), sample_rate=config.audio.sample_rate),
            is_active=self.is_running,
        )
        self.transcriber = TranscriptionWorker(
            stop_signal=self.shutdown_signal,
            runtime=self.runtime,
            manager=self.manager,
            typer=self.typer,
            on_result=self._record_result,
            on_error=self._record_failed_segment,
        )
        self.control = ControlWorker(stop_signal=self.shutdown_signal, runtime=self.runtime, orchestrator=self)

        self._state = SessionState.STOPPED
        self._state_lock = threading.RLock()
        self._metrics = SessionMetrics()
        self._metrics_lock = threading.Lock()
        self._session_started_at: Optional[float] = None
        self._started_at = time.time()
        self._running = False

    @property
    def state(self) -> SessionState:
        return self._state

    def is_running(self) -> bool:
        return self._state is SessionState.RUNNING

    def start(self) -> None:
        """Start all background threads."""
        if self._running:
            return
        self._running = True
        self.manager.start()
        self.segmenter.start()
        self.transcriber.start()
        self.typer.start()
        self.control.start()
        logger.info("Orchestrator started")

    def shutdown(self) -> None:
        """Stop the session, signal threads to stop and wait for them to join."""
        self.stop_session()
        self.typer.stop()
        self.shutdown_signal.stop()
        self.manager.stop()
        for worker in (self.segmenter, self.transcriber, self.typer, self.control):
            if worker.is_alive() and worker is not threading.current_thread():
                worker.join(timeout=5)
        self._running = False
        logger.info("Orchestrator shut down")

    def start_session(self) -> None:
        with self._state_lock:
            if self._state is not SessionState.STOPPED:
                raise InvalidSessionStateError(f"Cannot start a session while {self._state.value}")
            self._state = SessionState.STARTING

        logger.info("Starting transcription session")
        try:
            self.segmenter.reset()
            if not self.capture.is_capturing:
                self.capture.start()
        except Exception as e:
            with self._state_lock:
                self._state = SessionState.STOPPED
            self.record_error(e)
            logger.error(f"Failed to start session: {e}")
            raise

        with self._state_lock:
            if self._state is SessionState.STARTING:
                self._state = SessionState.RUNNING
                self._session_started_at = time.time()
                with self._metrics_lock:
                    self._metrics.sessions_started += 1
        logger.info("Transcription session running")

    def stop_session(self) -> bool:
        """Stop capturing and segmenting. Returns False when there was nothing to stop."""
        with self._state_lock:
            if self._state is SessionState.STOPPED:
                return False
            self._state = SessionState.STOPPING

        logger.info("Stopping transcription session")
        try:
            self.capture.stop()
        except Exception as e:
            self.record_error(e)
            logger.error(f"Error stopping audio capture: {e}")
        finally:
            # Speech still open in the VAD is discarded; segments already queued are still transcribed.
            self.segmenter.reset()
            with self._state_lock:
                self._state = SessionState.STOPPED
                self._session_started_at = None
        logger.info("Transcription session stopped")
        return True

    def record_error(self, error: Exception) -> None:
        with self._metrics_lock:
            self._metrics.error_count += 1
            self._metrics.last_error = str(error)

    def _record_failed_segment(self, error: Exception) -> None:
        with self._metrics_lock:
            self._metrics.error_count += 1
            self._metrics.segments_dropped += 1
            self._metrics.last_error = str(error)

    def _record_result(self, completed: TranscriptionCompleted) -> None:
        result = completed.result
        with self._metrics_lock:
            self._metrics.segments_processed += 1
            self._metrics.transcription_time_ms += result.duration_ms
            if result.text:
                self._metrics.last_transcript = result.text
            else:
                self._metrics.segments_dropped += 1
        fallback = " (fallback)" if result.fallback_used else ""
        logger.info(f"Transcribed segment via {result.service_used.value}{fallback} in {result.duration_ms:.0f} ms")

    def get_metrics(self) -> Dict[str, Any]:
        with self._metrics_lock:
            return asdict(self._metrics)

    def list_devices(self) -> List[Device]:
        return self.capture.list_devices()

    def start_audio(self) -> None:
        self.capture.start()

    def stop_audio(self) -> None:
        self.capture.stop()

    def get_health(self) -> Dict[str, Any]:
        components = {
            "segmenter": self.segmenter.is_alive(),
            "transcriber": self.transcriber.is_alive(),
            "typer": self.typer.is_alive(),
            "control": self.control.is_alive(),
        }
        audio = self.capture.get_status()
        healthy = all(components.values()) and audio.get("state") != "failed"

        return {
            "status": "healthy" if healthy else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime_s": time.time() - self._started_at,
            "session": {
                "state": self._state.value,
                "started_at": self._session_started_at,
            },
            "components": components,
            "audio": audio,
            "transcription": self.manager.get_status(),
            "output": {
                "pending": self.typer.pending(),
                "texts_typed": self.typer.texts_typed,
                "injection_errors": self.typer.injection_errors,
            },
            "metrics": self.get_metrics(),
            "config": {
                "audioDevice": self._config.audio.device,
                "transcriptionProvider": self._config.transcription.provider.value,
                "serverPort": self._config.server.port,
                "debugEnabled": self._config.output.debug,
            },
            "environment": {
                "waylandDisplay": os.environ.get("WAYLAND_DISPLAY"),
                "pulseServer": os.environ.get("PULSE_SERVER"),
            },
        }
