"""Hosted speech-to-text through the OpenAI audio transcription API."""

from __future__ import annotations

import logging
import math
import queue
import threading
import time
from concurrent.futures import CancelledError, Future
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import openai
from openai import OpenAI

from ..audio.format import float32_to_wav
from ..audio.types import AudioSegment
from ..config.settings import RemoteTranscriptionConfig
from ..core.shutdown import GracefulShutdown, StopSignal
from ..core.worker import QueueWorker
from .errors import NonRetryableError, RetryableTransportError, TranscriptionError
from .text import clean_transcript
from .types import Backend, TranscriptionResult

logger = logging.getLogger("RemoteASR")


@dataclass
class _Request:
    call: Callable[[], Any]
    future: "Future[Any]" = field(default_factory=Future)


class RequestQueue(QueueWorker[_Request]):
    """
    Dispatches API calls one at a time, in submission order, never closer together
    than `min_interval_s`.
    """

    def __init__(
        self,
        *,
        stop_signal: StopSignal,
        min_interval_s: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(name="RemoteRequestQueue", stop_signal=stop_signal, input_queue=queue.Queue())
        self._min_interval_s = min_interval_s
        self._clock = clock
        self._sleep = sleep
        self._last_dispatch: Optional[float] = None

    def submit(self, call: Callable[[], Any]) -> "Future[Any]":
        request = _Request(call=call)
        self._input_queue.put(request)
        return request.future

    def handle(self, item: _Request) -> None:
        if not item.future.set_running_or_notify_cancel():
            return

        if self._last_dispatch is not None:
            wait_s = self._min_interval_s - (self._clock() - self._last_dispatch)
            if wait_s > 0:
                self._sleep(wait_s)
        self._last_dispatch = self._clock()

        try:
            item.future.set_result(item.call())
        except Exception as e:
            item.future.set_exception(e)

    def cancel_pending(self) -> int:
        cancelled = 0
        while True:
            try:
                item = self._input_queue.get_nowait()
            except queue.Empty:
                return cancelled
            item.future.cancel()
            self._input_queue.task_done()
            cancelled += 1


def _confidence(response: Any) -> Optional[float]:
    """Mean per-segment log probability from a verbose_json response, mapped to [0, 1]."""
    segments = getattr(response, "segments", None) or []
    logprobs = [s.avg_logprob for s in segments if getattr(s, "avg_logprob", None) is not None]
    if not logprobs:
        return None
    return min(1.0, max(0.0, math.exp(sum(logprobs) / len(logprobs))))


class RemoteBackend:
    """
    Remote transcription backend.

    Segments are sent as WAV through `client.audio.transcriptions.create`. Transport
    failures (timeouts, connection errors, 429, 5xx) are retried with exponential
    backoff; any other API error fails immediately so the manager can fall back.
    """

    name = Backend.REMOTE

    def __init__(
        self,
        cfg: RemoteTranscriptionConfig,
        client: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
        backoff_base_s: float = 1.0,
    ):
        self._cfg = cfg
        if client is None and cfg.has_credentials:
            client = OpenAI(
                api_key=cfg.api_key.get_secret_value(),
                base_url=cfg.base_url,
                timeout=cfg.timeout_s,
                max_retries=0,
            )
        self._client = client
        self._sleep = sleep
        self._backoff_base_s = backoff_base_s

        self._shutdown = GracefulShutdown()
        self._requests = RequestQueue(
            stop_signal=self._shutdown,
            min_interval_s=cfg.min_request_interval_ms / 1000.0,
            sleep=sleep,
        )
        self._start_lock = threading.Lock()
        self._closed = False

    @property
    def configured(self) -> bool:
        return self._client is not None

    def start(self) -> None:
        with self._start_lock:
            if self._closed:
                raise TranscriptionError("Remote backend has been stopped")
            if not self._requests.is_alive():
                self._requests.start()

    def stop(self) -> None:
        with self._start_lock:
            self._closed = True
        self._shutdown.stop()
        if self._requests.is_alive():
            self._requests.join(timeout=2)
        cancelled = self._requests.cancel_pending()
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending remote request(s)")

    def transcribe(self, segment: AudioSegment) -> TranscriptionResult:
        if self._client is None:
            raise NonRetryableError("Remote transcription is not configured (OPENAI_API_KEY is missing)")
        self.start()

        wav = float32_to_wav(segment.samples, segment.sample_rate)
        started = time.monotonic()
        attempt = 0
        while True:
            try:
                response = self._requests.submit(lambda: self._request(wav)).result()
                break
            except CancelledError as e:
                raise NonRetryableError("Remote request was cancelled during shutdown") from e
            except RetryableTransportError as e:
                if attempt >= self._cfg.max_retries:
                    logger.error(f"Remote transcription failed after {attempt + 1} attempts: {e}")
                    raise
                delay = self._backoff_base_s * (2 ** attempt)
                attempt += 1
                logger.warning(
                    f"Remote transcription attempt {attempt} failed ({e}), retrying in {delay:.1f}s"
                )
                self._sleep(delay)

        duration_ms = (time.monotonic() - started) * 1000
        text = clean_transcript(getattr(response, "text", "") or "")
        logger.info(f"Remote transcription finished in {duration_ms:.0f} ms: {text!r}")
        return TranscriptionResult(
            text=text,
            service_used=Backend.REMOTE,
            duration_ms=duration_ms,
            confidence=_confidence(response),
            language=getattr(response, "language", None) or self._cfg.language,
        )

    def _request(self, wav: bytes) -> Any:
        try:
            return self._client.audio.transcriptions.create(
                model=self._cfg.model,
                file=("audio.wav", wav, "audio/wav"),
                language=self._cfg.language,
                temperature=self._cfg.temperature,
                response_format="verbose_json",
            )
        except (openai.APITimeoutError, openai.APIConnectionError) as e:
            raise RetryableTransportError(f"Remote service unreachable: {e}") from e
        except openai.RateLimitError as e:
            raise RetryableTransportError("Remote service rate limited the request (429)") from e
        except openai.APIStatusError as e:
            if e.status_code >= 500:
                raise RetryableTransportError(f"Remote service error ({e.status_code})") from e
            raise NonRetryableError(f"Remote service rejected the request ({e.status_code}): {e.message}") from e
        except openai.OpenAIError as e:
            raise NonRetryableError(f"Remote service returned an unusable response: {e}") from e

    def check_health(self) -> bool:
        if self._client is None:
            return False
        try:
            self._client.models.retrieve(self._cfg.model)
            return True
        except openai.OpenAIError as e:
            logger.warning(f"Remote transcription health check failed: {e}")
            return False
