"""Offline transcription by running the whisper.cpp command line tool once per segment."""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, List, Optional

from ..audio.format import float32_to_wav, resample
from ..audio.types import AudioSegment
from ..config.settings import LocalTranscriptionConfig
from .errors import LocalEngineError
from .text import clean_transcript
from .types import Backend, TranscriptionResult

logger = logging.getLogger("LocalASR")

ENGINE_SAMPLE_RATE = 16000


class LocalBackend:
    """
    Local transcription backend.

    Every call writes the segment to a scratch directory, runs the recognizer with a
    hard timeout and reads the transcript it leaves next to the input. The scratch
    directory is removed whether or not the run succeeded.
    """

    name = Backend.LOCAL

    def __init__(
        self,
        cfg: LocalTranscriptionConfig,
        run: Callable[..., Any] = subprocess.run,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self._cfg = cfg
        self._run = run
        self._which = which

    @property
    def model_path(self) -> Path:
        return self._cfg.resolved_model_path()

    def build_command(self, input_path: Path, output_base: Path) -> List[str]:
        return [
            self._cfg.binary,
            "-m", str(self.model_path),
            "-f", str(input_path),
            "-t", str(self._cfg.threads),
            "-l", self._cfg.language,
            "-nt",
            "-otxt",
            "-of", str(output_base),
        ]

    def transcribe(self, segment: AudioSegment) -> TranscriptionResult:
        samples = segment.samples
        if segment.sample_rate != ENGINE_SAMPLE_RATE:
            samples = resample(samples, segment.sample_rate, ENGINE_SAMPLE_RATE)

        started = time.monotonic()
        with tempfile.TemporaryDirectory(prefix="niri-transcribe-") as tmp:
            input_path = Path(tmp) / "input.wav"
            output_base = Path(tmp) / "output"
            input_path.write_bytes(float32_to_wav(samples, ENGINE_SAMPLE_RATE))

            cmd = self.build_command(input_path, output_base)
            logger.debug(f"Running local recognizer: {' '.join(cmd)}")
            try:
                # subprocess.run kills the child before raising TimeoutExpired
                proc = self._run(cmd, capture_output=True, text=True, timeout=self._cfg.timeout_s)
            except subprocess.TimeoutExpired as e:
                raise LocalEngineError(f"Local transcription timed out after {self._cfg.timeout_s:.0f}s") from e
            except OSError as e:
                raise LocalEngineError(f"Failed to run {self._cfg.binary}: {e}") from e

            if proc.returncode != 0:
                detail = (proc.stderr or "").strip().splitlines()
                raise LocalEngineError(
                    f"{self._cfg.binary} exited with code {proc.returncode}"
                    + (f": {detail[-1]}" if detail else "")
                )

            output_path = output_base.with_suffix(".txt")
            if not output_path.exists():
                raise LocalEngineError(f"{self._cfg.binary} produced no transcript")
            raw = output_path.read_text(encoding="utf-8", errors="replace")

        duration_ms = (time.monotonic() - started) * 1000
        text = clean_transcript(raw)
        logger.info(f"Local transcription finished in {duration_ms:.0f} ms: {text!r}")
        return TranscriptionResult(
            text=text,
            service_used=Backend.LOCAL,
            duration_ms=duration_ms,
            language=self._cfg.language,
        )

    def check_health(self) -> bool:
        if self._which(self._cfg.binary) is None:
            logger.warning(f"Local recognizer {self._cfg.binary} not found on PATH")
            return False
        if not self.model_path.is_file():
            logger.warning(f"Local model {self.model_path} not found")
            return False
        return True
