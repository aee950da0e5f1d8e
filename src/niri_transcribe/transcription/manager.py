"""Transcription manager: backend selection, failover and health tracking."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional

from ..audio.types import AudioSegment
from ..config.settings import Provider, TranscriptionConfig
from ..core.shutdown import GracefulShutdown
from .errors import TranscriptionError, TranscriptionFailedError
from .local import LocalBackend
from .policy import select_backend
from .remote import RemoteBackend
from .types import Backend, TranscriptionResult

logger = logging.getLogger("TranscriptionManager")


class HealthProbe(threading.Thread):
    """Periodically re-checks both backends until stopped."""

    def __init__(self, manager: "TranscriptionManager", shutdown: GracefulShutdown, interval_s: float):
        super().__init__(name="TranscriptionHealthProbe", daemon=True)
        self._manager = manager
        self._shutdown = shutdown
        self._interval_s = interval_s

    def run(self) -> None:
        while not self._shutdown.wait(self._interval_s):
            try:
                self._manager.check_health()
            except Exception as e:
                logger.error(f"Health probe failed: {e}", exc_info=True)


class TranscriptionManager:
    """
    Transcribes segments with the primary backend and falls back to the local engine
    when a remote attempt fails.

    Provider `remote` and `local` pin the primary backend. In `auto` mode the remote
    backend is preferred when credentials exist, and a background probe moves the
    primary between backends as their health changes.
    """

    def __init__(
        self,
        cfg: TranscriptionConfig,
        remote: Optional[RemoteBackend] = None,
        local: Optional[LocalBackend] = None,
    ):
        self._cfg = cfg
        self._remote = remote or RemoteBackend(cfg.remote)
        self._local = local or LocalBackend(cfg.local)
        self._backends = {Backend.REMOTE: self._remote, Backend.LOCAL: self._local}

        if cfg.provider is Provider.LOCAL:
            self._preferred = Backend.LOCAL
        elif cfg.provider is Provider.REMOTE:
            self._preferred = Backend.REMOTE
        else:
            self._preferred = Backend.REMOTE if self._remote.configured else Backend.LOCAL

        self._lock = threading.Lock()
        self._current = self._preferred
        self._healthy: Dict[Backend, Optional[bool]] = {Backend.REMOTE: None, Backend.LOCAL: None}
        self._last_check: Optional[float] = None
        self._shutdown = GracefulShutdown()
        self._probe: Optional[HealthProbe] = None

    @property
    def provider(self) -> Provider:
        return self._cfg.provider

    @property
    def current_backend(self) -> Backend:
        with self._lock:
            return self._current

    def start(self) -> None:
        if self._remote.configured:
            self._remote.start()
        if self._cfg.provider is Provider.AUTO and self._probe is None:
            self._probe = HealthProbe(self, self._shutdown, self._cfg.health_check_interval_s)
            self._probe.start()
        logger.info(f"Transcription manager started (provider={self._cfg.provider.value}, primary={self._current.value})")

    def stop(self) -> None:
        self._shutdown.stop()
        if self._probe is not None:
            self._probe.join(timeout=2)
            self._probe = None
        self._remote.stop()

    def check_health(self) -> Dict[Backend, bool]:
        """Probe both backends; in auto mode, update the primary from the results."""
        remote_ok = self._remote.check_health()
        local_ok = self._local.check_health()

        with self._lock:
            self._healthy = {Backend.REMOTE: remote_ok, Backend.LOCAL: local_ok}
            self._last_check = time.time()
            if self._cfg.provider is Provider.AUTO:
                selected = select_backend(self._current, remote_ok, local_ok, self._preferred)
                if selected is not self._current:
                    logger.warning(f"Switching primary transcription backend: {self._current.value} -> {selected.value}")
                    self._current = selected
        return {Backend.REMOTE: remote_ok, Backend.LOCAL: local_ok}

    def _plan(self) -> List[Backend]:
        with self._lock:
            primary = self._current
        # Only a remote primary has somewhere to fall back to.
        if primary is Backend.REMOTE:
            return [Backend.REMOTE, Backend.LOCAL]
        return [Backend.LOCAL]

    def transcribe(self, segment: AudioSegment) -> TranscriptionResult:
        plan = self._plan()
        errors: List[str] = []
        for index, backend in enumerate(plan):
            try:
                result = self._backends[backend].transcribe(segment)
            except TranscriptionError as e:
                errors.append(f"{backend.value}: {e}")
                if index + 1 < len(plan):
                    logger.warning(f"{backend.value} transcription failed ({e}), falling back to {plan[index + 1].value}")
                continue
            if index > 0:
                result = replace(result, fallback_used=True)
            return result

        message = "All transcription backends failed: " + "; ".join(errors)
        logger.error(message)
        raise TranscriptionFailedError(message)

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "provider": self._cfg.provider.value,
                "preferred": self._preferred.value,
                "current": self._current.value,
                "remote_configured": self._remote.configured,
                "remote_healthy": self._healthy[Backend.REMOTE],
                "local_healthy": self._healthy[Backend.LOCAL],
                "local_model": str(self._local.model_path),
                "last_health_check": self._last_check,
            }
