"""Keystroke injection backends."""

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Any, Callable, List, Protocol

from ..errors import TextInjectionError

logger = logging.getLogger("Injector")


class KeyInjector(Protocol):
    def type_char(self, ch: str) -> None: ...

    def press_key(self, key: str) -> None: ...


class WtypeInjector:
    """Injects input through `wtype` (Wayland virtual keyboard protocol)."""

    def __init__(
        self,
        binary: str = "wtype",
        run: Callable[..., Any] = subprocess.run,
        timeout_s: float = 2.0,
    ):
        self._binary = binary
        self._run = run
        self._timeout_s = timeout_s

    def type_char(self, ch: str) -> None:
        self._invoke([self._binary, "--", ch], repr(ch))

    def press_key(self, key: str) -> None:
        self._invoke([self._binary, "-k", key], key)

    def _invoke(self, args: List[str], what: str) -> None:
        try:
            proc = self._run(args, capture_output=True, text=True, timeout=self._timeout_s)
        except subprocess.TimeoutExpired as e:
            raise TextInjectionError(f"{self._binary} timed out injecting {what}") from e
        except OSError as e:
            raise TextInjectionError(f"Failed to run {self._binary}: {e}") from e
        if proc.returncode != 0:
            raise TextInjectionError(
                f"{self._binary} failed injecting {what} (code {proc.returncode}): {(proc.stderr or '').strip()}"
            )

    def is_available(self) -> bool:
        return shutil.which(self._binary) is not None
