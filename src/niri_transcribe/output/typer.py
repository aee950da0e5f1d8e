"""Types recognized text into the focused window with a human-like cadence."""

from __future__ import annotations

import logging
import queue
import random
import re
import threading
import time
from typing import Callable, Optional, Tuple

from ..config.settings import OutputConfig
from ..core.shutdown import StopSignal
from ..core.worker import QueueWorker
from ..errors import TextInjectionError
from .injector import KeyInjector, WtypeInjector

logger = logging.getLogger("TextTyper")

PUNCTUATION = ".,!?;:"
TERMINAL_PUNCTUATION = ".!?"
SPECIAL_KEYS = {"\n": "Return", "\t": "Tab", "\b": "BackSpace"}
SPACE_DELAY_FACTOR = 1.5
JITTER = 0.2

# Whitespace runs other than newlines and tabs, which are typed as keys.
_WHITESPACE_RUN = re.compile(r"[^\S\n\t]+")


def normalize_text(text: str) -> str:
    """Collapse whitespace, trim, and make sure the text ends like a sentence."""
    t = _WHITESPACE_RUN.sub(" ", text).strip()
    if t and t[-1] not in TERMINAL_PUNCTUATION:
        t += "."
    return t


def keystroke_for(ch: str) -> Tuple[str, str]:
    """("key", keysym) for keys injected by name, ("char", ch) for literal typing."""
    if ch in SPECIAL_KEYS:
        return ("key", SPECIAL_KEYS[ch])
    if " " <= ch <= "~":
        return ("char", ch)
    return ("key", f"U{ord(ch):04X}")


class TextTyper(QueueWorker[str]):
    """
    FIFO typing worker.

    `type_text` only enqueues; this thread types one text at a time, so two texts can
    never interleave. An injection failure abandons the rest of that text and the
    worker moves on to the next one.
    """

    def __init__(
        self,
        cfg: OutputConfig,
        stop_signal: StopSignal,
        injector: Optional[KeyInjector] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        super().__init__(name="TextTyper", stop_signal=stop_signal, input_queue=queue.Queue())
        self._cfg = cfg
        self._injector = injector or WtypeInjector(binary=cfg.injector)
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._needs_separator = False
        self.texts_typed = 0
        self.injection_errors = 0

    def type_text(self, text: str) -> None:
        normalized = normalize_text(text)
        if not normalized:
            return
        self._input_queue.put(normalized)

    def stop(self) -> int:
        """Drop pending texts and block until the one being typed is finished."""
        dropped = self.drain()
        if dropped:
            logger.info(f"Discarded {dropped} pending text(s)")
        if self.is_alive():
            self._input_queue.join()
        self._needs_separator = False
        return dropped

    def pending(self) -> int:
        return self._input_queue.qsize()

    def char_delay_s(self, ch: str) -> float:
        if ch in PUNCTUATION:
            base = self._cfg.punctuation_delay
        elif ch == " ":
            base = self._cfg.type_delay * SPACE_DELAY_FACTOR
        else:
            base = self._cfg.type_delay
        return base * self._rng.uniform(1 - JITTER, 1 + JITTER) / 1000.0

    def handle(self, text: str) -> None:
        if self._needs_separator:
            text = " " + text
        try:
            for ch in text:
                kind, value = keystroke_for(ch)
                if kind == "key":
                    self._injector.press_key(value)
                else:
                    self._injector.type_char(value)
                delay = self.char_delay_s(ch)
                if delay > 0:
                    self._sleep(delay)
        except TextInjectionError as e:
            self.injection_errors += 1
            logger.error(f"Text injection failed, abandoning current text: {e}")
            return
        finally:
            self._needs_separator = True

        self.texts_typed += 1
        if self._cfg.debug:
            logger.debug(f"Typed: {text!r}")
