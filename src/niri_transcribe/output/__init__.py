"""Keystroke output into the focused window."""

from .injector import KeyInjector, WtypeInjector
from .typer import TextTyper, normalize_text

__all__ = ["KeyInjector", "TextTyper", "WtypeInjector", "normalize_text"]
