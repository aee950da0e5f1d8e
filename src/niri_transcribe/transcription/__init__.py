"""Speech-to-text backends and the manager that fails over between them."""

from .types import Backend, TranscriptionResult

__all__ = ["Backend", "TranscriptionResult"]
