"""Errors raised by the transcription backends."""

from ..errors import TranscribeError


class TranscriptionError(TranscribeError):
    """A backend could not produce a transcript for a segment."""


class RetryableTransportError(TranscriptionError):
    """Network timeout, connection failure, throttling or a 5xx from the remote service."""


class NonRetryableError(TranscriptionError):
    """The remote service rejected the request (bad credentials, malformed audio, ...)."""


class LocalEngineError(TranscriptionError):
    """The local recognizer is missing, crashed, or ran past its time limit."""


class TranscriptionFailedError(TranscriptionError):
    """Every available backend failed for a segment."""
