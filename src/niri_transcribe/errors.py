"""Exception hierarchy shared across the transcription service."""


class TranscribeError(Exception):
    """Base class for all service errors."""


class ConfigurationValidationError(TranscribeError):
    """Configuration could not be parsed or failed validation. Fatal at load time."""


class NoAudioSystemError(TranscribeError):
    """Neither PipeWire nor PulseAudio tooling is available on the host."""


class AlreadyCapturingError(TranscribeError):
    """Audio capture was started while a capture process is already running."""


class CaptureExhaustedError(TranscribeError):
    """The capture process kept dying and the restart budget is used up."""


class TextInjectionError(TranscribeError):
    """A character could not be injected into the focused window."""


class InvalidSessionStateError(TranscribeError):
    """A session operation was requested from a state that does not allow it."""
