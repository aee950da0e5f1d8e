"""Real-time speech-to-text dictation service for Wayland desktops."""

__version__ = "0.1.0"
