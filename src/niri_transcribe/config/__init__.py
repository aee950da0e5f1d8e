from .settings import (
    AudioConfig,
    LocalTranscriptionConfig,
    OutputConfig,
    Provider,
    RemoteTranscriptionConfig,
    ServerConfig,
    TranscribeConfig,
    TranscriptionConfig,
    load_config,
    masked_config,
    setup_logging,
)

__all__ = [
    "AudioConfig",
    "LocalTranscriptionConfig",
    "OutputConfig",
    "Provider",
    "RemoteTranscriptionConfig",
    "ServerConfig",
    "TranscribeConfig",
    "TranscriptionConfig",
    "load_config",
    "masked_config",
    "setup_logging",
]
