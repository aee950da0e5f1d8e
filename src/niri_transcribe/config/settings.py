import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..errors import ConfigurationValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.json")
MASK = "***MASKED***"


class _ConfigModel(BaseModel):
    # Config files use camelCase keys; Python code uses snake_case attributes.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AudioConfig(_ConfigModel):
    sample_rate: int = Field(default=16000, gt=0, description="Capture sample rate in Hz")
    channels: int = Field(default=1, ge=1, le=2, description="Capture channel count")
    device: str = Field(default="default", min_length=1, description="Source name, or 'default' for the system default")
    vad_threshold: float = Field(default=0.01, ge=0.0, le=1.0, description="Minimum RMS energy treated as speech")
    silence_timeout: int = Field(default=10000, ge=0, description="Idle session auto-stop after this many ms without speech (0 disables)")
    min_chunk_duration: int = Field(default=1000, gt=0, description="Segments shorter than this (ms) are dropped")
    max_chunk_duration: int = Field(default=3000, gt=0, description="Segments are force-cut at this length (ms)")

    @model_validator(mode="after")
    def _check_chunk_bounds(self) -> "AudioConfig":
        if self.min_chunk_duration > self.max_chunk_duration:
            raise ValueError("minChunkDuration must not exceed maxChunkDuration")
        return self


class Provider(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"
    AUTO = "auto"


class RemoteTranscriptionConfig(_ConfigModel):
    api_key: Optional[SecretStr] = Field(default=None, description="Hosted speech API key (from OPENAI_API_KEY)")
    base_url: Optional[str] = Field(default=None, description="Override the API base URL")
    model: str = Field(default="whisper-1", description="Hosted transcription model")
    temperature: float = Field(default=0.0, ge=0.0, le=1.0, description="Sampling temperature")
    language: str = Field(default="en", description="ISO-639-1 language hint")
    timeout_s: float = Field(default=30.0, gt=0, description="Per-request network timeout")
    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt on transport errors")
    min_request_interval_ms: int = Field(default=100, ge=0, description="Minimum spacing between dispatched requests")

    @property
    def has_credentials(self) -> bool:
        return self.api_key is not None and bool(self.api_key.get_secret_value().strip())


class LocalTranscriptionConfig(_ConfigModel):
    binary: str = Field(default="whisper-cli", description="whisper.cpp command line binary")
    models_dir: str = Field(default="/app/models", description="Directory holding ggml-<size>.bin models")
    model_path: Optional[str] = Field(default=None, description="Explicit model file, overrides modelSize")
    model_size: Literal["tiny", "base", "small"] = Field(default="base", description="Model tier: smaller is faster, less accurate")
    threads: int = Field(default=4, ge=1, description="Worker threads for the recognizer")
    language: str = Field(default="en", description="Language passed to the recognizer")
    timeout_s: float = Field(default=30.0, gt=0, description="Hard kill after this many seconds")

    def resolved_model_path(self) -> Path:
        if self.model_path:
            return Path(self.model_path)
        return Path(self.models_dir) / f"ggml-{self.model_size}.bin"


class TranscriptionConfig(_ConfigModel):
    provider: Provider = Field(default=Provider.AUTO, description="remote, local, or auto")
    remote: RemoteTranscriptionConfig = Field(
        default_factory=RemoteTranscriptionConfig,
        validation_alias=AliasChoices("remote", "openai"),
    )
    local: LocalTranscriptionConfig = Field(default_factory=LocalTranscriptionConfig)
    health_check_interval_s: float = Field(default=60.0, gt=0, description="Backend health probe period in auto mode")

    @field_validator("provider", mode="before")
    @classmethod
    def _provider_alias(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip().lower() == "openai":
            return Provider.REMOTE
        return value


class OutputConfig(_ConfigModel):
    type_delay: int = Field(default=10, ge=0, description="ms between characters")
    punctuation_delay: int = Field(default=100, ge=0, description="ms after punctuation")
    injector: str = Field(default="wtype", description="Keystroke injection binary")
    debug: bool = Field(default=False, description="Verbose logging")


class ServerConfig(_ConfigModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000, gt=0, lt=65536)


class TranscribeConfig(_ConfigModel):
    audio: AudioConfig = Field(default_factory=AudioConfig)
    transcription: TranscriptionConfig = Field(default_factory=TranscriptionConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {value!r}")
        return level


# env var -> (path into the config dict, with camelCase keys)
_ENV_OVERRIDES = {
    "OPENAI_API_KEY": ("transcription", "remote", "apiKey"),
    "AUDIO_DEVICE": ("audio", "device"),
    "VAD_THRESHOLD": ("audio", "vadThreshold"),
    "SILENCE_TIMEOUT": ("audio", "silenceTimeout"),
    "TRANSCRIPTION_PROVIDER": ("transcription", "provider"),
    "LOCAL_MODEL_SIZE": ("transcription", "local", "modelSize"),
    "HOST": ("server", "host"),
    "PORT": ("server", "port"),
}


def _set_path(data: Dict[str, Any], path: tuple, value: Any) -> None:
    node = data
    for key in path[:-1]:
        if key == "remote" and "openai" in node and "remote" not in node:
            key = "openai"
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    leaf = path[-1]
    snake = "".join("_" + c.lower() if c.isupper() else c for c in leaf)
    node.pop(snake, None)
    node[leaf] = value


def apply_environment_overrides(data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Overlay recognised environment variables on a raw config dict (mutates and returns it)."""
    for env_name, path in _ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            _set_path(data, path, value)

    if environ.get("DEBUG", "").lower() in ("true", "1", "yes"):
        _set_path(data, ("output", "debug"), True)
    if environ.get("LOG_LEVEL"):
        data.pop("log_level", None)
        data["logLevel"] = environ["LOG_LEVEL"]
    return data


def load_config(config_path: Optional[Path] = None, env_path: Optional[Path] = None) -> TranscribeConfig:
    if env_path is None:
        env_path = Path(".env")

    if env_path.exists():
        load_dotenv(env_path)
        logger.info(f"Loaded environment variables from {env_path}")

    if config_path is None:
        config_path = Path(os.getenv("TRANSCRIBE_CONFIG", str(DEFAULT_CONFIG_PATH)))

    data: Dict[str, Any] = {}
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationValidationError(f"Failed to parse configuration file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationValidationError(f"Configuration file {config_path} must contain a JSON object")
    else:
        logger.warning(f"Config file {config_path} not found, using defaults and environment variables only")

    data = apply_environment_overrides(data, os.environ)

    try:
        config = TranscribeConfig.model_validate(data)
    except ValidationError as e:
        logger.error(f"Failed to load configuration: {e}")
        raise ConfigurationValidationError(f"Configuration validation failed: {e}") from e

    if config.transcription.provider is Provider.REMOTE and not config.transcription.remote.has_credentials:
        logger.warning("Provider is 'remote' but OPENAI_API_KEY is not set; every request will fall back to local.")

    logger.info(f"Configuration loaded: {json.dumps(masked_config(config))}")
    return config


def masked_config(config: TranscribeConfig) -> Dict[str, Any]:
    """Dump the configuration with credentials replaced, safe for logs and health output."""
    dump = config.model_dump(mode="json", by_alias=True)
    remote = dump["transcription"]["remote"]
    if remote.get("apiKey") is not None:
        remote["apiKey"] = MASK
    return dump


def create_example_env_file(path: Path = Path(".env.example")):
    example_content = """# Hosted speech API key (OpenAI compatible). Leave empty to use the local engine only.
OPENAI_API_KEY=your_api_key_here

# Transcription provider: remote, local, auto
TRANSCRIPTION_PROVIDER=auto

# Capture source name (see GET /audio/devices), or default
AUDIO_DEVICE=default

# Minimum RMS energy considered speech
VAD_THRESHOLD=0.01

# Stop an idle session after this many ms without speech
SILENCE_TIMEOUT=10000

# Local model size: tiny, base, small
LOCAL_MODEL_SIZE=base

# Logging level
LOG_LEVEL=INFO

# Set to true for debug logging
DEBUG=false
"""

    with open(path, "w") as f:
        f.write(example_content)

    logger.info(f"Created example environment file at {path}")


def setup_logging(log_level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
