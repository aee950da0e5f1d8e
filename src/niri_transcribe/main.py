"""Niri Transcribe - entry point for the control server."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, Optional

import uvicorn

from .config.settings import TranscribeConfig, create_example_env_file, load_config, setup_logging
from .errors import ConfigurationValidationError, NoAudioSystemError

logger = logging.getLogger("Main")


def check_system(config: TranscribeConfig) -> Dict[str, str]:
    """Probe every external dependency once and report its state."""
    from .audio.devices import SubprocessRunner, detect_audio_system, list_sources
    from .output.injector import WtypeInjector
    from .transcription.manager import TranscriptionManager
    from .transcription.types import Backend

    status: Dict[str, str] = {}
    runner = SubprocessRunner()
    try:
        system = detect_audio_system(runner)
        status["audio_system"] = system.value
        status["audio_devices"] = str(len(list_sources(system, runner)))
    except NoAudioSystemError as e:
        status["audio_system"] = f"unavailable ({e})"

    manager = TranscriptionManager(config.transcription)
    health = manager.check_health()
    status["remote_backend"] = "ok" if health[Backend.REMOTE] else "unavailable"
    status["local_backend"] = "ok" if health[Backend.LOCAL] else "unavailable"
    status["primary_backend"] = manager.current_backend.value
    manager.stop()

    status["injector"] = "ok" if WtypeInjector(binary=config.output.injector).is_available() else "unavailable"
    return status


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Niri Transcribe - speech to keystrokes")
    parser.add_argument("--config", type=str, default=None, help="Path to JSON config file")
    parser.add_argument("--env", type=str, default=".env", help="Path to .env file")
    parser.add_argument("--host", default=None, help="Host to bind (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="Port to bind (overrides config)")
    parser.add_argument("--check", action="store_true", help="Check system status")
    parser.add_argument("--create-config", action="store_true", help="Create example config file")

    args = parser.parse_args(argv)

    if args.create_config:
        create_example_env_file()
        print("Example configuration file created at .env.example")
        print("Please copy it to .env and fill in your API key.")
        return 0

    try:
        config = load_config(
            config_path=Path(args.config) if args.config else None,
            env_path=Path(args.env),
        )
    except ConfigurationValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging("DEBUG" if config.output.debug else config.log_level)

    if args.check:
        print("Checking system status...")
        for component, state in check_system(config).items():
            print(f"  {component}: {state}")
        return 0

    from .api.server import create_app

    host = args.host or config.server.host
    port = args.port or config.server.port
    logger.info(f"Niri Transcribe service starting on {host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
