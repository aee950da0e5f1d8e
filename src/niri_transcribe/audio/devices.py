"""Audio system detection, capture command construction and source enumeration."""

from __future__ import annotations

import logging
import re
import subprocess
from enum import Enum
from typing import List, Optional, Protocol, Sequence

from ..errors import NoAudioSystemError, TranscribeError
from .types import Device

logger = logging.getLogger("AudioDevices")

DEFAULT_SOURCE = "@DEFAULT_SOURCE@"
MONITOR_MARKER = ".monitor"

_OBJECT_RE = re.compile(r"^\s*id (\d+), type (\S+)")
_PROPERTY_RE = re.compile(r'^\s*\*?\s*([\w.\-]+) = "(.*)"\s*$')
_WPCTL_DEFAULT_RE = re.compile(r"\*\s*\d+\.\s*([^\s\[]+)")


class AudioSystem(str, Enum):
    PIPEWIRE = "pipewire"
    PULSEAUDIO = "pulseaudio"


class CommandError(TranscribeError):
    """An external helper command failed or could not be executed."""


class CommandRunner(Protocol):
    def run(self, args: Sequence[str]) -> str: ...


class SubprocessRunner:
    """Runs short-lived helper commands and returns their stdout."""

    def __init__(self, timeout_s: float = 5.0):
        self._timeout_s = timeout_s

    def run(self, args: Sequence[str]) -> str:
        try:
            proc = subprocess.run(
                list(args),
                capture_output=True,
                text=True,
                timeout=self._timeout_s,
            )
        except FileNotFoundError as e:
            raise CommandError(f"Failed to execute {args[0]}: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(f"Command {args[0]} timed out after {self._timeout_s}s") from e

        if proc.returncode != 0:
            raise CommandError(proc.stderr.strip() or f"Command {args[0]} failed with code {proc.returncode}")
        return proc.stdout


def detect_audio_system(runner: CommandRunner) -> AudioSystem:
    """Prefer PipeWire, fall back to PulseAudio."""
    try:
        runner.run(["pw-cli", "--version"])
        logger.info("Detected PipeWire audio system")
        return AudioSystem.PIPEWIRE
    except CommandError as e:
        logger.debug(f"PipeWire not available: {e}")

    try:
        runner.run(["pactl", "--version"])
        logger.info("Detected PulseAudio audio system")
        return AudioSystem.PULSEAUDIO
    except CommandError as e:
        logger.debug(f"PulseAudio not available: {e}")

    raise NoAudioSystemError("No compatible audio system found (PipeWire or PulseAudio required)")


def build_capture_command(system: AudioSystem, sample_rate: int, channels: int, device: str) -> List[str]:
    target = DEFAULT_SOURCE if device == "default" else device
    if system is AudioSystem.PIPEWIRE:
        return [
            "pw-record",
            "--format", "s16",
            "--rate", str(sample_rate),
            "--channels", str(channels),
            "--target", target,
            "-",
        ]
    return [
        "parecord",
        "--format=s16le",
        f"--rate={sample_rate}",
        f"--channels={channels}",
        "--raw",
        f"--device={target}",
        "-",
    ]


def _is_monitor(name: str) -> bool:
    return MONITOR_MARKER in name


def parse_pipewire_sources(output: str) -> List[Device]:
    """Parse `pw-cli list-objects` into capture sources, skipping sinks and monitors."""
    nodes: List[dict] = []
    current: Optional[dict] = None

    for line in output.splitlines():
        obj = _OBJECT_RE.match(line)
        if obj:
            current = {} if "Interface:Node" in obj.group(2) else None
            if current is not None:
                nodes.append(current)
            continue
        if current is None:
            continue
        prop = _PROPERTY_RE.match(line)
        if prop:
            current[prop.group(1)] = prop.group(2)

    devices = []
    for props in nodes:
        name = props.get("node.name")
        if props.get("media.class") != "Audio/Source" or not name or _is_monitor(name):
            continue
        display = props.get("node.description") or props.get("node.nick") or name
        devices.append(Device(id=name, name=display))
    return devices


def parse_pulseaudio_sources(output: str) -> List[Device]:
    """Parse `pactl list sources short` (tab separated)."""
    devices = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        if len(parts) < 4:
            continue
        name = parts[1].strip()
        if not name or _is_monitor(name):
            continue
        devices.append(Device(id=name, name=re.sub(r"[._]", " ", name)))
    return devices


def list_sources(system: AudioSystem, runner: CommandRunner) -> List[Device]:
    if system is AudioSystem.PIPEWIRE:
        return parse_pipewire_sources(runner.run(["pw-cli", "list-objects"]))
    return parse_pulseaudio_sources(runner.run(["pactl", "list", "sources", "short"]))


def resolve_default_device(system: AudioSystem, runner: CommandRunner) -> Optional[str]:
    """Best-effort lookup of the source the audio server currently treats as default."""
    try:
        if system is AudioSystem.PIPEWIRE:
            in_sources = False
            for line in runner.run(["wpctl", "status"]).splitlines():
                if "Sources:" in line:
                    in_sources = True
                    continue
                if in_sources and ("Sinks:" in line or "Filters:" in line or "Streams:" in line):
                    break
                if in_sources and "*" in line:
                    match = _WPCTL_DEFAULT_RE.search(line)
                    if match:
                        return match.group(1)
        else:
            for line in runner.run(["pactl", "info"]).splitlines():
                if line.startswith("Default Source:"):
                    return line.split(":", 1)[1].strip() or None
    except CommandError as e:
        logger.debug(f"Failed to get default device: {e}")
    return None
