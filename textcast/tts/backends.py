"""
Speech Backends
===============
Platform speech synthesizers driven through their command-line tools.

Implementations:
    - SayBackend: macOS ``say`` (AIFF output)
    - EspeakBackend: Linux ``espeak`` (WAV output)
    - SapiBackend: Windows PowerShell + System.Speech (WAV output)
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Type

from ..errors import BackendUnavailableError, SynthesisError

logger = logging.getLogger(__name__)


@dataclass
class BackendConfig:
    """Shared configuration for speech backends."""
    voice: str = "default"
    rate: int = 200  # words per minute
    process_timeout: Optional[float] = None


class SpeechBackend(ABC):
    """
    Abstract base class for speech synthesis backends.

    ``synthesize_one`` blocks until the audio file is written; callers that
    need a deadline run it in a worker thread.
    """

    name: str = "base"
    audio_format: str = "wav"

    def __init__(self, config: Optional[BackendConfig] = None):
        self.config = config or BackendConfig()

    @property
    def words_per_minute(self) -> int:
        return self.config.rate

    @abstractmethod
    def is_available(self) -> bool:
        """Check whether the backend can run on this machine."""

    @abstractmethod
    def build_command(self, text: str, output_path: Path) -> list[str]:
        """Command line that renders text into output_path."""

    def synthesize_one(self, text: str, output_path: Path | str) -> Path:
        """
        Render text into an audio file.

        Args:
            text: Text to speak
            output_path: Destination audio file

        Returns:
            Path to the written file

        Raises:
            SynthesisError: The tool exited non-zero, hung or could not start
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(text, output_path)

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.process_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise SynthesisError(f"{self.name} timed out after {e.timeout}s") from e
        except OSError as e:
            raise SynthesisError(f"{self.name} could not be started: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise SynthesisError(
                f"{self.name} failed with code {result.returncode}" + (f": {stderr}" if stderr else "")
            )

        return output_path

    def info(self) -> dict:
        """Summary used by status displays."""
        return {
            "engine": self.name,
            "format": self.audio_format,
            "voice": self.config.voice,
            "rate": self.config.rate,
            "available": self.is_available(),
        }


class SayBackend(SpeechBackend):
    """macOS ``say`` command."""

    name = "say"
    audio_format = "aiff"

    def is_available(self) -> bool:
        return sys.platform == "darwin" and shutil.which("say") is not None

    def build_command(self, text: str, output_path: Path) -> list[str]:
        cmd = ["say", "-o", str(output_path), "-r", str(self.config.rate)]
        if self.config.voice and self.config.voice != "default":
            cmd += ["-v", self.config.voice]
        # "--" keeps text starting with "-" from being read as an option
        cmd += ["--", text]
        return cmd


class EspeakBackend(SpeechBackend):
    """Linux ``espeak`` command."""

    name = "espeak"
    audio_format = "wav"

    def is_available(self) -> bool:
        if shutil.which("espeak") is None:
            return False
        try:
            result = subprocess.run(
                ["espeak", "--version"], capture_output=True, text=True, timeout=10
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    def build_command(self, text: str, output_path: Path) -> list[str]:
        cmd = ["espeak", "-w", str(output_path), "-s", str(self.config.rate)]
        if self.config.voice and self.config.voice != "default":
            cmd += ["-v", self.config.voice]
        cmd += ["--", text]
        return cmd


class SapiBackend(SpeechBackend):
    """Windows System.Speech through PowerShell."""

    name = "sapi"
    audio_format = "wav"

    def is_available(self) -> bool:
        if sys.platform != "win32" or shutil.which("powershell") is None:
            return False
        try:
            result = subprocess.run(
                ["powershell", "-Command", "Add-Type -AssemblyName System.Speech; exit 0"],
                capture_output=True,
                text=True,
                timeout=30,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    def build_command(self, text: str, output_path: Path) -> list[str]:
        # SAPI rate runs -10..10 around a 200 wpm baseline
        sapi_rate = max(-10, min(10, round((self.config.rate - 200) / 20)))
        quoted_text = text.replace("'", "''")
        quoted_path = str(output_path).replace("'", "''")
        script = (
            "Add-Type -AssemblyName System.Speech; "
            "$synth = New-Object System.Speech.Synthesis.SpeechSynthesizer; "
            f"$synth.Rate = {sapi_rate}; "
            f"$synth.SetOutputToWaveFile('{quoted_path}'); "
            f"$synth.Speak('{quoted_text}'); "
            "$synth.Dispose()"
        )
        return ["powershell", "-NoProfile", "-Command", script]


_BACKENDS: dict[str, Type[SpeechBackend]] = {
    "say": SayBackend,
    "espeak": EspeakBackend,
    "sapi": SapiBackend,
}

_PLATFORM_DEFAULTS = {
    "darwin": "say",
    "win32": "sapi",
    "linux": "espeak",
}


def available_backends() -> list[str]:
    """Names of all registered backends."""
    return list(_BACKENDS.keys())


def create_backend(name: str, config: Optional[BackendConfig] = None) -> SpeechBackend:
    """
    Create a backend by name.

    Raises:
        ValueError: If name is not registered
    """
    key = name.lower()
    if key not in _BACKENDS:
        raise ValueError(
            f"Unknown speech backend: '{name}'. Available: {', '.join(available_backends())}"
        )
    return _BACKENDS[key](config)


def detect_backend(config: Optional[BackendConfig] = None, platform: Optional[str] = None) -> SpeechBackend:
    """
    Pick the default backend for a platform.

    Args:
        config: Backend configuration
        platform: sys.platform style name (current platform if None)

    Raises:
        BackendUnavailableError: Platform has no known backend
    """
    platform = platform or sys.platform
    for prefix, name in _PLATFORM_DEFAULTS.items():
        if platform.startswith(prefix):
            logger.debug(f"Using '{name}' speech backend on {platform}")
            return create_backend(name, config)
    raise BackendUnavailableError(platform, details=f"No speech backend for platform '{platform}'")
