"""
Error Handling Module
=====================
Custom exceptions and error handling utilities for textcast.
Provides consistent error codes and messages for batch conversion failures.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence


class ErrorCode(Enum):
    """Error codes for textcast."""
    # Discovery / ingestion errors (E001-E099)
    E001 = "Text extraction failed"
    E002 = "File discovery failed"
    E003 = "No valid files found"
    E006 = "Unsupported file type"

    # TTS errors (E100-E199)
    E100 = "Speech backend unavailable"
    E101 = "Speech synthesis failed"
    E102 = "Chunk synthesis timed out"

    # Audio errors (E200-E299)
    E200 = "Audio reassembly failed"
    E201 = "Audio validation failed"
    E203 = "FFmpeg not found"

    # Catalog errors (E300-E399)
    E300 = "Catalog unavailable"
    E301 = "Catalog import failed"

    # Pipeline errors (E400-E499)
    E400 = "Pipeline step failed"
    E401 = "Invalid configuration"


@dataclass(eq=False)
class TextcastError(Exception):
    """Base exception for textcast with error codes."""
    code: ErrorCode
    message: str
    details: Optional[str] = None
    file_path: Optional[Path] = None

    def __str__(self) -> str:
        base = f"[{self.code.name}] {self.code.value}: {self.message}"
        if self.details:
            base += f" ({self.details})"
        if self.file_path:
            base += f" - File: {self.file_path}"
        return base


class UnsupportedFileTypeError(TextcastError):
    """Input file extension is not one the extractor handles."""
    def __init__(self, extension: str, supported: Sequence[str], file_path: Path = None):
        super().__init__(
            code=ErrorCode.E006,
            message=f"Unsupported file type: {extension or '(none)'}",
            details=f"Supported types: {', '.join(supported)}",
            file_path=file_path,
        )


class FileDiscoveryError(TextcastError):
    """Input could not be resolved into work items."""
    def __init__(self, message: str, file_path: Path = None):
        super().__init__(
            code=ErrorCode.E002,
            message=message,
            file_path=file_path,
        )


class NoFilesFoundError(TextcastError):
    """Discovery finished without a single processable file."""
    def __init__(self):
        super().__init__(
            code=ErrorCode.E003,
            message="No valid files found to process",
        )


class ExtractionError(TextcastError):
    """Error while reading or cleaning a text file."""
    def __init__(self, message: str, details: str = None, file_path: Path = None):
        super().__init__(
            code=ErrorCode.E001,
            message=message,
            details=details,
            file_path=file_path,
        )


class BackendUnavailableError(TextcastError):
    """The speech synthesis backend cannot be used on this system."""
    def __init__(self, backend_name: str, details: str = None):
        super().__init__(
            code=ErrorCode.E100,
            message=f"Speech backend '{backend_name}' is not available",
            details=details,
        )


class SynthesisError(TextcastError):
    """Error during speech synthesis."""
    def __init__(self, message: str, chunk_index: int = None):
        super().__init__(
            code=ErrorCode.E101,
            message=message,
            details=f"Chunk {chunk_index}" if chunk_index is not None else None,
        )
        self.chunk_index = chunk_index


class ChunkTimeoutError(TextcastError):
    """A single chunk took longer than its synthesis budget."""
    def __init__(self, chunk_index: int, timeout: float):
        super().__init__(
            code=ErrorCode.E102,
            message=f"Chunk {chunk_index} did not finish within {timeout:g}s",
        )
        self.chunk_index = chunk_index
        self.timeout = timeout


class ReassemblyFailedError(TextcastError):
    """Every reassembly strategy failed to join the chunk segments."""
    def __init__(self, message: str, reasons: dict[str, str] = None, file_path: Path = None):
        self.reasons = dict(reasons or {})
        details = "; ".join(f"{name}: {why}" for name, why in self.reasons.items()) or None
        super().__init__(
            code=ErrorCode.E200,
            message=message,
            details=details,
            file_path=file_path,
        )


class AudioValidationError(TextcastError):
    """Generated audio file is missing, empty or too large."""
    def __init__(self, message: str, file_path: Path = None):
        super().__init__(
            code=ErrorCode.E201,
            message=message,
            file_path=file_path,
        )


class FFmpegNotFoundError(TextcastError):
    """Error when FFmpeg is not installed."""

    INSTALL_INSTRUCTIONS = """FFmpeg is required but not found in PATH.

Installation instructions:
  macOS:    brew install ffmpeg
  Ubuntu:   sudo apt update && sudo apt install ffmpeg
  Windows:  winget install Gyan.FFmpeg
            or download from: https://ffmpeg.org/download.html

After installation, ensure 'ffmpeg' is available in your system PATH."""

    def __init__(self):
        super().__init__(
            code=ErrorCode.E203,
            message="FFmpeg is required but not found",
            details=self.INSTALL_INSTRUCTIONS,
        )


class CatalogUnavailableError(TextcastError):
    """The playlist catalog application cannot be reached."""
    def __init__(self, message: str, details: str = None):
        super().__init__(
            code=ErrorCode.E300,
            message=message,
            details=details,
        )


class CatalogImportError(TextcastError):
    """Error while registering an audio file in the catalog."""
    def __init__(self, message: str, details: str = None, file_path: Path = None):
        super().__init__(
            code=ErrorCode.E301,
            message=message,
            details=details,
            file_path=file_path,
        )


class PipelineStepError(TextcastError):
    """
    A pipeline step failed after exhausting its retries.

    Carries the partially filled item outcome so the scheduler can still
    account for the item when the batch is aborted.
    """
    def __init__(self, step: str, cause: BaseException, file_path: Path = None, outcome=None):
        super().__init__(
            code=ErrorCode.E400,
            message=f"Step '{step}' failed: {cause}",
            file_path=file_path,
        )
        self.step = step
        self.cause = cause
        self.outcome = outcome


class ConfigurationError(TextcastError):
    """Workflow configuration is invalid."""
    def __init__(self, field_name: str, message: str):
        super().__init__(
            code=ErrorCode.E401,
            message=f"{field_name}: {message}",
        )
        self.field_name = field_name


# ===========================================
# Utility Functions
# ===========================================

def sanitize_filename(filename: str, max_length: int = 100) -> str:
    """
    Turn a document name into a lowercase, hyphenated file stem.

    Args:
        filename: Original name (without extension)
        max_length: Maximum length of the result

    Returns:
        Sanitized stem safe for all operating systems
    """
    cleaned = re.sub(r"[^a-zA-Z0-9\s_-]", "", filename)
    cleaned = re.sub(r"\s+", "-", cleaned)
    cleaned = re.sub(r"-+", "-", cleaned)
    cleaned = cleaned.strip("-_").lower()[:max_length]

    return cleaned or "untitled"


def validate_audio_file(file_path: Path, max_size: Optional[int] = None) -> int:
    """
    Validate that a generated audio file exists and has content.

    Args:
        file_path: Path to the audio file
        max_size: Optional upper bound in bytes

    Returns:
        File size in bytes, raises AudioValidationError otherwise
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise AudioValidationError("Audio file was not created", file_path)

    if not file_path.is_file():
        raise AudioValidationError("Audio path is not a file", file_path)

    size = file_path.stat().st_size
    if size == 0:
        raise AudioValidationError("Audio file is empty", file_path)

    if max_size is not None and size > max_size:
        raise AudioValidationError(
            f"Audio file exceeds maximum size limit ({max_size} bytes)",
            file_path,
        )

    return size


def describe_error(error: BaseException) -> str:
    """Human-readable one-line description of any error."""
    if isinstance(error, TextcastError):
        return str(error)
    text = str(error)
    return f"{type(error).__name__}: {text}" if text else type(error).__name__
