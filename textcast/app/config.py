"""
Workflow Configuration
======================
Typed settings for one batch run, validated once when the batch starts.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from ..errors import ConfigurationError
from ..ingestion.text_extractor import ExtractionConfig
from ..tts.coordinator import SynthesisOptions, default_temp_dir

OUTPUT_MODES = ("direct", "temp")


@dataclass
class WorkflowConfig:
    """
    Batch workflow configuration.

    Attributes:
        concurrency: Items processed at the same time (group size)
        retry_attempts: Extra attempts for a failing step
        retry_delay: Base delay in seconds between retries (multiplied by attempt)
        continue_on_error: Keep going after an item fails
        enable_itunes_integration: Import finished audio into the Music app
        output_mode: "direct" (next to source / output_dir) or "temp"
        output_dir: Destination directory for direct mode (None = beside source)
        overwrite_existing: Replace existing outputs instead of numbering them
        output_format: Audio extension (None = backend's native format)
        temp_dir: Staging directory for chunk segments and temp-mode output
        max_audio_size: Largest acceptable generated file in bytes
        synthesis: Chunking and timeout settings
        extraction: Text extraction settings
        playlist_prefix: Prefix of the dated catalog playlist
        artist: Artist name written to imported tracks
    """

    concurrency: int = 1
    retry_attempts: int = 2
    retry_delay: float = 1.0
    continue_on_error: bool = True
    enable_itunes_integration: bool = False
    output_mode: str = "direct"
    output_dir: Optional[Path] = None
    overwrite_existing: bool = False
    output_format: Optional[str] = None
    temp_dir: Path = field(default_factory=default_temp_dir)
    max_audio_size: int = 500 * 1024 * 1024
    synthesis: SynthesisOptions = field(default_factory=SynthesisOptions)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    playlist_prefix: str = "News"
    artist: str = "News Audio Converter"

    def __post_init__(self):
        self.temp_dir = Path(self.temp_dir)
        if self.output_dir is not None:
            self.output_dir = Path(self.output_dir)
        # Segments follow temp_dir unless synthesis.temp_dir was set on its own
        if self.synthesis.temp_dir == default_temp_dir() and self.temp_dir != default_temp_dir():
            self.synthesis = replace(self.synthesis, temp_dir=self.temp_dir)

    def validate(self) -> "WorkflowConfig":
        """
        Check every field once.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: On the first invalid field
        """
        if not isinstance(self.concurrency, int) or self.concurrency < 1:
            raise ConfigurationError("concurrency", f"must be a positive integer, got {self.concurrency!r}")
        if not isinstance(self.retry_attempts, int) or self.retry_attempts < 0:
            raise ConfigurationError("retry_attempts", f"must be >= 0, got {self.retry_attempts!r}")
        if self.retry_delay < 0:
            raise ConfigurationError("retry_delay", f"must be >= 0, got {self.retry_delay!r}")
        if self.output_mode not in OUTPUT_MODES:
            raise ConfigurationError(
                "output_mode", f"must be one of {', '.join(OUTPUT_MODES)}, got {self.output_mode!r}"
            )
        if self.max_audio_size <= 0:
            raise ConfigurationError("max_audio_size", "must be positive")
        if self.synthesis.max_chunk_words < 1:
            raise ConfigurationError("synthesis.max_chunk_words", "must be at least 1")
        if self.synthesis.chunk_timeout is not None and self.synthesis.chunk_timeout <= 0:
            raise ConfigurationError("synthesis.chunk_timeout", "must be positive")
        if self.synthesis.single_timeout is not None and self.synthesis.single_timeout <= 0:
            raise ConfigurationError("synthesis.single_timeout", "must be positive")
        if not self.extraction.supported_extensions:
            raise ConfigurationError("extraction.supported_extensions", "must not be empty")
        if self.output_format is not None and not self.output_format.strip("."):
            raise ConfigurationError("output_format", "must not be blank")
        return self

    @classmethod
    def from_dict(cls, config_dict: dict) -> "WorkflowConfig":
        """
        Create config from dictionary.

        Args:
            config_dict: Configuration dictionary (nested dicts for
                ``synthesis`` and ``extraction``)

        Returns:
            WorkflowConfig instance
        """
        path_fields = {"output_dir", "temp_dir"}
        processed = {}

        for key, value in config_dict.items():
            if key in path_fields and value is not None:
                processed[key] = Path(value)
            elif key == "synthesis" and isinstance(value, dict):
                processed[key] = SynthesisOptions(**value)
            elif key == "extraction" and isinstance(value, dict):
                extraction = dict(value)
                if "supported_extensions" in extraction:
                    extraction["supported_extensions"] = tuple(extraction["supported_extensions"])
                processed[key] = ExtractionConfig(**extraction)
            else:
                processed[key] = value

        return cls(**processed)

    def to_dict(self) -> dict:
        """
        Convert config to dictionary.

        Returns:
            Configuration dictionary
        """
        return {
            "concurrency": self.concurrency,
            "retry_attempts": self.retry_attempts,
            "retry_delay": self.retry_delay,
            "continue_on_error": self.continue_on_error,
            "enable_itunes_integration": self.enable_itunes_integration,
            "output_mode": self.output_mode,
            "output_dir": str(self.output_dir) if self.output_dir else None,
            "overwrite_existing": self.overwrite_existing,
            "output_format": self.output_format,
            "temp_dir": str(self.temp_dir),
            "max_audio_size": self.max_audio_size,
            "synthesis": {
                "enable_chunking": self.synthesis.enable_chunking,
                "max_chunk_words": self.synthesis.max_chunk_words,
                "chunk_timeout": self.synthesis.chunk_timeout,
                "single_timeout": self.synthesis.single_timeout,
                "temp_dir": str(self.synthesis.temp_dir),
                "preprocess": self.synthesis.preprocess,
            },
            "extraction": {
                "supported_extensions": list(self.extraction.supported_extensions),
                "max_file_size": self.extraction.max_file_size,
                "encoding": self.extraction.encoding,
            },
            "playlist_prefix": self.playlist_prefix,
            "artist": self.artist,
        }
