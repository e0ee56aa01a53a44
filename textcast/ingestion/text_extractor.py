"""
Text File Extractor
===================
Reads plain-text and markdown documents and cleans them for speech synthesis.
Handles markdown formatting, typographic characters and whitespace.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import ExtractionError, UnsupportedFileTypeError

logger = logging.getLogger(__name__)


@dataclass
class ExtractionConfig:
    """Configuration for text extraction."""
    supported_extensions: tuple[str, ...] = (".txt", ".md")
    max_file_size: int = 1024 * 1024  # 1 MiB
    encoding: str = "utf-8"

    def is_supported(self, path: Path | str) -> bool:
        """Check a path's extension against the supported list."""
        return Path(path).suffix.lower() in self.supported_extensions


@dataclass
class ExtractedText:
    """Cleaned document text plus file metadata."""
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str | None:
        return self.metadata.get("title")


_HEADING = re.compile(r'^\s{0,3}#{1,6}\s+(.+?)\s*#*\s*$', re.MULTILINE)


class TextFileExtractor:
    """
    Extracts speakable text from .txt and .md files.

    Operations:
        - Enforce size limit and decode with the configured encoding
        - Remove markdown formatting (keeping the words)
        - Normalize quotes, dashes and ellipses
        - Collapse whitespace into a single line of prose
    """

    def __init__(self, config: ExtractionConfig | None = None):
        self.config = config or ExtractionConfig()

        self._replacements = {
            "“": '"',   # smart quotes
            "”": '"',
            "‘": '"',
            "’": '"',
            "–": "-",   # en dash
            "—": "-",   # em dash
            "…": "...", # ellipsis
        }

        # (pattern, replacement) applied in order; code blocks before inline code
        self._markdown_patterns = [
            (re.compile(r'```[\s\S]*?```'), ''),
            (re.compile(r'#{1,6}\s+'), ''),
            (re.compile(r'\*\*(.*?)\*\*'), r'\1'),
            (re.compile(r'\*(.*?)\*'), r'\1'),
            (re.compile(r'`(.*?)`'), r'\1'),
            (re.compile(r'\[([^\]]+)\]\([^)]+\)'), r'\1'),
        ]

    def extract_text(self, file_path: Path | str) -> ExtractedText:
        """
        Read and clean one document.

        Args:
            file_path: Path to a supported text file

        Returns:
            ExtractedText with cleaned content and metadata

        Raises:
            UnsupportedFileTypeError: Extension is not supported
            ExtractionError: File missing, too large or undecodable
        """
        path = Path(file_path)

        if not path.exists():
            raise ExtractionError("File not found", file_path=path)
        if not path.is_file():
            raise ExtractionError("Path is not a file", file_path=path)
        if not self.config.is_supported(path):
            raise UnsupportedFileTypeError(path.suffix, self.config.supported_extensions, path)

        stat = path.stat()
        if stat.st_size > self.config.max_file_size:
            raise ExtractionError(
                f"File too large: {stat.st_size} bytes (max: {self.config.max_file_size})",
                file_path=path,
            )

        try:
            raw = path.read_text(encoding=self.config.encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise ExtractionError("Failed to read file", details=str(e), file_path=path) from e

        content = self.clean(raw)
        logger.debug(f"Extracted {len(content)} characters from {path.name}")

        return ExtractedText(
            content=content,
            metadata={
                "title": self._find_title(raw) or path.stem,
                "filename": path.name,
                "extension": path.suffix,
                "size": stat.st_size,
                "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
                "word_count": len(content.split()),
            },
        )

    def clean(self, text: str) -> str:
        """
        Clean raw document text for speech.

        Args:
            text: Raw text content

        Returns:
            Single-line cleaned text, or "" for empty input
        """
        if not text:
            return ""

        result = text
        for pattern, replacement in self._markdown_patterns:
            result = pattern.sub(replacement, result)

        for old, new in self._replacements.items():
            result = result.replace(old, new)

        result = re.sub(r'\s+', ' ', result).strip()
        # Space after sentence punctuation followed by lowercase
        result = re.sub(r'([.!?])([a-z])', r'\1 \2', result)

        if self._needs_terminal_period(result):
            result += "."

        return result

    @staticmethod
    def _needs_terminal_period(text: str) -> bool:
        """Prose without closing punctuation gets a period; labels do not."""
        return (
            len(text) > 15
            and len(text.split(" ")) > 2
            and not re.search(r'[.!?:]$', text)
            and not re.search(r':\s*\S+$', text)
        )

    @staticmethod
    def _find_title(raw: str) -> str | None:
        match = _HEADING.search(raw)
        if not match:
            return None
        title = re.sub(r'[*`_]', '', match.group(1)).strip()
        return title or None
