"""
Temporary File Registry
=======================
Tracks intermediate audio files (chunk segments, temp-mode outputs) so they
can be removed on completion, on error, or when a batch is stopped.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


class TempFileRegistry:
    """
    Thread-safe set of temporary file paths.

    Shared across concurrently running items; each item adds and removes its
    own entries independently.
    """

    def __init__(self):
        self._paths: set[Path] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return Path(path) in self._paths

    def snapshot(self) -> list[Path]:
        """Currently tracked paths, sorted."""
        with self._lock:
            return sorted(self._paths)

    def add(self, path: Path | str) -> Path:
        """Start tracking a path."""
        path = Path(path)
        with self._lock:
            self._paths.add(path)
        return path

    def discard(self, path: Path | str) -> None:
        """Stop tracking a path without touching the file."""
        with self._lock:
            self._paths.discard(Path(path))

    def delete(self, path: Path | str) -> bool:
        """
        Delete a file and stop tracking it.

        Returns:
            True if a file was removed, False if it did not exist
        """
        path = Path(path)
        self.discard(path)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def delete_many(self, paths: Iterable[Path | str]) -> list[Path]:
        """
        Delete several files, continuing past individual failures.

        Returns:
            Paths that could not be removed
        """
        failed: list[Path] = []
        for path in paths:
            try:
                self.delete(path)
            except OSError as e:
                logger.warning(f"Failed to remove temp file {path}: {e}")
                failed.append(Path(path))
        return failed

    def cleanup_all(self) -> list[Path]:
        """
        Delete every tracked file.

        Returns:
            Paths that could not be removed
        """
        return self.delete_many(self.snapshot())
