"""
Output Placement
================
Decides where an item's audio file goes and whether it needs cleanup.

- direct: ``<stem>.<fmt>`` next to the source (or in ``output_dir``);
  existing files get numbered siblings ``<stem>-1``, ``<stem>-2`` unless
  overwriting is enabled.
- temp: sanitized, timestamped name under ``temp_dir``, registered for
  cleanup.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..audio.tempfiles import TempFileRegistry
from ..errors import sanitize_filename

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputTarget:
    """Destination for one item's audio."""
    path: Path
    direct: bool

    @property
    def mode(self) -> str:
        return "direct" if self.direct else "temp"


class OutputPlacementPolicy:
    """Resolves OutputTarget for source files."""

    def __init__(
        self,
        mode: str = "direct",
        audio_format: str = "aiff",
        output_dir: Optional[Path] = None,
        temp_dir: Optional[Path] = None,
        overwrite: bool = False,
        temp_files: Optional[TempFileRegistry] = None,
    ):
        if mode not in ("direct", "temp"):
            raise ValueError(f"Unknown output mode: {mode!r}")
        if mode == "temp" and temp_dir is None:
            raise ValueError("temp output mode requires temp_dir")

        self.mode = mode
        self.audio_format = audio_format.lstrip(".").lower()
        self.output_dir = Path(output_dir) if output_dir else None
        self.temp_dir = Path(temp_dir) if temp_dir else None
        self.overwrite = overwrite
        self.temp_files = temp_files if temp_files is not None else TempFileRegistry()
        # Paths handed out but not yet written, so concurrent items never collide
        self._reserved: set[Path] = set()
        self._lock = threading.Lock()

    def place(self, source: Path | str) -> OutputTarget:
        """
        Choose the output path for a source document.

        Args:
            source: Input text file

        Returns:
            OutputTarget (direct=False means the caller must clean up)
        """
        source = Path(source)
        if self.mode == "temp":
            return self._place_temp(source)
        return self._place_direct(source)

    def release(self, target: OutputTarget) -> None:
        """Forget a reservation once the item is finished."""
        with self._lock:
            self._reserved.discard(target.path)

    def _place_direct(self, source: Path) -> OutputTarget:
        directory = self.output_dir or source.parent
        directory.mkdir(parents=True, exist_ok=True)
        stem = source.stem
        candidate = directory / f"{stem}.{self.audio_format}"

        with self._lock:
            if not self.overwrite:
                counter = 1
                while candidate.exists() or candidate in self._reserved:
                    candidate = directory / f"{stem}-{counter}.{self.audio_format}"
                    counter += 1
            self._reserved.add(candidate)

        logger.debug(f"Direct output for {source.name}: {candidate}")
        return OutputTarget(path=candidate, direct=True)

    def _place_temp(self, source: Path) -> OutputTarget:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S-%f")
        name = f"{sanitize_filename(source.stem)}-{timestamp}.{self.audio_format}"

        with self._lock:
            candidate = self.temp_dir / name
            counter = 1
            while candidate.exists() or candidate in self._reserved:
                candidate = self.temp_dir / f"{Path(name).stem}-{counter}.{self.audio_format}"
                counter += 1
            self._reserved.add(candidate)

        self.temp_files.add(candidate)
        return OutputTarget(path=candidate, direct=False)
