"""
iTunes / Music Importer
=======================
Registers finished audio in the macOS Music app and files it under a dated
playlist (``<prefix>-YYYY-MM-DD``) through ``osascript``.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

from ..errors import CatalogImportError, CatalogUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    """Track registered in the catalog."""
    track_id: str
    playlist_name: str
    track_name: str

    def to_dict(self) -> dict:
        return {
            "track_id": self.track_id,
            "playlist_name": self.playlist_name,
            "track_name": self.track_name,
        }


def _quote(value: str) -> str:
    """Escape a value for an AppleScript string literal."""
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


class ITunesImporter:
    """
    Music app automation through AppleScript.

    Example:
        importer = ITunesImporter(playlist_prefix="News")
        if importer.is_available():
            result = importer.import_audio_file(Path("story.aiff"), "Story")
    """

    def __init__(
        self,
        playlist_prefix: str = "News",
        artist: str = "News Audio Converter",
        timeout: float = 30.0,
        platform: Optional[str] = None,
    ):
        self.playlist_prefix = playlist_prefix
        self.artist = artist
        self.timeout = timeout
        self.platform = platform or sys.platform

    def playlist_name(self, today: Optional[date] = None) -> str:
        """Dated playlist name for the given day (today if None)."""
        today = today or date.today()
        return f"{self.playlist_prefix}-{today:%Y-%m-%d}"

    def _run_script(self, script: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )

    def is_available(self) -> bool:
        """True if this is macOS and the Music app is installed."""
        if self.platform != "darwin":
            return False

        script = 'tell application "Finder" to return exists application file id "com.apple.Music"'
        try:
            result = self._run_script(script)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Music availability check failed: {e}")
            return False
        return result.returncode == 0 and result.stdout.strip() == "true"

    def ensure_available(self) -> None:
        """Raise CatalogUnavailableError unless is_available()."""
        if self.platform != "darwin":
            raise CatalogUnavailableError("iTunes integration only supported on macOS")
        if not self.is_available():
            raise CatalogUnavailableError("iTunes/Music app not available")

    def import_audio_file(self, file_path: Path | str, title: str) -> ImportResult:
        """
        Import one audio file and add it to today's playlist.

        Args:
            file_path: Audio file to import
            title: Track name shown in the catalog

        Returns:
            ImportResult with the catalog's track id

        Raises:
            CatalogImportError: Missing file or any AppleScript failure
        """
        path = Path(file_path)
        if not path.exists():
            raise CatalogImportError("Audio file not found", file_path=path)

        playlist = self.playlist_name()

        self._execute(
            f"""
            tell application "Music"
                if not (exists playlist {_quote(playlist)}) then
                    make new playlist with properties {{name:{_quote(playlist)}}}
                end if
            end tell
            """,
            f"Failed to create playlist: {playlist}",
            path,
        )

        track_id = self._execute(
            f"""
            tell application "Music"
                set theTrack to add (POSIX file {_quote(str(path.resolve()))})
                set name of theTrack to {_quote(title)}
                set artist of theTrack to {_quote(self.artist)}
                return id of theTrack
            end tell
            """,
            "Failed to import audio file",
            path,
        ).strip()

        if not track_id.isdigit():
            raise CatalogImportError(
                "Music app returned no track id", details=track_id or None, file_path=path
            )

        self._execute(
            f"""
            tell application "Music"
                duplicate (track id {track_id}) to playlist {_quote(playlist)}
            end tell
            """,
            f"Failed to add track to playlist: {playlist}",
            path,
        )

        logger.info(f"Imported '{title}' into playlist {playlist} (track {track_id})")
        return ImportResult(track_id=track_id, playlist_name=playlist, track_name=title)

    def _execute(self, script: str, failure: str, path: Path) -> str:
        try:
            result = self._run_script(script)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise CatalogImportError(failure, details=str(e), file_path=path) from e
        if result.returncode != 0:
            raise CatalogImportError(failure, details=result.stderr.strip() or None, file_path=path)
        return result.stdout
