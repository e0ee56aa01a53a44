"""
Catalog Module
==============
Playlist catalog integration (macOS Music app).
"""

from .itunes import ImportResult, ITunesImporter

__all__ = ["ImportResult", "ITunesImporter"]
