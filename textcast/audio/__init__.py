"""
Audio Module
============
Segment reassembly and temporary file tracking.
"""

from .reassembly import (
    AudioSegment,
    BinaryConcatStrategy,
    FFmpegConcatStrategy,
    PydubConcatStrategy,
    ReassemblyStrategy,
    default_strategies,
    reassemble,
)
from .tempfiles import TempFileRegistry

__all__ = [
    "AudioSegment",
    "ReassemblyStrategy",
    "FFmpegConcatStrategy",
    "PydubConcatStrategy",
    "BinaryConcatStrategy",
    "default_strategies",
    "reassemble",
    "TempFileRegistry",
]
