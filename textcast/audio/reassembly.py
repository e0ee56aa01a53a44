"""
Audio Reassembly Module
=======================
Joins per-chunk audio segments into one continuous file.

Strategies are tried in order until one succeeds:
    1. ffmpeg  - concat demuxer with stream copy (external merge tool)
    2. pydub   - decode and re-export through PyDub
    3. binary  - container-aware WAV/AIFF byte concatenation
"""

from __future__ import annotations

import logging
import shutil
import struct
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from pydub import AudioSegment as PydubSegment

from ..errors import FFmpegNotFoundError, ReassemblyFailedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioSegment:
    """One synthesized chunk on disk."""
    file_path: Path
    ordinal: int


def _check_ffmpeg() -> bool:
    """Check if FFmpeg is available in PATH."""
    return shutil.which("ffmpeg") is not None


class ReassemblyStrategy(ABC):
    """A named way of concatenating audio files."""

    name: str = "base"

    @abstractmethod
    def merge(self, inputs: Sequence[Path], output_path: Path) -> Path:
        """
        Concatenate inputs (already in playback order) into output_path.

        Raises:
            Any exception on failure; the caller records it and moves on
        """


class FFmpegConcatStrategy(ReassemblyStrategy):
    """Lossless concatenation via ffmpeg's concat demuxer."""

    name = "ffmpeg"

    def __init__(self, timeout: Optional[float] = 300.0):
        self.timeout = timeout

    def merge(self, inputs: Sequence[Path], output_path: Path) -> Path:
        if not _check_ffmpeg():
            raise FFmpegNotFoundError()

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(
            "w", suffix=".txt", delete=False, encoding="utf-8"
        ) as listing:
            for path in inputs:
                escaped = str(Path(path).resolve()).replace("'", "'\\''")
                listing.write(f"file '{escaped}'\n")
            list_path = Path(listing.name)

        cmd = [
            "ffmpeg",
            "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", str(list_path),
            "-c", "copy",
            str(output_path),
        ]

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        finally:
            list_path.unlink(missing_ok=True)

        if result.returncode != 0:
            raise RuntimeError(
                f"ffmpeg concat failed with code {result.returncode}: {result.stderr.strip()[-500:]}"
            )

        return output_path


class PydubConcatStrategy(ReassemblyStrategy):
    """Decode every segment with PyDub and export the sum."""

    name = "pydub"

    def merge(self, inputs: Sequence[Path], output_path: Path) -> Path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        combined = None
        for path in inputs:
            audio = PydubSegment.from_file(str(path))
            combined = audio if combined is None else combined + audio

        if combined is None:
            raise ValueError("No input segments to concatenate")

        export_format = output_path.suffix.lstrip(".").lower() or "wav"
        combined.export(str(output_path), format=export_format).close()
        return output_path


class BinaryConcatStrategy(ReassemblyStrategy):
    """
    Byte-level concatenation for uncompressed containers.

    Sample data from every segment is appended after the first segment's
    header; the container's size fields are rewritten to match. Segments must
    share the same format parameters.
    """

    name = "binary"

    def merge(self, inputs: Sequence[Path], output_path: Path) -> Path:
        if not inputs:
            raise ValueError("No input files to concatenate")

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        if len(inputs) == 1:
            shutil.copyfile(inputs[0], output_path)
            return output_path

        blobs = [Path(p).read_bytes() for p in inputs]
        magic = blobs[0][:4]

        if magic == b"RIFF":
            merged = concat_wav(blobs)
        elif magic == b"FORM":
            merged = concat_aiff(blobs)
        else:
            raise ValueError(f"Unsupported container for binary concatenation: {magic!r}")

        output_path.write_bytes(merged)
        return output_path


# ===========================================
# Container helpers
# ===========================================

def _iter_chunks(data: bytes, start: int, endian: str):
    """Yield (chunk_id, body) pairs of an IFF-style container."""
    pos = start
    while pos + 8 <= len(data):
        chunk_id = data[pos:pos + 4]
        (size,) = struct.unpack(f"{endian}I", data[pos + 4:pos + 8])
        body = data[pos + 8:pos + 8 + size]
        yield chunk_id, body
        pos += 8 + size + (size & 1)


def _pack_chunk(chunk_id: bytes, body: bytes, endian: str) -> bytes:
    pad = b"\x00" if len(body) & 1 else b""
    return chunk_id + struct.pack(f"{endian}I", len(body)) + body + pad


def concat_wav(blobs: Sequence[bytes]) -> bytes:
    """Concatenate RIFF/WAVE files sharing one fmt chunk."""
    fmt: Optional[bytes] = None
    frames: list[bytes] = []

    for index, blob in enumerate(blobs):
        if blob[:4] != b"RIFF" or blob[8:12] != b"WAVE":
            raise ValueError(f"Segment {index} is not a WAVE file")

        chunks = dict(_iter_chunks(blob, 12, "<"))
        if b"fmt " not in chunks or b"data" not in chunks:
            raise ValueError(f"Segment {index} is missing fmt or data chunk")

        if fmt is None:
            fmt = chunks[b"fmt "]
        elif chunks[b"fmt "] != fmt:
            raise ValueError(f"Segment {index} has incompatible WAV parameters")

        frames.append(chunks[b"data"])

    body = b"WAVE" + _pack_chunk(b"fmt ", fmt, "<") + _pack_chunk(b"data", b"".join(frames), "<")
    return b"RIFF" + struct.pack("<I", len(body)) + body


def concat_aiff(blobs: Sequence[bytes]) -> bytes:
    """Concatenate AIFF/AIFC files sharing one COMM layout."""
    form_type: Optional[bytes] = None
    comm: Optional[bytes] = None
    extra_chunks: list[tuple[bytes, bytes]] = []
    sound: list[bytes] = []

    for index, blob in enumerate(blobs):
        if blob[:4] != b"FORM" or blob[8:12] not in (b"AIFF", b"AIFC"):
            raise ValueError(f"Segment {index} is not an AIFF file")

        this_comm = None
        this_ssnd = None
        for chunk_id, body in _iter_chunks(blob, 12, ">"):
            if chunk_id == b"COMM":
                this_comm = body
            elif chunk_id == b"SSND":
                this_ssnd = body
            elif index == 0:
                extra_chunks.append((chunk_id, body))

        if this_comm is None or this_ssnd is None or len(this_comm) < 18:
            raise ValueError(f"Segment {index} is missing COMM or SSND chunk")

        if comm is None:
            form_type = blob[8:12]
            comm = this_comm
        elif this_comm[:2] + this_comm[6:] != comm[:2] + comm[6:]:
            # Only the frame count may differ between segments
            raise ValueError(f"Segment {index} has incompatible AIFF parameters")

        (offset,) = struct.unpack(">I", this_ssnd[:4])
        sound.append(this_ssnd[8 + offset:])

    channels, = struct.unpack(">h", comm[:2])
    sample_size, = struct.unpack(">h", comm[6:8])
    frame_bytes = max(1, channels * ((sample_size + 7) // 8))
    data = b"".join(sound)

    new_comm = comm[:2] + struct.pack(">I", len(data) // frame_bytes) + comm[6:]
    ssnd = struct.pack(">II", 0, 0) + data

    body = form_type
    for chunk_id, chunk_body in extra_chunks:
        body += _pack_chunk(chunk_id, chunk_body, ">")
    body += _pack_chunk(b"COMM", new_comm, ">") + _pack_chunk(b"SSND", ssnd, ">")
    return b"FORM" + struct.pack(">I", len(body)) + body


def default_strategies() -> list[ReassemblyStrategy]:
    """Strategy chain in preference order."""
    return [FFmpegConcatStrategy(), PydubConcatStrategy(), BinaryConcatStrategy()]


def reassemble(
    segments: Sequence[AudioSegment],
    output_path: Path,
    strategies: Optional[Sequence[ReassemblyStrategy]] = None,
    expected_count: Optional[int] = None,
) -> str:
    """
    Join segments into output_path using the first strategy that works.

    Args:
        segments: Segments to join; ordinals must be exactly 0..n-1
        output_path: Destination file
        strategies: Strategy chain (default_strategies() if None)
        expected_count: Number of chunks that were planned

    Returns:
        Name of the strategy that produced the file

    Raises:
        ReassemblyFailedError: Segments are incomplete/out of order, or
            every strategy failed
    """
    output_path = Path(output_path)
    ordered = sorted(segments, key=lambda s: s.ordinal)
    ordinals = [s.ordinal for s in ordered]

    if expected_count is not None and len(ordered) != expected_count:
        raise ReassemblyFailedError(
            f"Expected {expected_count} segments, got {len(ordered)}",
            file_path=output_path,
        )
    if ordinals != list(range(len(ordered))):
        raise ReassemblyFailedError(
            f"Segment ordinals are not contiguous: {ordinals}",
            file_path=output_path,
        )
    if not ordered:
        raise ReassemblyFailedError("No segments to reassemble", file_path=output_path)

    inputs = [s.file_path for s in ordered]
    reasons: dict[str, str] = {}

    for strategy in strategies if strategies is not None else default_strategies():
        try:
            strategy.merge(inputs, output_path)
            logger.debug(f"Reassembled {len(inputs)} segments with {strategy.name}")
            return strategy.name
        except Exception as e:
            reasons[strategy.name] = str(e) or type(e).__name__
            logger.info(f"Reassembly strategy '{strategy.name}' failed, trying next: {e}")

    raise ReassemblyFailedError(
        f"All reassembly strategies failed for {len(inputs)} segments",
        reasons=reasons,
        file_path=output_path,
    )
