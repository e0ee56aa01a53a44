"""
Synthesis Coordinator
=====================
Turns one document's text into one audio file.

Short text goes to the speech backend in a single call. Long text is planned
into sentence-bounded chunks, each chunk is synthesized to its own segment
under a per-chunk deadline, and the segments are reassembled in ordinal
order. Any chunk failure fails the whole synthesis; partial audio is never
kept.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from ..audio.reassembly import AudioSegment, ReassemblyStrategy, reassemble
from ..audio.tempfiles import TempFileRegistry
from ..concurrency import call_collaborator
from ..errors import (
    BackendUnavailableError,
    ChunkTimeoutError,
    SynthesisError,
    TextcastError,
)
from .chunker import ChunkConfig, ChunkPlanner, TextChunk, count_words

logger = logging.getLogger(__name__)


def default_temp_dir() -> Path:
    return Path(tempfile.gettempdir()) / "textcast"


@dataclass
class SynthesisOptions:
    """
    Per-run synthesis settings.

    Attributes:
        enable_chunking: Split long text into separately synthesized chunks
        max_chunk_words: Word budget per chunk
        chunk_timeout: Seconds allowed for one chunk's synthesis
        single_timeout: Seconds allowed for single-pass synthesis (None = no limit)
        temp_dir: Directory for chunk segment files
        preprocess: Apply prepare_for_speech() before synthesis
    """
    enable_chunking: bool = True
    max_chunk_words: int = 500
    chunk_timeout: float = 30.0
    single_timeout: Optional[float] = None
    temp_dir: Path = field(default_factory=default_temp_dir)
    preprocess: bool = True

    def __post_init__(self):
        self.temp_dir = Path(self.temp_dir)

    @property
    def process_timeout(self) -> Optional[float]:
        """
        Deadline for one backend process.

        With chunking on, a single-pass call never carries more text than a
        chunk, so the chunk deadline bounds it too unless single_timeout is
        longer.
        """
        if not self.enable_chunking or self.chunk_timeout is None:
            return self.single_timeout
        if self.single_timeout is None:
            return self.chunk_timeout
        return max(self.chunk_timeout, self.single_timeout)


@dataclass
class SynthesisResult:
    """Outcome of one synthesize() call."""
    audio_path: Path
    method: str  # "single" or "chunked"
    chunk_count: Optional[int] = None
    estimated_duration: int = 0
    engine: str = ""
    reassembly_strategy: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "audio_path": str(self.audio_path),
            "method": self.method,
            "chunk_count": self.chunk_count,
            "estimated_duration": self.estimated_duration,
            "engine": self.engine,
            "reassembly_strategy": self.reassembly_strategy,
        }


_URL = re.compile(r'https?://\S+')
_ALL_CAPS = re.compile(r'\b[A-Z]{2,}\b')


def prepare_for_speech(text: str) -> str:
    """
    Remove artifacts that read badly aloud.

    URLs are dropped and ALL-CAPS words lower-cased so the synthesizer
    does not spell them out letter by letter.
    """
    result = _URL.sub('', text)
    result = _ALL_CAPS.sub(lambda m: m.group(0).lower(), result)
    return re.sub(r'\s+', ' ', result).strip()


def estimate_duration(text: str, words_per_minute: int) -> int:
    """Rough spoken length in seconds."""
    if words_per_minute <= 0:
        return 0
    return round(count_words(text) / words_per_minute * 60)


class SynthesisCoordinator:
    """
    Drives a speech backend for single-pass or chunked synthesis.

    Example:
        coordinator = SynthesisCoordinator(detect_backend())
        result = await coordinator.synthesize(text, Path("out.aiff"))
    """

    def __init__(
        self,
        backend,
        planner: Optional[ChunkPlanner] = None,
        strategies: Optional[Sequence[ReassemblyStrategy]] = None,
        temp_files: Optional[TempFileRegistry] = None,
        options: Optional[SynthesisOptions] = None,
    ):
        """
        Args:
            backend: Object with ``synthesize_one(text, path)``, ``is_available()``,
                ``name``, ``audio_format`` and ``words_per_minute``
            planner: Chunk planner (default word budget from options)
            strategies: Reassembly chain (ffmpeg, pydub, binary if None)
            temp_files: Registry that tracks segment files
            options: Default options for synthesize()
        """
        self.backend = backend
        self.options = options or SynthesisOptions()
        self.planner = planner or ChunkPlanner(ChunkConfig(max_words=self.options.max_chunk_words))
        self.strategies = list(strategies) if strategies is not None else None
        self.temp_files = temp_files if temp_files is not None else TempFileRegistry()
        self._available = False

    @property
    def engine_name(self) -> str:
        return getattr(self.backend, "name", type(self.backend).__name__)

    async def ensure_available(self) -> None:
        """
        Raise BackendUnavailableError unless the backend reports ready.

        A positive answer is cached for the coordinator's lifetime.
        """
        if self._available:
            return
        try:
            available = await call_collaborator(self.backend.is_available)
        except Exception as e:
            raise BackendUnavailableError(self.engine_name, details=str(e)) from e
        if not available:
            raise BackendUnavailableError(self.engine_name)
        self._available = True

    async def synthesize(
        self,
        text: str,
        output_path: Path | str,
        options: Optional[SynthesisOptions] = None,
    ) -> SynthesisResult:
        """
        Synthesize text into output_path.

        Args:
            text: Text to speak (must not be blank)
            output_path: Final audio file
            options: Overrides the coordinator's default options

        Returns:
            SynthesisResult describing how the file was produced

        Raises:
            SynthesisError: Blank text or a backend failure
            BackendUnavailableError: Backend cannot run
            ChunkTimeoutError: A chunk exceeded its deadline
            ReassemblyFailedError: Segments could not be joined
        """
        options = options or self.options
        output_path = Path(output_path)

        if not text or not text.strip():
            raise SynthesisError("Text content is required for speech synthesis")

        await self.ensure_available()

        spoken = prepare_for_speech(text) if options.preprocess else text.strip()
        if not spoken:
            raise SynthesisError("Text content is empty after preparing it for speech")

        chunks: list[TextChunk] = []
        if options.enable_chunking:
            chunks = self.planner.plan(spoken, options.max_chunk_words)

        if len(chunks) > 1:
            logger.info(
                f"Processing {len(chunks)} chunks for long text ({count_words(spoken)} words)"
            )
            strategy = await self._synthesize_chunked(chunks, output_path, options)
            return SynthesisResult(
                audio_path=output_path,
                method="chunked",
                chunk_count=len(chunks),
                estimated_duration=self._estimate(spoken),
                engine=self.engine_name,
                reassembly_strategy=strategy,
            )

        await self._synthesize_single(spoken, output_path, options)
        return SynthesisResult(
            audio_path=output_path,
            method="single",
            estimated_duration=self._estimate(spoken),
            engine=self.engine_name,
        )

    def _estimate(self, text: str) -> int:
        return estimate_duration(text, getattr(self.backend, "words_per_minute", 200))

    async def _synthesize_single(
        self,
        text: str,
        output_path: Path,
        options: SynthesisOptions,
    ) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        staged: Optional[Path] = None
        if options.single_timeout is not None:
            # A timed-out worker may still write; keep it away from output_path
            options.temp_dir.mkdir(parents=True, exist_ok=True)
            suffix = output_path.suffix or f".{getattr(self.backend, 'audio_format', 'wav')}"
            staged = self.temp_files.add(
                options.temp_dir / f"single_{uuid.uuid4().hex[:12]}{suffix}"
            )

        try:
            await call_collaborator(
                self.backend.synthesize_one,
                text,
                staged or output_path,
                timeout=options.single_timeout,
                on_failure=None if staged is None else lambda: self.temp_files.delete(staged),
            )
        except asyncio.TimeoutError as e:
            limit = f" within {options.single_timeout:g}s" if options.single_timeout is not None else ""
            raise SynthesisError(f"Synthesis did not finish{limit}") from e
        except TextcastError:
            raise
        except Exception as e:
            raise SynthesisError(f"Speech synthesis failed: {e}") from e

        if staged is not None:
            try:
                shutil.move(str(staged), str(output_path))
            finally:
                self.temp_files.delete_many([staged])

    async def _synthesize_chunked(
        self,
        chunks: Sequence[TextChunk],
        output_path: Path,
        options: SynthesisOptions,
    ) -> str:
        """Synthesize every chunk, then reassemble. Returns the strategy used."""
        options.temp_dir.mkdir(parents=True, exist_ok=True)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        run_id = uuid.uuid4().hex[:12]
        fmt = getattr(self.backend, "audio_format", "wav")
        segments: list[AudioSegment] = []
        # Only segments whose worker has finished; a failed chunk removes its
        # own segment once the backend call has really stopped.
        written: list[Path] = []

        try:
            for chunk in chunks:
                segment_path = self.temp_files.add(
                    options.temp_dir / f"chunk_{run_id}_{chunk.ordinal:04d}.{fmt}"
                )
                logger.debug(
                    f"Processing chunk {chunk.ordinal + 1}/{len(chunks)} ({chunk.word_count} words)"
                )
                await self._synthesize_chunk(chunk, segment_path, options.chunk_timeout, len(chunks))
                written.append(segment_path)
                segments.append(AudioSegment(file_path=segment_path, ordinal=chunk.ordinal))

            return await call_collaborator(
                reassemble,
                segments,
                output_path,
                strategies=self.strategies,
                expected_count=len(chunks),
            )
        finally:
            self.temp_files.delete_many(written)

    async def _synthesize_chunk(
        self,
        chunk: TextChunk,
        segment_path: Path,
        timeout: Optional[float],
        total: int,
    ) -> None:
        try:
            await call_collaborator(
                self.backend.synthesize_one,
                chunk.text,
                segment_path,
                timeout=timeout,
                on_failure=lambda: self.temp_files.delete(segment_path),
            )
        except asyncio.TimeoutError as e:
            if timeout is None:
                raise SynthesisError(
                    f"Chunk {chunk.ordinal + 1}/{total} timed out", chunk_index=chunk.ordinal
                ) from e
            logger.warning(
                f"Chunk {chunk.ordinal + 1}/{total} missed its {timeout:g}s deadline; "
                f"its segment is removed when the backend call ends"
            )
            raise ChunkTimeoutError(chunk.ordinal, timeout) from e
        except Exception as e:
            raise SynthesisError(
                f"Chunk {chunk.ordinal + 1}/{total} failed: {e}", chunk_index=chunk.ordinal
            ) from e
