"""
Text Chunker Module
===================
Splits long text into sentence-bounded chunks within a word budget so each
speech backend call stays short enough to finish reliably.
"""

import re
from dataclasses import dataclass


@dataclass
class ChunkConfig:
    """Configuration for text chunking."""
    max_words: int = 500


@dataclass(frozen=True)
class TextChunk:
    """A sentence-bounded slice of an item's text."""
    text: str
    ordinal: int

    @property
    def word_count(self) -> int:
        return count_words(self.text)


_SENTENCE_BOUNDARY = re.compile(r'(?<=[.!?])\s+')


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split())


class ChunkPlanner:
    """
    Sentence-aware text chunker for speech synthesis.

    Splits only at sentence boundaries (``.``, ``!`` or ``?`` followed by
    whitespace). A sentence longer than the budget is kept whole as its own
    chunk, and text without any boundary is never split.
    """

    def __init__(self, config: ChunkConfig | None = None):
        """
        Initialize the planner.

        Args:
            config: Chunk configuration (uses defaults if None)
        """
        self.config = config or ChunkConfig()

    def split_sentences(self, text: str) -> list[str]:
        """
        Split text into sentences.

        Args:
            text: Input text

        Returns:
            Sentences in order, each stripped of surrounding whitespace
        """
        return [s for s in _SENTENCE_BOUNDARY.split(text.strip()) if s]

    def plan(self, text: str, max_words: int | None = None) -> list[TextChunk]:
        """
        Split text into chunks suitable for one synthesis call each.

        Args:
            text: Input text to chunk
            max_words: Word budget per chunk (uses config default if None)

        Returns:
            Chunks in ordinal order; empty list for blank text
        """
        if not text or not text.strip():
            return []

        max_words = max_words if max_words is not None else self.config.max_words
        if max_words < 1:
            raise ValueError(f"max_words must be at least 1, got {max_words}")

        stripped = text.strip()
        if count_words(stripped) <= max_words:
            return [TextChunk(text=stripped, ordinal=0)]

        sentences = self.split_sentences(stripped)
        if len(sentences) <= 1:
            # No boundary: an oversized chunk beats a mid-sentence cut
            return [TextChunk(text=stripped, ordinal=0)]

        groups: list[list[str]] = []
        current: list[str] = []
        current_words = 0

        for sentence in sentences:
            sentence_words = count_words(sentence)
            if current and current_words + sentence_words > max_words:
                groups.append(current)
                current = []
                current_words = 0
            current.append(sentence)
            current_words += sentence_words

        if current:
            groups.append(current)

        return [
            TextChunk(text=" ".join(group), ordinal=ordinal)
            for ordinal, group in enumerate(groups)
        ]


def plan_chunks(text: str, max_words: int = 500) -> list[TextChunk]:
    """
    Convenience function to chunk text.

    Args:
        text: Input text
        max_words: Maximum words per chunk

    Returns:
        List of text chunks
    """
    return ChunkPlanner(ChunkConfig(max_words=max_words)).plan(text)
