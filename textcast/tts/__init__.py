"""
TTS Module
==========
Text chunking, platform speech backends and the synthesis coordinator.
"""

from .chunker import ChunkConfig, ChunkPlanner, TextChunk, plan_chunks
from .backends import (
    BackendConfig,
    EspeakBackend,
    SapiBackend,
    SayBackend,
    SpeechBackend,
    available_backends,
    create_backend,
    detect_backend,
)
from .coordinator import (
    SynthesisCoordinator,
    SynthesisOptions,
    SynthesisResult,
    prepare_for_speech,
)

__all__ = [
    "ChunkConfig",
    "ChunkPlanner",
    "TextChunk",
    "plan_chunks",
    "BackendConfig",
    "SpeechBackend",
    "SayBackend",
    "EspeakBackend",
    "SapiBackend",
    "available_backends",
    "create_backend",
    "detect_backend",
    "SynthesisCoordinator",
    "SynthesisOptions",
    "SynthesisResult",
    "prepare_for_speech",
]
