import pytest
from pathlib import Path
import struct
import sys
import threading
import time

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from textcast.app.config import WorkflowConfig
from textcast.app.events import EventBus, EventRecorder
from textcast.audio.reassembly import BinaryConcatStrategy
from textcast.audio.tempfiles import TempFileRegistry
from textcast.ingestion.text_extractor import ExtractedText
from textcast.tts.coordinator import SynthesisCoordinator, SynthesisOptions


def make_wav(frames: bytes, sample_rate: int = 8000, channels: int = 1, bits: int = 16) -> bytes:
    """Build a minimal PCM WAV file around raw frame bytes."""
    block_align = channels * bits // 8
    fmt = struct.pack("<HHIIHH", 1, channels, sample_rate, sample_rate * block_align, block_align, bits)
    body = b"WAVE" + b"fmt " + struct.pack("<I", len(fmt)) + fmt + b"data" + struct.pack("<I", len(frames)) + frames
    return b"RIFF" + struct.pack("<I", len(body)) + body


def read_wav_frames(data: bytes) -> bytes:
    """Return the data chunk of a WAV produced by make_wav/concat_wav."""
    pos = 12
    while pos + 8 <= len(data):
        chunk_id = data[pos:pos + 4]
        (size,) = struct.unpack("<I", data[pos + 4:pos + 8])
        if chunk_id == b"data":
            return data[pos + 8:pos + 8 + size]
        pos += 8 + size + (size & 1)
    raise AssertionError("no data chunk")


class FakeBackend:
    """Speech backend that writes one WAV frame block per word."""

    name = "fake"
    audio_format = "wav"
    words_per_minute = 200

    def __init__(self, available: bool = True, fail_on=None, delay: float = 0.0):
        self.available = available
        self.fail_on = fail_on  # substring that makes synthesis fail
        self.delay = delay
        self.calls: list[tuple[str, Path]] = []
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return self.available

    def synthesize_one(self, text: str, output_path) -> Path:
        with self._lock:
            self.calls.append((text, Path(output_path)))
        if self.delay:
            time.sleep(self.delay)
        if self.fail_on and self.fail_on in text:
            raise RuntimeError(f"backend refused: {self.fail_on}")
        frames = b"".join(struct.pack("<h", len(word)) for word in text.split())
        Path(output_path).write_bytes(make_wav(frames))
        return Path(output_path)


class FakeExtractor:
    """Extractor that reads the file and can be told to fail for some names."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.calls: list[Path] = []

    def extract_text(self, path) -> ExtractedText:
        path = Path(path)
        self.calls.append(path)
        if path.name in self.fail_for:
            raise ValueError(f"cannot extract {path.name}")
        return ExtractedText(content=path.read_text(), metadata={"title": f"Title of {path.stem}"})


class FakeImporter:
    def __init__(self, available: bool = True):
        self.available = available
        self.calls: list[tuple[Path, str]] = []

    def is_available(self) -> bool:
        return self.available

    def import_audio_file(self, path, title):
        self.calls.append((Path(path), title))
        return {"track_id": str(len(self.calls)), "playlist_name": "News-2024-01-01"}


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def temp_files():
    return TempFileRegistry()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def recorder(events):
    return EventRecorder(events)


@pytest.fixture
def workflow_config(tmp_path):
    """Config with fast retries and all temp paths under tmp_path."""
    return WorkflowConfig(
        retry_attempts=0,
        retry_delay=0.0,
        temp_dir=tmp_path / "staging",
        synthesis=SynthesisOptions(temp_dir=tmp_path / "segments"),
    )


@pytest.fixture
def coordinator(fake_backend, temp_files, tmp_path):
    return SynthesisCoordinator(
        fake_backend,
        strategies=[BinaryConcatStrategy()],
        temp_files=temp_files,
        options=SynthesisOptions(temp_dir=tmp_path / "segments"),
    )


@pytest.fixture
def articles(tmp_path):
    """Directory with three short articles."""
    directory = tmp_path / "articles"
    directory.mkdir()
    for name in ("one", "two", "three"):
        (directory / f"{name}.txt").write_text(f"Article {name} has a short body. It ends here.")
    return directory
