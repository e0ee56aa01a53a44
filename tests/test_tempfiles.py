"""
Test Temp File Registry
=======================
"""

import threading

from textcast.audio.tempfiles import TempFileRegistry


def test_add_and_delete(tmp_path):
    registry = TempFileRegistry()
    path = registry.add(tmp_path / "seg.wav")
    path.write_bytes(b"x")

    assert path in registry
    assert registry.delete(path) is True
    assert not path.exists()
    assert len(registry) == 0


def test_delete_missing_file_is_not_an_error(tmp_path):
    registry = TempFileRegistry()
    registry.add(tmp_path / "never-written.wav")
    assert registry.delete(tmp_path / "never-written.wav") is False
    assert len(registry) == 0


def test_discard_keeps_file(tmp_path):
    registry = TempFileRegistry()
    path = registry.add(tmp_path / "keep.wav")
    path.write_bytes(b"x")
    registry.discard(path)

    assert path not in registry
    assert path.exists()


def test_cleanup_all_continues_past_failures(tmp_path):
    registry = TempFileRegistry()
    good = registry.add(tmp_path / "a.wav")
    good.write_bytes(b"x")
    folder = registry.add(tmp_path / "not-a-file")
    folder.mkdir()

    failed = registry.cleanup_all()

    assert failed == [folder]
    assert not good.exists()


def test_concurrent_adds(tmp_path):
    registry = TempFileRegistry()

    def add_many(prefix):
        for i in range(200):
            registry.add(tmp_path / f"{prefix}-{i}.wav")

    threads = [threading.Thread(target=add_many, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(registry) == 800
    assert registry.snapshot() == sorted(registry.snapshot())
