"""
Test Audio Reassembly
=====================
Strategy chain ordering, failure reporting and container-aware binary
concatenation.
"""

import struct
from pathlib import Path

import pytest

from textcast.audio.reassembly import (
    AudioSegment,
    BinaryConcatStrategy,
    FFmpegConcatStrategy,
    PydubConcatStrategy,
    ReassemblyStrategy,
    concat_aiff,
    concat_wav,
    default_strategies,
    reassemble,
)
from textcast.errors import FFmpegNotFoundError, ReassemblyFailedError

from conftest import make_wav, read_wav_frames


def make_aiff(frames: bytes, channels: int = 1, bits: int = 16, sample_rate_ext: bytes = b"\x40\x0b\xfa\x00\x00\x00\x00\x00\x00\x00") -> bytes:
    frame_bytes = channels * bits // 8
    comm = struct.pack(">hIh", channels, len(frames) // frame_bytes, bits) + sample_rate_ext
    ssnd = struct.pack(">II", 0, 0) + frames
    body = b"AIFF"
    body += b"COMM" + struct.pack(">I", len(comm)) + comm
    body += b"SSND" + struct.pack(">I", len(ssnd)) + ssnd
    return b"FORM" + struct.pack(">I", len(body)) + body


class RecordingStrategy(ReassemblyStrategy):
    def __init__(self, name, fail=None):
        self.name = name
        self.fail = fail
        self.calls = []

    def merge(self, inputs, output_path):
        self.calls.append(list(inputs))
        if self.fail:
            raise RuntimeError(self.fail)
        Path(output_path).write_bytes(b"merged")
        return output_path


def segments_for(tmp_path, count):
    segments = []
    for i in range(count):
        path = tmp_path / f"seg{i}.wav"
        path.write_bytes(make_wav(struct.pack("<h", i)))
        segments.append(AudioSegment(file_path=path, ordinal=i))
    return segments


class TestReassemble:
    def test_first_working_strategy_wins(self, tmp_path):
        primary = RecordingStrategy("primary")
        fallback = RecordingStrategy("fallback")
        used = reassemble(segments_for(tmp_path, 2), tmp_path / "out.wav", [primary, fallback])

        assert used == "primary"
        assert fallback.calls == []

    def test_falls_back_when_primary_fails(self, tmp_path):
        primary = RecordingStrategy("primary", fail="not installed")
        fallback = RecordingStrategy("fallback")
        used = reassemble(segments_for(tmp_path, 2), tmp_path / "out.wav", [primary, fallback])

        assert used == "fallback"
        assert len(primary.calls) == 1

    def test_all_strategies_failing_lists_each_reason(self, tmp_path):
        strategies = [RecordingStrategy("a", fail="boom a"), RecordingStrategy("b", fail="boom b")]
        with pytest.raises(ReassemblyFailedError) as exc_info:
            reassemble(segments_for(tmp_path, 2), tmp_path / "out.wav", strategies)

        assert exc_info.value.reasons == {"a": "boom a", "b": "boom b"}

    def test_segments_are_merged_in_ordinal_order(self, tmp_path):
        segments = segments_for(tmp_path, 3)
        strategy = RecordingStrategy("r")
        reassemble(list(reversed(segments)), tmp_path / "out.wav", [strategy])

        assert strategy.calls[0] == [s.file_path for s in segments]

    def test_missing_ordinal_is_rejected(self, tmp_path):
        segments = segments_for(tmp_path, 3)
        del segments[1]
        strategy = RecordingStrategy("r")

        with pytest.raises(ReassemblyFailedError):
            reassemble(segments, tmp_path / "out.wav", [strategy])
        assert strategy.calls == []

    def test_count_mismatch_is_rejected(self, tmp_path):
        with pytest.raises(ReassemblyFailedError):
            reassemble(segments_for(tmp_path, 2), tmp_path / "out.wav", [RecordingStrategy("r")], expected_count=3)

    def test_default_chain_order(self):
        assert [s.name for s in default_strategies()] == ["ffmpeg", "pydub", "binary"]


class TestFFmpegStrategy:
    def test_missing_ffmpeg_raises(self, tmp_path, mocker):
        mocker.patch("textcast.audio.reassembly.shutil.which", return_value=None)
        with pytest.raises(FFmpegNotFoundError):
            FFmpegConcatStrategy().merge([tmp_path / "a.wav"], tmp_path / "out.wav")

    def test_builds_concat_demuxer_command(self, tmp_path, mocker):
        mocker.patch("textcast.audio.reassembly.shutil.which", return_value="/usr/bin/ffmpeg")
        run = mocker.patch("textcast.audio.reassembly.subprocess.run")
        run.return_value.returncode = 0

        FFmpegConcatStrategy().merge([tmp_path / "a.wav", tmp_path / "b.wav"], tmp_path / "out.wav")

        cmd = run.call_args[0][0]
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-f") + 1] == "concat"
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert cmd[-1] == str(tmp_path / "out.wav")

    def test_nonzero_exit_raises(self, tmp_path, mocker):
        mocker.patch("textcast.audio.reassembly.shutil.which", return_value="/usr/bin/ffmpeg")
        run = mocker.patch("textcast.audio.reassembly.subprocess.run")
        run.return_value.returncode = 1
        run.return_value.stderr = "Invalid data"

        with pytest.raises(RuntimeError, match="Invalid data"):
            FFmpegConcatStrategy().merge([tmp_path / "a.wav"], tmp_path / "out.wav")


class TestPydubStrategy:
    def test_wav_segments_are_decoded_and_joined(self, tmp_path):
        first = tmp_path / "a.wav"
        second = tmp_path / "b.wav"
        first.write_bytes(make_wav(struct.pack("<3h", 1, 2, 3)))
        second.write_bytes(make_wav(struct.pack("<2h", 4, 5)))

        out = PydubConcatStrategy().merge([first, second], tmp_path / "joined" / "out.wav")

        assert out == tmp_path / "joined" / "out.wav"
        assert read_wav_frames(out.read_bytes()) == struct.pack("<5h", 1, 2, 3, 4, 5)

    def test_no_inputs(self, tmp_path):
        with pytest.raises(ValueError):
            PydubConcatStrategy().merge([], tmp_path / "out.wav")

    def test_export_failure_falls_through_to_binary(self, tmp_path, mocker):
        mocker.patch(
            "textcast.audio.reassembly.PydubSegment.export",
            side_effect=RuntimeError("encoder missing"),
        )
        out = tmp_path / "out.wav"

        used = reassemble(segments_for(tmp_path, 2), out, [PydubConcatStrategy(), BinaryConcatStrategy()])

        assert used == "binary"
        assert read_wav_frames(out.read_bytes()) == struct.pack("<2h", 0, 1)

    def test_export_failure_is_reported(self, tmp_path, mocker):
        mocker.patch(
            "textcast.audio.reassembly.PydubSegment.export",
            side_effect=RuntimeError("encoder missing"),
        )
        with pytest.raises(ReassemblyFailedError) as exc_info:
            reassemble(segments_for(tmp_path, 2), tmp_path / "out.wav", [PydubConcatStrategy()])

        assert exc_info.value.reasons == {"pydub": "encoder missing"}


class TestBinaryConcatenation:
    def test_wav_frames_are_appended_and_sizes_rewritten(self):
        merged = concat_wav([make_wav(b"\x01\x00\x02\x00"), make_wav(b"\x03\x00")])

        assert read_wav_frames(merged) == b"\x01\x00\x02\x00\x03\x00"
        (riff_size,) = struct.unpack("<I", merged[4:8])
        assert riff_size == len(merged) - 8

    def test_wav_with_different_format_is_rejected(self):
        with pytest.raises(ValueError):
            concat_wav([make_wav(b"\x00\x00", sample_rate=8000), make_wav(b"\x00\x00", sample_rate=16000)])

    def test_aiff_sound_data_and_frame_count(self):
        merged = concat_aiff([make_aiff(b"\x00\x01\x00\x02"), make_aiff(b"\x00\x03")])

        assert merged[:4] == b"FORM" and merged[8:12] == b"AIFF"
        (form_size,) = struct.unpack(">I", merged[4:8])
        assert form_size == len(merged) - 8

        comm_at = merged.index(b"COMM")
        (frames,) = struct.unpack(">I", merged[comm_at + 10:comm_at + 14])
        assert frames == 3

        ssnd_at = merged.index(b"SSND")
        (ssnd_size,) = struct.unpack(">I", merged[ssnd_at + 4:ssnd_at + 8])
        assert merged[ssnd_at + 16:ssnd_at + 8 + ssnd_size] == b"\x00\x01\x00\x02\x00\x03"

    def test_strategy_copies_single_input(self, tmp_path):
        source = tmp_path / "only.wav"
        source.write_bytes(make_wav(b"\x05\x00"))
        out = BinaryConcatStrategy().merge([source], tmp_path / "out.wav")
        assert out.read_bytes() == source.read_bytes()

    def test_strategy_rejects_unknown_container(self, tmp_path):
        a = tmp_path / "a.mp3"
        b = tmp_path / "b.mp3"
        a.write_bytes(b"ID3....")
        b.write_bytes(b"ID3....")
        with pytest.raises(ValueError):
            BinaryConcatStrategy().merge([a, b], tmp_path / "out.mp3")
