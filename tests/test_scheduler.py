"""
Test Batch Scheduler
====================
Discovery, bounded group concurrency, failure isolation and the
pause/resume/stop controls.
"""

import asyncio
import os

import pytest

from textcast.app.events import EventName
from textcast.audio.reassembly import BinaryConcatStrategy
from textcast.errors import (
    BackendUnavailableError,
    CatalogUnavailableError,
    ConfigurationError,
    FileDiscoveryError,
    NoFilesFoundError,
    PipelineStepError,
    UnsupportedFileTypeError,
)
from textcast.pipeline.scheduler import BatchScheduler
from textcast.tts.coordinator import SynthesisCoordinator

from conftest import FakeBackend, FakeExtractor, FakeImporter


@pytest.fixture
def make_scheduler(workflow_config, coordinator, events, temp_files):
    def build(extractor=None, coordinator_=None, importer=None, config=None):
        return BatchScheduler(
            config=config or workflow_config,
            extractor=extractor or FakeExtractor(),
            coordinator=coordinator_ or coordinator,
            importer=importer,
            events=events,
            temp_files=temp_files,
        )
    return build


@pytest.fixture
def four_articles(tmp_path):
    directory = tmp_path / "four"
    directory.mkdir()
    for name in ("a", "b", "c", "d"):
        (directory / f"{name}.txt").write_text(f"Story {name} is short. It has two sentences.")
    return directory


class TestDiscovery:
    def test_directory_scan_keeps_supported_files(self, make_scheduler, tmp_path):
        root = tmp_path / "input"
        (root / "d").mkdir(parents=True)
        (root / ".hidden").mkdir()
        (root / "a.txt").write_text("a")
        (root / "b.md").write_text("b")
        (root / "c.pdf").write_text("c")
        (root / "d" / "e.txt").write_text("e")
        (root / ".hidden" / "f.txt").write_text("f")

        items = make_scheduler().discover(root)

        assert [item.path for item in items] == [root / "a.txt", root / "b.md", root / "d" / "e.txt"]
        assert [item.index for item in items] == [0, 1, 2]

    def test_unsupported_single_file_is_fatal(self, make_scheduler, tmp_path, recorder):
        pdf = tmp_path / "x.pdf"
        pdf.write_text("not text")

        with pytest.raises(UnsupportedFileTypeError):
            make_scheduler().discover(pdf)

        errors = recorder.named(EventName.WORKFLOW_ERROR)
        assert errors[0]["phase"] == "file-discovery"

    def test_missing_path_is_fatal(self, make_scheduler, tmp_path):
        with pytest.raises(FileDiscoveryError):
            make_scheduler().discover(tmp_path / "nope")

    def test_file_list_skips_bad_entries_with_warnings(self, make_scheduler, tmp_path, recorder):
        good = tmp_path / "good.txt"
        good.write_text("fine")
        pdf = tmp_path / "bad.pdf"
        pdf.write_text("pdf")
        folder = tmp_path / "folder"
        folder.mkdir()

        items = make_scheduler().discover([tmp_path / "missing.txt", folder, pdf, good])

        assert [item.path for item in items] == [good]
        reasons = [e["reason"] for e in recorder.named(EventName.FILE_WARNING)]
        assert reasons == [
            "Cannot access file: file not found",
            "Not a file, skipping",
            "Unsupported file type: .pdf, skipping",
        ]

    @pytest.mark.skipif(os.name == "nt" or os.geteuid() == 0, reason="needs POSIX permissions as non-root")
    def test_unreadable_file_in_directory_is_warned(self, make_scheduler, tmp_path, recorder):
        root = tmp_path / "input"
        root.mkdir()
        locked = root / "locked.txt"
        locked.write_text("secret")
        locked.chmod(0)
        try:
            items = make_scheduler().discover(root)
        finally:
            locked.chmod(0o644)

        assert items == []
        assert recorder.named(EventName.FILE_WARNING)[0]["reason"] == "Cannot read file: permission denied"

    def test_invalid_input_type(self, make_scheduler):
        with pytest.raises(FileDiscoveryError):
            make_scheduler().discover(42)


@pytest.mark.pipeline
class TestBatchRun:
    @pytest.mark.asyncio
    async def test_all_files_converted(self, make_scheduler, articles, recorder):
        report = await make_scheduler().run(articles)

        assert report.success
        assert report.summary["total_files"] == 3
        assert report.summary["successful_files"] == 3
        assert report.summary["success_rate"] == 1.0
        assert sorted(p.name for p in articles.glob("*.wav")) == ["one.wav", "three.wav", "two.wav"]

        names = recorder.names()
        assert names[0] == "workflow:started"
        assert names[1] == "workflow:files-discovered"
        assert names[-1] == "workflow:completed"
        progress = recorder.named(EventName.WORKFLOW_PROGRESS)
        assert [(e["processed"], e["total"]) for e in progress] == [(1, 3), (2, 3), (3, 3)]

    @pytest.mark.asyncio
    async def test_failed_item_does_not_stop_the_batch(self, make_scheduler, articles, recorder):
        # Discovery order is one, three, two
        scheduler = make_scheduler(extractor=FakeExtractor(fail_for={"three.txt"}))
        report = await scheduler.run(articles)

        assert not report.success
        assert report.summary["successful_files"] == 2
        assert report.summary["failed_files"] == 1
        assert report.summary["errors"][0]["file_path"] == str(articles / "three.txt")
        assert report.summary["errors"][0]["step"] == "text-extraction"

        failed = recorder.named(EventName.FILE_FAILED)
        assert [e["file_path"] for e in failed] == [str(articles / "three.txt")]
        assert scheduler.get_state()["status"] == "completed"

    @pytest.mark.asyncio
    async def test_synthesis_failure_fails_only_that_item(self, make_scheduler, articles, temp_files, recorder):
        backend = FakeBackend(fail_on="Article three")
        scheduler = make_scheduler(
            coordinator_=SynthesisCoordinator(
                backend, strategies=[BinaryConcatStrategy()], temp_files=temp_files
            )
        )
        report = await scheduler.run(articles)

        assert report.summary["successful_files"] == 2
        assert report.summary["failed_files"] == 1
        assert report.summary["errors"][0]["step"] == "audio-conversion"

        failed = recorder.named(EventName.FILE_FAILED)
        assert len(failed) == 1
        assert failed[0]["file_path"] == str(articles / "three.txt")
        assert failed[0]["step"] == "audio-conversion"
        assert [e["file_path"] for e in recorder.named(EventName.FILE_COMPLETED)] == [
            str(articles / "one.txt"),
            str(articles / "two.txt"),
        ]
        assert not (articles / "three.wav").exists()
        assert (articles / "one.wav").exists()
        assert (articles / "two.wav").exists()
        assert len(temp_files) == 0

    @pytest.mark.asyncio
    async def test_stop_on_error_aborts_batch(self, make_scheduler, articles, workflow_config, recorder):
        workflow_config.continue_on_error = False
        scheduler = make_scheduler(extractor=FakeExtractor(fail_for={"one.txt"}))

        with pytest.raises(PipelineStepError):
            await scheduler.run(articles)

        state = scheduler.get_state()
        assert state["status"] == "failed"
        assert state["processed_items"] == 1
        assert len(recorder.named(EventName.WORKFLOW_FAILED)) == 1
        assert not (articles / "two.wav").exists()

    @pytest.mark.asyncio
    async def test_unsupported_single_file_fails_run(self, make_scheduler, tmp_path, recorder):
        pdf = tmp_path / "x.pdf"
        pdf.write_text("not text")
        scheduler = make_scheduler()

        with pytest.raises(UnsupportedFileTypeError):
            await scheduler.run(pdf)

        assert scheduler.get_state()["status"] == "failed"
        assert recorder.named(EventName.WORKFLOW_ERROR)[0]["phase"] == "file-discovery"

    @pytest.mark.asyncio
    async def test_empty_directory_raises_no_files_found(self, make_scheduler, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        with pytest.raises(NoFilesFoundError):
            await make_scheduler().run(empty)

    @pytest.mark.asyncio
    async def test_unexpected_item_error_is_recorded(self, make_scheduler, articles, recorder):
        class ExplodingPipeline:
            async def run(self, item, config):
                raise KeyError("boom")

        scheduler = make_scheduler()
        await scheduler.initialize()
        scheduler.pipeline = ExplodingPipeline()
        report = await scheduler.run(articles)

        assert report.summary["failed_files"] == 3
        assert {e["step"] for e in recorder.named(EventName.FILE_FAILED)} == {"batch-processing"}

    @pytest.mark.asyncio
    async def test_run_while_running_is_rejected(self, make_scheduler, articles):
        scheduler = make_scheduler(coordinator_=SynthesisCoordinator(FakeBackend(delay=0.05)))
        first = asyncio.create_task(scheduler.run(articles))
        while scheduler.get_state()["status"] != "running":
            await asyncio.sleep(0.001)

        with pytest.raises(RuntimeError):
            await scheduler.run(articles)
        await first


@pytest.mark.parallel
class TestGroupConcurrency:
    @pytest.mark.asyncio
    async def test_next_group_starts_after_previous_settles(self, make_scheduler, four_articles, workflow_config, recorder):
        workflow_config.concurrency = 2
        scheduler = make_scheduler(coordinator_=SynthesisCoordinator(FakeBackend(delay=0.05)))
        await scheduler.run(four_articles)

        order = [
            (e.name, os.path.basename(e["file_path"]))
            for e in recorder.events
            if e.name in (EventName.FILE_STARTED, EventName.FILE_COMPLETED)
        ]
        first_group = order[:4]
        assert {e for e in first_group} == {
            (EventName.FILE_STARTED, "a.txt"),
            (EventName.FILE_STARTED, "b.txt"),
            (EventName.FILE_COMPLETED, "a.txt"),
            (EventName.FILE_COMPLETED, "b.txt"),
        }
        # Both items of the first group start before either finishes
        assert [name for name, _ in first_group[:2]] == [EventName.FILE_STARTED] * 2
        assert {path for _, path in order[4:]} == {"c.txt", "d.txt"}

    @pytest.mark.asyncio
    async def test_active_items_never_exceed_concurrency(self, make_scheduler, four_articles, workflow_config, events):
        workflow_config.concurrency = 2
        scheduler = make_scheduler(coordinator_=SynthesisCoordinator(FakeBackend(delay=0.02)))
        seen = []
        events.subscribe(lambda e: seen.append(len(scheduler.get_state()["active_items"])), EventName.FILE_STARTED)

        report = await scheduler.run(four_articles)

        assert report.summary["successful_files"] == 4
        assert max(seen) <= 2

    @pytest.mark.asyncio
    async def test_concurrency_of_one_is_sequential(self, make_scheduler, articles, recorder):
        await make_scheduler().run(articles)

        names = [
            e.name for e in recorder.events
            if e.name in (EventName.FILE_STARTED, EventName.FILE_COMPLETED)
        ]
        assert names == [EventName.FILE_STARTED, EventName.FILE_COMPLETED] * 3


@pytest.mark.pipeline
class TestControls:
    @pytest.mark.asyncio
    async def test_pause_holds_next_group_until_resume(self, make_scheduler, articles, events, recorder):
        scheduler = make_scheduler()
        observed = {}

        def resume_later():
            observed.update(scheduler.get_state())
            scheduler.resume()

        def on_completed(event):
            if not observed and scheduler.pause():
                asyncio.get_running_loop().call_later(0.05, resume_later)

        events.subscribe(on_completed, EventName.FILE_COMPLETED)
        report = await scheduler.run(articles)

        assert observed["status"] == "paused"
        assert observed["processed_items"] == 1
        assert report.summary["successful_files"] == 3

        names = recorder.names()
        paused_at = names.index("workflow:paused")
        resumed_at = names.index("workflow:resumed")
        starts = [i for i, n in enumerate(names) if n == "file:started"]
        assert paused_at < resumed_at < starts[1]

    @pytest.mark.asyncio
    async def test_stop_skips_remaining_groups(self, make_scheduler, articles, events, recorder, temp_files, tmp_path):
        scheduler = make_scheduler()
        leftover = temp_files.add(tmp_path / "leftover.wav")
        leftover.write_bytes(b"x")
        events.subscribe(lambda e: scheduler.stop(), EventName.FILE_COMPLETED)

        report = await scheduler.run(articles)

        assert report.summary["total_files"] == 3
        assert report.summary["successful_files"] == 1
        assert scheduler.get_state()["status"] == "stopped"
        assert len(recorder.named(EventName.WORKFLOW_STOPPED)) == 1
        assert recorder.names()[-1] == "workflow:completed"
        assert not leftover.exists()
        assert len(temp_files) == 0

    @pytest.mark.asyncio
    async def test_controls_outside_valid_states(self, make_scheduler, articles):
        scheduler = make_scheduler()
        assert scheduler.pause() is False
        assert scheduler.resume() is False

        await scheduler.run(articles)

        assert scheduler.pause() is False
        assert scheduler.stop() is False


class TestInitialization:
    @pytest.mark.asyncio
    async def test_unavailable_backend_fails_initialization(self, make_scheduler, articles, recorder):
        scheduler = make_scheduler(coordinator_=SynthesisCoordinator(FakeBackend(available=False)))

        with pytest.raises(BackendUnavailableError):
            await scheduler.run(articles)

        assert recorder.named(EventName.WORKFLOW_ERROR)[0]["phase"] == "initialization"
        assert recorder.named(EventName.FILE_STARTED) == []

    @pytest.mark.asyncio
    async def test_unavailable_catalog_fails_initialization(self, make_scheduler, workflow_config):
        workflow_config.enable_itunes_integration = True
        with pytest.raises(CatalogUnavailableError):
            await make_scheduler(importer=FakeImporter(available=False)).initialize()

    @pytest.mark.asyncio
    async def test_invalid_config_fails_initialization(self, make_scheduler, workflow_config):
        workflow_config.concurrency = 0
        with pytest.raises(ConfigurationError):
            await make_scheduler().initialize()

    @pytest.mark.asyncio
    async def test_backend_is_wrapped_in_coordinator(self, workflow_config, events, articles):
        backend = FakeBackend()
        scheduler = BatchScheduler(workflow_config, extractor=FakeExtractor(), backend=backend, events=events)
        report = await scheduler.run(articles)

        assert report.success
        assert len(backend.calls) == 3

    @pytest.mark.asyncio
    async def test_detected_backend_gets_process_deadline(self, workflow_config, events, mocker):
        workflow_config.synthesis.chunk_timeout = 12.0
        detect = mocker.patch(
            "textcast.pipeline.scheduler.detect_backend", return_value=FakeBackend()
        )
        scheduler = BatchScheduler(workflow_config, extractor=FakeExtractor(), events=events)
        await scheduler.initialize()

        (backend_config,) = detect.call_args.args
        assert backend_config.process_timeout == 12.0
