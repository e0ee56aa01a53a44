"""
Batch Scheduler
===============
Discovers input files and drives each through the ItemPipeline in
fixed-size concurrent groups.

State machine:
    idle -> running -> (paused <-> running) -> stopped | completed | failed

A group's items all start together; the next group starts only after the
whole group has settled. pause() and stop() take effect between groups and
never interrupt in-flight items.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

from ..app.config import WorkflowConfig
from ..app.events import BatchStatus, EventBus, EventName
from ..audio.tempfiles import TempFileRegistry
from ..catalog.itunes import ITunesImporter
from ..concurrency import PauseGate, call_collaborator, partition
from ..errors import (
    CatalogUnavailableError,
    FileDiscoveryError,
    NoFilesFoundError,
    PipelineStepError,
    TextcastError,
    UnsupportedFileTypeError,
    describe_error,
)
from ..ingestion.text_extractor import TextFileExtractor
from ..tts.backends import BackendConfig, detect_backend
from ..tts.coordinator import SynthesisCoordinator
from .item import ItemPipeline
from .models import BatchReport, BatchState, ItemOutcome, WorkItem
from .steps import StepRunner

logger = logging.getLogger(__name__)

BatchInput = Union[str, Path, Sequence[Union[str, Path]]]

UNEXPECTED_FAILURE_STEP = "batch-processing"


class BatchScheduler:
    """
    Concurrency-bounded, pausable batch runner.

    Collaborators not passed in are created on initialize(): a
    TextFileExtractor, the platform speech backend wrapped in a
    SynthesisCoordinator, and (with catalog integration on) an ITunesImporter.

    Example:
        scheduler = BatchScheduler(WorkflowConfig(concurrency=2))
        report = await scheduler.run("articles/")
        print(report.summary["successful_files"])
    """

    def __init__(
        self,
        config: Optional[WorkflowConfig] = None,
        extractor=None,
        coordinator: Optional[SynthesisCoordinator] = None,
        backend=None,
        importer=None,
        events: Optional[EventBus] = None,
        temp_files: Optional[TempFileRegistry] = None,
    ):
        self.config = config or WorkflowConfig()
        self.events = events or EventBus()
        self.temp_files = temp_files if temp_files is not None else TempFileRegistry()

        self._given_extractor = extractor
        self._given_coordinator = coordinator
        self._given_backend = backend
        self._given_importer = importer

        self.extractor = None
        self.coordinator: Optional[SynthesisCoordinator] = None
        self.importer = None
        self.pipeline: Optional[ItemPipeline] = None

        self._state = BatchState()
        self._gate = PauseGate()
        self._results: list[ItemOutcome] = []
        self._errors: list[dict] = []
        self._active: set[Path] = set()
        self._initialized = False

    # ==================== Setup ====================

    async def initialize(self) -> None:
        """
        Validate config and prepare every collaborator.

        Raises:
            ConfigurationError, BackendUnavailableError, CatalogUnavailableError
            (after emitting workflow:error with phase "initialization")
        """
        try:
            self.config.validate()
            self.config.temp_dir.mkdir(parents=True, exist_ok=True)
            self.config.synthesis.temp_dir.mkdir(parents=True, exist_ok=True)

            self.extractor = self._given_extractor or TextFileExtractor(self.config.extraction)

            if self._given_coordinator is not None:
                self.coordinator = self._given_coordinator
            else:
                backend = self._given_backend or detect_backend(
                    BackendConfig(process_timeout=self.config.synthesis.process_timeout)
                )
                self.coordinator = SynthesisCoordinator(
                    backend, temp_files=self.temp_files, options=self.config.synthesis
                )
            await self.coordinator.ensure_available()

            self.importer = None
            if self.config.enable_itunes_integration:
                self.importer = self._given_importer or ITunesImporter(
                    playlist_prefix=self.config.playlist_prefix,
                    artist=self.config.artist,
                )
                available = await call_collaborator(self.importer.is_available)
                if not available:
                    raise CatalogUnavailableError("iTunes/Music app not available")

            self.pipeline = ItemPipeline(
                extractor=self.extractor,
                coordinator=self.coordinator,
                importer=self.importer,
                runner=StepRunner(self.events, retry_delay=self.config.retry_delay),
                events=self.events,
                temp_files=self.temp_files,
            )
        except Exception as e:
            logger.error(f"Initialization failed: {describe_error(e)}")
            self.events.emit(EventName.WORKFLOW_ERROR, phase="initialization", error=e)
            raise

        self._initialized = True
        logger.debug("Batch scheduler initialized")

    # ==================== Discovery ====================

    def discover(self, input: BatchInput) -> list[WorkItem]:
        """
        Resolve input into WorkItems.

        Args:
            input: A file, a directory (scanned recursively) or a list of files

        Returns:
            WorkItems in discovery order

        Raises:
            UnsupportedFileTypeError / FileDiscoveryError for a bad single
            file, a missing path or an unusable input type (after emitting
            workflow:error with phase "file-discovery")
        """
        try:
            paths = self._discover_paths(input)
        except TextcastError as e:
            self.events.emit(EventName.WORKFLOW_ERROR, phase="file-discovery", error=e)
            raise
        except OSError as e:
            error = FileDiscoveryError(f"File discovery failed: {e}", file_path=_as_path(input))
            self.events.emit(EventName.WORKFLOW_ERROR, phase="file-discovery", error=error)
            raise error from e

        return [WorkItem(path=path, index=index) for index, path in enumerate(paths)]

    def _supported(self, path: Path) -> bool:
        return path.suffix.lower() in self.config.extraction.supported_extensions

    def _discover_paths(self, input: BatchInput) -> list[Path]:
        if isinstance(input, (str, os.PathLike)):
            path = Path(input)
            if path.is_file():
                return [self._validate_single_file(path)]
            if path.is_dir():
                return sorted(self._scan_directory(path))
            if path.exists():
                raise FileDiscoveryError("Input is neither a file nor a directory", file_path=path)
            raise FileDiscoveryError("Input not found", file_path=path)

        if isinstance(input, Iterable):
            return self._validate_file_list(input)

        raise FileDiscoveryError(
            "Invalid input type. Expected a file/directory path or a list of file paths."
        )

    def _validate_single_file(self, path: Path) -> Path:
        if not self._supported(path):
            raise UnsupportedFileTypeError(
                path.suffix.lower(), self.config.extraction.supported_extensions, path
            )
        if not os.access(path, os.R_OK):
            raise FileDiscoveryError("File is not readable", file_path=path)
        return path

    def _scan_directory(self, directory: Path) -> list[Path]:
        files: list[Path] = []
        for entry in directory.iterdir():
            if entry.is_file():
                if not self._supported(entry):
                    continue
                if os.access(entry, os.R_OK):
                    files.append(entry)
                else:
                    self._warn(entry, "Cannot read file: permission denied")
            elif entry.is_dir() and not entry.name.startswith("."):
                files.extend(self._scan_directory(entry))
        return files

    def _validate_file_list(self, entries: Iterable[Union[str, Path]]) -> list[Path]:
        files: list[Path] = []
        for entry in entries:
            path = Path(entry)
            try:
                if not path.exists():
                    self._warn(path, "Cannot access file: file not found")
                    continue
                if not path.is_file():
                    self._warn(path, "Not a file, skipping")
                    continue
                if not self._supported(path):
                    self._warn(path, f"Unsupported file type: {path.suffix.lower() or '(none)'}, skipping")
                    continue
                if not os.access(path, os.R_OK):
                    self._warn(path, "Cannot access file: permission denied")
                    continue
            except OSError as e:
                self._warn(path, f"Cannot access file: {e}")
                continue
            files.append(path)
        return files

    def _warn(self, path: Path, reason: str) -> None:
        logger.warning(f"{path}: {reason}")
        self.events.emit(EventName.FILE_WARNING, file_path=str(path), reason=reason)

    # ==================== Execution ====================

    async def run(self, input: BatchInput, config: Optional[WorkflowConfig] = None) -> BatchReport:
        """
        Discover and process every file.

        Args:
            input: File, directory or list of files
            config: Replaces the scheduler's config for this and later runs

        Returns:
            BatchReport with summary and per-item results (completion order)

        Raises:
            TextcastError: Initialization or discovery failed
            PipelineStepError: An item failed with continue_on_error=False
        """
        if self._state.status in (BatchStatus.RUNNING, BatchStatus.PAUSED):
            raise RuntimeError("A batch is already running")

        if not isinstance(input, (str, os.PathLike)) and isinstance(input, Iterable):
            input = list(input)
        if config is not None:
            self.config = config
            self._initialized = False
        if not self._initialized:
            await self.initialize()

        self._reset()
        self._state.status = BatchStatus.RUNNING
        self._state.start_time = time.time()
        self.events.emit(EventName.WORKFLOW_STARTED, input=_describe_input(input), options=self.config.to_dict())

        try:
            items = self.discover(input)
            if not items:
                error = NoFilesFoundError()
                self.events.emit(EventName.WORKFLOW_ERROR, phase="file-discovery", error=error)
                raise error

            self._state.total_items = len(items)
            self.events.emit(
                EventName.WORKFLOW_FILES_DISCOVERED,
                count=len(items),
                files=[str(item.path) for item in items],
            )
            logger.info(f"Processing {len(items)} file(s) with concurrency {self.config.concurrency}")

            await self._process_groups(items)
        except BaseException as e:
            self._state.status = BatchStatus.FAILED
            self._state.end_time = time.time()
            self.events.emit(EventName.WORKFLOW_FAILED, error=e, state=self.get_state())
            raise

        if self._state.status != BatchStatus.STOPPED:
            self._state.status = BatchStatus.COMPLETED
        self._state.end_time = time.time()

        summary = self._summary()
        results = list(self._results)
        self.events.emit(EventName.WORKFLOW_COMPLETED, summary=summary, results=results)
        logger.info(
            f"Batch finished: {summary['successful_files']}/{summary['total_files']} converted "
            f"in {summary['processing_time']:.1f}s"
        )

        return BatchReport(
            success=self._state.failed_items == 0,
            summary=summary,
            results=results,
            duration=self._state.duration,
        )

    async def _process_groups(self, items: list[WorkItem]) -> None:
        for group in partition(items, self.config.concurrency):
            await self._gate.wait()
            if self._state.status == BatchStatus.STOPPED:
                logger.info("Batch stopped; remaining groups not started")
                break

            settled = await asyncio.gather(
                *(self._run_item(item) for item in group),
                return_exceptions=True,
            )

            for result in settled:
                if isinstance(result, asyncio.CancelledError):
                    raise result
            fatal = next((r for r in settled if isinstance(r, PipelineStepError)), None)
            if fatal is not None:
                raise fatal

    async def _run_item(self, item: WorkItem) -> ItemOutcome:
        self._active.add(item.path)
        try:
            outcome = await self.pipeline.run(item, self.config)
        except PipelineStepError as e:
            self._record(e.outcome or _failed_outcome(item, e.cause, e.step))
            raise
        except Exception as e:
            # Failures outside the step runner still count against this item
            outcome = _failed_outcome(item, e, UNEXPECTED_FAILURE_STEP)
            self.events.emit(
                EventName.FILE_FAILED,
                file_path=str(item.path),
                error=e,
                step=UNEXPECTED_FAILURE_STEP,
            )
            self._record(outcome)
            if not self.config.continue_on_error:
                raise PipelineStepError(UNEXPECTED_FAILURE_STEP, e, item.path, outcome) from e
            return outcome
        finally:
            self._active.discard(item.path)

        self._record(outcome)
        return outcome

    def _record(self, outcome: ItemOutcome) -> None:
        self._results.append(outcome)
        self._state.processed_items += 1
        if outcome.success:
            self._state.successful_items += 1
        else:
            self._state.failed_items += 1
            self._errors.append({
                "file_path": str(outcome.path),
                "step": outcome.failed_step,
                "error": describe_error(outcome.error) if outcome.error else None,
            })

        self.events.emit(
            EventName.WORKFLOW_PROGRESS,
            processed=self._state.processed_items,
            total=self._state.total_items,
            progress=self._state.progress,
        )

    def _reset(self) -> None:
        self._state = BatchState()
        self._gate.reset()
        self._results = []
        self._errors = []
        self._active = set()

    def _summary(self) -> dict:
        total = self._state.total_items
        durations = [r.duration for r in self._results]
        return {
            "total_files": total,
            "successful_files": self._state.successful_items,
            "failed_files": self._state.failed_items,
            "processing_time": self._state.duration,
            "success_rate": self._state.successful_items / total if total else 0.0,
            "average_processing_time": sum(durations) / len(durations) if durations else 0.0,
            "errors": list(self._errors),
        }

    # ==================== Control ====================

    def pause(self) -> bool:
        """
        Hold further groups; in-flight items keep running.

        Returns:
            True if the batch was running and is now paused
        """
        if self._state.status != BatchStatus.RUNNING:
            return False
        self._state.status = BatchStatus.PAUSED
        self._gate.close()
        logger.info("Batch paused")
        self.events.emit(EventName.WORKFLOW_PAUSED)
        return True

    def resume(self) -> bool:
        """
        Let a paused batch continue.

        Returns:
            True if the batch was paused and is now running
        """
        if self._state.status != BatchStatus.PAUSED:
            return False
        self._state.status = BatchStatus.RUNNING
        self._gate.open()
        logger.info("Batch resumed")
        self.events.emit(EventName.WORKFLOW_RESUMED)
        return True

    def stop(self) -> bool:
        """
        Stop scheduling new groups and delete tracked temp files.

        Returns:
            False if the batch had already finished
        """
        if self._state.status in (BatchStatus.STOPPED, BatchStatus.COMPLETED, BatchStatus.FAILED):
            return False
        self._state.status = BatchStatus.STOPPED
        self._gate.release()

        failed = self.temp_files.cleanup_all()
        if failed:
            logger.warning(f"{len(failed)} temp file(s) could not be removed on stop")
        logger.info("Batch stopped")
        self.events.emit(EventName.WORKFLOW_STOPPED)
        return True

    def get_state(self) -> dict:
        """Snapshot of the batch state with progress and elapsed time."""
        state = self._state.snapshot()
        state["active_items"] = sorted(str(p) for p in self._active)
        state["errors"] = list(self._errors)
        return state


def _as_path(input: BatchInput) -> Optional[Path]:
    if isinstance(input, (str, os.PathLike)):
        return Path(input)
    return None


def _describe_input(input: BatchInput):
    if isinstance(input, (str, os.PathLike)):
        return str(input)
    if isinstance(input, Iterable):
        return [str(p) for p in input]
    return repr(input)


def _failed_outcome(item: WorkItem, error: BaseException, step: str) -> ItemOutcome:
    outcome = ItemOutcome(path=Path(item.path), index=item.index, success=False)
    outcome.error = error
    outcome.failed_step = step
    outcome.end_time = time.time()
    return outcome
