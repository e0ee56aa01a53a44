"""
Item Pipeline
=============
Drives one input file through its four steps:

    text-extraction -> audio-conversion -> itunes-import -> cleanup

Each executed step goes through the StepRunner; the last two are skipped
with an explicit reason when they do not apply.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Optional

from ..app.config import WorkflowConfig
from ..app.events import EventBus, EventName
from ..audio.tempfiles import TempFileRegistry
from ..concurrency import call_collaborator
from ..errors import (
    CatalogUnavailableError,
    ExtractionError,
    PipelineStepError,
    validate_audio_file,
)
from .models import (
    ConversionResult,
    ItemOutcome,
    StepName,
    StepOutcome,
    StepResult,
    WorkItem,
)
from .output import OutputPlacementPolicy, OutputTarget
from .steps import StepRunner

logger = logging.getLogger(__name__)

ITUNES_DISABLED_REASON = "iTunes integration disabled"
DIRECT_OUTPUT_REASON = "Direct output mode - no temp files to clean"


def _field(extracted: Any, name: str, default: Any = None) -> Any:
    """Read a field from an ExtractedText or a plain mapping."""
    if isinstance(extracted, dict):
        return extracted.get(name, default)
    return getattr(extracted, name, default)


class ItemPipeline:
    """
    Runs the per-item steps for one WorkItem.

    Example:
        pipeline = ItemPipeline(extractor, coordinator, placement=policy)
        outcome = await pipeline.run(WorkItem(Path("a.txt"), 0), config)
    """

    def __init__(
        self,
        extractor,
        coordinator,
        importer=None,
        placement: Optional[OutputPlacementPolicy] = None,
        runner: Optional[StepRunner] = None,
        events: Optional[EventBus] = None,
        temp_files: Optional[TempFileRegistry] = None,
    ):
        """
        Args:
            extractor: Object with ``extract_text(path)``
            coordinator: SynthesisCoordinator (or compatible ``synthesize``)
            importer: Object with ``import_audio_file(path, title)``
            placement: Output placement policy (built from config if None)
            runner: Step runner (shares the events bus if None)
            events: Event bus for file:* notifications
            temp_files: Registry for temporary outputs
        """
        self.extractor = extractor
        self.coordinator = coordinator
        self.importer = importer
        self.events = events or EventBus()
        self.runner = runner or StepRunner(self.events)
        self.temp_files = temp_files if temp_files is not None else TempFileRegistry()
        self.placement = placement

    def _placement_for(self, config: WorkflowConfig) -> OutputPlacementPolicy:
        if self.placement is None:
            audio_format = config.output_format or getattr(
                getattr(self.coordinator, "backend", None), "audio_format", "aiff"
            )
            self.placement = OutputPlacementPolicy(
                mode=config.output_mode,
                audio_format=audio_format,
                output_dir=config.output_dir,
                temp_dir=config.temp_dir,
                overwrite=config.overwrite_existing,
                temp_files=self.temp_files,
            )
        return self.placement

    async def run(self, item: WorkItem, config: WorkflowConfig) -> ItemOutcome:
        """
        Process one item.

        Returns:
            ItemOutcome (success=False on failure when continue_on_error)

        Raises:
            PipelineStepError: A step failed and continue_on_error is False
        """
        path = Path(item.path)
        outcome = ItemOutcome(path=path, index=item.index)
        self.events.emit(EventName.FILE_STARTED, file_path=str(path))

        # 1. text-extraction
        extracted_result = await self._run_step(
            path, StepName.TEXT_EXTRACTION, lambda: self._extract(path), config
        )
        outcome.steps[StepName.TEXT_EXTRACTION.value] = extracted_result
        if not extracted_result.succeeded:
            return self._fail(outcome, extracted_result, config)
        extracted = extracted_result.payload

        # 2. audio-conversion
        target: Optional[OutputTarget] = None
        try:
            conversion_result, target = await self._convert(path, extracted, config)
            outcome.steps[StepName.AUDIO_CONVERSION.value] = conversion_result
            if not conversion_result.succeeded:
                return self._fail(outcome, conversion_result, config)

            # 3. itunes-import
            if config.enable_itunes_integration:
                title = (_field(extracted, "metadata") or {}).get("title") or path.stem
                audio_path = conversion_result.payload.audio_path
                import_result = await self._run_step(
                    path, StepName.ITUNES_IMPORT, lambda: self._import(audio_path, title), config
                )
            else:
                import_result = StepResult.skip(StepName.ITUNES_IMPORT.value, ITUNES_DISABLED_REASON)
            outcome.steps[StepName.ITUNES_IMPORT.value] = import_result
            if import_result.outcome == StepOutcome.FAILURE:
                self._discard_temp_output(target)
                return self._fail(outcome, import_result, config)

            # 4. cleanup
            if not target.direct:
                cleanup_result = await self._run_step(
                    path, StepName.CLEANUP, lambda: self._cleanup(target), config
                )
            else:
                cleanup_result = StepResult.skip(StepName.CLEANUP.value, DIRECT_OUTPUT_REASON)
            outcome.steps[StepName.CLEANUP.value] = cleanup_result
            if cleanup_result.outcome == StepOutcome.FAILURE:
                return self._fail(outcome, cleanup_result, config)
        finally:
            if target is not None and self.placement is not None:
                self.placement.release(target)

        outcome.success = True
        outcome.end_time = time.time()
        logger.info(f"Converted {path.name} in {outcome.duration:.1f}s")
        self.events.emit(EventName.FILE_COMPLETED, file_path=str(path), result=outcome)
        return outcome

    async def _run_step(
        self,
        path: Path,
        step: StepName,
        operation,
        config: WorkflowConfig,
    ) -> StepResult:
        self.events.emit(EventName.FILE_STEP, file_path=str(path), step=step.value)
        return await self.runner.run(step.value, operation, config.retry_attempts)

    async def _extract(self, path: Path):
        extracted = await call_collaborator(self.extractor.extract_text, path)
        content = _field(extracted, "content")
        if not content or not str(content).strip():
            raise ExtractionError("No readable text content found", file_path=path)
        return extracted

    async def _convert(self, path: Path, extracted, config: WorkflowConfig) -> tuple[StepResult, Optional[OutputTarget]]:
        step = StepName.AUDIO_CONVERSION.value
        self.events.emit(EventName.FILE_STEP, file_path=str(path), step=step)

        try:
            target = self._placement_for(config).place(path)
        except Exception as e:
            logger.warning(f"Could not place output for {path.name}: {e}")
            return StepResult(step_name=step, outcome=StepOutcome.FAILURE, error=e, attempts=1), None

        content = str(_field(extracted, "content"))

        async def convert() -> ConversionResult:
            synthesis = await self.coordinator.synthesize(content, target.path, config.synthesis)
            size = await call_collaborator(validate_audio_file, target.path, config.max_audio_size)
            return ConversionResult(
                audio_path=target.path,
                output_mode=target.mode,
                method=synthesis.method,
                chunk_count=synthesis.chunk_count,
                word_count=len(content.split()),
                estimated_duration=synthesis.estimated_duration,
                file_size=size,
                engine=synthesis.engine,
            )

        result = await self.runner.run(step, convert, config.retry_attempts)
        if not result.succeeded:
            self._remove_partial(target)
        return result, target

    async def _import(self, audio_path: Path, title: str):
        if self.importer is None:
            raise CatalogUnavailableError("No catalog importer configured")
        return await call_collaborator(self.importer.import_audio_file, audio_path, title)

    async def _cleanup(self, target: OutputTarget) -> dict:
        removed = await call_collaborator(self.temp_files.delete, target.path)
        return {"removed": [str(target.path)] if removed else []}

    def _remove_partial(self, target: OutputTarget) -> None:
        self.temp_files.discard(target.path)
        try:
            target.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove partial output {target.path}: {e}")

    def _discard_temp_output(self, target: Optional[OutputTarget]) -> None:
        if target is not None and not target.direct:
            self._remove_partial(target)

    def _fail(self, outcome: ItemOutcome, result: StepResult, config: WorkflowConfig) -> ItemOutcome:
        outcome.success = False
        outcome.error = result.error
        outcome.failed_step = result.step_name
        outcome.end_time = time.time()

        logger.error(f"{outcome.path.name} failed at {result.step_name}: {result.error}")
        self.events.emit(
            EventName.FILE_FAILED,
            file_path=str(outcome.path),
            error=result.error,
            step=result.step_name,
        )

        if not config.continue_on_error:
            raise PipelineStepError(result.step_name, result.error, outcome.path, outcome)
        return outcome
