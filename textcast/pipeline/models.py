"""
Pipeline Data Models
====================
Values passed between the batch scheduler, the item pipeline and the step
runner.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..app.events import BatchStatus
from ..errors import describe_error


class StepName(str, Enum):
    """Per-item pipeline steps, in execution order."""
    TEXT_EXTRACTION = "text-extraction"
    AUDIO_CONVERSION = "audio-conversion"
    ITUNES_IMPORT = "itunes-import"
    CLEANUP = "cleanup"


class StepOutcome(str, Enum):
    """Terminal state of one step."""
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class WorkItem:
    """One discovered input file."""
    path: Path
    index: int


@dataclass
class StepResult:
    """Result of one pipeline step."""
    step_name: str
    outcome: StepOutcome
    payload: Any = None
    error: Optional[BaseException] = None
    reason: Optional[str] = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome == StepOutcome.SUCCESS

    @property
    def skipped(self) -> bool:
        return self.outcome == StepOutcome.SKIPPED

    @classmethod
    def skip(cls, step_name: str, reason: str) -> "StepResult":
        return cls(step_name=step_name, outcome=StepOutcome.SKIPPED, reason=reason)

    def to_dict(self) -> dict:
        payload = self.payload
        if hasattr(payload, "to_dict"):
            payload = payload.to_dict()
        return {
            "step": self.step_name,
            "outcome": self.outcome.value,
            "payload": payload,
            "error": describe_error(self.error) if self.error else None,
            "reason": self.reason,
            "attempts": self.attempts,
        }


@dataclass
class ConversionResult:
    """Payload of a successful audio-conversion step."""
    audio_path: Path
    output_mode: str
    method: str
    chunk_count: Optional[int]
    word_count: int
    estimated_duration: int
    file_size: int
    engine: str = ""

    def to_dict(self) -> dict:
        return {
            "audio_path": str(self.audio_path),
            "output_mode": self.output_mode,
            "method": self.method,
            "chunk_count": self.chunk_count,
            "word_count": self.word_count,
            "estimated_duration": self.estimated_duration,
            "file_size": self.file_size,
            "engine": self.engine,
        }


@dataclass
class ItemOutcome:
    """Everything that happened to one WorkItem."""
    path: Path
    index: int = 0
    success: bool = False
    steps: dict[str, StepResult] = field(default_factory=dict)
    error: Optional[BaseException] = None
    failed_step: Optional[str] = None
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    @property
    def duration(self) -> float:
        """Processing time in seconds."""
        if self.end_time is None:
            return 0.0
        return self.end_time - self.start_time

    @property
    def audio_path(self) -> Optional[Path]:
        step = self.steps.get(StepName.AUDIO_CONVERSION.value)
        if step is None or not step.succeeded or step.payload is None:
            return None
        return getattr(step.payload, "audio_path", None)

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "index": self.index,
            "success": self.success,
            "steps": {name: result.to_dict() for name, result in self.steps.items()},
            "error": describe_error(self.error) if self.error else None,
            "failed_step": self.failed_step,
            "duration": self.duration,
        }


@dataclass
class BatchState:
    """
    Mutable state of one batch run.

    Owned by a single BatchScheduler; other code only sees snapshots.
    """
    status: BatchStatus = BatchStatus.IDLE
    total_items: int = 0
    processed_items: int = 0
    successful_items: int = 0
    failed_items: int = 0
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    @property
    def progress(self) -> float:
        if self.total_items == 0:
            return 0.0
        return self.processed_items / self.total_items

    @property
    def duration(self) -> float:
        if self.start_time is None:
            return 0.0
        return (self.end_time or time.time()) - self.start_time

    def snapshot(self) -> dict:
        return {
            "status": self.status.value,
            "total_items": self.total_items,
            "processed_items": self.processed_items,
            "successful_items": self.successful_items,
            "failed_items": self.failed_items,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "progress": self.progress,
            "duration": self.duration,
        }


@dataclass
class BatchReport:
    """Returned by BatchScheduler.run()."""
    success: bool
    summary: dict
    results: list[ItemOutcome]
    duration: float

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "summary": self.summary,
            "results": [r.to_dict() for r in self.results],
            "duration": self.duration,
        }
