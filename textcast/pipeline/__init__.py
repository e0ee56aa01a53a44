"""
Pipeline Module
================
Batch orchestration: discovery, concurrent groups, per-item steps and
step-scoped retry.
"""

from .models import (
    BatchReport,
    BatchState,
    ConversionResult,
    ItemOutcome,
    StepName,
    StepOutcome,
    StepResult,
    WorkItem,
)
from .steps import StepRunner
from .output import OutputPlacementPolicy, OutputTarget
from .item import ItemPipeline
from .scheduler import BatchScheduler

__all__ = [
    "BatchReport",
    "BatchState",
    "ConversionResult",
    "ItemOutcome",
    "StepName",
    "StepOutcome",
    "StepResult",
    "WorkItem",
    "StepRunner",
    "OutputPlacementPolicy",
    "OutputTarget",
    "ItemPipeline",
    "BatchScheduler",
]
