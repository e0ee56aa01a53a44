"""
Application Module
==================
Workflow configuration and the event contracts shared by every surface.

Key Components:
    - WorkflowConfig: Typed batch settings
    - EventBus: Publish/subscribe hub for workflow events
    - EventName: Event names exposed to CLI/GUI collaborators
"""

from .config import WorkflowConfig
from .events import (
    BatchStatus,
    EventBus,
    EventName,
    EventRecorder,
    WorkflowEvent,
)

__all__ = [
    "WorkflowConfig",
    "BatchStatus",
    "EventBus",
    "EventName",
    "EventRecorder",
    "WorkflowEvent",
]
