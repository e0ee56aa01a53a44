"""
Workflow Event Contracts
========================
Typed events for progress/log/state updates across CLI and other surfaces.

Listeners are called synchronously at each emission point. Subscribers that
prefer not to run inside the pipeline can open a channel instead and drain
events from an ``asyncio.Queue``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class EventName(str, Enum):
    """Event names exposed to CLI/GUI collaborators."""

    WORKFLOW_STARTED = "workflow:started"
    WORKFLOW_FILES_DISCOVERED = "workflow:files-discovered"
    WORKFLOW_PROGRESS = "workflow:progress"
    WORKFLOW_PAUSED = "workflow:paused"
    WORKFLOW_RESUMED = "workflow:resumed"
    WORKFLOW_STOPPED = "workflow:stopped"
    WORKFLOW_COMPLETED = "workflow:completed"
    WORKFLOW_FAILED = "workflow:failed"
    WORKFLOW_ERROR = "workflow:error"
    FILE_STARTED = "file:started"
    FILE_STEP = "file:step"
    FILE_COMPLETED = "file:completed"
    FILE_FAILED = "file:failed"
    FILE_WARNING = "file:warning"
    OPERATION_RETRY = "operation:retry"
    OPERATION_RETRY_FAILED = "operation:retry-failed"


class BatchStatus(str, Enum):
    """Batch lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class WorkflowEvent:
    """One emitted event: a name and its payload."""

    name: EventName
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now_iso)

    def __getitem__(self, key: str) -> Any:
        return self.payload[key]


EventListener = Callable[[WorkflowEvent], None]


class EventBus:
    """
    Synchronous publish/subscribe hub for workflow events.

    Example:
        bus = EventBus()
        bus.subscribe(lambda e: print(e.name, e.payload), EventName.FILE_FAILED)
        bus.emit(EventName.FILE_FAILED, file_path="a.txt", error=err, step="cleanup")
    """

    def __init__(self):
        self._listeners: list[tuple[Optional[EventName], EventListener]] = []
        self._channels: list[tuple[Optional[set[EventName]], asyncio.Queue]] = []

    def subscribe(
        self,
        listener: EventListener,
        name: Optional[EventName] = None,
    ) -> Callable[[], None]:
        """
        Register a listener for one event name, or all events if name is None.

        Returns:
            Function that removes the listener again
        """
        entry = (EventName(name) if name is not None else None, listener)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def channel(self, *names: EventName, maxsize: int = 0) -> asyncio.Queue:
        """
        Open a queue that receives every matching event.

        Args:
            *names: Event names to forward (all events if none given)
            maxsize: Queue bound; events are dropped with a warning when full

        Returns:
            asyncio.Queue of WorkflowEvent
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        wanted = {EventName(n) for n in names} if names else None
        self._channels.append((wanted, queue))
        return queue

    def close_channel(self, queue: asyncio.Queue) -> None:
        """Stop forwarding events to a queue opened with channel()."""
        self._channels = [(w, q) for w, q in self._channels if q is not queue]

    def emit(self, name: EventName, **payload: Any) -> WorkflowEvent:
        """Build an event and deliver it to listeners and channels."""
        event = WorkflowEvent(name=EventName(name), payload=payload)

        for wanted, listener in list(self._listeners):
            if wanted is None or wanted == event.name:
                try:
                    listener(event)
                except Exception:
                    logger.exception(f"Event listener failed for {event.name.value}")

        for wanted, queue in list(self._channels):
            if wanted is None or event.name in wanted:
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    logger.warning(f"Event channel full, dropping {event.name.value}")

        return event


class EventRecorder:
    """Listener that keeps every event it receives (handy for CLIs and tests)."""

    def __init__(self, bus: Optional[EventBus] = None):
        self.events: list[WorkflowEvent] = []
        if bus is not None:
            bus.subscribe(self)

    def __call__(self, event: WorkflowEvent) -> None:
        self.events.append(event)

    def named(self, name: EventName) -> list[WorkflowEvent]:
        """All recorded events with the given name, in emission order."""
        return [e for e in self.events if e.name == EventName(name)]

    def names(self) -> list[str]:
        """Recorded event names as plain strings."""
        return [e.name.value for e in self.events]
