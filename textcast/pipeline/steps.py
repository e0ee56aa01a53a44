"""
Step Runner
===========
Executes one pipeline step with bounded, step-scoped retry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from ..app.events import EventBus, EventName
from ..concurrency import resolve
from .models import StepOutcome, StepResult

logger = logging.getLogger(__name__)

StepOperation = Callable[[], Union[Any, Awaitable[Any]]]


class StepRunner:
    """
    Runs a zero-argument operation until it succeeds or its retry budget
    is spent.

    The runner never raises for an operation failure; the failure comes back
    as a StepResult with outcome FAILURE and the last error attached.
    Task cancellation is still propagated.
    """

    def __init__(self, events: Optional[EventBus] = None, retry_delay: float = 0.0):
        """
        Args:
            events: Bus for operation:retry notifications
            retry_delay: Base backoff in seconds, multiplied by the attempt number
        """
        self.events = events or EventBus()
        self.retry_delay = retry_delay

    async def run(
        self,
        step_name: str,
        operation: StepOperation,
        retry_budget: int = 0,
    ) -> StepResult:
        """
        Execute operation with up to retry_budget extra attempts.

        Args:
            step_name: Name used in events and the result
            operation: Callable returning a value or an awaitable
            retry_budget: Additional attempts after the first failure

        Returns:
            StepResult with outcome SUCCESS (payload) or FAILURE (error)
        """
        if retry_budget < 0:
            raise ValueError(f"retry_budget must be >= 0, got {retry_budget}")

        last_error: Optional[BaseException] = None

        for attempt in range(retry_budget + 1):
            if attempt > 0:
                self.events.emit(EventName.OPERATION_RETRY, step=step_name, attempt=attempt)
                if self.retry_delay > 0:
                    await asyncio.sleep(self.retry_delay * attempt)

            try:
                payload = await resolve(operation())
            except Exception as e:
                last_error = e
                logger.debug(f"Step '{step_name}' attempt {attempt + 1} failed: {e}")
                if attempt < retry_budget:
                    self.events.emit(
                        EventName.OPERATION_RETRY_FAILED,
                        step=step_name,
                        attempt=attempt,
                        error=e,
                    )
                continue

            return StepResult(
                step_name=step_name,
                outcome=StepOutcome.SUCCESS,
                payload=payload,
                attempts=attempt + 1,
            )

        logger.warning(f"Step '{step_name}' failed after {retry_budget + 1} attempt(s): {last_error}")
        return StepResult(
            step_name=step_name,
            outcome=StepOutcome.FAILURE,
            error=last_error,
            attempts=retry_budget + 1,
        )
