"""
Concurrency Module
===================
asyncio utilities shared by the synthesis coordinator and batch scheduler.

Provides:
- Calling collaborators that may be either blocking functions or coroutines
- Fixed-size partitioning of work into concurrent groups
- A pause gate for cooperative pause/resume/stop of a scheduling loop
"""

from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
import logging
from typing import Any, Callable, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def call_collaborator(
    func: Callable[..., Any],
    *args: Any,
    timeout: Optional[float] = None,
    on_failure: Optional[Callable[[], Any]] = None,
    **kwargs: Any,
) -> Any:
    """
    Invoke a collaborator without blocking the event loop.

    Coroutine functions are awaited directly; plain callables run in the
    default thread pool.

    A worker thread cannot be interrupted, so a blocking call that misses its
    deadline (or whose caller is cancelled) keeps running in the background.
    ``on_failure`` runs when the call does not return normally, but never
    before the worker has actually stopped, so it may safely remove whatever
    the call was writing.

    Args:
        func: Function or coroutine function to call
        *args: Positional arguments for func
        timeout: Optional deadline in seconds (raises asyncio.TimeoutError)
        on_failure: Cleanup for a call that raised, timed out or was cancelled
        **kwargs: Keyword arguments for func

    Returns:
        Whatever func returns
    """
    if _is_async_callable(func):
        try:
            if timeout is None:
                return await func(*args, **kwargs)
            return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
        except BaseException:
            # wait_for has already cancelled and awaited the coroutine
            _run_cleanup(on_failure)
            raise

    loop = asyncio.get_running_loop()
    ctx = contextvars.copy_context()
    future = loop.run_in_executor(None, functools.partial(ctx.run, func, *args, **kwargs))
    try:
        return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
    except BaseException:
        if future.done():
            _run_cleanup(on_failure)
        else:
            logger.debug(f"Leaving {getattr(func, '__qualname__', func)!r} to finish in the background")
            future.add_done_callback(functools.partial(_finish_abandoned, on_failure))
        raise


def _finish_abandoned(on_failure: Optional[Callable[[], Any]], future: asyncio.Future) -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.debug(f"Abandoned call failed after its deadline: {future.exception()}")
    _run_cleanup(on_failure)


def _run_cleanup(cleanup: Optional[Callable[[], Any]]) -> None:
    if cleanup is None:
        return
    try:
        cleanup()
    except Exception:
        logger.exception("Cleanup after failed call raised")


def _is_async_callable(func: Callable[..., Any]) -> bool:
    while isinstance(func, functools.partial):
        func = func.func
    return inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
        getattr(func, "__call__", None)
    )


async def resolve(value: Any) -> Any:
    """Await value if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


def partition(items: Sequence[T], size: int) -> list[list[T]]:
    """
    Split items into consecutive groups of at most ``size`` elements.

    Args:
        items: Items to split (order preserved)
        size: Group size, must be >= 1

    Returns:
        List of groups
    """
    if size < 1:
        raise ValueError(f"Group size must be at least 1, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class PauseGate:
    """
    Gate a scheduling loop checks before starting new work.

    The gate is open while running and closed while paused. ``release()``
    opens it permanently so a stopped loop can fall through and exit.
    """

    def __init__(self):
        self._open = asyncio.Event()
        self._open.set()
        self._released = False

    @property
    def is_open(self) -> bool:
        """True if a waiter would pass immediately."""
        return self._open.is_set()

    def close(self) -> None:
        """Hold future waiters until the gate is opened again."""
        if not self._released:
            self._open.clear()

    def open(self) -> None:
        """Let waiters pass."""
        self._open.set()

    def release(self) -> None:
        """Open the gate for good (used on stop)."""
        self._released = True
        self._open.set()

    def reset(self) -> None:
        """Return to the initial open, unreleased state."""
        self._released = False
        self._open.set()

    async def wait(self) -> None:
        """Block until the gate is open."""
        await self._open.wait()
