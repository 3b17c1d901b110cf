"""
Concurrency primitives shared by every source.

- :class:`SingleFlight` keeps at most one long-running operation per source
- :class:`CancelHandle` is the stop switch of one running operation
- :class:`CancelSlot` holds the handle of the operation currently tracked,
  so ``close`` cancels only that one and a stale completion never clears the
  handle of a newer run
"""

from __future__ import annotations

import asyncio
import threading
from contextlib import contextmanager
from typing import Any, Iterator, TypeVar

T = TypeVar("T")


class SingleFlight:
    """Non-blocking mutual exclusion.

    A second caller does not wait: :meth:`try_acquire` returns ``False``
    and the caller is expected to return immediately.

    Usage:
        with flight.hold() as acquired:
            if not acquired:
                return None
            ...
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def held(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self) -> Iterator[bool]:
        acquired = self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()


class CancelHandle:
    """Cancellation handle of one tracked operation (wraps its task)."""

    def __init__(self, task: asyncio.Task[Any], operation: str = "") -> None:
        self._task = task
        self.operation = operation

    @property
    def task(self) -> asyncio.Task[Any]:
        return self._task

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Request cancellation. Returns False when the operation already finished."""
        return self._task.cancel()

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait up to ``timeout`` seconds for the operation to finish."""
        if self._task.done():
            return True
        done, _ = await asyncio.wait({self._task}, timeout=timeout)
        return bool(done)

    def __repr__(self) -> str:
        state = "done" if self.done else "running"
        return f"CancelHandle({self.operation!r}, {state})"


class CancelSlot:
    """Holds at most one :class:`CancelHandle`.

    All operations are atomic with respect to each other.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handle: CancelHandle | None = None

    def store(self, handle: CancelHandle) -> None:
        with self._lock:
            self._handle = handle

    def swap(self) -> CancelHandle | None:
        """Empty the slot and return whatever it held."""
        with self._lock:
            handle, self._handle = self._handle, None
            return handle

    def clear_if(self, handle: CancelHandle) -> bool:
        """Empty the slot only if it still holds ``handle``."""
        with self._lock:
            if self._handle is handle:
                self._handle = None
                return True
            return False

    def peek(self) -> CancelHandle | None:
        with self._lock:
            return self._handle


async def await_tracked(task: asyncio.Task[T]) -> T | None:
    """
    Await a tracked child task.

    Returns ``None`` when the child was cancelled through its handle; a
    cancellation of the awaiting task itself propagates.
    """
    try:
        return await task
    except asyncio.CancelledError:
        current = asyncio.current_task()
        if current is not None and current.cancelling():
            raise
        return None


__all__ = ["SingleFlight", "CancelHandle", "CancelSlot", "await_tracked"]
