"""Concurrency helpers used within dualflow operators and sinks."""

import asyncio
from asyncio import TaskGroup
from enum import Enum
from typing import Any, Awaitable


class Phase(Enum):
    """Lifecycle of the operators that keep work in flight (parallel, prefetch).

    IDLE: nothing pulled yet
    FILLING: fewer than the target amount of work in flight
    DRAINING: target reached, waiting for completions
    DONE: upstream exhausted and everything in flight settled
    """

    IDLE = "idle"
    FILLING = "filling"
    DRAINING = "draining"
    DONE = "done"


class BlockingTaskLimiter:
    """A task group that limits the number of concurrently running tasks.

    Tasks are only scheduled when a slot is available.
    """

    def __init__(self, max_tasks: int):
        """Initialize the limiter.

        Args:
            max_tasks: Maximum number of concurrently running tasks.

        """
        if max_tasks < 1:
            raise ValueError(f"max_tasks must be at least 1, got {max_tasks}")

        self.max_tasks = max_tasks
        self._task_group = TaskGroup()
        self._semaphore = asyncio.Semaphore(max_tasks)

    async def __aenter__(self):
        """Enter the limiter context and initialize the task group."""
        await self._task_group.__aenter__()

        return self

    async def put(self, awaitable: Awaitable[Any]):
        """Schedule an awaitable when a concurrency slot is available."""
        # Acquire semaphore and be safe about cancellation
        await self._semaphore.acquire()
        try:

            async def wrapped():
                try:
                    await awaitable
                finally:
                    self._semaphore.release()

            self._task_group.create_task(wrapped())
        except Exception:
            # If creating the task fails, release the slot
            self._semaphore.release()
            raise

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit the limiter context and wait for tasks to finish."""
        await self._task_group.__aexit__(exc_type, exc_val, exc_tb)
