"""A deferred sequence fed from the outside.

Example:
    >>> handle, sequence = pushable(capacity=2)
    >>> for letter in "abc":
    ...     handle.push(letter)
    >>> handle.done()
    >>> await to_list(sequence)
    ['b', 'c']
"""

import asyncio
import logging
import threading
from collections import deque
from typing import Deque, Generic, Optional, Tuple, TypeVar

from dualflow.errors import UsageError
from dualflow.result import DONE, Mode, Result
from dualflow.sequence import PullResult, Sequence, resolved

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PushSequence(Sequence[T]):
    """Bounded queue consumed through the Sequence contract.

    When ``capacity`` is set and the queue is full, pushing drops the oldest
    undelivered value. A pull on an empty queue parks until the next push or
    ``done()``; only one pull may be parked at a time.

    Pushes may come from other threads. A parked pull is always resolved on
    the event loop that issued it.

    Attributes:
        capacity: Maximum number of buffered values, None for unbounded
        dropped: Number of values discarded so far because the queue was full
    """

    mode = Mode.DEFERRED

    def __init__(self, capacity: Optional[int] = None):
        if capacity is not None and capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")

        self.capacity = capacity
        self.dropped = 0
        self._buffer: Deque[T] = deque(maxlen=capacity)
        self._done = False
        self._closed = False
        self._waiter: Optional[asyncio.Future] = None
        self._lock = threading.Lock()

    def next(self) -> PullResult[T]:
        with self._lock:
            if self._buffer:
                return resolved(Result.of(self._buffer.popleft()))
            if self._done or self._closed:
                return resolved(DONE)
            if self._waiter is not None and not self._waiter.done():
                raise UsageError("A pull is already waiting on this push sequence")

            self._waiter = asyncio.get_running_loop().create_future()
            return self._waiter

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._buffer.clear()
            waiter = self._take_waiter()

        if waiter is not None:
            self._resolve(waiter, DONE)

    def _push(self, value: T) -> None:
        with self._lock:
            if self._done:
                raise UsageError("Cannot push after done()")
            if self._closed:
                logger.debug("Push sequence closed, discarding pushed value")
                return

            waiter = self._take_waiter()
            if waiter is None:
                if self.capacity is not None and len(self._buffer) == self.capacity:
                    self.dropped += 1
                    logger.debug("Push sequence full, dropped oldest value (%d so far)", self.dropped)
                self._buffer.append(value)
                return

        self._resolve(waiter, Result.of(value))

    def _finish(self) -> None:
        with self._lock:
            if self._done:
                return
            self._done = True
            waiter = self._take_waiter()

        if waiter is not None:
            self._resolve(waiter, DONE)

    def _take_waiter(self) -> Optional[asyncio.Future]:
        waiter, self._waiter = self._waiter, None
        if waiter is None or waiter.done():
            return None
        return waiter

    def _resolve(self, waiter: asyncio.Future, result: Result[T]) -> None:
        loop = waiter.get_loop()
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._deliver(waiter, result)
        else:
            loop.call_soon_threadsafe(self._deliver, waiter, result)

    def _deliver(self, waiter: asyncio.Future, result: Result[T]) -> None:
        if not waiter.done():
            waiter.set_result(result)
            return

        # the parked pull was cancelled in the meantime, keep the value for the next one
        if not result.done:
            with self._lock:
                if self._closed:
                    return
                # it is older than anything buffered since, so it is the one to drop
                if self.capacity is not None and len(self._buffer) == self.capacity:
                    self.dropped += 1
                    logger.debug("Push sequence full, dropped oldest value (%d so far)", self.dropped)
                    return
                self._buffer.appendleft(result.value)


class PushHandle(Generic[T]):
    """Producer side of a push sequence."""

    def __init__(self, sequence: PushSequence[T]):
        self._sequence = sequence

    def push(self, value: T) -> None:
        """Append a value, dropping the oldest buffered one when full.

        Raises:
            UsageError: If done() was already called
        """
        self._sequence._push(value)

    def done(self) -> None:
        """Signal that no more values will be pushed."""
        self._sequence._finish()


def pushable(capacity: Optional[int] = None) -> Tuple[PushHandle[T], PushSequence[T]]:
    """Create a sequence fed by explicit pushes.

    Args:
        capacity: Maximum number of buffered values (drop-oldest when
                  exceeded), None for unbounded

    Returns:
        The producer handle and the consumer sequence
    """
    sequence: PushSequence[T] = PushSequence(capacity)
    return PushHandle(sequence), sequence
