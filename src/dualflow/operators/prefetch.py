import asyncio
import logging
from collections import deque
from typing import Deque, Optional, TypeVar

from ..base import Operator
from ..result import DONE, Mode, Result
from ..sequence import PullResult, Sequence, resolved
from ..tasks import Phase

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PrefetchSequence(Sequence[T]):
    """Keeps up to ``depth`` upstream pulls in flight ahead of consumption.

    Outstanding pulls run as tasks and are handed out in the order they were
    issued. An immediate upstream is passed through untouched, since there is
    no latency to hide.
    """

    def __init__(self, upstream: Sequence[T], depth: int):
        self._upstream = upstream
        self._depth = depth
        self._in_flight: Deque["asyncio.Task[Result[T]]"] = deque()
        self._started = False
        self._upstream_done = False
        self._closed = False

    @property
    def mode(self) -> Optional[Mode]:
        return self._upstream.mode

    @property
    def phase(self) -> Phase:
        if not self._started:
            return Phase.IDLE
        if self._upstream_done and not self._in_flight:
            return Phase.DONE
        if self._upstream_done or len(self._in_flight) >= self._depth:
            return Phase.DRAINING
        return Phase.FILLING

    def next(self) -> PullResult[T]:
        if self._closed:
            return resolved(DONE) if self.mode is Mode.DEFERRED else DONE

        if not self._started:
            self._started = True
            first = self._upstream.next()
            if self.mode is not Mode.DEFERRED:
                self._observe(first)
                return first
            self._in_flight.append(asyncio.ensure_future(first))
        elif self.mode is not Mode.DEFERRED:
            result = self._upstream.next()
            self._observe(result)
            return result

        self._fill()
        if not self._in_flight:
            return resolved(DONE)

        task = self._in_flight.popleft()
        self._fill()
        return self._settle(task)

    def _observe(self, result: Result[T]) -> None:
        if result.done:
            self._upstream_done = True

    def _fill(self) -> None:
        while not self._upstream_done and len(self._in_flight) < self._depth:
            self._in_flight.append(asyncio.ensure_future(self._upstream.next()))

    async def _settle(self, task: "asyncio.Task[Result[T]]") -> Result[T]:
        result = await task
        if result.done and not self._upstream_done:
            self._upstream_done = True
            logger.debug("Prefetch upstream exhausted, dropping %d pulls in flight", len(self._in_flight))
            # pulls issued after the terminal one can only report done
            self._cancel()
        return result

    def _cancel(self) -> None:
        while self._in_flight:
            task = self._in_flight.popleft()
            if task.done():
                if not task.cancelled():
                    task.exception()
            else:
                task.cancel()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cancel()
        self._upstream.close()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cancel()
        await self._upstream.aclose()


class Prefetch(Operator[T, T]):
    """Hide upstream latency by pulling ahead of the consumer."""

    def __init__(self, depth: int):
        if depth < 1:
            raise ValueError(f"depth must be at least 1, got {depth}")
        self.depth = depth

    def apply(self, source: Sequence[T]) -> PrefetchSequence[T]:
        return PrefetchSequence(source, self.depth)


def prefetch(depth: int) -> Prefetch[T]:
    """Keep up to depth upstream pulls in flight ahead of consumption.

    Example:
        >>> pipe(slow_source(), prefetch(4), map(parse), to_list)
    """
    return Prefetch(depth)
