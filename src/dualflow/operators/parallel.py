"""Run a chain of operators on several elements at once.

The input is shared between ``concurrency`` lanes through a Multicast. Each
lane claims the next unclaimed source index, skips its subscriber to it and
runs a fresh instance of the chain on that single element. The outputs of an
element are handed out together, either in input order or as soon as they
are ready.

Example:
    >>> async def fetch(url):
    ...     ...
    >>> pages = await pipe(urls, parallel(map(fetch), concurrency=8), to_list)
"""

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar

from ..base import Operator, compose
from ..errors import UsageError
from ..multicast import Multicast, Subscriber
from ..result import DONE, Mode, Result
from ..sequence import Sequence, from_value
from ..sinks import to_list
from ..tasks import Phase

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")


@dataclass
class Completion:
    """Outputs of one claimed element, or the error it raised."""

    index: int
    values: Optional[List[Any]] = None
    error: Optional[BaseException] = None


class ParallelSequence(Sequence[U]):
    """Always-deferred output of the parallel operator.

    At most ``concurrency`` elements are claimed but not yet handed out at
    any time. The slot of an element is freed when its outputs reach the
    consumer, so a slow element at the head of an ordered run holds back at
    most ``concurrency - 1`` finished ones.
    """

    mode = Mode.DEFERRED

    def __init__(
        self,
        source: Sequence[T],
        chain: Callable[[Sequence[T]], Sequence[U]],
        concurrency: int,
        ordered: bool,
    ):
        self._multicast = Multicast(source)
        self._chain = chain
        self._concurrency = concurrency
        self._ordered = ordered

        self._lanes: List["asyncio.Task[None]"] = []
        self._subscribers: List[Subscriber[T]] = []
        self._slots: Optional[asyncio.Semaphore] = None
        self._changed: Optional[asyncio.Condition] = None
        self._lock = asyncio.Lock()

        self._claimed = 0
        self._in_flight = 0
        self._end: Optional[int] = None
        self._delivered = 0
        self._completed: Dict[int, Completion] = {}
        self._arrivals: Deque[Completion] = deque()
        self._outputs: Deque[U] = deque()

        self._finished = False
        self._failed = False
        self._closed = False

    @property
    def phase(self) -> Phase:
        if not self._lanes:
            return Phase.IDLE
        if self._finished:
            return Phase.DONE
        if self._end is not None or self._in_flight >= self._concurrency:
            return Phase.DRAINING
        return Phase.FILLING

    def next(self) -> Awaitable[Result[U]]:
        return asyncio.ensure_future(self._next())

    async def _next(self) -> Result[U]:
        async with self._lock:
            while True:
                if self._failed:
                    raise UsageError("parallel failed on a previous pull and cannot be pulled again")
                if self._outputs:
                    return Result.of(self._outputs.popleft())
                if self._finished or self._closed:
                    return DONE

                self._start()
                async with self._changed:
                    completion = await self._changed.wait_for(self._take)

                if completion.index < 0:
                    self._finish()
                    continue

                self._delivered += 1
                self._in_flight -= 1
                self._slots.release()
                if completion.error is not None:
                    self._failed = True
                    self._stop()
                    raise completion.error
                self._outputs.extend(completion.values)

    def _take(self) -> Optional[Completion]:
        """Next completion to hand out; index -1 once everything was delivered."""
        if self._closed:
            return Completion(index=-1)
        if self._ordered:
            completion = self._completed.pop(self._delivered, None)
        else:
            completion = self._arrivals.popleft() if self._arrivals else None
        if completion is not None:
            return completion

        if self._end is not None and self._delivered >= self._end:
            return Completion(index=-1)
        return None

    def _start(self) -> None:
        if self._lanes:
            return

        self._slots = asyncio.Semaphore(self._concurrency)
        self._changed = asyncio.Condition()
        for lane in range(self._concurrency):
            subscriber = self._multicast.subscribe()
            self._subscribers.append(subscriber)
            self._lanes.append(asyncio.create_task(self._run_lane(lane, subscriber)))
        logger.debug("parallel started %d lanes", self._concurrency)

    async def _run_lane(self, lane: int, subscriber: Subscriber[T]) -> None:
        while True:
            await self._slots.acquire()
            if self._end is not None and self._claimed >= self._end:
                self._slots.release()
                break

            index = self._claimed
            self._claimed += 1
            self._in_flight += 1
            subscriber.seek(index)

            try:
                result = subscriber.next()
                if subscriber.mode is Mode.DEFERRED:
                    result = await result
            except Exception as e:
                await self._complete(Completion(index, error=e))
                break

            if result.done:
                self._in_flight -= 1
                self._slots.release()
                await self._mark_end(index)
                break

            try:
                values = await self._run_chain(result.value)
            except Exception as e:
                await self._complete(Completion(index, error=e))
                break
            await self._complete(Completion(index, values=values))

        subscriber.close()
        logger.debug("parallel lane %d stopped", lane)

    async def _run_chain(self, value: T) -> List[U]:
        values = to_list(self._chain(from_value(value)))
        if inspect.isawaitable(values):
            values = await values
        return values

    async def _complete(self, completion: Completion) -> None:
        async with self._changed:
            if self._ordered:
                self._completed[completion.index] = completion
            else:
                self._arrivals.append(completion)
            self._changed.notify_all()

    async def _mark_end(self, index: int) -> None:
        async with self._changed:
            if self._end is None or index < self._end:
                self._end = index
            self._changed.notify_all()

    def _finish(self) -> None:
        self._finished = True
        self._subscribers.clear()
        logger.debug("parallel done after %d elements", self._delivered)

    def _stop(self) -> None:
        for task in self._lanes:
            task.cancel()
        for subscriber in self._subscribers:
            subscriber.close()
        self._subscribers.clear()

    async def _wake(self) -> None:
        async with self._changed:
            self._changed.notify_all()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop()
        if self._changed is not None:
            # a pull may be waiting for a completion that will never come
            asyncio.ensure_future(self._wake())
        self._multicast.close()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop()
        if self._changed is not None:
            await self._wake()
        await asyncio.gather(*self._lanes, return_exceptions=True)
        await self._multicast.aclose()


class Parallel(Operator[T, U]):
    """Run a chain of operators on up to ``concurrency`` elements at a time.

    Every element goes through a fresh instance of the chain, so stateful
    operators (take, batch, reduce...) restart for each element. Parallelism
    only pays off when the chain (or the source) is deferred; with an
    immediate chain the lanes simply take turns.
    """

    def __init__(self, *operators: Callable[[Sequence[Any]], Sequence[Any]], concurrency: int = 4, ordered: bool = True):
        """Initialize the parallel operator.

        Args:
            operators: Operators applied in order to every element
            concurrency: Number of lanes, i.e. elements processed at once
            ordered: Whether outputs keep the input order

        Raises:
            ValueError: If no operator is given or concurrency is smaller than 1
        """
        if not operators:
            raise ValueError("parallel needs at least one operator")
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self.chain = compose(*operators)
        self.concurrency = concurrency
        self.ordered = ordered

    def apply(self, source: Sequence[T]) -> ParallelSequence[U]:
        return ParallelSequence(source, self.chain, self.concurrency, self.ordered)


def parallel(*operators: Callable[[Sequence[Any]], Sequence[Any]], concurrency: int = 4, ordered: bool = True) -> Parallel[Any, Any]:
    """Run operators on up to concurrency elements at a time."""
    return Parallel(*operators, concurrency=concurrency, ordered=ordered)
