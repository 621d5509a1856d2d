"""Sinks drain a sequence until it reports done.

They follow the modality of what they drain: on an immediate sequence (with a
synchronous handler) they finish synchronously and return a plain value, and
otherwise they return an awaitable.
"""

import inspect
from typing import Any, AsyncIterable, Awaitable, Callable, Iterable, List, TypeVar, Union

from dualflow.result import Mode, Result
from dualflow.sequence import PullResult, Sequence, from_iterable
from dualflow.tasks import BlockingTaskLimiter

T = TypeVar("T")


def to_list(source: Union[Sequence[T], Iterable[T], AsyncIterable[T]]) -> Union[List[T], Awaitable[List[T]]]:
    """Collect every element of a sequence into a list.

    Returns:
        The list for an immediate sequence, an awaitable list otherwise

    Example:
        >>> to_list(from_iterable(range(3)))
        [0, 1, 2]
    """
    sequence = from_iterable(source)
    result = sequence.next()
    if sequence.mode is Mode.DEFERRED:
        return _to_list_deferred(sequence, result)

    values = []
    while not result.done:
        values.append(result.value)
        result = sequence.next()
    return values


async def _to_list_deferred(sequence: Sequence[T], first: Awaitable[Result[T]]) -> List[T]:
    values = []
    result = await first
    while not result.done:
        values.append(result.value)
        result = await sequence.next()
    return values


class ForEach:
    """Sink that calls a handler on every element.

    The handler can be synchronous or asynchronous. Asynchronous handlers run
    with at most ``concurrency`` of them in flight, and the next element is
    already pulled while the current handler is still running.
    """

    def __init__(self, handler: Callable[[T], Any], *, concurrency: int = 1):
        """Initialize the sink.

        Args:
            handler: Function called with each element
            concurrency: Maximum number of async handlers running at once

        Raises:
            ValueError: If concurrency is smaller than 1
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self.handler = handler
        self.concurrency = concurrency

    def __call__(self, source: Union[Sequence[T], Iterable[T], AsyncIterable[T]]) -> Union[None, Awaitable[None]]:
        sequence = from_iterable(source)
        result = sequence.next()
        if sequence.mode is Mode.DEFERRED:
            return self._drain(sequence, result)

        while not result.done:
            handled = self.handler(result.value)
            if inspect.isawaitable(handled):
                return self._drain(sequence, None, handled)
            result = sequence.next()
        return None

    async def _drain(
        self,
        sequence: Sequence[T],
        pending: PullResult[T] | None,
        handled: Awaitable[Any] | None = None,
    ) -> None:
        try:
            async with BlockingTaskLimiter(self.concurrency) as limiter:
                if handled is not None:
                    await limiter.put(handled)
                    pending = sequence.next()

                result = await pending if sequence.mode is Mode.DEFERRED else pending
                while not result.done:
                    handled = self.handler(result.value)
                    if inspect.isawaitable(handled):
                        await limiter.put(handled)

                    result = sequence.next()
                    if sequence.mode is Mode.DEFERRED:
                        result = await result
        except ExceptionGroup as e:
            raise e.exceptions[0]


def for_each(handler: Callable[[T], Any], *, concurrency: int = 1) -> ForEach:
    """Create a sink calling handler on every element.

    Example:
        >>> seen = []
        >>> pipe(range(3), for_each(seen.append))
        >>> seen
        [0, 1, 2]
    """
    return ForEach(handler, concurrency=concurrency)
