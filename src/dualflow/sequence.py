import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import (
    Any,
    AsyncIterable,
    Awaitable,
    Callable,
    Generic,
    Iterable,
    Optional,
    TypeVar,
    Union,
)

from dualflow.errors import UsageError
from dualflow.result import DONE, Mode, Result

T = TypeVar("T")

PullResult = Union[Result[T], Awaitable[Result[T]]]


def discard(pending: Any) -> None:
    """Drop a pull result that will never be awaited."""
    if inspect.iscoroutine(pending):
        pending.close()
    elif isinstance(pending, asyncio.Future):
        pending.cancel()


class Sequence(ABC, Generic[T]):
    """Pull-based source of ordered elements.

    A sequence is consumed by calling ``next()`` until it reports ``done``.
    Its ``mode`` tells the caller what ``next()`` returns:

    - ``Mode.IMMEDIATE``: a ``Result`` that can be used right away
    - ``Mode.DEFERRED``: an awaitable resolving to a ``Result``

    Sources know their mode at construction. Stages built by the step engine
    decide it during their first pull, so ``mode`` is ``None`` until then and
    never changes afterwards.

    Termination is monotonic: once a pull reports ``done``, every later pull
    reports ``done`` as well.

    Sequences are both iterators and async iterators, so sinks can simply do:

        >>> for value in immediate_sequence: ...
        >>> async for value in any_sequence: ...

    Attributes:
        mode: The modality of this sequence, None while still undecided
    """

    mode: Optional[Mode] = None

    @abstractmethod
    def next(self) -> PullResult[T]:
        """Pull the next result.

        Returns:
            A Result in immediate mode, an awaitable Result in deferred mode
        """
        raise NotImplementedError

    def close(self) -> None:
        """Terminate early and release held resources.

        Closing never pulls the upstream. Later pulls report done.
        """

    async def aclose(self) -> None:
        """Asynchronous variant of close(), needed by async generator sources."""
        self.close()

    def pipe(self, *functions: Callable[[Any], Any]) -> Any:
        """Apply operators (and optionally a final sink) left to right."""
        from dualflow.base import pipe

        return pipe(self, *functions)

    def __iter__(self) -> "Sequence[T]":
        if self.mode is Mode.DEFERRED:
            raise UsageError(
                f"{type(self).__name__} is deferred, iterate it with 'async for'"
            )
        return self

    def __next__(self) -> T:
        if self.mode is Mode.DEFERRED:
            raise UsageError(
                f"{type(self).__name__} is deferred, iterate it with 'async for'"
            )

        result = self.next()

        # the very first pull may be the one that commits to deferred mode
        if self.mode is Mode.DEFERRED:
            discard(result)
            raise UsageError(
                f"{type(self).__name__} turned out to be deferred, iterate it with 'async for'"
            )

        if result.done:
            raise StopIteration
        return result.value

    def __aiter__(self) -> "Sequence[T]":
        return self

    async def __anext__(self) -> T:
        result = self.next()
        if self.mode is Mode.DEFERRED:
            result = await result

        if result.done:
            raise StopAsyncIteration
        return result.value


class IterableSequence(Sequence[T]):
    """Immediate sequence over a regular (synchronous) iterable."""

    mode = Mode.IMMEDIATE

    def __init__(self, iterable: Iterable[T]):
        self._iterator = iter(iterable)
        self._done = False

    def next(self) -> Result[T]:
        if self._done:
            return DONE

        try:
            value = next(self._iterator)
        except StopIteration:
            self._done = True
            return DONE

        return Result.of(value)

    def close(self) -> None:
        if self._done:
            return

        self._done = True
        close = getattr(self._iterator, "close", None)
        if close is not None:
            close()


class AsyncIterableSequence(Sequence[T]):
    """Deferred sequence over an async iterable.

    Every pull is scheduled as a task when it is issued and pulls are served
    one at a time in call order, so several outstanding pulls (as issued by
    prefetch) never run the underlying async generator concurrently.
    """

    mode = Mode.DEFERRED

    def __init__(self, iterable: AsyncIterable[T]):
        self._iterator = iterable.__aiter__()
        self._done = False
        self._closed = False
        self._lock = asyncio.Lock()

    def next(self) -> Awaitable[Result[T]]:
        return asyncio.ensure_future(self._next())

    async def _next(self) -> Result[T]:
        async with self._lock:
            if self._done:
                return DONE

            try:
                value = await self._iterator.__anext__()
            except StopAsyncIteration:
                self._done = True
                return DONE

            return Result.of(value)

    def close(self) -> None:
        # async generators are finalized by the event loop once unreferenced
        self._done = True

    async def aclose(self) -> None:
        if self._closed:
            return

        self._closed = True
        self._done = True
        # wait for a pull in progress, the generator cannot be closed while running
        async with self._lock:
            aclose = getattr(self._iterator, "aclose", None)
            if aclose is not None:
                await aclose()


def from_iterable(data: Union[Iterable[T], AsyncIterable[T]]) -> Sequence[T]:
    """Wrap any iterable into a Sequence.

    Args:
        data: A Sequence (returned unchanged), an async iterable (deferred
              sequence) or a regular iterable (immediate sequence)

    Returns:
        A Sequence producing the same elements

    Raises:
        TypeError: If data is not iterable
    """
    if isinstance(data, Sequence):
        return data
    if isinstance(data, AsyncIterable):
        return AsyncIterableSequence(data)
    if isinstance(data, Iterable):
        return IterableSequence(data)

    raise TypeError(f"Expected an iterable, got {type(data).__name__}")


def from_value(value: T) -> Sequence[T]:
    """Immediate sequence producing a single value."""
    return IterableSequence((value,))


async def resolved(result: Result[T]) -> Result[T]:
    """Hand out an already known result from a deferred sequence."""
    return result
