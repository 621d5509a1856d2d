"""Split a sequence of ``(key, value)`` pairs into one child sequence per key.

Nothing is read ahead: the shared source is only pulled as far as the
current pull (on the outer sequence or on any child) requires, and every
element pulled on behalf of another category is buffered for it.

Example:
    >>> categories = pipe(
    ...     range(1, 9),
    ...     map(lambda x: ("odd" if x % 2 else "even", x)),
    ...     distribute,
    ... )
    >>> key, odd = categories.next().value
    >>> key, to_list(take(3)(odd))
    ('odd', [1, 3, 5])
"""

import asyncio
import logging
from collections import deque
from typing import Any, AsyncIterable, Deque, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar, Union

from dualflow.base import Operator
from dualflow.result import DONE, Mode, Result
from dualflow.sequence import PullResult, Sequence, from_iterable, resolved

logger = logging.getLogger(__name__)

K = TypeVar("K")
T = TypeVar("T")


class Distributor(Generic[K, T]):
    """Owner of the shared source and of the per-category buffers.

    Categories are registered in first-sighting order. Hashable keys are
    compared by equality, unhashable ones by identity.

    The source is closed once the outer sequence and every child sequence
    are closed or exhausted.
    """

    def __init__(self, source: Sequence[Tuple[K, T]]):
        self._source = source
        self._buffers: Dict[K, Deque[T]] = {}
        self._unhashable: List[Tuple[Any, Deque[T]]] = []
        self._categories: List[Tuple[K, Deque[T]]] = []
        self._yielded = 0
        self._source_done = False
        self._source_closed = False
        self._open = 1

        # first pull of an undecided source that turned out deferred
        self._pending: Optional[PullResult[Tuple[K, T]]] = None
        self._lock = asyncio.Lock()

    @property
    def mode(self) -> Optional[Mode]:
        return self._source.mode

    @property
    def categories(self) -> List[K]:
        """Keys discovered so far, in first-sighting order."""
        return [key for key, _ in self._categories]

    def _buffer_for(self, key: K) -> Deque[T]:
        try:
            buffer = self._buffers.get(key)
        except TypeError:
            for known, buffer in self._unhashable:
                if known is key:
                    return buffer
            buffer = deque()
            self._unhashable.append((key, buffer))
            self._register(key, buffer)
            return buffer

        if buffer is None:
            buffer = self._buffers[key] = deque()
            self._register(key, buffer)
        return buffer

    def _register(self, key: K, buffer: Deque[T]) -> None:
        self._categories.append((key, buffer))
        logger.debug("New category %r (%d known)", key, len(self._categories))

    def _route(self, result: Result[Tuple[K, T]]) -> None:
        if result.done:
            self._source_done = True
            return

        try:
            key, value = result.value
        except (TypeError, ValueError):
            raise TypeError(
                f"distribute expects (key, value) pairs, got {result.value!r}"
            ) from None
        self._buffer_for(key).append(value)

    def _start(self) -> Optional[Mode]:
        """Decide the modality by issuing the first source pull if needed."""
        if self.mode is None:
            pending = self._source.next()
            if self.mode is Mode.DEFERRED:
                self._pending = pending
            else:
                self._route(pending)
        return self.mode

    def _pull_immediate(self) -> None:
        self._route(self._source.next())

    async def _pull_deferred(self) -> None:
        if self._pending is not None:
            pending = self._pending
            self._pending = None
        else:
            pending = self._source.next()
        self._route(await pending)

    def _release(self) -> bool:
        self._open -= 1
        return self._open == 0 and not self._source_done and not self._source_closed

    def release(self) -> None:
        if self._release():
            self._source_closed = True
            self._source.close()

    async def arelease(self) -> None:
        if self._release():
            self._source_closed = True
            await self._source.aclose()

    def child(self, buffer: Deque[T]) -> "CategorySequence[T]":
        self._open += 1
        return CategorySequence(self, buffer)


class _DistributedSequence(Sequence[T]):
    """Common lifecycle of the outer sequence and of the children."""

    def __init__(self, distributor: Distributor[Any, Any]):
        self._distributor = distributor
        self._closed = False

    @property
    def mode(self) -> Optional[Mode]:
        return self._distributor.mode

    def _ready(self) -> Optional[Result[Any]]:
        """Return the result to hand out without pulling, or None."""
        raise NotImplementedError

    def next(self) -> PullResult[Any]:
        if self._closed:
            return resolved(DONE) if self.mode is Mode.DEFERRED else DONE

        if self._distributor._start() is Mode.DEFERRED:
            return asyncio.ensure_future(self._next_deferred())

        while True:
            result = self._ready()
            if result is not None:
                return result
            self._distributor._pull_immediate()

    async def _next_deferred(self) -> Result[Any]:
        async with self._distributor._lock:
            while True:
                result = self._ready()
                if result is not None:
                    if result.done:
                        await self.aclose()
                    return result
                await self._distributor._pull_deferred()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._distributor.release()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._distributor.arelease()


class CategorySequence(_DistributedSequence[T]):
    """Values of one category.

    It only reports done once the shared source is exhausted, since any
    later element could still belong to this category.
    """

    def __init__(self, distributor: Distributor[Any, T], buffer: Deque[T]):
        super().__init__(distributor)
        self._buffer = buffer

    def _ready(self) -> Optional[Result[T]]:
        if self._buffer:
            return Result.of(self._buffer.popleft())
        if self._distributor._source_done:
            if self.mode is not Mode.DEFERRED:
                self.close()
            return DONE
        return None


class CategoriesSequence(_DistributedSequence[Tuple[Any, "CategorySequence[Any]"]]):
    """Outer sequence yielding ``(key, child_sequence)`` once per new key."""

    def _ready(self) -> Optional[Result[Tuple[Any, CategorySequence[Any]]]]:
        distributor = self._distributor
        if distributor._yielded < len(distributor._categories):
            key, buffer = distributor._categories[distributor._yielded]
            distributor._yielded += 1
            return Result.of((key, distributor.child(buffer)))
        if distributor._source_done:
            if self.mode is not Mode.DEFERRED:
                self.close()
            return DONE
        return None


class Distribute(Operator[Tuple[K, T], Tuple[K, Sequence[T]]]):
    """Operator demultiplexing ``(key, value)`` pairs into per-key sequences."""

    def apply(self, source: Sequence[Tuple[K, T]]) -> CategoriesSequence:
        return CategoriesSequence(Distributor(source))


def distribute(
    source: Union[Sequence[Tuple[K, T]], Iterable[Tuple[K, T]], AsyncIterable[Tuple[K, T]]],
) -> CategoriesSequence:
    """Split a sequence of ``(key, value)`` pairs by key.

    Args:
        source: Sequence of pairs

    Returns:
        A sequence yielding ``(key, child_sequence)`` for every new key, in
        first-sighting order
    """
    return Distribute()(from_iterable(source))
