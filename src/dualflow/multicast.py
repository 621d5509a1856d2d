"""Serve one pull-based source to many independently paced readers.

The shared source is pulled at most once per index. Pulled results are kept
in a cache keyed by source index until every active subscriber has read past
them, so a slow subscriber replays what faster ones already consumed.

Example:
    >>> shared = multicast(range(5))
    >>> a, b = shared.subscribe(), shared.subscribe()
    >>> a.next().value, a.next().value, b.next().value
    (0, 1, 0)
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import AsyncIterable, Dict, Generic, Iterable, List, Optional, TypeVar, Union

from dualflow.errors import UsageError
from dualflow.result import DONE, Mode, Result
from dualflow.sequence import PullResult, Sequence, from_iterable

logger = logging.getLogger(__name__)

T = TypeVar("T")

Entry = Union[Result[T], asyncio.Future]


@dataclass(frozen=True)
class Failure:
    """Cache entry of a source pull that raised."""

    error: Exception


class Multicast(Generic[T]):
    """Owner of the shared source, its cache and the subscriber cursors.

    Nobody but this object touches the cache. Readers go through
    ``read_at`` and move their cursor with ``advance``; entries below the
    smallest cursor (the watermark) are evicted after every move.

    In deferred mode, cache entries are futures shared by every reader of the
    same index. Readers await them through ``asyncio.shield`` so cancelling
    one reader never cancels the shared pull.

    Attributes:
        subscriber_count: Number of subscribers that have not been released
        cached_indices: Source indices currently held in the cache
    """

    def __init__(self, source: Union[Sequence[T], Iterable[T], AsyncIterable[T]]):
        self._source = from_iterable(source)
        self._cache: Dict[int, Entry[T]] = {}
        self._cursors: Dict["Subscriber[T]", int] = {}
        self._next_index = 0
        self._done_index: Optional[int] = None
        self._closed = False

    @property
    def mode(self) -> Optional[Mode]:
        return self._source.mode

    @property
    def subscriber_count(self) -> int:
        return len(self._cursors)

    @property
    def cached_indices(self) -> List[int]:
        return sorted(self._cache)

    def subscribe(self) -> "Subscriber[T]":
        """Create a new reader.

        The reader starts at the oldest index still cached, or at the next
        index to be pulled when the cache is empty.
        """
        start = min(self._cache) if self._cache else self._next_index
        subscriber = Subscriber(self, start)
        self._cursors[subscriber] = start
        logger.debug("Multicast subscriber added at index %d (%d active)", start, len(self._cursors))
        return subscriber

    __call__ = subscribe

    def read_at(self, index: int) -> Entry[T]:
        """Return the cache entry for a source index, pulling the source if needed.

        Returns:
            A Result, or in deferred mode possibly a future resolving to one

        Raises:
            UsageError: If the index was already evicted or the multicast is closed
            Exception: Whatever the source raised when this index was pulled
        """
        if self._done_index is not None and index >= self._done_index:
            return DONE

        if index in self._cache:
            return self._checked(self._cache[index])

        if index < self._next_index:
            raise UsageError(f"Index {index} was already evicted from the multicast cache")
        if self._closed:
            raise UsageError("Multicast source was closed")

        while self._next_index <= index:
            entry = self._checked(self._pull())
            if self._done_index is not None and index >= self._done_index:
                return DONE

        return entry

    @staticmethod
    def _checked(entry: Union[Entry[T], Failure]) -> Entry[T]:
        if isinstance(entry, Failure):
            raise entry.error
        return entry

    def _pull(self) -> Union[Entry[T], Failure]:
        index = self._next_index
        try:
            pulled: PullResult[T] = self._source.next()
        except Exception as e:
            # kept in place of the entry so every reader of this index sees the error
            logger.debug("Multicast source failed at index %d: %r", index, e)
            pulled = Failure(e)
        self._next_index += 1

        if isinstance(pulled, Failure):
            entry = pulled
        elif self._source.mode is Mode.DEFERRED:
            entry = asyncio.ensure_future(pulled)
            entry.add_done_callback(partial(self._settled, index))
        else:
            entry = pulled
            if pulled.done:
                self._mark_done(index)

        self._cache[index] = entry
        return entry

    def _settled(self, index: int, future: "asyncio.Future[Result[T]]") -> None:
        if future.cancelled():
            return
        # retrieve the exception so an evicted failed pull is not reported as unhandled
        if future.exception() is None and future.result().done:
            self._mark_done(index)

    def _mark_done(self, index: int) -> None:
        if self._done_index is None or index < self._done_index:
            self._done_index = index

    def advance(self, subscriber: "Subscriber[T]", index: int) -> None:
        """Move the cursor of a subscriber forward and evict below the watermark."""
        if subscriber not in self._cursors:
            return
        if index < self._cursors[subscriber]:
            raise ValueError(
                f"Cursors only move forward, got {index} after {self._cursors[subscriber]}"
            )

        self._cursors[subscriber] = index
        self._evict()

    def release(self, subscriber: "Subscriber[T]") -> None:
        """Remove the cursor of a subscriber, possibly unblocking eviction."""
        if self._cursors.pop(subscriber, None) is None:
            return

        logger.debug("Multicast subscriber released (%d active)", len(self._cursors))
        self._evict()

    def _evict(self) -> None:
        watermark = min(self._cursors.values()) if self._cursors else self._next_index
        stale = [index for index in self._cache if index < watermark]
        for index in stale:
            del self._cache[index]

        if stale:
            logger.debug("Multicast evicted %d entries below index %d", len(stale), watermark)

    def close(self) -> None:
        """Close the shared source. Subscribers report done once the cache is drained."""
        if self._closed:
            return

        self._closed = True
        self._mark_done(self._next_index)
        self._source.close()

    async def aclose(self) -> None:
        if self._closed:
            return

        self._closed = True
        self._mark_done(self._next_index)
        await self._source.aclose()


class Subscriber(Sequence[T]):
    """One reader of a Multicast, with its own cursor.

    The cursor moves when a pull is issued, not when it resolves, so several
    deferred pulls can be outstanding on the same subscriber.
    """

    def __init__(self, multicast: Multicast[T], position: int):
        self._multicast = multicast
        self._position = position
        self._closed = False

    @property
    def mode(self) -> Optional[Mode]:
        return self._multicast.mode

    @property
    def position(self) -> int:
        """Source index of the next read."""
        return self._position

    def seek(self, index: int) -> None:
        """Skip forward to a source index without reading the entries in between.

        Raises:
            ValueError: If index is behind the current position
        """
        if index < self._position:
            raise ValueError(f"Cannot seek backwards from {self._position} to {index}")

        self._position = index
        self._multicast.advance(self, index)

    def next(self) -> PullResult[T]:
        if self._closed:
            return self._settle(DONE) if self.mode is Mode.DEFERRED else DONE

        index = self._position
        entry = self._multicast.read_at(index)
        self._position = index + 1
        self._multicast.advance(self, self._position)

        if self.mode is Mode.DEFERRED:
            return self._settle(entry)

        if entry.done:
            self.close()
        return entry

    async def _settle(self, entry: Entry[T]) -> Result[T]:
        if isinstance(entry, asyncio.Future):
            result = await asyncio.shield(entry)
        else:
            result = entry

        if result.done:
            self.close()
        return result

    def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        self._multicast.release(self)


def multicast(source: Union[Sequence[T], Iterable[T], AsyncIterable[T]]) -> Multicast[T]:
    """Share a source between many subscribers.

    Args:
        source: The sequence (or iterable) to share

    Returns:
        A Multicast; call it (or its subscribe method) to get a new reader
    """
    return Multicast(source)
