from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterable, AsyncIterator, Awaitable, Iterable, Iterator, Optional, TypeVar, Union

from ..result import Emit, EmitMany, Mode, Outcome, Result
from ..sequence import PullResult, Sequence, discard, from_iterable
from ..step import StepOperator

T = TypeVar("T")


class ChainPhase(Enum):
    """Which of the two sequences a chain stage is reading."""

    FIRST = "first"
    SECOND = "second"


@dataclass
class ChainState:
    second: Sequence
    phase: ChainPhase = ChainPhase.FIRST
    started: bool = False
    peeked: Optional[PullResult] = field(default=None)


class Chain(StepOperator[T, T]):
    """Append the elements of another sequence once the upstream is exhausted.

    The stage is deferred as soon as either side is. When the modality of
    the second sequence is not known yet, its first element is pulled along
    with the first upstream pull to find out. Closing the stage closes the
    second sequence as well.

    Example:
        >>> pipe([1, 2], chain([3, 4]), to_list)
        [1, 2, 3, 4]
    """

    def __init__(self, other: Union[Sequence[T], Iterable[T], AsyncIterable[T]]):
        self.other = other

    def initial_state(self) -> ChainState:
        return ChainState(second=from_iterable(self.other))

    def transition(self, result: Result[T], state: ChainState) -> Union[Outcome, Awaitable[Outcome]]:
        if not state.started:
            state.started = True
            if state.second.mode is None:
                state.peeked = state.second.next()
            if state.second.mode is Mode.DEFERRED:
                return self._later(self._advance(result, state))
        return self._advance(result, state)

    def _advance(self, result: Result[T], state: ChainState) -> Outcome:
        if not result.done:
            return Emit(result.value)

        state.phase = ChainPhase.SECOND
        if state.second.mode is Mode.DEFERRED:
            return EmitMany(_drain_deferred(state))
        return EmitMany(_drain_immediate(state))

    def close_state(self, state: ChainState) -> None:
        if state.peeked is not None:
            discard(state.peeked)
            state.peeked = None
        state.second.close()

    async def aclose_state(self, state: ChainState) -> None:
        if state.peeked is not None:
            discard(state.peeked)
            state.peeked = None
        await state.second.aclose()

    @staticmethod
    async def _later(outcome: Outcome) -> Outcome:
        return outcome


def _drain_immediate(state: ChainState) -> Iterator:
    pending, state.peeked = state.peeked, None
    result = pending if pending is not None else state.second.next()
    while not result.done:
        yield result.value
        result = state.second.next()


async def _drain_deferred(state: ChainState) -> AsyncIterator:
    pending, state.peeked = state.peeked, None
    result = await (pending if pending is not None else state.second.next())
    while not result.done:
        yield result.value
        result = await state.second.next()


def chain(other: Union[Sequence[T], Iterable[T], AsyncIterable[T]]) -> Chain[T]:
    """Append the elements of other after those of the upstream."""
    return Chain(other)
