import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

from ..result import Emit, Outcome, Result, Skip
from ..step import StepOperator

T = TypeVar("T")
U = TypeVar("U")


class _NotProvided:
    """Marker for a missing initial value, so None stays a valid one."""

    def __repr__(self):
        return "NOT_PROVIDED"


NOT_PROVIDED = _NotProvided()


@dataclass(frozen=True)
class Accumulator(Generic[U]):
    """Running value of a reduce stage; ``empty`` until a first value is known."""

    value: Any = None
    empty: bool = True


class Reduce(StepOperator[T, U]):
    """Fold the whole sequence into a single value.

    The reducer may be plain or async. The aggregate is emitted once the
    upstream is exhausted.

    Example:
        >>> pipe(range(5), reduce(lambda acc, x: acc + x, 0), to_list)
        [10]
        >>> pipe([3, 1, 4, 1, 5], reduce(max), to_list)
        [5]
    """

    def __init__(
        self,
        reducer: Callable[[U, T], Union[Awaitable[U], U]],
        initial: Union[U, _NotProvided] = NOT_PROVIDED,
    ):
        """Initialize the Reduce operator.

        Args:
            reducer: Binary function that takes (accumulator, item) and returns new accumulator
            initial: Initial value for the accumulator. If not provided, the first item is used.
        """
        if not callable(reducer):
            raise TypeError(f"reducer must be callable, got {type(reducer).__name__}")
        self.reducer = reducer
        self.initial = initial

    def initial_state(self) -> Accumulator[U]:
        if self.initial is NOT_PROVIDED:
            return Accumulator()
        return Accumulator(self.initial, empty=False)

    def transition(
        self, result: Result[T], accumulator: Accumulator[U]
    ) -> Union[Outcome, Awaitable[Outcome]]:
        if result.done:
            if accumulator.empty:
                raise ValueError("Cannot reduce empty sequence without initial value")
            return Emit(accumulator.value)

        if accumulator.empty:
            return Skip(Accumulator(result.value, empty=False))

        reduced = self.reducer(accumulator.value, result.value)
        if inspect.isawaitable(reduced):
            return self._accumulate_later(reduced)
        return Skip(Accumulator(reduced, empty=False))

    @staticmethod
    async def _accumulate_later(reduced: Awaitable[U]) -> Outcome:
        return Skip(Accumulator(await reduced, empty=False))


def reduce(
    reducer: Callable[[U, T], Union[Awaitable[U], U]],
    initial: Union[U, _NotProvided] = NOT_PROVIDED,
) -> Reduce[T, U]:
    """Fold the sequence into a single value."""
    return Reduce(reducer, initial)
