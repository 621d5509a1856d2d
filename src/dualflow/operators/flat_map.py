import inspect
from typing import AsyncIterable, Awaitable, Callable, Iterable, TypeVar, Union

from ..result import Done, EmitMany, Outcome, Result
from ..step import StepOperator

T = TypeVar("T")
U = TypeVar("U")

Expansion = Union[Iterable[U], AsyncIterable[U]]


class FlatMap(StepOperator[T, U]):
    """Replace every element with the elements of the iterable func returns.

    func may return a regular iterable, an async iterable, or an awaitable
    resolving to either. The last two make the stage deferred.

    Example:
        >>> pipe([1, 2], flat_map(lambda x: [x] * x), to_list)
        [1, 2, 2]
    """

    def __init__(self, func: Callable[[T], Union[Expansion[U], Awaitable[Expansion[U]]]]):
        if not callable(func):
            raise TypeError(f"func must be callable, got {type(func).__name__}")
        self.func = func

    def transition(self, result: Result[T], state: None) -> Union[Outcome, Awaitable[Outcome]]:
        if result.done:
            return Done()

        expanded = self.func(result.value)
        if inspect.isawaitable(expanded):
            return self._expand_later(expanded)
        return EmitMany(expanded)

    @staticmethod
    async def _expand_later(expanded: Awaitable[Expansion[U]]) -> Outcome:
        return EmitMany(await expanded)


def flat_map(func: Callable[[T], Union[Expansion[U], Awaitable[Expansion[U]]]]) -> FlatMap[T, U]:
    """Replace every element with the elements of func(element)."""
    return FlatMap(func)
