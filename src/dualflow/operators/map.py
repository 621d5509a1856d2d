import inspect
from typing import Awaitable, Callable, TypeVar, Union

from ..result import Done, Emit, Outcome, Result
from ..step import StepOperator

T = TypeVar("T")
U = TypeVar("U")


async def _emit_later(pending: Awaitable[U]) -> Emit:
    return Emit(await pending)


class Map(StepOperator[T, U]):
    """Map operation to transform each element of a sequence.

    An async function makes the stage deferred.
    """

    def __init__(self, func: Callable[[T], Union[Awaitable[U], U]]):
        if not callable(func):
            raise TypeError(f"func must be callable, got {type(func).__name__}")
        self.func = func

    def transition(self, result: Result[T], state: None) -> Union[Outcome, Awaitable[Outcome]]:
        if result.done:
            return Done()

        mapped = self.func(result.value)
        if inspect.isawaitable(mapped):
            return _emit_later(mapped)
        return Emit(mapped)


def map(func: Callable[[T], Union[Awaitable[U], U]]) -> Map[T, U]:
    """Map operation to transform each element of a sequence."""
    return Map(func)
