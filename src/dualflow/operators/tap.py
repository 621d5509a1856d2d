import inspect
from typing import Any, Awaitable, Callable, TypeVar, Union

from ..result import Done, Emit, Outcome, Result
from ..step import StepOperator

T = TypeVar("T")


class Tap(StepOperator[T, T]):
    """Call a side-effect function on every element and pass it on unchanged.

    Handy to observe what a stage actually pulls from its upstream:

        >>> seen = []
        >>> pipe([1, 2, 3], tap(seen.append), take(2), to_list)
        [1, 2]
        >>> seen
        [1, 2]
    """

    def __init__(self, func: Callable[[T], Any]):
        if not callable(func):
            raise TypeError(f"func must be callable, got {type(func).__name__}")
        self.func = func

    def transition(self, result: Result[T], state: None) -> Union[Outcome, Awaitable[Outcome]]:
        if result.done:
            return Done()

        called = self.func(result.value)
        if inspect.isawaitable(called):
            return self._emit_after(result.value, called)
        return Emit(result.value)

    @staticmethod
    async def _emit_after(value: T, called: Awaitable[Any]) -> Outcome:
        await called
        return Emit(value)


def tap(func: Callable[[T], Any]) -> Tap[T]:
    """Call func on every element without changing the sequence."""
    return Tap(func)
