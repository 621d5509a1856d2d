import inspect
from typing import Awaitable, Callable, TypeVar, Union

from ..result import Done, Emit, Outcome, Result, Skip
from ..step import StepOperator

T = TypeVar("T")


class Filter(StepOperator[T, T]):
    """Keep only the elements matching a predicate (plain or async)."""

    def __init__(self, predicate: Callable[[T], Union[Awaitable[bool], bool]]):
        if not callable(predicate):
            raise TypeError(f"predicate must be callable, got {type(predicate).__name__}")
        self.predicate = predicate

    def transition(self, result: Result[T], state: None) -> Union[Outcome, Awaitable[Outcome]]:
        if result.done:
            return Done()

        keep = self.predicate(result.value)
        if inspect.isawaitable(keep):
            return self._decide_later(result.value, keep)
        return Emit(result.value) if keep else Skip()

    @staticmethod
    async def _decide_later(value: T, keep: Awaitable[bool]) -> Outcome:
        return Emit(value) if await keep else Skip()


def filter(predicate: Callable[[T], Union[Awaitable[bool], bool]]) -> Filter[T]:
    """Keep only the elements matching predicate."""
    return Filter(predicate)
