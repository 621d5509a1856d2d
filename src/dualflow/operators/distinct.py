from typing import Any, Callable, Optional, Set, TypeVar

from ..result import Done, Emit, Outcome, Result, Skip
from ..step import StepOperator

T = TypeVar("T")


class Distinct(StepOperator[T, T]):
    """Drop elements already seen, keeping the first occurrence.

    Elements (or the keys computed from them) must be hashable. Every seen
    key is kept for the lifetime of the stage.
    """

    def __init__(self, key: Optional[Callable[[T], Any]] = None):
        if key is not None and not callable(key):
            raise TypeError(f"key must be callable, got {type(key).__name__}")
        self.key = key

    def initial_state(self) -> Set[Any]:
        return set()

    def transition(self, result: Result[T], seen: Set[Any]) -> Outcome:
        if result.done:
            return Done()

        marker = self.key(result.value) if self.key is not None else result.value
        if marker in seen:
            return Skip()

        seen.add(marker)
        return Emit(result.value)


def distinct(key: Optional[Callable[[T], Any]] = None) -> Distinct[T]:
    """Drop duplicate elements, optionally compared through key(element)."""
    return Distinct(key)
