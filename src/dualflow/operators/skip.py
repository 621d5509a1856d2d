from typing import TypeVar

from ..result import Done, Emit, Outcome, Result, Skip as SkipOutcome
from ..step import StepOperator

T = TypeVar("T")


class Skip(StepOperator[T, T]):
    """Drop the first n elements."""

    def __init__(self, n: int):
        if n < 0:
            raise ValueError(f"n must be non-negative, got {n}")
        self.n = n

    def initial_state(self) -> int:
        return 0

    def transition(self, result: Result[T], skipped: int) -> Outcome:
        if result.done:
            return Done()
        if skipped < self.n:
            return SkipOutcome(skipped + 1)
        return Emit(result.value)


def skip(n: int) -> Skip[T]:
    """Drop the first n elements."""
    return Skip(n)
