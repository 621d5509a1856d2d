from typing import TypeVar

from ..result import Done, Emit, Outcome, Result
from ..step import StepOperator

T = TypeVar("T")


class Take(StepOperator[T, T]):
    """Keep the first n elements, then close the upstream."""

    def __init__(self, n: int):
        if n < 0:
            raise ValueError(f"n must be non-negative, got {n}")
        self.n = n

    def initial_state(self) -> int:
        return 0

    def transition(self, result: Result[T], taken: int) -> Outcome:
        if result.done or taken >= self.n:
            return Done()

        taken += 1
        return Emit(result.value, taken, is_last=taken >= self.n)


def take(n: int) -> Take[T]:
    """Keep the first n elements."""
    return Take(n)
