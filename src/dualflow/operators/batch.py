from typing import List, TypeVar

from ..result import Done, Emit, Outcome, Result, Skip
from ..step import StepOperator

T = TypeVar("T")


class Batch(StepOperator[T, List[T]]):
    """Batch operation to group elements into lists of a given size.

    The last batch holds whatever is left and can be smaller.
    """

    def __init__(self, size: int):
        if size <= 0:
            raise ValueError("Batch size must be greater than 0")
        self.size = size

    def initial_state(self) -> List[T]:
        return []

    def transition(self, result: Result[T], current: List[T]) -> Outcome:
        if result.done:
            return Emit(current) if current else Done()

        current.append(result.value)
        if len(current) >= self.size:
            return Emit(current, [])
        return Skip()


def batch(size: int) -> Batch[T]:
    """Batch operation to group elements into lists of a given size."""
    return Batch(size)
