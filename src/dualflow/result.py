"""Pull results, modality tags and the transition outcome variants."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterable, Generic, Iterable, Optional, TypeVar, Union

T = TypeVar("T")
S = TypeVar("S")


class Mode(Enum):
    """How a sequence delivers the results of its pulls.

    IMMEDIATE sequences return a ``Result`` from ``next()``. DEFERRED
    sequences return an awaitable that resolves to a ``Result``. A sequence
    keeps the same mode for its entire lifetime.
    """

    IMMEDIATE = "immediate"
    DEFERRED = "deferred"


class Keep(Enum):
    """Marker for outcomes that leave the stage state untouched."""

    STATE = "keep_state"

    def __repr__(self):
        return "KEEP"


KEEP = Keep.STATE


@dataclass(frozen=True)
class Result(Generic[T]):
    """The result of a single pull.

    Attributes:
        done: True once the sequence has no more elements
        value: The pulled element (meaningless when ``done`` is True)
    """

    done: bool
    value: Optional[T] = None

    @classmethod
    def of(cls, value: T) -> "Result[T]":
        """Wrap a value in a non-terminal result."""
        return cls(done=False, value=value)


DONE: Result[Any] = Result(done=True)


@dataclass(frozen=True)
class Done:
    """The stage is finished; this and every later pull report done."""


@dataclass(frozen=True)
class Emit(Generic[T, S]):
    """Produce one output element.

    Attributes:
        value: The element to produce
        state: The new stage state, or KEEP to leave it unchanged
        is_last: Finish the stage right after this element
    """

    value: T
    state: Union[S, Keep] = KEEP
    is_last: bool = False


@dataclass(frozen=True)
class EmitMany(Generic[T, S]):
    """Produce zero or more output elements, one per downstream pull.

    ``values`` can be any iterable. An async iterable is drained lazily and
    is only valid in a deferred stage.
    """

    values: Union[Iterable[T], AsyncIterable[T]] = field(default=())
    state: Union[S, Keep] = KEEP
    is_last: bool = False


@dataclass(frozen=True)
class Skip(Generic[S]):
    """Produce nothing for this input and pull the upstream again."""

    state: Union[S, Keep] = KEEP


Outcome = Union[Done, Emit, EmitMany, Skip]
