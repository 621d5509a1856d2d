from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Generic,
    Iterable,
    List,
    TypeVar,
    Union,
)
from abc import ABC

from dualflow.sequence import Sequence, from_iterable
from dualflow.sinks import to_list

# Type variables
T = TypeVar("T")
U = TypeVar("U")
V = TypeVar("V")

Source = Union[Sequence[T], Iterable[T], AsyncIterable[T]]


class Operator(ABC, Generic[T, U]):
    """Base class for objects that turn one Sequence into another.

    An operator is applied by calling it with a source, which can be a
    Sequence or any (async) iterable. Operators support the pipe operator
    (|) for chaining:

    1. op | op    -> Pipeline (forward chaining)
    2. data | op  -> Pipeline (data binding)

    Subclasses must implement apply() to build their output sequence.
    """

    def __call__(self, source: Source[T]) -> Sequence[U]:
        """Apply this operator to a source.

        Args:
            source: A Sequence or any iterable / async iterable

        Returns:
            The output sequence of this operator
        """
        return self.apply(from_iterable(source))

    def apply(self, source: Sequence[T]) -> Sequence[U]:
        """Build the output sequence reading from source.

        Raises:
            NotImplementedError: Must be implemented by subclasses
        """
        raise NotImplementedError

    def __or__(self, other: "Operator[U, V]") -> "Pipeline[T, V]":
        """Chain this operator with another using | operator."""
        return self.then(other)

    def then(self, other: "Operator[U, V]") -> "Pipeline[T, V]":
        """Chain this operator with another operator or pipeline.

        Args:
            other: The operator or pipeline to apply after this one

        Returns:
            A new Pipeline containing both
        """
        if isinstance(other, Pipeline):
            if other.input_data is not None:
                raise ValueError("Cannot chain a pipeline that already has input")
            return Pipeline([self] + other.operators)
        else:
            return Pipeline([self, other])

    def __ror__(self, other: Source[T]) -> "Pipeline[T, U]":
        """Support data | operator syntax."""
        return self.with_input(other)

    def with_input(self, data: Source[T]) -> "Pipeline[T, U]":
        """Create a pipeline with this operator and the given input data."""
        return Pipeline([self], input_data=data)


class Pipeline(Operator[T, U]):
    """A chain of operators, optionally bound to its input.

    Pipeline is lazy: nothing is pulled from the input until the output
    sequence is pulled. Its output keeps the modality of the chain, so an
    all-immediate pipeline never touches the event loop.

    Usage patterns:
    1. Build from operators: Pipeline([op1, op2, op3])
    2. Chain with |: op1 | op2 | op3
    3. Apply to data: data | pipeline

    Example:
        >>> pipeline = range(10) | map(lambda x: x * 2) | filter(lambda x: x > 5)
        >>> pipeline.to_list()
        [6, 8, 10, 12, 14, 16, 18]

    Attributes:
        operators: Callables applied in order, each turning a Sequence into
                   another Sequence
        input_data: Optional input bound to the pipeline
    """

    operators: List[Callable[[Sequence[Any]], Sequence[Any]]]

    def __init__(
        self,
        operators: List[Callable[[Sequence[Any]], Sequence[Any]]],
        input_data: Source[T] | None = None,
    ):
        """Initialize a new Pipeline.

        Args:
            operators: List of operators to apply in sequence
            input_data: Optional input data for the pipeline
        """
        if not isinstance(operators, list):
            raise TypeError(f"operators must be a list, got {type(operators).__name__}")
        for operator in operators:
            if not callable(operator):
                raise TypeError(
                    f"operators must be callable, got {type(operator).__name__}"
                )

        self.operators = operators
        self.input_data = input_data

    def apply(self, source: Sequence[T]) -> Sequence[U]:
        for operator in self.operators:
            source = operator(source)
        return source

    def _input_sequence(self, input_data: Source[T] | None) -> Sequence[T]:
        """Resolve the input of a run into a Sequence.

        Raises:
            ValueError: If no input is provided or input is provided twice
        """
        if input_data is not None and self.input_data is not None:
            raise ValueError("Input provided twice")

        data_to_process = input_data if input_data is not None else self.input_data
        if data_to_process is None:
            raise ValueError("No input provided")

        return from_iterable(data_to_process)

    def run(self, input_data: Source[T] | None = None) -> Sequence[U]:
        """Build the output sequence of the pipeline without pulling it.

        Args:
            input_data: Optional input data (when none was bound)

        Returns:
            The output sequence of the last operator
        """
        return self.apply(self._input_sequence(input_data))

    def to_list(self, input_data: Source[T] | None = None) -> Union[List[U], Awaitable[List[U]]]:
        """Drain the pipeline into a list.

        Returns:
            The list itself for an immediate pipeline, an awaitable list for
            a deferred one
        """
        return to_list(self.run(input_data))

    async def collect(self, input_data: Source[T] | None = None) -> List[U]:
        """Drain the pipeline into a list, whatever its modality.

        Args:
            input_data: Optional input data (when none was bound)

        Returns:
            List containing all pipeline results in order
        """
        return [item async for item in self.run(input_data)]

    async def stream(self, input_data: Source[T] | None = None) -> AsyncIterator[U]:
        """Yield pipeline results as they become available.

        Breaking out of the iteration closes the output sequence.
        """
        sequence = self.run(input_data)
        try:
            async for item in sequence:
                yield item
        finally:
            await sequence.aclose()

    def then(self, other: Operator[U, V]) -> "Pipeline[T, V]":
        """Chain this pipeline with another operator or pipeline."""
        if isinstance(other, Pipeline):
            if other.input_data is not None:
                raise ValueError("Cannot chain a pipeline that already has input")
            return Pipeline(self.operators + other.operators, input_data=self.input_data)
        else:
            return Pipeline(self.operators + [other], input_data=self.input_data)

    def with_input(self, data: Source[T]) -> "Pipeline[T, U]":
        """Support data | pipeline syntax."""
        if self.input_data is not None:
            raise ValueError("Input provided twice")

        return Pipeline(self.operators, input_data=data)


def pipe(source: Source[T], *functions: Callable[[Any], Any]) -> Any:
    """Feed a source through functions from left to right.

    The functions are usually operators, and the last one may be a sink
    such as to_list or for_each(...).

    Example:
        >>> pipe(range(5), map(lambda x: x * 10), take(3), to_list)
        [0, 10, 20]
    """
    result: Any = from_iterable(source)
    for function in functions:
        result = function(result)
    return result


def compose(*operators: Callable[[Sequence[Any]], Sequence[Any]]) -> Pipeline[Any, Any]:
    """Combine operators into a single operator applying them in order."""
    return Pipeline(list(operators))
