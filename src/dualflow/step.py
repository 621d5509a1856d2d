"""The step engine: turn a per-element transition rule into a pipeline stage.

A transition receives the (resolved) result of an upstream pull together with
the current stage state, and answers with one of the outcome variants:

- ``Done()``: the stage is finished
- ``Emit(value, state)``: produce one element
- ``EmitMany(values, state)``: produce several elements, one per pull
- ``Skip(state)``: produce nothing and pull the upstream again

When the upstream reports done, the transition is still called once with that
terminal result so it can flush what it buffered (a final aggregate, the last
partial batch...). The stage is terminal afterwards whatever it answers.

Example:
    >>> def running_total(result, total):
    ...     if result.done:
    ...         return Done()
    ...     total += result.value
    ...     return Emit(total, total)
    >>> pipe([1, 2, 3], step(running_total, lambda: 0), to_list)
    [1, 3, 6]
"""

import asyncio
import inspect
import logging
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterator,
    NoReturn,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from dualflow.base import Operator
from dualflow.errors import TransitionError, UsageError
from dualflow.result import DONE, KEEP, Done, Emit, EmitMany, Mode, Outcome, Result, Skip
from dualflow.sequence import PullResult, Sequence, discard

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")
S = TypeVar("S")

Transition = Callable[[Result[T], S], Union[Outcome, Awaitable[Outcome]]]


class StepSequence(Sequence[U]):
    """Output sequence of a step engine stage.

    The modality is decided on the first pull: if the upstream pull or a transition
    outcome met before the first output is deferred, the stage is deferred for
    its whole lifetime, otherwise it stays immediate and later pulls run a plain loop
    without any awaitable in sight.

    Deferred pulls are served strictly in call order, even when several are
    outstanding at once. Immediate pulls cannot be re-entered from inside the
    transition.
    """

    def __init__(
        self,
        upstream: Sequence[T],
        transition: Transition[T, S],
        state: S,
        name: str,
        close_state: Optional[Callable[[S], None]] = None,
        aclose_state: Optional[Callable[[S], Awaitable[None]]] = None,
    ):
        self._upstream = upstream
        self._transition = transition
        self._state = state
        self._name = name
        self._close_state = close_state
        self._aclose_state = aclose_state

        self._outputs: Union[Iterator[U], AsyncIterator[U], None] = None
        self._outputs_async = False
        self._finish_after_outputs = False

        self._done = False
        self._failed = False
        self._upstream_done = False
        self._upstream_closed = False
        self._state_closed = False
        self._pulling = False
        self._pulls = 0

        # handed over from the first pull to the deferred loop
        self._pending_input: Optional[PullResult[T]] = None
        self._pending_outcome: Optional[Tuple[Result[T], Any]] = None
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    def next(self) -> PullResult[U]:
        if self._failed:
            raise UsageError(f"{self._name} failed on a previous pull and cannot be pulled again")

        if self.mode is Mode.DEFERRED:
            return self._schedule()
        if self._pulling:
            raise UsageError(f"{self._name} was pulled again while a pull was in progress")
        if self.mode is Mode.IMMEDIATE:
            return self._next_immediate()
        return self._first_next()

    def close(self) -> None:
        self._finish()
        self._discard_pending()
        self._release()

    async def aclose(self) -> None:
        self._finish()
        self._discard_pending()
        await self._arelease()

    def _commit(self, mode: Mode) -> None:
        self.mode = mode
        logger.debug("%s committed to %s mode", self._name, mode.value)

    def _first_next(self) -> PullResult[U]:
        self._pulling = True
        try:
            # skipped inputs do not decide the modality, the first outcome that
            # produces something (or anything deferred on the way) does
            while True:
                incoming = self._pull_upstream()
                if self._upstream.mode is Mode.DEFERRED:
                    self._pending_input = incoming
                    self._commit(Mode.DEFERRED)
                    return self._schedule()

                outcome = self._apply(incoming)
                if inspect.isawaitable(outcome) or (
                    isinstance(outcome, EmitMany) and isinstance(outcome.values, AsyncIterable)
                ):
                    self._pending_outcome = (incoming, outcome)
                    self._commit(Mode.DEFERRED)
                    return self._schedule()

                if isinstance(outcome, Skip) and not incoming.done:
                    self._absorb(incoming, outcome)
                    continue

                self._commit(Mode.IMMEDIATE)
                emitted = self._absorb(incoming, outcome)
                if emitted is not None:
                    self._release()
                    return emitted
                return self._loop_immediate()
        finally:
            self._pulling = False

    def _schedule(self) -> "asyncio.Task[Result[U]]":
        # tasks start in creation order, so the lock serves pulls in call order
        return asyncio.ensure_future(self._loop_deferred())

    def _next_immediate(self) -> Result[U]:
        self._pulling = True
        try:
            return self._loop_immediate()
        finally:
            self._pulling = False

    def _loop_immediate(self) -> Result[U]:
        while True:
            if self._done:
                self._release()
                return DONE

            if self._outputs is not None:
                try:
                    value = next(self._outputs)
                except StopIteration:
                    self._end_outputs()
                    continue
                except Exception as e:
                    self._fail(e)
                return Result.of(value)

            incoming = self._pull_upstream()
            outcome = self._apply(incoming)
            if inspect.isawaitable(outcome):
                discard(outcome)
                self._failed = True
                raise UsageError(
                    f"{self._name} returned an awaitable after committing to immediate mode"
                )

            emitted = self._absorb(incoming, outcome)
            if emitted is not None:
                self._release()
                return emitted

    async def _loop_deferred(self) -> Result[U]:
        async with self._lock:
            while True:
                if self._failed:
                    raise UsageError(
                        f"{self._name} failed on a previous pull and cannot be pulled again"
                    )

                if self._done:
                    await self._arelease()
                    return DONE

                if self._outputs is not None:
                    try:
                        if self._outputs_async:
                            value = await self._outputs.__anext__()
                        else:
                            value = next(self._outputs)
                    except (StopIteration, StopAsyncIteration):
                        self._end_outputs()
                        continue
                    except Exception as e:
                        self._fail(e)
                    return Result.of(value)

                if self._pending_outcome is not None:
                    incoming, outcome = self._pending_outcome
                    self._pending_outcome = None
                else:
                    if self._pending_input is not None:
                        pending = self._pending_input
                        self._pending_input = None
                    else:
                        pending = self._pull_upstream()

                    if self._upstream.mode is Mode.DEFERRED:
                        incoming = await pending
                    else:
                        incoming = pending
                    outcome = self._apply(incoming)

                if inspect.isawaitable(outcome):
                    outcome = await self._resolve(outcome)

                emitted = self._absorb(incoming, outcome)
                if emitted is not None:
                    await self._arelease()
                    return emitted

    def _pull_upstream(self) -> PullResult[T]:
        self._pulls += 1
        return self._upstream.next()

    def _apply(self, incoming: Result[T]) -> Any:
        try:
            return self._transition(incoming, self._state)
        except Exception as e:
            self._fail(e)

    async def _resolve(self, outcome: Awaitable[Outcome]) -> Outcome:
        try:
            return await outcome
        except Exception as e:
            self._fail(e)

    def _fail(self, error: Exception) -> NoReturn:
        self._failed = True
        raise TransitionError(
            f"Transition failed in {self._name}",
            error,
            self._name,
            self._pulls - 1,
        ) from error

    def _absorb(self, incoming: Result[T], outcome: Any) -> Optional[Result[U]]:
        """Apply an outcome to the stage.

        Returns:
            The result to hand out, or None when the loop must go on
        """
        final = incoming.done
        if final:
            self._upstream_done = True

        if isinstance(outcome, Done):
            self._finish()
            return DONE

        if not isinstance(outcome, (Emit, EmitMany, Skip)):
            self._failed = True
            raise UsageError(
                f"{self._name} returned {outcome!r}, expected Done, Emit, EmitMany or Skip"
            )

        if outcome.state is not KEEP:
            self._state = outcome.state

        if isinstance(outcome, Emit):
            if outcome.is_last or final:
                self._finish()
            return Result.of(outcome.value)

        if isinstance(outcome, EmitMany):
            values = outcome.values
            if isinstance(values, AsyncIterable):
                if self.mode is not Mode.DEFERRED:
                    self._failed = True
                    raise UsageError(
                        f"{self._name} emitted an async iterable after committing to immediate mode"
                    )
                self._outputs = values.__aiter__()
                self._outputs_async = True
            else:
                self._outputs = iter(values)
                self._outputs_async = False
            self._finish_after_outputs = outcome.is_last or final
            return None

        # Skip
        if final:
            self._finish()
            return DONE
        return None

    def _end_outputs(self) -> None:
        self._outputs = None
        if self._finish_after_outputs:
            self._finish()

    def _finish(self) -> None:
        self._done = True
        self._outputs = None

    def _discard_pending(self) -> None:
        if self._pending_input is not None:
            discard(self._pending_input)
            self._pending_input = None
        if self._pending_outcome is not None:
            discard(self._pending_outcome[1])
            self._pending_outcome = None

    def _release(self) -> None:
        """Close the upstream and the stage state once the stage has finished."""
        if not self._done:
            return
        if not (self._upstream_done or self._upstream_closed):
            self._upstream_closed = True
            self._upstream.close()
        if not self._state_closed:
            self._state_closed = True
            if self._close_state is not None:
                self._close_state(self._state)

    async def _arelease(self) -> None:
        if not self._done:
            return
        if not (self._upstream_done or self._upstream_closed):
            self._upstream_closed = True
            await self._upstream.aclose()
        if not self._state_closed:
            self._state_closed = True
            if self._aclose_state is not None:
                await self._aclose_state(self._state)


class StepOperator(Operator[T, U]):
    """Base class for operators built on the step engine.

    Subclasses implement ``transition`` and, when they keep state,
    ``initial_state``. A fresh state is produced for every application of the
    operator, so the same operator instance can be reused across pipelines.

    Example:
        >>> class Double(StepOperator[int, int]):
        ...     def transition(self, result, state):
        ...         if result.done:
        ...             return Done()
        ...         return Emit(result.value * 2)
        >>> pipe([1, 2], Double(), to_list)
        [2, 4]
    """

    @property
    def name(self) -> str:
        return type(self).__name__

    def transition(self, result: Result[T], state: Any) -> Union[Outcome, Awaitable[Outcome]]:
        """Compute the outcome for one upstream result.

        Raises:
            NotImplementedError: Must be implemented by subclasses
        """
        raise NotImplementedError

    def initial_state(self) -> Any:
        """Produce the state a new stage starts with."""
        return None

    def close_state(self, state: Any) -> None:
        """Release what the state holds once the stage is finished or closed."""

    async def aclose_state(self, state: Any) -> None:
        self.close_state(state)

    def apply(self, source: Sequence[T]) -> StepSequence[U]:
        return StepSequence(
            source,
            self.transition,
            self.initial_state(),
            self.name,
            self.close_state,
            self.aclose_state,
        )


class FunctionStep(StepOperator[T, U]):
    """Step operator wrapping a plain transition function."""

    def __init__(
        self,
        transition: Transition[T, S],
        initial_state: Optional[Callable[[], S]] = None,
    ):
        if not callable(transition):
            raise TypeError(f"transition must be callable, got {type(transition).__name__}")
        if initial_state is not None and not callable(initial_state):
            raise TypeError(
                f"initial_state must be a factory function, got {type(initial_state).__name__}"
            )

        self._transition = transition
        self._initial_state = initial_state

    @property
    def name(self) -> str:
        return getattr(self._transition, "__qualname__", type(self._transition).__name__)

    def transition(self, result: Result[T], state: S) -> Union[Outcome, Awaitable[Outcome]]:
        return self._transition(result, state)

    def initial_state(self) -> Optional[S]:
        return self._initial_state() if self._initial_state is not None else None


def step(
    transition: Transition[T, S],
    initial_state: Optional[Callable[[], S]] = None,
) -> FunctionStep[T, Any]:
    """Build a pipeline stage from a transition function.

    Args:
        transition: ``(result, state) -> outcome``, plain or async
        initial_state: Factory producing the state of every new stage

    Returns:
        An operator that can be applied to any sequence
    """
    return FunctionStep(transition, initial_state)
