"""Tests for the step engine: modality, outcomes and failure handling."""

import asyncio

import pytest

import dualflow as df


def running_total(result, total):
    if result.done:
        return df.Done()
    total += result.value
    return df.Emit(total, total)


async def slow_numbers(n, delay=0.001):
    for i in range(n):
        await asyncio.sleep(delay)
        yield i


class Recorder(df.Sequence):
    """Immediate sequence recording how often it was pulled and closed."""

    mode = df.Mode.IMMEDIATE

    def __init__(self, values):
        self.values = list(values)
        self.pulls = 0
        self.closed = False

    def next(self):
        self.pulls += 1
        if self.pulls > len(self.values):
            return df.DONE
        return df.Result.of(self.values[self.pulls - 1])

    def close(self):
        self.closed = True


def test_immediate_stage_returns_plain_results():
    sequence = df.step(running_total, lambda: 0)([1, 2, 3])
    assert sequence.mode is None

    first = sequence.next()
    assert sequence.mode is df.Mode.IMMEDIATE
    assert first == df.Result.of(1)
    assert sequence.next().value == 3
    assert sequence.next().value == 6
    assert sequence.next().done


def test_state_is_fresh_for_every_application():
    stage = df.step(running_total, lambda: 0)
    assert df.to_list(stage([1, 2])) == [1, 3]
    assert df.to_list(stage([1, 2])) == [1, 3]


def test_done_is_monotonic():
    sequence = df.step(running_total, lambda: 0)([1])
    assert sequence.next().value == 1
    for _ in range(5):
        assert sequence.next().done


def test_skip_pulls_upstream_again():
    def evens(result, state):
        if result.done:
            return df.Done()
        if result.value % 2:
            return df.Skip()
        return df.Emit(result.value)

    assert df.pipe(range(7), df.step(evens), df.to_list) == [0, 2, 4, 6]


def test_emit_many_drains_before_pulling_upstream_again():
    upstream = Recorder(["a", "b"])

    def triple(result, state):
        if result.done:
            return df.Done()
        value = result.value
        return df.EmitMany([value + "1", value + "2", value + "3"])

    sequence = df.step(triple)(upstream)
    assert sequence.next().value == "a1"
    assert upstream.pulls == 1
    assert sequence.next().value == "a2"
    assert sequence.next().value == "a3"
    assert upstream.pulls == 1
    assert sequence.next().value == "b1"
    assert upstream.pulls == 2


def test_empty_emit_many_moves_on():
    def only_big(result, state):
        if result.done:
            return df.Done()
        return df.EmitMany([result.value] if result.value > 1 else [])

    assert df.pipe([0, 1, 2, 3], df.step(only_big), df.to_list) == [2, 3]


def test_transition_sees_the_terminal_result_to_flush():
    def pairs(result, pending):
        if result.done:
            return df.Emit(pending) if pending else df.Done()
        pending = pending + [result.value]
        if len(pending) == 2:
            return df.Emit(pending, [])
        return df.Skip(pending)

    assert df.pipe(range(5), df.step(pairs, list), df.to_list) == [[0, 1], [2, 3], [4]]


def test_stage_is_terminal_after_flushing():
    calls = []

    def flush_many(result, state):
        calls.append(result)
        if result.done:
            return df.EmitMany(["x", "y"])
        return df.Skip()

    sequence = df.step(flush_many)([1])
    assert df.to_list(sequence) == ["x", "y"]
    assert sequence.next().done
    assert len(calls) == 2


def test_is_last_finishes_the_stage_and_closes_upstream():
    upstream = Recorder(range(10))

    def first_two(result, seen):
        if result.done:
            return df.Done()
        seen += 1
        return df.Emit(result.value, seen, is_last=seen == 2)

    sequence = df.step(first_two, lambda: 0)(upstream)
    assert df.to_list(sequence) == [0, 1]
    assert upstream.pulls == 2
    assert upstream.closed


def test_done_before_upstream_end_closes_upstream():
    upstream = Recorder(range(10))

    def until_three(result, state):
        if result.done or result.value == 3:
            return df.Done()
        return df.Emit(result.value)

    assert df.to_list(df.step(until_three)(upstream)) == [0, 1, 2]
    assert upstream.closed


def test_exhausted_upstream_is_not_closed():
    upstream = Recorder([1, 2])
    assert df.to_list(df.map(lambda x: x)(upstream)) == [1, 2]
    assert not upstream.closed


def test_for_loop_over_immediate_stage():
    assert [x for x in df.pipe(range(3), df.map(lambda x: x + 1))] == [1, 2, 3]


async def test_async_transition_commits_to_deferred():
    async def double(result, state):
        if result.done:
            return df.Done()
        return df.Emit(result.value * 2)

    sequence = df.step(double)([1, 2, 3])
    pending = sequence.next()
    assert sequence.mode is df.Mode.DEFERRED
    assert (await pending).value == 2
    assert (await sequence.next()).value == 4
    assert (await sequence.next()).value == 6
    assert (await sequence.next()).done
    assert (await sequence.next()).done


async def test_deferred_upstream_commits_to_deferred():
    sequence = df.pipe(slow_numbers(3), df.step(running_total, lambda: 0))
    pending = sequence.next()
    assert sequence.mode is df.Mode.DEFERRED
    assert (await pending).value == 0
    assert await df.to_list(sequence) == [1, 3]


async def test_deferred_stage_never_downgrades():
    calls = 0

    def sometimes_async(result, state):
        nonlocal calls
        calls += 1
        if result.done:
            return df.Done()
        if calls == 1:

            async def later():
                return df.Emit(result.value)

            return later()
        return df.Emit(result.value)

    sequence = df.step(sometimes_async)(range(4))
    results = [sequence.next() for _ in range(5)]
    assert all(asyncio.isfuture(r) for r in results)
    assert [(await r).value for r in results[:4]] == [0, 1, 2, 3]
    assert (await results[4]).done


async def test_outstanding_pulls_are_served_in_call_order():
    sequence = df.pipe(slow_numbers(4), df.map(lambda x: x * 10))
    pulls = [sequence.next() for _ in range(4)]
    results = await asyncio.gather(*reversed(pulls))
    assert [r.value for r in reversed(results)] == [0, 10, 20, 30]


async def test_async_emit_many_values():
    async def expand(value):
        for i in range(value):
            await asyncio.sleep(0)
            yield value

    def transition(result, state):
        if result.done:
            return df.Done()
        return df.EmitMany(expand(result.value))

    assert await df.pipe([1, 2, 3], df.step(transition), df.to_list) == [1, 2, 2, 3, 3, 3]


async def test_iterating_a_deferred_stage_synchronously_is_a_usage_error():
    sequence = df.pipe(slow_numbers(2), df.map(lambda x: x * 2))
    with pytest.raises(df.UsageError):
        list(sequence)
    with pytest.raises(df.UsageError):
        iter(sequence)


async def test_awaitable_after_immediate_commit_is_a_usage_error():
    def late_async(result, state):
        if result.done:
            return df.Done()
        if result.value == 0:
            return df.Emit(result.value)

        async def later():
            return df.Emit(result.value)

        return later()

    sequence = df.step(late_async)([0, 1])
    assert sequence.next().value == 0
    with pytest.raises(df.UsageError):
        sequence.next()


async def test_skipped_inputs_do_not_commit_to_immediate():
    def skip_small(result, state):
        if result.done:
            return df.Done()
        if result.value < 2:
            return df.Skip()

        async def later():
            return df.Emit(result.value)

        return later()

    sequence = df.step(skip_small)([0, 1, 2, 3])
    pending = sequence.next()
    assert sequence.mode is df.Mode.DEFERRED
    assert (await pending).value == 2
    assert await df.to_list(sequence) == [3]


def test_skips_then_emit_commits_to_immediate():
    def skip_small(result, state):
        if result.done:
            return df.Done()
        if result.value < 2:
            return df.Skip()
        return df.Emit(result.value)

    sequence = df.step(skip_small)([0, 1, 2])
    assert sequence.next().value == 2
    assert sequence.mode is df.Mode.IMMEDIATE
    assert sequence.next().done


def test_unknown_outcome_is_a_usage_error():
    sequence = df.step(lambda result, state: result.value)([1])
    with pytest.raises(df.UsageError):
        sequence.next()


def test_reentrant_pull_is_a_usage_error():
    holder = {}

    def reenter(result, state):
        if result.done:
            return df.Done()
        holder["sequence"].next()
        return df.Emit(result.value)

    holder["sequence"] = df.step(reenter)([1, 2])
    with pytest.raises(df.TransitionError) as exc_info:
        holder["sequence"].next()
    assert isinstance(exc_info.value.original_error, df.UsageError)


def test_step_requires_callables():
    with pytest.raises(TypeError):
        df.step("not a function")
    with pytest.raises(TypeError):
        df.step(running_total, initial_state=0)


def test_step_operator_subclass():
    class Countdown(df.StepOperator):
        def initial_state(self):
            return 3

        def transition(self, result, remaining):
            if result.done or remaining == 0:
                return df.Done()
            return df.Emit((result.value, remaining), remaining - 1)

    assert df.pipe("abcde", Countdown(), df.to_list) == [("a", 3), ("b", 2), ("c", 1)]
