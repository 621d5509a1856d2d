import asyncio

import dualflow as df


async def async_range(start, stop):
    for i in range(start, stop):
        await asyncio.sleep(0)
        yield i


def test_chain_two_immediate_sequences():
    sequence = df.pipe([1, 2], df.chain([3, 4]))
    assert df.to_list(sequence) == [1, 2, 3, 4]
    assert sequence.mode is df.Mode.IMMEDIATE


def test_chain_with_empty_sides():
    assert df.pipe([], df.chain([1]), df.to_list) == [1]
    assert df.pipe([1], df.chain([]), df.to_list) == [1]


def test_second_sequence_read_only_after_first_is_exhausted():
    seen = []

    def second():
        for x in [3, 4]:
            seen.append(x)
            yield x

    sequence = df.pipe([1, 2], df.chain(second()))
    assert sequence.next().value == 1
    assert sequence.next().value == 2
    assert seen == []
    assert sequence.next().value == 3
    assert seen == [3]


async def test_chain_deferred_second_makes_the_stage_deferred():
    sequence = df.pipe([1, 2], df.chain(async_range(3, 5)))
    assert await df.to_list(sequence) == [1, 2, 3, 4]
    assert sequence.mode is df.Mode.DEFERRED


async def test_chain_deferred_first():
    assert await df.pipe(async_range(0, 2), df.chain([5]), df.to_list) == [0, 1, 5]


async def test_chain_second_with_undecided_mode():
    second = df.pipe(async_range(10, 12), df.map(lambda x: x + 1))
    assert second.mode is None
    assert await df.pipe([1], df.chain(second), df.to_list) == [1, 11, 12]


def test_chain_then_take():
    assert df.pipe([1, 2], df.chain([3, 4, 5]), df.take(3), df.to_list) == [1, 2, 3]


def test_closing_the_stage_closes_the_second_sequence():
    closed = []

    def second():
        try:
            yield 3
            yield 4
        finally:
            closed.append(True)

    assert df.pipe([1], df.chain(second()), df.take(2), df.to_list) == [1, 3]
    assert closed == [True]


async def test_aclose_closes_a_deferred_second_sequence():
    closed = []

    async def second():
        try:
            for i in range(10, 20):
                await asyncio.sleep(0)
                yield i
        finally:
            closed.append(True)

    sequence = df.pipe([1], df.chain(second()))
    assert (await sequence.next()).value == 1
    assert (await sequence.next()).value == 10
    await sequence.aclose()
    assert closed == [True]
