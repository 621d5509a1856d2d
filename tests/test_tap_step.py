import asyncio

import pytest

import dualflow as df


def test_tap_passes_elements_through():
    seen = []
    assert df.pipe([1, 2, 3], df.tap(seen.append), df.map(lambda x: -x), df.to_list) == [-1, -2, -3]
    assert seen == [1, 2, 3]


def test_tap_return_value_is_ignored():
    assert df.pipe([1, 2], df.tap(lambda x: x * 100), df.to_list) == [1, 2]


async def test_async_tap():
    seen = []

    async def record(x):
        await asyncio.sleep(0.001)
        seen.append(x)

    sequence = df.pipe(range(3), df.tap(record))
    assert await df.to_list(sequence) == [0, 1, 2]
    assert seen == [0, 1, 2]
    assert sequence.mode is df.Mode.DEFERRED


def test_tap_requires_a_callable():
    with pytest.raises(TypeError):
        df.tap(None)
