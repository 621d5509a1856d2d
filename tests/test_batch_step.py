import asyncio

import pytest

import dualflow as df


def test_batch_exact_multiple():
    assert df.pipe(range(6), df.batch(3), df.to_list) == [[0, 1, 2], [3, 4, 5]]


def test_batch_flushes_partial_batch():
    assert df.pipe(range(7), df.batch(3), df.to_list) == [[0, 1, 2], [3, 4, 5], [6]]


def test_batch_size_one():
    assert df.pipe([1, 2], df.batch(1), df.to_list) == [[1], [2]]


def test_batch_empty_input():
    assert df.pipe([], df.batch(2), df.to_list) == []


def test_batches_are_not_shared_between_runs():
    batching = df.batch(2)
    assert df.pipe([1, 2, 3], batching, df.to_list) == [[1, 2], [3]]
    assert df.pipe([4], batching, df.to_list) == [[4]]


async def test_batch_over_async_source():
    async def source():
        for i in range(5):
            await asyncio.sleep(0)
            yield i

    assert await df.pipe(source(), df.batch(2), df.to_list) == [[0, 1], [2, 3], [4]]


def test_batch_size_validation():
    with pytest.raises(ValueError, match="Batch size must be greater than 0"):
        df.batch(0)


def test_emitted_batches_are_independent():
    batches = df.pipe(range(5), df.batch(2), df.to_list)
    batches[0].append("x")
    assert batches == [[0, 1, "x"], [2, 3], [4]]
