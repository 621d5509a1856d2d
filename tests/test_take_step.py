import pytest

import dualflow as df


def test_take_operation():
    assert df.pipe(range(10), df.take(3), df.to_list) == [0, 1, 2]


def test_take_more_than_available():
    assert df.pipe(range(2), df.take(5), df.to_list) == [0, 1]


def test_take_does_not_pull_beyond_what_it_needs():
    seen = []
    assert df.pipe(range(100), df.tap(seen.append), df.take(3), df.to_list) == [0, 1, 2]
    assert seen == [0, 1, 2]


def test_take_closes_the_source():
    closed = []

    def source():
        try:
            yield from range(100)
        finally:
            closed.append(True)

    assert df.pipe(source(), df.take(2), df.to_list) == [0, 1]
    assert closed == [True]


def test_take_zero():
    assert df.pipe(range(5), df.take(0), df.to_list) == []


def test_take_over_infinite_source():
    def naturals():
        n = 0
        while True:
            yield n
            n += 1

    assert df.pipe(naturals(), df.map(lambda x: x * x), df.take(4), df.to_list) == [0, 1, 4, 9]


async def test_nested_pipeline_with_take():
    """Test more complex pipeline composition with Take"""
    transform_pipeline = df.map(lambda x: x * 3) | df.filter(lambda x: x > 5)

    pipeline = range(5) | transform_pipeline | df.take(2)
    result = await pipeline.collect()
    assert result == [6, 9]


def test_take_negative():
    with pytest.raises(ValueError):
        df.take(-1)
