"""Tests for the sinks that drain a sequence."""

import asyncio

import pytest

import dualflow as df


class TestToList:
    def test_immediate_source_gives_a_list(self):
        assert df.to_list([1, 2, 3]) == [1, 2, 3]

    def test_accepts_sequences(self):
        assert df.to_list(df.from_iterable(range(3))) == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_deferred_source_gives_an_awaitable(self):
        async def source():
            yield "a"
            yield "b"

        result = df.to_list(source())
        assert asyncio.iscoroutine(result)
        assert await result == ["a", "b"]


class TestForEach:
    def test_sync_handler_on_immediate_source(self):
        seen = []
        assert df.pipe(range(3), df.map(lambda x: x + 1), df.for_each(seen.append)) is None
        assert seen == [1, 2, 3]

    def test_sync_handler_error_propagates(self):
        def handler(x):
            if x == 1:
                raise ValueError("bad element")

        with pytest.raises(ValueError, match="bad element"):
            df.pipe(range(3), df.for_each(handler))

    @pytest.mark.asyncio
    async def test_async_handler(self):
        seen = []

        async def handler(x):
            await asyncio.sleep(0.001)
            seen.append(x)

        await df.pipe(range(5), df.for_each(handler))
        assert seen == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_deferred_source(self):
        seen = []

        async def source():
            for i in range(3):
                await asyncio.sleep(0)
                yield i

        await df.pipe(source(), df.for_each(seen.append))
        assert seen == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_concurrency_limit(self):
        active = 0
        peak = 0

        async def handler(x):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        await df.pipe(range(10), df.for_each(handler, concurrency=3))
        assert peak == 3

    @pytest.mark.asyncio
    async def test_async_handler_error_propagates(self):
        async def handler(x):
            await asyncio.sleep(0.001)
            if x == 2:
                raise ValueError("handler failed")

        with pytest.raises(ValueError, match="handler failed"):
            await df.pipe(range(5), df.for_each(handler, concurrency=2))

    def test_concurrency_validation(self):
        with pytest.raises(ValueError):
            df.for_each(print, concurrency=0)
