"""Tests for externally fed push sequences."""

import asyncio
import threading

import pytest

import dualflow as df


async def test_drop_oldest_when_full():
    handle, sequence = df.pushable(capacity=2)
    for letter in "abc":
        handle.push(letter)

    assert (await sequence.next()).value == "b"
    assert (await sequence.next()).value == "c"
    assert sequence.dropped == 1


async def test_drop_oldest_between_pulls():
    handle, sequence = df.pushable(capacity=3)
    handle.push(1)
    handle.push(2)
    assert (await sequence.next()).value == 1

    handle.push(3)
    handle.push(4)
    handle.push(5)
    assert [(await sequence.next()).value for _ in range(3)] == [3, 4, 5]


async def test_unbounded_keeps_everything():
    handle, sequence = df.pushable()
    for i in range(1000):
        handle.push(i)
    handle.done()
    assert await df.to_list(sequence) == list(range(1000))


async def test_parked_pull_resolved_by_push():
    handle, sequence = df.pushable()
    pending = sequence.next()
    await asyncio.sleep(0)
    assert not pending.done()

    handle.push("x")
    assert (await pending).value == "x"


async def test_parked_pull_resolved_by_done():
    handle, sequence = df.pushable()
    pending = sequence.next()
    handle.done()
    assert (await pending).done
    assert (await sequence.next()).done


async def test_buffered_values_are_delivered_before_done():
    handle, sequence = df.pushable()
    handle.push(1)
    handle.push(2)
    handle.done()
    assert await df.to_list(sequence) == [1, 2]


async def test_second_outstanding_pull_is_a_usage_error():
    handle, sequence = df.pushable()
    pending = sequence.next()
    with pytest.raises(df.UsageError):
        sequence.next()

    handle.push(1)
    assert (await pending).value == 1


async def test_push_after_done_is_a_usage_error():
    handle, sequence = df.pushable()
    handle.done()
    with pytest.raises(df.UsageError):
        handle.push(1)


async def test_close_discards_buffered_values():
    handle, sequence = df.pushable()
    handle.push(1)
    handle.push(2)
    sequence.close()
    assert (await sequence.next()).done

    # pushes after the consumer went away are ignored
    handle.push(3)
    assert (await sequence.next()).done


async def test_push_from_another_thread():
    handle, sequence = df.pushable()
    collected = asyncio.ensure_future(df.to_list(sequence))
    await asyncio.sleep(0)

    def produce():
        for i in range(50):
            handle.push(i)
        handle.done()

    await asyncio.to_thread(produce)
    assert await collected == list(range(50))


async def test_consumed_through_a_pipeline():
    handle, sequence = df.pushable()
    doubled = df.pipe(sequence, df.map(lambda x: x * 2))

    async def produce():
        for i in range(3):
            await asyncio.sleep(0.001)
            handle.push(i)
        handle.done()

    producer = asyncio.create_task(produce())
    assert await df.to_list(doubled) == [0, 2, 4]
    await producer


async def test_value_for_a_cancelled_pull_counts_against_capacity():
    handle, sequence = df.pushable(capacity=1)
    pending = sequence.next()

    def produce():
        handle.push(1)
        handle.push(2)

    # joined without yielding, so the hand-off of 1 is still queued on the loop
    producer = threading.Thread(target=produce)
    producer.start()
    producer.join()

    pending.cancel()
    await asyncio.sleep(0)

    assert sequence.dropped == 1
    assert (await sequence.next()).value == 2


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        df.pushable(capacity=0)
