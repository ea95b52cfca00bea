import asyncio

import pytest

from pipeline.locks import KeyedLocks


async def test_same_key_is_serialized():
    locks = KeyedLocks()
    events = []

    async def worker(name):
        async with locks.hold("corr-1"):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (
        ["a-in", "a-out", "b-in", "b-out"],
        ["b-in", "b-out", "a-in", "a-out"],
    )


async def test_different_keys_run_concurrently():
    locks = KeyedLocks()
    both_inside = asyncio.Event()
    inside = set()

    async def worker(key):
        async with locks.hold(key):
            inside.add(key)
            if len(inside) == 2:
                both_inside.set()
            await asyncio.wait_for(both_inside.wait(), timeout=1)

    await asyncio.gather(worker("corr-1"), worker("corr-2"))
    assert inside == {"corr-1", "corr-2"}


async def test_entries_are_dropped_after_release():
    locks = KeyedLocks()
    async with locks.hold("corr-1"):
        assert locks.is_locked("corr-1")
        assert len(locks) == 1
    assert not locks.is_locked("corr-1")
    assert len(locks) == 0


async def test_timeout_while_waiting():
    locks = KeyedLocks()
    async with locks.hold("corr-1"):
        with pytest.raises(asyncio.TimeoutError):
            async with locks.hold("corr-1", timeout=0.01):
                pass
        assert locks.is_locked("corr-1")
    assert len(locks) == 0


async def test_released_on_error():
    locks = KeyedLocks()
    with pytest.raises(RuntimeError):
        async with locks.hold("corr-1"):
            raise RuntimeError("boom")
    assert len(locks) == 0
