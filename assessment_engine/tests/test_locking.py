"""
Tests for per-key locks.
"""

import asyncio

import pytest

from assessment_engine.common.locking import KeyedLockRegistry


@pytest.mark.asyncio
async def test_same_key_is_serialised():
    locks = KeyedLockRegistry(shards=4)
    running = 0
    peak = 0

    async def critical():
        nonlocal running, peak
        async with locks.hold("session-1"):
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0)
            running -= 1

    await asyncio.gather(*[critical() for _ in range(10)])
    assert peak == 1


@pytest.mark.asyncio
async def test_different_keys_do_not_block_each_other():
    locks = KeyedLockRegistry(shards=1)
    entered = asyncio.Event()

    async def holder():
        async with locks.hold("a"):
            await entered.wait()

    async def other():
        async with locks.hold("b"):
            entered.set()

    await asyncio.wait_for(asyncio.gather(holder(), other()), timeout=1)


@pytest.mark.asyncio
async def test_idle_locks_are_pruned():
    locks = KeyedLockRegistry()
    async with locks.hold("transient"):
        assert "transient" in locks
    assert "transient" not in locks
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_retained_locks_survive_until_released():
    locks = KeyedLockRegistry()
    locks.retain("session-1")
    async with locks.hold("session-1"):
        pass
    assert "session-1" in locks

    locks.release("session-1")
    assert "session-1" not in locks
    locks.release("never-retained")


def test_shards_must_be_positive():
    with pytest.raises(ValueError):
        KeyedLockRegistry(shards=0)
