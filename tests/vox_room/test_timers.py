import asyncio

import pytest

from vox_room import Scheduler


@pytest.mark.asyncio
async def test_call_later_fires_once():
    scheduler = Scheduler()
    calls = []
    task = scheduler.call_later(0.01, calls.append, "fired", name="once")

    await asyncio.sleep(0.05)

    assert calls == ["fired"]
    assert not task.active


@pytest.mark.asyncio
async def test_cancel_is_idempotent():
    scheduler = Scheduler()
    calls = []
    task = scheduler.call_later(0.01, calls.append, "fired")

    task.cancel()
    task.cancel()
    await asyncio.sleep(0.05)

    assert calls == []
    assert not task.active
    task.cancel()


@pytest.mark.asyncio
async def test_call_every_repeats_until_cancelled():
    scheduler = Scheduler()
    calls = []
    task = scheduler.call_every(0.01, lambda: calls.append(1))

    await asyncio.sleep(0.065)
    task.cancel()
    seen = len(calls)
    await asyncio.sleep(0.03)

    assert seen >= 3
    assert len(calls) == seen


@pytest.mark.asyncio
async def test_callback_may_cancel_its_own_interval():
    scheduler = Scheduler()
    calls = []
    holder = {}

    def once():
        calls.append(1)
        holder["task"].cancel()

    holder["task"] = scheduler.call_every(0.01, once)
    await asyncio.sleep(0.05)

    assert calls == [1]


@pytest.mark.asyncio
async def test_drain_waits_for_nested_spawns():
    scheduler = Scheduler()
    order = []

    async def inner():
        await asyncio.sleep(0.01)
        order.append("inner")

    async def outer():
        await asyncio.sleep(0.01)
        scheduler.spawn(inner())
        order.append("outer")

    scheduler.spawn(outer(), name="outer")
    await scheduler.drain()

    assert order == ["outer", "inner"]
    assert scheduler.pending == set()


@pytest.mark.asyncio
async def test_shutdown_cancels_tasks():
    scheduler = Scheduler()
    task = scheduler.spawn(asyncio.sleep(10))

    await scheduler.shutdown()

    assert task.cancelled()
