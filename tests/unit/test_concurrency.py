from __future__ import annotations

import asyncio
import random

import pytest

from chainlog.core.concurrency import SerialOrderedQueue


@pytest.mark.asyncio
async def test_drain_processes_in_key_order() -> None:
    seen: list[int] = []

    async def worker(item: int) -> None:
        await asyncio.sleep(0)
        seen.append(item)

    q: SerialOrderedQueue[int] = SerialOrderedQueue(worker, key=lambda x: x)
    items = list(range(50))
    random.Random(3).shuffle(items)
    for i in items:
        q.push(i)
    assert await q.drain() == 50
    assert seen == list(range(50))
    assert await q.drain() == 0


@pytest.mark.asyncio
async def test_worker_failure_discards_remaining_items() -> None:
    seen: list[int] = []

    async def worker(item: int) -> None:
        if item == 3:
            raise RuntimeError("boom")
        seen.append(item)

    q: SerialOrderedQueue[int] = SerialOrderedQueue(worker, key=lambda x: x)
    for i in (5, 1, 3, 2, 4):
        q.push(i)
    with pytest.raises(RuntimeError):
        await q.drain()
    assert seen == [1, 2]
    assert await q.drain() == 0
    assert seen == [1, 2]


@pytest.mark.asyncio
async def test_concurrent_drains_do_not_overlap() -> None:
    active = 0
    peak = 0

    async def worker(item: int) -> None:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.001)
        active -= 1

    q: SerialOrderedQueue[int] = SerialOrderedQueue(worker, key=lambda x: x)
    for i in range(10):
        q.push(i)
    await asyncio.gather(q.drain(), q.drain())
    assert peak == 1


def test_push_after_close_raises() -> None:
    async def worker(item: int) -> None:
        return None

    q: SerialOrderedQueue[int] = SerialOrderedQueue(worker, key=lambda x: x)
    q.close()
    with pytest.raises(RuntimeError):
        q.push(1)
