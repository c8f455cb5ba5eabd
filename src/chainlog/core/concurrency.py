"""
Serial-ordered, single-concurrency work queue for the signing step.

The chain secret advances exactly once per committed entry, so entries must
reach the signer one at a time and in increasing sequence order. Producers
``push`` items in whatever order the feed delivered them; ``drain`` hands
them to the worker smallest-key-first with concurrency exactly 1.

Design:
- Min-heap keyed by sequence number, FIFO among equal keys
- One asyncio.Lock serializes drains; a second ``drain`` waits its turn
- A worker failure aborts the drain: remaining items are discarded and the
  exception propagates to the caller
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from typing import Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


class SerialOrderedQueue(Generic[T]):
    """Min-heap queue drained by a single worker.

    Usage:
        queue = SerialOrderedQueue(process_entry, key=lambda e: e.serial)
        for entry in fetched:
            queue.push(entry)
        processed = await queue.drain()
    """

    def __init__(
        self,
        worker: Callable[[T], Awaitable[None]],
        *,
        key: Callable[[T], int],
    ) -> None:
        self._worker = worker
        self._key = key
        self._heap: list[tuple[int, int, T]] = []
        self._counter = itertools.count()
        self._lock = asyncio.Lock()
        self._closed = False

    def push(self, item: T) -> None:
        if self._closed:
            raise RuntimeError("Queue is closed")
        heapq.heappush(self._heap, (self._key(item), next(self._counter), item))

    async def drain(self) -> int:
        """Process every queued item in key order. Returns the count processed."""
        processed = 0
        async with self._lock:
            while self._heap:
                _, _, item = heapq.heappop(self._heap)
                try:
                    await self._worker(item)
                except BaseException:
                    self._heap.clear()
                    raise
                processed += 1
        return processed

    def close(self) -> None:
        self._closed = True
        self._heap.clear()
