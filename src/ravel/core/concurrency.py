"""Concurrency-limited async map that preserves input order."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def bounded_map(
    items: Sequence[T],
    worker: Callable[[T, int], Awaitable[R]],
    concurrency: int,
) -> list[R]:
    """Run ``worker`` over ``items`` with at most ``concurrency`` in flight.

    ``result[i]`` always corresponds to ``items[i]``, whatever the completion
    order. Workers are expected to catch their own errors and return a
    degraded result; an exception that escapes a worker is propagated once
    all workers have stopped.

    Args:
        items: Inputs to process.
        worker: Coroutine function called as ``worker(item, index)``.
        concurrency: Maximum number of concurrent workers (>= 1).

    Returns:
        Results in input order.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    results: list[R | None] = [None] * len(items)
    cursor = 0

    async def drain() -> None:
        nonlocal cursor
        while cursor < len(items):
            # Claiming happens without an await in between, so it is atomic
            index = cursor
            cursor += 1
            results[index] = await worker(items[index], index)

    workers = [asyncio.create_task(drain()) for _ in range(min(concurrency, len(items)))]
    try:
        await asyncio.gather(*workers)
    except BaseException:
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        raise

    return results  # type: ignore[return-value]
