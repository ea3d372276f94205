"""Tests for the order-preserving bounded async map."""

from __future__ import annotations

import asyncio

import pytest

from ravel.core.concurrency import bounded_map


class TestBoundedMap:
    """Tests for bounded_map."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrency", [1, 2, 3, 5, 7])
    async def test_output_matches_sequential_order(self, concurrency: int) -> None:
        """Results land at their input index even when later items finish first."""
        items = list(range(7))

        async def worker(item: int, index: int) -> tuple[int, int]:
            # Earlier items sleep longer so completion order is reversed
            await asyncio.sleep((len(items) - index) * 0.001)
            return item * 10, index

        results = await bounded_map(items, worker, concurrency)

        assert results == [(i * 10, i) for i in items]

    @pytest.mark.asyncio
    async def test_never_exceeds_concurrency(self) -> None:
        in_flight = 0
        peak = 0

        async def worker(item: int, index: int) -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001)
            in_flight -= 1
            return item

        await bounded_map(list(range(20)), worker, 3)

        assert peak == 3

    @pytest.mark.asyncio
    async def test_each_item_processed_once(self) -> None:
        seen: list[int] = []

        async def worker(item: int, index: int) -> int:
            seen.append(index)
            await asyncio.sleep(0)
            return item

        await bounded_map(list(range(10)), worker, 4)

        assert sorted(seen) == list(range(10))

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        async def worker(item: int, index: int) -> int:
            raise AssertionError("should not be called")

        assert await bounded_map([], worker, 5) == []

    @pytest.mark.asyncio
    async def test_invalid_concurrency_raises(self) -> None:
        async def worker(item: int, index: int) -> int:
            return item

        with pytest.raises(ValueError, match="concurrency must be >= 1"):
            await bounded_map([1], worker, 0)

    @pytest.mark.asyncio
    async def test_worker_exception_propagates(self) -> None:
        async def worker(item: int, index: int) -> int:
            if item == 2:
                raise RuntimeError("boom")
            return item

        with pytest.raises(RuntimeError, match="boom"):
            await bounded_map([1, 2, 3], worker, 2)
