from __future__ import annotations

import asyncio

import pytest

from daybook.core.batching import FULFILLED, REJECTED, dispatch_in_batches


def test_dispatch_keeps_input_order_and_isolates_failures() -> None:
    async def _action(item: int, index: int) -> int:
        if item == 3:
            raise ValueError("bad item")
        await asyncio.sleep(0.001 * (5 - item))
        return item * 10

    results = asyncio.run(dispatch_in_batches([1, 2, 3, 4, 5], 2, _action))

    assert [entry.status for entry in results] == [FULFILLED, FULFILLED, REJECTED, FULFILLED, FULFILLED]
    assert [entry.value for entry in results if entry.ok] == [10, 20, 40, 50]
    assert isinstance(results[2].error, ValueError)


def test_dispatch_runs_batches_sequentially() -> None:
    active = 0
    peak = 0
    order: list[tuple[str, int]] = []

    async def _action(item: int, index: int) -> int:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        order.append(("start", index))
        await asyncio.sleep(0.01)
        order.append(("end", index))
        active -= 1
        return index

    asyncio.run(dispatch_in_batches(list(range(7)), 3, _action))

    assert peak <= 3
    # batch 2 (indices 3..5) starts only after every index of batch 1 ended
    first_start_batch_two = order.index(("start", 3))
    for index in range(3):
        assert order.index(("end", index)) < first_start_batch_two


def test_dispatch_passes_global_index() -> None:
    seen: list[tuple[str, int]] = []

    async def _action(item: str, index: int) -> None:
        seen.append((item, index))

    asyncio.run(dispatch_in_batches(["a", "b", "c"], 2, _action))

    assert sorted(seen) == [("a", 0), ("b", 1), ("c", 2)]


@pytest.mark.parametrize("batch_size", [0, -5, "x", None, 1.9])
def test_dispatch_normalizes_bad_batch_size_to_one(batch_size) -> None:
    active = 0
    peak = 0

    async def _action(item: int, index: int) -> int:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0)
        active -= 1
        return item

    results = asyncio.run(dispatch_in_batches([1, 2, 3], batch_size, _action))

    assert peak == 1
    assert len(results) == 3


def test_dispatch_empty_input() -> None:
    async def _action(item, index):
        raise AssertionError("must not be called")

    assert asyncio.run(dispatch_in_batches([], 10, _action)) == []
