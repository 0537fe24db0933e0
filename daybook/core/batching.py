from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

FULFILLED = "fulfilled"
REJECTED = "rejected"


@dataclass(frozen=True)
class Settled(Generic[R]):
    status: str
    value: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.status == FULFILLED


def _normalize_batch_size(batch_size: Any) -> int:
    if isinstance(batch_size, bool):
        return 1
    try:
        size = int(batch_size)
    except (TypeError, ValueError, OverflowError):
        return 1
    return max(1, size)


async def _settle(awaitable: Awaitable[R]) -> Settled[R]:
    try:
        value = await awaitable
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        return Settled(status=REJECTED, error=exc)
    return Settled(status=FULFILLED, value=value)


async def dispatch_in_batches(
    items: Sequence[T],
    batch_size: int,
    action: Callable[[T, int], Awaitable[R]],
) -> list[Settled[R]]:
    """Run ``action`` over ``items`` in contiguous chunks of ``batch_size``.

    Items inside a chunk run concurrently; the next chunk starts only after
    every item of the current one has settled. Failures are captured per item
    and the result list keeps the input order.
    """
    size = _normalize_batch_size(batch_size)
    results: list[Settled[R]] = []
    for start in range(0, len(items), size):
        batch = items[start : start + size]
        settled = await asyncio.gather(
            *(_settle(_invoke(action, item, start + offset)) for offset, item in enumerate(batch))
        )
        rejected = sum(1 for entry in settled if not entry.ok)
        if rejected:
            LOGGER.info("Batch settled with failures: start=%s size=%s rejected=%s", start, len(batch), rejected)
        results.extend(settled)
    return results


async def _invoke(action: Callable[[T, int], Awaitable[R]], item: T, index: int) -> R:
    # Synchronous errors raised while building the coroutine are settled too.
    return await action(item, index)
