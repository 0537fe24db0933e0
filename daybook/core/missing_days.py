from __future__ import annotations

import logging
from typing import Protocol

from daybook.core.logical_date import shift_iso_date

LOGGER = logging.getLogger(__name__)


class DayDataSource(Protocol):
    async def list_daily_log_dates(self, user_id: int, from_date: str, to_date: str) -> list[str]:
        ...

    async def list_completion_dates(self, user_id: int, from_date: str, to_date: str) -> list[str]:
        ...


async def find_missing_days(
    store: DayDataSource,
    user_id: int,
    lookback_days: int,
    anchor_date: str,
) -> list[str]:
    """Days in ``[anchor - lookback_days, anchor - 1]`` with no log and no completion.

    Two range queries regardless of the window size. The result is ordered
    newest first: ``anchor-1, anchor-2, ..., anchor-lookback_days``.
    """
    if lookback_days < 1:
        return []
    window = [shift_iso_date(anchor_date, -offset) for offset in range(1, lookback_days + 1)]
    oldest, newest = window[-1], window[0]
    logged = set(await store.list_daily_log_dates(user_id, oldest, newest))
    completed = set(await store.list_completion_dates(user_id, oldest, newest))
    missing = [day for day in window if day not in logged and day not in completed]
    LOGGER.debug(
        "Missing days computed: user_id=%s window=%s..%s missing=%s",
        user_id,
        oldest,
        newest,
        len(missing),
    )
    return missing
