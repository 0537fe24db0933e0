import asyncio
import logging

import httpx
import pytest

from daybook.infra.google_calendar import CalendarAPIError
from daybook.infra.resilience import RetryPolicy, is_retryable_http_error, retry_async


def _run(call, *, is_retryable, sleep=None, policy=None):
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return asyncio.run(
        retry_async(
            call,
            policy=policy or RetryPolicy(max_attempts=3, base_delay_ms=1, max_delay_ms=1, jitter_ms=0),
            timeout_seconds=None,
            logger=logging.getLogger(__name__),
            request_context=None,
            component="test",
            name="retry",
            is_retryable=is_retryable,
            **kwargs,
        )
    )


def test_retry_success_after_transient() -> None:
    attempts: list[int] = []
    waits: list[float] = []

    async def _call() -> str:
        attempts.append(len(attempts))
        if len(attempts) < 3:
            raise asyncio.TimeoutError("transient")
        return "ok"

    async def _sleep(delay: float) -> None:
        waits.append(delay)

    assert _run(_call, is_retryable=lambda exc: True, sleep=_sleep) == "ok"
    assert len(attempts) == 3
    assert waits == [0.001, 0.001]


def test_retry_non_retryable_error() -> None:
    attempts: list[int] = []

    async def _call() -> str:
        attempts.append(len(attempts))
        raise ValueError("nope")

    with pytest.raises(ValueError):
        _run(_call, is_retryable=lambda exc: False)
    assert len(attempts) == 1


def test_retry_gives_up_after_max_attempts() -> None:
    attempts: list[int] = []

    async def _call() -> str:
        attempts.append(len(attempts))
        raise CalendarAPIError(503, "unavailable")

    async def _sleep(delay: float) -> None:
        return None

    with pytest.raises(CalendarAPIError):
        _run(_call, is_retryable=is_retryable_http_error, sleep=_sleep)
    assert len(attempts) == 3


def test_is_retryable_http_error() -> None:
    assert is_retryable_http_error(httpx.ConnectError("down")) is True
    assert is_retryable_http_error(httpx.ReadTimeout("slow")) is True
    assert is_retryable_http_error(CalendarAPIError(429, "rate")) is True
    assert is_retryable_http_error(CalendarAPIError(500, "boom")) is True
    assert is_retryable_http_error(CalendarAPIError(404, "missing")) is False
    assert is_retryable_http_error(ValueError("nope")) is False
