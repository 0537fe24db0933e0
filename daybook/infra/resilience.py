from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx

from daybook.infra.request_context import RequestContext, log_event

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_ms: int = 250
    max_delay_ms: int = 2000
    jitter_ms: int = 200


def _next_backoff_ms(policy: RetryPolicy, attempt: int) -> int:
    exp = min(policy.max_delay_ms, int(policy.base_delay_ms * (2 ** max(attempt - 1, 0))))
    jitter = int(random.random() * policy.jitter_ms) if policy.jitter_ms > 0 else 0
    return min(policy.max_delay_ms, exp + jitter)


def is_timeout_error(exc: Exception) -> bool:
    return isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException))


def is_network_error(exc: Exception) -> bool:
    return isinstance(exc, httpx.TransportError)


def is_retryable_http_error(exc: Exception) -> bool:
    if is_timeout_error(exc) or is_network_error(exc):
        return True
    status_code = getattr(exc, "status_code", None)
    return isinstance(status_code, int) and (status_code == 429 or status_code >= 500)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    timeout_seconds: float | None,
    logger: logging.Logger,
    request_context: RequestContext | None,
    component: str,
    name: str,
    is_retryable: Callable[[Exception], bool],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    attempts = max(1, policy.max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            if timeout_seconds and timeout_seconds > 0:
                return await asyncio.wait_for(func(), timeout=timeout_seconds)
            return await func()
        except Exception as exc:
            if attempt >= attempts or not is_retryable(exc):
                raise
            wait_ms = _next_backoff_ms(policy, attempt)
            log_event(
                logger,
                request_context,
                component=component,
                event="retry.attempt",
                status="ok",
                name=name,
                attempt=attempt + 1,
                wait_ms=wait_ms,
            )
            await sleep(wait_ms / 1000)
    raise RuntimeError("retry_attempts_exhausted")
