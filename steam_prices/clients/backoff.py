from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import settings
from ..logging import get_logger
from .errors import UpstreamError

_log = get_logger()

T = TypeVar("T")

RETRYABLE: tuple[type[BaseException], ...] = (UpstreamError, httpx.HTTPError)

SleepFn = Callable[[float], Awaitable[Any]]


def _log_retry(label: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait_s = retry_state.next_action.sleep if retry_state.next_action else 0.0
        _log.warning(
            "retry_scheduled",
            label=label,
            attempt=retry_state.attempt_number,
            wait_s=round(float(wait_s), 3),
            error=repr(exc),
        )

    return _before_sleep


def _retryer(
    label: str,
    max_retries: int,
    base_delay: float,
    retry_on: tuple[type[BaseException], ...],
    sleep: SleepFn,
) -> AsyncRetrying:
    # wait_exponential yields base_delay * 2 ** (attempt_number - 1),
    # i.e. base * 2^attempt with a zero-indexed attempt.
    return AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, exp_base=2),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry(label),
        sleep=sleep,
    )


async def with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    label: str,
    max_retries: int | None = None,
    base_delay: float | None = None,
    retry_on: tuple[type[BaseException], ...] = RETRYABLE,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Run `operation` and retry it with exponential backoff.

    After `max_retries` retries (so `max_retries + 1` attempts in total) the
    last failure is re-raised. Exceptions outside `retry_on` propagate at once.
    """
    retries = settings.RETRY_MAX if max_retries is None else max_retries
    delay = settings.RETRY_BASE_DELAY if base_delay is None else base_delay

    async for attempt in _retryer(label, retries, delay, retry_on, sleep):
        with attempt:
            return await operation()
    # Unreachable: tenacity either returns above or re-raises
    raise RuntimeError(f"{label}: retry loop exited without result")
