"""Retry with exponential backoff for upstream API calls.

An error is retried only when it carries an HTTP-like status of 429 or 5xx.
Everything else (other 4xx, errors without a status) propagates immediately.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

from loguru import logger

T = TypeVar("T")
P = ParamSpec("P")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_MS = 1000


def status_of(exc: BaseException) -> int | None:
    """Extract an HTTP-like status code from an exception, if it has one.

    Understands pydantic-ai ``ModelHTTPError.status_code``, a plain ``status``
    attribute, google-genai ``APIError.code`` and httpx ``HTTPStatusError``.
    """
    for attr in ("status_code", "status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value

    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def is_retryable(exc: BaseException) -> bool:
    status = status_of(exc)
    return status is not None and (status == 429 or status >= 500)


async def retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Await ``fn()`` and retry it on retryable failures.

    Attempt 0 runs immediately. After a retryable failure on attempt ``n`` the
    call sleeps ``initial_delay_ms * 2**n`` milliseconds before trying again,
    for at most ``max_retries`` additional attempts.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt.
        max_retries: Additional attempts after the first one.
        initial_delay_ms: Base delay for the backoff.
        sleep: Awaitable sleep taking seconds (injectable for tests).

    Returns:
        The first successful result.

    Raises:
        The original exception when it is not retryable, or the last one
        once retries are exhausted.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not is_retryable(exc) or attempt >= max_retries:
                raise
            delay_ms = initial_delay_ms * 2**attempt
            logger.warning(
                "Retrying upstream call | attempt={} status={} delay={}ms",
                attempt + 1,
                status_of(exc),
                delay_ms,
            )
            await sleep(delay_ms / 1000)
            attempt += 1


def retrying(
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator form of :func:`retry` for coroutine functions."""

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await retry(
                lambda: func(*args, **kwargs),
                max_retries=max_retries,
                initial_delay_ms=initial_delay_ms,
            )

        return wrapper

    return decorator
