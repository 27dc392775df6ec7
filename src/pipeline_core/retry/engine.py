"""Execute fallible operations with classified, bounded retry.

Every adapter that talks to an LLM provider, a database or a remote API wraps
its single fallible call in :func:`with_retry` (or :func:`with_retry_async`).
When retries run out, the last underlying error is re-raised unchanged so the
caller sees exactly what the external system reported.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import random
import threading
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .backoff import async_sleep, calculate_backoff, sleep
from .classifier import classify, is_retryable
from .context import RetryContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float, Any], None]
AsyncSleeper = Callable[[float, Any], Awaitable[None]]


def _should_retry(error: BaseException, attempt: int, context: RetryContext) -> bool:
    if attempt >= context.max_retries:
        logger.error(
            f"Giving up after {attempt + 1} attempt(s): "
            f"{classify(error).value}: {error}"
        )
        return False

    predicate = context.is_retryable or is_retryable
    if not predicate(error):
        logger.debug(f"Not retrying {type(error).__name__}: {error}")
        return False

    return True


def _next_delay(
    error: BaseException,
    attempt: int,
    context: RetryContext,
    rng: random.Random | None,
) -> int:
    delay = calculate_backoff(
        attempt,
        base_delay_ms=context.base_delay_ms,
        max_delay_ms=context.max_delay_ms,
        jitter=context.jitter,
        rng=rng,
    )
    logger.warning(
        f"Attempt {attempt + 1}/{context.max_attempts} failed "
        f"({classify(error).value}), retrying in {delay}ms: {error}"
    )
    if context.on_retry is not None:
        context.on_retry(error, attempt + 1, delay)
    return delay


def with_retry(
    operation: Callable[[], T],
    context: RetryContext | None = None,
    *,
    cancel_event: threading.Event | None = None,
    sleeper: Sleeper | None = None,
    rng: random.Random | None = None,
) -> T:
    """Call ``operation`` until it succeeds or retries run out.

    Args:
        operation: Zero-argument callable to execute.
        context: Retry settings; defaults to ``RetryContext()``.
        cancel_event: Setting this event aborts a pending backoff wait.
        sleeper: Replaces :func:`sleep`, called as ``sleeper(delay_ms, cancel_event)``.
        rng: Random source for jitter.

    Returns:
        Whatever ``operation`` returns on its first successful call.

    Raises:
        Exception: The last error from ``operation``, unmodified, when it is
            not retryable or when ``max_retries`` retries have been used.
        RetryCancelledError: If ``cancel_event`` is set during a backoff wait.
    """
    ctx = context or RetryContext()
    wait = sleeper or sleep
    attempt = 0

    while True:
        try:
            return operation()
        except Exception as error:
            if not _should_retry(error, attempt, ctx):
                raise
            delay = _next_delay(error, attempt, ctx, rng)

        wait(delay, cancel_event)
        attempt += 1


async def with_retry_async(
    operation: Callable[[], Awaitable[T]],
    context: RetryContext | None = None,
    *,
    cancel_event: asyncio.Event | None = None,
    sleeper: AsyncSleeper | None = None,
    rng: random.Random | None = None,
) -> T:
    """Asynchronous counterpart of :func:`with_retry`.

    ``operation`` is a zero-argument coroutine function; it is called again
    for every attempt so each retry gets a fresh awaitable.
    """
    ctx = context or RetryContext()
    wait = sleeper or async_sleep
    attempt = 0

    while True:
        try:
            return await operation()
        except Exception as error:
            if not _should_retry(error, attempt, ctx):
                raise
            delay = _next_delay(error, attempt, ctx, rng)

        await wait(delay, cancel_event)
        attempt += 1


def retryable(context: RetryContext | None = None, **context_kwargs: Any) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator form of the retry engine.

    Works on plain functions and on ``async def`` functions. Arguments are
    either a ready RetryContext or RetryContext field values.

    Example:
        @retryable(max_retries=5, base_delay_ms=500)
        def fetch_abstracts(pmids):
            ...
    """
    if context is not None and context_kwargs:
        raise TypeError("pass either a RetryContext or keyword settings, not both")
    ctx = context or RetryContext(**context_kwargs)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                return await with_retry_async(lambda: func(*args, **kwargs), ctx)

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return with_retry(lambda: func(*args, **kwargs), ctx)

        return wrapper

    return decorator
