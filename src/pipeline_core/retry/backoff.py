"""Exponential backoff with jitter, and the sleep primitives used between retries."""

from __future__ import annotations

import asyncio
import random
import threading
import time

from ..exceptions import RetryCancelledError

DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 30000
DEFAULT_JITTER = 0.25


def calculate_backoff(
    attempt: int,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
    jitter: float = DEFAULT_JITTER,
    rng: random.Random | None = None,
) -> int:
    """Calculate the delay before a retry.

    The delay doubles with every attempt, is capped at ``max_delay_ms`` and is
    then scaled by a uniform factor in ``[1 - jitter, 1 + jitter]``.

    Args:
        attempt: Number of retries already performed (the first retry is 0).
        base_delay_ms: Delay for the first retry, in milliseconds.
        max_delay_ms: Upper bound applied before jitter, in milliseconds.
        jitter: Jitter fraction between 0 and 1.
        rng: Optional random source, mainly for tests.

    Returns:
        Delay in whole milliseconds.
    """
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    if base_delay_ms < 0 or max_delay_ms < 0:
        raise ValueError("delays must be >= 0")
    if not 0 <= jitter <= 1:
        raise ValueError(f"jitter must be between 0 and 1, got {jitter}")

    # keep the power of two within float range
    capped = min(base_delay_ms * 2 ** min(attempt, 1023), max_delay_ms)

    if jitter == 0:
        return round(capped)

    source = rng or random
    factor = 1 + source.uniform(-jitter, jitter)
    return round(capped * factor)


def sleep(delay_ms: float, cancel_event: threading.Event | None = None) -> None:
    """Block for ``delay_ms`` milliseconds.

    Args:
        delay_ms: Time to wait in milliseconds.
        cancel_event: When set during the wait, the wait ends early.

    Raises:
        RetryCancelledError: If ``cancel_event`` was set.
    """
    seconds = max(delay_ms, 0) / 1000

    if cancel_event is None:
        time.sleep(seconds)
        return

    if cancel_event.wait(seconds):
        raise RetryCancelledError(details={"delay_ms": delay_ms})


async def async_sleep(delay_ms: float, cancel_event: asyncio.Event | None = None) -> None:
    """Asynchronous counterpart of :func:`sleep`."""
    seconds = max(delay_ms, 0) / 1000

    if cancel_event is None:
        await asyncio.sleep(seconds)
        return

    if cancel_event.is_set():
        raise RetryCancelledError(details={"delay_ms": delay_ms})

    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return

    raise RetryCancelledError(details={"delay_ms": delay_ms})
