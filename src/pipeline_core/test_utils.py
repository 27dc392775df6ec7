"""Test utilities for pipeline-core.

Helpers for exercising the checkpoint manager and the retry engine
deterministically, for this package's tests and for integrators' own.
"""

from __future__ import annotations

import errno
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any


class ManualClock:
    """A clock that only moves when told to.

    Examples:
        >>> clock = ManualClock(datetime(2025, 1, 1, tzinfo=timezone.utc))
        >>> clock().isoformat()
        '2025-01-01T00:00:00+00:00'
        >>> clock.advance(90).isoformat()
        '2025-01-01T00:01:30+00:00'
    """

    def __init__(self, start: datetime | None = None, step: float = 0.0):
        """
        Args:
            start: Initial time; defaults to 2025-01-01 UTC.
            step: Seconds to advance automatically after every read.
        """
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        if self.step:
            self.now = self.now + timedelta(seconds=self.step)
        return current

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FlakyOperation:
    """A zero-argument callable that fails a fixed number of times.

    Args:
        failures: How many calls raise before calls start succeeding.
            Use -1 to fail forever.
        error_factory: Builds the exception for each failing call.
        result: Value returned once the failures are used up.
    """

    def __init__(
        self,
        failures: int,
        error_factory: Callable[[], BaseException] | None = None,
        result: Any = "ok",
    ):
        self.failures = failures
        self.error_factory = error_factory or (lambda: make_status_error(503))
        self.result = result
        self.calls = 0
        self.errors: list[BaseException] = []

    def __call__(self) -> Any:
        self.calls += 1
        if self.failures < 0 or self.calls <= self.failures:
            error = self.error_factory()
            self.errors.append(error)
            raise error
        return self.result

    async def run_async(self) -> Any:
        return self()


class StatusError(Exception):
    """Shaped like the HTTP errors raised by API client libraries."""

    def __init__(self, status_code: int, message: str | None = None):
        super().__init__(message or f"HTTP {status_code}")
        self.status_code = status_code


def make_status_error(status_code: int, message: str | None = None) -> StatusError:
    """Build an exception carrying an HTTP status code."""
    return StatusError(status_code, message)


def make_network_error(code: str = "ECONNRESET", message: str | None = None) -> OSError:
    """Build a socket-level OSError for a symbolic errno name.

    Examples:
        >>> make_network_error("ECONNREFUSED").errno == errno.ECONNREFUSED
        True
    """
    number = getattr(errno, code)
    return OSError(number, message or f"{code}: simulated network failure")
