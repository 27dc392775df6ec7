"""Time source used for checkpoint timestamps.

A clock is any zero-argument callable returning a timezone-aware datetime.
Inject a fixed clock (see ``pipeline_core.test_utils.ManualClock``) to make
timestamps deterministic.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current wall-clock time in UTC."""
    return datetime.now(timezone.utc)
