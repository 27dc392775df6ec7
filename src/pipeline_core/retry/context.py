"""Per-call retry settings.

A RetryContext is built for a single wrapped call and thrown away after it
completes; nothing in it carries over between calls.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from .backoff import DEFAULT_BASE_DELAY_MS, DEFAULT_JITTER, DEFAULT_MAX_DELAY_MS

if TYPE_CHECKING:
    from ..config import RetryConfig

DEFAULT_MAX_RETRIES = 3

RetryPredicate = Callable[[BaseException], bool]
RetryCallback = Callable[[BaseException, int, int], Any]


@dataclass(frozen=True)
class RetryContext:
    """Settings for one retried call.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        base_delay_ms: Backoff delay for the first retry.
        max_delay_ms: Cap on the backoff delay before jitter.
        jitter: Jitter fraction (0.25 means +/-25%).
        is_retryable: Replaces the default classifier-based predicate.
        on_retry: Called as ``on_retry(error, attempt_number, delay_ms)``
            before each backoff sleep; ``attempt_number`` starts at 1.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS
    jitter: float = DEFAULT_JITTER
    is_retryable: RetryPredicate | None = None
    on_retry: RetryCallback | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be >= 0")
        if not 0 <= self.jitter <= 1:
            raise ValueError(f"jitter must be between 0 and 1, got {self.jitter}")

    @property
    def max_attempts(self) -> int:
        """Total invocations allowed, first attempt included."""
        return self.max_retries + 1

    def with_overrides(self, **changes: Any) -> RetryContext:
        """Return a copy with some fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_config(cls, config: RetryConfig, **overrides: Any) -> RetryContext:
        """Create a context from the ``[retry]`` configuration section."""
        values: dict[str, Any] = {
            "max_retries": config.max_retries,
            "base_delay_ms": config.base_delay_ms,
            "max_delay_ms": config.max_delay_ms,
            "jitter": config.jitter,
        }
        values.update(overrides)
        return cls(**values)
