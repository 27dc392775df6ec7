"""Resilient call engine.

This module provides:
- Error classification into retryable and permanent kinds
- Exponential backoff with jitter
- A generic retry wrapper for sync and async operations
"""

from .backoff import async_sleep, calculate_backoff, sleep
from .classifier import (
    ClassificationResult,
    ErrorKind,
    FailureDetails,
    classify,
    classify_with_reason,
    describe_error,
    is_retryable,
)
from .context import RetryContext
from .engine import retryable, with_retry, with_retry_async

__all__ = [
    # Classifier
    "ErrorKind",
    "FailureDetails",
    "ClassificationResult",
    "classify",
    "classify_with_reason",
    "describe_error",
    "is_retryable",
    # Backoff
    "calculate_backoff",
    "sleep",
    "async_sleep",
    # Engine
    "RetryContext",
    "with_retry",
    "with_retry_async",
    "retryable",
]
