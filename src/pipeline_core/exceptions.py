"""Pipeline error taxonomy.

Every error raised by pipeline adapters and by the checkpoint layer derives
from PipelineError, which carries a stable string code and an optional
details mapping for logging and audit records.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base error for all pipeline failures.

    Subclasses that set ``permanent = True`` describe caller defects; the
    retry classifier never treats them as transient, whatever the message.
    """

    permanent = False

    def __init__(self, message: str, code: str = "PIPELINE_ERROR", details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ValidationError(PipelineError):
    """Input failed validation."""

    permanent = True

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class StageError(PipelineError):
    """A pipeline stage failed."""

    def __init__(self, message: str, stage: str, details: dict[str, Any] | None = None):
        super().__init__(message, "STAGE_ERROR", {**(details or {}), "stage": stage})
        self.stage = stage


class LLMError(PipelineError):
    """An LLM provider call failed.

    ``status_code`` is kept when the provider returned an HTTP status so that
    the retry classifier can tell rate limits from bad requests.
    """

    def __init__(
        self,
        message: str,
        model: str,
        prompt_hash: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message,
            "LLM_ERROR",
            {**(details or {}), "model": model, "prompt_hash": prompt_hash},
        )
        self.model = model
        self.prompt_hash = prompt_hash
        self.status_code = status_code


class DatabaseError(PipelineError):
    """A database operation failed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "DATABASE_ERROR", details)


class SerializationError(PipelineError):
    """Persisted state could not be decoded."""

    permanent = True

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "SERIALIZATION_ERROR", details)


class RetryCancelledError(PipelineError):
    """A retry loop was aborted while waiting out a backoff delay."""

    permanent = True

    def __init__(self, message: str = "Retry cancelled", details: dict[str, Any] | None = None):
        super().__init__(message, "RETRY_CANCELLED", details)


def format_error_dict(error: BaseException) -> dict[str, Any]:
    """Format an error into a consistent ``{message, code, details}`` mapping."""
    if isinstance(error, PipelineError):
        return {
            "message": error.message,
            "code": error.code,
            "details": error.details,
        }

    return {
        "message": str(error),
        "code": "UNKNOWN_ERROR",
        "details": {"name": type(error).__name__},
    }
