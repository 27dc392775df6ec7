"""Turn pipeline and checkpoint exceptions into readable CLI output.

Each exception is mapped to an ErrorInfo carrying a category and, where one
exists, a next step for the operator. Stack traces are printed only in debug
mode.
"""

from __future__ import annotations

import os
import sys
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from rich.markup import escape

from ..checkpoint.errors import DuplicateIdError, InvalidTransitionError, NotFoundError
from ..exceptions import PipelineError, RetryCancelledError, SerializationError, ValidationError
from ..retry.classifier import ErrorKind, classify_with_reason

if TYPE_CHECKING:
    from rich.console import Console

# Debug mode enabled by PIPELINE_DEBUG=1 or --debug flag
_debug_mode = os.environ.get("PIPELINE_DEBUG", "0") == "1"


class ErrorCategory(str, Enum):
    """What kind of problem an error represents to the operator."""

    CHECKPOINT = "checkpoint"  # Unknown or duplicate checkpoint
    TRANSITION = "transition"  # Illegal status change
    VALIDATION = "validation"  # Bad input
    STORAGE = "storage"  # Unreadable persisted state, file errors
    TRANSIENT = "transient"  # Rate limit, timeout, server or network error
    AUTH = "auth"  # Credentials rejected
    INTERNAL = "internal"  # Internal/unexpected errors


@dataclass
class ErrorInfo:
    """An exception prepared for display."""

    message: str
    category: ErrorCategory
    suggestion: str | None = None
    details: str | None = None
    original_error: BaseException | None = None


def set_debug_mode(enabled: bool) -> None:
    """Enable or disable debug mode for verbose error output."""
    global _debug_mode
    _debug_mode = enabled


def is_debug_mode() -> bool:
    """Check if debug mode is enabled."""
    return _debug_mode


def format_error(error: ErrorInfo, console: Console) -> None:
    """Print an ErrorInfo to ``console``."""
    console.print(f"[bold red]Error:[/bold red] {escape(error.message)}")

    if error.details:
        if _debug_mode or len(error.details) < 200:
            console.print(f"[dim]{escape(error.details)}[/dim]")

    if error.suggestion:
        console.print()
        console.print(f"[yellow]Suggestion:[/yellow] {escape(error.suggestion)}")

    if _debug_mode and error.original_error:
        console.print()
        console.print("[dim]Stack trace (debug mode):[/dim]")
        tb_lines = traceback.format_exception(
            type(error.original_error),
            error.original_error,
            error.original_error.__traceback__,
        )
        for line in tb_lines:
            console.print(f"[dim]{escape(line.rstrip())}[/dim]")

    if not _debug_mode and error.original_error:
        console.print()
        console.print("[dim]Set PIPELINE_DEBUG=1 or use --debug for more details[/dim]")


def classify_exception(exception: BaseException) -> ErrorInfo:
    """Map an exception to an ErrorInfo.

    Checkpoint and storage errors are matched by type. Anything else goes
    through the retry classifier, so an HTTP 503 reads as transient and an
    HTTP 401 as an authentication problem.
    """
    if isinstance(exception, InvalidTransitionError):
        allowed = ", ".join(s.value for s in exception.allowed) or "none (terminal state)"
        return ErrorInfo(
            message=str(exception),
            category=ErrorCategory.TRANSITION,
            suggestion=f"From '{exception.from_status.value}' the allowed targets are: {allowed}",
            original_error=exception,
        )

    if isinstance(exception, NotFoundError):
        return ErrorInfo(
            message=str(exception),
            category=ErrorCategory.CHECKPOINT,
            suggestion="Run 'pipeline-core stage list' to see known checkpoints",
            original_error=exception,
        )

    if isinstance(exception, DuplicateIdError):
        return ErrorInfo(
            message=str(exception),
            category=ErrorCategory.CHECKPOINT,
            suggestion="Checkpoint ids must be unique; choose another id",
            original_error=exception,
        )

    if isinstance(exception, SerializationError):
        return ErrorInfo(
            message=str(exception),
            category=ErrorCategory.STORAGE,
            suggestion="Check that the file was produced by 'pipeline-core export'",
            original_error=exception,
        )

    if isinstance(exception, ValidationError):
        return ErrorInfo(
            message=str(exception),
            category=ErrorCategory.VALIDATION,
            original_error=exception,
        )

    if isinstance(exception, RetryCancelledError):
        return ErrorInfo(
            message=str(exception),
            category=ErrorCategory.TRANSIENT,
            original_error=exception,
        )

    if isinstance(exception, (FileNotFoundError, PermissionError)):
        return ErrorInfo(
            message=f"File error: {exception}",
            category=ErrorCategory.STORAGE,
            suggestion="Check the path and its permissions",
            original_error=exception,
        )

    result = classify_with_reason(exception)
    if result.retryable:
        return ErrorInfo(
            message=f"{result.reason}: {exception}",
            category=ErrorCategory.TRANSIENT,
            suggestion="This failure is transient; retry later or raise max_retries",
            original_error=exception,
        )
    if result.kind == ErrorKind.AUTH_ERROR:
        return ErrorInfo(
            message=f"Authentication failed: {exception}",
            category=ErrorCategory.AUTH,
            suggestion="Check your API credentials and permissions",
            original_error=exception,
        )
    if result.kind == ErrorKind.VALIDATION_ERROR:
        return ErrorInfo(
            message=f"Request rejected: {exception}",
            category=ErrorCategory.VALIDATION,
            original_error=exception,
        )

    code = exception.code if isinstance(exception, PipelineError) else type(exception).__name__
    return ErrorInfo(
        message=f"Internal error: {exception}",
        category=ErrorCategory.INTERNAL,
        details=f"code={code}",
        suggestion="This may be a bug. Re-run with --debug for the stack trace",
        original_error=exception,
    )


def handle_exception(
    console: Console,
    exception: BaseException,
    exit_code: int = 1,
    exit_on_error: bool = True,
) -> ErrorInfo:
    """Print ``exception`` and, unless ``exit_on_error`` is False, exit.

    Returns:
        The ErrorInfo that was printed.
    """
    error = classify_exception(exception)
    format_error(error, console)

    if exit_on_error:
        sys.exit(exit_code)

    return error
