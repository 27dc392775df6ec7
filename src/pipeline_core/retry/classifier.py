"""Error classification for retry decisions.

Maps an arbitrary failure to one of a fixed set of error kinds:
- Status codes carried by HTTP/LLM client errors are checked first
- Then low-level network codes (ECONNRESET, ETIMEDOUT, ...)
- Then the error message, matched case-insensitively
- Anything else is UNKNOWN

Only RATE_LIMIT, TIMEOUT, SERVER_ERROR and NETWORK_ERROR are retryable.
"""

from __future__ import annotations

import errno
import socket
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Union


class ErrorKind(str, Enum):
    """Error classification for retry eligibility."""

    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNKNOWN = "UNKNOWN"


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.RATE_LIMIT,
        ErrorKind.TIMEOUT,
        ErrorKind.SERVER_ERROR,
        ErrorKind.NETWORK_ERROR,
    }
)

NETWORK_CODES = frozenset(
    {"ECONNRESET", "ECONNREFUSED", "ECONNABORTED", "EPIPE", "EHOSTUNREACH", "EAI_AGAIN"}
)
TIMEOUT_CODES = frozenset({"ETIMEDOUT", "ESOCKETTIMEDOUT"})

# Checked in order; first match wins.
# Each entry is (substring, kind, reason)
MESSAGE_PATTERNS: list[tuple[str, ErrorKind, str]] = [
    ("rate limit", ErrorKind.RATE_LIMIT, "Rate limited"),
    ("too many requests", ErrorKind.RATE_LIMIT, "Too many requests"),
    ("timeout", ErrorKind.TIMEOUT, "Operation timed out"),
    ("timed out", ErrorKind.TIMEOUT, "Operation timed out"),
    ("connection reset", ErrorKind.NETWORK_ERROR, "Connection reset"),
    ("econnreset", ErrorKind.NETWORK_ERROR, "Connection reset"),
    ("fetch failed", ErrorKind.NETWORK_ERROR, "Fetch operation failed"),
    ("network", ErrorKind.NETWORK_ERROR, "Network error"),
    ("unauthorized", ErrorKind.AUTH_ERROR, "Unauthorized"),
    ("forbidden", ErrorKind.AUTH_ERROR, "Forbidden"),
    ("invalid api key", ErrorKind.AUTH_ERROR, "Invalid API key"),
]

# getaddrinfo() reports temporary DNS failures with negative EAI_* numbers
# that errno.errorcode does not know about.
_EAI_NAMES: dict[int, str] = {}
if hasattr(socket, "EAI_AGAIN"):
    _EAI_NAMES[socket.EAI_AGAIN] = "EAI_AGAIN"


@dataclass(frozen=True)
class FailureDetails:
    """The parts of a failure the classifier looks at.

    Attributes:
        status_code: HTTP-style numeric status, if the error carried one.
        code: Symbolic low-level code such as ``ECONNRESET``.
        message: Human readable error message.
        permanent: The error declared itself a caller defect.
    """

    status_code: int | None = None
    code: str | None = None
    message: str = ""
    permanent: bool = False


class ClassificationResult(NamedTuple):
    """Result of error classification."""

    kind: ErrorKind
    reason: str
    retryable: bool


ErrorLike = Union[BaseException, FailureDetails]


def _int_attr(obj: object, name: str) -> int | None:
    value = getattr(obj, name, None)
    # bool is an int subclass but never a status
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _find_status_code(error: BaseException) -> int | None:
    for name in ("status_code", "status", "code"):
        value = _int_attr(error, name)
        if value is not None:
            return value

    response = getattr(error, "response", None)
    if response is not None:
        return _int_attr(response, "status_code") or _int_attr(response, "status")

    return None


def _find_code(error: BaseException) -> str | None:
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code.upper()

    if isinstance(error, OSError) and error.errno is not None:
        name = errno.errorcode.get(error.errno) or _EAI_NAMES.get(error.errno)
        if name:
            return name

    if isinstance(error, TimeoutError):
        return "ETIMEDOUT"

    return None


def describe_error(error: ErrorLike) -> FailureDetails:
    """Extract the classifiable details of an error.

    Args:
        error: An exception or an already built FailureDetails.

    Returns:
        FailureDetails with whatever status, code and message were found.
    """
    if isinstance(error, FailureDetails):
        return error

    return FailureDetails(
        status_code=_find_status_code(error),
        code=_find_code(error),
        message=str(error),
        permanent=getattr(error, "permanent", False) is True,
    )


def classify_with_reason(error: ErrorLike) -> ClassificationResult:
    """Classify an error and explain which rule matched.

    Args:
        error: The failure to classify.

    Returns:
        ClassificationResult with kind, reason and retry eligibility.
    """
    details = describe_error(error)

    def result(kind: ErrorKind, reason: str) -> ClassificationResult:
        return ClassificationResult(kind=kind, reason=reason, retryable=kind in RETRYABLE_KINDS)

    if details.permanent:
        if details.code == "VALIDATION_ERROR":
            return result(ErrorKind.VALIDATION_ERROR, "Invalid input")
        return result(ErrorKind.UNKNOWN, "Permanent pipeline error")

    status = details.status_code
    if status is not None:
        if status == 429:
            return result(ErrorKind.RATE_LIMIT, f"HTTP {status}")
        if status in (401, 403):
            return result(ErrorKind.AUTH_ERROR, f"HTTP {status}")
        if status == 408:
            return result(ErrorKind.TIMEOUT, f"HTTP {status}")
        if status >= 500:
            return result(ErrorKind.SERVER_ERROR, f"HTTP {status}")
        if status in (400, 422):
            return result(ErrorKind.VALIDATION_ERROR, f"HTTP {status}")

    code = details.code
    if code:
        if code in NETWORK_CODES:
            return result(ErrorKind.NETWORK_ERROR, f"Network code {code}")
        if code in TIMEOUT_CODES:
            return result(ErrorKind.TIMEOUT, f"Timeout code {code}")

    normalized = details.message.lower()
    for pattern, kind, reason in MESSAGE_PATTERNS:
        if pattern in normalized:
            return result(kind, reason)

    return result(ErrorKind.UNKNOWN, "Could not classify error")


def classify(error: ErrorLike) -> ErrorKind:
    """Classify an error into an ErrorKind."""
    return classify_with_reason(error).kind


def is_retryable(error: ErrorLike) -> bool:
    """Default retry predicate: true for transient error kinds."""
    return classify(error) in RETRYABLE_KINDS
