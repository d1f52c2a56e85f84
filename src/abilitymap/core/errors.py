"""Error taxonomy and classification.

Failures of the remote evaluation service fall into four categories that
drive retry behavior:

    | Category   | Typical source            | Retried | Effect                  |
    |------------|---------------------------|---------|-------------------------|
    | rate_limit | HTTP 429, "[429" marker   | Yes     | sets global cooldown    |
    | transient  | HTTP 500 / 503            | Yes     | exponential backoff     |
    | timeout    | item or batch deadline    | No      | item dropped from batch |
    | fatal      | everything else           | No      | raised immediately      |

``classify_error`` accepts any exception. Status codes are read from a
``status`` or ``status_code`` attribute, falling back to a ``[NNN `` marker
embedded in the message (the format used by Google and several HTTP
client libraries).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

RATE_LIMIT_STATUS = 429
TRANSIENT_STATUSES = frozenset({500, 503})

_STATUS_MARKER = re.compile(r"\[(\d{3}) ")
_RETRY_DELAY_HINT = re.compile(r'retryDelay"?:"?(\d+)(s|sec)', re.IGNORECASE)


class AbilityMapError(Exception):
    """Base exception for all abilitymap errors."""


class ConfigError(AbilityMapError):
    """Raised when a configuration file is missing or unreadable."""


class RemoteCallError(AbilityMapError):
    """Base for errors raised by the remote evaluation service.

    Attributes:
        status: HTTP-like status code, if known.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RateLimitedError(RemoteCallError):
    """Provider signalled a rate limit (HTTP 429).

    Attributes:
        retry_after_seconds: Provider-supplied wait, e.g. from a Retry-After header.
    """

    def __init__(self, message: str, retry_after_seconds: float | None = None) -> None:
        super().__init__(message, status=RATE_LIMIT_STATUS)
        self.retry_after_seconds = retry_after_seconds


class TransientServerError(RemoteCallError):
    """Provider returned a retryable server error (HTTP 500/503)."""

    def __init__(self, message: str, status: int = 503) -> None:
        super().__init__(message, status=status)


class FatalError(RemoteCallError):
    """Non-retryable failure: bad request, authentication, malformed input."""


class MaxRetriesExceededError(AbilityMapError):
    """Raised when every retry attempt was used without a success."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Max retries exceeded after {attempts} attempts")
        self.attempts = attempts


class ParseError(AbilityMapError):
    """Raised when an LLM response cannot be turned into structured data."""


class ErrorCategory(str, Enum):
    """High-level error categories that determine retry behavior."""

    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    FATAL = "fatal"


@dataclass(frozen=True)
class ClassifiedError:
    """An exception with its category and retry metadata.

    Attributes:
        category: Which retry path applies.
        message: String form of the original exception.
        status: Status code extracted from the exception, if any.
        suggested_wait_seconds: Explicit provider wait hint, if any (before jitter).
    """

    category: ErrorCategory
    message: str
    status: int | None = None
    suggested_wait_seconds: float | None = None

    @property
    def retriable(self) -> bool:
        return self.category in (ErrorCategory.RATE_LIMIT, ErrorCategory.TRANSIENT)


def parse_retry_delay(message: str | None) -> float | None:
    """Extract a ``retryDelay":"<N>s"`` hint from an error message.

    Returns:
        The delay in seconds, or None if the message carries no hint.
    """
    if not message:
        return None
    match = _RETRY_DELAY_HINT.search(message)
    if match:
        return float(int(match.group(1)))
    return None


def extract_status(error: BaseException) -> int | None:
    """Find the status code of an exception from attributes or message."""
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if value is None:
            continue
        try:
            return int(value)
        except (TypeError, ValueError):
            continue
    match = _STATUS_MARKER.search(str(error))
    if match:
        return int(match.group(1))
    return None


def classify_error(error: BaseException) -> ClassifiedError:
    """Classify an exception raised by a remote operation.

    Args:
        error: The exception to classify.

    Returns:
        ClassifiedError describing which retry path applies.
    """
    message = str(error)
    status = extract_status(error)

    if isinstance(error, TimeoutError):
        return ClassifiedError(ErrorCategory.TIMEOUT, message, status)

    if status == RATE_LIMIT_STATUS or "[429" in message:
        wait = parse_retry_delay(message)
        if wait is None:
            wait = getattr(error, "retry_after_seconds", None)
        return ClassifiedError(
            ErrorCategory.RATE_LIMIT,
            message,
            status or RATE_LIMIT_STATUS,
            suggested_wait_seconds=wait,
        )

    if status in TRANSIENT_STATUSES:
        return ClassifiedError(ErrorCategory.TRANSIENT, message, status)

    return ClassifiedError(ErrorCategory.FATAL, message, status)


__all__ = [
    "AbilityMapError",
    "ClassifiedError",
    "ConfigError",
    "ErrorCategory",
    "FatalError",
    "MaxRetriesExceededError",
    "ParseError",
    "RateLimitedError",
    "RemoteCallError",
    "TransientServerError",
    "classify_error",
    "extract_status",
    "parse_retry_delay",
]
