"""
Error taxonomy for background jobs.

Handlers signal failure by raising. The queue asks is_retryable() whether
the backend should schedule another attempt or close the job with an error.
"""

import asyncio
from enum import StrEnum

import httpx
import psycopg
from pydantic import ValidationError

from fortune.db.helpers import DatabaseError


class ErrorKind(StrEnum):
    VALIDATION = "validation"  # malformed payload, never retried
    TRANSIENT = "transient"  # network, timeouts, 5xx
    RATE_LIMITED = "rate_limited"  # 429 from the channel
    PERMANENT = "permanent"  # e.g. bot blocked by the recipient


RETRYABLE_KINDS = frozenset({ErrorKind.TRANSIENT, ErrorKind.RATE_LIMITED})

# Untyped errors whose message contains one of these are treated as fatal.
_NON_RETRYABLE_MARKERS = ("validation", "invalid")


class JobError(Exception):
    """Base exception for job handlers carrying an explicit error kind."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.TRANSIENT):
        super().__init__(message)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class PayloadValidationError(JobError):
    """Job payload failed schema validation."""

    def __init__(self, message: str):
        super().__init__(message, kind=ErrorKind.VALIDATION)


def classify_error(error: BaseException) -> ErrorKind:
    """Map an exception raised by a handler onto an ErrorKind."""
    kind = getattr(error, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind

    if isinstance(error, ValidationError):
        return ErrorKind.VALIDATION

    if isinstance(
        error,
        httpx.TimeoutException | httpx.NetworkError | asyncio.TimeoutError | ConnectionError,
    ):
        return ErrorKind.TRANSIENT

    if isinstance(error, psycopg.OperationalError):
        return ErrorKind.TRANSIENT
    if isinstance(error, DatabaseError) and error.recoverable:
        return ErrorKind.TRANSIENT

    message = str(error).lower()
    if any(marker in message for marker in _NON_RETRYABLE_MARKERS):
        return ErrorKind.VALIDATION

    if isinstance(error, DatabaseError):
        return ErrorKind.PERMANENT

    return ErrorKind.TRANSIENT


def is_retryable(error: BaseException) -> bool:
    """True when the queue should let the job run again."""
    return classify_error(error) in RETRYABLE_KINDS


def describe_error(error: BaseException) -> dict:
    """Job output payload recorded for a failed attempt."""
    return {
        "error": str(error) or type(error).__name__,
        "error_type": type(error).__name__,
        "kind": classify_error(error).value,
    }
