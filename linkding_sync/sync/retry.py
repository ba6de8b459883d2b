"""Retry/backoff policy for failed sync batches.

``RetryPolicy.decide`` is pure: it never sleeps, never logs and never touches
the store. The scheduler persists the retry count, sleeps and tries again.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

import httpx
import peewee

from linkding_sync.adapters.linkding.client import (
    LinkdingAPIError,
    LinkdingMalformedResponseError,
)
from linkding_sync.sync.constants import (
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_BASE_DELAY_SECONDS,
    DEFAULT_MAX_DELAY_SECONDS,
    DEFAULT_MAX_RETRIES,
)

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})
AUTH_STATUS_CODES = frozenset({401, 403})
RETRY_AFTER_STATUS_CODES = frozenset({429, 503})

_TRANSIENT_KEYWORDS = (
    "timeout",
    "timed out",
    "connection",
    "network",
    "rate limit",
    "too many requests",
    "temporary",
    "unavailable",
    "gateway",
    "try again",
)


class ErrorKind(StrEnum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    PERSISTENCE = "persistence"


@dataclass(frozen=True)
class Retry:
    delay: float


@dataclass(frozen=True)
class GiveUp:
    reason: str
    kind: ErrorKind


RetryDecision = Retry | GiveUp


def is_transient_error(error: BaseException) -> bool:
    """Keyword heuristic for exceptions with no known type."""
    error_str = str(error).lower()
    if any(keyword in error_str for keyword in _TRANSIENT_KEYWORDS):
        return True
    exception_type = type(error).__name__.lower()
    return any(name in exception_type for name in ("timeout", "connectionerror", "networkerror"))


def is_auth_error(error: BaseException) -> bool:
    return isinstance(error, LinkdingAPIError) and error.status_code in AUTH_STATUS_CODES


def classify_error(error: BaseException) -> ErrorKind:
    """Map an exception raised during a batch to how the engine should treat it."""
    if isinstance(error, httpx.TimeoutException | httpx.TransportError):
        return ErrorKind.TRANSIENT
    if isinstance(error, LinkdingAPIError):
        if error.status_code in TRANSIENT_STATUS_CODES:
            return ErrorKind.TRANSIENT
        return ErrorKind.PERMANENT
    if isinstance(error, LinkdingMalformedResponseError):
        return ErrorKind.PERMANENT
    if isinstance(error, peewee.DatabaseError):
        return ErrorKind.PERSISTENCE
    if isinstance(error, TimeoutError):
        return ErrorKind.TRANSIENT
    return ErrorKind.TRANSIENT if is_transient_error(error) else ErrorKind.PERMANENT


def describe_error(error: BaseException) -> str:
    """Short human-readable description for the UI and the cursor row."""
    if isinstance(error, LinkdingAPIError):
        if error.status_code in AUTH_STATUS_CODES:
            return "Linkding rejected the API token (HTTP %d)" % error.status_code
        return "Linkding returned HTTP %d" % error.status_code
    if isinstance(error, httpx.TimeoutException):
        return "Timed out talking to Linkding"
    if isinstance(error, httpx.TransportError):
        return "Could not reach Linkding: %s" % (str(error) or type(error).__name__)
    if isinstance(error, peewee.DatabaseError):
        return "Local database error: %s" % error
    return str(error) or type(error).__name__


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``min(max_delay, base_delay * factor ** (attempt - 1))``.

    ``attempt`` counts retries, starting at 1 for the first retry after a
    failure. ``max_attempts`` retries are allowed before giving up.
    """

    max_attempts: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    factor: float = DEFAULT_BACKOFF_FACTOR
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * self.factor ** max(0, attempt - 1))

    def decide(self, error: BaseException, attempt: int) -> RetryDecision:
        kind = classify_error(error)
        if kind is not ErrorKind.TRANSIENT:
            return GiveUp(reason=describe_error(error), kind=kind)
        if attempt > self.max_attempts:
            return GiveUp(
                reason=f"{describe_error(error)} (gave up after {self.max_attempts} retries)",
                kind=kind,
            )

        delay = self.delay_for(attempt)
        if (
            isinstance(error, LinkdingAPIError)
            and error.status_code in RETRY_AFTER_STATUS_CODES
            and error.retry_after is not None
        ):
            delay = max(delay, min(error.retry_after, self.max_delay))
        return Retry(delay=delay)
