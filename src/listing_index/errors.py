"""Error taxonomy shared by the crawl, normalizer and persistence layers.

Raw faults are classified once, where they are first observed (the source
adapter or the gateway), so the retry policy only ever looks at `ErrorKind`.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """How a failure should be handled."""

    TRANSIENT = "transient"  # network / 5xx, retry with backoff
    BLOCKED = "blocked"  # anti-bot page, wait out the defense
    MALFORMED = "malformed"  # bad input for one record, never retried
    FATAL = "fatal"  # abort the run


class ListingIndexError(Exception):
    """Base class for all classified errors."""

    kind: ErrorKind = ErrorKind.FATAL


class TransientError(ListingIndexError):
    """Network fault or server error worth retrying."""

    kind = ErrorKind.TRANSIENT

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_server_error(self) -> bool:
        return self.status_code is not None and self.status_code >= 500


class BlockedError(ListingIndexError):
    """Block page, CAPTCHA or access-denied response."""

    kind = ErrorKind.BLOCKED

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedListingError(ListingIndexError):
    """Input that can never be processed, e.g. a URL without a listing id."""

    kind = ErrorKind.MALFORMED


class PersistenceError(ListingIndexError):
    """Gateway write or read failed. Fatal for the run."""

    kind = ErrorKind.FATAL


class ConfigError(ListingIndexError):
    """Missing or invalid startup configuration."""

    kind = ErrorKind.FATAL


class ScoringConfigError(ConfigError):
    """Weight table references a signal without a sub-score function."""


def classify(exc: BaseException) -> ErrorKind:
    """Map any exception to an `ErrorKind`.

    Classified errors carry their own kind. Anything else (browser timeouts,
    socket errors) is treated as transient without a status code.
    """
    if isinstance(exc, ListingIndexError):
        return exc.kind
    return ErrorKind.TRANSIENT
