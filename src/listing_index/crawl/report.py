"""Crawl run results."""

import traceback
from dataclasses import dataclass, field
from datetime import datetime, UTC

from ..errors import classify
from .checkpoint import CheckpointState


@dataclass
class ScrapeError:
    """Record of a listing that could not be processed."""

    url: str
    error_type: str
    error_kind: str
    error_message: str
    traceback: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_exception(cls, url: str, exc: Exception) -> "ScrapeError":
        """Create a ScrapeError from an exception."""
        return cls(
            url=url,
            error_type=type(exc).__name__,
            error_kind=classify(exc).value,
            error_message=str(exc),
            traceback="".join(traceback.format_exception(exc)),
        )


@dataclass
class CrawlReport:
    """Counters for one run plus the checkpoint state it ended with."""

    state: CheckpointState
    collected: int = 0
    pending: int = 0
    processed: int = 0
    succeeded: int = 0
    flushed: int = 0
    errors: list[ScrapeError] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def __repr__(self) -> str:
        return (
            f"CrawlReport({self.processed} processed, {self.succeeded} succeeded, "
            f"{self.flushed} persisted, {self.error_count} failed)"
        )
