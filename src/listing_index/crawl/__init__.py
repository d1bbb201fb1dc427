"""Crawl module."""

from .checkpoint import (
    CheckpointState,
    CheckpointStore,
    FileCheckpointStore,
    MemoryCheckpointStore,
    Phase,
)
from .orchestrator import CrawlOrchestrator
from .pacing import Pacer
from .report import CrawlReport, ScrapeError
from .retry import RetryPolicy
from .watchdog import EXIT_WATCHDOG, Watchdog

__all__ = [
    "CheckpointState",
    "CheckpointStore",
    "CrawlOrchestrator",
    "CrawlReport",
    "EXIT_WATCHDOG",
    "FileCheckpointStore",
    "MemoryCheckpointStore",
    "Pacer",
    "Phase",
    "RetryPolicy",
    "ScrapeError",
    "Watchdog",
]
