"""Durable crawl progress.

On disk the checkpoint is a small JSON document:

    {"collectedUrls": [...], "completedUrls": [...], "failedUrls": [...], "phase": "extracting"}

A missing or unreadable file yields the defaults; corruption is logged and
never fatal. There is a single writer per run, so saves are a write to a
temp file followed by an atomic replace.
"""

import json
import logging
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    COLLECTING = "collecting"
    EXTRACTING = "extracting"
    DONE = "done"


# Phase names written by older checkpoint files
_LEGACY_PHASES = {"collect": Phase.COLLECTING, "extract": Phase.EXTRACTING}


class CheckpointState(BaseModel):
    """Crawl progress.

    Invariants: completed and failed URLs are subsets of the collected URLs,
    and no URL is both completed and failed.
    """

    model_config = ConfigDict(populate_by_name=True)

    phase: Phase = Phase.COLLECTING
    collected_urls: list[str] = Field(default_factory=list, alias="collectedUrls")
    completed_urls: list[str] = Field(default_factory=list, alias="completedUrls")
    failed_urls: list[str] = Field(default_factory=list, alias="failedUrls")

    @field_validator("phase", mode="before")
    @classmethod
    def _legacy_phase(cls, value):
        return _LEGACY_PHASES.get(value, value)

    def pending_urls(self, include_failed: bool = False) -> list[str]:
        """collected - completed (- failed unless include_failed), in collection order."""
        skip = set(self.completed_urls)
        if not include_failed:
            skip.update(self.failed_urls)
        return [url for url in self.collected_urls if url not in skip]

    def set_collected(self, urls: list[str]) -> None:
        """Record the collected set and move to extraction."""
        self.collected_urls = list(dict.fromkeys(urls))
        collected = set(self.collected_urls)
        self.completed_urls = [u for u in self.completed_urls if u in collected]
        self.failed_urls = [u for u in self.failed_urls if u in collected]
        self.phase = Phase.EXTRACTING

    def mark_completed(self, urls: list[str]) -> None:
        collected = set(self.collected_urls)
        unknown = [u for u in urls if u not in collected]
        if unknown:
            raise ValueError(f"Cannot complete URLs that were never collected: {unknown[:3]}")
        done = set(self.completed_urls)
        self.completed_urls.extend(u for u in dict.fromkeys(urls) if u not in done)
        finished = set(urls)
        self.failed_urls = [u for u in self.failed_urls if u not in finished]

    def mark_failed(self, url: str) -> None:
        if url not in set(self.collected_urls):
            raise ValueError(f"Cannot fail a URL that was never collected: {url}")
        if url not in self.failed_urls and url not in set(self.completed_urls):
            self.failed_urls.append(url)

    def is_consistent(self) -> bool:
        collected = set(self.collected_urls)
        completed = set(self.completed_urls)
        failed = set(self.failed_urls)
        return completed <= collected and failed <= collected and not (completed & failed)

    def to_json(self) -> str:
        data = self.model_dump(by_alias=True, mode="json")
        return json.dumps(data, indent=2)


class CheckpointStore(Protocol):
    """Load/save/clear contract used by the orchestrator."""

    def load(self) -> CheckpointState: ...

    def save(self, state: CheckpointState) -> None: ...

    def clear(self) -> None: ...


class FileCheckpointStore:
    """Checkpoint persisted as a JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> CheckpointState:
        """Load the checkpoint, or defaults if missing or corrupt."""
        if not self.path.exists():
            return CheckpointState()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            state = CheckpointState.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Corrupt checkpoint file {self.path}, starting fresh: {e}")
            return CheckpointState()
        if not state.is_consistent():
            logger.warning(f"Inconsistent checkpoint file {self.path}, starting fresh")
            return CheckpointState()
        return state

    def save(self, state: CheckpointState) -> None:
        """Write the checkpoint atomically (temp file + replace)."""
        if not state.is_consistent():
            raise ValueError("Refusing to save checkpoint: completed/failed URLs not a subset of collected")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".checkpoint-", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(state.to_json())
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def clear(self) -> None:
        """Reset to defaults with phase 'done'."""
        self.save(CheckpointState(phase=Phase.DONE))


class MemoryCheckpointStore:
    """In-memory store for tests and dry runs. Keeps a history of saves."""

    def __init__(self, state: CheckpointState | None = None):
        self._state = state.model_copy(deep=True) if state else None
        self.saves: list[CheckpointState] = []

    def load(self) -> CheckpointState:
        if self._state is None:
            return CheckpointState()
        return self._state.model_copy(deep=True)

    def save(self, state: CheckpointState) -> None:
        if not state.is_consistent():
            raise ValueError("Refusing to save checkpoint: completed/failed URLs not a subset of collected")
        self._state = state.model_copy(deep=True)
        self.saves.append(self._state.model_copy(deep=True))

    def clear(self) -> None:
        self.save(CheckpointState(phase=Phase.DONE))
