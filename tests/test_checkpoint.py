"""Tests for checkpoint state and stores."""

import json
import logging

import pytest

from listing_index.crawl.checkpoint import (
    CheckpointState,
    FileCheckpointStore,
    MemoryCheckpointStore,
    Phase,
)


URLS = [f"https://www.bizbuysell.com/business-opportunity/l-{i}/{100 + i}/" for i in range(5)]


class TestCheckpointState:
    """Tests for state transitions and invariants."""

    def test_defaults(self):
        state = CheckpointState()
        assert state.phase is Phase.COLLECTING
        assert state.collected_urls == []
        assert state.completed_urls == []

    def test_set_collected_moves_to_extracting(self):
        state = CheckpointState()
        state.set_collected(URLS + URLS[:2])
        assert state.phase is Phase.EXTRACTING
        assert state.collected_urls == URLS

    def test_pending_skips_completed_and_failed(self):
        state = CheckpointState()
        state.set_collected(URLS)
        state.mark_completed(URLS[:2])
        state.mark_failed(URLS[2])

        assert state.pending_urls() == URLS[3:]
        assert state.pending_urls(include_failed=True) == URLS[2:]

    def test_completing_a_failed_url_clears_the_failure(self):
        state = CheckpointState()
        state.set_collected(URLS)
        state.mark_failed(URLS[0])
        state.mark_completed([URLS[0]])
        assert state.failed_urls == []
        assert state.completed_urls == [URLS[0]]
        assert state.is_consistent()

    def test_cannot_complete_uncollected_url(self):
        state = CheckpointState()
        state.set_collected(URLS[:2])
        with pytest.raises(ValueError):
            state.mark_completed([URLS[3]])
        with pytest.raises(ValueError):
            state.mark_failed(URLS[3])

    def test_completed_once(self):
        state = CheckpointState()
        state.set_collected(URLS)
        state.mark_completed([URLS[0]])
        state.mark_completed([URLS[0], URLS[1]])
        assert state.completed_urls == URLS[:2]

    def test_inconsistent_state_detected(self):
        state = CheckpointState(collected_urls=URLS[:1], completed_urls=URLS[1:2])
        assert not state.is_consistent()


class TestFileCheckpointStore:
    """Tests for the JSON file store."""

    def test_missing_file_gives_defaults(self, tmp_path):
        store = FileCheckpointStore(tmp_path / "missing.json")
        assert store.load() == CheckpointState()

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "checkpoint.json"
        store = FileCheckpointStore(path)
        state = CheckpointState()
        state.set_collected(URLS)
        state.mark_completed(URLS[:3])
        state.mark_failed(URLS[3])

        store.save(state)
        loaded = store.load()

        assert loaded == state
        on_disk = json.loads(path.read_text())
        assert on_disk["phase"] == "extracting"
        assert on_disk["collectedUrls"] == URLS
        assert on_disk["completedUrls"] == URLS[:3]
        assert on_disk["failedUrls"] == [URLS[3]]

    def test_no_temp_files_left_behind(self, tmp_path):
        store = FileCheckpointStore(tmp_path / "checkpoint.json")
        store.save(CheckpointState())
        assert [p.name for p in tmp_path.iterdir()] == ["checkpoint.json"]

    def test_corrupt_file_gives_defaults(self, tmp_path, caplog):
        path = tmp_path / "checkpoint.json"
        path.write_text("{not json")
        with caplog.at_level(logging.WARNING):
            state = FileCheckpointStore(path).load()
        assert state == CheckpointState()
        assert "Corrupt checkpoint" in caplog.text

    def test_wrong_shape_gives_defaults(self, tmp_path):
        path = tmp_path / "checkpoint.json"
        path.write_text(json.dumps({"phase": "sideways", "collectedUrls": 5}))
        assert FileCheckpointStore(path).load() == CheckpointState()

    def test_inconsistent_file_gives_defaults(self, tmp_path):
        path = tmp_path / "checkpoint.json"
        path.write_text(json.dumps({
            "phase": "extracting",
            "collectedUrls": [URLS[0]],
            "completedUrls": [URLS[1]],
        }))
        assert FileCheckpointStore(path).load() == CheckpointState()

    def test_legacy_phase_names(self, tmp_path):
        path = tmp_path / "checkpoint.json"
        path.write_text(json.dumps({
            "phase": "extract",
            "collectedUrls": URLS,
            "completedUrls": URLS[:1],
        }))
        state = FileCheckpointStore(path).load()
        assert state.phase is Phase.EXTRACTING
        assert state.failed_urls == []

    def test_save_refuses_inconsistent_state(self, tmp_path):
        store = FileCheckpointStore(tmp_path / "checkpoint.json")
        with pytest.raises(ValueError):
            store.save(CheckpointState(collected_urls=[], completed_urls=URLS[:1]))

    def test_clear(self, tmp_path):
        store = FileCheckpointStore(tmp_path / "checkpoint.json")
        state = CheckpointState()
        state.set_collected(URLS)
        store.save(state)

        store.clear()

        cleared = store.load()
        assert cleared.phase is Phase.DONE
        assert cleared.collected_urls == []


class TestMemoryCheckpointStore:
    """Tests for the in-memory store."""

    def test_records_save_history_as_copies(self):
        store = MemoryCheckpointStore()
        state = CheckpointState()
        state.set_collected(URLS)
        store.save(state)
        state.mark_completed(URLS[:1])
        store.save(state)

        assert [len(s.completed_urls) for s in store.saves] == [0, 1]
        assert store.load() == state
        assert store.load() is not state
