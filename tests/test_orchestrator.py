"""Tests for the crawl orchestrator, driven by fake sources and gateways."""

import asyncio
import random

import pytest

from listing_index.config import CrawlSettings
from listing_index.crawl import (
    CheckpointState,
    CrawlOrchestrator,
    MemoryCheckpointStore,
    Pacer,
    Phase,
)
from listing_index.errors import (
    BlockedError,
    MalformedListingError,
    PersistenceError,
    TransientError,
)
from listing_index.models.listing import RawRecord
from listing_index.pipeline import ListingPipeline
from listing_index.scrapers.base import IndexPage, ListingSource


def listing_url(i: int) -> str:
    return f"https://www.bizbuysell.com/business-opportunity/listing-{i}/{2000 + i}/"


URLS = [listing_url(i) for i in range(10)]


class FakeClock:
    def __init__(self):
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


class FakeSource(ListingSource):
    """Scripted listing source.

    `pages` maps a page number to a list of outcomes (IndexPage or an
    exception) consumed in order; the last outcome repeats. `failures`
    maps a URL to exceptions raised before extraction succeeds.
    """

    source_id = "bizbuysell"

    def __init__(self, pages=None, failures=None):
        self.pages = {num: list(outcomes) for num, outcomes in (pages or {}).items()}
        self.failures = {url: list(errors) for url, errors in (failures or {}).items()}
        self.index_calls: list[int] = []
        self.extract_calls: list[str] = []

    async def fetch_index_page(self, page_num: int) -> IndexPage:
        self.index_calls.append(page_num)
        outcomes = self.pages.get(page_num)
        if not outcomes:
            return IndexPage(urls=[], has_next=False)
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def extract(self, url: str) -> RawRecord:
        self.extract_calls.append(url)
        errors = self.failures.get(url)
        if errors:
            raise errors.pop(0)
        return RawRecord(
            url=url,
            state="Texas",
            asking_price="$500,000",
            gross_revenue="$900,000",
            cash_flow_sde="$200,000",
            description="Absentee owner. Owner is retiring.",
            page_text=f"page for {url}",
        )


class FakeGateway:
    """Records upserts; optionally fails on the Nth listing upsert."""

    def __init__(self, fail_on_call: int | None = None):
        self.fail_on_call = fail_on_call
        self.listing_batches: list[list] = []
        self.score_batches: list[list] = []
        self.upsert_calls = 0

    def upsert_listings(self, rows) -> int:
        self.upsert_calls += 1
        if self.upsert_calls == self.fail_on_call:
            raise PersistenceError("connection reset by peer")
        self.listing_batches.append(list(rows))
        return len(rows)

    def upsert_scores(self, records) -> None:
        self.score_batches.append(list(records))

    def fetch_active(self):
        return []

    def close(self) -> None:
        pass


def extracting_state(urls, completed=(), failed=()) -> CheckpointState:
    state = CheckpointState()
    state.set_collected(list(urls))
    state.mark_completed(list(completed))
    for url in failed:
        state.mark_failed(url)
    return state


def make_orchestrator(source, gateway, store, batch_size=2, max_search_pages=30, retry_failed=False):
    settings = CrawlSettings(batch_size=batch_size, max_search_pages=max_search_pages)
    clock = FakeClock()
    pacer = Pacer(settings, sleep=clock.sleep, rng=random.Random(0))
    orchestrator = CrawlOrchestrator(
        source,
        gateway,
        store,
        ListingPipeline(source="bizbuysell", current_year=2026),
        settings=settings,
        pacer=pacer,
        retry_failed=retry_failed,
    )
    return orchestrator, clock


class TestResume:
    """Tests for resuming from a checkpoint."""

    def test_resume_extracts_only_pending(self):
        source = FakeSource()
        gateway = FakeGateway()
        store = MemoryCheckpointStore(extracting_state(URLS, completed=URLS[:7]))
        orchestrator, _ = make_orchestrator(source, gateway, store)

        report = asyncio.run(orchestrator.run())

        assert source.extract_calls == URLS[7:]
        assert source.index_calls == []
        assert report.flushed == 3
        assert store.load().phase is Phase.DONE

    def test_crash_during_flush_keeps_unflushed_urls_pending(self):
        urls = URLS[:4]
        store = MemoryCheckpointStore(extracting_state(urls))
        source = FakeSource()
        orchestrator, _ = make_orchestrator(source, FakeGateway(fail_on_call=2), store)

        with pytest.raises(PersistenceError):
            asyncio.run(orchestrator.run())

        saved = store.load()
        assert saved.phase is Phase.EXTRACTING
        assert saved.completed_urls == urls[:2]

        rerun_source = FakeSource()
        gateway = FakeGateway()
        orchestrator, _ = make_orchestrator(rerun_source, gateway, store)
        asyncio.run(orchestrator.run())

        assert rerun_source.extract_calls == urls[2:]
        assert [row.url for row in gateway.listing_batches[0]] == urls[2:]

    def test_done_checkpoint_starts_fresh(self):
        source = FakeSource(pages={1: [IndexPage(urls=URLS[:2], has_next=False)]})
        store = MemoryCheckpointStore(CheckpointState(phase=Phase.DONE))
        orchestrator, _ = make_orchestrator(source, FakeGateway(), store)

        report = asyncio.run(orchestrator.run())

        assert source.index_calls == [1]
        assert report.collected == 2

    def test_every_saved_checkpoint_is_consistent(self):
        source = FakeSource(
            pages={1: [IndexPage(urls=URLS[:5], has_next=False)]},
            failures={URLS[2]: [TransientError("timeout")] * 3},
        )
        store = MemoryCheckpointStore()
        orchestrator, _ = make_orchestrator(source, FakeGateway(), store)

        asyncio.run(orchestrator.run())

        assert store.saves
        assert all(saved.is_consistent() for saved in store.saves)
        assert store.saves[-1].phase is Phase.DONE


class TestExtraction:
    """Tests for per-URL failures and batching."""

    def test_failing_url_does_not_stop_the_run(self):
        source = FakeSource(failures={URLS[1]: [TransientError("timeout")] * 3})
        gateway = FakeGateway()
        store = MemoryCheckpointStore(extracting_state(URLS[:3]))
        orchestrator, _ = make_orchestrator(source, gateway, store)

        report = asyncio.run(orchestrator.run())

        assert report.error_count == 1
        assert report.errors[0].url == URLS[1]
        assert report.errors[0].error_kind == "transient"
        assert report.succeeded == 2
        assert report.state.failed_urls == [URLS[1]]
        flushed = [row.url for batch in gateway.listing_batches for row in batch]
        assert flushed == [URLS[0], URLS[2]]

    def test_failed_urls_skipped_on_resume(self):
        source = FakeSource()
        store = MemoryCheckpointStore(extracting_state(URLS[:3], failed=[URLS[0]]))
        orchestrator, _ = make_orchestrator(source, FakeGateway(), store)

        asyncio.run(orchestrator.run())

        assert source.extract_calls == URLS[1:3]

    def test_retry_failed_includes_failed_urls(self):
        source = FakeSource()
        store = MemoryCheckpointStore(extracting_state(URLS[:3], failed=[URLS[0]]))
        orchestrator, _ = make_orchestrator(source, FakeGateway(), store, retry_failed=True)

        report = asyncio.run(orchestrator.run())

        assert source.extract_calls == URLS[:3]
        assert report.state.failed_urls == []

    def test_malformed_listing_is_extracted_once(self):
        source = FakeSource(failures={URLS[0]: [MalformedListingError("no listing id")]})
        store = MemoryCheckpointStore(extracting_state(URLS[:2]))
        orchestrator, clock = make_orchestrator(source, FakeGateway(), store)

        report = asyncio.run(orchestrator.run())

        assert source.extract_calls.count(URLS[0]) == 1
        assert report.errors[0].error_kind == "malformed"

    def test_url_without_listing_id_is_malformed(self):
        bad_url = "https://www.bizbuysell.com/business-opportunity/no-id-here/"
        source = FakeSource()
        store = MemoryCheckpointStore(extracting_state([bad_url, URLS[0]]))
        orchestrator, _ = make_orchestrator(source, FakeGateway(), store)

        report = asyncio.run(orchestrator.run())

        assert source.extract_calls.count(bad_url) == 1
        assert report.error_count == 1
        assert report.succeeded == 1

    def test_extraction_block_cools_down(self):
        source = FakeSource(failures={URLS[0]: [BlockedError("captcha")]})
        store = MemoryCheckpointStore(extracting_state(URLS[:1]))
        orchestrator, clock = make_orchestrator(source, FakeGateway(), store)

        report = asyncio.run(orchestrator.run())

        assert orchestrator.retry.cooldowns == 1
        assert 60.0 in clock.sleeps
        assert report.succeeded == 1

    def test_batches_of_configured_size(self):
        gateway = FakeGateway()
        store = MemoryCheckpointStore(extracting_state(URLS[:5]))
        orchestrator, _ = make_orchestrator(FakeSource(), gateway, store, batch_size=2)

        report = asyncio.run(orchestrator.run())

        assert [len(batch) for batch in gateway.listing_batches] == [2, 2, 1]
        assert [len(batch) for batch in gateway.score_batches] == [2, 2, 1]
        assert report.flushed == 5

    def test_rows_are_scored_before_upsert(self):
        gateway = FakeGateway()
        store = MemoryCheckpointStore(extracting_state(URLS[:1]))
        orchestrator, _ = make_orchestrator(FakeSource(), gateway, store)

        asyncio.run(orchestrator.run())

        row = gateway.listing_batches[0][0]
        record = gateway.score_batches[0][0]
        assert row.external_id == "2000"
        assert row.asking_price == 500_000
        assert row.owner_involvement == "absentee owner"
        assert row.index_score is not None
        assert record.index_score == row.index_score


class TestCollection:
    """Tests for walking the paginated index."""

    def test_block_retries_same_page(self):
        source = FakeSource(pages={
            1: [BlockedError("captcha"), IndexPage(urls=URLS[:2], has_next=True)],
            2: [IndexPage(urls=URLS[2:4], has_next=False)],
        })
        orchestrator, clock = make_orchestrator(source, FakeGateway(), MemoryCheckpointStore())

        report = asyncio.run(orchestrator.run())

        assert source.index_calls == [1, 1, 2]
        assert report.collected == 4
        assert any(60.0 <= s <= 90.0 for s in clock.sleeps)

    def test_stops_when_page_adds_nothing_new(self):
        source = FakeSource(pages={
            1: [IndexPage(urls=URLS[:2], has_next=True)],
            2: [IndexPage(urls=URLS[:2], has_next=True)],
        })
        orchestrator, _ = make_orchestrator(source, FakeGateway(), MemoryCheckpointStore())

        report = asyncio.run(orchestrator.run())

        assert source.index_calls == [1, 2]
        assert report.collected == 2

    def test_stops_at_max_pages(self):
        source = FakeSource(pages={
            num: [IndexPage(urls=[URLS[num]], has_next=True)] for num in range(1, 6)
        })
        orchestrator, _ = make_orchestrator(source, FakeGateway(), MemoryCheckpointStore(), max_search_pages=2)

        report = asyncio.run(orchestrator.run())

        assert source.index_calls == [1, 2]
        assert report.collected == 2

    def test_transient_error_resumes_from_same_page(self):
        source = FakeSource(pages={
            1: [IndexPage(urls=URLS[:2], has_next=True)],
            2: [TransientError("timeout"), IndexPage(urls=URLS[2:3], has_next=False)],
        })
        store = MemoryCheckpointStore()
        orchestrator, _ = make_orchestrator(source, FakeGateway(), store)

        report = asyncio.run(orchestrator.run())

        assert source.index_calls == [1, 2, 2]
        assert report.collected == 3
        assert store.saves[0].phase is Phase.EXTRACTING
        assert store.saves[0].collected_urls == URLS[:3]
