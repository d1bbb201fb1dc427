"""Two-phase crawl: collect listing URLs, then extract each one.

State machine: collecting -> extracting -> done, persisted through a
CheckpointStore at every durable milestone:

- after URL collection finishes (collected set saved, phase -> extracting)
- after every successful batch upsert (batch URLs added to completed)
- after every URL that exhausts its retry budget (added to failed)

A crash leaves the checkpoint at `extracting`; the next run resumes with
collected - completed and never re-fetches completed URLs. Buffered rows are
only marked completed once the gateway has accepted them, so a failed flush
means those URLs are extracted again on resume (at-least-once delivery).
"""

import logging
from dataclasses import dataclass, field

from ..config import CrawlSettings
from ..db.gateway import PersistenceGateway
from ..errors import BlockedError, ErrorKind, PersistenceError, classify
from ..pipeline import ListingPipeline, ScoredListing
from ..scrapers.base import ListingSource
from .checkpoint import CheckpointState, CheckpointStore, Phase
from .pacing import Pacer
from .report import CrawlReport, ScrapeError
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class _CollectionProgress:
    """URL collection state that survives retries of the collection call."""

    urls: dict[str, None] = field(default_factory=dict)
    page_num: int = 1
    blocks: int = 0


class CrawlOrchestrator:
    """Drives one crawl run against a single listing source."""

    def __init__(
        self,
        source: ListingSource,
        gateway: PersistenceGateway,
        store: CheckpointStore,
        pipeline: ListingPipeline,
        settings: CrawlSettings | None = None,
        pacer: Pacer | None = None,
        retry_failed: bool = False,
    ):
        self.source = source
        self.gateway = gateway
        self.store = store
        self.pipeline = pipeline
        self.settings = settings or CrawlSettings()
        self.pacer = pacer or Pacer(self.settings)
        self.retry = RetryPolicy(self.settings, self.pacer)
        self.retry_failed = retry_failed

    async def run(self, state: CheckpointState | None = None) -> CrawlReport:
        """Run (or resume) a crawl.

        Args:
            state: Starting checkpoint; loaded from the store if omitted.

        Returns:
            CrawlReport whose `state` is the final checkpoint state.

        Raises:
            PersistenceError: If a batch upsert fails. The checkpoint is saved
                first and still points at the last flushed batch.
        """
        if state is None:
            state = self.store.load()
        if state.phase is Phase.DONE:
            state = CheckpointState()
        report = CrawlReport(state=state)
        logger.info(
            f"Checkpoint phase: {state.phase.value}, collected: {len(state.collected_urls)}, "
            f"completed: {len(state.completed_urls)}, failed: {len(state.failed_urls)}"
        )

        try:
            if state.phase is Phase.COLLECTING or not state.collected_urls:
                logger.info("Phase 1: Collecting listing URLs...")
                progress = _CollectionProgress()
                urls = await self.retry.run(lambda: self._collect(progress), "collect-urls")
                state.set_collected(urls)
                self.store.save(state)
                logger.info(f"Saved {len(urls)} URLs to checkpoint")
            else:
                logger.info(f"Resuming with {len(state.collected_urls)} collected URLs")
            report.collected = len(state.collected_urls)

            logger.info("Phase 2: Extracting listing data...")
            await self._extract_all(state, report)
        except BaseException:
            self._save_on_abort(state)
            raise

        state.phase = Phase.DONE
        self.store.clear()
        logger.info(f"Crawl finished: {report!r}")
        return report

    def _save_on_abort(self, state: CheckpointState) -> None:
        try:
            self.store.save(state)
            logger.error("Progress saved to checkpoint. Re-run to resume.")
        except Exception:
            logger.exception("Could not save checkpoint while aborting")

    async def _collect(self, progress: _CollectionProgress) -> list[str]:
        """Walk the paginated index until a page adds nothing new, there is
        no next page, or the page limit is reached.

        A block page never advances the page counter: cool down and ask
        for the same page again.
        """
        max_pages = self.settings.max_search_pages
        while progress.page_num <= max_pages:
            page_num = progress.page_num
            try:
                page = await self.source.fetch_index_page(page_num)
            except BlockedError as e:
                progress.blocks += 1
                delay = await self.pacer.index_block_cooldown()
                logger.warning(f"Blocked on page {page_num} ({e}), waited {delay:.0f}s, retrying same page")
                continue

            before = len(progress.urls)
            for url in page.urls:
                progress.urls.setdefault(url, None)
            new_count = len(progress.urls) - before
            logger.info(
                f"Page {page_num}: {len(page.urls)} listings ({new_count} new). Total: {len(progress.urls)}"
            )

            if new_count == 0:
                logger.info(f"No new listings on page {page_num}, stopping")
                break
            if not page.has_next:
                logger.info("No next page link found, stopping")
                break
            if page_num >= max_pages:
                logger.info(f"Reached max pages limit ({max_pages})")
                break

            progress.page_num += 1
            await self.pacer.after_search_page(page_num)

        logger.info(f"Collection complete: {len(progress.urls)} unique listing URLs")
        return list(progress.urls)

    async def _extract_all(self, state: CheckpointState, report: CrawlReport) -> None:
        pending = state.pending_urls(include_failed=self.retry_failed)
        report.pending = len(pending)
        logger.info(
            f"{len(pending)} listings to process ({len(state.completed_urls)} already done, "
            f"{len(state.failed_urls)} previously failed)"
        )

        buffer: list[tuple[str, ScoredListing]] = []
        for index, url in enumerate(pending, start=1):
            report.processed += 1
            try:
                raw = await self.retry.run(lambda url=url: self.source.extract(url), f"detail:{url}")
                scored = self.pipeline.build_scored_listing(raw)
            except Exception as e:
                if classify(e) is ErrorKind.FATAL:
                    raise
                logger.error(f"Failed: {url} - {e}")
                report.errors.append(ScrapeError.from_exception(url, e))
                state.mark_failed(url)
                self.store.save(state)
            else:
                buffer.append((url, scored))
                report.succeeded += 1
                listing = scored.listing
                revenue = f"${listing.gross_revenue:,}" if listing.gross_revenue is not None else "?"
                logger.info(
                    f"({index}/{len(pending)}) {listing.external_id} - {listing.state or '?'} - "
                    f"{revenue} - score {listing.index_score}"
                )
                if len(buffer) >= self.settings.batch_size:
                    self._flush(buffer, state, report)

            if index < len(pending):
                await self.pacer.after_detail(index)

        if buffer:
            self._flush(buffer, state, report)

    def _flush(
        self,
        buffer: list[tuple[str, ScoredListing]],
        state: CheckpointState,
        report: CrawlReport,
    ) -> None:
        """Upsert the buffered batch, then mark its URLs completed."""
        rows = [scored.listing for _, scored in buffer]
        try:
            upserted = self.gateway.upsert_listings(rows)
            self.gateway.upsert_scores([scored.score_record() for _, scored in buffer])
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Batch upsert of {len(rows)} listings failed: {e}") from e

        state.mark_completed([url for url, _ in buffer])
        self.store.save(state)
        report.flushed += len(buffer)
        logger.info(f"Upserted batch of {upserted} listings ({report.flushed} persisted this run)")
        buffer.clear()
