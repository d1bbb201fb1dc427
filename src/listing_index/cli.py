"""Command line entry points: crawl, score and single-listing debug.

Exit codes: 0 on success, 1 on a fatal error, 124 when the watchdog had to
terminate the run.
"""

import argparse
import asyncio
import logging
import statistics
from datetime import datetime, UTC
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .config import Config, CrawlSettings
from .crawl import CrawlOrchestrator, CrawlReport, FileCheckpointStore, Pacer, Watchdog
from .db import PersistenceGateway, open_gateway
from .errors import ConfigError
from .pipeline import ListingPipeline, ScoredListing
from .scoring import ScoringConfig
from .scrapers import BizBuySellSource, BrowserConfig, BrowserSession
from .signals import SignalRules

logger = logging.getLogger(__name__)

console = Console()

EXIT_OK = 0
EXIT_FAILURE = 1

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def load_pipeline(source_id: str, rules_path: Path | None = None, weights_path: Path | None = None) -> ListingPipeline:
    """Build the listing pipeline, loading optional rule/weight overrides.

    Raises:
        ConfigError: If an override file is missing or invalid.
    """
    try:
        rules = SignalRules.from_file(rules_path) if rules_path else SignalRules.default()
        scoring = ScoringConfig.from_file(weights_path) if weights_path else ScoringConfig.default()
    except (OSError, ValueError) as e:
        raise ConfigError(f"Invalid scoring configuration: {e}") from e
    return ListingPipeline(source=source_id, rules=rules, scoring=scoring)


def browser_config_for(app_config: Config) -> BrowserConfig:
    return BrowserConfig(
        base_url=app_config.base_url,
        user_data_dir=app_config.browser_profile_dir,
        headless=app_config.headless,
        channel=app_config.browser_channel,
        timeout_ms=app_config.crawl.page_timeout_ms,
        teardown_timeout_seconds=app_config.crawl.teardown_timeout_seconds,
    )


def _money(value: int | None) -> str:
    return f"${value / 1000:,.0f}K" if value else "N/A"


# =============================================================================
# Crawl
# =============================================================================

async def run_crawl(
    app_config: Config,
    gateway: PersistenceGateway,
    pipeline: ListingPipeline,
    retry_failed: bool = False,
) -> CrawlReport:
    """Open a browser session and run (or resume) the crawl."""
    pacer = Pacer(app_config.crawl)
    store = FileCheckpointStore(app_config.checkpoint_path)
    async with BrowserSession(browser_config_for(app_config), pacer) as session:
        source = BizBuySellSource(session, app_config.search, app_config.base_url)
        orchestrator = CrawlOrchestrator(
            source,
            gateway,
            store,
            pipeline,
            settings=app_config.crawl,
            pacer=pacer,
            retry_failed=retry_failed,
        )
        return await orchestrator.run()


def print_crawl_report(report: CrawlReport) -> None:
    table = Table(title="Crawl Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Collected URLs", str(report.collected))
    table.add_row("Pending this run", str(report.pending))
    table.add_row("Processed", str(report.processed))
    table.add_row("Succeeded", str(report.succeeded))
    table.add_row("Persisted", str(report.flushed))
    table.add_row("Errors", str(report.error_count))
    console.print(table)

    if report.errors:
        console.print(f"\n[bold red]Errors ({report.error_count}):[/bold red]")
        for err in report.errors:
            console.print(f"  [red]✗[/red] {err.url}")
            console.print(f"    {err.error_type} ({err.error_kind}): {err.error_message}")


def _apply_crawl_overrides(app_config: Config, args: argparse.Namespace) -> Config:
    updates = {}
    if args.max_pages is not None:
        updates["max_search_pages"] = args.max_pages
    if args.batch_size is not None:
        updates["batch_size"] = args.batch_size
    if args.max_runtime is not None:
        updates["max_runtime_minutes"] = args.max_runtime
    try:
        crawl = CrawlSettings.model_validate({**app_config.crawl.model_dump(), **updates})
    except ValidationError as e:
        raise ConfigError(f"Invalid crawl settings: {e}") from e

    config_updates = {"crawl": crawl}
    if args.headed:
        config_updates["headless"] = False
    if args.checkpoint is not None:
        config_updates["checkpoint_path"] = args.checkpoint
    return app_config.model_copy(update=config_updates)


def crawl_main(argv: list[str] | None = None) -> int:
    """Collect, extract, score and persist listings. Resumes from the checkpoint."""
    load_dotenv()
    parser = argparse.ArgumentParser(description="Crawl business-for-sale listings")
    parser.add_argument("--retry-failed", action="store_true", help="Re-attempt URLs that failed in earlier runs")
    parser.add_argument("--max-pages", type=int, default=None, help="Maximum number of search pages (default: 30)")
    parser.add_argument("--batch-size", type=int, default=None, help="Listings per upsert batch (1-50)")
    parser.add_argument("--max-runtime", type=float, default=None, help="Wall-clock ceiling in minutes")
    parser.add_argument("--checkpoint", type=Path, default=None, help="Checkpoint file path")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--rules", type=Path, default=None, help="JSON file overriding signal patterns")
    parser.add_argument("--weights", type=Path, default=None, help="JSON file overriding scoring weights")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    try:
        app_config = _apply_crawl_overrides(Config.from_env(), args)
    except (ConfigError, ValidationError, ValueError) as e:
        setup_logging(debug=args.debug)
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return EXIT_FAILURE
    setup_logging(app_config.log_level, args.debug)
    app_config.ensure_dirs()

    console.print("\n[bold blue]Starting listing crawl[/bold blue]")
    console.print(f"  Checkpoint: {app_config.checkpoint_path}")
    console.print(f"  Batch size: {app_config.crawl.batch_size}")
    console.print(f"  Max pages: {app_config.crawl.max_search_pages}")
    console.print(f"  Max runtime: {app_config.crawl.max_runtime_minutes:.0f} min")
    console.print(f"  Retry failed: {args.retry_failed}")
    console.print()

    watchdog = Watchdog(app_config.crawl.max_runtime_minutes * 60).start()
    gateway = None
    try:
        gateway = open_gateway()
        pipeline = load_pipeline(app_config.source_id, args.rules, args.weights)
        report = asyncio.run(run_crawl(app_config, gateway, pipeline, args.retry_failed))
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return EXIT_FAILURE
    except Exception as e:
        logger.exception(f"Crawl aborted: {e}")
        console.print(f"[bold red]Crawl aborted:[/bold red] {e}")
        return EXIT_FAILURE
    finally:
        watchdog.cancel()
        if gateway is not None:
            gateway.close()

    print_crawl_report(report)
    return EXIT_OK


# =============================================================================
# Score
# =============================================================================

def run_score(gateway: PersistenceGateway, pipeline: ListingPipeline) -> list[ScoredListing]:
    """Recompute signals and scores for every active listing and persist them."""
    listings = gateway.fetch_active()
    logger.info(f"Loaded {len(listings)} active listings")

    results = [pipeline.rescore(listing) for listing in listings]
    scored_at = datetime.now(UTC)
    gateway.upsert_scores([result.score_record(scored_at) for result in results])
    logger.info(f"Saved {len(results)} score records")
    return results


def print_score_report(results: list[ScoredListing]) -> None:
    scored = [r for r in results if r.result.index_score is not None]
    scored.sort(key=lambda r: r.result.index_score, reverse=True)
    console.print(f"\nScored: {len(scored)}, Unscored (no data): {len(results) - len(scored)}")
    if not scored:
        console.print("[dim]No listings to score.[/dim]")
        return

    top = Table(title="Top 10")
    top.add_column("Score", justify="right", style="green")
    top.add_column("Ask", justify="right")
    top.add_column("SDE", justify="right")
    top.add_column("EBITDA", justify="right")
    top.add_column("Emp", justify="right")
    top.add_column("URL", style="cyan")
    for r in scored[:10]:
        listing = r.listing
        top.add_row(
            f"{r.result.index_score:.1f}",
            _money(listing.asking_price),
            _money(listing.cash_flow_sde),
            _money(listing.ebitda),
            str(listing.num_employees) if listing.num_employees is not None else "?",
            listing.url,
        )
    console.print(top)

    bottom = Table(title="Bottom 5")
    bottom.add_column("Score", justify="right", style="red")
    bottom.add_column("Ask", justify="right")
    bottom.add_column("URL", style="cyan")
    for r in scored[-5:]:
        bottom.add_row(f"{r.result.index_score:.1f}", _money(r.listing.asking_price), r.listing.url)
    console.print(bottom)

    scores = [r.result.index_score for r in scored]
    console.print(
        f"\nStats: avg={statistics.mean(scores):.1f}, median={statistics.median(scores):.1f}, "
        f"min={min(scores):.1f}, max={max(scores):.1f}"
    )


def score_main(argv: list[str] | None = None) -> int:
    """Rescore every active listing in the store."""
    load_dotenv()
    parser = argparse.ArgumentParser(description="Recompute listing scores")
    parser.add_argument("--rules", type=Path, default=None, help="JSON file overriding signal patterns")
    parser.add_argument("--weights", type=Path, default=None, help="JSON file overriding scoring weights")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    try:
        app_config = Config.from_env()
    except (ValidationError, ValueError) as e:
        setup_logging(debug=args.debug)
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return EXIT_FAILURE
    setup_logging(app_config.log_level, args.debug)

    watchdog = Watchdog(app_config.crawl.max_runtime_minutes * 60).start()
    gateway = None
    try:
        gateway = open_gateway()
        pipeline = load_pipeline(app_config.source_id, args.rules, args.weights)
        results = run_score(gateway, pipeline)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return EXIT_FAILURE
    except Exception as e:
        logger.exception(f"Scoring aborted: {e}")
        console.print(f"[bold red]Scoring aborted:[/bold red] {e}")
        return EXIT_FAILURE
    finally:
        watchdog.cancel()
        if gateway is not None:
            gateway.close()

    print_score_report(results)
    return EXIT_OK


# =============================================================================
# Debug
# =============================================================================

async def debug_listing(app_config: Config, url: str, pipeline: ListingPipeline) -> ScoredListing:
    """Load one listing through the adapter and run the pipeline, persisting nothing."""
    pacer = Pacer(app_config.crawl)
    async with BrowserSession(browser_config_for(app_config), pacer) as session:
        source = BizBuySellSource(session, app_config.search, app_config.base_url)
        raw = await source.extract(url)

    table = Table(title="Raw Fields")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for name, value in raw.model_dump(exclude={"page_text", "description"}).items():
        table.add_row(name, str(value) if value is not None else "[dim](not found)[/dim]")
    console.print(table)
    if raw.description:
        console.print(f"\n[bold]Description[/bold] ({len(raw.description)} chars): {raw.description[:300]}...")

    return pipeline.build_scored_listing(raw)


def print_scored_listing(scored: ScoredListing) -> None:
    console.print("\n[bold]Normalized listing[/bold]")
    console.print(scored.listing.model_dump(exclude={"description"}))

    console.print("\n[bold]Signals[/bold]")
    console.print(scored.signals.model_dump())

    if scored.warnings:
        console.print(f"\n[bold yellow]Validation warnings ({len(scored.warnings)}):[/bold yellow]")
        for warning in scored.warnings:
            console.print(f"  [yellow]![/yellow] {warning}")

    table = Table(title="Score Breakdown")
    table.add_column("Signal", style="cyan")
    table.add_column("Value")
    table.add_column("Score", justify="right")
    for name, entry in scored.result.signals.items():
        table.add_row(name, str(entry.value), f"{entry.score:.2f}" if entry.score is not None else "-")
    console.print(table)
    index_score = scored.result.index_score
    console.print(f"\nIndex score: [bold]{index_score if index_score is not None else 'N/A'}[/bold]")


def debug_main(argv: list[str] | None = None) -> int:
    """Dump what the pipeline sees for a single listing URL."""
    load_dotenv()
    parser = argparse.ArgumentParser(description="Debug extraction and scoring for one listing")
    parser.add_argument("url", help="Listing URL")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--rules", type=Path, default=None, help="JSON file overriding signal patterns")
    parser.add_argument("--weights", type=Path, default=None, help="JSON file overriding scoring weights")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    try:
        app_config = Config.from_env()
    except (ValidationError, ValueError) as e:
        setup_logging(debug=args.debug)
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        return EXIT_FAILURE
    if args.headed:
        app_config = app_config.model_copy(update={"headless": False})
    setup_logging(app_config.log_level, args.debug)

    try:
        pipeline = load_pipeline(app_config.source_id, args.rules, args.weights)
        scored = asyncio.run(debug_listing(app_config, args.url, pipeline))
    except Exception as e:
        logger.exception(f"Debug run failed: {e}")
        console.print(f"[bold red]Failed:[/bold red] {e}")
        return EXIT_FAILURE

    print_scored_listing(scored)
    return EXIT_OK
