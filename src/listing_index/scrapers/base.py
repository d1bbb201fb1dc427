"""Listing source contract and the shared browser session."""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from playwright.async_api import BrowserContext, Page, Playwright, async_playwright
from pydantic import BaseModel, Field

from ..models.listing import RawRecord

if TYPE_CHECKING:
    from ..crawl.pacing import Pacer

logger = logging.getLogger(__name__)


@dataclass
class IndexPage:
    """Listing URLs found on one page of the paginated index."""

    urls: list[str]
    has_next: bool


class ListingSource(ABC):
    """A website the crawl can collect and extract listings from."""

    source_id: str

    @abstractmethod
    async def fetch_index_page(self, page_num: int) -> IndexPage:
        """Load one index page (1-based) and return the listing URLs on it.

        Raises:
            BlockedError: If the page is a block/anti-bot page.
        """
        raise NotImplementedError

    @abstractmethod
    async def extract(self, url: str) -> RawRecord:
        """Load a listing page and pull out its labeled raw fields.

        Raises:
            BlockedError: On block/CAPTCHA pages.
            TransientError: On network faults and server errors.
        """
        raise NotImplementedError


class BrowserConfig(BaseModel):
    """Configuration for a browser session."""

    base_url: str = Field(..., description="Home page visited during warm-up")
    user_data_dir: Path = Field(..., description="Persistent profile directory")
    headless: bool = Field(default=True, description="Run browser in headless mode")
    channel: str | None = Field(default="chrome", description="Installed browser channel")
    timeout_ms: int = Field(default=30000, description="Default timeout in ms")
    teardown_timeout_seconds: float = Field(default=10.0, description="Upper bound on closing the browser")
    warm_up: bool = True


CONSENT_SELECTOR = (
    'button[id*="accept"], button[class*="accept"], .cookie-banner button, #onetrust-accept-btn-handler'
)


class BrowserSession:
    """One persistent-profile Chrome window, one page.

    Cookies and cache persist across runs in `user_data_dir`, so repeat runs
    look like a returning visitor rather than a fresh automation profile.
    """

    def __init__(self, browser_config: BrowserConfig, pacer: Pacer, rng: random.Random | None = None):
        self.config = browser_config
        self.pacer = pacer
        self._rng = rng or random.Random()
        self._playwright: Playwright | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    async def setup(self) -> None:
        """Launch the browser with the persistent profile."""
        self.config.user_data_dir.mkdir(parents=True, exist_ok=True)
        self._playwright = await async_playwright().start()
        self._context = await self._playwright.chromium.launch_persistent_context(
            str(self.config.user_data_dir),
            channel=self.config.channel,
            headless=self.config.headless,
            args=["--disable-blink-features=AutomationControlled"],
            viewport={"width": 1366, "height": 768},
            locale="en-US",
            timezone_id="America/New_York",
        )
        pages = self._context.pages
        self._page = pages[0] if pages else await self._context.new_page()
        self._page.set_default_timeout(self.config.timeout_ms)

    async def warm_up(self) -> None:
        """Visit the home page first to establish cookies and a session."""
        logger.info("Warming up - visiting homepage...")
        await self.page.goto(self.config.base_url, wait_until="domcontentloaded")
        await self.pacer.random_delay((3.0, 6.0))
        await self.human_scroll()
        await self.pacer.random_delay((2.0, 4.0))
        await self.dismiss_consent()
        logger.info("Warm-up complete")

    async def dismiss_consent(self) -> None:
        """Click the cookie/consent banner if present."""
        button = await self.page.query_selector(CONSENT_SELECTOR)
        if button is None:
            return
        try:
            await button.click(timeout=5000)
        except Exception as e:
            logger.debug(f"Consent banner click failed: {e}")
            return
        await self.pacer.random_delay((0.5, 1.0))

    async def human_scroll(self) -> None:
        """Scroll in 2-5 random increments of 200-600px like a reader would."""
        for _ in range(self._rng.randint(2, 5)):
            distance = self._rng.randint(200, 600)
            await self.page.evaluate("(d) => window.scrollBy(0, d)", distance)
            await self.pacer.random_delay((0.3, 0.8))

    async def _close(self) -> None:
        if self._context:
            await self._context.close()
        if self._playwright:
            await self._playwright.stop()

    async def teardown(self) -> None:
        """Close the browser, giving up after `teardown_timeout_seconds`.

        A wedged browser must not keep the process from exiting, so errors
        here are logged rather than raised.
        """
        try:
            await asyncio.wait_for(self._close(), timeout=self.config.teardown_timeout_seconds)
        except TimeoutError:
            logger.warning(f"Browser did not close within {self.config.teardown_timeout_seconds}s, abandoning it")
        except Exception as e:
            logger.warning(f"Browser close failed: {e}")
        finally:
            self._page = None
            self._context = None
            self._playwright = None

    @property
    def page(self) -> Page:
        """Get the current page, raising if not initialized."""
        if self._page is None:
            raise RuntimeError("Browser session not initialized. Call setup() first.")
        return self._page

    async def __aenter__(self):
        await self.setup()
        try:
            if self.config.warm_up:
                await self.warm_up()
        except BaseException:
            await self.teardown()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.teardown()
