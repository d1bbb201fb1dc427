"""Randomized delays between requests.

Fixed intervals are themselves a bot signature, so every pause is drawn
fresh from a (min, max) range.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

from ..config import CrawlSettings

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class Pacer:
    """Owns every sleep in a crawl so tests can swap in a fake clock."""

    def __init__(
        self,
        settings: CrawlSettings,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.settings = settings
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def sleep(self, seconds: float) -> None:
        await self._sleep(seconds)

    async def random_delay(self, delay_range: tuple[float, float]) -> float:
        """Sleep for a random duration within the given range."""
        low, high = delay_range
        delay = self._rng.uniform(low, high)
        await self._sleep(delay)
        return delay

    async def after_detail(self, processed: int) -> float:
        """Pause after the Nth processed listing, with a long pause every N."""
        if processed % self.settings.long_pause_every == 0:
            logger.info(f"Long pause after {processed} listings...")
            return await self.random_delay(self.settings.long_pause)
        return await self.random_delay(self.settings.detail_delay)

    async def after_search_page(self, page_num: int) -> float:
        if page_num % self.settings.long_pause_every == 0:
            logger.info(f"Long pause after {page_num} pages...")
            return await self.random_delay(self.settings.long_pause)
        return await self.random_delay(self.settings.search_delay)

    async def index_block_cooldown(self) -> float:
        return await self.random_delay(self.settings.index_block_cooldown)
