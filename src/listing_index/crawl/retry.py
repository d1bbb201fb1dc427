"""Bounded retry with backoff chosen by error kind.

    BLOCKED    -> fixed long cool-down, then retry
    TRANSIENT  -> 5xx: base + attempt * step; anything else: attempt * step
    MALFORMED  -> raised immediately, never retried
    FATAL      -> raised immediately

The last attempt never sleeps; its error goes straight to the caller.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ..config import CrawlSettings
from ..errors import ErrorKind, TransientError, classify
from .pacing import Pacer

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retry an async operation within an attempt budget."""

    def __init__(self, settings: CrawlSettings, pacer: Pacer):
        self.settings = settings
        self.pacer = pacer
        self.cooldowns = 0  # block cool-downs taken, across all calls

    def backoff_for(self, exc: BaseException, attempt: int) -> float:
        """Seconds to wait before retrying after `attempt` failed with `exc`."""
        kind = classify(exc)
        if kind is ErrorKind.BLOCKED:
            return self.settings.block_cooldown_seconds
        if isinstance(exc, TransientError) and exc.is_server_error:
            return self.settings.transient_backoff_base + attempt * self.settings.transient_backoff_step
        return attempt * self.settings.linear_backoff_step

    async def run(self, fn: Callable[[], Awaitable[T]], label: str) -> T:
        """Call `fn` until it succeeds or the attempt budget is spent.

        Raises:
            The last error, or any MALFORMED/FATAL error immediately.
        """
        max_attempts = self.settings.max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                return await fn()
            except Exception as e:
                kind = classify(e)
                logger.warning(f"{label} attempt {attempt}/{max_attempts} failed ({kind.value}): {e}")
                if kind in (ErrorKind.MALFORMED, ErrorKind.FATAL):
                    raise
                if attempt == max_attempts:
                    raise

                delay = self.backoff_for(e, attempt)
                if kind is ErrorKind.BLOCKED:
                    self.cooldowns += 1
                    logger.warning(f"{label}: possible CAPTCHA/block, cooling down {delay:.0f}s")
                await self.pacer.sleep(delay)
        raise AssertionError("unreachable")
