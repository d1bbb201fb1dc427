"""Listing source adapters."""

from .base import BrowserConfig, BrowserSession, IndexPage, ListingSource
from .bizbuysell import BizBuySellSource

__all__ = [
    "BizBuySellSource",
    "BrowserConfig",
    "BrowserSession",
    "IndexPage",
    "ListingSource",
]
