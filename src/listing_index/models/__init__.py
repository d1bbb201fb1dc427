"""Data models."""

from .listing import Listing, ListingCreate, RawRecord, ScoreRecord, SignalScore

__all__ = [
    "Listing",
    "ListingCreate",
    "RawRecord",
    "ScoreRecord",
    "SignalScore",
]
