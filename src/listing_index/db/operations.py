"""SQLite persistence gateway."""

import json
import logging
import sqlite3
import uuid
from pathlib import Path
from typing import Any

from ..errors import PersistenceError
from ..models.listing import Listing, ListingCreate, ScoreRecord
from .schema import init_db

logger = logging.getLogger(__name__)


LISTING_COLUMNS = [
    "source",
    "external_id",
    "url",
    "state",
    "industry",
    "asking_price",
    "gross_revenue",
    "cash_flow_sde",
    "ebitda",
    "inventory",
    "ffe",
    "num_employees",
    "num_years",
    "support_training",
    "sba_preapproval",
    "description",
    "owner_involvement",
    "has_recurring_revenue",
    "reason_for_sale",
    "growth_potential",
    "lease_terms",
    "customer_concentration_risk",
    "index_score",
    "content_hash",
    "is_active",
    "last_seen_at",
]

_UPDATABLE = [c for c in LISTING_COLUMNS if c not in ("source", "external_id")]

# first_seen_at is only written on insert; content_changed_at moves when the
# stored fingerprint differs from the incoming one.
UPSERT_LISTING_SQL = f"""
    INSERT INTO listings (id, {", ".join(LISTING_COLUMNS)}, first_seen_at, content_changed_at)
    VALUES (?, {", ".join("?" for _ in LISTING_COLUMNS)}, ?, ?)
    ON CONFLICT(source, external_id) DO UPDATE SET
        {", ".join(f"{c} = excluded.{c}" for c in _UPDATABLE)},
        content_changed_at = CASE
            WHEN listings.content_hash IS NOT excluded.content_hash THEN excluded.last_seen_at
            ELSE listings.content_changed_at
        END
"""

UPSERT_SCORE_SQL = """
    INSERT INTO listing_scores (source, external_id, index_score, signals, scored_at)
    VALUES (?, ?, ?, ?, ?)
    ON CONFLICT(source, external_id) DO UPDATE SET
        index_score = excluded.index_score,
        signals = excluded.signals,
        scored_at = excluded.scored_at
"""


def _listing_params(listing: ListingCreate) -> tuple[Any, ...]:
    data = listing.model_dump(mode="json")
    seen = data["last_seen_at"]
    return (str(uuid.uuid4()), *(data[c] for c in LISTING_COLUMNS), seen, seen)


class SqliteGateway:
    """Persistence gateway backed by a local SQLite file."""

    def __init__(self, db_path: Path, conn: sqlite3.Connection | None = None):
        self.db_path = db_path
        self.conn = conn or init_db(db_path)

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def upsert_listings(self, rows: list[ListingCreate]) -> int:
        """Insert or update listings by (source, external_id).

        The whole batch is one transaction.

        Returns:
            Number of rows written.
        """
        if not rows:
            return 0
        try:
            with self.conn:
                self.conn.executemany(UPSERT_LISTING_SQL, [_listing_params(r) for r in rows])
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite listing upsert failed: {e}") from e
        logger.debug(f"Upserted {len(rows)} listings into {self.db_path}")
        return len(rows)

    def fetch_active(self, source: str | None = None) -> list[Listing]:
        """Get all active listings, optionally filtered by source."""
        try:
            if source:
                rows = self.conn.execute(
                    "SELECT * FROM listings WHERE is_active = 1 AND source = ? ORDER BY first_seen_at",
                    (source,),
                ).fetchall()
            else:
                rows = self.conn.execute(
                    "SELECT * FROM listings WHERE is_active = 1 ORDER BY first_seen_at"
                ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite fetch failed: {e}") from e
        return [Listing.model_validate(dict(row)) for row in rows]

    def upsert_scores(self, records: list[ScoreRecord]) -> None:
        """Replace score rows and copy the aggregate onto the listing."""
        if not records:
            return
        score_params = []
        listing_params = []
        for record in records:
            signals = {name: s.model_dump(mode="json") for name, s in record.signals.items()}
            score_params.append(
                (
                    record.source,
                    record.external_id,
                    record.index_score,
                    json.dumps(signals),
                    record.scored_at.isoformat(),
                )
            )
            listing_params.append((record.index_score, record.source, record.external_id))
        try:
            with self.conn:
                self.conn.executemany(UPSERT_SCORE_SQL, score_params)
                self.conn.executemany(
                    "UPDATE listings SET index_score = ? WHERE source = ? AND external_id = ?",
                    listing_params,
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite score upsert failed: {e}") from e

    def fetch_scores(self, source: str | None = None) -> list[ScoreRecord]:
        """Get stored score records, best first."""
        query = "SELECT * FROM listing_scores"
        params: tuple[Any, ...] = ()
        if source:
            query += " WHERE source = ?"
            params = (source,)
        query += " ORDER BY index_score IS NULL, index_score DESC"
        rows = self.conn.execute(query, params).fetchall()
        return [
            ScoreRecord(
                source=row["source"],
                external_id=row["external_id"],
                index_score=row["index_score"],
                signals=json.loads(row["signals"]),
                scored_at=row["scored_at"],
            )
            for row in rows
        ]
