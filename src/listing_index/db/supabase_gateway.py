"""Supabase persistence gateway with chunked upserts."""

import logging
from typing import Any

from supabase import Client, create_client

from ..errors import PersistenceError
from ..models.listing import Listing, ListingCreate, ScoreRecord

logger = logging.getLogger(__name__)

LISTINGS_TABLE = "listings"
SCORES_TABLE = "listing_scores"
ON_CONFLICT = "source,external_id"
CHUNK_SIZE = 50
PAGE_SIZE = 1000


class SupabaseGateway:
    """Writes listings and scores to Supabase (PostgREST upsert)."""

    def __init__(self, client: Client, chunk_size: int = CHUNK_SIZE):
        self.client = client
        self.chunk_size = chunk_size

    @classmethod
    def connect(cls, url: str, key: str) -> "SupabaseGateway":
        return cls(create_client(url, key))

    def _upsert(self, table: str, data: list[dict[str, Any]]) -> None:
        for start in range(0, len(data), self.chunk_size):
            chunk = data[start : start + self.chunk_size]
            try:
                self.client.table(table).upsert(chunk, on_conflict=ON_CONFLICT).execute()
            except Exception as e:
                raise PersistenceError(f"Supabase upsert into {table} failed: {e}") from e
            logger.debug(f"Upserted {len(chunk)} rows into {table}")

    def upsert_listings(self, rows: list[ListingCreate]) -> int:
        """Upsert listings by (source, external_id).

        Returns:
            Number of rows written.
        """
        data = [row.model_dump(mode="json") for row in rows]
        self._upsert(LISTINGS_TABLE, data)
        logger.info(f"Upserted {len(data)} listings to Supabase")
        return len(data)

    def fetch_active(self) -> list[Listing]:
        """Get all active listings, paging through the 1000-row API limit."""
        listings: list[Listing] = []
        offset = 0
        while True:
            try:
                response = (
                    self.client.table(LISTINGS_TABLE)
                    .select("*")
                    .eq("is_active", True)
                    .range(offset, offset + PAGE_SIZE - 1)
                    .execute()
                )
            except Exception as e:
                raise PersistenceError(f"Supabase fetch failed: {e}") from e
            batch = response.data or []
            listings.extend(Listing.model_validate(row) for row in batch)
            if len(batch) < PAGE_SIZE:
                break
            offset += PAGE_SIZE
        return listings

    def upsert_scores(self, records: list[ScoreRecord]) -> None:
        """Replace score rows and copy the aggregate onto the listing."""
        data = [record.model_dump(mode="json") for record in records]
        self._upsert(SCORES_TABLE, data)
        for record in records:
            try:
                (
                    self.client.table(LISTINGS_TABLE)
                    .update({"index_score": record.index_score})
                    .eq("source", record.source)
                    .eq("external_id", record.external_id)
                    .execute()
                )
            except Exception as e:
                raise PersistenceError(f"Supabase index_score update failed: {e}") from e
        logger.info(f"Upserted {len(data)} score records to Supabase")

    def close(self) -> None:
        """Nothing to release; the HTTP session lives as long as the client."""
