"""Persistence gateway contract and backend selection."""

import logging
from typing import Protocol

from ..config import GatewaySettings
from ..models.listing import Listing, ListingCreate, ScoreRecord

logger = logging.getLogger(__name__)


class PersistenceGateway(Protocol):
    """Idempotent storage keyed by (source, external_id).

    Calling any write twice with identical content must leave the store in
    the same state as calling it once.
    """

    def upsert_listings(self, rows: list[ListingCreate]) -> int: ...

    def fetch_active(self) -> list[Listing]: ...

    def upsert_scores(self, records: list[ScoreRecord]) -> None: ...

    def close(self) -> None: ...


def open_gateway(settings: GatewaySettings | None = None) -> PersistenceGateway:
    """Open the gateway selected by the environment.

    Raises:
        ConfigError: If no backend is configured.
    """
    if settings is None:
        settings = GatewaySettings.from_env()

    if settings.backend == "supabase":
        from .supabase_gateway import SupabaseGateway

        logger.info(f"Using Supabase gateway at {settings.supabase_url}")
        return SupabaseGateway.connect(settings.supabase_url, settings.supabase_key)

    from .operations import SqliteGateway

    logger.info(f"Using SQLite gateway at {settings.db_path}")
    return SqliteGateway(settings.db_path)
