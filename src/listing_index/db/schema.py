"""Database schema definitions."""

import sqlite3
from pathlib import Path


SCHEMA = """
-- listings table
CREATE TABLE IF NOT EXISTS listings (
    id TEXT PRIMARY KEY,
    source TEXT NOT NULL,
    external_id TEXT NOT NULL,
    url TEXT NOT NULL,
    state TEXT,
    industry TEXT,
    asking_price INTEGER,
    gross_revenue INTEGER,
    cash_flow_sde INTEGER,
    ebitda INTEGER,
    inventory INTEGER,
    ffe INTEGER,
    num_employees INTEGER,
    num_years INTEGER,
    support_training TEXT,
    sba_preapproval TEXT,
    description TEXT,
    owner_involvement TEXT,
    has_recurring_revenue INTEGER NOT NULL DEFAULT 0,
    reason_for_sale TEXT,
    growth_potential TEXT,
    lease_terms TEXT,
    customer_concentration_risk INTEGER NOT NULL DEFAULT 0,
    index_score REAL,
    content_hash TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    first_seen_at TIMESTAMP NOT NULL,
    last_seen_at TIMESTAMP NOT NULL,
    content_changed_at TIMESTAMP,
    UNIQUE(source, external_id)
);

-- listing_scores table (one row per listing, replaced by every scoring run)
CREATE TABLE IF NOT EXISTS listing_scores (
    source TEXT NOT NULL,
    external_id TEXT NOT NULL,
    index_score REAL,
    signals JSON NOT NULL,
    scored_at TIMESTAMP NOT NULL,
    PRIMARY KEY (source, external_id)
);

-- Create indexes for common queries
CREATE INDEX IF NOT EXISTS idx_listings_source ON listings(source);
CREATE INDEX IF NOT EXISTS idx_listings_active ON listings(is_active);
CREATE INDEX IF NOT EXISTS idx_listings_first_seen ON listings(first_seen_at);
"""


def init_db(db_path: Path) -> sqlite3.Connection:
    """Initialize the database with schema.

    Args:
        db_path: Path to the database file. Parent directories are created.

    Returns:
        Connection to the initialized database.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA)
    conn.commit()
    return conn
