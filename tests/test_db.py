"""Tests for the persistence gateways."""

from datetime import datetime, timedelta, UTC

import pytest

from listing_index.config import GatewaySettings
from listing_index.db import SqliteGateway, open_gateway
from listing_index.db.supabase_gateway import SupabaseGateway
from listing_index.errors import ConfigError, PersistenceError
from listing_index.models.listing import ListingCreate, ScoreRecord, SignalScore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def make_listing(external_id="1001", seen_at=T0, content_hash="aaa", **overrides) -> ListingCreate:
    data = {
        "source": "bizbuysell",
        "external_id": external_id,
        "url": f"https://www.bizbuysell.com/business-opportunity/test/{external_id}/",
        "asking_price": 500_000,
        "content_hash": content_hash,
        "last_seen_at": seen_at,
    }
    data.update(overrides)
    return ListingCreate(**data)


@pytest.fixture
def gateway(tmp_path):
    """Create a temporary test database."""
    gw = SqliteGateway(tmp_path / "test.db")
    yield gw
    gw.close()


def row_count(gateway, table="listings") -> int:
    return gateway.conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


class TestSqliteListings:
    """Tests for listing upserts."""

    def test_upsert_and_fetch(self, gateway):
        assert gateway.upsert_listings([make_listing(state="Ohio")]) == 1

        listings = gateway.fetch_active()
        assert len(listings) == 1
        assert listings[0].external_id == "1001"
        assert listings[0].state == "Ohio"
        assert listings[0].asking_price == 500_000
        assert listings[0].id

    def test_same_batch_twice_is_idempotent(self, gateway):
        batch = [make_listing("1"), make_listing("2")]
        gateway.upsert_listings(batch)
        first = {l.external_id: l for l in gateway.fetch_active()}

        gateway.upsert_listings(batch)
        second = {l.external_id: l for l in gateway.fetch_active()}

        assert row_count(gateway) == 2
        assert first == second

    def test_update_in_place(self, gateway):
        gateway.upsert_listings([make_listing(asking_price=500_000)])
        original_id = gateway.fetch_active()[0].id

        gateway.upsert_listings([make_listing(asking_price=450_000, seen_at=T0 + timedelta(days=1))])

        listings = gateway.fetch_active()
        assert len(listings) == 1
        assert listings[0].id == original_id
        assert listings[0].asking_price == 450_000

    def test_first_seen_and_content_changed(self, gateway):
        later = T0 + timedelta(days=1)
        latest = T0 + timedelta(days=2)
        gateway.upsert_listings([make_listing(content_hash="aaa")])
        gateway.upsert_listings([make_listing(content_hash="aaa", seen_at=later)])

        listing = gateway.fetch_active()[0]
        assert listing.first_seen_at == T0
        assert listing.last_seen_at == later
        assert listing.content_changed_at == T0

        gateway.upsert_listings([make_listing(content_hash="bbb", seen_at=latest)])

        listing = gateway.fetch_active()[0]
        assert listing.first_seen_at == T0
        assert listing.content_changed_at == latest

    def test_inactive_listings_excluded(self, gateway):
        gateway.upsert_listings([make_listing("1"), make_listing("2", is_active=False)])
        assert [l.external_id for l in gateway.fetch_active()] == ["1"]

    def test_filter_by_source(self, gateway):
        gateway.upsert_listings([make_listing("1"), make_listing("2", source="other")])
        assert [l.external_id for l in gateway.fetch_active(source="other")] == ["2"]

    def test_boolean_signals_roundtrip(self, gateway):
        gateway.upsert_listings([make_listing(has_recurring_revenue=True)])
        listing = gateway.fetch_active()[0]
        assert listing.has_recurring_revenue is True
        assert listing.customer_concentration_risk is False

    def test_empty_batch(self, gateway):
        assert gateway.upsert_listings([]) == 0
        assert row_count(gateway) == 0

    def test_closed_connection_raises_persistence_error(self, gateway):
        gateway.close()
        with pytest.raises(PersistenceError):
            gateway.upsert_listings([make_listing()])


class TestSqliteScores:
    """Tests for score records."""

    def test_scores_replace_and_update_listing(self, gateway):
        gateway.upsert_listings([make_listing()])
        signals = {"sde_multiple": SignalScore(value=2.5, score=0.8)}

        gateway.upsert_scores([ScoreRecord(source="bizbuysell", external_id="1001", index_score=80.0, signals=signals)])
        gateway.upsert_scores([ScoreRecord(source="bizbuysell", external_id="1001", index_score=70.0, signals=signals)])

        assert row_count(gateway, "listing_scores") == 1
        records = gateway.fetch_scores()
        assert records[0].index_score == 70.0
        assert records[0].signals["sde_multiple"].score == 0.8
        assert gateway.fetch_active()[0].index_score == 70.0

    def test_null_aggregate_is_stored(self, gateway):
        gateway.upsert_scores([
            ScoreRecord(source="bizbuysell", external_id="1", index_score=None),
            ScoreRecord(source="bizbuysell", external_id="2", index_score=55.5),
        ])
        records = gateway.fetch_scores()
        assert [r.external_id for r in records] == ["2", "1"]
        assert records[1].index_score is None


class FakeQuery:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.page = None

    def upsert(self, data, on_conflict=None):
        self.client.upserts.append((self.table, data, on_conflict))
        return self

    def select(self, columns):
        return self

    def update(self, values):
        self.client.updates.append((self.table, values))
        return self

    def eq(self, column, value):
        self.client.filters.append((column, value))
        return self

    def range(self, start, end):
        self.page = (start, end)
        return self

    def execute(self):
        if self.client.fail:
            raise RuntimeError("503 Service Unavailable")
        data = []
        if self.page is not None:
            start, end = self.page
            data = self.client.rows[start : end + 1]
        return type("Response", (), {"data": data})()


class FakeClient:
    """Stands in for supabase.Client's fluent table API."""

    def __init__(self, rows=None, fail=False):
        self.rows = rows or []
        self.fail = fail
        self.upserts = []
        self.updates = []
        self.filters = []

    def table(self, name):
        return FakeQuery(self, name)


class TestSupabaseGateway:
    """Tests for the Supabase gateway against a fake client."""

    def test_upsert_is_chunked(self):
        client = FakeClient()
        gateway = SupabaseGateway(client, chunk_size=2)

        written = gateway.upsert_listings([make_listing(str(i)) for i in range(5)])

        assert written == 5
        assert [len(data) for _, data, _ in client.upserts] == [2, 2, 1]
        assert all(table == "listings" for table, _, _ in client.upserts)
        assert all(on_conflict == "source,external_id" for _, _, on_conflict in client.upserts)

    def test_failure_is_persistence_error(self):
        gateway = SupabaseGateway(FakeClient(fail=True))
        with pytest.raises(PersistenceError):
            gateway.upsert_listings([make_listing()])

    def test_scores_go_to_score_table(self):
        client = FakeClient()
        SupabaseGateway(client).upsert_scores([ScoreRecord(source="bizbuysell", external_id="1", index_score=42.0)])
        table, data, _ = client.upserts[0]
        assert table == "listing_scores"
        assert data[0]["index_score"] == 42.0
        assert client.updates == [("listings", {"index_score": 42.0})]
        assert client.filters == [("source", "bizbuysell"), ("external_id", "1")]

    def test_fetch_active_pages(self, monkeypatch):
        monkeypatch.setattr("listing_index.db.supabase_gateway.PAGE_SIZE", 2)
        rows = []
        for i in range(3):
            data = make_listing(str(i)).model_dump(mode="json")
            data.update(id=f"uuid-{i}", first_seen_at=T0.isoformat())
            rows.append(data)
        client = FakeClient(rows=rows)

        listings = SupabaseGateway(client).fetch_active()

        assert [l.external_id for l in listings] == ["0", "1", "2"]
        assert client.filters == [("is_active", True), ("is_active", True)]


class TestGatewaySelection:
    """Tests for resolving the backend from the environment."""

    def test_sqlite_from_env(self, tmp_path):
        settings = GatewaySettings.from_env({"LISTING_DB_PATH": str(tmp_path / "listings.db")})
        assert settings.backend == "sqlite"

        gateway = open_gateway(settings)
        try:
            assert isinstance(gateway, SqliteGateway)
            assert (tmp_path / "listings.db").exists()
        finally:
            gateway.close()

    def test_supabase_preferred(self):
        settings = GatewaySettings.from_env({
            "SUPABASE_URL": "https://example.supabase.co",
            "SUPABASE_SERVICE_ROLE_KEY": "secret",
            "LISTING_DB_PATH": "/tmp/ignored.db",
        })
        assert settings.backend == "supabase"

    def test_supabase_without_key(self):
        with pytest.raises(ConfigError):
            GatewaySettings.from_env({"SUPABASE_URL": "https://example.supabase.co"})

    def test_nothing_configured(self):
        with pytest.raises(ConfigError):
            GatewaySettings.from_env({})
