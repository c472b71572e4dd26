"""Tests for the schema manager and the PostgreSQL storage adapter.

The adapter is exercised against a recording fake pool; no database is needed.
"""

import pytest
from contextlib import asynccontextmanager
from decimal import Decimal

from adapters import PostgresStorageAdapter, SimpleItemAdapter
from adapters.storage import encode_cursor
from database import SchemaManager, _get_connection_kwargs
from errors import BazaarError, ErrorCodes
from models import Listing, ListingStatus, PaginationOptions, TransferItemOp, UpdateListingOp


class FakeConnection:
    """Connection returning queued results and recording every query."""

    def __init__(self):
        self.queries = []
        self.fetch_results = []
        self.fetchrow_results = []
        self.fetchval_results = []

    async def execute(self, query, *args):
        self.queries.append((query, args))

    async def fetch(self, query, *args):
        self.queries.append((query, args))
        return self.fetch_results.pop(0)

    async def fetchrow(self, query, *args):
        self.queries.append((query, args))
        return self.fetchrow_results.pop(0)

    async def fetchval(self, query, *args):
        self.queries.append((query, args))
        return self.fetchval_results.pop(0)

    @asynccontextmanager
    async def transaction(self):
        yield


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


def listing_row(listing_id, price="1.00", created_at=1_700_000_000_000):
    return {
        "id": listing_id,
        "item_id": f"item-{listing_id}",
        "item_type": "weapon",
        "item_data": '{"name": "Sword"}',
        "seller_username": "seller",
        "seller_wallet": "seller-wallet",
        "price_usdc": Decimal(price),
        "status": "active",
        "created_at": created_at,
        "expires_at": None,
    }


@pytest.fixture
def conn():
    return FakeConnection()


@pytest.fixture
def storage(conn):
    return PostgresStorageAdapter(FakePool(conn))


def test_create_table_sql():
    sql = SchemaManager.create_table_sql({
        "name": "things",
        "columns": [
            {"name": "id", "type": "TEXT", "primary_key": True},
            {"name": "status", "type": "TEXT", "nullable": False, "default": "'active'"},
        ],
    })
    assert sql == (
        "CREATE TABLE IF NOT EXISTS things "
        "(id TEXT, status TEXT DEFAULT 'active' NOT NULL, PRIMARY KEY (id))"
    )


def test_constraint_sql():
    statements = SchemaManager.constraint_sql({
        "name": "listings",
        "foreign_keys": [{"columns": ["tier_id"], "references": "tiers(id)"}],
        "indexes": [{"name": "idx_active", "columns": ["item_id"], "unique": True,
                     "where": "status = 'active'"}],
    })
    assert statements == [
        "ALTER TABLE listings ADD CONSTRAINT fk_listings_tier_id "
        "FOREIGN KEY (tier_id) REFERENCES tiers(id)",
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_active ON listings (item_id) "
        "WHERE status = 'active'",
    ]


def test_schema_files_load():
    schemas = SchemaManager(pool=None).load_schema_files()
    assert 1 in schemas
    tables = {table["name"] for table in schemas[1]["tables"]}
    assert tables == {"listings", "transactions", "mystery_box_tiers", "mystery_box_purchases"}


def test_ssl_only_when_requested():
    assert "ssl" not in _get_connection_kwargs("postgresql://localhost/bazaar")
    assert "ssl" in _get_connection_kwargs("postgresql://db.example.com/bazaar?sslmode=require")


@pytest.mark.asyncio
async def test_first_page_query(storage, conn):
    conn.fetch_results.append([listing_row("a"), listing_row("b"), listing_row("c")])
    conn.fetchval_results.append(5)

    page = await storage.get_active_listings(PaginationOptions(limit=2, sort_by="price_low"))

    query, args = conn.queries[0]
    assert "ORDER BY price_usdc ASC, id ASC" in query
    assert "LIMIT $1" in query
    assert args == (3,)
    assert [l.id for l in page.items] == ["a", "b"]
    assert page.items[0].item_data == {"name": "Sword"}
    assert page.total_count == 5
    assert page.next_cursor is not None


@pytest.mark.asyncio
async def test_cursor_query(storage, conn):
    cursor = encode_cursor("newest", Listing(**listing_row("b")))
    conn.fetch_results.append([listing_row("c")])
    conn.fetchval_results.append(3)

    page = await storage.get_active_listings(PaginationOptions(cursor=cursor, limit=2))

    query, args = conn.queries[0]
    assert "created_at < $1 OR (created_at = $1 AND id > $2)" in query
    assert "LIMIT $3" in query
    assert args == (1_700_000_000_000, "b", 3)
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_status_update_errors(storage, conn):
    conn.fetchrow_results.append(None)
    conn.fetchval_results.append(None)
    with pytest.raises(BazaarError) as exc:
        await storage.update_listing_status("missing", ListingStatus.SOLD)
    assert exc.value.code == ErrorCodes.LISTING_NOT_FOUND

    conn.fetchrow_results.append(None)
    conn.fetchval_results.append("sold")
    with pytest.raises(BazaarError) as exc:
        await storage.update_listing_status("a", ListingStatus.CANCELLED)
    assert exc.value.code == ErrorCodes.LISTING_NOT_ACTIVE

    query, args = conn.queries[-2]
    assert "status = ANY($3::TEXT[])" in query
    assert args == ("cancelled", "a", ["active"])


@pytest.mark.asyncio
async def test_trade_compensates_external_steps(conn):
    items = SimpleItemAdapter([{"id": "item-a", "name": "Sword", "owner": "seller"}])
    await items.lock_item("item-a", "seller")
    storage = PostgresStorageAdapter(FakePool(conn), item_adapter=items)
    conn.fetchrow_results.append(None)
    conn.fetchval_results.append("sold")

    with pytest.raises(BazaarError) as exc:
        await storage.execute_atomic_trade([
            TransferItemOp(item_id="item-a", from_username="seller", to_username="buyer"),
            UpdateListingOp(listing_id="a", status=ListingStatus.SOLD),
        ])

    assert exc.value.code == ErrorCodes.LISTING_NOT_ACTIVE
    assert items.get_item("item-a")["owner"] == "seller"
    assert items.is_locked("item-a")
