"""PostgreSQL storage adapter.

The connection pool is created by the caller (see database.create_pool) and
passed in. Each atomic trade runs its SQL steps inside one database
transaction; item and balance steps are applied through the injected adapters
and compensated if the transaction does not commit.
"""
import json
import logging
from decimal import Decimal
from typing import Any, List, Optional

from errors import BazaarError, ErrorCodes
from models import (
    Listing, ListingStatus, MysteryBoxPurchase, MysteryBoxTier, PaginatedResult,
    PaginationOptions, RecordMysteryBoxPurchaseOp, RecordTransactionOp,
    Transaction, UpdateListingOp, can_transition
)
from .storage import (
    StorageAdapter, decode_cursor, encode_cursor, page_limit, parse_operations
)

logger = logging.getLogger(__name__)

# ORDER BY clause, keyset condition for rows after a cursor, cursor field
SORT_SQL = {
    'newest': (
        'created_at DESC, id ASC',
        '(created_at < $1 OR (created_at = $1 AND id > $2))',
        'created_at',
    ),
    'price_low': (
        'price_usdc ASC, id ASC',
        '(price_usdc > $1 OR (price_usdc = $1 AND id > $2))',
        'price',
    ),
    'price_high': (
        'price_usdc DESC, id ASC',
        '(price_usdc < $1 OR (price_usdc = $1 AND id > $2))',
        'price',
    ),
}

LISTING_COLUMNS = '''
    id, item_id, item_type, item_data, seller_username, seller_wallet,
    price_usdc, status, created_at, expires_at
'''

TRANSACTION_COLUMNS = '''
    id, type, buyer_username, buyer_wallet, seller_username, seller_wallet,
    listing_id, mystery_box_tier_id, price_usdc, items, tx_hash, timestamp
'''


def _listing_from_row(row) -> Listing:
    return Listing(
        id=row['id'],
        item_id=row['item_id'],
        item_type=row['item_type'],
        item_data=json.loads(row['item_data']) if row['item_data'] is not None else None,
        seller_username=row['seller_username'],
        seller_wallet=row['seller_wallet'],
        price_usdc=Decimal(row['price_usdc']),
        status=ListingStatus(row['status']),
        created_at=row['created_at'],
        expires_at=row['expires_at'],
    )


def _transaction_from_row(row) -> Transaction:
    return Transaction(
        id=row['id'],
        type=row['type'],
        buyer_username=row['buyer_username'],
        buyer_wallet=row['buyer_wallet'],
        seller_username=row['seller_username'],
        seller_wallet=row['seller_wallet'],
        listing_id=row['listing_id'],
        mystery_box_tier_id=row['mystery_box_tier_id'],
        price_usdc=Decimal(row['price_usdc']),
        items=json.loads(row['items']),
        tx_hash=row['tx_hash'],
        timestamp=row['timestamp'],
    )


def _purchase_from_row(row) -> MysteryBoxPurchase:
    return MysteryBoxPurchase(
        id=row['id'],
        tier_id=row['tier_id'],
        buyer_username=row['buyer_username'],
        buyer_wallet=row['buyer_wallet'],
        price_usdc=Decimal(row['price_usdc']),
        item_generated=json.loads(row['item_generated']) if row['item_generated'] is not None else None,
        tx_hash=row['tx_hash'],
        timestamp=row['timestamp'],
    )


def _tier_from_row(row) -> MysteryBoxTier:
    return MysteryBoxTier(
        id=row['id'],
        name=row['name'],
        price_usdc=Decimal(row['price_usdc']),
        description=row['description'] or '',
        rarity_weights=json.loads(row['rarity_weights']),
    )


class PostgresStorageAdapter(StorageAdapter):
    """Storage adapter backed by PostgreSQL through an asyncpg pool.

    Args:
        pool: asyncpg connection pool owned by the caller
        item_adapter: Applies item trade operations
        currency_adapter: Applies balance trade operations
    """

    def __init__(self, pool, item_adapter=None, currency_adapter=None):
        super().__init__(item_adapter, currency_adapter)
        self.pool = pool

    # Listings

    async def create_listing(self, listing: Listing) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    f'''
                    INSERT INTO listings ({LISTING_COLUMNS})
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                    ''',
                    listing.id, listing.item_id, listing.item_type,
                    json.dumps(listing.item_data), listing.seller_username,
                    listing.seller_wallet, listing.price_usdc, listing.status.value,
                    listing.created_at, listing.expires_at
                )
        except Exception as e:
            logger.error(f"Error creating listing {listing.id}: {e}")
            raise BazaarError(ErrorCodes.STORAGE_ERROR, f"Failed to store listing: {e}", 500) from e

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f'SELECT {LISTING_COLUMNS} FROM listings WHERE id = $1', listing_id
            )
        return _listing_from_row(row) if row else None

    async def get_active_listings(self, options: Optional[PaginationOptions] = None) -> PaginatedResult:
        options = options or PaginationOptions()
        if options.sort_by not in SORT_SQL:
            raise BazaarError(ErrorCodes.INVALID_LISTING_PARAMS, f"Unknown sort order: {options.sort_by}")
        order_by, after, field = SORT_SQL[options.sort_by]
        limit = page_limit(options.limit)

        if options.cursor:
            pos = decode_cursor(options.cursor, options.sort_by)
            args = [pos[field], pos['id']]
        else:
            after = 'TRUE'
            args = []

        async with self.pool.acquire() as conn:
            # Fetch one extra row to know whether another page exists
            rows = await conn.fetch(
                f'''
                SELECT {LISTING_COLUMNS} FROM listings
                WHERE status = 'active' AND {after}
                ORDER BY {order_by}
                LIMIT ${len(args) + 1}
                ''',
                *args, limit + 1
            )
            total = await conn.fetchval("SELECT count(*) FROM listings WHERE status = 'active'")

        items = [_listing_from_row(row) for row in rows[:limit]]
        next_cursor = encode_cursor(options.sort_by, items[-1]) if len(rows) > limit else None
        return PaginatedResult[Listing](items=items, next_cursor=next_cursor, total_count=total)

    async def update_listing_status(self, listing_id: str, status: ListingStatus) -> None:
        async with self.pool.acquire() as conn:
            await self._update_status(conn, listing_id, ListingStatus(status))

    async def _update_status(self, conn, listing_id: str, status: ListingStatus) -> None:
        """Conditional status write; the WHERE clause enforces the transition table."""
        allowed_from = [s.value for s in ListingStatus if can_transition(s, status)]
        row = await conn.fetchrow(
            '''
            UPDATE listings SET status = $1
            WHERE id = $2 AND status = ANY($3::TEXT[])
            RETURNING id
            ''',
            status.value, listing_id, allowed_from
        )
        if row is not None:
            return
        current = await conn.fetchval('SELECT status FROM listings WHERE id = $1', listing_id)
        if current is None:
            raise BazaarError(
                ErrorCodes.LISTING_NOT_FOUND, f"Listing {listing_id} not found", 404
            )
        raise BazaarError(ErrorCodes.LISTING_NOT_ACTIVE, f"Listing is {current}, not active")

    async def get_listings_by_user(self, username: str) -> List[Listing]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT {LISTING_COLUMNS} FROM listings
                WHERE seller_username = $1
                ORDER BY created_at DESC, id ASC
                ''',
                username
            )
        return [_listing_from_row(row) for row in rows]

    # Mystery boxes

    async def get_mystery_box_tier(self, tier_id: str) -> Optional[MysteryBoxTier]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow('SELECT * FROM mystery_box_tiers WHERE id = $1', tier_id)
        return _tier_from_row(row) if row else None

    async def get_all_mystery_box_tiers(self) -> List[MysteryBoxTier]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch('SELECT * FROM mystery_box_tiers ORDER BY price_usdc ASC, id ASC')
        return [_tier_from_row(row) for row in rows]

    async def add_mystery_box_tier(self, tier: MysteryBoxTier) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                '''
                INSERT INTO mystery_box_tiers (id, name, price_usdc, description, rarity_weights)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    price_usdc = EXCLUDED.price_usdc,
                    description = EXCLUDED.description,
                    rarity_weights = EXCLUDED.rarity_weights
                ''',
                tier.id, tier.name, tier.price_usdc, tier.description,
                json.dumps(tier.rarity_weights)
            )

    async def record_mystery_box_purchase(self, purchase: MysteryBoxPurchase) -> None:
        async with self.pool.acquire() as conn:
            await self._insert_purchase(conn, purchase)

    async def _insert_purchase(self, conn, purchase: MysteryBoxPurchase) -> None:
        await conn.execute(
            '''
            INSERT INTO mystery_box_purchases (
                id, tier_id, buyer_username, buyer_wallet, price_usdc,
                item_generated, tx_hash, timestamp
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ''',
            purchase.id, purchase.tier_id, purchase.buyer_username, purchase.buyer_wallet,
            purchase.price_usdc, json.dumps(purchase.item_generated), purchase.tx_hash,
            purchase.timestamp
        )

    async def get_mystery_box_purchases_by_user(self, username: str) -> List[MysteryBoxPurchase]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT * FROM mystery_box_purchases
                WHERE buyer_username = $1
                ORDER BY timestamp DESC
                ''',
                username
            )
        return [_purchase_from_row(row) for row in rows]

    # Transactions

    async def record_transaction(self, transaction: Transaction) -> None:
        async with self.pool.acquire() as conn:
            await self._insert_transaction(conn, transaction)

    async def _insert_transaction(self, conn, transaction: Transaction) -> None:
        await conn.execute(
            f'''
            INSERT INTO transactions ({TRANSACTION_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            ''',
            transaction.id, transaction.type.value, transaction.buyer_username,
            transaction.buyer_wallet, transaction.seller_username, transaction.seller_wallet,
            transaction.listing_id, transaction.mystery_box_tier_id, transaction.price_usdc,
            json.dumps(transaction.items), transaction.tx_hash, transaction.timestamp
        )

    async def get_transactions_by_user(self, username: str) -> List[Transaction]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT {TRANSACTION_COLUMNS} FROM transactions
                WHERE buyer_username = $1 OR seller_username = $1
                ORDER BY timestamp DESC
                ''',
                username
            )
        return [_transaction_from_row(row) for row in rows]

    # Atomic trade

    async def execute_atomic_trade(self, operations: List[Any]) -> None:
        """Apply all operations or none of them.

        SQL steps share one transaction, so a failure rolls them back; the
        listing status write only matches rows still in an allowed state,
        which makes a concurrent second sale fail with LISTING_NOT_ACTIVE.
        External steps are compensated in reverse order.
        """
        operations = parse_operations(operations)
        undo_log = []
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    for op in operations:
                        if isinstance(op, UpdateListingOp):
                            await self._update_status(conn, op.listing_id, op.status)
                        elif isinstance(op, RecordTransactionOp):
                            await self._insert_transaction(conn, op.transaction)
                        elif isinstance(op, RecordMysteryBoxPurchaseOp):
                            await self._insert_purchase(conn, op.purchase)
                        else:
                            undo = await self._apply_external(op)
                            if undo is not None:
                                undo_log.append(undo)
        except Exception as e:
            logger.error(f"Atomic trade failed: {e}")
            await self._rollback(undo_log)
            failure = self._trade_failure(e)
            if failure is e:
                raise
            raise failure from e
