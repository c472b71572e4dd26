"""In-memory storage adapter.

Listings live in a dict keyed by id. Active listings are additionally kept in
one sorted index per sort order; every status write updates the dict and the
indexes together, so pagination never has to sort at query time.
"""
import asyncio
import bisect
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

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

SORT_ORDERS = ('newest', 'price_low', 'price_high')


def _sort_key(sort_by: str, created_at: int, price: Decimal, listing_id: str) -> Tuple:
    """Ascending index key for a sort order; ties break on id."""
    if sort_by == 'newest':
        return (-created_at, listing_id)
    if sort_by == 'price_low':
        return (price, listing_id)
    return (-price, listing_id)


class MemoryStorageAdapter(StorageAdapter):
    """Storage adapter keeping all state in process memory."""

    def __init__(self, item_adapter=None, currency_adapter=None):
        super().__init__(item_adapter, currency_adapter)
        self._listings: Dict[str, Listing] = {}
        self._active_index: Dict[str, List[Tuple]] = {s: [] for s in SORT_ORDERS}
        self._user_listings: Dict[str, List[str]] = {}
        self._tiers: Dict[str, MysteryBoxTier] = {}
        self._purchases: Dict[str, MysteryBoxPurchase] = {}
        self._user_purchases: Dict[str, List[str]] = {}
        self._transactions: Dict[str, Transaction] = {}
        self._user_transactions: Dict[str, List[str]] = {}
        self._lock = asyncio.Lock()

    # Index maintenance

    def _index_add(self, listing: Listing) -> None:
        for sort_by, index in self._active_index.items():
            key = _sort_key(sort_by, listing.created_at, listing.price_usdc, listing.id)
            bisect.insort(index, key)

    def _index_remove(self, listing: Listing) -> None:
        for sort_by, index in self._active_index.items():
            key = _sort_key(sort_by, listing.created_at, listing.price_usdc, listing.id)
            pos = bisect.bisect_left(index, key)
            if pos < len(index) and index[pos] == key:
                del index[pos]

    def _set_status(self, listing_id: str, status: ListingStatus) -> ListingStatus:
        """Write a status and keep the active index in step. Returns the old status."""
        listing = self._listings[listing_id]
        previous = listing.status
        if previous == status:
            return previous
        if previous == ListingStatus.ACTIVE:
            self._index_remove(listing)
        listing.status = status
        if status == ListingStatus.ACTIVE:
            self._index_add(listing)
        return previous

    def _checked_status_update(self, listing_id: str, status: ListingStatus) -> ListingStatus:
        listing = self._listings.get(listing_id)
        if listing is None:
            raise BazaarError(
                ErrorCodes.LISTING_NOT_FOUND, f"Listing {listing_id} not found", 404
            )
        if not can_transition(listing.status, status):
            raise BazaarError(
                ErrorCodes.LISTING_NOT_ACTIVE,
                f"Listing is {listing.status.value}, not active"
            )
        return self._set_status(listing_id, ListingStatus(status))

    # Listings

    async def create_listing(self, listing: Listing) -> None:
        if listing.id in self._listings:
            raise BazaarError(
                ErrorCodes.STORAGE_ERROR, f"Listing {listing.id} already exists", 500
            )
        stored = listing.model_copy()
        self._listings[stored.id] = stored
        self._user_listings.setdefault(stored.seller_username, []).append(stored.id)
        if stored.status == ListingStatus.ACTIVE:
            self._index_add(stored)

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        listing = self._listings.get(listing_id)
        return listing.model_copy() if listing else None

    async def get_active_listings(self, options: Optional[PaginationOptions] = None) -> PaginatedResult:
        options = options or PaginationOptions()
        sort_by = options.sort_by
        if sort_by not in SORT_ORDERS:
            raise BazaarError(ErrorCodes.INVALID_LISTING_PARAMS, f"Unknown sort order: {sort_by}")
        limit = page_limit(options.limit)
        index = self._active_index[sort_by]

        start = 0
        if options.cursor:
            pos = decode_cursor(options.cursor, sort_by)
            after = _sort_key(sort_by, pos['created_at'], pos['price'], pos['id'])
            start = bisect.bisect_right(index, after)

        keys = index[start:start + limit]
        items = [self._listings[key[-1]].model_copy() for key in keys]
        next_cursor = None
        if items and start + limit < len(index):
            next_cursor = encode_cursor(sort_by, items[-1])

        return PaginatedResult[Listing](
            items=items, next_cursor=next_cursor, total_count=len(index)
        )

    async def update_listing_status(self, listing_id: str, status: ListingStatus) -> None:
        async with self._lock:
            self._checked_status_update(listing_id, status)

    async def get_listings_by_user(self, username: str) -> List[Listing]:
        listings = [self._listings[i].model_copy() for i in self._user_listings.get(username, [])]
        return sorted(listings, key=lambda l: (-l.created_at, l.id))

    # Mystery boxes

    async def get_mystery_box_tier(self, tier_id: str) -> Optional[MysteryBoxTier]:
        tier = self._tiers.get(tier_id)
        return tier.model_copy(deep=True) if tier else None

    async def get_all_mystery_box_tiers(self) -> List[MysteryBoxTier]:
        return [tier.model_copy(deep=True) for tier in self._tiers.values()]

    async def add_mystery_box_tier(self, tier: MysteryBoxTier) -> None:
        self._tiers[tier.id] = tier.model_copy(deep=True)

    async def record_mystery_box_purchase(self, purchase: MysteryBoxPurchase) -> None:
        if purchase.id in self._purchases:
            raise BazaarError(
                ErrorCodes.STORAGE_ERROR, f"Purchase {purchase.id} already recorded", 500
            )
        self._purchases[purchase.id] = purchase
        self._user_purchases.setdefault(purchase.buyer_username, []).append(purchase.id)

    def _remove_purchase(self, purchase: MysteryBoxPurchase) -> None:
        self._purchases.pop(purchase.id, None)
        ids = self._user_purchases.get(purchase.buyer_username, [])
        if purchase.id in ids:
            ids.remove(purchase.id)

    async def get_mystery_box_purchases_by_user(self, username: str) -> List[MysteryBoxPurchase]:
        purchases = [self._purchases[i] for i in self._user_purchases.get(username, [])]
        return sorted(purchases, key=lambda p: p.timestamp, reverse=True)

    # Transactions

    def _transaction_parties(self, transaction: Transaction) -> List[str]:
        parties = [transaction.buyer_username]
        if transaction.seller_username and transaction.seller_username != transaction.buyer_username:
            parties.append(transaction.seller_username)
        return parties

    async def record_transaction(self, transaction: Transaction) -> None:
        if transaction.id in self._transactions:
            raise BazaarError(
                ErrorCodes.STORAGE_ERROR, f"Transaction {transaction.id} already recorded", 500
            )
        self._transactions[transaction.id] = transaction
        for username in self._transaction_parties(transaction):
            self._user_transactions.setdefault(username, []).append(transaction.id)

    def _remove_transaction(self, transaction: Transaction) -> None:
        self._transactions.pop(transaction.id, None)
        for username in self._transaction_parties(transaction):
            ids = self._user_transactions.get(username, [])
            if transaction.id in ids:
                ids.remove(transaction.id)

    async def get_transactions_by_user(self, username: str) -> List[Transaction]:
        transactions = [self._transactions[i] for i in self._user_transactions.get(username, [])]
        return sorted(transactions, key=lambda t: t.timestamp, reverse=True)

    # Atomic trade

    async def execute_atomic_trade(self, operations: List[Any]) -> None:
        """Apply all operations or none of them.

        Trades are serialized by a lock. Each applied operation pushes an undo
        step; on failure the undo steps run in reverse and the error is raised.
        """
        operations = parse_operations(operations)
        async with self._lock:
            undo_log = []
            try:
                for op in operations:
                    undo = await self._apply(op)
                    if undo is not None:
                        undo_log.append(undo)
            except Exception as e:
                logger.error(f"Atomic trade failed: {e}")
                await self._rollback(undo_log)
                failure = self._trade_failure(e)
                if failure is e:
                    raise
                raise failure from e

    async def _apply(self, op: Any):
        if isinstance(op, UpdateListingOp):
            previous = self._checked_status_update(op.listing_id, op.status)

            async def undo_status():
                self._set_status(op.listing_id, previous)
            return undo_status

        if isinstance(op, RecordTransactionOp):
            await self.record_transaction(op.transaction)

            async def undo_transaction():
                self._remove_transaction(op.transaction)
            return undo_transaction

        if isinstance(op, RecordMysteryBoxPurchaseOp):
            await self.record_mystery_box_purchase(op.purchase)

            async def undo_purchase():
                self._remove_purchase(op.purchase)
            return undo_purchase

        return await self._apply_external(op)

    async def clear(self) -> None:
        """Drop all state."""
        self._listings.clear()
        for index in self._active_index.values():
            index.clear()
        self._user_listings.clear()
        self._tiers.clear()
        self._purchases.clear()
        self._user_purchases.clear()
        self._transactions.clear()
        self._user_transactions.clear()
