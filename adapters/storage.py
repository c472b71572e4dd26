"""Storage adapter interface and the shared pieces of atomic trade execution.

A trade is a list of typed operations. Storage-local operations (listing status,
transaction and purchase records) are applied by the concrete adapter; the
operations that touch other systems (item transfer and grant, balance changes)
are applied here through the injected item and currency adapters. Every applied
step leaves an undo callable behind, and a failed trade runs those in reverse
order before the error is re-raised.
"""
import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from pydantic import TypeAdapter, ValidationError

from errors import BazaarError, ErrorCodes
from models import (
    GrantItemOp, Listing, ListingStatus, MysteryBoxPurchase, MysteryBoxTier,
    PaginatedResult, PaginationOptions, TradeOperation, Transaction,
    TransferItemOp, UpdateBalanceOp
)
from .currency import CurrencyAdapter
from .item import ItemAdapter

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100

Undo = Callable[[], Awaitable[None]]

_operation_adapter = TypeAdapter(TradeOperation)


def parse_operations(operations: Iterable[Union[Dict[str, Any], Any]]) -> List[Any]:
    """Accept trade operations as models or plain dicts."""
    parsed = []
    for op in operations:
        if isinstance(op, dict):
            try:
                op = _operation_adapter.validate_python(op)
            except ValidationError as e:
                raise BazaarError(
                    ErrorCodes.ATOMIC_TRANSACTION_FAILED,
                    f"Invalid trade operation: {e}",
                    500
                )
        parsed.append(op)
    return parsed


def page_limit(limit: Optional[int]) -> int:
    """Apply the default page size and the hard cap."""
    if not limit or limit < 1:
        return DEFAULT_PAGE_LIMIT
    return min(limit, MAX_PAGE_LIMIT)


def encode_cursor(sort_by: str, listing: Listing) -> str:
    """Opaque cursor pointing just after `listing` in the given sort order."""
    data = {
        'sortBy': sort_by,
        'createdAt': listing.created_at,
        'price': str(listing.price_usdc),
        'id': listing.id,
    }
    raw = json.dumps(data, separators=(',', ':')).encode('utf-8')
    return base64.urlsafe_b64encode(raw).decode('ascii').rstrip('=')


def decode_cursor(cursor: str, sort_by: str) -> Dict[str, Any]:
    """Decode a cursor produced by encode_cursor.

    Raises:
        BazaarError: INVALID_CURSOR if the cursor is malformed or was issued
            for a different sort order
    """
    try:
        padded = cursor + '=' * (-len(cursor) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode('ascii')))
        position = {
            'created_at': int(data['createdAt']),
            'price': Decimal(data['price']),
            'id': str(data['id']),
        }
        cursor_sort = data['sortBy']
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError, InvalidOperation):
        raise BazaarError(ErrorCodes.INVALID_CURSOR, "Malformed pagination cursor")
    if cursor_sort != sort_by:
        raise BazaarError(
            ErrorCodes.INVALID_CURSOR,
            f"Cursor was issued for sort order {cursor_sort}, not {sort_by}"
        )
    return position


class StorageAdapter(ABC):
    """Durable state for listings, transactions and mystery boxes.

    Args:
        item_adapter: Applies transfer_item and grant_item trade operations
        currency_adapter: Applies update_balance trade operations
    """

    def __init__(
        self,
        item_adapter: Optional[ItemAdapter] = None,
        currency_adapter: Optional[CurrencyAdapter] = None
    ):
        self.item_adapter = item_adapter
        self.currency_adapter = currency_adapter

    def attach_adapters(
        self,
        item_adapter: Optional[ItemAdapter] = None,
        currency_adapter: Optional[CurrencyAdapter] = None
    ) -> None:
        """Provide adapters after construction, keeping any already set."""
        if item_adapter is not None and self.item_adapter is None:
            self.item_adapter = item_adapter
        if currency_adapter is not None and self.currency_adapter is None:
            self.currency_adapter = currency_adapter

    # Listings

    @abstractmethod
    async def create_listing(self, listing: Listing) -> None:
        """Persist a new listing and index it."""

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        """Get a listing by id, or None."""

    @abstractmethod
    async def get_active_listings(self, options: Optional[PaginationOptions] = None) -> PaginatedResult:
        """One page of active listings in the requested sort order."""

    @abstractmethod
    async def update_listing_status(self, listing_id: str, status: ListingStatus) -> None:
        """Move a listing to a new status.

        Raises:
            BazaarError: LISTING_NOT_FOUND, or LISTING_NOT_ACTIVE when the
                transition is not allowed
        """

    @abstractmethod
    async def get_listings_by_user(self, username: str) -> List[Listing]:
        """All listings of a seller, newest first."""

    # Mystery boxes

    @abstractmethod
    async def get_mystery_box_tier(self, tier_id: str) -> Optional[MysteryBoxTier]:
        pass

    @abstractmethod
    async def get_all_mystery_box_tiers(self) -> List[MysteryBoxTier]:
        pass

    @abstractmethod
    async def add_mystery_box_tier(self, tier: MysteryBoxTier) -> None:
        pass

    @abstractmethod
    async def record_mystery_box_purchase(self, purchase: MysteryBoxPurchase) -> None:
        pass

    @abstractmethod
    async def get_mystery_box_purchases_by_user(self, username: str) -> List[MysteryBoxPurchase]:
        pass

    # Transactions

    @abstractmethod
    async def record_transaction(self, transaction: Transaction) -> None:
        pass

    @abstractmethod
    async def get_transactions_by_user(self, username: str) -> List[Transaction]:
        """Transactions where the user is buyer or seller, newest first."""

    @abstractmethod
    async def execute_atomic_trade(self, operations: List[Any]) -> None:
        """Apply all operations or none of them."""

    # Shared trade machinery

    async def _apply_external(self, op: Any) -> Optional[Undo]:
        """Apply an operation handled by the item or currency adapter.

        Returns:
            Callable undoing the operation, or None if nothing changed
        """
        if isinstance(op, TransferItemOp):
            items = self._require_item_adapter(op.type)
            await items.transfer_item(op.item_id, op.from_username, op.to_username)

            async def undo_transfer():
                # Back to the seller, locked again for the still-active listing
                await items.transfer_item(op.item_id, op.to_username, op.from_username)
                await items.lock_item(op.item_id, op.from_username)
            return undo_transfer

        if isinstance(op, GrantItemOp):
            items = self._require_item_adapter(op.type)
            await items.grant_item_to_user(op.item, op.username)

            async def undo_grant():
                await items.revoke_item_from_user(op.item, op.username)
            return undo_grant

        if isinstance(op, UpdateBalanceOp):
            currency = self.currency_adapter
            if currency is None:
                raise BazaarError(
                    ErrorCodes.MISSING_ADAPTER,
                    "update_balance requires a currency adapter",
                    500
                )
            amount = abs(op.delta)
            if op.delta < 0:
                await currency.deduct(op.username, amount)

                async def undo_deduct():
                    await currency.add(op.username, amount)
                return undo_deduct
            if op.delta > 0:
                await currency.add(op.username, amount)

                async def undo_add():
                    await currency.deduct(op.username, amount)
                return undo_add
            return None

        raise BazaarError(
            ErrorCodes.ATOMIC_TRANSACTION_FAILED,
            f"Unknown trade operation: {getattr(op, 'type', op)!r}",
            500
        )

    def _require_item_adapter(self, op_type: str) -> ItemAdapter:
        if self.item_adapter is None:
            raise BazaarError(
                ErrorCodes.MISSING_ADAPTER,
                f"{op_type} requires an item adapter",
                500
            )
        return self.item_adapter

    async def _rollback(self, undo_log: List[Undo]) -> None:
        """Run compensations newest first. Failures are logged, not raised."""
        if undo_log:
            logger.warning(f"Rolling back {len(undo_log)} applied trade operation(s)")
        for undo in reversed(undo_log):
            try:
                await undo()
            except Exception as e:
                logger.error(f"Compensation step failed during rollback: {e}")

    @staticmethod
    def _trade_failure(error: Exception) -> BazaarError:
        """Error to raise for a failed trade; BazaarErrors pass through."""
        if isinstance(error, BazaarError):
            return error
        return BazaarError(
            ErrorCodes.ATOMIC_TRANSACTION_FAILED,
            f"Atomic trade failed: {error}",
            500
        )
