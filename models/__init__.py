"""Domain models for the marketplace.

Models serialize with camelCase aliases so they can be returned directly
from the HTTP API and embedded in x402 payloads.
"""
import random
import string
import time
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

__all__ = [
    'Price', 'now_ms', 'generate_id',
    'ListingStatus', 'LISTING_TRANSITIONS', 'can_transition',
    'Listing', 'CreateListingParams', 'PaginationOptions', 'PaginatedResult',
    'SortBy', 'TransactionType', 'Transaction',
    'MysteryBoxTier', 'MysteryBoxPurchase', 
    'PaymentRequirements', 'PaymentDetails', 'PaymentPayload',
    'VerificationResult', 'PurchaseResult', 'PurchaseResponse',
    'CurrencyBalance', 'BalanceChangeResult', 'CurrencyTransaction',
    'PurchaseInitiation',
    'UpdateListingOp', 'TransferItemOp', 'GrantItemOp', 'UpdateBalanceOp',
    'RecordTransactionOp', 'RecordMysteryBoxPurchaseOp', 'TradeOperation',
]

# Prices are kept as Decimal internally and rendered as JSON numbers
Price = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used='json')]


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def generate_id(prefix: str, length: int = 9) -> str:
    """Generate an id such as listing-1700000000000-k3j9x0a1b."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=length))
    return f"{prefix}-{now_ms()}-{suffix}"


class CamelModel(BaseModel):
    """Base model using camelCase field aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        """Dump using aliases in JSON-compatible form."""
        return self.model_dump(by_alias=True, mode='json', exclude_none=True)


class ListingStatus(str, Enum):
    ACTIVE = 'active'
    SOLD = 'sold'
    CANCELLED = 'cancelled'


# Allowed status transitions; sold and cancelled are terminal
LISTING_TRANSITIONS = {
    ListingStatus.ACTIVE: {ListingStatus.SOLD, ListingStatus.CANCELLED},
    ListingStatus.SOLD: set(),
    ListingStatus.CANCELLED: set(),
}


def can_transition(current: ListingStatus, new: ListingStatus) -> bool:
    """Check whether a listing may move from one status to another."""
    return ListingStatus(new) in LISTING_TRANSITIONS[ListingStatus(current)]


class Listing(CamelModel):
    """An offer to sell one item at a fixed USDC price."""
    id: str
    item_id: str
    item_type: str
    item_data: Any = None
    seller_username: str
    seller_wallet: str
    price_usdc: Price = Field(alias='priceUSDC')
    status: ListingStatus = ListingStatus.ACTIVE
    created_at: int
    expires_at: Optional[int] = None

    def is_expired(self, at: Optional[int] = None) -> bool:
        """Whether the listing has passed its expiry time."""
        if self.expires_at is None:
            return False
        return (at if at is not None else now_ms()) > self.expires_at


class CreateListingParams(CamelModel):
    item_id: str
    item_type: str
    item_data: Any = None
    seller_username: str
    seller_wallet: str
    price_usdc: Price = Field(alias='priceUSDC')
    expires_in_seconds: Optional[int] = None


SortBy = Literal['newest', 'price_low', 'price_high']


class PaginationOptions(CamelModel):
    cursor: Optional[str] = None
    limit: Optional[int] = None
    sort_by: SortBy = 'newest'


T = TypeVar('T')


class PaginatedResult(CamelModel, Generic[T]):
    items: List[T]
    next_cursor: Optional[str] = None
    total_count: Optional[int] = None


class TransactionType(str, Enum):
    LISTING_PURCHASE = 'listing_purchase'
    MYSTERY_BOX_PURCHASE = 'mystery_box_purchase'


class Transaction(CamelModel):
    """Immutable record of a completed purchase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    type: TransactionType
    buyer_username: str
    buyer_wallet: str
    seller_username: Optional[str] = None
    seller_wallet: Optional[str] = None
    listing_id: Optional[str] = None
    mystery_box_tier_id: Optional[str] = None
    price_usdc: Price = Field(alias='priceUSDC')
    items: List[Any] = Field(default_factory=list)
    tx_hash: str
    timestamp: int


class MysteryBoxTier(CamelModel):
    id: str
    name: str
    price_usdc: Price = Field(alias='priceUSDC')
    description: str = ''
    rarity_weights: Dict[str, float]


class MysteryBoxPurchase(CamelModel):
    id: str
    tier_id: str
    buyer_username: str
    buyer_wallet: str
    price_usdc: Price = Field(alias='priceUSDC')
    item_generated: Any = None
    tx_hash: str
    timestamp: int


class PaymentRequirements(CamelModel):
    """Machine-readable payment requirements returned with HTTP 402."""
    scheme: Literal['exact'] = 'exact'
    network: str
    max_amount_required: str
    resource: str
    description: str
    mime_type: str = 'application/json'
    pay_to: str
    max_timeout_seconds: int = 300
    asset: str


class PaymentDetails(BaseModel):
    """Inner payload of an X-Payment header."""
    model_config = ConfigDict(populate_by_name=True)

    signature: str
    from_: str = Field(alias='from')
    to: str
    amount: str
    mint: str


class PaymentPayload(CamelModel):
    """Decoded X-Payment header."""
    x402_version: int = Field(alias='x402Version')
    scheme: str
    network: str
    payload: PaymentDetails


class VerificationResult(CamelModel):
    success: bool
    tx_hash: str = ''
    network_id: str = ''
    payer: Optional[str] = None
    error: Optional[str] = None


class PurchaseResult(CamelModel):
    success: bool
    message: Optional[str] = None
    item: Any = None
    tx_hash: str


class PurchaseResponse(CamelModel):
    """Outcome of a purchase request: either payment is due or it settled."""
    requires_payment: bool
    payment_requirements: Optional[PaymentRequirements] = None
    purchase_result: Optional[PurchaseResult] = None


class CurrencyBalance(CamelModel):
    amount: Price
    currency: Literal['USDC', 'MOCK_USDC']
    last_updated: Optional[int] = None


class BalanceChangeResult(CamelModel):
    success: bool
    new_balance: Price
    tx_id: str
    network_id: Optional[str] = None


class CurrencyTransaction(CamelModel):
    id: str
    user_id: str
    type: Literal['mystery_box_purchase', 'listing_purchase', 'listing_sale', 'refund', 'test_credit']
    amount: Price
    tx_id: str
    network_id: Optional[str] = None
    timestamp: int
    box_id: Optional[str] = None
    listing_id: Optional[str] = None
    item_id: Optional[str] = None
    items: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


class PurchaseInitiation(CamelModel):
    status: int
    payment_required: bool
    requirements: Optional[Dict[str, Any]] = None
    tx_id: Optional[str] = None


# Trade operations executed by StorageAdapter.execute_atomic_trade

class UpdateListingOp(BaseModel):
    type: Literal['update_listing'] = 'update_listing'
    listing_id: str
    status: ListingStatus


class TransferItemOp(BaseModel):
    type: Literal['transfer_item'] = 'transfer_item'
    item_id: str
    from_username: str
    to_username: str


class GrantItemOp(BaseModel):
    type: Literal['grant_item'] = 'grant_item'
    item: Any
    username: str


class UpdateBalanceOp(BaseModel):
    """Signed balance change; negative deducts."""
    type: Literal['update_balance'] = 'update_balance'
    username: str
    delta: Decimal


class RecordTransactionOp(BaseModel):
    type: Literal['record_transaction'] = 'record_transaction'
    transaction: Transaction


class RecordMysteryBoxPurchaseOp(BaseModel):
    type: Literal['record_mystery_box_purchase'] = 'record_mystery_box_purchase'
    purchase: MysteryBoxPurchase


TradeOperation = Annotated[
    Union[
        UpdateListingOp,
        TransferItemOp,
        GrantItemOp,
        UpdateBalanceOp,
        RecordTransactionOp,
        RecordMysteryBoxPurchaseOp,
    ],
    Field(discriminator='type')
]
