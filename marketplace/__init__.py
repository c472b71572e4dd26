"""Marketplace orchestrator.

Decides between answering with payment requirements (HTTP 402) and settling a
purchase, drives payment verification and commits each settlement as one
atomic trade. All durable state lives behind the storage adapter.
"""

import logging
from decimal import Decimal
from typing import Any, List, Optional

from errors import BazaarError, ErrorCodes
from listings import ListingManager, validate_listing_active
from models import (
    CurrencyBalance, CurrencyTransaction, Listing, ListingStatus, MysteryBoxPurchase,
    MysteryBoxTier, PaginatedResult, PaginationOptions, PurchaseResponse, PurchaseResult,
    RecordTransactionOp, Transaction, TransactionType, TransferItemOp, UpdateBalanceOp,
    UpdateListingOp, generate_id, now_ms
)
from mystery_box import MysteryBoxManager

logger = logging.getLogger(__name__)

__all__ = ['BazaarMarketplace', 'MOCK_BUYER', 'MOCK_WALLET', 'DEFAULT_BUYER']

MOCK_BUYER = 'mock-buyer'
MOCK_WALLET = 'mock-wallet'
DEFAULT_BUYER = 'buyer'
DEFAULT_BUYER_WALLET = 'buyer-wallet'


class BazaarMarketplace:
    """Top-level entry point for listing and mystery box purchases.

    Args:
        storage_adapter: Durable state and atomic trades
        item_adapter: Item ownership, locks and generation
        payment_adapter: Payment requirements and verification
        currency_adapter: Optional balances; debited and credited in mock mode
        mock_mode: Settle purchases immediately without a payment proof
        platform_wallet: Recipient of mystery box payments

    Raises:
        BazaarError: MISSING_ADAPTER if a required adapter is not provided
    """

    def __init__(
        self,
        storage_adapter,
        item_adapter,
        payment_adapter,
        currency_adapter=None,
        mock_mode: bool = False,
        platform_wallet: str = 'platform-wallet'
    ):
        for name, adapter in (('storage', storage_adapter), ('item', item_adapter),
                              ('payment', payment_adapter)):
            if adapter is None:
                raise BazaarError(
                    ErrorCodes.MISSING_ADAPTER, f"A {name} adapter is required", 500
                )

        self.storage = storage_adapter
        self.items = item_adapter
        self.payments = payment_adapter
        self.currency = currency_adapter
        self.mock_mode = mock_mode
        self.platform_wallet = platform_wallet

        self.storage.attach_adapters(item_adapter, currency_adapter)
        self.listing_manager = ListingManager(storage_adapter, item_adapter)
        self.mystery_box_manager = MysteryBoxManager(storage_adapter, item_adapter)

    # Listings

    async def create_listing(self, params) -> Listing:
        return await self.listing_manager.create_listing(params)

    async def cancel_listing(self, listing_id: str, username: str) -> None:
        await self.listing_manager.cancel_listing(listing_id, username)

    async def get_active_listings(self, options: Optional[PaginationOptions] = None) -> PaginatedResult:
        return await self.listing_manager.get_active_listings(options)

    async def get_listings_by_user(self, username: str) -> List[Listing]:
        return await self.listing_manager.get_listings_by_user(username)

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        return await self.listing_manager.get_listing(listing_id)

    async def _load_purchasable_listing(self, listing_id: str) -> Listing:
        listing = await self.listing_manager.get_listing(listing_id)
        if listing is None:
            raise BazaarError(
                ErrorCodes.LISTING_NOT_FOUND, f"Listing {listing_id} not found", 404
            )
        validate_listing_active(listing)
        return listing

    @staticmethod
    def _check_not_seller(listing: Listing, buyer_username: Optional[str]) -> None:
        if buyer_username and buyer_username == listing.seller_username:
            raise BazaarError(ErrorCodes.BUYER_IS_SELLER, "You cannot buy your own listing")

    # Listing purchases

    async def handle_purchase_request(
        self,
        listing_id: str,
        buyer_username: Optional[str] = None,
        buyer_wallet: Optional[str] = None
    ) -> PurchaseResponse:
        """Start a listing purchase.

        In mock mode the purchase settles immediately. Otherwise the caller gets
        payment requirements and nothing changes until a payment proof arrives
        through verify_and_complete_purchase.

        Raises:
            BazaarError: LISTING_NOT_FOUND, LISTING_NOT_ACTIVE, LISTING_EXPIRED
                or BUYER_IS_SELLER
        """
        listing = await self._load_purchasable_listing(listing_id)
        self._check_not_seller(listing, buyer_username)

        if self.mock_mode:
            result = await self.verify_and_complete_purchase(
                listing_id, '', buyer_username or MOCK_BUYER, buyer_wallet or MOCK_WALLET
            )
            return PurchaseResponse(requires_payment=False, purchase_result=result)

        requirements = self.payments.create_payment_requirements(
            listing.price_usdc,
            listing.seller_wallet,
            f"/purchase/{listing_id}",
            f"Purchase {listing.item_type} listing",
        )
        logger.info(f"Payment required for listing {listing_id}: {listing.price_usdc} USDC")
        return PurchaseResponse(requires_payment=True, payment_requirements=requirements)

    async def verify_and_complete_purchase(
        self,
        listing_id: str,
        payment_header: str,
        buyer_username: Optional[str] = None,
        buyer_wallet: Optional[str] = None
    ) -> PurchaseResult:
        """Verify a payment proof and settle the listing purchase.

        Args:
            listing_id: Listing being bought
            payment_header: X-Payment header value
            buyer_username: Buyer; defaults to the paying wallet
            buyer_wallet: Buyer wallet; defaults to the paying wallet

        Returns:
            PurchaseResult with the item data and transaction hash

        Raises:
            BazaarError: LISTING_NOT_FOUND, LISTING_NOT_ACTIVE, LISTING_EXPIRED,
                BUYER_IS_SELLER, PAYMENT_VERIFICATION_FAILED, or any error from
                the atomic commit
        """
        # The listing may have changed since the 402 was issued
        listing = await self._load_purchasable_listing(listing_id)
        self._check_not_seller(listing, buyer_username)

        verification = await self.payments.verify_payment(
            payment_header, listing.price_usdc, listing.seller_wallet
        )
        if not verification.success:
            logger.warning(f"Payment for listing {listing_id} rejected: {verification.error}")
            raise BazaarError(
                ErrorCodes.PAYMENT_VERIFICATION_FAILED,
                f"Payment verification failed: {verification.error}" if verification.error
                else "Payment verification failed",
                402
            )

        buyer = buyer_username or verification.payer or DEFAULT_BUYER
        wallet = buyer_wallet or verification.payer or DEFAULT_BUYER_WALLET
        self._check_not_seller(listing, buyer)

        transaction = Transaction(
            id=generate_id('tx'),
            type=TransactionType.LISTING_PURCHASE,
            buyer_username=buyer,
            buyer_wallet=wallet,
            seller_username=listing.seller_username,
            seller_wallet=listing.seller_wallet,
            listing_id=listing.id,
            price_usdc=listing.price_usdc,
            items=[{'id': listing.item_id, 'type': listing.item_type, 'data': listing.item_data}],
            tx_hash=verification.tx_hash,
            timestamp=now_ms(),
        )

        operations: List[Any] = [
            UpdateListingOp(listing_id=listing.id, status=ListingStatus.SOLD),
            TransferItemOp(
                item_id=listing.item_id,
                from_username=listing.seller_username,
                to_username=buyer,
            ),
        ]
        moves_balances = self._moves_balances(listing.price_usdc)
        if moves_balances:
            operations += [
                UpdateBalanceOp(username=buyer, delta=-listing.price_usdc),
                UpdateBalanceOp(username=listing.seller_username, delta=listing.price_usdc),
            ]
        operations.append(RecordTransactionOp(transaction=transaction))

        await self.storage.execute_atomic_trade(operations)
        logger.info(
            f"Listing {listing.id} sold to {buyer} for {listing.price_usdc} USDC "
            f"(tx {verification.tx_hash})"
        )

        if moves_balances:
            await self._record_currency_history([
                (buyer, 'listing_purchase', listing.price_usdc),
                (listing.seller_username, 'listing_sale', listing.price_usdc),
            ], verification.tx_hash, listing_id=listing.id, item_id=listing.item_id)

        return PurchaseResult(
            success=True,
            message='Purchase completed (mock mode)' if self.mock_mode else 'Purchase completed',
            item=listing.item_data,
            tx_hash=verification.tx_hash,
        )

    # Mystery boxes

    async def get_mystery_box_tiers(self) -> List[MysteryBoxTier]:
        return await self.mystery_box_manager.get_all_tiers()

    async def get_mystery_box_tier(self, tier_id: str) -> MysteryBoxTier:
        return await self.mystery_box_manager.get_tier(tier_id)

    async def add_mystery_box_tier(self, tier: MysteryBoxTier) -> None:
        await self.mystery_box_manager.add_tier(tier)

    async def get_mystery_box_purchases_by_user(self, username: str) -> List[MysteryBoxPurchase]:
        return await self.storage.get_mystery_box_purchases_by_user(username)

    async def handle_mystery_box_request(
        self,
        tier_id: str,
        buyer_username: Optional[str] = None,
        buyer_wallet: Optional[str] = None
    ) -> PurchaseResponse:
        """Start a mystery box purchase; payment goes to the platform wallet.

        Raises:
            BazaarError: TIER_NOT_FOUND
        """
        tier = await self.mystery_box_manager.get_tier(tier_id)

        if self.mock_mode:
            purchase = await self.verify_and_complete_mystery_box(
                tier_id, '', buyer_username or MOCK_BUYER, buyer_wallet or MOCK_WALLET
            )
            return PurchaseResponse(
                requires_payment=False,
                purchase_result=PurchaseResult(
                    success=True,
                    message='Mystery box purchased (mock mode)',
                    item=purchase.item_generated,
                    tx_hash=purchase.tx_hash,
                ),
            )

        requirements = self.payments.create_payment_requirements(
            tier.price_usdc,
            self.platform_wallet,
            f"/mystery-box/{tier_id}",
            f"Purchase {tier.name} mystery box",
        )
        return PurchaseResponse(requires_payment=True, payment_requirements=requirements)

    async def verify_and_complete_mystery_box(
        self,
        tier_id: str,
        payment_header: str,
        buyer_username: str,
        buyer_wallet: str
    ) -> MysteryBoxPurchase:
        """Verify payment for a mystery box and commit the purchase.

        Raises:
            BazaarError: MISSING_BUYER_INFO, TIER_NOT_FOUND,
                PAYMENT_VERIFICATION_FAILED, ITEM_GENERATION_FAILED, or any
                error from the atomic commit
        """
        if not buyer_username or not buyer_wallet:
            raise BazaarError(
                ErrorCodes.MISSING_BUYER_INFO, "buyerUsername and buyerWallet are required"
            )
        tier = await self.mystery_box_manager.get_tier(tier_id)

        verification = await self.payments.verify_payment(
            payment_header, tier.price_usdc, self.platform_wallet
        )
        if not verification.success:
            logger.warning(f"Payment for mystery box {tier_id} rejected: {verification.error}")
            raise BazaarError(
                ErrorCodes.PAYMENT_VERIFICATION_FAILED,
                f"Payment verification failed: {verification.error}" if verification.error
                else "Payment verification failed",
                402
            )

        extra = []
        moves_balances = self._moves_balances(tier.price_usdc)
        if moves_balances:
            extra.append(UpdateBalanceOp(username=buyer_username, delta=-Decimal(tier.price_usdc)))

        purchase = await self.mystery_box_manager.purchase_mystery_box(
            tier_id, buyer_username, buyer_wallet, verification.tx_hash,
            extra_operations=extra
        )

        if moves_balances:
            await self._record_currency_history(
                [(buyer_username, 'mystery_box_purchase', Decimal(tier.price_usdc))],
                verification.tx_hash,
                box_id=tier_id,
                items=[str(purchase.item_generated.get('id'))]
                if isinstance(purchase.item_generated, dict) else None,
            )
        return purchase

    # Transactions and balances

    async def get_transactions_by_user(self, username: str) -> List[Transaction]:
        return await self.storage.get_transactions_by_user(username)

    def _require_currency(self):
        if self.currency is None:
            raise BazaarError(
                ErrorCodes.CURRENCY_NOT_CONFIGURED, "No currency adapter is configured", 404
            )
        return self.currency

    async def get_balance(self, username: str) -> CurrencyBalance:
        return await self._require_currency().get_balance(username)

    async def get_currency_transactions(
        self,
        username: str,
        page: int = 1,
        limit: int = 20,
        sort_order: str = 'desc'
    ) -> List[CurrencyTransaction]:
        return await self._require_currency().get_transactions(username, page, limit, sort_order)

    def _moves_balances(self, amount: Decimal) -> bool:
        """Mock settlements move mock balances when a currency adapter is present."""
        return self.mock_mode and self.currency is not None and amount > 0

    async def _record_currency_history(self, entries, tx_id: str, **fields: Any) -> None:
        """Append committed balance changes to currency history.

        The purchase is already committed, so failures are logged only.
        """
        for user_id, kind, amount in entries:
            entry = CurrencyTransaction(
                id=generate_id('ctx'),
                user_id=user_id,
                type=kind,
                amount=amount,
                tx_id=tx_id,
                network_id='mock',
                timestamp=now_ms(),
                **{k: v for k, v in fields.items() if v is not None},
            )
            try:
                await self.currency.record_transaction(entry)
            except Exception as e:
                logger.warning(f"Failed to record currency history for {user_id}: {e}")
