"""Tests for the marketplace purchase flows."""

import asyncio

import pytest
import pytest_asyncio
from decimal import Decimal

from adapters import (
    MemoryStorageAdapter, MockCurrencyAdapter, MockPaymentAdapter,
    SimpleItemAdapter
)
from errors import BazaarError, ErrorCodes
from marketplace import BazaarMarketplace
from models import Listing, ListingStatus, MysteryBoxTier, VerificationResult, now_ms

SELLER = "seller1"
SELLER_WALLET = "SellerWallet1111111111111111111111111111111"
PLATFORM_WALLET = "PlatformWallet11111111111111111111111111111"


class RejectingPaymentAdapter(MockPaymentAdapter):
    """Payment adapter that refuses every proof."""

    async def verify_payment(self, payment_header, expected_amount, expected_recipient):
        return VerificationResult(success=False, error="Transaction not found")


class RecordingPaymentAdapter(MockPaymentAdapter):
    """Mock payment adapter remembering what it was asked to verify."""

    def __init__(self, payer=None):
        self.calls = []
        self.payer = payer

    async def verify_payment(self, payment_header, expected_amount, expected_recipient):
        self.calls.append((payment_header, expected_amount, expected_recipient))
        result = await super().verify_payment(payment_header, expected_amount, expected_recipient)
        if self.payer:
            result.payer = self.payer
        return result


class YieldingPaymentAdapter(MockPaymentAdapter):
    """Mock payment adapter that suspends during verification like a ledger poll."""

    async def verify_payment(self, payment_header, expected_amount, expected_recipient):
        await asyncio.sleep(0)
        return await super().verify_payment(payment_header, expected_amount, expected_recipient)


class CountingStorage(MemoryStorageAdapter):
    """Memory storage counting how many atomic trades were started."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.trades_started = 0

    async def execute_atomic_trade(self, operations):
        self.trades_started += 1
        return await super().execute_atomic_trade(operations)


def build_marketplace(mock_mode=True, payment_adapter=None, currency_adapter=None, items=None,
                      storage=None):
    items = items or SimpleItemAdapter([
        {"id": "item-1", "name": "Gem Sword", "owner": SELLER},
        {"id": "item-2", "name": "Gem Shield", "owner": SELLER},
    ])
    return BazaarMarketplace(
        storage_adapter=storage or MemoryStorageAdapter(),
        item_adapter=items,
        payment_adapter=payment_adapter or MockPaymentAdapter(),
        currency_adapter=currency_adapter,
        mock_mode=mock_mode,
        platform_wallet=PLATFORM_WALLET,
    )


async def list_item(marketplace, item_id="item-1", price="5.0"):
    return await marketplace.create_listing({
        "itemId": item_id,
        "itemType": "weapon",
        "itemData": {"name": "Gem Sword"},
        "sellerUsername": SELLER,
        "sellerWallet": SELLER_WALLET,
        "priceUSDC": price,
    })


COMMON_TIER = MysteryBoxTier(
    id="common-box",
    name="Common Box",
    price_usdc=Decimal("0.10"),
    description="Always common",
    rarity_weights={"common": 100},
)


@pytest_asyncio.fixture
async def mock_marketplace():
    marketplace = build_marketplace()
    await marketplace.add_mystery_box_tier(COMMON_TIER)
    return marketplace


def test_requires_adapters():
    with pytest.raises(BazaarError) as exc:
        BazaarMarketplace(MemoryStorageAdapter(), SimpleItemAdapter(), None)
    assert exc.value.code == ErrorCodes.MISSING_ADAPTER
    assert exc.value.http_status == 500


@pytest.mark.asyncio
async def test_mock_purchase_scenario(mock_marketplace):
    """A mock purchase settles at once and the listing cannot be bought again."""
    listing = await list_item(mock_marketplace)

    response = await mock_marketplace.handle_purchase_request(listing.id)
    assert response.requires_payment is False
    result = response.purchase_result
    assert result.success is True
    assert "mock mode" in result.message
    assert result.tx_hash.startswith("mock-tx-")
    assert result.item == {"name": "Gem Sword"}

    stored = await mock_marketplace.get_listing(listing.id)
    assert stored.status == ListingStatus.SOLD
    assert mock_marketplace.items.get_item("item-1")["owner"] == "mock-buyer"
    assert not mock_marketplace.items.is_locked("item-1")

    transactions = await mock_marketplace.get_transactions_by_user(SELLER)
    assert len(transactions) == 1
    assert transactions[0].listing_id == listing.id
    assert transactions[0].tx_hash == result.tx_hash
    assert transactions[0].items[0]["id"] == "item-1"

    with pytest.raises(BazaarError) as exc:
        await mock_marketplace.handle_purchase_request(listing.id)
    assert exc.value.code == ErrorCodes.LISTING_NOT_ACTIVE


@pytest.mark.asyncio
async def test_unknown_listing(mock_marketplace):
    with pytest.raises(BazaarError) as exc:
        await mock_marketplace.handle_purchase_request("listing-missing")
    assert exc.value.code == ErrorCodes.LISTING_NOT_FOUND
    assert exc.value.http_status == 404


@pytest.mark.asyncio
async def test_expired_listing():
    marketplace = build_marketplace()
    await marketplace.storage.create_listing(Listing(
        id="listing-old",
        item_id="item-1",
        item_type="weapon",
        seller_username=SELLER,
        seller_wallet=SELLER_WALLET,
        price_usdc=Decimal("1"),
        created_at=now_ms() - 10_000,
        expires_at=now_ms() - 1_000,
    ))

    with pytest.raises(BazaarError) as exc:
        await marketplace.handle_purchase_request("listing-old")
    assert exc.value.code == ErrorCodes.LISTING_EXPIRED


@pytest.mark.asyncio
async def test_real_mode_returns_requirements_without_changes():
    marketplace = build_marketplace(mock_mode=False)
    listing = await list_item(marketplace)

    response = await marketplace.handle_purchase_request(listing.id)

    assert response.requires_payment is True
    requirements = response.payment_requirements
    assert requirements.max_amount_required == "5000000"
    assert requirements.pay_to == SELLER_WALLET
    assert requirements.resource == f"/purchase/{listing.id}"
    assert requirements.max_timeout_seconds == 300
    assert (await marketplace.get_listing(listing.id)).status == ListingStatus.ACTIVE
    assert marketplace.items.is_locked("item-1")


@pytest.mark.asyncio
async def test_verified_purchase_uses_payer_as_buyer():
    payments = RecordingPaymentAdapter(payer="BuyerWallet")
    marketplace = build_marketplace(mock_mode=False, payment_adapter=payments)
    listing = await list_item(marketplace, price="2.5")

    result = await marketplace.verify_and_complete_purchase(listing.id, "proof")

    assert result.success is True
    assert result.message == "Purchase completed"
    assert payments.calls == [("proof", Decimal("2.5"), SELLER_WALLET)]
    assert marketplace.items.get_item("item-1")["owner"] == "BuyerWallet"
    transactions = await marketplace.get_transactions_by_user("BuyerWallet")
    assert transactions[0].buyer_wallet == "BuyerWallet"


@pytest.mark.asyncio
async def test_failed_verification_leaves_listing_active():
    marketplace = build_marketplace(mock_mode=False, payment_adapter=RejectingPaymentAdapter())
    listing = await list_item(marketplace)

    with pytest.raises(BazaarError) as exc:
        await marketplace.verify_and_complete_purchase(listing.id, "bad-proof", "buyer1", "wallet1")

    assert exc.value.code == ErrorCodes.PAYMENT_VERIFICATION_FAILED
    assert exc.value.http_status == 402
    assert "Transaction not found" in exc.value.message
    assert (await marketplace.get_listing(listing.id)).status == ListingStatus.ACTIVE
    assert marketplace.items.get_item("item-1")["owner"] == SELLER
    assert marketplace.items.is_locked("item-1")
    assert await marketplace.get_transactions_by_user("buyer1") == []


@pytest.mark.asyncio
async def test_buyer_cannot_be_seller(mock_marketplace):
    listing = await list_item(mock_marketplace)

    with pytest.raises(BazaarError) as exc:
        await mock_marketplace.handle_purchase_request(listing.id, SELLER)
    assert exc.value.code == ErrorCodes.BUYER_IS_SELLER
    assert (await mock_marketplace.get_listing(listing.id)).status == ListingStatus.ACTIVE


@pytest.mark.asyncio
async def test_concurrent_completions_settle_once():
    """Both completions pass the initial read; the commit lets only one through."""
    storage = CountingStorage()
    marketplace = build_marketplace(payment_adapter=YieldingPaymentAdapter(), storage=storage)
    listing = await list_item(marketplace)

    results = await asyncio.gather(
        marketplace.verify_and_complete_purchase(listing.id, "", "alice", "alice-wallet"),
        marketplace.verify_and_complete_purchase(listing.id, "", "bob", "bob-wallet"),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], BazaarError)
    assert failures[0].code == ErrorCodes.LISTING_NOT_ACTIVE
    assert storage.trades_started == 2

    owner = marketplace.items.get_item("item-1")["owner"]
    assert owner in ("alice", "bob")
    assert len(await marketplace.get_transactions_by_user(SELLER)) == 1


@pytest.mark.asyncio
async def test_mock_purchase_moves_mock_balances():
    currency = MockCurrencyAdapter(default_balance=Decimal("100"))
    marketplace = build_marketplace(currency_adapter=currency)
    listing = await list_item(marketplace)

    await marketplace.handle_purchase_request(listing.id, "buyer1", "wallet1")

    assert (await marketplace.get_balance("buyer1")).amount == Decimal("95")
    assert (await marketplace.get_balance(SELLER)).amount == Decimal("105")

    history = await marketplace.get_currency_transactions("buyer1")
    assert [(h.type, h.amount) for h in history] == [("listing_purchase", Decimal("5"))]
    history = await marketplace.get_currency_transactions(SELLER)
    assert [h.type for h in history] == ["listing_sale"]


@pytest.mark.asyncio
async def test_insufficient_mock_balance_rolls_back():
    currency = MockCurrencyAdapter(default_balance=Decimal("1"))
    marketplace = build_marketplace(currency_adapter=currency)
    listing = await list_item(marketplace)

    with pytest.raises(BazaarError) as exc:
        await marketplace.handle_purchase_request(listing.id, "buyer1", "wallet1")

    assert exc.value.code == ErrorCodes.INSUFFICIENT_BALANCE
    assert exc.value.http_status == 402
    assert (await marketplace.get_listing(listing.id)).status == ListingStatus.ACTIVE
    assert marketplace.items.get_item("item-1")["owner"] == SELLER
    assert marketplace.items.is_locked("item-1")
    assert (await marketplace.get_balance(SELLER)).amount == Decimal("1")


@pytest.mark.asyncio
async def test_balance_requires_currency_adapter(mock_marketplace):
    with pytest.raises(BazaarError) as exc:
        await mock_marketplace.get_balance("anyone")
    assert exc.value.code == ErrorCodes.CURRENCY_NOT_CONFIGURED
    assert exc.value.http_status == 404


@pytest.mark.asyncio
async def test_mock_mystery_box(mock_marketplace):
    response = await mock_marketplace.handle_mystery_box_request("common-box")

    assert response.requires_payment is False
    result = response.purchase_result
    assert result.tx_hash.startswith("mock-tx-")
    assert "mock mode" in result.message
    assert result.item["rarity"] == "common"

    granted = mock_marketplace.items.get_item(result.item["id"])
    assert granted["owner"] == "mock-buyer"
    purchases = await mock_marketplace.get_mystery_box_purchases_by_user("mock-buyer")
    assert [p.tier_id for p in purchases] == ["common-box"]


@pytest.mark.asyncio
async def test_real_mystery_box_pays_platform():
    payments = RecordingPaymentAdapter()
    marketplace = build_marketplace(mock_mode=False, payment_adapter=payments)
    await marketplace.add_mystery_box_tier(COMMON_TIER)

    response = await marketplace.handle_mystery_box_request("common-box")
    assert response.requires_payment is True
    assert response.payment_requirements.pay_to == PLATFORM_WALLET
    assert response.payment_requirements.max_amount_required == "100000"
    assert response.payment_requirements.resource == "/mystery-box/common-box"

    purchase = await marketplace.verify_and_complete_mystery_box(
        "common-box", "proof", "buyer1", "wallet1"
    )
    assert payments.calls == [("proof", Decimal("0.10"), PLATFORM_WALLET)]
    assert purchase.buyer_username == "buyer1"
    transactions = await marketplace.get_transactions_by_user("buyer1")
    assert transactions[0].mystery_box_tier_id == "common-box"


@pytest.mark.asyncio
async def test_mystery_box_errors(mock_marketplace):
    with pytest.raises(BazaarError) as exc:
        await mock_marketplace.handle_mystery_box_request("missing-tier")
    assert exc.value.code == ErrorCodes.TIER_NOT_FOUND
    assert exc.value.http_status == 404

    with pytest.raises(BazaarError) as exc:
        await mock_marketplace.verify_and_complete_mystery_box("common-box", "", "", "wallet")
    assert exc.value.code == ErrorCodes.MISSING_BUYER_INFO


@pytest.mark.asyncio
async def test_rejected_mystery_box_payment_grants_nothing():
    marketplace = build_marketplace(mock_mode=False, payment_adapter=RejectingPaymentAdapter())
    await marketplace.add_mystery_box_tier(COMMON_TIER)

    with pytest.raises(BazaarError) as exc:
        await marketplace.verify_and_complete_mystery_box("common-box", "bad", "buyer1", "wallet1")

    assert exc.value.code == ErrorCodes.PAYMENT_VERIFICATION_FAILED
    assert await marketplace.get_mystery_box_purchases_by_user("buyer1") == []
    assert marketplace.items.get_items_by_owner("buyer1") == []


@pytest.mark.asyncio
async def test_cancel_through_marketplace(mock_marketplace):
    listing = await list_item(mock_marketplace)
    await mock_marketplace.cancel_listing(listing.id, SELLER)

    page = await mock_marketplace.get_active_listings()
    assert page.items == []
    assert not mock_marketplace.items.is_locked("item-1")
