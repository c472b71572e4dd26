"""Tests for the currency adapters."""

from unittest.mock import MagicMock

import pytest
from decimal import Decimal

from adapters import MockCurrencyAdapter, X402CurrencyAdapter, X402PaymentAdapter
from errors import BazaarError, ErrorCodes, InsufficientBalanceError
from models import CurrencyTransaction
from rpc import NodeConnectionError, SolanaRPC

MINT = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"


def history_entry(user_id, timestamp, amount="1"):
    return CurrencyTransaction(
        id=f"ctx-{timestamp}",
        user_id=user_id,
        type="listing_purchase",
        amount=Decimal(amount),
        tx_id=f"MOCK_{timestamp}",
        timestamp=timestamp,
    )


@pytest.mark.asyncio
async def test_new_users_start_with_default_balance():
    currency = MockCurrencyAdapter(default_balance=Decimal("250"))
    balance = await currency.get_balance("alice")
    assert balance.amount == Decimal("250")
    assert balance.currency == "MOCK_USDC"


@pytest.mark.asyncio
async def test_deduct_and_add():
    currency = MockCurrencyAdapter(tx_id_prefix="TEST")

    result = await currency.deduct("alice", Decimal("10.5"))
    assert result.success is True
    assert result.new_balance == Decimal("989.5")
    assert result.tx_id.startswith("TEST_")

    result = await currency.add("alice", Decimal("0.5"))
    assert result.new_balance == Decimal("990")


@pytest.mark.asyncio
async def test_insufficient_balance():
    currency = MockCurrencyAdapter(default_balance=Decimal("5"))

    with pytest.raises(InsufficientBalanceError) as exc:
        await currency.deduct("alice", Decimal("6"))

    assert exc.value.code == ErrorCodes.INSUFFICIENT_BALANCE
    assert exc.value.http_status == 402
    assert exc.value.available == Decimal("5")
    assert exc.value.to_dict()["details"] == {"available": "5", "requested": "6"}
    assert (await currency.get_balance("alice")).amount == Decimal("5")


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1")])
async def test_non_positive_amounts(amount):
    currency = MockCurrencyAdapter()
    for operation in (currency.deduct, currency.add):
        with pytest.raises(BazaarError) as exc:
            await operation("alice", amount)
        assert exc.value.code == ErrorCodes.INVALID_AMOUNT


@pytest.mark.asyncio
async def test_mock_purchase_settles_immediately():
    currency = MockCurrencyAdapter()
    initiation = await currency.initiate_purchase("alice", "bob", Decimal("3"), "/r", "d")

    assert initiation.status == 200
    assert initiation.payment_required is False
    assert (await currency.get_balance("alice")).amount == Decimal("997")
    assert (await currency.verify_purchase("", Decimal("3"), "bob")).success is True


@pytest.mark.asyncio
async def test_history_pagination_and_order():
    currency = MockCurrencyAdapter()
    for timestamp in (3, 1, 2, 5, 4):
        await currency.record_transaction(history_entry("alice", timestamp))

    newest = await currency.get_transactions("alice", page=1, limit=2)
    assert [t.timestamp for t in newest] == [5, 4]
    second = await currency.get_transactions("alice", page=2, limit=2)
    assert [t.timestamp for t in second] == [3, 2]
    oldest = await currency.get_transactions("alice", sort_order="asc")
    assert [t.timestamp for t in oldest] == [1, 2, 3, 4, 5]
    assert await currency.get_transactions("bob") == []


@pytest.fixture
def rpc():
    client = MagicMock(spec=SolanaRPC)
    client.get_token_balance.return_value = Decimal("12.5")
    return client


@pytest.fixture
def x402_currency(rpc):
    payments = X402PaymentAdapter(
        network="solana-devnet",
        rpc_url="http://localhost:8899",
        usdc_mint=MINT,
        rpc=rpc,
    )
    return X402CurrencyAdapter(payments, balance_cache_duration=30)


@pytest.mark.asyncio
async def test_onchain_balance_is_cached(x402_currency, rpc):
    first = await x402_currency.get_balance("Wallet1")
    second = await x402_currency.get_balance("Wallet1")

    assert first.amount == Decimal("12.5")
    assert first.currency == "USDC"
    assert second.amount == Decimal("12.5")
    rpc.get_token_balance.assert_called_once_with("Wallet1", MINT)

    x402_currency.clear_balance_cache()
    await x402_currency.get_balance("Wallet1")
    assert rpc.get_token_balance.call_count == 2


@pytest.mark.asyncio
async def test_onchain_balance_falls_back_on_node_errors(x402_currency, rpc):
    rpc.get_token_balance.side_effect = NodeConnectionError("down")
    balance = await x402_currency.get_balance("Wallet1")
    assert balance.amount == Decimal("0")


@pytest.mark.asyncio
async def test_onchain_funds_cannot_be_moved(x402_currency):
    for operation in (x402_currency.deduct, x402_currency.add):
        with pytest.raises(BazaarError) as exc:
            await operation("Wallet1", Decimal("1"))
        assert exc.value.code == ErrorCodes.CURRENCY_OPERATION_NOT_SUPPORTED


@pytest.mark.asyncio
async def test_onchain_purchase_requires_payment(x402_currency):
    initiation = await x402_currency.initiate_purchase(
        "Wallet1", "SellerWallet", Decimal("2"), "/purchase/x", "Purchase weapon listing"
    )

    assert initiation.status == 402
    assert initiation.payment_required is True
    accepts = initiation.requirements["accepts"]
    assert initiation.requirements["x402Version"] == 1
    assert accepts[0]["maxAmountRequired"] == "2000000"
    assert accepts[0]["payTo"] == "SellerWallet"
    assert accepts[0]["asset"] == MINT
