"""Tests for the HTTP API."""

import asyncio

import pytest
from decimal import Decimal
from fastapi.testclient import TestClient

from adapters import (
    MemoryStorageAdapter, MockCurrencyAdapter, MockPaymentAdapter, SimpleItemAdapter
)
from api import create_app
from marketplace import BazaarMarketplace
from models import MysteryBoxTier, VerificationResult

SELLER = "player1"
SELLER_WALLET = "SellerWallet1111111111111111111111111111111"

LISTING_BODY = {
    "itemId": "sword-1",
    "itemType": "weapon",
    "itemData": {"name": "Iron Sword"},
    "sellerUsername": SELLER,
    "sellerWallet": SELLER_WALLET,
    "priceUSDC": 5.0,
}


class RejectingPaymentAdapter(MockPaymentAdapter):
    async def verify_payment(self, payment_header, expected_amount, expected_recipient):
        return VerificationResult(success=False, error="Transaction not found")


def make_client(mock_mode=True, payment_adapter=None, currency_adapter=None):
    marketplace = BazaarMarketplace(
        storage_adapter=MemoryStorageAdapter(),
        item_adapter=SimpleItemAdapter([
            {"id": "sword-1", "name": "Iron Sword", "owner": SELLER},
            {"id": "shield-1", "name": "Wooden Shield", "owner": SELLER},
        ]),
        payment_adapter=payment_adapter or MockPaymentAdapter(),
        currency_adapter=currency_adapter,
        mock_mode=mock_mode,
        platform_wallet="PlatformWallet",
    )
    return TestClient(create_app(marketplace))


def add_tier(client):
    asyncio.run(client.app.state.marketplace.add_mystery_box_tier(MysteryBoxTier(
        id="starter",
        name="Starter Box",
        price_usdc=Decimal("0.10"),
        rarity_weights={"common": 100},
    )))


@pytest.fixture
def client():
    return make_client()


def create_listing(client, **overrides):
    response = client.post("/listings", json=dict(LISTING_BODY, **overrides))
    assert response.status_code == 201, response.text
    return response.json()


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["mode"] == "mock"


def test_create_and_get_listing(client):
    listing = create_listing(client)

    assert listing["status"] == "active"
    assert listing["priceUSDC"] == 5.0
    assert listing["sellerUsername"] == SELLER

    response = client.get(f"/listings/{listing['id']}")
    assert response.status_code == 200
    assert response.json()["id"] == listing["id"]

    response = client.get(f"/listings/user/{SELLER}")
    assert [l["id"] for l in response.json()] == [listing["id"]]


def test_create_listing_for_foreign_item(client):
    response = client.post("/listings", json=dict(LISTING_BODY, sellerUsername="thief"))
    assert response.status_code == 403
    assert response.json()["error"] == "ITEM_NOT_OWNED"


def test_unknown_listing(client):
    response = client.get("/listings/listing-missing")
    assert response.status_code == 404
    assert response.json() == {
        "error": "LISTING_NOT_FOUND",
        "message": "Listing listing-missing not found",
    }


def test_listing_pages(client):
    create_listing(client, itemId="sword-1", priceUSDC=3)
    create_listing(client, itemId="shield-1", priceUSDC=1)

    response = client.get("/listings", params={"sortBy": "price_low", "limit": 1})
    assert response.status_code == 200
    first = response.json()
    assert [l["itemId"] for l in first["items"]] == ["shield-1"]
    assert first["totalCount"] == 2

    response = client.get(
        "/listings", params={"sortBy": "price_low", "limit": 1, "cursor": first["nextCursor"]}
    )
    second = response.json()
    assert [l["itemId"] for l in second["items"]] == ["sword-1"]
    assert "nextCursor" not in second

    response = client.get("/listings", params={"cursor": "garbage"})
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_CURSOR"


def test_cancel_listing(client):
    listing = create_listing(client)

    response = client.request("DELETE", f"/listings/{listing['id']}", json={})
    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_USERNAME"

    response = client.request("DELETE", f"/listings/{listing['id']}", json={"username": "other"})
    assert response.status_code == 403
    assert response.json()["error"] == "NOT_THE_SELLER"

    response = client.request("DELETE", f"/listings/{listing['id']}", json={"username": SELLER})
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert client.get("/listings").json()["items"] == []


def test_mock_purchase(client):
    listing = create_listing(client)

    response = client.get(f"/purchase/{listing['id']}")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["txHash"].startswith("mock-tx-")
    assert body["item"] == {"name": "Iron Sword"}
    assert "mock mode" in body["message"]

    response = client.get(f"/purchase/{listing['id']}")
    assert response.status_code == 400
    assert response.json()["error"] == "LISTING_NOT_ACTIVE"

    history = client.get("/transactions/user/mock-buyer").json()
    assert [t["listingId"] for t in history] == [listing["id"]]


def test_payment_required():
    client = make_client(mock_mode=False)
    listing = create_listing(client)

    response = client.get(f"/purchase/{listing['id']}")
    assert response.status_code == 402
    body = response.json()
    assert body["maxAmountRequired"] == "5000000"
    assert body["payTo"] == SELLER_WALLET
    assert body["resource"] == f"/purchase/{listing['id']}"
    assert body["scheme"] == "exact"


def test_rejected_payment_proof():
    client = make_client(mock_mode=False, payment_adapter=RejectingPaymentAdapter())
    listing = create_listing(client)

    response = client.get(f"/purchase/{listing['id']}", headers={"X-Payment": "bogus"})
    assert response.status_code == 402
    assert response.json()["error"] == "PAYMENT_VERIFICATION_FAILED"
    assert client.get(f"/listings/{listing['id']}").json()["status"] == "active"


def test_purchase_with_payment_proof():
    client = make_client(mock_mode=False)
    listing = create_listing(client)

    response = client.get(
        f"/purchase/{listing['id']}",
        params={"buyerUsername": "buyer1", "buyerWallet": "BuyerWallet"},
        headers={"X-Payment": "proof"},
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Purchase completed"
    assert client.get(f"/listings/{listing['id']}").json()["status"] == "sold"


def test_mystery_box_routes(client):
    add_tier(client)

    tiers = client.get("/mystery-box/tiers").json()
    assert [t["id"] for t in tiers] == ["starter"]
    assert tiers[0]["priceUSDC"] == 0.1

    response = client.get("/mystery-box/starter")
    assert response.status_code == 200
    assert response.json()["item"]["rarity"] == "common"

    response = client.post("/mystery-box/starter", json={"buyerUsername": "buyer1"})
    assert response.status_code == 400
    assert response.json()["error"] == "MISSING_BUYER_INFO"

    response = client.post(
        "/mystery-box/starter", json={"buyerUsername": "buyer1", "buyerWallet": "wallet1"}
    )
    assert response.status_code == 200
    assert response.json()["success"] is True

    response = client.get("/mystery-box/unknown")
    assert response.status_code == 404
    assert response.json()["error"] == "TIER_NOT_FOUND"


def test_mystery_box_payment_required():
    client = make_client(mock_mode=False)
    add_tier(client)

    response = client.get("/mystery-box/starter")
    assert response.status_code == 402
    assert response.json()["payTo"] == "PlatformWallet"
    assert response.json()["maxAmountRequired"] == "100000"


def test_balance_routes():
    client = make_client(currency_adapter=MockCurrencyAdapter(default_balance=Decimal("50")))
    listing = create_listing(client)
    client.get(f"/purchase/{listing['id']}", params={"buyerUsername": "buyer1"})

    response = client.get("/balance/buyer1")
    assert response.status_code == 200
    assert response.json()["amount"] == 45.0
    assert response.json()["currency"] == "MOCK_USDC"

    history = client.get("/balance/buyer1/transactions").json()
    assert [h["type"] for h in history] == ["listing_purchase"]


def test_balance_without_currency(client):
    response = client.get("/balance/buyer1")
    assert response.status_code == 404
    assert response.json()["error"] == "CURRENCY_NOT_CONFIGURED"


def test_unexpected_errors_render_as_500(client, monkeypatch):
    marketplace = client.app.state.marketplace

    async def broken(options=None):
        raise RuntimeError("boom")

    monkeypatch.setattr(marketplace, "get_active_listings", broken)
    safe_client = TestClient(client.app, raise_server_exceptions=False)

    response = safe_client.get("/listings")
    assert response.status_code == 500
    assert response.json()["error"] == "INTERNAL_SERVER_ERROR"


def test_request_validation_errors_use_error_body(client):
    response = client.get("/listings", params={"sortBy": "cheapest"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "VALIDATION_ERROR"
    assert "sortBy" in body["message"]
    assert "detail" not in body

    response = client.post("/listings", json=[1, 2])
    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"
