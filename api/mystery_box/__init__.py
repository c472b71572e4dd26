"""Mystery box API endpoints."""

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.responses import JSONResponse
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from errors import BazaarError, ErrorCodes
from marketplace import BazaarMarketplace
from protocol import PAYMENT_HEADER
from ..dependencies import get_marketplace

router = APIRouter(
    prefix="/mystery-box",
    tags=["Mystery Box"]
)


class BuyerInfo(BaseModel):
    """Request model identifying the buyer of a mystery box."""
    model_config = ConfigDict(populate_by_name=True)

    buyer_username: Optional[str] = Field(None, alias='buyerUsername')
    buyer_wallet: Optional[str] = Field(None, alias='buyerWallet')


@router.get("/tiers")
async def list_tiers(marketplace: BazaarMarketplace = Depends(get_marketplace)):
    """Get all mystery box tiers."""
    tiers = await marketplace.get_mystery_box_tiers()
    return [tier.to_json_dict() for tier in tiers]


@router.get("/{tier_id}")
async def request_mystery_box(
    tier_id: str,
    buyer_username: Optional[str] = Query(None, alias='buyerUsername'),
    buyer_wallet: Optional[str] = Query(None, alias='buyerWallet'),
    x_payment: Optional[str] = Header(None, alias=PAYMENT_HEADER),
    marketplace: BazaarMarketplace = Depends(get_marketplace)
):
    """Start a mystery box purchase (402 in real mode, 200 in mock mode)."""
    if x_payment:
        purchase = await marketplace.verify_and_complete_mystery_box(
            tier_id, x_payment, buyer_username, buyer_wallet
        )
        return _purchase_body(purchase)

    response = await marketplace.handle_mystery_box_request(tier_id, buyer_username, buyer_wallet)
    if response.requires_payment:
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content=response.payment_requirements.to_json_dict()
        )
    return response.purchase_result.to_json_dict()


@router.post("/{tier_id}")
async def complete_mystery_box(
    tier_id: str,
    info: Optional[BuyerInfo] = None,
    x_payment: Optional[str] = Header(None, alias=PAYMENT_HEADER),
    marketplace: BazaarMarketplace = Depends(get_marketplace)
):
    """Complete a mystery box purchase with payment verification."""
    if info is None or not info.buyer_username or not info.buyer_wallet:
        raise BazaarError(
            ErrorCodes.MISSING_BUYER_INFO, "buyerUsername and buyerWallet are required"
        )
    purchase = await marketplace.verify_and_complete_mystery_box(
        tier_id, x_payment or '', info.buyer_username, info.buyer_wallet
    )
    return _purchase_body(purchase)


def _purchase_body(purchase):
    return {
        "success": True,
        "message": "Mystery box purchased",
        "item": purchase.item_generated,
        "txHash": purchase.tx_hash,
    }
