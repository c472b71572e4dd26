"""Purchase API endpoints.

Without an X-Payment header a purchase answers 402 with the payment
requirements (or settles at once in mock mode). With the header the payment
proof is verified and the purchase completed.
"""

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.responses import JSONResponse
from typing import Optional

from marketplace import BazaarMarketplace
from protocol import PAYMENT_HEADER
from ..dependencies import get_marketplace

router = APIRouter(
    prefix="/purchase",
    tags=["Purchase"]
)


@router.get("/{listing_id}")
async def purchase_listing(
    listing_id: str,
    buyer_username: Optional[str] = Query(None, alias='buyerUsername'),
    buyer_wallet: Optional[str] = Query(None, alias='buyerWallet'),
    x_payment: Optional[str] = Header(None, alias=PAYMENT_HEADER),
    marketplace: BazaarMarketplace = Depends(get_marketplace)
):
    """Buy a listing."""
    if x_payment:
        result = await marketplace.verify_and_complete_purchase(
            listing_id, x_payment, buyer_username, buyer_wallet
        )
        return result.to_json_dict()

    response = await marketplace.handle_purchase_request(listing_id, buyer_username, buyer_wallet)
    if response.requires_payment:
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content=response.payment_requirements.to_json_dict()
        )
    return response.purchase_result.to_json_dict()
