"""Listings API endpoints."""

from fastapi import APIRouter, Body, Depends, Query, status
from typing import Any, Dict, Optional
from pydantic import BaseModel

from errors import BazaarError, ErrorCodes
from marketplace import BazaarMarketplace
from models import PaginationOptions, SortBy
from ..dependencies import get_marketplace

router = APIRouter(
    prefix="/listings",
    tags=["Listings"]
)


class CancelListingRequest(BaseModel):
    """Request model for cancelling a listing."""
    username: Optional[str] = None


@router.get("")
async def list_listings(
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    sort_by: SortBy = Query('newest', alias='sortBy'),
    marketplace: BazaarMarketplace = Depends(get_marketplace)
):
    """Get one page of active listings."""
    result = await marketplace.get_active_listings(
        PaginationOptions(cursor=cursor, limit=limit, sort_by=sort_by)
    )
    return result.to_json_dict()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_listing(
    params: Dict[str, Any] = Body(...),
    marketplace: BazaarMarketplace = Depends(get_marketplace)
):
    """Create a listing and lock its item."""
    listing = await marketplace.create_listing(params)
    return listing.to_json_dict()


@router.delete("/{listing_id}")
async def cancel_listing(
    listing_id: str,
    body: Optional[CancelListingRequest] = None,
    marketplace: BazaarMarketplace = Depends(get_marketplace)
):
    """Cancel a listing; only the seller may do this."""
    if body is None or not body.username:
        raise BazaarError(ErrorCodes.MISSING_USERNAME, "Username is required")
    await marketplace.cancel_listing(listing_id, body.username)
    return {"success": True, "message": "Listing cancelled"}


@router.get("/user/{username}")
async def get_user_listings(
    username: str,
    marketplace: BazaarMarketplace = Depends(get_marketplace)
):
    """Get all listings of a seller."""
    listings = await marketplace.get_listings_by_user(username)
    return [listing.to_json_dict() for listing in listings]


@router.get("/{listing_id}")
async def get_listing(
    listing_id: str,
    marketplace: BazaarMarketplace = Depends(get_marketplace)
):
    """Get a specific listing."""
    listing = await marketplace.get_listing(listing_id)
    if listing is None:
        raise BazaarError(
            ErrorCodes.LISTING_NOT_FOUND, f"Listing {listing_id} not found", 404
        )
    return listing.to_json_dict()
