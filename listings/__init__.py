"""Listings module for managing marketplace listings.

This module provides functionality for:
- Validating and creating listings
- Locking listed items so they cannot be used elsewhere
- Cancelling listings and releasing their items
- Reading listings through the storage adapter
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from errors import BazaarError, ErrorCodes
from models import (
    CreateListingParams, Listing, ListingStatus, PaginatedResult,
    PaginationOptions, generate_id, now_ms
)
from protocol import is_valid_usdc_amount

logger = logging.getLogger(__name__)

__all__ = ['ListingManager', 'validate_listing_params', 'validate_listing_active', 'MAX_PRICE_USDC']

MAX_PRICE_USDC = Decimal('1000000')


def validate_listing_params(params: CreateListingParams) -> None:
    """Validate listing creation parameters.

    Raises:
        BazaarError: INVALID_LISTING_PARAMS or INVALID_PRICE
    """
    required = {
        'Item ID': params.item_id,
        'Item type': params.item_type,
        'Seller username': params.seller_username,
        'Seller wallet': params.seller_wallet,
    }
    for label, value in required.items():
        if not value or not value.strip():
            raise BazaarError(
                ErrorCodes.INVALID_LISTING_PARAMS,
                f"{label} is required and must be a non-empty string"
            )

    if not is_valid_usdc_amount(params.price_usdc, Decimal('0'), MAX_PRICE_USDC):
        raise BazaarError(
            ErrorCodes.INVALID_PRICE,
            f"Price must be a valid USDC amount (0 - {MAX_PRICE_USDC:,})"
        )

    if params.expires_in_seconds is not None and params.expires_in_seconds <= 0:
        raise BazaarError(
            ErrorCodes.INVALID_LISTING_PARAMS, "Expiration time must be a positive integer"
        )


def validate_listing_active(listing: Listing, at: Optional[int] = None) -> None:
    """Ensure a listing can still be bought.

    Raises:
        BazaarError: LISTING_NOT_ACTIVE or LISTING_EXPIRED
    """
    if listing.status != ListingStatus.ACTIVE:
        raise BazaarError(
            ErrorCodes.LISTING_NOT_ACTIVE, f"Listing is {listing.status.value}, not active"
        )
    if listing.is_expired(at):
        raise BazaarError(ErrorCodes.LISTING_EXPIRED, "Listing has expired")


class ListingManager:
    """Manager class for handling listing operations."""

    def __init__(self, storage_adapter, item_adapter):
        """Initialize the listing manager.

        Args:
            storage_adapter: StorageAdapter persisting listings
            item_adapter: ItemAdapter owning items and their locks
        """
        self.storage = storage_adapter
        self.items = item_adapter

    async def create_listing(self, params: Union[CreateListingParams, Dict[str, Any]]) -> Listing:
        """Create a new listing.

        The item is locked before the listing is stored; if storing fails the
        lock is released again.

        Args:
            params: Listing parameters (model or camelCase/snake_case dict)

        Returns:
            The created listing

        Raises:
            BazaarError: INVALID_LISTING_PARAMS, INVALID_PRICE, ITEM_NOT_OWNED,
                ITEM_NOT_FOUND, ITEM_LOCK_FAILED or LISTING_CREATION_FAILED
        """
        if not isinstance(params, CreateListingParams):
            try:
                params = CreateListingParams.model_validate(params)
            except (ValidationError, InvalidOperation) as e:
                raise BazaarError(ErrorCodes.INVALID_LISTING_PARAMS, f"Invalid listing parameters: {e}")

        validate_listing_params(params)

        if not await self.items.validate_item_ownership(params.item_id, params.seller_username):
            raise BazaarError(
                ErrorCodes.ITEM_NOT_OWNED,
                f"User {params.seller_username} does not own item {params.item_id}",
                403
            )
        if not await self.items.validate_item_exists(params.item_id):
            raise BazaarError(
                ErrorCodes.ITEM_NOT_FOUND, f"Item {params.item_id} not found", 404
            )

        try:
            await self.items.lock_item(params.item_id, params.seller_username)
        except BazaarError as e:
            if e.code == ErrorCodes.ITEM_LOCK_FAILED:
                raise
            raise BazaarError(
                ErrorCodes.ITEM_LOCK_FAILED, f"Failed to lock item: {e.message}", 409
            ) from e
        except Exception as e:
            raise BazaarError(
                ErrorCodes.ITEM_LOCK_FAILED, f"Failed to lock item: {e}", 409
            ) from e

        created_at = now_ms()
        listing = Listing(
            id=generate_id('listing'),
            item_id=params.item_id,
            item_type=params.item_type,
            item_data=params.item_data,
            seller_username=params.seller_username,
            seller_wallet=params.seller_wallet,
            price_usdc=Decimal(params.price_usdc),
            status=ListingStatus.ACTIVE,
            created_at=created_at,
            expires_at=(created_at + params.expires_in_seconds * 1000
                        if params.expires_in_seconds else None),
        )

        try:
            await self.storage.create_listing(listing)
        except Exception as e:
            logger.error(f"Failed to store listing for item {params.item_id}: {e}")
            try:
                await self.items.unlock_item(params.item_id, params.seller_username)
            except Exception as unlock_error:
                logger.warning(f"Failed to unlock item {params.item_id} after failed create: {unlock_error}")
            raise BazaarError(
                ErrorCodes.LISTING_CREATION_FAILED, f"Failed to create listing: {e}", 500
            ) from e

        logger.info(
            f"Created listing {listing.id} for {listing.item_id} "
            f"by {listing.seller_username} at {listing.price_usdc} USDC"
        )
        return listing

    async def cancel_listing(self, listing_id: str, username: str) -> None:
        """Cancel an active listing and release its item.

        Args:
            listing_id: Listing to cancel
            username: User requesting the cancellation; must be the seller

        Raises:
            BazaarError: LISTING_NOT_FOUND, NOT_THE_SELLER or LISTING_NOT_ACTIVE
        """
        listing = await self.storage.get_listing(listing_id)
        if listing is None:
            raise BazaarError(
                ErrorCodes.LISTING_NOT_FOUND, f"Listing {listing_id} not found", 404
            )
        if listing.seller_username != username:
            raise BazaarError(
                ErrorCodes.NOT_THE_SELLER, "Only the seller can cancel this listing", 403
            )
        if listing.status != ListingStatus.ACTIVE:
            raise BazaarError(
                ErrorCodes.LISTING_NOT_ACTIVE,
                f"Cannot cancel listing with status: {listing.status.value}"
            )

        await self.storage.update_listing_status(listing_id, ListingStatus.CANCELLED)

        try:
            await self.items.unlock_item(listing.item_id, username)
        except Exception as e:
            # The listing is already cancelled; a stuck lock is logged for follow-up
            logger.warning(f"Failed to unlock item {listing.item_id} after cancelling {listing_id}: {e}")

        logger.info(f"Cancelled listing {listing_id}")

    async def get_listing(self, listing_id: str) -> Optional[Listing]:
        return await self.storage.get_listing(listing_id)

    async def get_active_listings(self, options: Optional[PaginationOptions] = None) -> PaginatedResult:
        return await self.storage.get_active_listings(options or PaginationOptions())

    async def get_listings_by_user(self, username: str) -> List[Listing]:
        return await self.storage.get_listings_by_user(username)
