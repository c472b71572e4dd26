"""Balance and transaction history endpoints."""

from fastapi import APIRouter, Depends, Query

from marketplace import BazaarMarketplace
from ..dependencies import get_marketplace

router = APIRouter(tags=["Balance"])


@router.get("/transactions/user/{username}")
async def get_user_transactions(
    username: str,
    marketplace: BazaarMarketplace = Depends(get_marketplace)
):
    """Get completed purchases where the user is buyer or seller."""
    transactions = await marketplace.get_transactions_by_user(username)
    return [tx.to_json_dict() for tx in transactions]


@router.get("/balance/{username}")
async def get_balance(
    username: str,
    marketplace: BazaarMarketplace = Depends(get_marketplace)
):
    """Get a user's currency balance."""
    balance = await marketplace.get_balance(username)
    return balance.to_json_dict()


@router.get("/balance/{username}/transactions")
async def get_balance_transactions(
    username: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_order: str = Query('desc', alias='sortOrder', pattern='^(asc|desc)$'),
    marketplace: BazaarMarketplace = Depends(get_marketplace)
):
    """Get a user's currency history."""
    history = await marketplace.get_currency_transactions(username, page, limit, sort_order)
    return [entry.to_json_dict() for entry in history]
