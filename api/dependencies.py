"""Shared request dependencies for the API routers."""
from fastapi import Request

from marketplace import BazaarMarketplace


def get_marketplace(request: Request) -> BazaarMarketplace:
    """Marketplace instance the app was created with."""
    return request.app.state.marketplace
