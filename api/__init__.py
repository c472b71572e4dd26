"""REST API module for the marketplace.

This module provides HTTP endpoints for:
- Creating, browsing and cancelling listings
- Buying listings with x402 payments (HTTP 402 Payment Required)
- Buying mystery boxes
- Reading transaction history and currency balances

The app is built around an injected BazaarMarketplace; see create_app.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from errors import BazaarError, ErrorCodes
from marketplace import BazaarMarketplace

logger = logging.getLogger(__name__)

__all__ = ['create_app']

API_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    mode = "mock" if app.state.marketplace.mock_mode else "x402"
    logger.info(f"Initializing API ({mode} payments)...")
    yield
    logger.info("Shutting down API...")


def create_app(marketplace: BazaarMarketplace) -> FastAPI:
    """Create the FastAPI application serving a marketplace.

    Args:
        marketplace: Fully wired marketplace instance

    Returns:
        FastAPI app with all routers and error handlers registered
    """
    app = FastAPI(
        title="Bazaar API",
        description="Payment-gated marketplace using x402 payments",
        version=API_VERSION,
        lifespan=lifespan
    )
    app.state.marketplace = marketplace

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Payment-Response"],
    )

    @app.exception_handler(BazaarError)
    async def bazaar_error_handler(request: Request, exc: BazaarError):
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": ErrorCodes.VALIDATION_ERROR,
                "message": f"Invalid request: {problems}",
            }
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unexpected error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": ErrorCodes.INTERNAL_SERVER_ERROR,
                "message": "An unexpected error occurred",
            }
        )

    # Root endpoint - register this BEFORE other routers
    @app.get("/")
    async def root():
        """Service information."""
        return {
            "name": "Bazaar API",
            "version": API_VERSION,
            "mode": "mock" if marketplace.mock_mode else "x402",
            "endpoints": {
                "listings": "/listings",
                "purchase": "/purchase/{listingId}",
                "mysteryBoxes": "/mystery-box/tiers",
                "transactions": "/transactions/user/{username}",
                "balance": "/balance/{username}",
            },
        }

    from .listings import router as listings_router
    from .purchase import router as purchase_router
    from .mystery_box import router as mystery_box_router
    from .balance import router as balance_router

    app.include_router(listings_router)
    app.include_router(purchase_router)
    app.include_router(mystery_box_router)
    app.include_router(balance_router)

    return app
