"""Structured errors for marketplace operations.

Every failure raised by the marketplace carries a machine-readable code, a
human-readable message and the HTTP status the API layer should answer with.
"""
from decimal import Decimal
from typing import Any, Dict, Optional

__all__ = ['BazaarError', 'InsufficientBalanceError', 'ErrorCodes']


class ErrorCodes:
    """Known error codes."""
    LISTING_NOT_FOUND = 'LISTING_NOT_FOUND'
    LISTING_NOT_ACTIVE = 'LISTING_NOT_ACTIVE'
    LISTING_EXPIRED = 'LISTING_EXPIRED'
    LISTING_CREATION_FAILED = 'LISTING_CREATION_FAILED'
    NOT_THE_SELLER = 'NOT_THE_SELLER'
    TIER_NOT_FOUND = 'TIER_NOT_FOUND'
    ITEM_NOT_FOUND = 'ITEM_NOT_FOUND'
    ITEM_NOT_OWNED = 'ITEM_NOT_OWNED'
    ITEM_LOCK_FAILED = 'ITEM_LOCK_FAILED'
    ITEM_GENERATION_FAILED = 'ITEM_GENERATION_FAILED'
    BUYER_IS_SELLER = 'BUYER_IS_SELLER'
    MISSING_USERNAME = 'MISSING_USERNAME'
    MISSING_BUYER_INFO = 'MISSING_BUYER_INFO'
    INVALID_LISTING_PARAMS = 'INVALID_LISTING_PARAMS'
    INVALID_PRICE = 'INVALID_PRICE'
    INVALID_TIER = 'INVALID_TIER'
    INVALID_WEIGHTS = 'INVALID_WEIGHTS'
    INVALID_CURSOR = 'INVALID_CURSOR'
    INVALID_AMOUNT = 'INVALID_AMOUNT'
    VALIDATION_ERROR = 'VALIDATION_ERROR'
    INSUFFICIENT_BALANCE = 'INSUFFICIENT_BALANCE'
    PAYMENT_VERIFICATION_FAILED = 'PAYMENT_VERIFICATION_FAILED'
    ATOMIC_TRANSACTION_FAILED = 'ATOMIC_TRANSACTION_FAILED'
    STORAGE_ERROR = 'STORAGE_ERROR'
    CURRENCY_OPERATION_NOT_SUPPORTED = 'CURRENCY_OPERATION_NOT_SUPPORTED'
    CURRENCY_NOT_CONFIGURED = 'CURRENCY_NOT_CONFIGURED'
    MISSING_ADAPTER = 'MISSING_ADAPTER'
    INTERNAL_SERVER_ERROR = 'INTERNAL_SERVER_ERROR'


class BazaarError(Exception):
    """Base exception for marketplace operations.

    Args:
        code: Machine-readable error code (see ErrorCodes)
        message: Human-readable description
        http_status: Status code the API answers with
        details: Optional extra context for logging and clients
    """
    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Error body as returned by the HTTP API."""
        body = {'error': self.code, 'message': self.message}
        if self.details:
            body['details'] = self.details
        return body

    def __repr__(self) -> str:
        return f"BazaarError({self.code!r}, {self.message!r}, {self.http_status})"


class InsufficientBalanceError(BazaarError):
    """Raised when a currency balance cannot cover a deduction."""
    def __init__(self, username: str, available: Decimal, requested: Decimal):
        self.username = username
        self.available = available
        self.requested = requested
        super().__init__(
            ErrorCodes.INSUFFICIENT_BALANCE,
            f"Insufficient balance for {username}: "
            f"available {available}, requested {requested}",
            402,
            {'available': str(available), 'requested': str(requested)}
        )
