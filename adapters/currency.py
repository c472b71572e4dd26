"""Currency adapter interface.

Mock mode keeps per-user balances in memory; production reads balances from
the ledger and settles through x402 payments instead of direct debits.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Literal, Optional

from models import (
    BalanceChangeResult, CurrencyBalance, CurrencyTransaction,
    PurchaseInitiation, VerificationResult
)


class CurrencyAdapter(ABC):

    @abstractmethod
    async def get_balance(self, user_id: str) -> CurrencyBalance:
        """Current balance of a user."""

    @abstractmethod
    async def deduct(self, user_id: str, amount: Decimal) -> BalanceChangeResult:
        """Remove funds from a user.

        Raises:
            BazaarError: INVALID_AMOUNT for non-positive amounts
            InsufficientBalanceError: If the balance cannot cover the amount
        """

    @abstractmethod
    async def add(self, user_id: str, amount: Decimal) -> BalanceChangeResult:
        """Credit funds to a user."""

    @abstractmethod
    async def initiate_purchase(
        self,
        buyer_id: str,
        seller_id: str,
        amount: Decimal,
        resource: str,
        description: str,
        timeout_seconds: Optional[int] = None
    ) -> PurchaseInitiation:
        """Start a purchase: settle immediately (200) or ask for payment (402)."""

    @abstractmethod
    async def verify_purchase(
        self,
        payment_header: str,
        expected_amount: Decimal,
        expected_recipient: str
    ) -> VerificationResult:
        """Verify payment for a purchase started with initiate_purchase."""

    @abstractmethod
    async def get_transactions(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        sort_order: Literal['asc', 'desc'] = 'desc'
    ) -> List[CurrencyTransaction]:
        """Currency history for a user, one page at a time."""

    @abstractmethod
    async def record_transaction(self, transaction: CurrencyTransaction) -> None:
        """Append an entry to a user's currency history."""
