"""Mock currency adapter with in-memory balances."""
import logging
import random
import string
from decimal import Decimal
from typing import Dict, List, Optional

from errors import BazaarError, ErrorCodes, InsufficientBalanceError
from models import (
    BalanceChangeResult, CurrencyBalance, CurrencyTransaction,
    PurchaseInitiation, VerificationResult, now_ms
)
from .currency import CurrencyAdapter

logger = logging.getLogger(__name__)


class MockCurrencyAdapter(CurrencyAdapter):
    """Currency adapter keeping balances in memory.

    New users start with `default_balance`.
    """

    def __init__(self, default_balance: Decimal = Decimal('1000'), tx_id_prefix: str = 'MOCK'):
        self.default_balance = Decimal(default_balance)
        self.tx_id_prefix = tx_id_prefix
        self._balances: Dict[str, Decimal] = {}
        self._transactions: Dict[str, List[CurrencyTransaction]] = {}

    def _generate_tx_id(self) -> str:
        suffix = ''.join(random.choices(string.ascii_uppercase + string.digits, k=6))
        return f"{self.tx_id_prefix}_{now_ms()}_{suffix}"

    def _current(self, user_id: str) -> Decimal:
        return self._balances.setdefault(user_id, self.default_balance)

    @staticmethod
    def _check_amount(amount: Decimal) -> Decimal:
        amount = Decimal(amount)
        if amount <= 0:
            raise BazaarError(ErrorCodes.INVALID_AMOUNT, "Amount must be positive")
        return amount

    async def get_balance(self, user_id: str) -> CurrencyBalance:
        return CurrencyBalance(
            amount=self._current(user_id), currency='MOCK_USDC', last_updated=now_ms()
        )

    async def deduct(self, user_id: str, amount: Decimal) -> BalanceChangeResult:
        amount = self._check_amount(amount)
        current = self._current(user_id)
        if current < amount:
            raise InsufficientBalanceError(user_id, current, amount)
        self._balances[user_id] = current - amount
        return BalanceChangeResult(
            success=True, new_balance=self._balances[user_id],
            tx_id=self._generate_tx_id(), network_id='mock'
        )

    async def add(self, user_id: str, amount: Decimal) -> BalanceChangeResult:
        amount = self._check_amount(amount)
        self._balances[user_id] = self._current(user_id) + amount
        return BalanceChangeResult(
            success=True, new_balance=self._balances[user_id],
            tx_id=self._generate_tx_id(), network_id='mock'
        )

    async def initiate_purchase(
        self,
        buyer_id: str,
        seller_id: str,
        amount: Decimal,
        resource: str,
        description: str,
        timeout_seconds: Optional[int] = None
    ) -> PurchaseInitiation:
        # Mock purchases settle immediately
        result = await self.deduct(buyer_id, amount)
        return PurchaseInitiation(status=200, payment_required=False, tx_id=result.tx_id)

    async def verify_purchase(
        self,
        payment_header: str,
        expected_amount: Decimal,
        expected_recipient: str
    ) -> VerificationResult:
        return VerificationResult(success=True, tx_hash=self._generate_tx_id(), network_id='mock')

    async def get_transactions(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        sort_order: str = 'desc'
    ) -> List[CurrencyTransaction]:
        history = sorted(
            self._transactions.get(user_id, []),
            key=lambda t: t.timestamp,
            reverse=(sort_order != 'asc')
        )
        page = max(page, 1)
        start = (page - 1) * limit
        return history[start:start + limit]

    async def record_transaction(self, transaction: CurrencyTransaction) -> None:
        self._transactions.setdefault(transaction.user_id, []).append(transaction)

    async def clear(self) -> None:
        self._balances.clear()
        self._transactions.clear()
