"""Production currency adapter.

Balances are read from the ledger and cached briefly. Funds never move through
this adapter: purchases answer with x402 payment requirements and are settled by
the buyer's own on-chain transfer.
"""
import asyncio
import logging
import time
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from errors import BazaarError, ErrorCodes
from models import (
    BalanceChangeResult, CurrencyBalance, CurrencyTransaction,
    PurchaseInitiation, VerificationResult, now_ms
)
from protocol import create_payment_required_response, create_payment_requirements
from rpc import RPCError, SolanaRPC
from .currency import CurrencyAdapter
from .x402_payment import X402PaymentAdapter

logger = logging.getLogger(__name__)


class X402CurrencyAdapter(CurrencyAdapter):
    """Currency adapter backed by on-chain USDC balances.

    Args:
        payment_adapter: Verifies purchase payments
        rpc: Client used for balance lookups
        balance_cache_duration: Seconds a balance lookup stays fresh
    """

    def __init__(
        self,
        payment_adapter: X402PaymentAdapter,
        rpc: Optional[SolanaRPC] = None,
        balance_cache_duration: int = 30
    ):
        self.payment_adapter = payment_adapter
        self.rpc = rpc or payment_adapter.rpc
        self.balance_cache_duration = balance_cache_duration
        self._balance_cache: Dict[str, Tuple[Decimal, float]] = {}
        self._transactions: Dict[str, List[CurrencyTransaction]] = {}

    @property
    def network(self) -> str:
        return self.payment_adapter.network

    async def get_balance(self, user_id: str) -> CurrencyBalance:
        """On-chain USDC balance of the wallet `user_id`.

        Falls back to the last cached value, or zero, when the node cannot be reached.
        """
        cached = self._balance_cache.get(user_id)
        if cached and time.monotonic() - cached[1] < self.balance_cache_duration:
            return CurrencyBalance(amount=cached[0], currency='USDC', last_updated=now_ms())

        try:
            amount = await asyncio.to_thread(
                self.rpc.get_token_balance, user_id, self.payment_adapter.usdc_mint
            )
        except RPCError as e:
            logger.error(f"Failed to query on-chain balance for {user_id}: {e}")
            return CurrencyBalance(
                amount=cached[0] if cached else Decimal('0'), currency='USDC', last_updated=now_ms()
            )

        balance = Decimal(str(amount))
        self._balance_cache[user_id] = (balance, time.monotonic())
        return CurrencyBalance(amount=balance, currency='USDC', last_updated=now_ms())

    async def deduct(self, user_id: str, amount: Decimal) -> BalanceChangeResult:
        raise BazaarError(
            ErrorCodes.CURRENCY_OPERATION_NOT_SUPPORTED,
            "deduct() is not supported in production mode. "
            "Use initiate_purchase() and verify_purchase() instead.",
            400
        )

    async def add(self, user_id: str, amount: Decimal) -> BalanceChangeResult:
        raise BazaarError(
            ErrorCodes.CURRENCY_OPERATION_NOT_SUPPORTED,
            "add() is not supported in production mode. Balance is managed on-chain.",
            400
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
        requirements = create_payment_requirements(
            amount,
            pay_to=seller_id,
            resource=resource,
            description=description,
            network=self.network,
            asset=self.payment_adapter.usdc_mint,
            timeout_seconds=timeout_seconds or self.payment_adapter.timeout_seconds,
        )
        return PurchaseInitiation(
            status=402,
            payment_required=True,
            requirements=create_payment_required_response(requirements),
        )

    async def verify_purchase(
        self,
        payment_header: str,
        expected_amount: Decimal,
        expected_recipient: str
    ) -> VerificationResult:
        result = await self.payment_adapter.verify_payment(
            payment_header, expected_amount, expected_recipient
        )
        if result.success and result.payer:
            self._balance_cache.pop(result.payer, None)
        return result

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
        start = (max(page, 1) - 1) * limit
        return history[start:start + limit]

    async def record_transaction(self, transaction: CurrencyTransaction) -> None:
        self._transactions.setdefault(transaction.user_id, []).append(transaction)
        self._balance_cache.pop(transaction.user_id, None)

    def clear_balance_cache(self) -> None:
        self._balance_cache.clear()
