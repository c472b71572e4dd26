"""x402 payment adapter verifying payments against a Solana node.

Verification checks the decoded X-Payment header (version, scheme, network,
amount, recipient and token mint) and then polls the ledger until the
referenced transaction is confirmed without error, or the attempts run out.
"""
import asyncio
import logging
from decimal import Decimal
from typing import Optional

import backoff

from models import PaymentRequirements, VerificationResult
from protocol import (
    X402_VERSION, DEFAULT_TIMEOUT_SECONDS, create_payment_requirements,
    decode_payment_header, usdc_to_smallest_unit
)
from rpc import RPCError, SolanaRPC
from .payment import PaymentAdapter

logger = logging.getLogger(__name__)


class X402PaymentAdapter(PaymentAdapter):
    """Production payment adapter.

    Args:
        network: solana-devnet or solana-mainnet
        rpc_url: JSON-RPC endpoint for the network
        usdc_mint: Accepted token mint
        max_poll_attempts: Confirmation polls before giving up
        poll_interval_ms: Delay between polls
        rpc: Optional preconfigured client
    """

    def __init__(
        self,
        network: str,
        rpc_url: str,
        usdc_mint: str,
        max_poll_attempts: int = 10,
        poll_interval_ms: int = 2000,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        rpc: Optional[SolanaRPC] = None
    ):
        self.network = network
        self.usdc_mint = usdc_mint
        self.max_poll_attempts = max_poll_attempts
        self.poll_interval_ms = poll_interval_ms
        self.timeout_seconds = timeout_seconds
        self.rpc = rpc or SolanaRPC(rpc_url)

    def create_payment_requirements(
        self,
        price_usdc: Decimal,
        seller_wallet: str,
        resource: str,
        description: str
    ) -> PaymentRequirements:
        return create_payment_requirements(
            price_usdc,
            pay_to=seller_wallet,
            resource=resource,
            description=description,
            network=self.network,
            asset=self.usdc_mint,
            timeout_seconds=self.timeout_seconds,
        )

    def _failure(self, error: str, tx_hash: str = '', payer: Optional[str] = None) -> VerificationResult:
        logger.warning(f"Payment verification failed: {error}")
        return VerificationResult(
            success=False, tx_hash=tx_hash, network_id=self.network, payer=payer, error=error
        )

    async def verify_payment(
        self,
        payment_header: str,
        expected_amount: Decimal,
        expected_recipient: str
    ) -> VerificationResult:
        payload = decode_payment_header(payment_header)
        if payload is None:
            return self._failure('Invalid payment header encoding')

        if payload.x402_version != X402_VERSION:
            return self._failure(f"Unsupported x402 version: {payload.x402_version}")
        if payload.scheme != 'exact':
            return self._failure(f"Unsupported payment scheme: {payload.scheme}")
        if payload.network != self.network:
            return self._failure(
                f"Network mismatch: expected {self.network}, got {payload.network}"
            )

        details = payload.payload
        signature = details.signature
        payer = details.from_

        expected_units = int(usdc_to_smallest_unit(expected_amount))
        try:
            actual_units = int(details.amount)
        except ValueError:
            return self._failure(f"Invalid payment amount: {details.amount}", signature, payer)
        if actual_units < expected_units:
            return self._failure(
                f"Insufficient amount: expected {expected_units}, got {actual_units}",
                signature, payer
            )

        if details.to.lower() != expected_recipient.lower():
            return self._failure(
                f"Recipient mismatch: expected {expected_recipient}, got {details.to}",
                signature, payer
            )
        if details.mint.lower() != self.usdc_mint.lower():
            return self._failure(
                f"Token mint mismatch: expected {self.usdc_mint}, got {details.mint}",
                signature, payer
            )
        if not signature:
            return self._failure('Transaction signature is required', signature, payer)

        if not await self._wait_for_confirmation(signature):
            return self._failure('Transaction not found or invalid on blockchain', signature, payer)

        logger.info(f"Payment {signature} confirmed on {self.network}")
        return VerificationResult(
            success=True, tx_hash=signature, network_id=self.network, payer=payer
        )

    async def _is_confirmed(self, signature: str) -> bool:
        """Single ledger lookup; unknown or errored transactions count as not confirmed."""
        try:
            tx = await asyncio.to_thread(self.rpc.get_confirmed_transaction, signature)
        except RPCError as e:
            logger.debug(f"Lookup of {signature} failed: {e}")
            return False
        return bool(tx and tx.get('meta') is not None and tx['meta'].get('err') is None)

    async def _wait_for_confirmation(self, signature: str) -> bool:
        """Poll until confirmed, at most max_poll_attempts times."""
        poll = backoff.on_predicate(
            backoff.constant,
            predicate=lambda confirmed: not confirmed,
            max_tries=self.max_poll_attempts,
            interval=self.poll_interval_ms / 1000,
            jitter=None,
            on_backoff=lambda details: logger.debug(
                f"Transaction {signature} not confirmed yet (attempt {details['tries']})"
            ),
        )(self._is_confirmed)
        return await poll(signature)
