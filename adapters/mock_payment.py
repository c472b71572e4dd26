"""Mock payment adapter for development and tests.

Every verification succeeds with a fresh mock transaction hash.
"""
import logging
from decimal import Decimal

from models import PaymentRequirements, VerificationResult, generate_id
from protocol import MOCK_USDC_MINT_ADDRESS, create_payment_requirements, decode_payment_header
from .payment import PaymentAdapter

logger = logging.getLogger(__name__)


class MockPaymentAdapter(PaymentAdapter):

    network = 'solana-devnet'

    async def verify_payment(
        self,
        payment_header: str,
        expected_amount: Decimal,
        expected_recipient: str
    ) -> VerificationResult:
        # Report the payer when a well-formed header was supplied
        payload = decode_payment_header(payment_header) if payment_header else None
        tx_hash = generate_id('mock-tx', 7)
        logger.info(f"Mock payment verified: {tx_hash} ({expected_amount} USDC to {expected_recipient})")
        return VerificationResult(
            success=True,
            tx_hash=tx_hash,
            network_id=self.network,
            payer=payload.payload.from_ if payload else None,
        )

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
            asset=MOCK_USDC_MINT_ADDRESS,
        )
