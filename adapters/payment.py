"""Payment adapter interface."""
from abc import ABC, abstractmethod
from decimal import Decimal

from models import PaymentRequirements, VerificationResult


class PaymentAdapter(ABC):
    """Issues x402 payment requirements and verifies payment proofs."""

    network: str = 'solana-devnet'

    @abstractmethod
    async def verify_payment(
        self,
        payment_header: str,
        expected_amount: Decimal,
        expected_recipient: str
    ) -> VerificationResult:
        """Verify an X-Payment header against the expected amount and recipient.

        Implementations report failure through the result instead of raising.
        """

    @abstractmethod
    def create_payment_requirements(
        self,
        price_usdc: Decimal,
        seller_wallet: str,
        resource: str,
        description: str
    ) -> PaymentRequirements:
        """Build the requirements returned with HTTP 402."""
