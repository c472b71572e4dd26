"""x402 payment protocol helpers.

This module provides:
- USDC amount conversion to and from the 6-decimal smallest unit
- X-Payment header encoding and decoding
- Payment requirements construction for HTTP 402 responses
"""
import base64
import binascii
import json
import logging
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from errors import BazaarError, ErrorCodes
from models import PaymentPayload, PaymentRequirements

logger = logging.getLogger(__name__)

__all__ = [
    'X402_VERSION', 'USDC_DECIMALS', 'USDC_MULTIPLIER', 'USDC_MINT_ADDRESSES',
    'MOCK_USDC_MINT_ADDRESS', 'PAYMENT_HEADER', 'DEFAULT_TIMEOUT_SECONDS',
    'usdc_to_smallest_unit', 'smallest_unit_to_usdc', 'format_usdc',
    'is_valid_usdc_amount', 'encode_payment_header', 'decode_payment_header',
    'create_payment_requirements', 'create_payment_required_response',
]

X402_VERSION = 1
USDC_DECIMALS = 6
USDC_MULTIPLIER = Decimal(10) ** USDC_DECIMALS
PAYMENT_HEADER = 'X-Payment'
DEFAULT_TIMEOUT_SECONDS = 300

USDC_MINT_ADDRESSES = {
    'solana-devnet': '4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU',
    'solana-mainnet': 'EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v',
}
MOCK_USDC_MINT_ADDRESS = 'MOCK_USDC_MINT_ADDRESS'


def _to_decimal(amount: Union[Decimal, int, float, str]) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    if isinstance(amount, float):
        # str() keeps the shortest repr so 0.1 stays 0.1
        return Decimal(str(amount))
    return Decimal(amount)


def usdc_to_smallest_unit(amount: Union[Decimal, int, float, str]) -> str:
    """Convert a USDC amount to its smallest unit as an integer string.

    The result is floor(amount * 10^6), so 0.10 -> "100000" and
    0.000001 -> "1".

    Args:
        amount: USDC amount with decimals

    Returns:
        Decimal integer string

    Raises:
        BazaarError: If the amount is negative or not a finite number
    """
    try:
        value = _to_decimal(amount)
    except (InvalidOperation, ValueError, TypeError):
        raise BazaarError(ErrorCodes.INVALID_PRICE, f"Invalid USDC amount: {amount}")
    if not value.is_finite():
        raise BazaarError(ErrorCodes.INVALID_PRICE, "USDC amount must be a finite number")
    if value < 0:
        raise BazaarError(ErrorCodes.INVALID_PRICE, "USDC amount cannot be negative")
    units = (value * USDC_MULTIPLIER).to_integral_value(rounding=ROUND_FLOOR)
    return str(int(units))


def smallest_unit_to_usdc(units: Union[str, int]) -> Decimal:
    """Convert a smallest-unit integer (or string) back to USDC."""
    try:
        value = int(units)
    except (TypeError, ValueError):
        raise BazaarError(ErrorCodes.INVALID_AMOUNT, f"Invalid smallest unit amount: {units}")
    if value < 0:
        raise BazaarError(ErrorCodes.INVALID_AMOUNT, f"Invalid smallest unit amount: {units}")
    return Decimal(value) / USDC_MULTIPLIER


def format_usdc(amount: Union[Decimal, int, float], decimals: int = 2) -> str:
    """Format an amount for display, e.g. "5.00 USDC"."""
    return f"{_to_decimal(amount):.{decimals}f} USDC"


def is_valid_usdc_amount(
    amount: Union[Decimal, int, float],
    minimum: Decimal = Decimal('0'),
    maximum: Decimal = Decimal('1000000')
) -> bool:
    """Check that an amount is finite and within [minimum, maximum]."""
    try:
        value = _to_decimal(amount)
    except (InvalidOperation, ValueError, TypeError):
        return False
    return value.is_finite() and minimum <= value <= maximum


def encode_payment_header(payload: Union[PaymentPayload, Dict[str, Any]]) -> str:
    """Encode a payment payload as base64 JSON for the X-Payment header."""
    if isinstance(payload, PaymentPayload):
        payload = payload.model_dump(by_alias=True)
    data = json.dumps(payload, separators=(',', ':'))
    return base64.b64encode(data.encode('utf-8')).decode('ascii')


def decode_payment_header(encoded: str) -> Optional[PaymentPayload]:
    """Decode and structurally validate an X-Payment header.

    Args:
        encoded: Base64 encoded JSON payload

    Returns:
        The parsed payload, or None if the header is malformed
    """
    if not encoded:
        return None
    try:
        raw = base64.b64decode(encoded, validate=True).decode('utf-8')
        data = json.loads(raw)
        payload = PaymentPayload.model_validate(data)
    except (binascii.Error, UnicodeDecodeError, ValueError, ValidationError) as e:
        logger.debug(f"Failed to decode payment header: {e}")
        return None

    details = payload.payload
    if not all(v.strip() for v in (details.from_, details.to, details.amount, details.mint)):
        logger.debug("Payment header has empty required fields")
        return None
    return payload


def create_payment_requirements(
    price_usdc: Union[Decimal, int, float, str],
    pay_to: str,
    resource: str,
    description: str,
    network: str = 'solana-devnet',
    asset: Optional[str] = None,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
) -> PaymentRequirements:
    """Build x402 payment requirements.

    Args:
        price_usdc: Price in USDC
        pay_to: Recipient wallet
        resource: Resource path being paid for
        description: Human-readable description
        network: Network identifier
        asset: Token mint; defaults to the network's USDC mint
        timeout_seconds: How long the requirements stay valid

    Returns:
        PaymentRequirements with maxAmountRequired in the smallest unit
    """
    return PaymentRequirements(
        scheme='exact',
        network=network,
        max_amount_required=usdc_to_smallest_unit(price_usdc),
        resource=resource,
        description=description,
        mime_type='application/json',
        pay_to=pay_to,
        max_timeout_seconds=timeout_seconds,
        asset=asset or USDC_MINT_ADDRESSES.get(network, MOCK_USDC_MINT_ADDRESS),
    )


def create_payment_required_response(requirements: PaymentRequirements) -> Dict[str, Any]:
    """Wrap requirements in the x402 {x402Version, accepts} envelope."""
    return {
        'x402Version': X402_VERSION,
        'accepts': [requirements.to_json_dict()],
    }

