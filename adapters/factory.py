"""Build adapters from settings.

The payment mode is decided here once; the rest of the system only sees the
adapter interfaces.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from .currency import CurrencyAdapter
from .mock_currency import MockCurrencyAdapter
from .mock_payment import MockPaymentAdapter
from .payment import PaymentAdapter
from .x402_currency import X402CurrencyAdapter
from .x402_payment import X402PaymentAdapter

logger = logging.getLogger(__name__)


def rpc_url_for(settings: Dict[str, Any]) -> str:
    if settings['solana_network'] == 'solana-mainnet':
        return settings['solana_mainnet_rpc']
    return settings['solana_devnet_rpc']


def usdc_mint_for(settings: Dict[str, Any]) -> str:
    if settings['solana_network'] == 'solana-mainnet':
        return settings['usdc_mint_mainnet']
    return settings['usdc_mint_devnet']


def create_payment_adapter(settings: Dict[str, Any]) -> PaymentAdapter:
    """Payment adapter for the configured payment mode."""
    if settings['payment_mode'] == 'production':
        logger.info(f"Using x402 payments on {settings['solana_network']}")
        return X402PaymentAdapter(
            network=settings['solana_network'],
            rpc_url=rpc_url_for(settings),
            usdc_mint=usdc_mint_for(settings),
            max_poll_attempts=settings['tx_poll_max_attempts'],
            poll_interval_ms=settings['tx_poll_interval_ms'],
        )
    logger.info("Using mock payments")
    return MockPaymentAdapter()


def create_currency_adapter(
    settings: Dict[str, Any],
    payment_adapter: Optional[PaymentAdapter] = None
) -> CurrencyAdapter:
    """Currency adapter for the configured payment mode.

    In production the currency adapter shares the payment adapter's RPC client
    and verification logic.
    """
    if settings['payment_mode'] == 'production':
        if not isinstance(payment_adapter, X402PaymentAdapter):
            payment_adapter = create_payment_adapter(settings)
        return X402CurrencyAdapter(
            payment_adapter,
            balance_cache_duration=settings['balance_cache_duration'],
        )
    return MockCurrencyAdapter(
        default_balance=Decimal(settings['mock_default_balance']),
        tx_id_prefix=settings['mock_tx_id_prefix'],
    )


def create_adapters(settings: Dict[str, Any]) -> Tuple[PaymentAdapter, CurrencyAdapter]:
    """Payment and currency adapters for the configured mode."""
    payment = create_payment_adapter(settings)
    return payment, create_currency_adapter(settings, payment)
