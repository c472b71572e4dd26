"""Adapters connecting the marketplace to storage, items, payments and currency."""
from .currency import CurrencyAdapter
from .factory import create_adapters, create_currency_adapter, create_payment_adapter
from .item import ItemAdapter
from .memory_storage import MemoryStorageAdapter
from .mock_currency import MockCurrencyAdapter
from .mock_payment import MockPaymentAdapter
from .payment import PaymentAdapter
from .postgres_storage import PostgresStorageAdapter
from .simple_item import SimpleItemAdapter
from .storage import StorageAdapter
from .x402_currency import X402CurrencyAdapter
from .x402_payment import X402PaymentAdapter

__all__ = [
    'StorageAdapter', 'ItemAdapter', 'PaymentAdapter', 'CurrencyAdapter',
    'MemoryStorageAdapter', 'PostgresStorageAdapter', 'SimpleItemAdapter',
    'MockPaymentAdapter', 'X402PaymentAdapter',
    'MockCurrencyAdapter', 'X402CurrencyAdapter',
    'create_adapters', 'create_payment_adapter', 'create_currency_adapter',
]
