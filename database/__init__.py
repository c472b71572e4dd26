"""Database module for PostgreSQL connection pools.

This module handles:
- Connection pool creation with retry on transient connection errors
- Schema initialization through the versioned schema manager
- Pool shutdown

Pools are owned by the caller: create one with create_pool() and pass it to
the components that need it.
"""

import logging
import ssl
from typing import Any, Dict
from urllib.parse import parse_qs, urlparse

import asyncpg
import backoff

from .exceptions import DatabaseError, DatabaseSchemaError
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

__all__ = [
    'create_pool', 'init_schema', 'close_pool',
    'DatabaseError', 'DatabaseSchemaError', 'SchemaManager'
]


def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    SSL is enabled when the URL asks for it with sslmode=require or stricter.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    params = parse_qs(urlparse(db_url).query)
    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '300000',  # 5 minutes
        }
    }
    sslmode = params.get('sslmode', ['disable'])[0]
    if sslmode in ('require', 'verify-ca', 'verify-full'):
        ssl_context = ssl.create_default_context()
        if sslmode == 'require':
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
        kwargs['ssl'] = ssl_context
    return kwargs


@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def create_pool(db_url: str, min_size: int = 2, max_size: int = 20) -> asyncpg.Pool:
    """Create a connection pool.

    Args:
        db_url: Database connection URL
        min_size: Minimum idle connections
        max_size: Maximum connections

    Returns:
        The connection pool

    Raises:
        ValueError: If no URL is given
        Exception: If connecting fails after retries
    """
    if not db_url:
        raise ValueError("Database URL not provided")

    logger.info(f"Connecting to database at {urlparse(db_url).hostname}")
    return await asyncpg.create_pool(
        db_url,
        min_size=min_size,
        max_size=max_size,
        max_queries=10000,   # Reset connection after this many queries
        max_inactive_connection_lifetime=300.0,
        command_timeout=60.0,
        **_get_connection_kwargs(db_url)
    )


async def init_schema(pool: asyncpg.Pool) -> None:
    """Create or migrate the schema on the given pool."""
    await SchemaManager(pool).initialize()


async def close_pool(pool: asyncpg.Pool) -> None:
    """Close a connection pool."""
    await pool.close()
    logger.info("Database pool closed")
