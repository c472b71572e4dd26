"""Run the marketplace API server.

Wires storage, item, payment and currency adapters from settings.conf into a
BazaarMarketplace and serves it with uvicorn.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

import uvicorn

from adapters import MemoryStorageAdapter, PostgresStorageAdapter, SimpleItemAdapter, create_adapters
from adapters.simple_item import DEMO_ITEMS
from api import create_app
from config import settings_conf
from database import close_pool, create_pool, init_schema
from marketplace import BazaarMarketplace
from mystery_box import DEFAULT_TIERS

logger = logging.getLogger(__name__)


async def build_marketplace(settings: Dict[str, Any]) -> Tuple[BazaarMarketplace, Optional[Any]]:
    """Build a marketplace from settings.

    Returns:
        The marketplace and the database pool, if the postgres backend is used
    """
    pool = None
    item_adapter = SimpleItemAdapter(DEMO_ITEMS)
    payment_adapter, currency_adapter = create_adapters(settings)

    if settings['storage_backend'] == 'postgres':
        pool = await create_pool(settings['db_url'])
        await init_schema(pool)
        storage = PostgresStorageAdapter(pool)
    else:
        storage = MemoryStorageAdapter()

    marketplace = BazaarMarketplace(
        storage_adapter=storage,
        item_adapter=item_adapter,
        payment_adapter=payment_adapter,
        currency_adapter=currency_adapter,
        mock_mode=settings['payment_mode'] == 'mock',
        platform_wallet=settings['platform_wallet'],
    )

    existing = {tier.id for tier in await marketplace.get_mystery_box_tiers()}
    for tier in DEFAULT_TIERS:
        if tier.id not in existing:
            await marketplace.add_mystery_box_tier(tier)

    return marketplace, pool


async def main():
    """Run the API server until it is stopped."""
    marketplace, pool = await build_marketplace(settings_conf)
    server = uvicorn.Server(uvicorn.Config(
        create_app(marketplace),
        host=settings_conf['api_host'],
        port=settings_conf['api_port'],
        log_level=str(settings_conf['log_level']).lower()
    ))

    try:
        logger.info(f"Starting API server on {settings_conf['api_host']}:{settings_conf['api_port']}")
        await server.serve()
    finally:
        if pool is not None:
            logger.info("Closing database connections...")
            await close_pool(pool)
        logger.info("Cleanup complete.")


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, str(settings_conf['log_level']).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    asyncio.run(main())
