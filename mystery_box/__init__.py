"""Mystery box module.

Tiers are priced boxes with relative rarity weights. Buying a box generates a
random item through the item adapter and commits the purchase record, the
transaction record and the item grant as one atomic trade.
"""
import logging
import random
from decimal import Decimal
from typing import Any, Dict, List, Optional

from errors import BazaarError, ErrorCodes
from models import (
    GrantItemOp, MysteryBoxPurchase, MysteryBoxTier, RecordMysteryBoxPurchaseOp,
    RecordTransactionOp, Transaction, TransactionType, generate_id, now_ms
)

logger = logging.getLogger(__name__)

__all__ = ['MysteryBoxManager', 'select_rarity', 'validate_tier', 'DEFAULT_TIERS']

# Catalog seeded by the demo server
DEFAULT_TIERS = [
    MysteryBoxTier(
        id='starter', name='Starter Box', price_usdc=Decimal('0.10'),
        description='Mostly common items with a small chance of something better',
        rarity_weights={'common': 70, 'uncommon': 25, 'rare': 5},
    ),
    MysteryBoxTier(
        id='premium', name='Premium Box', price_usdc=Decimal('1.00'),
        description='Better odds at rare and epic items',
        rarity_weights={'uncommon': 50, 'rare': 35, 'epic': 14, 'legendary': 1},
    ),
    MysteryBoxTier(
        id='legendary', name='Legendary Box', price_usdc=Decimal('5.00'),
        description='Guaranteed epic or better',
        rarity_weights={'epic': 80, 'legendary': 20},
    ),
]


def select_rarity(rarity_weights: Dict[str, float], rng: Optional[random.Random] = None) -> str:
    """Pick a rarity label with probability proportional to its weight.

    Args:
        rarity_weights: Mapping of rarity label to relative weight
        rng: Optional random generator for reproducible picks

    Returns:
        The selected label

    Raises:
        BazaarError: INVALID_WEIGHTS if the weights are empty, negative or sum to zero
    """
    if not rarity_weights:
        raise BazaarError(ErrorCodes.INVALID_WEIGHTS, "At least one rarity weight is required")
    if any(weight < 0 for weight in rarity_weights.values()):
        raise BazaarError(ErrorCodes.INVALID_WEIGHTS, "Rarity weights cannot be negative")
    total = sum(rarity_weights.values())
    if total <= 0:
        raise BazaarError(ErrorCodes.INVALID_WEIGHTS, "Total rarity weight must be greater than 0")

    roll = (rng or random).random() * total
    cumulative = 0.0
    for rarity, weight in rarity_weights.items():
        cumulative += weight
        if roll < cumulative:
            return rarity
    # Float rounding can leave roll == total; take the last positive weight
    return [r for r, w in rarity_weights.items() if w > 0][-1]


def validate_tier(tier: MysteryBoxTier) -> None:
    """Check a tier before it is added to the catalog.

    Raises:
        BazaarError: INVALID_TIER or INVALID_WEIGHTS
    """
    if not tier.id or not tier.name:
        raise BazaarError(ErrorCodes.INVALID_TIER, "Tier must have id, name, and priceUSDC")
    if tier.price_usdc <= 0:
        raise BazaarError(ErrorCodes.INVALID_TIER, "Tier price must be greater than 0")
    if not tier.rarity_weights:
        raise BazaarError(ErrorCodes.INVALID_TIER, "Tier must have at least one rarity weight")
    if any(weight < 0 for weight in tier.rarity_weights.values()):
        raise BazaarError(ErrorCodes.INVALID_WEIGHTS, "Rarity weights cannot be negative")
    if sum(tier.rarity_weights.values()) <= 0:
        raise BazaarError(ErrorCodes.INVALID_WEIGHTS, "Total rarity weight must be greater than 0")


class MysteryBoxManager:
    """Manager class for the mystery box catalog and purchases."""

    def __init__(self, storage_adapter, item_adapter):
        """Initialize the mystery box manager.

        Args:
            storage_adapter: StorageAdapter holding tiers and purchases
            item_adapter: ItemAdapter generating and granting items
        """
        self.storage = storage_adapter
        self.items = item_adapter

    async def add_tier(self, tier: MysteryBoxTier) -> None:
        validate_tier(tier)
        await self.storage.add_mystery_box_tier(tier)
        logger.info(f"Added mystery box tier {tier.id} ({tier.name}) at {tier.price_usdc} USDC")

    async def get_tier(self, tier_id: str) -> MysteryBoxTier:
        """Get a tier.

        Raises:
            BazaarError: TIER_NOT_FOUND
        """
        tier = await self.storage.get_mystery_box_tier(tier_id)
        if tier is None:
            raise BazaarError(
                ErrorCodes.TIER_NOT_FOUND, f"Mystery box tier {tier_id} not found", 404
            )
        return tier

    async def get_all_tiers(self) -> List[MysteryBoxTier]:
        return await self.storage.get_all_mystery_box_tiers()

    async def purchase_mystery_box(
        self,
        tier_id: str,
        buyer_username: str,
        buyer_wallet: str,
        tx_hash: str,
        extra_operations: Optional[List[Any]] = None
    ) -> MysteryBoxPurchase:
        """Generate an item for a paid box and commit the purchase.

        Args:
            tier_id: Tier being bought
            buyer_username: Buyer receiving the item
            buyer_wallet: Wallet the payment came from
            tx_hash: Payment transaction hash
            extra_operations: Trade operations committed with the purchase,
                applied before the item grant

        Returns:
            The recorded purchase

        Raises:
            BazaarError: TIER_NOT_FOUND, ITEM_GENERATION_FAILED, or any error
                from the atomic commit
        """
        tier = await self.get_tier(tier_id)

        try:
            item = await self.items.generate_random_item(tier.id, tier.rarity_weights)
        except BazaarError:
            raise
        except Exception as e:
            raise BazaarError(
                ErrorCodes.ITEM_GENERATION_FAILED, f"Failed to generate item: {e}", 500
            ) from e

        timestamp = now_ms()
        serialized = self.items.serialize_item(item)
        purchase = MysteryBoxPurchase(
            id=generate_id('mystery-box'),
            tier_id=tier.id,
            buyer_username=buyer_username,
            buyer_wallet=buyer_wallet,
            price_usdc=Decimal(tier.price_usdc),
            item_generated=serialized,
            tx_hash=tx_hash,
            timestamp=timestamp,
        )
        transaction = Transaction(
            id=generate_id('tx'),
            type=TransactionType.MYSTERY_BOX_PURCHASE,
            buyer_username=buyer_username,
            buyer_wallet=buyer_wallet,
            mystery_box_tier_id=tier.id,
            price_usdc=Decimal(tier.price_usdc),
            items=[serialized],
            tx_hash=tx_hash,
            timestamp=timestamp,
        )

        await self.storage.execute_atomic_trade([
            RecordMysteryBoxPurchaseOp(purchase=purchase),
            RecordTransactionOp(transaction=transaction),
            *(extra_operations or []),
            GrantItemOp(item=item, username=buyer_username),
        ])
        logger.info(f"{buyer_username} opened a {tier.name} mystery box ({purchase.id})")
        return purchase
