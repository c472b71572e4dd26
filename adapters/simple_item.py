"""Reference in-memory item adapter.

Items are plain dicts with an owner. Used by the demo server and the tests.
"""
import logging
import random
from typing import Any, Dict, List, Optional, Set

from errors import BazaarError, ErrorCodes
from models import generate_id
from mystery_box import select_rarity
from .item import ItemAdapter

logger = logging.getLogger(__name__)

DEMO_ITEMS = [
    {'id': 'sword-1', 'name': 'Iron Sword', 'description': 'A basic iron sword',
     'rarity': 'common', 'owner': 'player1'},
    {'id': 'shield-1', 'name': 'Wooden Shield', 'description': 'A sturdy wooden shield',
     'rarity': 'common', 'owner': 'player1'},
]


class SimpleItemAdapter(ItemAdapter):
    """Item store keeping items and locks in memory."""

    def __init__(self, items: Optional[List[Dict[str, Any]]] = None, rng: Optional[random.Random] = None):
        self._items: Dict[str, Dict[str, Any]] = {}
        self._locked: Set[str] = set()
        self._rng = rng
        for item in items or []:
            self.add_item(item)

    def add_item(self, item: Dict[str, Any]) -> None:
        self._items[item['id']] = dict(item)

    def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        item = self._items.get(item_id)
        return dict(item) if item else None

    def is_locked(self, item_id: str) -> bool:
        return item_id in self._locked

    def get_items_by_owner(self, username: str) -> List[Dict[str, Any]]:
        """Unlocked items owned by a user."""
        return [
            dict(item) for item in self._items.values()
            if item['owner'] == username and item['id'] not in self._locked
        ]

    async def validate_item_ownership(self, item_id: str, username: str) -> bool:
        item = self._items.get(item_id)
        return item is not None and item['owner'] == username

    async def validate_item_exists(self, item_id: str) -> bool:
        return item_id in self._items

    async def lock_item(self, item_id: str, username: str) -> None:
        if item_id in self._locked:
            raise BazaarError(
                ErrorCodes.ITEM_LOCK_FAILED, f"Item {item_id} is already locked", 409
            )
        self._locked.add(item_id)

    async def unlock_item(self, item_id: str, username: str) -> None:
        self._locked.discard(item_id)

    async def transfer_item(self, item_id: str, from_username: str, to_username: str) -> None:
        item = self._items.get(item_id)
        if item is None:
            raise BazaarError(ErrorCodes.ITEM_NOT_FOUND, f"Item {item_id} not found", 404)
        if item['owner'] != from_username:
            raise BazaarError(
                ErrorCodes.ITEM_NOT_OWNED, f"Item {item_id} not owned by {from_username}", 403
            )
        item['owner'] = to_username
        self._locked.discard(item_id)
        logger.debug(f"Transferred {item_id} from {from_username} to {to_username}")

    async def generate_random_item(self, tier_id: str, rarity_weights: Dict[str, float]) -> Dict[str, Any]:
        rarity = select_rarity(rarity_weights, self._rng)
        return {
            'id': generate_id('item'),
            'name': f"{rarity.capitalize()} Item",
            'description': f"A {rarity} item from {tier_id} mystery box",
            'rarity': rarity,
            'owner': '',  # set on grant
        }

    async def grant_item_to_user(self, item: Dict[str, Any], username: str) -> None:
        granted = dict(item, owner=username)
        self._items[granted['id']] = granted

    async def revoke_item_from_user(self, item: Dict[str, Any], username: str) -> None:
        current = self._items.get(item['id'])
        if current is not None and current['owner'] == username:
            del self._items[item['id']]
