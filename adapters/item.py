"""Item adapter interface.

The host application owns item semantics; the marketplace only needs to check
ownership, hold a lock while an item is listed, move items between users and
create items for mystery boxes.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict


class ItemAdapter(ABC):
    """Abstract interface for the application's item store."""

    @abstractmethod
    async def validate_item_ownership(self, item_id: str, username: str) -> bool:
        """Whether `username` currently owns the item."""

    @abstractmethod
    async def validate_item_exists(self, item_id: str) -> bool:
        """Whether the item exists at all."""

    @abstractmethod
    async def lock_item(self, item_id: str, username: str) -> None:
        """Lock an item so it cannot be used or traded while listed.

        Raises:
            Exception: If the item is already locked or cannot be locked
        """

    @abstractmethod
    async def unlock_item(self, item_id: str, username: str) -> None:
        """Release a lock taken by lock_item."""

    @abstractmethod
    async def transfer_item(self, item_id: str, from_username: str, to_username: str) -> None:
        """Move ownership of an item. The item ends up unlocked."""

    @abstractmethod
    async def generate_random_item(self, tier_id: str, rarity_weights: Dict[str, float]) -> Any:
        """Create a new item for a mystery box tier."""

    @abstractmethod
    async def grant_item_to_user(self, item: Any, username: str) -> None:
        """Give a generated item to a user."""

    async def revoke_item_from_user(self, item: Any, username: str) -> None:
        """Undo grant_item_to_user. Adapters that cannot revoke leave this as is."""
        raise NotImplementedError(f"{type(self).__name__} cannot revoke granted items")

    def serialize_item(self, item: Any) -> Any:
        return item

    def deserialize_item(self, data: Any) -> Any:
        return data
