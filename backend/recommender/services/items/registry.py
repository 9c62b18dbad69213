"""
registry.py

Registry of recommendation item definitions, keyed by lowercase item key.
"""
import logging
from typing import Dict, Iterable, Iterator, List, Optional

from recommender.core.exceptions import UnknownItemTypeError
from recommender.services.items.activity import ActivityItem
from recommender.services.items.base import ItemType
from recommender.services.items.user import UserItem

logger = logging.getLogger(__name__)

# Closed set of item definitions shipped with the backend
DEFAULT_ITEM_TYPES = (UserItem, ActivityItem)


class ItemRegistry:
    """Holds registered item types; lookups by key or by model class."""

    def __init__(self, items: Optional[Iterable[ItemType]] = None):
        self._items: Dict[str, ItemType] = {}
        for item in items or []:
            self.register(item)

    def register(self, item: ItemType) -> None:
        key = item.key.lower()
        if key in self._items:
            logger.warning(f"Overwriting existing item registration: {key}")
        self._items[key] = item
        logger.debug(f"Registered recommendation item: {key}")

    def get(self, key: str) -> Optional[ItemType]:
        return self._items.get(str(key).lower())

    def require(self, key: str) -> ItemType:
        item = self.get(key)
        if item is None:
            raise UnknownItemTypeError(
                f"No item registered with key '{key}'. Available items: {self.keys()}"
            )
        return item

    def get_by_model(self, model_class) -> ItemType:
        for item in self._items.values():
            if item.model is model_class:
                return item
        for item in self._items.values():
            if item.model is not None and issubclass(model_class, item.model):
                return item
        raise UnknownItemTypeError(f"No item registered for model {model_class.__name__}")

    def keys(self) -> List[str]:
        return list(self._items.keys())

    def select(self, keys: Optional[Iterable[str]] = None) -> List[ItemType]:
        """Items in registration order, limited to ``keys`` when given."""
        if keys is None:
            return list(self._items.values())
        wanted = {str(k).lower() for k in keys}
        return [item for key, item in self._items.items() if key in wanted]

    def __iter__(self) -> Iterator[ItemType]:
        return iter(self._items.values())

    def __contains__(self, key) -> bool:
        return str(key).lower() in self._items

    def __len__(self) -> int:
        return len(self._items)


def default_registry() -> ItemRegistry:
    return ItemRegistry(item_class() for item_class in DEFAULT_ITEM_TYPES)
