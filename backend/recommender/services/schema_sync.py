"""
schema_sync.py

Keeps the ElasticSearch indices and per-type mappings in line with the
registered item definitions. Runs once at boot; failures propagate so a
broken setup is visible instead of masked.
"""
import logging
from typing import Any, Dict, Optional

from recommender.core.exceptions import BadRequestError
from recommender.services.elasticsearch_client import ElasticSearchClient
from recommender.services.items.base import ItemType
from recommender.services.items.registry import ItemRegistry

logger = logging.getLogger(__name__)


def build_item_mapping(item: ItemType) -> Dict[str, Any]:
    """ElasticSearch mapping for an item type (properties + optional extensions)."""
    properties = {spec.name: spec.to_mapping() for spec in item.data_fields()}
    mapping: Dict[str, Any] = {
        "_source": {"enabled": True},
        "properties": properties,
    }
    if item.has_extended_mapping():
        extra = item.extended_mapping(mapping)
        if extra:
            mapping = {**mapping, **extra}
    return mapping


def _normalize_field(field: Dict[str, Any]) -> Dict[str, Any]:
    # Object fields come back without "type" once sub-properties exist
    if "type" not in field and "properties" in field:
        return {**field, "type": "object"}
    return field


def mapping_is_current(desired: Dict[str, Any], published: Dict[str, Any]) -> bool:
    """True when every declared field option is already published.

    Sub-properties and defaults the engine adds on its own are ignored.
    """
    published_props = published.get("properties") or {}
    for name, field in (desired.get("properties") or {}).items():
        current = published_props.get(name)
        if current is None:
            return False
        current = _normalize_field(current)
        for option, value in field.items():
            if current.get(option) != value:
                return False
    for option in ("dynamic_templates",):
        if option in desired and desired[option] != published.get(option):
            return False
    return True


class SchemaSynchronizer:

    def __init__(self, client: ElasticSearchClient, registry: ItemRegistry, index: Optional[str] = None):
        self.client = client
        self.registry = registry
        self.index = index or client.index

    def ensure_index(self, name: str) -> bool:
        """Create ``name`` if absent. An existing index counts as success."""
        try:
            return self.client.create_index(name)
        except BadRequestError:
            logger.debug(f"Index {name} already exists")
            return True

    def sync_mapping(self, item: ItemType) -> bool:
        """Push the item's mapping if it differs from the published one.

        Returns True when a write was issued.
        """
        item_type = item.key.lower()
        desired = build_item_mapping(item)
        published = self.client.get_mapping(self.index, item_type)
        if published and mapping_is_current(desired, published):
            logger.debug(f"Mapping for {item_type} is current")
            return False
        self.client.put_mapping(self.index, item_type, desired)
        logger.info(f"Mapping for {item_type} pushed ({len(desired['properties'])} fields)")
        return True

    def sync_all(self) -> Dict[str, bool]:
        """Ensure every registered type has its index and current mapping."""
        updated = {}
        for item in self.registry:
            if self.ensure_index(self.client.index_name(item.key, self.index)):
                updated[item.key] = self.sync_mapping(item)
        return updated
