"""
incremental.py

Applies the current state of a single entity to its ElasticSearch document.
"""
import logging
from typing import Any, Dict, Optional

from recommender.core.exceptions import DocumentNotFoundError
from recommender.services.elasticsearch_client import ElasticSearchClient
from recommender.services.items.registry import ItemRegistry

logger = logging.getLogger(__name__)


class IncrementalUpdater:

    def __init__(self, client: ElasticSearchClient, registry: ItemRegistry, index: Optional[str] = None):
        self.client = client
        self.registry = registry
        self.index = index or client.index

    def update(self, entity) -> Dict[str, Any]:
        """Upsert ``entity``: partial update first, full insert if the document is new.

        The whole current projection is sent every time so the document never
        drifts from the relational source. Returns the projected field values.
        """
        item = self.registry.get_by_model(type(entity))
        item_type = item.key.lower()
        data = item.project_fields(entity)
        doc_id = item.primary_key(entity)
        body = {k: v for k, v in data.items() if k != item.primary_key_name}

        try:
            self.client.update_document(self.index, item_type, doc_id, body)
            logger.debug(f"Updated {item_type}/{doc_id}")
        except DocumentNotFoundError:
            self.client.index_document(self.index, item_type, doc_id, body)
            logger.debug(f"Inserted {item_type}/{doc_id}")
        return data
