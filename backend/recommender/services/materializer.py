"""
materializer.py

Turns ElasticSearch hits back into entities from the relational source,
keeping the order ElasticSearch returned them in.
"""
import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, List

from sqlalchemy.orm import Session

from recommender.services.elasticsearch_client import ElasticSearchClient
from recommender.services.items.base import ItemType
from recommender.services.items.registry import ItemRegistry

logger = logging.getLogger(__name__)


def _coerce_ids(item: ItemType, ids: List[str]) -> List[Any]:
    """Cast document ids back to the primary key's python type."""
    try:
        python_type = item.primary_key_column().type.python_type
    except NotImplementedError:
        return list(ids)
    coerced = []
    for doc_id in ids:
        try:
            coerced.append(python_type(doc_id))
        except (TypeError, ValueError):
            logger.debug(f"Skipping id {doc_id!r} not castable to {python_type.__name__}")
    return coerced


class ResultMaterializer:

    def __init__(self, client: ElasticSearchClient, registry: ItemRegistry, session_factory: Callable[[], Session]):
        self.client = client
        self.registry = registry
        self.session_factory = session_factory

    def group_hits(self, response: Dict[str, Any]) -> "OrderedDict[str, List[str]]":
        """Hit ids grouped by item type, engine order preserved within each type."""
        grouped: "OrderedDict[str, List[str]]" = OrderedDict()
        hits = ((response or {}).get("hits") or {}).get("hits") or []
        for hit in hits:
            item_type = self.client.item_type_for(hit.get("_index", ""))
            if item_type is None:
                logger.debug(f"Hit from foreign index {hit.get('_index')} ignored")
                continue
            grouped.setdefault(item_type, []).append(str(hit["_id"]))
        return grouped

    def materialize(self, response: Dict[str, Any], session: Session = None) -> List[Any]:
        grouped = self.group_hits(response)
        if not grouped:
            return []

        own_session = session is None
        if own_session:
            session = self.session_factory()
        try:
            entities: List[Any] = []
            for item_type, ids in grouped.items():
                item = self.registry.get(item_type)
                if item is None:
                    logger.debug(f"No item registered for type {item_type}, skipping {len(ids)} hits")
                    continue
                entities.extend(self._fetch_ordered(session, item, ids))
            return entities
        finally:
            if own_session:
                session.close()

    def _fetch_ordered(self, session: Session, item: ItemType, ids: List[str]) -> List[Any]:
        keys = _coerce_ids(item, ids)
        if not keys:
            return []
        rows = item.query_scope(session).filter(item.primary_key_column().in_(keys)).all()
        # ElasticSearch relevance order is authoritative
        position = {str(doc_id): i for i, doc_id in enumerate(ids)}
        rows.sort(key=lambda row: position.get(str(item.primary_key(row)), len(position)))
        return rows
