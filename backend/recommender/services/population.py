"""
population.py

Bulk loads every entity of the selected item types from the relational source
into ElasticSearch.

Rows are read in fixed-size pages and each page becomes exactly one bulk
submission; the page buffer and the session identity map are released before
the next page, so peak memory stays at one page regardless of table size.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from recommender.core.config import Settings, settings as default_settings
from recommender.core.database import suppressed_query_logging
from recommender.core.memory_manager import PageWatchdog, batch_query_iterator, managed_memory, memory_usage_mb
from recommender.services.elasticsearch_client import ElasticSearchClient
from recommender.services.items.base import ItemType
from recommender.services.items.registry import ItemRegistry

logger = logging.getLogger(__name__)


def bulk_actions(client: ElasticSearchClient, index: str, item: ItemType, rows: Iterable[Any]) -> List[Dict[str, Any]]:
    """Two actions per row: the index directive and the field payload."""
    actions = []
    item_type = item.key.lower()
    pk_name = item.primary_key_name
    for row in rows:
        data = item.project_fields(row)
        # The primary key travels as the document id
        data.pop(pk_name, None)
        actions.append({
            "index": {
                "_index": client.index_name(item_type, index),
                "_id": str(item.primary_key(row)),
            }
        })
        actions.append(data)
    return actions


class PopulationPipeline:

    def __init__(
        self,
        client: ElasticSearchClient,
        registry: ItemRegistry,
        session_factory: Callable[[], Session],
        settings: Settings = default_settings,
        index: Optional[str] = None,
    ):
        self.client = client
        self.registry = registry
        self.session_factory = session_factory
        self.settings = settings
        self.index = index or client.index
        self.batch_size = settings.populate_batch_size

    def populate(
        self,
        item_keys: Optional[Iterable[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, int]:
        """
        Index every entity of the selected item types (all when None).

        Returns:
            Number of documents submitted per item key
        """
        keys = None if item_keys is None else [k.lower() for k in item_keys]
        watchdog = PageWatchdog(self.settings.populate_page_timeout, cancel_event)
        submitted: Dict[str, int] = {}

        session = self.session_factory()
        try:
            with suppressed_query_logging(session.get_bind()), managed_memory("populate"):
                for item in self.registry.select(keys):
                    if submitted:
                        watchdog.check_cancelled(f"{item.key} population")
                    submitted[item.key] = self._populate_item(session, item, watchdog)
        finally:
            session.close()
        return submitted

    def _populate_item(self, session: Session, item: ItemType, watchdog: PageWatchdog) -> int:
        start_time = time.time()
        query = item.query_scope(session).order_by(item.primary_key_column())
        total = query.count()
        logger.info(f"[Populate] {item.key}: {total} rows to index")

        current = 0
        start = 0
        for rows in batch_query_iterator(session, query, batch_size=self.batch_size, total=total):
            if current:
                # Budget and cancellation apply between pages, never inside a bulk
                watchdog.check(f"{item.key} page at offset {start}")
            watchdog.reset()
            logger.info(f"Processing batch {type(item).__name__} [{start}, {self.batch_size}] of {total}")
            logger.debug(f"Memory usage {memory_usage_mb()}Mb")

            actions = bulk_actions(self.client, self.index, item, rows)
            page_size = len(rows)
            del rows

            self.client.bulk(actions)
            actions.clear()
            del actions

            logger.info(f"ElasticSearch bulk call [ {self.index} : {item.key} ] added ( {page_size} )")
            current += page_size
            start += self.batch_size

        elapsed_min = (time.time() - start_time) / 60
        logger.info(f"[Populate] {item.key}: {current}/{total} indexed in {elapsed_min:.1f} minutes")
        return current
