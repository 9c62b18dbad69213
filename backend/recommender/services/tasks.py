"""
tasks.py

Celery entry points for the write path. The event bus enqueues
``update_item_task`` when an entity changes; operators enqueue
``populate_index_task`` for full (re)loads.
"""
import logging
from typing import List, Optional

from celery import shared_task

from recommender.core.exceptions import ConnectivityError

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=2, default_retry_delay=60)
def populate_index_task(self, item_keys: Optional[List[str]] = None):
    """Bulk load the selected item types (all when None) into ElasticSearch."""
    from recommender.services.backend import get_backend

    try:
        backend = get_backend()
        backend.boot()
        submitted = backend.populate(item_keys)
        logger.info(f"Populate task completed: {submitted}")
        return submitted
    except ConnectivityError as e:
        logger.warning(f"Populate task could not reach ElasticSearch: {e}")
        raise self.retry(exc=e)


@shared_task(bind=True, max_retries=2, default_retry_delay=60)
def update_item_task(self, item_key: str, pk):
    """Re-index one entity after it changed in the relational source."""
    from recommender.services.backend import get_backend

    backend = get_backend()
    item = backend.registry.require(item_key)
    session = backend.session_factory()
    try:
        entity = item.query_scope(session).filter(item.primary_key_column() == pk).one_or_none()
        if entity is None:
            logger.info(f"{item_key}/{pk} is not in scope anymore, nothing to index")
            return None
        return backend.update(entity)
    except ConnectivityError as e:
        logger.warning(f"Update of {item_key}/{pk} could not reach ElasticSearch: {e}")
        raise self.retry(exc=e)
    finally:
        session.close()
