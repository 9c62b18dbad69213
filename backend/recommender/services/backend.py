"""
backend.py

ElasticSearch recommendation backend: one object wiring the schema
synchronizer, population pipeline, incremental updater, query engine and
materializer around a single client handle.
"""
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from recommender.core.config import Settings, settings as default_settings
from recommender.schemas import IndexHealth
from recommender.services.elasticsearch_client import ElasticSearchClient
from recommender.services.incremental import IncrementalUpdater
from recommender.services.items.registry import ItemRegistry, default_registry
from recommender.services.materializer import ResultMaterializer
from recommender.services.population import PopulationPipeline
from recommender.services.query_engine import RecommendationQueryEngine
from recommender.services.schema_sync import SchemaSynchronizer

logger = logging.getLogger(__name__)


class RecommendationBackend:
    """Provide recommendations using ElasticSearch as backend."""

    key = "elasticsearch"

    def __init__(
        self,
        client: ElasticSearchClient,
        registry: ItemRegistry,
        session_factory: Callable[[], Session],
        settings: Settings = default_settings,
    ):
        self.client = client
        self.registry = registry
        self.session_factory = session_factory
        self.settings = settings
        self.index = client.index

        self.schema = SchemaSynchronizer(client, registry, self.index)
        self.population = PopulationPipeline(client, registry, session_factory, settings, self.index)
        self.updater = IncrementalUpdater(client, registry, self.index)
        self.materializer = ResultMaterializer(client, registry, session_factory)
        self.engine = RecommendationQueryEngine(client, registry, self.materializer, settings, self.index)

    # ── Write path ───────────────────────────────────────────────────────

    def boot(self) -> Dict[str, bool]:
        """Create indices and publish mappings; raises if ElasticSearch is unreachable."""
        self.client.get_client(silent=False)
        updated = self.schema.sync_all()
        logger.info(f"Recommendation backend ready on index prefix '{self.index}': {updated}")
        return updated

    def populate(self, item_keys: Optional[Iterable[str]] = None, cancel_event: Optional[threading.Event] = None) -> Dict[str, int]:
        return self.population.populate(item_keys, cancel_event=cancel_event)

    def update(self, entity) -> Dict[str, Any]:
        return self.updater.update(entity)

    def clean(self, item_keys: Optional[Iterable[str]] = None) -> List[str]:
        """Delete the indices of the given item types, or of every registered type."""
        keys = [k.lower() for k in item_keys] if item_keys else self.registry.keys()
        if not item_keys:
            logger.debug("Cleaning all")
        removed = []
        for key in keys:
            if self.client.delete_mapping(self.index, key):
                removed.append(key)
        return removed

    # ── Read path ────────────────────────────────────────────────────────

    def suggest(self, user_id, item_keys: Iterable[str], limit: Optional[int] = None, session: Session = None):
        return self.engine.suggest(user_id, item_keys, limit, session=session)

    def get_top_items(self, item_keys: Iterable[str], user_id=None, limit: Optional[int] = None, session: Session = None):
        return self.engine.get_top_items(item_keys, user_id, limit, session=session)

    def get_items_by_weight(self, item_keys: Iterable[str], user_id=None, limit: Optional[int] = None, session: Session = None):
        return self.engine.get_items_by_weight(item_keys, user_id, limit, session=session)

    def health(self) -> IndexHealth:
        if not self.client.ping():
            return IndexHealth(connected=False)
        indices = {}
        for item in self.registry:
            try:
                indices[item.key] = self.client.index_exists(self.client.index_name(item.key))
            except Exception as e:
                logger.warning(f"Index check failed for {item.key}: {e}")
                indices[item.key] = False
        return IndexHealth(connected=True, indices=indices)


_backend: Optional[RecommendationBackend] = None
_backend_lock = threading.Lock()


def build_backend(settings: Settings = default_settings) -> RecommendationBackend:
    """Wire a backend from settings, the default item registry and SessionLocal."""
    from recommender.core.database import SessionLocal, get_engine

    get_engine()
    client = ElasticSearchClient(
        host=settings.es_host,
        port=settings.es_port,
        index=settings.es_index,
        request_timeout=settings.es_request_timeout,
        max_retries=settings.es_max_retries,
    )
    return RecommendationBackend(client, default_registry(), SessionLocal, settings)


def get_backend() -> RecommendationBackend:
    """Backend handle shared by the API and the task workers of one process."""
    global _backend
    if _backend is None:
        with _backend_lock:
            if _backend is None:
                _backend = build_backend()
    return _backend
