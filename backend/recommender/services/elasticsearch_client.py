"""
elasticsearch_client.py

Fault-tolerant wrapper over the ElasticSearch HTTP API used by the
recommendation backend.

Each item type lives in its own physical index named ``<index>_<type>``;
callers address documents by the logical (index, type, id) triple and never
see the physical name. ElasticSearch exceptions are translated into the
errors in ``recommender.core.exceptions``.
"""
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from elasticsearch import (
    ApiError,
    BadRequestError as ESBadRequestError,
    ConnectionError as ESConnectionError,
    ConnectionTimeout,
    Elasticsearch,
    NotFoundError as ESNotFoundError,
    TransportError,
)

from recommender.core.config import settings as default_settings
from recommender.core.exceptions import (
    BadRequestError,
    BulkIndexError,
    ConnectivityError,
    DocumentNotFoundError,
    QueryExecutionError,
    RecommenderError,
)

logger = logging.getLogger(__name__)


def _body(response) -> Any:
    """Unwrap an ObjectApiResponse into its plain body."""
    return getattr(response, "body", response)


def physical_index(index: str, item_type: str) -> str:
    return f"{index}_{item_type.lower()}"


class ElasticSearchClient:
    """
    ElasticSearch adapter for recommendation items.

    Features:
    - Lazy connection created on first need, once, even under concurrent first use
    - Silent mode for read paths (log and degrade to empty results)
    - Index, mapping, bulk, single document and search operations
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        index: Optional[str] = None,
        request_timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        es: Optional[Elasticsearch] = None,
    ):
        self.host = host or default_settings.es_host
        self.port = port or default_settings.es_port
        self.index = index or default_settings.es_index
        self.request_timeout = request_timeout or default_settings.es_request_timeout
        self.max_retries = max_retries if max_retries is not None else default_settings.es_max_retries
        self.es = es
        self._lock = threading.Lock()

    @property
    def url(self) -> str:
        return f"{self.host}:{self.port}"

    def index_name(self, item_type: str, index: Optional[str] = None) -> str:
        return physical_index(index or self.index, item_type)

    def item_type_for(self, index_name: str, index: Optional[str] = None) -> Optional[str]:
        """Logical item type of a physical index name, or None if foreign."""
        prefix = f"{index or self.index}_"
        if index_name and index_name.startswith(prefix):
            return index_name[len(prefix):]
        return None

    # ── Connection ───────────────────────────────────────────────────────

    def get_client(self, silent: bool = True) -> Optional[Elasticsearch]:
        """Return the ElasticSearch client, connecting on first use.

        With ``silent`` a failed connection is logged and None is returned,
        otherwise ConnectivityError is raised. A failed attempt is retried on
        the next call.
        """
        if self.es is not None:
            return self.es
        with self._lock:
            if self.es is None:
                try:
                    es = Elasticsearch(
                        [self.url],
                        request_timeout=self.request_timeout,
                        max_retries=self.max_retries,
                        retry_on_timeout=True,
                    )
                    if not es.ping():
                        raise ConnectivityError(f"ElasticSearch at {self.url} did not answer ping")
                    self.es = es
                    logger.info(f"Connected to ElasticSearch at {self.url}")
                except Exception as e:
                    if silent:
                        logger.critical(f"Can't connect to ElasticSearch host {self.url}: {e}")
                        return None
                    if isinstance(e, ConnectivityError):
                        raise
                    raise ConnectivityError(f"Failed to connect to ElasticSearch at {self.url}: {e}") from e
        return self.es

    def reconfigure(self, host: Optional[str] = None, port: Optional[int] = None, index: Optional[str] = None) -> None:
        """Point the adapter somewhere else; the next call reconnects."""
        with self._lock:
            self.host = host or self.host
            self.port = port or self.port
            self.index = index or self.index
            self.es = None
        logger.info(f"ElasticSearch client reconfigured for {self.url} (index prefix {self.index})")

    def _require_client(self) -> Elasticsearch:
        return self.get_client(silent=False)

    @contextmanager
    def _translated(self, action: str):
        try:
            yield
        except RecommenderError:
            raise
        except ESNotFoundError as e:
            raise DocumentNotFoundError(f"{action}: {e}") from e
        except ESBadRequestError as e:
            raise BadRequestError(f"{action}: {e}") from e
        except (ESConnectionError, ConnectionTimeout) as e:
            raise ConnectivityError(f"{action}: {e}") from e
        except (ApiError, TransportError) as e:
            raise QueryExecutionError(f"{action}: {e}") from e

    def ping(self) -> bool:
        es = self.get_client(silent=True)
        if es is None:
            return False
        try:
            return bool(es.ping())
        except Exception as e:
            logger.warning(f"ElasticSearch ping failed: {e}")
            return False

    # ── Indices & mappings ──────────────────────────────────────────────

    def create_index(self, name: str) -> bool:
        """Create ``name``; raises BadRequestError when it already exists."""
        es = self._require_client()
        with self._translated(f"create index {name}"):
            response = _body(es.indices.create(index=name))
        logger.info(f"Created ElasticSearch index: {name}")
        return bool(response.get("acknowledged", False))

    def delete_index(self, name: str) -> bool:
        """Delete ``name``; a missing index is not an error."""
        es = self._require_client()
        try:
            with self._translated(f"delete index {name}"):
                response = _body(es.indices.delete(index=name))
        except DocumentNotFoundError:
            logger.debug(f"Index {name} does not exist, nothing to delete")
            return False
        logger.info(f"Deleted ElasticSearch index: {name}")
        return bool(response.get("acknowledged", False))

    def index_exists(self, name: str) -> bool:
        es = self._require_client()
        with self._translated(f"check index {name}"):
            return bool(es.indices.exists(index=name))

    def get_mapping(self, index: str, item_type: str) -> Dict[str, Any]:
        """Published mapping of a type, or {} when there is none yet."""
        es = self._require_client()
        name = physical_index(index, item_type)
        try:
            with self._translated(f"get mapping {name}"):
                response = _body(es.indices.get_mapping(index=name))
        except DocumentNotFoundError:
            return {}
        return (response.get(name) or {}).get("mappings") or {}

    def put_mapping(self, index: str, item_type: str, mapping: Dict[str, Any]) -> bool:
        es = self._require_client()
        name = physical_index(index, item_type)
        with self._translated(f"put mapping {name}"):
            response = _body(es.indices.put_mapping(index=name, body=mapping))
        logger.info(f"Updated ElasticSearch mapping for {name}")
        return bool(response.get("acknowledged", False))

    def delete_mapping(self, index: str, item_type: str) -> bool:
        """Drop a type together with its documents."""
        return self.delete_index(physical_index(index, item_type))

    # ── Documents ───────────────────────────────────────────────────────

    def bulk(self, actions: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Submit one bulk request; rejected actions raise BulkIndexError."""
        if not actions:
            return {"errors": False, "items": []}
        es = self._require_client()
        with self._translated("bulk"):
            response = _body(es.bulk(operations=actions))
        if response.get("errors"):
            failed = []
            for item in response.get("items", []):
                result = next(iter(item.values()), {})
                if result.get("error"):
                    failed.append(result)
            raise BulkIndexError(f"Bulk submission rejected {len(failed)} action(s)", failed)
        return response

    def index_document(self, index: str, item_type: str, doc_id: Any, body: Dict[str, Any]) -> Dict[str, Any]:
        es = self._require_client()
        name = physical_index(index, item_type)
        with self._translated(f"index {name}/{doc_id}"):
            return _body(es.index(index=name, id=str(doc_id), document=body))

    def update_document(self, index: str, item_type: str, doc_id: Any, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``partial`` into an existing document; DocumentNotFoundError if absent."""
        es = self._require_client()
        name = physical_index(index, item_type)
        with self._translated(f"update {name}/{doc_id}"):
            return _body(es.update(index=name, id=str(doc_id), doc=partial))

    # ── Search ──────────────────────────────────────────────────────────

    def search(self, index: str, item_type: str, body: Dict[str, Any], silent: bool = True) -> Dict[str, Any]:
        """
        Execute a search against one item type.

        Args:
            index: Logical index (prefix)
            item_type: Item key
            body: Query DSL body
            silent: Log failures and return {} instead of raising
        Returns:
            Raw ElasticSearch response
        """
        name = physical_index(index, item_type)
        try:
            es = self.get_client(silent=silent)
            if es is None:
                return {}
            start = time.monotonic()
            with self._translated(f"search {name}"):
                response = _body(es.search(index=name, body=body))
            took_ms = int((time.monotonic() - start) * 1000)
            logger.debug(f"Search on {name} took {took_ms}ms")
            return response
        except RecommenderError as e:
            if silent:
                logger.critical(f"ElasticSearch: {e}")
                return {}
            raise
