"""
query_engine.py

Builds and runs recommendation queries against ElasticSearch.

Two query families:
- similarity: more_like_this seeded with the documents the user is related to
- fallback: every document of the type minus the ones the user already has,
  sorted by popularity (how many users reference it) and/or weight
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from recommender.core.config import Settings, settings as default_settings
from recommender.schemas import RelatedDocument
from recommender.services.elasticsearch_client import ElasticSearchClient
from recommender.services.items.base import ItemType
from recommender.services.items.registry import ItemRegistry
from recommender.services.materializer import ResultMaterializer

logger = logging.getLogger(__name__)

USER_ITEM_KEY = "user"

# more_like_this tuning
MLT_MIN_TERM_FREQ = 1
MLT_MIN_DOC_FREQ = 1
MLT_MAX_QUERY_TERMS = 12

RelationFeatureData = Dict[str, List[RelatedDocument]]


def item_filters(item: ItemType, backend: str = "elasticsearch") -> List[Dict[str, Any]]:
    """Render the item's filter expressions as query DSL clauses."""
    return [f.expression.to_query() for f in item.filter_expressions(backend)]


class RecommendationQueryEngine:

    def __init__(
        self,
        client: ElasticSearchClient,
        registry: ItemRegistry,
        materializer: ResultMaterializer,
        settings: Settings = default_settings,
        index: Optional[str] = None,
    ):
        self.client = client
        self.registry = registry
        self.materializer = materializer
        self.settings = settings
        self.index = index or client.index

    # ── Sizing ───────────────────────────────────────────────────────────

    def result_size(self, item_key: str, limit: Optional[int] = None) -> int:
        """Explicit limit or configured maximum; <= 0 means the whole result window."""
        size = self.settings.max_recommendations(item_key, limit)
        if size <= 0:
            return self.settings.es_max_result_window
        return size

    # ── Related data ─────────────────────────────────────────────────────

    def related_feature_data(self, user_id: Optional[Any]) -> RelationFeatureData:
        """Documents of other item types referenced from the user's document.

        Returns {related_key: [RelatedDocument, ...]}; empty for an anonymous
        user, an unknown user or an unreachable engine.
        """
        related: RelationFeatureData = {}
        user_item = self.registry.get(USER_ITEM_KEY)
        if user_id is None or user_item is None:
            return related

        body = {"query": {"ids": {"values": [str(user_id)]}}}
        response = self.client.search(self.index, user_item.key, body)
        hits = ((response or {}).get("hits") or {}).get("hits") or []

        relations = user_item.item_relations()
        for hit in hits:
            source = hit.get("_source") or {}
            for related_key, field in relations.items():
                values = source.get(field)
                if values is None:
                    continue
                if not isinstance(values, list):
                    values = [values]
                for pk in values:
                    related.setdefault(related_key, []).append(
                        RelatedDocument(item_type=related_key, id=str(pk))
                    )
        return related

    # ── Query builders ───────────────────────────────────────────────────

    def build_similarity_query(self, item: ItemType, related: List[RelatedDocument], size: int) -> Dict[str, Any]:
        like = [
            {"_index": self.client.index_name(doc.item_type, self.index), "_id": doc.id}
            for doc in related
        ]
        query: Dict[str, Any] = {
            "bool": {
                "must": [
                    {
                        "more_like_this": {
                            "fields": item.active_features(),
                            "like": like,
                            "min_term_freq": MLT_MIN_TERM_FREQ,
                            "max_query_terms": MLT_MAX_QUERY_TERMS,
                            "min_doc_freq": MLT_MIN_DOC_FREQ,
                        }
                    }
                ]
            }
        }
        filters = item_filters(item)
        if filters:
            query["bool"]["filter"] = filters

        # Boost by weight feature first, relevance second
        sort: List[Dict[str, Any]] = []
        weight = item.active_weight_feature()
        if weight is not None:
            sort.append({weight: {"order": "desc"}})
        sort.append({"_score": {"order": "desc"}})

        return {
            "_source": False,
            "from": 0,
            "size": size,
            "query": query,
            "sort": sort,
        }

    def build_fallback_query(
        self,
        item: ItemType,
        related: List[RelatedDocument],
        size: int,
        sort_by_popularity: bool = False,
    ) -> Dict[str, Any]:
        exclude_ids = [doc.id for doc in related if doc.id is not None]
        query: Dict[str, Any] = {
            "bool": {
                "must": [{"match_all": {}}],
            }
        }
        if exclude_ids:
            # Items the user already has
            query["bool"]["must_not"] = [{"ids": {"values": exclude_ids}}]
        filters = item_filters(item)
        if filters:
            query["bool"]["filter"] = filters

        sort: List[Dict[str, Any]] = []
        if sort_by_popularity:
            user_field = item.relation_field(USER_ITEM_KEY)
            if user_field:
                # More distinct users referencing a document means more popular
                sort.append({
                    "_script": {
                        "type": "number",
                        "script": {"source": f"doc['{user_field}'].size()"},
                        "order": "desc",
                    }
                })
        # Weight goes last: tiebreaker under popularity, primary sort otherwise
        weight = item.active_weight_feature()
        if weight is not None:
            sort.append({weight: {"order": "desc"}})

        body: Dict[str, Any] = {
            "_source": False,
            "from": 0,
            "size": size,
            "query": query,
        }
        if sort:
            body["sort"] = sort
        return body

    # ── Similarity mode ──────────────────────────────────────────────────

    def suggest(
        self,
        user_id: Optional[Any],
        item_keys: Iterable[str],
        limit: Optional[int] = None,
        session: Session = None,
    ) -> Dict[str, List[Any]]:
        related = self.related_feature_data(user_id)
        result: Dict[str, List[Any]] = {}
        for key in (k.lower() for k in item_keys):
            rel = related.get(key)
            if rel:
                result[key] = self.query_recommendations(rel, key, limit, session=session)
            else:
                result[key] = []
        return result

    def query_recommendations(
        self,
        related: List[RelatedDocument],
        item_key: str,
        limit: Optional[int] = None,
        session: Session = None,
    ) -> List[Any]:
        item = self.registry.get(item_key)
        if item is None:
            logger.warning(f"Recommendations requested for unknown item {item_key}")
            return []
        if not item.active_features():
            # more_like_this needs at least one field
            return []
        body = self.build_similarity_query(item, related, self.result_size(item.key, limit))
        response = self.client.search(self.index, item.key, body)
        return self.materializer.materialize(response, session=session)

    # ── Fallback mode ────────────────────────────────────────────────────

    def get_top_items(self, item_keys: Iterable[str], user_id: Optional[Any] = None, limit: Optional[int] = None, session: Session = None):
        return self.alternative_recommendations(item_keys, user_id, limit, sort_by_popularity=True, session=session)

    def get_items_by_weight(self, item_keys: Iterable[str], user_id: Optional[Any] = None, limit: Optional[int] = None, session: Session = None):
        return self.alternative_recommendations(item_keys, user_id, limit, sort_by_popularity=False, session=session)

    def alternative_recommendations(
        self,
        item_keys: Iterable[str],
        user_id: Optional[Any] = None,
        limit: Optional[int] = None,
        sort_by_popularity: bool = False,
        session: Session = None,
    ) -> Dict[str, List[Any]]:
        related = self.related_feature_data(user_id)
        result: Dict[str, List[Any]] = {}
        for key in (k.lower() for k in item_keys):
            item = self.registry.get(key)
            if item is None:
                logger.warning(f"Recommendations requested for unknown item {key}")
                result[key] = []
                continue
            body = self.build_fallback_query(
                item, related.get(key, []), self.result_size(item.key, limit), sort_by_popularity
            )
            response = self.client.search(self.index, item.key, body)
            result[key] = self.materializer.materialize(response, session=session)
        return result
