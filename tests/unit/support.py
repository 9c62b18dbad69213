"""
Shared test doubles: an in-memory relational source and a small
ElasticSearch stand-in that stores documents and records every call.
"""
import copy
import datetime
from unittest import mock

from elasticsearch import BadRequestError, NotFoundError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from recommender.core.config import Settings
from recommender.models import Activity, Base, Category, User


def es_error(cls, status, message="error"):
    return cls(message, meta=mock.Mock(status=status), body={"error": {"type": message}})


def make_session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def make_settings(**overrides):
    values = {
        "database_url": "sqlite://",
        "redis_settings_enabled": False,
        "es_index": "friends",
        "populate_batch_size": 50,
        "populate_page_timeout": 60,
        "default_max_recommendations": 5,
    }
    values.update(overrides)
    return Settings(**values)


def seed_activities(session, count, published=True, priority=None, start_id=1):
    activities = []
    for i in range(start_id, start_id + count):
        activities.append(Activity(
            id=i,
            title=f"Activity {i}",
            is_published=published,
            priority=priority if priority is not None else i % 3,
            time_restriction=0,
        ))
    session.add_all(activities)
    session.commit()
    return activities


def seed_catalog(session):
    """Three users, five activities and two categories with known relations."""
    art = Category(id=1, name="art")
    music = Category(id=2, name="music")
    users = [User(id=i, name=f"user {i}") for i in (1, 2, 3)]
    activities = [
        Activity(id=1, title="Sketch a statue", priority=1, categories=[art]),
        Activity(id=2, title="Gallery tour", priority=5, categories=[art]),
        Activity(id=3, title="Concert", priority=2, categories=[music]),
        Activity(id=4, title="Listen to the organ", priority=2, categories=[music]),
        Activity(
            id=5,
            title="Summer workshop",
            priority=9,
            categories=[art, music],
            time_restriction=2,
            time_restriction_data={"days": {"1": True, "7": False}},
            date_begin=datetime.datetime(2024, 6, 1),
            date_end=datetime.datetime(2024, 8, 31),
        ),
    ]
    users[0].activities = [activities[0], activities[2]]
    users[1].activities = [activities[0], activities[1], activities[2]]
    users[2].activities = [activities[2]]
    session.add_all(users + activities)
    session.commit()
    return users, activities


class FakeIndices:

    def __init__(self, es):
        self._es = es

    def create(self, index):
        self._es.record("create", index)
        if index in self._es.store:
            raise es_error(BadRequestError, 400, "resource_already_exists_exception")
        self._es.store[index] = {"mappings": {}, "docs": {}}
        return {"acknowledged": True, "index": index}

    def delete(self, index):
        self._es.record("delete", index)
        if index not in self._es.store:
            raise es_error(NotFoundError, 404, "index_not_found_exception")
        del self._es.store[index]
        return {"acknowledged": True}

    def exists(self, index):
        return index in self._es.store

    def get_mapping(self, index):
        self._es.record("get_mapping", index)
        if index not in self._es.store:
            raise es_error(NotFoundError, 404, "index_not_found_exception")
        return {index: {"mappings": copy.deepcopy(self._es.store[index]["mappings"])}}

    def put_mapping(self, index, body):
        self._es.record("put_mapping", index, body)
        mappings = self._es.store[index]["mappings"]
        mappings.setdefault("properties", {}).update(copy.deepcopy(body.get("properties", {})))
        if "dynamic_templates" in body:
            mappings["dynamic_templates"] = copy.deepcopy(body["dynamic_templates"])
        return {"acknowledged": True}


class FakeElasticsearch:
    """Keeps documents per index and understands the queries the engine sends."""

    def __init__(self):
        self.store = {}
        self.calls = []
        self.indices = FakeIndices(self)

    def record(self, name, index=None, payload=None):
        self.calls.append((name, index, payload))

    def count(self, name):
        return len([c for c in self.calls if c[0] == name])

    def payloads(self, name):
        return [c[2] for c in self.calls if c[0] == name]

    def ping(self):
        return True

    def _docs(self, index):
        if index not in self.store:
            self.store[index] = {"mappings": {}, "docs": {}}
        return self.store[index]["docs"]

    # ── Documents ────────────────────────────────────────────────────────

    def bulk(self, operations):
        self.record("bulk", None, list(operations))
        items = []
        for action, source in zip(operations[0::2], operations[1::2]):
            meta = action["index"]
            self._docs(meta["_index"])[meta["_id"]] = copy.deepcopy(source)
            items.append({"index": {"_index": meta["_index"], "_id": meta["_id"], "status": 201}})
        return {"errors": False, "items": items}

    def index(self, index, id, document):
        self.record("index", index, {"id": id, "document": document})
        self._docs(index)[id] = copy.deepcopy(document)
        return {"result": "created"}

    def update(self, index, id, doc):
        self.record("update", index, {"id": id, "doc": doc})
        docs = self.store.get(index, {}).get("docs", {})
        if id not in docs:
            raise es_error(NotFoundError, 404, "document_missing_exception")
        docs[id].update(copy.deepcopy(doc))
        return {"result": "updated"}

    # ── Search ───────────────────────────────────────────────────────────

    def search(self, index, body):
        self.record("search", index, copy.deepcopy(body))
        if index not in self.store:
            raise es_error(NotFoundError, 404, "index_not_found_exception")
        docs = self.store[index]["docs"]
        hits = [(doc_id, source) for doc_id, source in docs.items() if self._matches(body.get("query", {}), doc_id, source)]

        for spec in reversed(body.get("sort", [])):
            (field, options), = spec.items()
            if field == "_score":
                continue
            if field == "_script":
                name = options["script"]["source"].split("'")[1]
                hits.sort(key=lambda h: len(self._values(h[1].get(name))), reverse=True)
            else:
                hits.sort(key=lambda h: h[1].get(field) or 0, reverse=True)

        hits = hits[body.get("from", 0):body.get("from", 0) + body.get("size", 10)]
        return {
            "hits": {
                "total": {"value": len(hits)},
                "hits": [
                    {
                        "_index": index,
                        "_id": doc_id,
                        "_score": 1.0,
                        **({} if body.get("_source") is False else {"_source": copy.deepcopy(source)}),
                    }
                    for doc_id, source in hits
                ],
            }
        }

    @staticmethod
    def _values(value):
        if value is None:
            return []
        return value if isinstance(value, list) else [value]

    def _matches(self, query, doc_id, source):
        if not query or "match_all" in query:
            return True
        if "ids" in query:
            return doc_id in query["ids"]["values"]
        if "more_like_this" in query:
            return self._more_like_this(query["more_like_this"], doc_id, source)
        if "bool" in query:
            clause = query["bool"]
            if any(not self._matches(q, doc_id, source) for q in clause.get("must", [])):
                return False
            if any(self._matches(q, doc_id, source) for q in clause.get("must_not", [])):
                return False
            # Filters are accepted as-is; their DSL is asserted on directly
            return True
        return True

    def _more_like_this(self, mlt, doc_id, source):
        terms = set()
        liked = set()
        for like in mlt["like"]:
            liked.add((like["_index"], like["_id"]))
            other = self.store.get(like["_index"], {}).get("docs", {}).get(like["_id"])
            if other is None:
                continue
            for field in mlt["fields"]:
                terms.update((field, str(v)) for v in self._values(other.get(field)))
        if any(doc_id == liked_id for _, liked_id in liked):
            return False
        return any((field, str(v)) in terms for field in mlt["fields"] for v in self._values(source.get(field)))
