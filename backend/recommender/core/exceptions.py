"""
exceptions.py

Error kinds raised by the recommendation backend.
Search-engine failures are translated into these by ElasticSearchClient so
callers never depend on the elasticsearch client's exception hierarchy.
"""
from typing import Any, Dict, List, Optional


class RecommenderError(Exception):
    """Base exception for recommendation backend errors."""


class ConnectivityError(RecommenderError):
    """Raised when ElasticSearch is unreachable or a ping fails."""


class DocumentNotFoundError(RecommenderError):
    """Raised when a document addressed by (type, id) does not exist."""


class BadRequestError(RecommenderError):
    """Raised when ElasticSearch rejects a request (e.g. index already exists)."""


class QueryExecutionError(RecommenderError):
    """Raised when a query or write fails inside ElasticSearch."""


class BulkIndexError(QueryExecutionError):
    """Raised when one or more actions of a bulk submission were rejected."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class UnknownItemTypeError(RecommenderError, KeyError):
    """Raised when an item key or model class has no registered item type."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "unknown item type"


class PopulationTimeout(RecommenderError):
    """Raised when a single population page exceeds its time budget."""


class PopulationCancelled(RecommenderError):
    """Raised when a population run is cancelled between pages."""
