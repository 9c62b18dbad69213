"""
schemas.py

Pydantic value types shared by the item definitions, the query engine and the API.
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class FieldSpec(BaseModel):
    """ElasticSearch mapping of one item field."""
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "text"
    analyzer: Optional[str] = "standard"
    options: Dict[str, Any] = Field(default_factory=dict)

    def to_mapping(self) -> Dict[str, Any]:
        mapping: Dict[str, Any] = {"type": self.type}
        if self.type == "text" and self.analyzer:
            mapping["analyzer"] = self.analyzer
        mapping.update(self.options)
        return mapping


class StructuredFilter(BaseModel):
    """Filter already expressed in the ElasticSearch query DSL."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["structured"] = "structured"
    fragment: Dict[str, Any]

    def to_query(self) -> Dict[str, Any]:
        return self.fragment


class TextFilter(BaseModel):
    """Free-text filter, rendered as a query_string clause."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    query: str

    def to_query(self) -> Dict[str, Any]:
        return {"query_string": {"query": self.query}}


FilterExpr = Union[StructuredFilter, TextFilter]


class ItemFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    expression: FilterExpr = Field(discriminator="kind")


class RelatedDocument(BaseModel):
    """A document of another item type the user is related to."""
    model_config = ConfigDict(frozen=True)

    item_type: str
    id: str


class RecommendationRequest(BaseModel):
    user_id: Optional[int] = None
    item_keys: List[str]
    limit: Optional[int] = None


class IndexHealth(BaseModel):
    connected: bool
    indices: Dict[str, bool] = Field(default_factory=dict)
