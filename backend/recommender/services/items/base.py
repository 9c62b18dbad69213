"""
base.py

Base class for recommendation item definitions.

An item definition describes one kind of recommendable entity: the SQLAlchemy
model it reads from, which fields are indexed (features, filters and weight
features), how those fields are projected from an entity and which fields hold
references to other item types.
"""
import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Query, Session

from recommender.schemas import FieldSpec, FilterExpr, ItemFilter, StructuredFilter, TextFilter

logger = logging.getLogger(__name__)

FieldDeclaration = Union[str, FieldSpec]


def as_field_spec(declaration: FieldDeclaration) -> FieldSpec:
    if isinstance(declaration, FieldSpec):
        return declaration
    return FieldSpec(name=declaration)


class ItemType:
    """Base recommendation item definition.

    Subclasses set ``key`` and ``model`` and override the feature, filter,
    weight and relation declarations. A field value is projected by
    ``get_<field>(entity)`` when the subclass defines it, otherwise by reading
    the attribute of the same name.
    """

    key: str = ""
    model: Any = None

    # Capability flag for item types contributing extra mapping fragments
    extended_mapping_enabled: bool = False

    # Declarations
    def features(self) -> List[FieldDeclaration]:
        return []

    def filters(self) -> List[FieldDeclaration]:
        return []

    def weight_features(self) -> List[FieldDeclaration]:
        return []

    def item_relations(self) -> Dict[str, str]:
        """Related item key -> field on this item holding the related ids."""
        return {}

    # Relational source
    @property
    def primary_key_name(self) -> str:
        return self.model.__mapper__.primary_key[0].name

    def primary_key_column(self):
        return getattr(self.model, self.primary_key_name)

    def query_scope(self, session: Session) -> Query:
        return session.query(self.model)

    def primary_key(self, entity) -> Any:
        return getattr(entity, self.primary_key_name)

    # Active declarations used by the engine
    def active_features(self) -> List[str]:
        return [as_field_spec(f).name for f in self.features()]

    def active_weight_feature(self) -> Optional[str]:
        weights = self.weight_features()
        return as_field_spec(weights[0]).name if weights else None

    def relation_field(self, related_key: str) -> Optional[str]:
        return self.item_relations().get(related_key)

    def filter_expressions(self, backend: str = "elasticsearch") -> List[ItemFilter]:
        """Resolve each declared filter through ``filter_<field>(backend)``.

        A dict is taken as a query DSL fragment, a string as a free-text query.
        Filters without an expression method are not applied.
        """
        expressions = []
        for declaration in self.filters():
            name = as_field_spec(declaration).name
            method = getattr(self, f"filter_{name}", None)
            if method is None:
                continue
            exp = method(backend)
            if exp is None:
                continue
            expressions.append(ItemFilter(field=name, expression=self._filter_expr(exp)))
        return expressions

    @staticmethod
    def _filter_expr(exp: Any) -> FilterExpr:
        if isinstance(exp, (StructuredFilter, TextFilter)):
            return exp
        if isinstance(exp, dict):
            return StructuredFilter(fragment=exp)
        if isinstance(exp, str):
            return TextFilter(query=exp)
        raise TypeError(f"Unsupported filter expression: {exp!r}")

    # Mapping
    def data_fields(self) -> List[FieldSpec]:
        """Ordered, de-duplicated field list: features, filters, weight features."""
        fields: Dict[str, FieldSpec] = {}
        for declaration in self.features() + self.filters() + self.weight_features():
            spec = as_field_spec(declaration)
            fields.setdefault(spec.name, spec)
        return list(fields.values())

    def has_extended_mapping(self) -> bool:
        return self.extended_mapping_enabled

    def extended_mapping(self, base: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    # Projection
    def project_fields(self, entity) -> Dict[str, Any]:
        data: Dict[str, Any] = {self.primary_key_name: self.primary_key(entity)}
        for spec in self.data_fields():
            getter = getattr(self, f"get_{spec.name}", None)
            if getter is not None:
                data[spec.name] = getter(entity)
            else:
                data[spec.name] = getattr(entity, spec.name, None)
        return data

    def __repr__(self) -> str:
        return f"<{type(self).__name__} key={self.key!r}>"
