# src/docmapper/query/operators.py

import logging
from enum import Enum
from typing import Dict, Tuple

from ..base.exceptions import QueryError

log = logging.getLogger(__name__)


class FilterOperator(Enum):
    """
    Filter operators understood by ``Query.filter``.

    Each member carries the native operator it renders to and the strings that
    select it in a ``"field op"`` filter expression.
    """

    EQUAL = ("$eq", ("=", "==", "eq"))
    NOT_EQUAL = ("$ne", ("!=", "<>", "ne"))
    GREATER_THAN = ("$gt", (">", "gt"))
    GREATER_THAN_OR_EQUAL = ("$gte", (">=", "gte"))
    LESS_THAN = ("$lt", ("<", "lt"))
    LESS_THAN_OR_EQUAL = ("$lte", ("<=", "lte"))
    IN = ("$in", ("in",))
    NOT_IN = ("$nin", ("nin",))
    ALL = ("$all", ("all",))
    SIZE = ("$size", ("size",))
    MOD = ("$mod", ("mod",))
    EXISTS = ("$exists", ("exists",))
    TYPE = ("$type", ("type",))
    ELEMENT_MATCH = ("$elemMatch", ("elem", "elemMatch"))
    NEAR = ("$near", ("near",))
    NEAR_SPHERE = ("$nearSphere", ("nearSphere",))
    GEO_WITHIN = ("$geoWithin", ("within", "geoWithin"))
    WHERE = ("$where", ())
    NOT = ("$not", ())

    def __init__(self, operator: str, filters: Tuple[str, ...]):
        self.operator = operator
        self.filters = filters

    def matches(self, filter_string: str) -> bool:
        return filter_string in self.filters

    @classmethod
    def from_string(cls, filter_string: str) -> "FilterOperator":
        operator = _BY_FILTER.get(filter_string.strip())
        if operator is None:
            raise QueryError(f"Unknown operator '{filter_string}'")
        return operator

    def __repr__(self) -> str:
        return f"FilterOperator.{self.name}"


_BY_FILTER: Dict[str, FilterOperator] = {
    text: member for member in FilterOperator for text in member.filters
}
