# src/docmapper/query/criteria.py
import copy
import logging
import re
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from ..base.exceptions import QueryError, ValueTypeError
from ..base.model_validator import type_name
from .operators import FilterOperator
from .path import PathTarget
from .shape import Shape
from .validation import is_compatible_for_operator

if TYPE_CHECKING:
    from .field_end import FieldEnd
    from .query import Query

# --- Setup Logging ---
log = logging.getLogger(__name__)

_MULTI_VALUE_OPERATORS = (FilterOperator.IN, FilterOperator.NOT_IN, FilterOperator.ALL)


class CriteriaJoin(Enum):
    AND = "$and"
    OR = "$or"


# --- Criteria Tree ---
class Criteria:
    """A node of the criteria tree; renders itself into a filter document."""

    attached_to: Optional["CriteriaContainer"] = None

    def add_to(self, document: Dict[str, Any]) -> None:
        raise NotImplementedError

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {}
        self.add_to(document)
        return document

    def attach(self, container: "CriteriaContainer") -> None:
        if self.attached_to is not None and self.attached_to is not container:
            self.attached_to.remove(self)
        self.attached_to = container

    def field_name(self) -> Optional[str]:
        return None


class CriteriaContainer(Criteria):
    """Groups criteria under an AND or an OR."""

    def __init__(self, query: "Query", join: CriteriaJoin = CriteriaJoin.AND):
        self.query = query
        self.join = join
        self.children: List[Criteria] = []
        self.attached_to = None

    def add(self, *criteria: Criteria) -> "CriteriaContainer":
        for c in criteria:
            c.attach(self)
            if not any(existing is c for existing in self.children):
                self.children.append(c)
        return self

    def remove(self, criteria: Criteria) -> None:
        self.children = [c for c in self.children if c is not criteria]

    def and_(self, *criteria: Criteria) -> "CriteriaContainer":
        return self._collect(CriteriaJoin.AND, criteria)

    def or_(self, *criteria: Criteria) -> "CriteriaContainer":
        return self._collect(CriteriaJoin.OR, criteria)

    def _collect(self, join: CriteriaJoin, criteria: Tuple[Criteria, ...]) -> "CriteriaContainer":
        container = CriteriaContainer(self.query, join)
        container.add(*criteria)
        self.add(container)
        log.debug(f"Grouped {len(criteria)} criteria under {join.value}")
        return container

    def criteria(self, field: str) -> "FieldEnd":
        """Start a criteria on ``field``; its terminal method returns the new criteria."""
        from .field_end import FieldEnd

        return FieldEnd(self.query, field, self, return_criteria=True)

    def is_empty(self) -> bool:
        return not self.children

    def add_to(self, document: Dict[str, Any]) -> None:
        parts = [c.to_document() for c in self.children]
        parts = [p for p in parts if p]
        if not parts:
            return
        if self.join is CriteriaJoin.OR:
            _merge_and(document, [{"$or": parts}])
        else:
            _merge_and(document, parts)

    def copy(self, query: "Query") -> "CriteriaContainer":
        clone = CriteriaContainer(query, self.join)
        for child in self.children:
            if isinstance(child, CriteriaContainer):
                child_copy = child.copy(query)
            else:
                child_copy = copy.copy(child)
                child_copy.attached_to = None
            clone.add(child_copy)
        return clone

    def __repr__(self) -> str:
        return f"CriteriaContainer({self.join.name}, {self.children!r})"


def _is_operator_document(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(k.startswith("$") for k in value)


def _can_merge(document: Dict[str, Any], part: Dict[str, Any]) -> bool:
    for key, value in part.items():
        if key not in document:
            continue
        existing = document[key]
        if not (_is_operator_document(existing) and _is_operator_document(value)):
            return False
        if set(existing) & set(value):
            return False
    return True


def _merge_and(document: Dict[str, Any], parts: List[Dict[str, Any]]) -> None:
    """AND the parts into ``document``; conflicting parts go under ``$and``."""
    conflicts = []
    for part in parts:
        if not _can_merge(document, part):
            conflicts.append(part)
            continue
        for key, value in part.items():
            if key in document:
                document[key] = {**document[key], **value}
            else:
                document[key] = dict(value) if isinstance(value, dict) else value
    if conflicts:
        document.setdefault("$and", [])
        document["$and"] = list(document["$and"]) + conflicts


# --- Leaf Criteria ---
class FieldCriteria(Criteria):
    """``field <operator> value``, validated against the query's class when created."""

    def __init__(
        self,
        query: "Query",
        field: str,
        operator: FilterOperator,
        value: Any,
        not_: bool = False,
    ):
        self.attached_to = None
        self.operator = operator
        self.not_ = not_
        mapper = query.mapper
        target = PathTarget(mapper, query.entity_class, field, query.is_validating)
        self.field = target.translated_path
        mf = target.target

        if query.is_validating and mf is not None:
            failures: List[str] = []
            mc = mapper.get_mapped_class(query.entity_class)
            if not is_compatible_for_operator(mc, mf, mf.generic_type, operator, value, failures):
                raise ValueTypeError(
                    f"The value {value!r} ({type(value).__name__}) cannot be used with "
                    f"{operator.operator} on the field '{mf.full_name}' declared as "
                    f"{type_name(mf.generic_type)}: {'; '.join(failures)}"
                )

        self.value = self._map_value(mapper, target.value_field, operator, value)
        log.debug(f"Created criteria {self!r}")

    @staticmethod
    def _map_value(mapper, mf, operator: FilterOperator, value: Any) -> Any:
        if isinstance(value, Shape):
            return value.to_document()
        if hasattr(value, "get_query_document"):
            return value.get_query_document()
        if operator in _MULTI_VALUE_OPERATORS:
            if isinstance(value, dict):
                return mapper.to_query_value(value)
            if not isinstance(value, (list, tuple, set, frozenset)):
                value = [value]
            return [mapper.to_query_value(v, mf) for v in value]
        if operator in (FilterOperator.MOD, FilterOperator.TYPE, FilterOperator.EXISTS, FilterOperator.SIZE):
            return value
        return mapper.to_query_value(value, mf)

    def field_name(self) -> str:
        return self.field

    def add_to(self, document: Dict[str, Any]) -> None:
        if self.operator is FilterOperator.EQUAL:
            if not self.not_:
                document[self.field] = self.value
            elif isinstance(self.value, re.Pattern):
                document[self.field] = {"$not": self.value}
            else:
                document[self.field] = {"$ne": self.value}
            return
        inner = {self.operator.operator: self.value}
        document[self.field] = {"$not": inner} if self.not_ else inner

    def __repr__(self) -> str:
        prefix = "not " if self.not_ else ""
        return f"FieldCriteria({self.field!r} {prefix}{self.operator.operator} {self.value!r})"


class GeoFieldCriteria(FieldCriteria):
    """``$near``/``$nearSphere`` with an optional ``$maxDistance``."""

    def __init__(
        self,
        query: "Query",
        field: str,
        operator: FilterOperator,
        point: Any,
        max_distance: Optional[float] = None,
    ):
        super().__init__(query, field, operator, point)
        self.max_distance = max_distance

    def add_to(self, document: Dict[str, Any]) -> None:
        inner: Dict[str, Any] = {self.operator.operator: self.value}
        if self.max_distance is not None:
            inner["$maxDistance"] = self.max_distance
        document[self.field] = inner


class WhereCriteria(Criteria):
    def __init__(self, js: str):
        if not js:
            raise QueryError("A $where criteria needs a JavaScript expression.")
        self.attached_to = None
        self.js = js

    def add_to(self, document: Dict[str, Any]) -> None:
        document[FilterOperator.WHERE.operator] = self.js

    def __repr__(self) -> str:
        return f"WhereCriteria({self.js!r})"


class RawCriteria(Criteria):
    """A pre-rendered filter document, e.g. ``$text`` or a query-by-example."""

    def __init__(self, document: Dict[str, Any]):
        self.attached_to = None
        self.document = document

    def add_to(self, document: Dict[str, Any]) -> None:
        for key, value in self.document.items():
            document[key] = copy.deepcopy(value)

    def __repr__(self) -> str:
        return f"RawCriteria({self.document!r})"
