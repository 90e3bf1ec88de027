# src/docmapper/query/field_end.py

import logging
import re
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from ..base.model_validator import is_struct_type
from .criteria import Criteria, CriteriaContainer, FieldCriteria, GeoFieldCriteria
from .operators import FilterOperator
from .shape import Shape

if TYPE_CHECKING:
    from .query import Query

log = logging.getLogger(__name__)

Result = Union["Query", Criteria]


class FieldEnd:
    """
    The operator half of ``query.field("name")``.

    Every terminal method adds one criteria to the owning container. Started
    from ``Query.field`` it returns the query for chaining; started from
    ``criteria`` it returns the new criteria so it can be grouped with
    ``and_``/``or_``.
    """

    def __init__(
        self,
        query: "Query",
        field: str,
        container: CriteriaContainer,
        return_criteria: bool = False,
    ):
        self._query = query
        self._field = field
        self._container = container
        self._return_criteria = return_criteria
        self._not = False

    def not_(self) -> "FieldEnd":
        """Negates the next operator."""
        self._not = not self._not
        return self

    def _add(self, operator: FilterOperator, value: Any) -> Result:
        criteria = FieldCriteria(self._query, self._field, operator, value, self._not)
        return self._attach(criteria)

    def _attach(self, criteria: Criteria) -> Result:
        self._container.add(criteria)
        self._not = False
        return criteria if self._return_criteria else self._query

    # --- Comparison ---
    def equal(self, value: Any) -> Result:
        return self._add(FilterOperator.EQUAL, value)

    def not_equal(self, value: Any) -> Result:
        return self._add(FilterOperator.NOT_EQUAL, value)

    def greater_than(self, value: Any) -> Result:
        return self._add(FilterOperator.GREATER_THAN, value)

    def greater_than_or_eq(self, value: Any) -> Result:
        return self._add(FilterOperator.GREATER_THAN_OR_EQUAL, value)

    def less_than(self, value: Any) -> Result:
        return self._add(FilterOperator.LESS_THAN, value)

    def less_than_or_eq(self, value: Any) -> Result:
        return self._add(FilterOperator.LESS_THAN_OR_EQUAL, value)

    # --- Existence ---
    def exists(self) -> Result:
        return self._add(FilterOperator.EXISTS, True)

    def does_not_exist(self) -> Result:
        return self._add(FilterOperator.EXISTS, False)

    # --- Membership ---
    def has_this_one(self, value: Any) -> Result:
        return self._add(FilterOperator.EQUAL, value)

    def has_any_of(self, values: Iterable[Any]) -> Result:
        return self._add(FilterOperator.IN, values)

    in_ = has_any_of

    def has_none_of(self, values: Iterable[Any]) -> Result:
        return self._add(FilterOperator.NOT_IN, values)

    not_in = has_none_of

    def has_all_of(self, values: Iterable[Any]) -> Result:
        return self._add(FilterOperator.ALL, values)

    # --- Arrays and Numbers ---
    def size_eq(self, size: int) -> Result:
        return self._add(FilterOperator.SIZE, size)

    def mod(self, divisor: int, remainder: int) -> Result:
        return self._add(FilterOperator.MOD, [divisor, remainder])

    def has_this_element(self, value: Any) -> Result:
        if is_struct_type(type(value)):
            value = self._query.mapper.codec.encode_value(value)
        return self._add(FilterOperator.ELEMENT_MATCH, value)

    def elem_match(self, query_or_document: Any) -> Result:
        return self._add(FilterOperator.ELEMENT_MATCH, query_or_document)

    def type(self, bson_type: Union[int, str]) -> Result:
        return self._add(FilterOperator.TYPE, bson_type)

    # --- Strings ---
    def _pattern(self, expression: str, ignore_case: bool) -> Result:
        flags = re.IGNORECASE if ignore_case else 0
        return self._add(FilterOperator.EQUAL, re.compile(expression, flags))

    def contains(self, text: str) -> Result:
        return self._pattern(re.escape(text), False)

    def contains_ignore_case(self, text: str) -> Result:
        return self._pattern(re.escape(text), True)

    def starts_with(self, prefix: str) -> Result:
        return self._pattern(f"^{re.escape(prefix)}", False)

    def starts_with_ignore_case(self, prefix: str) -> Result:
        return self._pattern(f"^{re.escape(prefix)}", True)

    def ends_with(self, suffix: str) -> Result:
        return self._pattern(f"{re.escape(suffix)}$", False)

    def ends_with_ignore_case(self, suffix: str) -> Result:
        return self._pattern(f"{re.escape(suffix)}$", True)

    def equal_ignore_case(self, text: str) -> Result:
        return self._pattern(f"^{re.escape(text)}$", True)

    # --- Geo ---
    def near(self, x: float, y: float, radius: Optional[float] = None, spherical: bool = False) -> Result:
        operator = FilterOperator.NEAR_SPHERE if spherical else FilterOperator.NEAR
        criteria = GeoFieldCriteria(self._query, self._field, operator, [x, y], radius)
        return self._attach(criteria)

    def within(self, shape: Shape) -> Result:
        return self._add(FilterOperator.GEO_WITHIN, shape)

    def __repr__(self) -> str:
        return f"FieldEnd({self._field!r}, not={self._not})"
