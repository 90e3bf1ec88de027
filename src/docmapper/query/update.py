# src/docmapper/query/update.py

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Generic, List, Optional, Tuple, Type, TypeVar, Union

from ..base.exceptions import QueryError, ValueTypeError
from ..base.model_validator import TypeValidator, element_hint, is_numeric_hint, type_name, unwrap_optional
from ..mapping.mapped_field import MappedField
from .operators import FilterOperator
from .path import PathTarget
from .validation import is_compatible_for_operator

if TYPE_CHECKING:
    from ..mapping.mapper import Mapper

M = TypeVar("M")

_type_validator = TypeValidator()


class UpdateOperations(Generic[M]):
    """
    Builds a native update document for one mapped class.

    Directives are kept as ``{operator: {field: value}}``; a second directive
    for the same operator and field replaces the first. ``get_operations``
    renders a fresh document each time and adds the version increment for
    versioned classes.
    """

    def __init__(self, model_cls: Type[M], mapper: "Mapper") -> None:
        self.model_cls = model_cls
        self._mapper = mapper
        self._ops: Dict[str, Dict[str, Any]] = {}
        self._isolated = False
        self._validating = True
        self._logger = logging.getLogger(__name__)
        self._logger.debug(f"Initialized UpdateOperations for model: {model_cls.__name__}")

    # --- Flags ---
    def isolated(self) -> "UpdateOperations[M]":
        self._isolated = True
        return self

    def is_isolated(self) -> bool:
        return self._isolated

    def disable_validation(self) -> "UpdateOperations[M]":
        self._validating = False
        return self

    def enable_validation(self) -> "UpdateOperations[M]":
        self._validating = True
        return self

    # --- Helpers ---
    def _target(self, field: str) -> Tuple[str, Optional[MappedField]]:
        target = PathTarget(self._mapper, self.model_cls, field, self._validating)
        return target.translated_path, target.target

    def _assign(self, operator: str, field: str, value: Any) -> "UpdateOperations[M]":
        self._require_value(value)
        target = PathTarget(self._mapper, self.model_cls, field, self._validating)
        self._check_value(target.target, value)
        return self._add(operator, target.translated_path, self._map(target.value_field, value))

    def _add(self, operator: str, field: str, value: Any) -> "UpdateOperations[M]":
        self._ops.setdefault(operator, {})[field] = value
        self._logger.debug(f"Added update directive {operator} {field}: {value!r}")
        return self

    def _require_value(self, value: Any) -> None:
        if value is None:
            raise QueryError("Value cannot be null.")

    def _check_value(self, mf: Optional[MappedField], value: Any) -> None:
        if not self._validating or mf is None:
            return
        failures: List[str] = []
        mc = self._mapper.get_mapped_class(self.model_cls)
        if not is_compatible_for_operator(mc, mf, mf.generic_type, FilterOperator.EQUAL, value, failures):
            raise ValueTypeError(
                f"Cannot store {value!r} ({type(value).__name__}) in '{mf.full_name}' "
                f"declared as {type_name(mf.generic_type)}: {'; '.join(failures)}"
            )

    def _check_elements(self, mf: Optional[MappedField], values: List[Any]) -> None:
        if not self._validating or mf is None or mf.is_reference:
            return
        item_type = element_hint(mf.generic_type)
        for value in values:
            if not _type_validator.is_valid(value, item_type):
                raise ValueTypeError(
                    f"Cannot add {value!r} ({type(value).__name__}) to '{mf.full_name}' "
                    f"whose elements are {type_name(item_type)}"
                )

    def _require_numeric_target(self, mf: Optional[MappedField], operator: str) -> None:
        if not self._validating or mf is None:
            return
        target = unwrap_optional(mf.generic_type)
        if target is Any or is_numeric_hint(target):
            return
        raise ValueTypeError(
            f"Cannot apply {operator} to non-numeric field '{mf.full_name}' (type: {type_name(target)})."
        )

    def _require_array_target(self, mf: Optional[MappedField], operator: str) -> None:
        if not self._validating or mf is None:
            return
        if mf.is_multiple_values or unwrap_optional(mf.generic_type) is Any:
            return
        raise ValueTypeError(
            f"Cannot apply {operator} to non-array field '{mf.full_name}' (type: {type_name(mf.generic_type)})."
        )

    def _map(self, mf: Optional[MappedField], value: Any) -> Any:
        return self._mapper.to_query_value(value, mf)

    def _map_elements(self, mf: Optional[MappedField], values: List[Any]) -> List[Any]:
        return [self._map(mf, v) for v in values]

    @staticmethod
    def _as_list(value: Any) -> List[Any]:
        if isinstance(value, (list, tuple, set, frozenset)):
            return list(value)
        return [value]

    # --- Directives ---
    def set(self, field: str, value: Any) -> "UpdateOperations[M]":
        return self._assign("$set", field, value)

    def set_on_insert(self, field: str, value: Any) -> "UpdateOperations[M]":
        return self._assign("$setOnInsert", field, value)

    def unset(self, field: str) -> "UpdateOperations[M]":
        path, _ = self._target(field)
        return self._add("$unset", path, 1)

    def inc(self, field: str, value: Union[int, float] = 1) -> "UpdateOperations[M]":
        self._require_value(value)
        if isinstance(value, (bool, Decimal)) or not isinstance(value, (int, float)):
            raise TypeError(
                "Currently only the following types are allowed: integer, long, double, float."
            )
        path, mf = self._target(field)
        self._require_numeric_target(mf, "$inc")
        return self._add("$inc", path, value)

    def dec(self, field: str, value: Union[int, float] = 1) -> "UpdateOperations[M]":
        self._require_value(value)
        if isinstance(value, (bool, Decimal)) or not isinstance(value, (int, float)):
            raise TypeError(
                "Currently only the following types are allowed: integer, long, double, float."
            )
        return self.inc(field, -value)

    def max(self, field: str, value: Any) -> "UpdateOperations[M]":
        self._require_value(value)
        path, mf = self._target(field)
        self._require_numeric_target(mf, "$max")
        self._check_value(mf, value)
        return self._add("$max", path, self._map(mf, value))

    def min(self, field: str, value: Any) -> "UpdateOperations[M]":
        self._require_value(value)
        path, mf = self._target(field)
        self._require_numeric_target(mf, "$min")
        self._check_value(mf, value)
        return self._add("$min", path, self._map(mf, value))

    def push(
        self,
        field: str,
        value: Any,
        position: Optional[int] = None,
        slice: Optional[int] = None,
        sort: Optional[Union[int, Dict[str, int]]] = None,
    ) -> "UpdateOperations[M]":
        """Append one value or a list of values, optionally at ``position``."""
        self._require_value(value)
        path, mf = self._target(field)
        self._require_array_target(mf, "$push")
        values = self._as_list(value)
        self._check_elements(mf, values)
        spec: Dict[str, Any] = {"$each": self._map_elements(mf, values)}
        if position is not None:
            spec["$position"] = position
        if slice is not None:
            spec["$slice"] = slice
        if sort is not None:
            spec["$sort"] = sort
        return self._add("$push", path, spec)

    def add_to_set(self, field: str, value: Any) -> "UpdateOperations[M]":
        self._require_value(value)
        path, mf = self._target(field)
        self._require_array_target(mf, "$addToSet")
        if isinstance(value, (list, tuple, set, frozenset)):
            values = list(value)
            self._check_elements(mf, values)
            return self._add("$addToSet", path, {"$each": self._map_elements(mf, values)})
        self._check_elements(mf, [value])
        return self._add("$addToSet", path, self._map(mf, value))

    def remove_all(self, field: str, value: Any) -> "UpdateOperations[M]":
        """Remove every occurrence of ``value``; a list removes each of its values."""
        self._require_value(value)
        path, mf = self._target(field)
        self._require_array_target(mf, "$pull")
        if isinstance(value, (list, tuple, set, frozenset)):
            return self._add("$pullAll", path, self._map_elements(mf, list(value)))
        return self._add("$pull", path, self._map(mf, value))

    def remove_first(self, field: str) -> "UpdateOperations[M]":
        path, mf = self._target(field)
        self._require_array_target(mf, "$pop")
        return self._add("$pop", path, -1)

    def remove_last(self, field: str) -> "UpdateOperations[M]":
        path, mf = self._target(field)
        self._require_array_target(mf, "$pop")
        return self._add("$pop", path, 1)

    # --- Rendering ---
    def get_operations(self) -> Dict[str, Dict[str, Any]]:
        operations = {op: dict(fields) for op, fields in self._ops.items()}
        version = self._mapper.get_mapped_class(self.model_cls).version_field
        if version is not None:
            touched = any(version.name_to_store in fields for fields in operations.values())
            if not touched:
                operations.setdefault("$inc", {})[version.name_to_store] = 1
        return operations

    def __repr__(self) -> str:
        if not self._ops:
            return f"UpdateOperations<{self.model_cls.__name__}>({{}})"
        return f"UpdateOperations<{self.model_cls.__name__}>({self._ops!r})"

    def __bool__(self) -> bool:
        return bool(self._ops)

    def __len__(self) -> int:
        return sum(len(fields) for fields in self._ops.values())
