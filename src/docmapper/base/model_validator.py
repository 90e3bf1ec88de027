# src/docmapper/base/model_validator.py

# --- Required imports ---
import logging
import re
from collections.abc import Mapping as AbcMapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from inspect import isclass
from typing import (
    Any,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    Type,
    Union,
    get_args,
    get_origin,
)
from uuid import UUID

from bson import Binary, Code, DBRef, Decimal128, Int64, MaxKey, MinKey, ObjectId, Regex, Timestamp

from .exceptions import ValueTypeError

# --- Setup Logging ---
log = logging.getLogger(__name__)

# Types stored as BSON scalars; everything else that is a class is mapped as a sub-document.
SIMPLE_TYPES: Tuple[type, ...] = (
    str,
    bytes,
    bool,
    int,
    float,
    Decimal,
    date,
    datetime,
    UUID,
    ObjectId,
    Decimal128,
    Int64,
    DBRef,
    Binary,
    Regex,
    Timestamp,
    Code,
    MinKey,
    MaxKey,
    re.Pattern,
    type(None),
)

_SEQUENCE_ORIGINS = (list, List, tuple, Tuple, set, Set, frozenset, FrozenSet)
_MAPPING_ORIGINS = (dict, Dict, Mapping, AbcMapping)


# --- Helper Functions ---
def _is_none_type(t: Optional[Type]) -> bool:
    return t is type(None)


def _origin_to_class(origin: Optional[Type]) -> Optional[Type]:
    if origin is None:
        return None
    map_ = {
        list: list,
        List: list,
        dict: dict,
        Dict: dict,
        set: set,
        Set: set,
        frozenset: frozenset,
        FrozenSet: frozenset,
        tuple: tuple,
        Tuple: tuple,
        Mapping: dict,
        AbcMapping: dict,
    }
    mapped = map_.get(origin, origin)
    return mapped if isclass(mapped) else origin


def unwrap_optional(hint: Any) -> Any:
    """Return ``X`` for ``Optional[X]``; any other hint is returned unchanged."""
    if get_origin(hint) is Union:
        non_none = [t for t in get_args(hint) if not _is_none_type(t)]
        if len(non_none) == 1:
            return non_none[0]
    return hint


def is_sequence_hint(hint: Any) -> bool:
    hint = unwrap_optional(hint)
    return get_origin(hint) in _SEQUENCE_ORIGINS or hint in (list, tuple, set, frozenset)


def is_mapping_hint(hint: Any) -> bool:
    hint = unwrap_optional(hint)
    return get_origin(hint) in _MAPPING_ORIGINS or hint in (dict, AbcMapping)


def element_hint(hint: Any) -> Any:
    """The item type of a sequence hint or the value type of a mapping hint."""
    hint = unwrap_optional(hint)
    args = get_args(hint)
    if is_mapping_hint(hint):
        return args[1] if len(args) == 2 else Any
    if is_sequence_hint(hint):
        return args[0] if args else Any
    return hint


def is_struct_type(t: Any) -> bool:
    """True for classes whose instances are stored as sub-documents."""
    if not isinstance(t, type) or t is object:
        return False
    if issubclass(t, SIMPLE_TYPES) or issubclass(t, Enum):
        return False
    if issubclass(t, (list, tuple, set, frozenset, dict, AbcMapping)):
        return False
    return not getattr(t, "__docmapper_key__", False)


def is_numeric_hint(hint: Any) -> bool:
    hint = unwrap_optional(hint)
    if get_origin(hint) is Union:
        return any(is_numeric_hint(a) for a in get_args(hint) if not _is_none_type(a))
    if hint is Any or hint is bool or not isinstance(hint, type):
        return False
    return issubclass(hint, (int, float, Decimal, Decimal128)) and not issubclass(hint, bool)


def type_name(type_obj: Any) -> str:
    if _is_none_type(type_obj):
        return "NoneType"
    if type_obj is Any:
        return "Any"
    if isinstance(type_obj, type):
        return type_obj.__name__
    return str(type_obj).replace("typing.", "")


# --- Type Validator ---
class TypeValidator:
    """Checks whether a Python value can be stored in, or compared against, a typed field."""

    def validate_value(self, value: Any, expected_type: Any, path: str = "value") -> None:
        log.debug(f"Validate: {value!r} ({type(value)}) vs {expected_type!r} at '{path}'")
        origin = get_origin(expected_type)
        args = get_args(expected_type)
        if origin is Union and any(_is_none_type(t) for t in args):
            if value is None:
                return
            self.validate_value(value, unwrap_optional(expected_type), path)
            return
        if expected_type is Any or expected_type is object or value is None:
            return
        if origin is Union:
            self._validate_union(value, args, expected_type, path)
            return
        check_origin = origin or expected_type
        if check_origin in _SEQUENCE_ORIGINS:
            self._validate_collection(value, expected_type, args, path)
            return
        if check_origin in _MAPPING_ORIGINS:
            self._validate_dict(value, expected_type, args, path)
            return
        if isinstance(check_origin, type):
            self._validate_class(value, check_origin, path)
            return
        log.debug(f"    Cannot check against non-class {expected_type!r}; accepting.")

    def is_valid(self, value: Any, expected_type: Any) -> bool:
        try:
            self.validate_value(value, expected_type)
        except ValueTypeError:
            return False
        return True

    def _validate_union(self, value: Any, args: Tuple[Any, ...], union_type: Any, path: str):
        if isinstance(value, bool) and int in args and bool not in args:
            raise ValueTypeError(
                f"Path '{path}': bool invalid for {type_name(union_type)} allowing int but not bool."
            )
        for t in args:
            if self.is_valid(value, t):
                return
        raise ValueTypeError(
            f"Path '{path}': value {value!r} matches no member of {type_name(union_type)}."
        )

    def _validate_collection(self, value: Any, expected_type: Any, args: Tuple[Any, ...], path: str):
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueTypeError(self._format_error_message(path, expected_type, value))
        if not args:
            return
        item_type = args[0]
        for i, item in enumerate(value):
            self.validate_value(item, item_type, f"{path}[{i}]")

    def _validate_dict(self, value: Any, expected_type: Any, args: Tuple[Any, ...], path: str):
        if not isinstance(value, AbcMapping):
            raise ValueTypeError(self._format_error_message(path, expected_type, value))
        if len(args) == 2 and args[1] is not Any:
            for k, item in value.items():
                self.validate_value(item, args[1], f"{path}[{k!r}]")

    def _validate_class(self, value: Any, expected_type: type, path: str):
        if expected_type is not bool and isinstance(value, bool) and issubclass(expected_type, (int, float)):
            raise ValueTypeError(self._format_error_message(path, expected_type, value))
        if isinstance(value, expected_type):
            return
        if expected_type is float and isinstance(value, int):
            return
        if is_struct_type(expected_type) and isinstance(value, AbcMapping):
            # A raw sub-document stands in for an embedded object.
            return
        raise ValueTypeError(self._format_error_message(path, expected_type, value))

    def _format_error_message(self, path: str, expected_type: Any, value: Any) -> str:
        value_repr = repr(value)
        value_repr = value_repr[:100] + "..." if len(value_repr) > 100 else value_repr
        return (
            f"Path '{path}': expected type {type_name(expected_type)}, "
            f"got {value_repr} ({type(value).__name__})."
        )
