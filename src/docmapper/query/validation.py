# src/docmapper/query/validation.py

"""
Operator compatibility checks.

A fixed chain of validators decides whether a filter value can be used with an
operator on a given field. Operation validators are consulted first and are
selected by operator; when none applies, the first type validator that applies
to the value decides. A validator records a human-readable failure when it
rejects the pair.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any, List, Optional

from bson import DBRef

from ..annotations import ENTITY_ATTR
from ..base.model_validator import (
    TypeValidator,
    element_hint,
    is_numeric_hint,
    is_sequence_hint,
    type_name,
    unwrap_optional,
)
from ..key import Key
from ..mapping.mapped_class import MappedClass
from ..mapping.mapped_field import MappedField
from .operators import FilterOperator
from .shape import Shape

log = logging.getLogger(__name__)

_type_validator = TypeValidator()

_GEO_KEYS = ("$box", "$center", "$centerSphere", "$polygon", "$geometry")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_multi_valued(mapped_field: Optional[MappedField], type_: Any) -> bool:
    if mapped_field is not None:
        return mapped_field.is_multiple_values
    return is_sequence_hint(unwrap_optional(type_))


def _is_array_like(value: Any) -> bool:
    return isinstance(value, (Iterable, Mapping)) and not isinstance(value, (str, bytes))


class Validator:
    """One link of the compatibility chain."""

    def applies(
        self,
        mapped_field: Optional[MappedField],
        type_: Any,
        operator: FilterOperator,
        value: Any,
    ) -> bool:
        raise NotImplementedError

    def apply(
        self,
        mapped_field: Optional[MappedField],
        type_: Any,
        operator: FilterOperator,
        value: Any,
        failures: List[str],
    ) -> None:
        raise NotImplementedError


class OperationValidator(Validator):
    operators: tuple = ()

    def applies(self, mapped_field, type_, operator, value) -> bool:
        return operator in self.operators


# --- Operation Validators ---
class ExistsValidator(OperationValidator):
    operators = (FilterOperator.EXISTS,)

    def apply(self, mapped_field, type_, operator, value, failures):
        if not isinstance(value, bool):
            failures.append(f"Value '{value!r}' should be a bool for the exists operator")


class SizeValidator(OperationValidator):
    operators = (FilterOperator.SIZE,)

    def apply(self, mapped_field, type_, operator, value, failures):
        if not _is_multi_valued(mapped_field, type_):
            failures.append(f"Field of type {type_name(type_)} is not an array; size cannot be used on it")
        if not _is_int(value):
            failures.append(f"Value '{value!r}' should be an int for the size operator")


class InValidator(OperationValidator):
    operators = (FilterOperator.IN, FilterOperator.NOT_IN, FilterOperator.ALL)

    def apply(self, mapped_field, type_, operator, value, failures):
        if not _is_array_like(value):
            failures.append(
                f"Value '{value!r}' should be an iterable, a map or an array for {operator.operator}"
            )


class ModValidator(OperationValidator):
    operators = (FilterOperator.MOD,)

    def apply(self, mapped_field, type_, operator, value, failures):
        if not (isinstance(value, (list, tuple)) and len(value) == 2 and all(_is_int(v) for v in value)):
            failures.append(f"Value '{value!r}' should be a two element list of ints (divisor, remainder)")


class GeoWithinValidator(OperationValidator):
    operators = (FilterOperator.GEO_WITHIN,)

    def apply(self, mapped_field, type_, operator, value, failures):
        if isinstance(value, Shape):
            return
        if isinstance(value, Mapping) and any(k in value for k in _GEO_KEYS):
            return
        failures.append(f"Value '{value!r}' should be a Shape or a shape document for $geoWithin")


class ElemMatchValidator(OperationValidator):
    operators = (FilterOperator.ELEMENT_MATCH,)

    def apply(self, mapped_field, type_, operator, value, failures):
        if not (isinstance(value, Mapping) or hasattr(value, "get_query_document")):
            failures.append(f"Value '{value!r}' should be a document or a Query for $elemMatch")


class NearValidator(OperationValidator):
    operators = (FilterOperator.NEAR, FilterOperator.NEAR_SPHERE)

    def apply(self, mapped_field, type_, operator, value, failures):
        if isinstance(value, Mapping):
            return
        if isinstance(value, (list, tuple)) and len(value) == 2 and all(_is_number(v) for v in value):
            return
        failures.append(f"Value '{value!r}' should be an [x, y] point or a GeoJSON document for {operator.operator}")


class TypeOperatorValidator(OperationValidator):
    operators = (FilterOperator.TYPE,)

    def apply(self, mapped_field, type_, operator, value, failures):
        if not (_is_int(value) or isinstance(value, str)):
            failures.append(f"Value '{value!r}' should be a BSON type number or alias for $type")


# --- Type Validators ---
class KeyValueValidator(Validator):
    def applies(self, mapped_field, type_, operator, value):
        return isinstance(value, (Key, DBRef))

    def apply(self, mapped_field, type_, operator, value, failures):
        if mapped_field is not None and (mapped_field.is_key or mapped_field.is_reference):
            return
        if isinstance(value, Key) and mapped_field is not None and mapped_field.is_id:
            return
        target = mapped_field.normalized_type if mapped_field is not None else unwrap_optional(type_)
        if isinstance(value, Key) and isinstance(target, type) and value.type is not None and issubclass(value.type, target):
            return
        failures.append(f"Key value '{value!r}' cannot be used with a field of type {type_name(type_)}")


class EntityValueValidator(Validator):
    def applies(self, mapped_field, type_, operator, value):
        return getattr(type(value), ENTITY_ATTR, None) is not None

    def apply(self, mapped_field, type_, operator, value, failures):
        if mapped_field is not None and (mapped_field.is_key or mapped_field.is_reference):
            return
        target = mapped_field.normalized_type if mapped_field is not None else unwrap_optional(type_)
        if isinstance(target, type) and isinstance(value, target):
            return
        failures.append(
            f"Entity of type {type(value).__name__} cannot be used with a field of type {type_name(type_)}"
        )


class IdValueValidator(Validator):
    def applies(self, mapped_field, type_, operator, value):
        return mapped_field is not None and mapped_field.is_id

    def apply(self, mapped_field, type_, operator, value, failures):
        id_type = mapped_field.generic_type
        if operator in (FilterOperator.IN, FilterOperator.NOT_IN, FilterOperator.ALL):
            return
        if not _type_validator.is_valid(value, id_type):
            failures.append(
                f"Value '{value!r}' is not a valid identifier; the id field is of type {type_name(id_type)}"
            )


class PatternValueValidator(Validator):
    def applies(self, mapped_field, type_, operator, value):
        return isinstance(value, re.Pattern)

    def apply(self, mapped_field, type_, operator, value, failures):
        target = unwrap_optional(type_)
        if _is_multi_valued(mapped_field, type_):
            target = unwrap_optional(element_hint(target))
        if target not in (str, Any):
            failures.append(f"A pattern can only be matched against a str field, not {type_name(type_)}")


class NumberValueValidator(Validator):
    def applies(self, mapped_field, type_, operator, value):
        return _is_number(value)

    def apply(self, mapped_field, type_, operator, value, failures):
        target = unwrap_optional(type_)
        if _is_multi_valued(mapped_field, type_):
            target = unwrap_optional(element_hint(target))
        if target is Any or is_numeric_hint(target):
            return
        failures.append(f"Number '{value!r}' cannot be compared with a field of type {type_name(type_)}")


class ListValueValidator(Validator):
    def applies(self, mapped_field, type_, operator, value):
        return isinstance(value, (list, tuple, set, frozenset))

    def apply(self, mapped_field, type_, operator, value, failures):
        target = unwrap_optional(type_)
        if target is Any:
            return
        if not _is_multi_valued(mapped_field, type_):
            failures.append(f"A list cannot be compared with the non-array field of type {type_name(type_)}")
            return
        if not _type_validator.is_valid(list(value), target):
            failures.append(f"List '{value!r}' does not match the element type of {type_name(type_)}")


class DefaultValueValidator(Validator):
    def applies(self, mapped_field, type_, operator, value):
        return True

    def apply(self, mapped_field, type_, operator, value, failures):
        if mapped_field is not None and mapped_field.is_reference:
            return
        target = unwrap_optional(type_)
        if _is_multi_valued(mapped_field, type_):
            # A scalar compared with an array field matches its elements.
            target = element_hint(target)
        if not _type_validator.is_valid(value, target):
            failures.append(
                f"Type {type(value).__name__} may not be compatible with the field type {type_name(type_)}"
            )


OPERATION_VALIDATORS: List[Validator] = [
    ExistsValidator(),
    SizeValidator(),
    InValidator(),
    ModValidator(),
    GeoWithinValidator(),
    ElemMatchValidator(),
    NearValidator(),
    TypeOperatorValidator(),
]

TYPE_VALIDATORS: List[Validator] = [
    KeyValueValidator(),
    EntityValueValidator(),
    IdValueValidator(),
    PatternValueValidator(),
    NumberValueValidator(),
    ListValueValidator(),
    DefaultValueValidator(),
]

# Operators whose value is not compared with the field type.
_UNCHECKED = (FilterOperator.WHERE, FilterOperator.NOT)


def is_compatible_for_operator(
    mapped_class: Optional[MappedClass],
    mapped_field: Optional[MappedField],
    type_: Any,
    operator: FilterOperator,
    value: Any,
    failures: List[str],
) -> bool:
    """
    True when ``value`` may be used with ``operator`` on a field of ``type_``.

    New failure messages are appended to ``failures``; the result is ``False``
    exactly when the validator that handled the pair added one.
    """
    if value is None or type_ is None or operator in _UNCHECKED:
        return True
    initial = len(failures)
    for validator in OPERATION_VALIDATORS:
        if validator.applies(mapped_field, type_, operator, value):
            validator.apply(mapped_field, type_, operator, value, failures)
            break
    else:
        for validator in TYPE_VALIDATORS:
            if validator.applies(mapped_field, type_, operator, value):
                validator.apply(mapped_field, type_, operator, value, failures)
                break
    if len(failures) > initial:
        owner = mapped_class.clazz.__name__ if mapped_class is not None else "?"
        log.debug(f"Incompatible {operator.name} on {owner}: {failures[initial:]}")
        return False
    return True
