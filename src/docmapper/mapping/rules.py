# src/docmapper/mapping/rules.py

"""
Structural checks run once when a class is first mapped.

Every rule appends human-readable violations; ``validate_mapped_class`` raises a
single ``MappingError`` listing all of them so a broken model is reported in
one go.
"""

import inspect
import logging
from collections import Counter
from typing import Any, Callable, List, get_args

from ..base.exceptions import MappingError
from ..base.model_validator import type_name, unwrap_optional
from .mapped_class import MappedClass

log = logging.getLogger(__name__)

Rule = Callable[[MappedClass, List[str]], None]


# --- Class Rules ---
def no_id(mc: MappedClass, violations: List[str]) -> None:
    if mc.is_entity and not mc.id_fields:
        violations.append(f"{mc.clazz.__name__}: No field is marked with Id; but it is required")


def multiple_id(mc: MappedClass, violations: List[str]) -> None:
    if len(mc.id_fields) > 1:
        names = ", ".join(mf.python_name for mf in mc.id_fields)
        violations.append(f"{mc.clazz.__name__}: More than one field is marked with Id: {names}")


def embedded_and_id(mc: MappedClass, violations: List[str]) -> None:
    if mc.is_embedded and mc.id_fields:
        violations.append(f"{mc.clazz.__name__}: embedded classes cannot specify an Id field")


def entity_and_embedded(mc: MappedClass, violations: List[str]) -> None:
    if mc.is_entity and mc.is_embedded:
        violations.append(f"{mc.clazz.__name__}: cannot be both an entity and embedded")


def local_class(mc: MappedClass, violations: List[str]) -> None:
    if "<locals>" in mc.clazz.__qualname__:
        violations.append(
            f"{mc.clazz.__qualname__}: classes defined inside a function cannot be mapped; "
            "move the class to module level"
        )


def multiple_versions(mc: MappedClass, violations: List[str]) -> None:
    if len(mc.version_fields) > 1:
        names = ", ".join(mf.python_name for mf in mc.version_fields)
        violations.append(f"{mc.clazz.__name__}: More than one field is marked with Version: {names}")


def duplicated_attribute_names(mc: MappedClass, violations: List[str]) -> None:
    counts = Counter(mf.name_to_store for mf in mc.fields)
    for name, count in counts.items():
        if count > 1:
            violations.append(f"{mc.clazz.__name__}: Mapping to MongoDB field name '{name}' is duplicated")


def must_have_no_arg_constructor(mc: MappedClass, violations: List[str]) -> None:
    if mc.is_pydantic or mc.is_abstract:
        return
    try:
        signature = inspect.signature(mc.clazz)
    except (TypeError, ValueError):
        return
    required = [
        p.name
        for p in signature.parameters.values()
        if p.default is inspect.Parameter.empty
        and p.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
    ]
    if required:
        violations.append(
            f"{mc.clazz.__name__}: must be constructible without arguments (required: {', '.join(required)})"
        )


# --- Field Rules ---
def version_misuse(mc: MappedClass, violations: List[str]) -> None:
    for mf in mc.version_fields:
        if mf.generic_type is not int:
            violations.append(
                f"{mf.full_name}: Version fields must be int, not {type_name(mf.generic_type)}"
            )


def map_key_type(mc: MappedClass, violations: List[str]) -> None:
    for mf in mc.fields:
        if not mf.is_map:
            continue
        args = get_args(unwrap_optional(mf.generic_type))
        if args and args[0] not in (str, Any):
            violations.append(
                f"{mf.full_name}: map keys must be str, not {type_name(args[0])}"
            )


def reference_and_embedded(mc: MappedClass, violations: List[str]) -> None:
    for mf in mc.fields:
        if mf.reference is not None and mf.embedded is not None:
            violations.append(f"{mf.full_name}: a field cannot be both a Reference and Embedded")


def id_is_not_a_reference(mc: MappedClass, violations: List[str]) -> None:
    for mf in mc.id_fields:
        if mf.is_reference:
            violations.append(f"{mf.full_name}: the Id field cannot be a Reference")


RULES: List[Rule] = [
    no_id,
    multiple_id,
    embedded_and_id,
    entity_and_embedded,
    local_class,
    multiple_versions,
    duplicated_attribute_names,
    must_have_no_arg_constructor,
    version_misuse,
    map_key_type,
    reference_and_embedded,
    id_is_not_a_reference,
]


def validate_mapped_class(mc: MappedClass) -> None:
    violations: List[str] = []
    for rule in RULES:
        rule(mc, violations)
    if violations:
        log.error(f"Mapping of {mc.clazz.__name__} failed: {violations}")
        raise MappingError(
            f"Could not map {mc.clazz.__module__}.{mc.clazz.__qualname__}:\n  "
            + "\n  ".join(violations)
        )
