# src/docmapper/mapping/mapped_field.py

import logging
from typing import Annotated, Any, Optional, Tuple, get_args, get_origin

from ..annotations import (
    Embedded,
    Id,
    Indexed,
    Property,
    Reference,
    Text,
    Transient,
    Version,
    find_marker,
)
from ..base.model_validator import (
    _origin_to_class,
    element_hint,
    is_mapping_hint,
    is_sequence_hint,
    is_struct_type,
    type_name,
    unwrap_optional,
)
from ..key import Key

log = logging.getLogger(__name__)

ID_KEY = "_id"


def split_annotated(hint: Any) -> Tuple[Any, Tuple[Any, ...]]:
    """Separate ``Annotated[T, *markers]`` into ``T`` and its markers."""
    if get_origin(hint) is Annotated:
        args = get_args(hint)
        return args[0], tuple(args[1:])
    return hint, ()


class MappedField:
    """One persisted attribute of a mapped class."""

    def __init__(
        self,
        declaring_class: type,
        python_name: str,
        hint: Any,
        alias: Optional[str] = None,
    ):
        self.declaring_class = declaring_class
        self.python_name = python_name
        self.type_hint, self.markers = split_annotated(hint)
        self.generic_type = unwrap_optional(self.type_hint)

        self.is_id = find_marker(self.markers, Id) is not None
        self.version = find_marker(self.markers, Version)
        self.reference = find_marker(self.markers, Reference)
        self.embedded = find_marker(self.markers, Embedded)
        self.property = find_marker(self.markers, Property)
        self.indexed = find_marker(self.markers, Indexed)
        self.text = find_marker(self.markers, Text)
        self.is_transient = find_marker(self.markers, Transient) is not None

        self.is_multiple_values = is_sequence_hint(self.generic_type)
        self.is_map = is_mapping_hint(self.generic_type)

        origin = get_origin(self.generic_type)
        if origin is Key or self.generic_type is Key:
            self.type = Key
            args = get_args(self.generic_type)
            self.specialized_type = args[0] if args else Any
        elif self.is_multiple_values or self.is_map:
            self.type = _origin_to_class(origin) or self.generic_type
            self.specialized_type = element_hint(self.generic_type)
        else:
            self.type = origin if isinstance(origin, type) else self.generic_type
            self.specialized_type = None

        concrete = (self.property and self.property.concrete_class) or (
            self.embedded and self.embedded.concrete_class
        )
        self.concrete_class = concrete or None
        self.name_to_store = self._resolve_stored_name(alias)
        log.debug(f"Mapped field {self.full_name} -> '{self.name_to_store}' ({type_name(self.generic_type)})")

    def _resolve_stored_name(self, alias: Optional[str]) -> str:
        if self.is_id:
            return ID_KEY
        for marker in (self.version, self.property, self.reference, self.embedded):
            if marker is not None and marker.name:
                return marker.name
        if alias:
            return alias
        return self.python_name

    # --- Derived Properties ---
    @property
    def full_name(self) -> str:
        return f"{self.declaring_class.__name__}.{self.python_name}"

    @property
    def is_version(self) -> bool:
        return self.version is not None

    @property
    def is_reference(self) -> bool:
        return self.reference is not None

    @property
    def is_key(self) -> bool:
        return self.type is Key

    @property
    def normalized_type(self) -> Any:
        """The element type for collections and maps, otherwise the field type."""
        if self.is_key:
            return self.specialized_type
        if self.is_multiple_values or self.is_map:
            return unwrap_optional(self.specialized_type)
        return self.concrete_class or self.type

    @property
    def is_embedded(self) -> bool:
        if self.is_reference or self.is_key:
            return False
        return self.embedded is not None or is_struct_type(self.normalized_type)

    def has_marker(self, marker_type: type) -> bool:
        return find_marker(self.markers, marker_type) is not None

    # --- Accessors ---
    def get_value(self, instance: Any) -> Any:
        return getattr(instance, self.python_name, None)

    def set_value(self, instance: Any, value: Any) -> None:
        setattr(instance, self.python_name, value)

    def __repr__(self) -> str:
        return f"MappedField({self.full_name!r}, stored={self.name_to_store!r}, type={type_name(self.generic_type)})"
