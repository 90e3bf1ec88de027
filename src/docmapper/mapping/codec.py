# src/docmapper/mapping/codec.py

import logging
from collections.abc import Mapping as AbcMapping
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union, get_args, get_origin
from uuid import UUID

from bson import Binary, DBRef, Decimal128

from ..annotations import LifecyclePhase
from ..base.exceptions import MappingError
from ..base.model_validator import (
    SIMPLE_TYPES,
    _origin_to_class,
    element_hint,
    is_mapping_hint,
    is_sequence_hint,
    is_struct_type,
    unwrap_optional,
)
from ..key import Key
from .mapped_field import ID_KEY, MappedField

if TYPE_CHECKING:
    from ..datastore import Datastore
    from .mapper import Mapper

log = logging.getLogger(__name__)

Involved = List[Tuple[Any, Dict[str, Any]]]


class DocumentCodec:
    """Converts entities to BSON-ready dicts and back, running lifecycle hooks on the way."""

    def __init__(self, mapper: "Mapper"):
        self._mapper = mapper

    @property
    def _options(self):
        return self._mapper.options

    # --- Encoding ---
    def encode(self, entity: Any, involved: Optional[Involved] = None) -> Dict[str, Any]:
        """
        Encode ``entity``. When ``involved`` is given, every encoded object (the
        entity and its embedded values) is appended with its document so that
        post-persist hooks can be run on all of them after the write.
        """
        mc = self._mapper.get_mapped_class(type(entity))
        document = mc.call_lifecycle_methods(LifecyclePhase.PRE_PERSIST, entity, {}, self._mapper)

        if mc.id_field is not None:
            id_value = mc.id_field.get_value(entity)
            if id_value is not None:
                document[ID_KEY] = self.encode_value(id_value)
        if mc.uses_discriminator:
            document[self._options.discriminator_field] = mc.discriminator_value

        for mf in mc.persisted_fields:
            self._write_field(document, mf, mf.get_value(entity), involved)

        document = mc.call_lifecycle_methods(LifecyclePhase.PRE_SAVE, entity, document, self._mapper)
        if involved is not None:
            involved.append((entity, document))
        return document

    def _write_field(
        self, document: Dict[str, Any], mf: MappedField, value: Any, involved: Optional[Involved] = None
    ) -> None:
        if mf.is_reference:
            encoded = self._encode_reference_field(value, mf)
        else:
            encoded = self.encode_value(value, involved)
        if encoded is None and not self._options.store_nulls:
            return
        if (
            (mf.is_multiple_values or mf.is_map)
            and isinstance(encoded, (list, dict))
            and not encoded
            and not self._options.store_empties
        ):
            return
        document[mf.name_to_store] = encoded

    def encode_value(self, value: Any, involved: Optional[Involved] = None) -> Any:
        """Encode one value; embedded objects become sub-documents."""
        if value is None:
            return None
        if isinstance(value, Key):
            return self.key_to_dbref(value)
        if isinstance(value, Enum):
            return value.name
        if isinstance(value, datetime):
            return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        if isinstance(value, Decimal):
            return Decimal128(value)
        if isinstance(value, UUID):
            return Binary.from_uuid(value)
        if isinstance(value, SIMPLE_TYPES):
            return value
        if isinstance(value, AbcMapping):
            return {self._map_key(k): self.encode_value(v, involved) for k, v in value.items()}
        if isinstance(value, (list, tuple, set, frozenset)):
            return [self.encode_value(v, involved) for v in value]
        if is_struct_type(type(value)):
            return self.encode(value, involved)
        raise MappingError(f"Cannot encode a value of type {type(value).__name__}: {value!r}")

    def _map_key(self, key: Any) -> str:
        if isinstance(key, str):
            return key
        if isinstance(key, Enum):
            return key.name
        raise MappingError(f"Map keys must be str, got {type(key).__name__}: {key!r}")

    # --- References ---
    def _encode_reference_field(self, value: Any, mf: MappedField) -> Any:
        if value is None:
            return None
        if mf.is_map:
            return {self._map_key(k): self.encode_reference(v, mf) for k, v in value.items()}
        if mf.is_multiple_values:
            return [self.encode_reference(v, mf) for v in value]
        return self.encode_reference(value, mf)

    def encode_reference(self, value: Any, mf: MappedField) -> Any:
        """A referenced entity, ``Key`` or ``DBRef`` as stored in a reference field."""
        if isinstance(value, DBRef):
            return value.id if mf.reference.id_only else value
        if isinstance(value, Key):
            key = value
        elif is_struct_type(type(value)):
            key = self._mapper.get_key(value)
            if key is None:
                raise MappingError(
                    f"No id value found on the {type(value).__name__} referenced by {mf.full_name}; "
                    "save the referenced entity first."
                )
        else:
            return self.encode_value(value)
        if mf.reference.id_only:
            return self.encode_value(key.id)
        return self.key_to_dbref(key)

    def key_to_dbref(self, key: Key) -> DBRef:
        collection = key.collection or self._mapper.get_collection_name(key.type)
        return DBRef(collection, self.encode_value(key.id))

    def dbref_to_key(self, ref: DBRef, type_: Optional[type] = None) -> Key:
        if type_ is None or type_ is Any:
            type_ = self._mapper.get_class_for_collection(ref.collection)
        return Key(type_, ref.collection, ref.id)

    # --- Decoding ---
    def decode(
        self,
        declared: Optional[type],
        document: Dict[str, Any],
        datastore: Optional["Datastore"] = None,
    ) -> Any:
        clazz = self.resolve_class(declared, document)
        mc = self._mapper.get_mapped_class(clazz)
        entity = mc.new_instance()
        document = mc.call_lifecycle_methods(LifecyclePhase.PRE_LOAD, entity, document, self._mapper)

        if mc.id_field is not None and ID_KEY in document:
            mc.id_field.set_value(entity, self.decode_value(document[ID_KEY], mc.id_field.type_hint, datastore))
        for mf in mc.persisted_fields:
            if mf.name_to_store not in document:
                continue
            raw = document[mf.name_to_store]
            if mf.is_reference:
                value = self._decode_reference_field(raw, mf, datastore)
            else:
                value = self.decode_value(raw, mf.concrete_class or mf.type_hint, datastore)
            mf.set_value(entity, value)

        mc.call_lifecycle_methods(LifecyclePhase.POST_LOAD, entity, document, self._mapper)
        return entity

    def resolve_class(self, declared: Optional[type], document: Dict[str, Any]) -> type:
        """Pick the concrete class for ``document``, using the discriminator when present."""
        name = document.get(self._options.discriminator_field)
        if name:
            clazz = self._mapper.get_class_for_name(name)
            if declared is not None and declared is not Any and not issubclass(clazz, declared):
                raise MappingError(
                    f"Document of class {name} cannot be decoded as {declared.__name__}"
                )
            return clazz
        if declared is None or declared is Any:
            raise MappingError(
                f"Cannot determine the class of a document without a '{self._options.discriminator_field}' field"
            )
        if not self._mapper.get_mapped_class(declared).is_abstract:
            return declared
        candidates = [
            sub.clazz for sub in self._mapper.get_sub_types(declared) if not sub.is_abstract
        ]
        if len(candidates) == 1:
            return candidates[0]
        raise MappingError(
            f"Cannot determine the concrete class for abstract {declared.__name__}: "
            f"no '{self._options.discriminator_field}' field and {len(candidates)} mapped subtypes"
        )

    def decode_value(self, raw: Any, hint: Any, datastore: Optional["Datastore"] = None) -> Any:
        if raw is None:
            return None
        hint = unwrap_optional(hint)
        origin = get_origin(hint)
        if hint is Any or hint is object or origin is Union:
            return self._decode_untyped(raw, datastore)
        if origin is Key or hint is Key:
            args = get_args(hint)
            if isinstance(raw, DBRef):
                return self.dbref_to_key(raw, args[0] if args else None)
            return raw
        if is_sequence_hint(hint):
            item_hint = element_hint(hint)
            container = _origin_to_class(origin) or hint
            items = [self.decode_value(v, item_hint, datastore) for v in raw]
            return items if container is list else container(items)
        if is_mapping_hint(hint):
            value_hint = element_hint(hint)
            return {k: self.decode_value(v, value_hint, datastore) for k, v in raw.items()}
        if not isinstance(hint, type):
            return raw
        if issubclass(hint, Enum):
            return hint[raw] if isinstance(raw, str) else hint(raw)
        if hint is datetime and isinstance(raw, datetime):
            return raw if raw.tzinfo is not None else raw.replace(tzinfo=timezone.utc)
        if hint is date and isinstance(raw, datetime):
            return raw.date()
        if hint is Decimal and isinstance(raw, Decimal128):
            return raw.to_decimal()
        if hint is UUID and isinstance(raw, Binary):
            return raw.as_uuid()
        if hint is float and isinstance(raw, int) and not isinstance(raw, bool):
            return float(raw)
        if is_struct_type(hint) and isinstance(raw, AbcMapping):
            return self.decode(hint, raw, datastore)
        return raw

    def _decode_untyped(self, raw: Any, datastore: Optional["Datastore"]) -> Any:
        if isinstance(raw, AbcMapping):
            if self._options.discriminator_field in raw:
                return self.decode(None, raw, datastore)
            return {k: self._decode_untyped(v, datastore) for k, v in raw.items()}
        if isinstance(raw, list):
            return [self._decode_untyped(v, datastore) for v in raw]
        if isinstance(raw, datetime) and raw.tzinfo is None:
            return raw.replace(tzinfo=timezone.utc)
        return raw

    def _decode_reference_field(self, raw: Any, mf: MappedField, datastore: Optional["Datastore"]) -> Any:
        if mf.is_map:
            return {k: self.fetch_reference(v, mf, datastore) for k, v in raw.items()}
        if mf.is_multiple_values:
            container = mf.type if mf.type in (set, tuple, frozenset) else list
            values = [self.fetch_reference(v, mf, datastore) for v in raw]
            values = [v for v in values if v is not None]
            return values if container is list else container(values)
        return self.fetch_reference(raw, mf, datastore)

    def fetch_reference(self, raw: Any, mf: MappedField, datastore: Optional["Datastore"]) -> Any:
        target = mf.normalized_type
        if isinstance(raw, DBRef):
            collection, ref_id = raw.collection, raw.id
        else:
            collection, ref_id = self._mapper.get_collection_name(target), raw
        if datastore is None:
            raise MappingError(
                f"Cannot resolve the reference stored in {mf.full_name} without a datastore"
            )
        document = datastore.find_raw(collection, ref_id)
        if document is None:
            if mf.reference.ignore_missing:
                log.debug(f"Ignoring missing reference {collection}/{ref_id!r} in {mf.full_name}")
                return None
            raise MappingError(
                f"The reference({collection}, {ref_id!r}) could not be fetched for {mf.full_name}"
            )
        return self.decode(target, document, datastore)
