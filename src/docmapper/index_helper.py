# src/docmapper/index_helper.py

import json
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Tuple

from pymongo import IndexModel
from pymongo.collation import Collation as PyMongoCollation
from pymongo.collection import Collection

from .annotations import Collation, Index, IndexField, IndexOptions, IndexType
from .base.exceptions import ValidationError
from .base.model_validator import is_struct_type
from .mapping.mapped_class import MappedClass
from .query.path import PathTarget

if TYPE_CHECKING:
    from .mapping.mapper import Mapper

log = logging.getLogger(__name__)

IndexKeys = List[Tuple[str, Any]]
IndexSpec = Tuple[IndexKeys, Dict[str, Any]]

WILDCARD = "$**"


def to_collation(collation: Collation) -> PyMongoCollation:
    """Converts a declared collation to the driver's ``Collation``."""
    kwargs: Dict[str, Any] = {}
    if collation.case_level:
        kwargs["caseLevel"] = True
    if collation.case_first is not None:
        kwargs["caseFirst"] = collation.case_first
    if collation.strength is not None:
        kwargs["strength"] = collation.strength
    if collation.numeric_ordering:
        kwargs["numericOrdering"] = True
    if collation.alternate is not None:
        kwargs["alternate"] = collation.alternate
    if collation.max_variable is not None:
        kwargs["maxVariable"] = collation.max_variable
    if collation.normalization:
        kwargs["normalization"] = True
    if collation.backwards:
        kwargs["backwards"] = True
    return PyMongoCollation(collation.locale, **kwargs)


class IndexHelper:
    """
    Collects the index declarations of mapped classes and creates them.

    Indexes come from ``@indexes`` on the class, ``Indexed`` and ``Text``
    field markers, and from embedded classes, whose key paths are prefixed with
    the embedding field's stored name.
    """

    def __init__(self, mapper: "Mapper"):
        self._mapper = mapper

    # --- Keys and Options ---
    def calculate_keys(self, mc: MappedClass, index: Index, prefix: str = "") -> IndexKeys:
        keys: IndexKeys = []
        for index_field in index.fields:
            if index_field.weight is not None and index_field.type is not IndexType.TEXT:
                raise ValidationError(
                    f"Weight values only apply to text indexes: {mc.clazz.__name__}.{index_field.value}"
                )
            keys.append((prefix + self._key_path(mc, index_field, index.options), index_field.type.to_index_value()))
        return keys

    def _key_path(self, mc: MappedClass, index_field: IndexField, options: IndexOptions) -> str:
        if index_field.value == WILDCARD:
            return WILDCARD
        validate = not options.disable_validation
        return PathTarget(self._mapper, mc.clazz, index_field.value, validate).translated_path

    def _weights(self, mc: MappedClass, index: Index, prefix: str = "") -> Dict[str, int]:
        return {
            prefix + self._key_path(mc, f, index.options): f.weight
            for f in index.fields
            if f.weight is not None
        }

    def get_index_options(self, options: IndexOptions, weights: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if options.name:
            result["name"] = options.name
        if options.background:
            result["background"] = True
        if options.unique:
            result["unique"] = True
        if options.sparse:
            result["sparse"] = True
        if options.expire_after_seconds is not None:
            result["expireAfterSeconds"] = options.expire_after_seconds
        if options.partial_filter:
            partial = options.partial_filter
            result["partialFilterExpression"] = json.loads(partial) if isinstance(partial, str) else dict(partial)
        if options.collation is not None:
            result["collation"] = to_collation(options.collation)
        if options.language:
            result["default_language"] = options.language
        if options.language_override:
            result["language_override"] = options.language_override
        if weights:
            result["weights"] = dict(weights)
        return result

    # --- Collection ---
    def collect_indexes(self, mc: MappedClass, prefix: str = "", seen: Optional[Set[type]] = None) -> List[IndexSpec]:
        seen = set() if seen is None else seen
        seen.add(mc.clazz)
        specs: List[IndexSpec] = []

        for index in mc.indexes:
            keys = self.calculate_keys(mc, index, prefix)
            specs.append((keys, self.get_index_options(index.options, self._weights(mc, index, prefix))))

        text_keys: IndexKeys = []
        text_weights: Dict[str, int] = {}
        text_options: Optional[IndexOptions] = None
        for mf in mc.fields:
            path = prefix + mf.name_to_store
            if mf.indexed is not None:
                specs.append(([(path, mf.indexed.type.to_index_value())], self.get_index_options(mf.indexed.options)))
            if mf.text is not None:
                text_keys.append((path, IndexType.TEXT.to_index_value()))
                if mf.text.weight is not None:
                    text_weights[path] = mf.text.weight
                if text_options is None:
                    text_options = mf.text.options
        if text_keys:
            specs.append((text_keys, self.get_index_options(text_options or IndexOptions(), text_weights)))

        for mf in mc.fields:
            if not mf.is_embedded:
                continue
            embedded_type = mf.concrete_class or mf.normalized_type
            if not is_struct_type(embedded_type) or embedded_type in seen:
                continue
            embedded_mc = self._mapper.get_mapped_class(embedded_type)
            specs.extend(self.collect_indexes(embedded_mc, f"{prefix}{mf.name_to_store}.", set(seen)))
        return specs

    def build_index_models(self, mc: MappedClass, background: bool = False) -> List[IndexModel]:
        models = []
        for keys, options in self.collect_indexes(mc):
            if background:
                options = {**options, "background": True}
            models.append(IndexModel(keys, **options))
        return models

    def create_indexes(self, mc: MappedClass, collection: Collection, background: bool = False) -> List[str]:
        models = self.build_index_models(mc, background)
        if not models:
            log.debug(f"No indexes declared for {mc.clazz.__name__}")
            return []
        for model in models:
            log.debug(f"Ensuring index {model.document} on '{collection.name}'")
        names = collection.create_indexes(models)
        log.info(f"Created {len(names)} index(es) on '{collection.name}' for {mc.clazz.__name__}: {names}")
        return names
