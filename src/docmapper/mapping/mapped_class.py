# src/docmapper/mapping/mapped_class.py

import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Dict, List, Optional, Tuple, get_origin, get_type_hints

from ..annotations import (
    EMBEDDED_ATTR,
    ENTITY_ATTR,
    LIFECYCLE_ATTR,
    EmbeddedOptions,
    EntityOptions,
    Index,
    LifecyclePhase,
    declared_indexes,
)
from ..base.exceptions import MappingError
from .mapped_field import MappedField, split_annotated

if TYPE_CHECKING:
    from .mapper import Mapper

log = logging.getLogger(__name__)


def _is_pydantic_model(cls: type) -> bool:
    return isinstance(getattr(cls, "model_fields", None), dict) and hasattr(cls, "model_construct")


def _accepts_document(func: Callable) -> bool:
    try:
        params = list(inspect.signature(func).parameters.values())
    except (TypeError, ValueError):
        return False
    # The first parameter is the instance.
    return len(params) > 1


class MappedClass:
    """Everything the mapper knows about one class, computed once."""

    def __init__(self, clazz: type):
        self.clazz = clazz
        self.entity_options: Optional[EntityOptions] = getattr(clazz, ENTITY_ATTR, None)
        self.embedded_options: Optional[EmbeddedOptions] = getattr(clazz, EMBEDDED_ATTR, None)
        self.is_pydantic = _is_pydantic_model(clazz)
        self.fields: List[MappedField] = self._discover_fields()
        self._by_stored_name: Dict[str, MappedField] = {}
        self._by_python_name: Dict[str, MappedField] = {}
        for mf in self.fields:
            self._by_stored_name.setdefault(mf.name_to_store, mf)
            self._by_python_name[mf.python_name] = mf
        self.id_fields = [mf for mf in self.fields if mf.is_id]
        self.version_fields = [mf for mf in self.fields if mf.is_version]
        self.indexes: List[Index] = declared_indexes(clazz)
        self._lifecycle: Dict[LifecyclePhase, List[Tuple[Callable, bool]]] = self._discover_lifecycle_methods()

    # --- Discovery ---
    def _discover_fields(self) -> List[MappedField]:
        try:
            hints = get_type_hints(self.clazz, include_extras=True)
        except NameError as e:
            raise MappingError(f"Unresolved forward reference in {self.clazz.__name__}: {e}") from e
        except TypeError as e:
            raise MappingError(f"Could not read type hints of {self.clazz.__name__}: {e}") from e

        aliases: Dict[str, str] = {}
        pydantic_fields = None
        if self.is_pydantic:
            pydantic_fields = self.clazz.model_fields
            for name, info in pydantic_fields.items():
                if info.alias and info.alias != name:
                    aliases[name] = info.alias

        fields = []
        for name, hint in hints.items():
            if name.startswith("_"):
                continue
            if pydantic_fields is not None and name not in pydantic_fields:
                continue
            base, _ = split_annotated(hint)
            if base is ClassVar or get_origin(base) is ClassVar:
                continue
            mf = MappedField(self._declaring_class(name), name, hint, aliases.get(name))
            if mf.is_transient:
                continue
            fields.append(mf)
        return fields

    def _declaring_class(self, name: str) -> type:
        for klass in self.clazz.__mro__:
            if name in inspect.get_annotations(klass):
                return klass
        return self.clazz

    def _discover_lifecycle_methods(self) -> Dict[LifecyclePhase, List[Tuple[Callable, bool]]]:
        # Base-class methods first; an override keeps its base's position.
        by_name: Dict[str, Callable] = {}
        for klass in reversed(self.clazz.__mro__):
            for name, member in vars(klass).items():
                func = member.__func__ if isinstance(member, (staticmethod, classmethod)) else member
                if callable(func) and hasattr(func, LIFECYCLE_ATTR):
                    by_name[name] = func
                elif name in by_name:
                    del by_name[name]
        methods: Dict[LifecyclePhase, List[Tuple[Callable, bool]]] = {phase: [] for phase in LifecyclePhase}
        for func in by_name.values():
            for phase in getattr(func, LIFECYCLE_ATTR):
                methods[phase].append((func, _accepts_document(func)))
        return methods

    # --- Properties ---
    @property
    def is_entity(self) -> bool:
        return self.entity_options is not None

    @property
    def is_embedded(self) -> bool:
        return self.embedded_options is not None

    @property
    def is_abstract(self) -> bool:
        return inspect.isabstract(self.clazz)

    @property
    def uses_discriminator(self) -> bool:
        if self.entity_options is not None:
            return self.entity_options.discriminator
        if self.embedded_options is not None:
            return self.embedded_options.discriminator
        return True

    @property
    def discriminator_value(self) -> str:
        return f"{self.clazz.__module__}.{self.clazz.__qualname__}"

    @property
    def id_field(self) -> Optional[MappedField]:
        return self.id_fields[0] if self.id_fields else None

    @property
    def version_field(self) -> Optional[MappedField]:
        return self.version_fields[0] if self.version_fields else None

    @property
    def persisted_fields(self) -> List[MappedField]:
        return [mf for mf in self.fields if not mf.is_id]

    def has_lifecycle_methods(self, phase: LifecyclePhase) -> bool:
        return bool(self._lifecycle[phase])

    # --- Lookup ---
    def get_mapped_field(self, stored_name: str) -> Optional[MappedField]:
        return self._by_stored_name.get(stored_name)

    def get_mapped_field_by_python_name(self, name: str) -> Optional[MappedField]:
        return self._by_python_name.get(name)

    def find_field(self, name: str) -> Optional[MappedField]:
        """Look a field up by stored name, then by Python name."""
        return self._by_stored_name.get(name) or self._by_python_name.get(name)

    # --- Instances ---
    def new_instance(self) -> Any:
        if self.is_pydantic:
            return self.clazz.model_construct()
        return self.clazz()

    def call_lifecycle_methods(
        self,
        phase: LifecyclePhase,
        entity: Any,
        document: Dict[str, Any],
        mapper: "Mapper",
    ) -> Dict[str, Any]:
        """Run the entity's own hooks and then the mapper's interceptors for ``phase``."""
        for func, wants_document in self._lifecycle[phase]:
            result = func(entity, document) if wants_document else func(entity)
            if isinstance(result, dict):
                log.debug(f"{phase.value} hook {func.__qualname__} replaced the document")
                document = result
        for interceptor in mapper.interceptors:
            result = getattr(interceptor, phase.value)(entity, document, mapper)
            if isinstance(result, dict):
                document = result
        return document

    def __repr__(self) -> str:
        kind = "entity" if self.is_entity else "embedded" if self.is_embedded else "class"
        return f"MappedClass<{self.clazz.__name__}>({kind}, fields={[mf.name_to_store for mf in self.fields]})"

