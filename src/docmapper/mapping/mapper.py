# src/docmapper/mapping/mapper.py

import importlib
import inspect
import logging
import pkgutil
import threading
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Type, Union

from ..annotations import EMBEDDED_ATTR, ENTITY_ATTR
from ..base.exceptions import MappingError
from ..interceptors import EntityInterceptor
from ..key import Key
from .codec import DocumentCodec, Involved
from .mapped_class import MappedClass
from .mapped_field import MappedField
from .options import MapperOptions
from .rules import validate_mapped_class

if TYPE_CHECKING:
    from ..datastore import Datastore

log = logging.getLogger(__name__)


class Mapper:
    """
    Holds the mapping metadata of every class seen so far.

    ``get_mapped_class`` builds a ``MappedClass`` the first time a class is
    requested and returns the cached instance afterwards. Building happens
    under a re-entrant lock, so concurrent first use from several threads
    produces exactly one cache entry per class.
    """

    def __init__(self, options: Optional[MapperOptions] = None):
        self.options = options or MapperOptions()
        self._mapped_classes: Dict[type, MappedClass] = {}
        self._classes_by_name: Dict[str, type] = {}
        self._lock = threading.RLock()
        self._interceptors: List[EntityInterceptor] = []
        self._codec = DocumentCodec(self)

    # --- Class Metadata ---
    def get_mapped_class(self, clazz: Union[type, Any]) -> MappedClass:
        if not isinstance(clazz, type):
            clazz = type(clazz)
        mc = self._mapped_classes.get(clazz)
        if mc is not None:
            return mc
        with self._lock:
            mc = self._mapped_classes.get(clazz)
            if mc is None:
                log.debug(f"Mapping class {clazz.__module__}.{clazz.__qualname__}")
                candidate = MappedClass(clazz)
                validate_mapped_class(candidate)
                self._classes_by_name[candidate.discriminator_value] = clazz
                self._mapped_classes[clazz] = candidate
                mc = candidate
        return mc

    def map(self, *classes: type) -> List[MappedClass]:
        return [self.get_mapped_class(clazz) for clazz in classes]

    def map_package(self, package_name: str, include_subpackages: Optional[bool] = None) -> List[MappedClass]:
        """Map every entity and embedded class defined in a module or package."""
        if include_subpackages is None:
            include_subpackages = self.options.map_sub_packages
        package = importlib.import_module(package_name)
        modules = [package]
        if hasattr(package, "__path__"):
            walker = pkgutil.walk_packages if include_subpackages else pkgutil.iter_modules
            prefix = f"{package.__name__}."
            for info in walker(package.__path__, prefix):
                modules.append(importlib.import_module(info.name))

        mapped = []
        for module in modules:
            for _, member in inspect.getmembers(module, inspect.isclass):
                if member.__module__ != module.__name__:
                    continue
                if ENTITY_ATTR in vars(member) or EMBEDDED_ATTR in vars(member):
                    mapped.append(self.get_mapped_class(member))
        log.info(f"Mapped {len(mapped)} classes from {package_name}")
        return mapped

    def is_mapped(self, clazz: type) -> bool:
        return clazz in self._mapped_classes

    def get_mapped_classes(self) -> List[MappedClass]:
        return list(self._mapped_classes.values())

    def get_sub_types(self, clazz: Union[type, MappedClass]) -> List[MappedClass]:
        """Currently mapped strict subclasses of ``clazz``."""
        base = clazz.clazz if isinstance(clazz, MappedClass) else clazz
        return [
            mc
            for c, mc in list(self._mapped_classes.items())
            if c is not base and issubclass(c, base)
        ]

    def get_class_for_name(self, name: str) -> type:
        """Resolve a discriminator value to a class, importing its module if needed."""
        clazz = self._classes_by_name.get(name)
        if clazz is not None:
            return clazz
        module_name, _, qualname = name.rpartition(".")
        # Nested classes: walk back until the module part imports.
        while module_name:
            try:
                target: Any = importlib.import_module(module_name)
            except ImportError:
                module_name, _, head = module_name.rpartition(".")
                qualname = f"{head}.{qualname}"
                continue
            for part in qualname.split("."):
                target = getattr(target, part, None)
                if target is None:
                    break
            if isinstance(target, type):
                self.get_mapped_class(target)
                return target
            break
        raise MappingError(f"Could not resolve the class for discriminator value '{name}'")

    # --- Collections, Ids and Keys ---
    def get_collection_name(self, clazz: Union[type, Any]) -> str:
        mc = self.get_mapped_class(clazz)
        options = mc.entity_options
        if options is not None and options.collection:
            return options.collection
        name = mc.clazz.__name__
        return name.lower() if self.options.use_lower_case_collection_names else name

    def get_classes_for_collection(self, collection: str) -> List[type]:
        return [
            mc.clazz
            for mc in self.get_mapped_classes()
            if mc.is_entity and self.get_collection_name(mc.clazz) == collection
        ]

    def get_class_for_collection(self, collection: str) -> Optional[type]:
        classes = self.get_classes_for_collection(collection)
        # With several classes sharing a collection, the common base is the useful answer.
        for clazz in classes:
            if all(issubclass(other, clazz) for other in classes):
                return clazz
        return classes[0] if classes else None

    def get_id(self, entity: Any) -> Any:
        if entity is None:
            return None
        if isinstance(entity, Key):
            return entity.id
        id_field = self.get_mapped_class(entity).id_field
        return id_field.get_value(entity) if id_field is not None else None

    def get_key(self, entity: Any, collection: Optional[str] = None) -> Optional[Key]:
        if isinstance(entity, Key):
            return entity
        id_value = self.get_id(entity)
        if id_value is None:
            return None
        return Key(type(entity), collection or self.get_collection_name(entity), id_value)

    def get_keys(self, entities: Iterable[Any]) -> List[Key]:
        keys = []
        for entity in entities:
            key = self.get_key(entity)
            if key is not None:
                keys.append(key)
        return keys

    # --- Interceptors ---
    @property
    def interceptors(self) -> List[EntityInterceptor]:
        return list(self._interceptors)

    def add_interceptor(self, interceptor: EntityInterceptor) -> "Mapper":
        self._interceptors.append(interceptor)
        return self

    # --- Conversion ---
    @property
    def codec(self) -> DocumentCodec:
        return self._codec

    def to_document(self, entity: Any, involved: Optional[Involved] = None) -> Dict[str, Any]:
        return self._codec.encode(entity, involved)

    def from_document(
        self,
        clazz: Optional[Type],
        document: Dict[str, Any],
        datastore: Optional["Datastore"] = None,
    ) -> Any:
        return self._codec.decode(clazz, document, datastore)

    def to_query_value(self, value: Any, mapped_field: Optional[MappedField] = None) -> Any:
        """Convert a filter or update value to its stored form."""
        if value is None:
            return None
        if mapped_field is not None and mapped_field.is_reference:
            if isinstance(value, (list, tuple, set, frozenset)):
                return [self._codec.encode_reference(v, mapped_field) for v in value]
            return self._codec.encode_reference(value, mapped_field)
        if isinstance(value, Key) and mapped_field is not None and mapped_field.is_id:
            return self._codec.encode_value(value.id)
        return self._codec.encode_value(value)

    def __repr__(self) -> str:
        return f"Mapper(mapped={len(self._mapped_classes)}, interceptors={len(self._interceptors)})"
