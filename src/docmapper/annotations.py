# src/docmapper/annotations.py

"""
Mapping declarations.

Classes are marked with the ``entity`` and ``embedded`` decorators, attributes
with markers placed inside ``typing.Annotated``::

    @entity("users", concern="majority")
    @indexes(Index(fields=[IndexField("last_name"), IndexField("age", IndexType.DESC)]))
    class User:
        id: Annotated[Optional[ObjectId], Id()]
        first_name: Annotated[str, Property("firstName")]
        avatar: Annotated[Optional[Picture], Reference(id_only=True)]
        version: Annotated[Optional[int], Version()]

        @pre_persist
        def stamp(self, document):
            ...

Lifecycle methods may accept the in-flight document as their only argument and
may return a replacement document.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Type, TypeVar, Union

log = logging.getLogger(__name__)

T = TypeVar("T")

ENTITY_ATTR = "__docmapper_entity__"
EMBEDDED_ATTR = "__docmapper_embedded__"
INDEXES_ATTR = "__docmapper_indexes__"
LIFECYCLE_ATTR = "__docmapper_lifecycle__"


# --- Field Markers ---
@dataclass(frozen=True)
class Id:
    """Marks the identifier attribute; it is always stored as ``_id``."""


@dataclass(frozen=True)
class Property:
    """Stores the attribute under ``name`` instead of its Python name."""

    name: Optional[str] = None
    concrete_class: Optional[type] = None


@dataclass(frozen=True)
class Embedded:
    """Stores the attribute as a sub-document, optionally renamed."""

    name: Optional[str] = None
    concrete_class: Optional[type] = None


@dataclass(frozen=True)
class Reference:
    """
    Stores a link to another entity instead of the entity itself.

    With ``id_only`` only the identifier is written, otherwise a ``DBRef``.
    ``ignore_missing`` decodes a dangling link as ``None`` instead of failing.
    """

    name: Optional[str] = None
    id_only: bool = False
    ignore_missing: bool = False


@dataclass(frozen=True)
class Version:
    """Marks the optimistic-locking counter."""

    name: Optional[str] = None


@dataclass(frozen=True)
class Transient:
    """Excludes the attribute from persistence."""


# --- Index Declarations ---
class IndexType(Enum):
    ASC = 1
    DESC = -1
    GEO2D = "2d"
    GEO2DSPHERE = "2dsphere"
    HASHED = "hashed"
    TEXT = "text"

    def to_index_value(self) -> Union[int, str]:
        return self.value


@dataclass(frozen=True)
class Collation:
    locale: str
    case_level: bool = False
    case_first: Optional[str] = None
    strength: Optional[int] = None
    numeric_ordering: bool = False
    alternate: Optional[str] = None
    max_variable: Optional[str] = None
    normalization: bool = False
    backwards: bool = False


@dataclass(frozen=True)
class IndexOptions:
    name: str = ""
    background: bool = False
    unique: bool = False
    sparse: bool = False
    expire_after_seconds: Optional[int] = None
    partial_filter: Optional[Union[str, Dict[str, Any]]] = None
    collation: Optional[Collation] = None
    language: Optional[str] = None
    language_override: Optional[str] = None
    disable_validation: bool = False


@dataclass(frozen=True)
class IndexField:
    value: str
    type: IndexType = IndexType.ASC
    weight: Optional[int] = None


@dataclass(frozen=True)
class Index:
    fields: Sequence[IndexField] = ()
    options: IndexOptions = IndexOptions()


@dataclass(frozen=True)
class Indexed:
    """Single-field index on the marked attribute."""

    type: IndexType = IndexType.ASC
    options: IndexOptions = IndexOptions()


@dataclass(frozen=True)
class Text:
    """Adds the marked attribute to the class's text index."""

    weight: Optional[int] = None
    options: IndexOptions = IndexOptions()


# --- Class Options ---
@dataclass(frozen=True)
class CappedAt:
    size: int = 1048576
    count: int = 0


@dataclass(frozen=True)
class Validation:
    value: Union[str, Dict[str, Any]]
    level: str = "strict"
    action: str = "error"


@dataclass(frozen=True)
class EntityOptions:
    collection: Optional[str] = None
    discriminator: bool = True
    cap: Optional[CappedAt] = None
    concern: Optional[Any] = None
    validation: Optional[Validation] = None


@dataclass(frozen=True)
class EmbeddedOptions:
    discriminator: bool = True


def entity(
    collection: Union[Optional[str], Type[T]] = None,
    *,
    discriminator: bool = True,
    cap: Optional[CappedAt] = None,
    concern: Optional[Any] = None,
    validation: Optional[Validation] = None,
):
    """Marks a class as a top-level entity stored in its own collection.

    Usable bare (``@entity``) or with options (``@entity("people", cap=CappedAt(count=10))``).
    """
    if isinstance(collection, type):
        setattr(collection, ENTITY_ATTR, EntityOptions())
        return collection

    def decorate(cls: Type[T]) -> Type[T]:
        options = EntityOptions(
            collection=collection,
            discriminator=discriminator,
            cap=cap,
            concern=concern,
            validation=validation,
        )
        setattr(cls, ENTITY_ATTR, options)
        log.debug(f"Marked {cls.__name__} as entity: {options}")
        return cls

    return decorate


def embedded(cls: Optional[Type[T]] = None, *, discriminator: bool = True):
    """Marks a class as an embedded value type. Embedded classes have no identifier."""

    def decorate(target: Type[T]) -> Type[T]:
        setattr(target, EMBEDDED_ATTR, EmbeddedOptions(discriminator=discriminator))
        return target

    if cls is not None:
        return decorate(cls)
    return decorate


def indexes(*declared: Index):
    """Declares compound indexes on a class."""

    def decorate(cls: Type[T]) -> Type[T]:
        # Inherited declarations are collected from the MRO by declared_indexes().
        setattr(cls, INDEXES_ATTR, tuple(declared))
        return cls

    return decorate


# --- Lifecycle Markers ---
class LifecyclePhase(Enum):
    PRE_PERSIST = "pre_persist"
    PRE_SAVE = "pre_save"
    POST_PERSIST = "post_persist"
    PRE_LOAD = "pre_load"
    POST_LOAD = "post_load"


def _lifecycle(phase: LifecyclePhase) -> Callable[[Callable], Callable]:
    def decorate(func: Callable) -> Callable:
        phases = set(getattr(func, LIFECYCLE_ATTR, ()))
        phases.add(phase)
        setattr(func, LIFECYCLE_ATTR, frozenset(phases))
        return func

    return decorate


pre_persist = _lifecycle(LifecyclePhase.PRE_PERSIST)
pre_save = _lifecycle(LifecyclePhase.PRE_SAVE)
post_persist = _lifecycle(LifecyclePhase.POST_PERSIST)
pre_load = _lifecycle(LifecyclePhase.PRE_LOAD)
post_load = _lifecycle(LifecyclePhase.POST_LOAD)


def find_marker(markers: Sequence[Any], marker_type: Type[T]) -> Optional[T]:
    for marker in markers:
        if isinstance(marker, marker_type):
            return marker
    return None


def declared_indexes(cls: type) -> List[Index]:
    """Index declarations of ``cls`` and its bases, base classes first."""
    found: List[Index] = []
    for klass in reversed(cls.__mro__):
        found.extend(klass.__dict__.get(INDEXES_ATTR, ()))
    return found
