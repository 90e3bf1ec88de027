# src/docmapper/key.py

from dataclasses import dataclass
from typing import Any, Generic, Optional, Type, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Key(Generic[T]):
    """
    Identifies a stored entity by (type, collection, id) without holding the entity.

    Used as the value of ``Key[...]`` typed attributes and for lookups through
    the datastore. Equality is structural over all three parts.
    """

    __docmapper_key__ = True

    type: Optional[Type[T]]
    collection: Optional[str]
    id: Any

    def __post_init__(self):
        if self.id is None:
            raise ValueError("Key id cannot be None.")
        if self.type is None and self.collection is None:
            raise ValueError("Key needs a type or a collection name.")

    def __repr__(self) -> str:
        type_name = self.type.__name__ if self.type is not None else None
        return f"Key(type={type_name}, collection={self.collection!r}, id={self.id!r})"
