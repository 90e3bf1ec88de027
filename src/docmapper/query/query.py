# src/docmapper/query/query.py
import logging
from typing import TYPE_CHECKING, Any, Dict, Generic, Iterator, List, Optional, Tuple, Type, TypeVar, Union

from pymongo import ASCENDING, DESCENDING
from pymongo.collation import Collation
from pymongo.collection import Collection
from pymongo.cursor import Cursor

from ..base.exceptions import QueryError, ValidationError
from ..key import Key
from ..mapping.mapped_field import ID_KEY
from .criteria import CriteriaContainer, CriteriaJoin, FieldCriteria, RawCriteria, WhereCriteria
from .field_end import FieldEnd
from .operators import FilterOperator
from .options import FindOptions, Sort
from .path import PathTarget

if TYPE_CHECKING:
    from ..datastore import Datastore
    from ..mapping.mapper import Mapper

# --- Setup Logging ---
log = logging.getLogger(__name__)

T = TypeVar("T")


class Query(CriteriaContainer, Generic[T]):
    """
    A filter on one mapped class and collection, built fluently and executed lazily.

    Criteria added through ``filter``/``field`` are ANDed at the top level;
    ``and_``/``or_`` regroup criteria created with ``criteria``. Nothing is sent
    to the server until a terminal method (``fetch``, ``get``, ``count``...) runs.
    """

    def __init__(
        self,
        clazz: Type[T],
        collection: Collection,
        datastore: Optional["Datastore"] = None,
        mapper: Optional["Mapper"] = None,
    ):
        super().__init__(self, CriteriaJoin.AND)
        if mapper is None and datastore is None:
            raise QueryError("A query needs a datastore or a mapper.")
        self.entity_class = clazz
        self.collection = collection
        self.datastore = datastore
        self.mapper: "Mapper" = mapper or datastore.mapper
        self.options = FindOptions()
        self._validating = True
        self._sort: List[Tuple[str, Any]] = []
        self._projection: Dict[str, int] = {}
        self._read_preference: Any = None
        self._collation: Optional[Collation] = None
        log.debug(f"Created query for {clazz.__name__} on '{collection.name}'")

    @property
    def is_validating(self) -> bool:
        return self._validating

    @property
    def collection_name(self) -> str:
        return self.collection.name

    # --- Validation ---
    def disable_validation(self) -> "Query[T]":
        self._validating = False
        return self

    def enable_validation(self) -> "Query[T]":
        self._validating = True
        return self

    # --- Criteria ---
    def filter(self, condition: str, value: Any) -> "Query[T]":
        """Add ``field op value``; ``condition`` is ``"field"`` or ``"field op"``."""
        parts = condition.strip().split()
        if len(parts) == 1:
            operator = FilterOperator.EQUAL
        elif len(parts) == 2:
            operator = FilterOperator.from_string(parts[1])
        else:
            raise QueryError(f"'{condition}' is not a legal filter condition")
        self.add(FieldCriteria(self, parts[0], operator, value))
        return self

    def field(self, name: str) -> FieldEnd:
        return FieldEnd(self, name, self)

    def search(self, text: str, language: Optional[str] = None) -> "Query[T]":
        """Full-text search over the collection's text index."""
        spec: Dict[str, Any] = {"$search": text}
        if language is not None:
            spec["$language"] = language
        self.add(RawCriteria({"$text": spec}))
        return self

    def where(self, js: str) -> "Query[T]":
        self.add(WhereCriteria(js))
        return self

    # --- Options ---
    def order(self, *sorts: Union[str, Sort]) -> "Query[T]":
        """
        Set the sort order, replacing any previous one.

        Accepts ``Sort`` objects or a comma separated string where a leading
        ``-`` sorts descending, e.g. ``order("last_name, -age")``.
        """
        order: List[Tuple[str, Any]] = []
        for item in sorts:
            if isinstance(item, Sort):
                order.append(self._sort_key(item.field, item.order))
                continue
            for part in item.split(","):
                part = part.strip()
                if not part:
                    continue
                if part.startswith("-"):
                    order.append(self._sort_key(part[1:].strip(), DESCENDING))
                else:
                    order.append(self._sort_key(part, ASCENDING))
        self._sort = order
        return self

    def _sort_key(self, field: str, direction: Any) -> Tuple[str, Any]:
        if field == Sort.NATURAL:
            return field, direction
        return self._translate(field), direction

    def _translate(self, field: str) -> str:
        return PathTarget(self.mapper, self.entity_class, field, self._validating).translated_path

    def project(self, field: str, include: bool = True) -> "Query[T]":
        stored = self._translate(field)
        value = 1 if include else 0
        if stored != ID_KEY:
            for existing, flag in self._projection.items():
                if existing != ID_KEY and flag != value:
                    raise ValidationError("You cannot mix included and excluded fields together")
        self._projection[stored] = value
        return self

    def retrieve_known_fields(self) -> "Query[T]":
        """Project exactly the mapped fields of the query's class."""
        mc = self.mapper.get_mapped_class(self.entity_class)
        self._projection = {mf.name_to_store: 1 for mf in mc.fields}
        return self

    def use_read_preference(self, read_preference: Any) -> "Query[T]":
        self._read_preference = read_preference
        return self

    def collation(self, collation: Collation) -> "Query[T]":
        self._collation = collation
        return self

    def limit(self, limit: int) -> "Query[T]":
        self.options.limit = limit
        return self

    def skip(self, skip: int) -> "Query[T]":
        self.options.skip = skip
        return self

    offset = skip

    def batch_size(self, size: int) -> "Query[T]":
        self.options.batch_size = size
        return self

    def max_time_ms(self, millis: int) -> "Query[T]":
        self.options.max_time_ms = millis
        return self

    def find_options(self, options: FindOptions) -> "Query[T]":
        self.options = options.copy()
        return self

    # --- Rendering ---
    def get_query_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {}
        self.add_to(document)
        discriminator = self._discriminator_filter()
        if discriminator:
            document.update(discriminator)
        return document

    def _discriminator_filter(self) -> Optional[Dict[str, Any]]:
        """Restrict a subclass query on a collection shared with its base classes."""
        mc = self.mapper.get_mapped_class(self.entity_class)
        if not mc.is_entity or not mc.uses_discriminator:
            return None
        collection = self.collection_name
        shares_with_base = any(
            base is not self.entity_class
            and issubclass(self.entity_class, base)
            for base in self.mapper.get_classes_for_collection(collection)
        )
        if not shares_with_base:
            return None
        names = [mc.discriminator_value] + [
            sub.discriminator_value for sub in self.mapper.get_sub_types(self.entity_class)
        ]
        return {self.mapper.options.discriminator_field: {"$in": names}}

    def get_sort_document(self) -> Optional[Dict[str, Any]]:
        return dict(self._sort) if self._sort else None

    def get_fields_document(self) -> Optional[Dict[str, int]]:
        if not self._projection:
            return None
        fields = dict(self._projection)
        including = any(flag == 1 for name, flag in fields.items() if name != ID_KEY)
        mc = self.mapper.get_mapped_class(self.entity_class)
        if including and mc.uses_discriminator:
            fields[self.mapper.options.discriminator_field] = 1
        return fields

    # --- Execution ---
    def _cursor(self, limit: Optional[int] = None, projection: Optional[Dict[str, int]] = None) -> Cursor:
        collection = self.collection
        if self._read_preference is not None:
            collection = collection.with_options(read_preference=self._read_preference)
        query_filter = self.get_query_document()
        fields = projection if projection is not None else self.get_fields_document()
        log.debug(f"find on '{collection.name}': filter={query_filter}, fields={fields}, options={self.options!r}")

        if self.options.no_cursor_timeout:
            cursor = collection.find(query_filter, fields, no_cursor_timeout=True)
        else:
            cursor = collection.find(query_filter, fields)
        if self._sort:
            cursor = cursor.sort(list(self._sort))
        if self.options.skip > 0:
            cursor = cursor.skip(self.options.skip)
        effective_limit = limit if limit is not None else self.options.limit
        if effective_limit > 0:
            cursor = cursor.limit(effective_limit)
        if self.options.batch_size is not None:
            cursor = cursor.batch_size(self.options.batch_size)
        if self.options.max_time_ms is not None:
            cursor = cursor.max_time_ms(self.options.max_time_ms)
        if self._collation is not None:
            cursor = cursor.collation(self._collation)
        return cursor

    def fetch(self) -> Iterator[T]:
        for document in self._cursor():
            yield self.mapper.from_document(self.entity_class, document, self.datastore)

    def __iter__(self) -> Iterator[T]:
        return self.fetch()

    def as_list(self) -> List[T]:
        return list(self.fetch())

    def get(self) -> Optional[T]:
        """The first matching entity, or ``None``."""
        for document in self._cursor(limit=1):
            return self.mapper.from_document(self.entity_class, document, self.datastore)
        return None

    def fetch_keys(self) -> Iterator[Key[T]]:
        projection = {ID_KEY: 1}
        discriminator = self.mapper.options.discriminator_field
        projection[discriminator] = 1
        for document in self._cursor(projection=projection):
            clazz = self.entity_class
            if document.get(discriminator):
                clazz = self.mapper.get_class_for_name(document[discriminator])
            yield Key(clazz, self.collection_name, document[ID_KEY])

    def as_key_list(self) -> List[Key[T]]:
        return list(self.fetch_keys())

    def get_key(self) -> Optional[Key[T]]:
        for key in self.fetch_keys():
            return key
        return None

    def count(self) -> int:
        query_filter = self.get_query_document()
        count_val = self.collection.count_documents(query_filter)
        log.debug(f"Counted {count_val} {self.entity_class.__name__}(s) matching {query_filter}")
        return int(count_val)

    # --- Copying and Comparison ---
    def clone(self) -> "Query[T]":
        clone = Query(self.entity_class, self.collection, self.datastore, self.mapper)
        for child in self.copy(clone).children:
            clone.add(child)
        clone.options = self.options.copy()
        clone._validating = self._validating
        clone._sort = list(self._sort)
        clone._projection = dict(self._projection)
        clone._read_preference = self._read_preference
        clone._collation = self._collation
        return clone

    def __deepcopy__(self, memo: Dict[int, Any]) -> "Query[T]":
        return self.clone()

    def __copy__(self) -> "Query[T]":
        return self.clone()

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Query):
            return NotImplemented
        return (
            self.entity_class is other.entity_class
            and self.collection_name == other.collection_name
            and self.get_query_document() == other.get_query_document()
            and self._sort == other._sort
            and self._projection == other._projection
            and self.options == other.options
            and self._validating == other._validating
        )

    __hash__ = None

    def __repr__(self) -> str:
        parts = [f"query={self.get_query_document()!r}"]
        if self._sort:
            parts.append(f"sort={self.get_sort_document()!r}")
        if self._projection:
            parts.append(f"fields={self.get_fields_document()!r}")
        parts.append(f"options={self.options!r}")
        return f"Query<{self.entity_class.__name__}>({', '.join(parts)})"
