# src/docmapper/datastore.py

import json
import logging
from typing import Any, Dict, Generic, Iterable, List, Optional, Type, TypeVar, Union

from bson import ObjectId
from pymongo import MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import CollectionInvalid, OperationFailure, PyMongoError
from pymongo.results import DeleteResult, InsertManyResult, InsertOneResult, UpdateResult
from pymongo.write_concern import WriteConcern

from .annotations import LifecyclePhase
from .base.exceptions import ConcurrentModificationError, MappingError, QueryError, UpdateError
from .base.model_validator import TypeValidator
from .index_helper import IndexHelper
from .key import Key
from .mapping.codec import Involved
from .mapping.mapped_class import MappedClass
from .mapping.mapped_field import ID_KEY
from .mapping.mapper import Mapper
from .query.criteria import RawCriteria
from .query.query import Query
from .query.update import UpdateOperations

T = TypeVar("T")

# MongoDB error code for a missing namespace.
NAMESPACE_NOT_FOUND = 26

WRITE_CONCERNS: Dict[str, WriteConcern] = {
    "ACKNOWLEDGED": WriteConcern(w=1),
    "UNACKNOWLEDGED": WriteConcern(w=0),
    "JOURNALED": WriteConcern(j=True),
    "MAJORITY": WriteConcern(w="majority"),
    "W1": WriteConcern(w=1),
    "W2": WriteConcern(w=2),
    "W3": WriteConcern(w=3),
}

_type_validator = TypeValidator()


def resolve_write_concern(concern: Union[None, str, WriteConcern]) -> Optional[WriteConcern]:
    if concern is None or isinstance(concern, WriteConcern):
        return concern
    resolved = WRITE_CONCERNS.get(str(concern).upper())
    if resolved is None:
        raise MappingError(f"Unknown write concern '{concern}'; expected one of {sorted(WRITE_CONCERNS)}")
    return resolved


class Datastore(Generic[T]):
    """
    CRUD, query and DDL operations for mapped classes on one database.

    Entities are converted with the mapper's codec; the resulting documents
    are written with the synchronous driver. Driver errors propagate
    unchanged. Versioned entities are written with a conditional update on
    their previous version and fail with ``ConcurrentModificationError`` when
    another writer got there first.
    """

    def __init__(
        self,
        mapper: Mapper,
        client: MongoClient,
        database_name: str,
        default_write_concern: Union[None, str, WriteConcern] = None,
    ):
        self._mapper = mapper
        self._client = client
        self._database_name = database_name
        self._db: Database = client[database_name]
        self._default_write_concern = resolve_write_concern(default_write_concern)
        self._index_helper = IndexHelper(mapper)
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}[{database_name}]")
        self._logger.info(f"Datastore created for database '{database_name}'")

    @property
    def mapper(self) -> Mapper:
        return self._mapper

    @property
    def database_name(self) -> str:
        return self._database_name

    def get_database(self) -> Database:
        return self._db

    # --- Collections ---
    def _write_concern(self, clazz: Optional[type], explicit: Union[None, str, WriteConcern] = None) -> Optional[WriteConcern]:
        concern = resolve_write_concern(explicit)
        if concern is None and clazz is not None:
            options = self._mapper.get_mapped_class(clazz).entity_options
            if options is not None and options.concern is not None:
                concern = resolve_write_concern(options.concern)
        return concern if concern is not None else self._default_write_concern

    def get_collection(
        self,
        clazz: type,
        collection: Optional[str] = None,
        write_concern: Union[None, str, WriteConcern] = None,
    ) -> Collection:
        name = collection or self._mapper.get_collection_name(clazz)
        coll = self._db[name]
        concern = self._write_concern(clazz, write_concern)
        if concern is not None:
            coll = coll.with_options(write_concern=concern)
        return coll

    def find_raw(self, collection: str, id_value: Any) -> Optional[Dict[str, Any]]:
        """The stored document with ``_id == id_value``, used to resolve references."""
        return self._db[collection].find_one({ID_KEY: id_value})

    # --- Queries ---
    def create_query(
        self,
        clazz: Type[T],
        collection: Optional[str] = None,
        base_query: Optional[Dict[str, Any]] = None,
    ) -> Query[T]:
        query = Query(clazz, self.get_collection(clazz, collection), self)
        if base_query:
            query.add(RawCriteria(base_query))
        return query

    def find(self, clazz: Type[T], collection: Optional[str] = None) -> Query[T]:
        return self.create_query(clazz, collection)

    def query_by_example(self, example: T) -> Query[T]:
        """A query matching every stored field of ``example`` that is set."""
        document = self._mapper.to_document(example)
        return self.create_query(type(example), base_query=document)

    def create_update_operations(self, clazz: Type[T]) -> UpdateOperations[T]:
        return UpdateOperations(clazz, self._mapper)

    # --- Reads ---
    def get(self, clazz: Type[T], id_value: Any) -> Optional[T]:
        return self.find(clazz).filter(ID_KEY, id_value).get()

    def get_by_ids(self, clazz: Type[T], ids: Iterable[Any]) -> Query[T]:
        return self.find(clazz).field(ID_KEY).in_(list(ids))

    def get_entity(self, entity: T) -> Optional[T]:
        """Reload ``entity`` from its collection."""
        key = self._mapper.get_key(entity)
        if key is None:
            raise MappingError(f"Could not get the id of {type(entity).__name__}; it has not been saved.")
        return self.get_by_key(type(entity), key)

    def get_by_key(self, clazz: Type[T], key: Key) -> Optional[T]:
        return self.find(clazz, key.collection).filter(ID_KEY, key.id).get()

    def get_by_keys(self, keys: Iterable[Key], clazz: Optional[type] = None) -> List[Any]:
        """
        Load the entities behind ``keys`` with one query per collection.

        Results follow the order of ``keys``; keys whose document no longer
        exists are skipped.
        """
        keys = list(keys)
        by_collection: Dict[str, List[Key]] = {}
        for key in keys:
            collection = key.collection or self._mapper.get_collection_name(key.type)
            by_collection.setdefault(collection, []).append(key)

        found: Dict[tuple, Any] = {}
        for collection, collection_keys in by_collection.items():
            target = clazz or collection_keys[0].type or self._mapper.get_class_for_collection(collection)
            if target is None:
                raise MappingError(f"No mapped class found for collection '{collection}'")
            ids = [k.id for k in collection_keys]
            query = self.find(target, collection).disable_validation().field(ID_KEY).in_(ids)
            for entity in query.fetch():
                found[(collection, self._mapper.get_id(entity))] = entity

        results = []
        for key in keys:
            collection = key.collection or self._mapper.get_collection_name(key.type)
            entity = found.get((collection, key.id))
            if entity is not None:
                results.append(entity)
        self._logger.debug(f"Loaded {len(results)} of {len(keys)} entities by key")
        return results

    def exists(self, entity_or_key: Any) -> Optional[Key]:
        key = self._mapper.get_key(entity_or_key)
        if key is None:
            return None
        collection = key.collection or self._mapper.get_collection_name(key.type)
        document = self._db[collection].find_one(
            {ID_KEY: self._mapper.to_query_value(key.id)}, {ID_KEY: 1}
        )
        return key if document is not None else None

    def get_count(self, clazz_or_query: Union[type, Query]) -> int:
        if isinstance(clazz_or_query, Query):
            return clazz_or_query.count()
        return self.find(clazz_or_query).count()

    def get_key(self, entity: Any) -> Optional[Key]:
        return self._mapper.get_key(entity)

    # --- Writes ---
    def _entity_class(self, entity: Any) -> MappedClass:
        mc = self._mapper.get_mapped_class(entity)
        if not mc.is_entity:
            raise MappingError(f"{type(entity).__name__} is not an entity and cannot be stored on its own")
        return mc

    def _ensure_id(self, mc: MappedClass, entity: Any) -> None:
        id_field = mc.id_field
        if id_field.get_value(entity) is not None:
            return
        if not _type_validator.is_valid(ObjectId(), id_field.generic_type):
            raise MappingError(
                f"{mc.clazz.__name__} has no id value and its id type cannot hold a generated ObjectId; "
                "assign an id before saving"
            )
        id_field.set_value(entity, ObjectId())
        self._logger.debug(f"Generated id {id_field.get_value(entity)} for new {mc.clazz.__name__}")

    def _post_persist(self, involved: Involved) -> None:
        for obj, document in involved:
            mc = self._mapper.get_mapped_class(obj)
            mc.call_lifecycle_methods(LifecyclePhase.POST_PERSIST, obj, document, self._mapper)

    def save(self, entity: T, write_concern: Union[None, str, WriteConcern] = None) -> Key[T]:
        """Insert or replace ``entity``; returns its key."""
        mc = self._entity_class(entity)
        collection = self.get_collection(type(entity), write_concern=write_concern)
        involved: Involved = []
        if mc.version_field is not None:
            self._save_versioned(mc, entity, collection, involved)
        else:
            had_id = mc.id_field.get_value(entity) is not None
            self._ensure_id(mc, entity)
            document = self._mapper.to_document(entity, involved)
            if had_id:
                collection.replace_one({ID_KEY: document[ID_KEY]}, document, upsert=True)
            else:
                collection.insert_one(document)
            self._logger.debug(f"Saved {mc.clazz.__name__} {document[ID_KEY]!r} in '{collection.name}'")
        self._post_persist(involved)
        return self._mapper.get_key(entity, collection.name)

    def _save_versioned(self, mc: MappedClass, entity: Any, collection: Collection, involved: Involved) -> None:
        version = mc.version_field
        old_version = version.get_value(entity)
        new_version = 1 if old_version is None else old_version + 1
        version.set_value(entity, new_version)
        try:
            if old_version is None:
                self._ensure_id(mc, entity)
            document = self._mapper.to_document(entity, involved)
            if old_version is None:
                collection.insert_one(document)
                return
            result = collection.replace_one(
                {ID_KEY: document[ID_KEY], version.name_to_store: old_version}, document
            )
        except (PyMongoError, MappingError):
            version.set_value(entity, old_version)
            raise
        if result.modified_count != 1:
            version.set_value(entity, old_version)
            self._raise_concurrent(mc, entity, old_version)

    def _raise_concurrent(self, mc: MappedClass, entity: Any, version: Any) -> None:
        id_value = self._mapper.get_id(entity)
        self._logger.warning(f"Version conflict on {mc.clazz.__name__} {id_value!r} at version {version}")
        raise ConcurrentModificationError(
            f"Entity of class {mc.clazz.__name__} (id='{id_value}',version='{version}') was concurrently updated."
        )

    def save_many(self, entities: Iterable[T], write_concern: Union[None, str, WriteConcern] = None) -> List[Key[T]]:
        return [self.save(entity, write_concern) for entity in entities]

    def _prepare_insert(self, mc: MappedClass, entity: Any, involved: Involved) -> Dict[str, Any]:
        self._ensure_id(mc, entity)
        version = mc.version_field
        if version is not None and version.get_value(entity) is None:
            version.set_value(entity, 1)
        return self._mapper.to_document(entity, involved)

    def insert_one(self, entity: T, write_concern: Union[None, str, WriteConcern] = None) -> InsertOneResult:
        mc = self._entity_class(entity)
        involved: Involved = []
        document = self._prepare_insert(mc, entity, involved)
        result = self.get_collection(type(entity), write_concern=write_concern).insert_one(document)
        self._post_persist(involved)
        return result

    def insert_many(
        self, entities: Iterable[T], write_concern: Union[None, str, WriteConcern] = None
    ) -> List[InsertManyResult]:
        """Insert ``entities`` with one ``insert_many`` per target collection."""
        batches: Dict[str, List[Dict[str, Any]]] = {}
        classes: Dict[str, type] = {}
        involved: Involved = []
        for entity in entities:
            mc = self._entity_class(entity)
            name = self._mapper.get_collection_name(entity)
            batches.setdefault(name, []).append(self._prepare_insert(mc, entity, involved))
            classes.setdefault(name, type(entity))
        results = []
        for name, documents in batches.items():
            collection = self.get_collection(classes[name], name, write_concern)
            results.append(collection.insert_many(documents))
            self._logger.debug(f"Inserted {len(documents)} document(s) into '{name}'")
        self._post_persist(involved)
        return results

    def merge(self, entity: T, write_concern: Union[None, str, WriteConcern] = None) -> Key[T]:
        """Write the stored fields of ``entity`` with ``$set``, leaving other fields alone."""
        mc = self._entity_class(entity)
        id_value = mc.id_field.get_value(entity)
        if id_value is None:
            raise MappingError(f"Cannot merge {mc.clazz.__name__} without an id")
        collection = self.get_collection(type(entity), write_concern=write_concern)
        version = mc.version_field
        old_version = version.get_value(entity) if version is not None else None
        if version is not None:
            version.set_value(entity, 1 if old_version is None else old_version + 1)

        involved: Involved = []
        try:
            document = self._mapper.to_document(entity, involved)
        except MappingError:
            if version is not None:
                version.set_value(entity, old_version)
            raise
        query_filter: Dict[str, Any] = {ID_KEY: document.pop(ID_KEY)}
        if version is not None:
            # A missing in-memory version only matches documents stored without one.
            query_filter[version.name_to_store] = old_version

        result = collection.update_one(query_filter, {"$set": document})
        if version is not None and result.modified_count != 1:
            version.set_value(entity, old_version)
            self._raise_concurrent(mc, entity, old_version)
        if result.matched_count != 1:
            if version is not None:
                version.set_value(entity, old_version)
            raise UpdateError("Nothing updated")
        self._post_persist(involved)
        return self._mapper.get_key(entity, collection.name)

    # --- Updates ---
    def _update_filter(self, query: Query, ops: UpdateOperations) -> Dict[str, Any]:
        if not ops:
            raise QueryError("No update operations were specified.")
        query_filter = query.get_query_document()
        if ops.is_isolated():
            query_filter["$isolated"] = 1
        return query_filter

    def update(
        self,
        entity_or_key: Any,
        ops: UpdateOperations,
        write_concern: Union[None, str, WriteConcern] = None,
    ) -> UpdateResult:
        """Apply ``ops`` to the single document identified by an entity or a key."""
        if not ops:
            raise QueryError("No update operations were specified.")
        if isinstance(entity_or_key, Key):
            key = entity_or_key
            clazz = key.type or ops.model_cls
            collection = self.get_collection(clazz, key.collection, write_concern)
            result = collection.update_one(
                {ID_KEY: self._mapper.to_query_value(key.id)}, ops.get_operations()
            )
            return result

        entity = entity_or_key
        mc = self._entity_class(entity)
        id_value = mc.id_field.get_value(entity)
        if id_value is None:
            raise MappingError(f"Cannot update {mc.clazz.__name__} without an id")
        query_filter: Dict[str, Any] = {ID_KEY: self._mapper.to_query_value(id_value)}
        version = mc.version_field
        old_version = version.get_value(entity) if version is not None else None
        if old_version is not None:
            query_filter[version.name_to_store] = old_version
        collection = self.get_collection(type(entity), write_concern=write_concern)
        result = collection.update_one(query_filter, ops.get_operations())
        if old_version is not None and result.modified_count == 1:
            version.set_value(entity, old_version + 1)
        return result

    def update_one(
        self,
        query: Query,
        ops: UpdateOperations,
        upsert: bool = False,
        write_concern: Union[None, str, WriteConcern] = None,
    ) -> UpdateResult:
        query_filter = self._update_filter(query, ops)
        collection = self.get_collection(query.entity_class, query.collection_name, write_concern)
        operations = ops.get_operations()
        self._logger.debug(f"update_one on '{collection.name}': filter={query_filter}, update={operations}")
        return collection.update_one(query_filter, operations, upsert=upsert)

    def update_many(
        self,
        query: Query,
        ops: UpdateOperations,
        upsert: bool = False,
        write_concern: Union[None, str, WriteConcern] = None,
    ) -> UpdateResult:
        query_filter = self._update_filter(query, ops)
        collection = self.get_collection(query.entity_class, query.collection_name, write_concern)
        operations = ops.get_operations()
        self._logger.debug(f"update_many on '{collection.name}': filter={query_filter}, update={operations}")
        result = collection.update_many(query_filter, operations, upsert=upsert)
        self._logger.info(f"Updated {result.modified_count} {query.entity_class.__name__}(s)")
        return result

    def find_and_modify(
        self,
        query: Query[T],
        ops: UpdateOperations,
        return_new: bool = True,
        upsert: bool = False,
    ) -> Optional[T]:
        query_filter = self._update_filter(query, ops)
        collection = self.get_collection(query.entity_class, query.collection_name)
        sort = query.get_sort_document()
        document = collection.find_one_and_update(
            query_filter,
            ops.get_operations(),
            projection=query.get_fields_document(),
            sort=list(sort.items()) if sort else None,
            upsert=upsert,
            return_document=ReturnDocument.AFTER if return_new else ReturnDocument.BEFORE,
        )
        if document is None:
            return None
        return self._mapper.from_document(query.entity_class, document, self)

    def find_and_delete(self, query: Query[T]) -> Optional[T]:
        collection = self.get_collection(query.entity_class, query.collection_name)
        sort = query.get_sort_document()
        document = collection.find_one_and_delete(
            query.get_query_document(),
            projection=query.get_fields_document(),
            sort=list(sort.items()) if sort else None,
        )
        if document is None:
            return None
        return self._mapper.from_document(query.entity_class, document, self)

    # --- Deletes ---
    def delete(self, entity: Any, write_concern: Union[None, str, WriteConcern] = None) -> DeleteResult:
        key = self._mapper.get_key(entity)
        if key is None:
            raise MappingError(f"Cannot delete {type(entity).__name__} without an id")
        collection = self.get_collection(key.type, key.collection, write_concern)
        return collection.delete_one({ID_KEY: self._mapper.to_query_value(key.id)})

    def _check_delete_collection(self, clazz: type, collection: Optional[str]) -> None:
        if collection is None:
            return
        mapped = self._mapper.get_classes_for_collection(collection)
        if mapped and not any(issubclass(clazz, other) for other in mapped):
            names = ", ".join(c.__name__ for c in mapped)
            raise MappingError(
                f"Collection '{collection}' is mapped to {names}; it cannot hold {clazz.__name__}"
            )

    def delete_by_id(
        self,
        clazz: type,
        id_value: Any,
        collection: Optional[str] = None,
        write_concern: Union[None, str, WriteConcern] = None,
    ) -> DeleteResult:
        self._check_delete_collection(clazz, collection)
        coll = self.get_collection(clazz, collection, write_concern)
        return coll.delete_one({ID_KEY: self._mapper.to_query_value(id_value)})

    def delete_by_ids(
        self,
        clazz: type,
        ids: Iterable[Any],
        collection: Optional[str] = None,
        write_concern: Union[None, str, WriteConcern] = None,
    ) -> DeleteResult:
        self._check_delete_collection(clazz, collection)
        coll = self.get_collection(clazz, collection, write_concern)
        encoded = [self._mapper.to_query_value(i) for i in ids]
        return coll.delete_many({ID_KEY: {"$in": encoded}})

    def delete_one(self, query: Query, write_concern: Union[None, str, WriteConcern] = None) -> DeleteResult:
        coll = self.get_collection(query.entity_class, query.collection_name, write_concern)
        return coll.delete_one(query.get_query_document())

    def delete_many(self, query: Query, write_concern: Union[None, str, WriteConcern] = None) -> DeleteResult:
        coll = self.get_collection(query.entity_class, query.collection_name, write_concern)
        result = coll.delete_many(query.get_query_document())
        self._logger.info(f"Deleted {result.deleted_count} {query.entity_class.__name__}(s)")
        return result

    # --- DDL ---
    def _entity_classes(self, clazz: Optional[type] = None) -> List[MappedClass]:
        if clazz is not None:
            return [self._mapper.get_mapped_class(clazz)]
        return [mc for mc in self._mapper.get_mapped_classes() if mc.is_entity and not mc.is_abstract]

    def ensure_indexes(self, clazz: Optional[type] = None, background: bool = False) -> Dict[str, List[str]]:
        created: Dict[str, List[str]] = {}
        for mc in self._entity_classes(clazz):
            collection = self.get_collection(mc.clazz)
            self._logger.info(f"Ensuring indexes for {mc.clazz.__name__} on '{collection.name}'")
            names = self._index_helper.create_indexes(mc, collection, background)
            created.setdefault(collection.name, []).extend(names)
        return created

    def ensure_caps(self) -> List[str]:
        """Create the capped collections declared with ``cap``; returns the names created."""
        created = []
        existing = set(self._db.list_collection_names())
        for mc in self._entity_classes():
            cap = mc.entity_options.cap
            if cap is None:
                continue
            name = self._mapper.get_collection_name(mc.clazz)
            if name in existing:
                if not self._db[name].options().get("capped"):
                    self._logger.warning(
                        f"Collection '{name}' exists but is not capped; it was not converted for {mc.clazz.__name__}"
                    )
                continue
            kwargs: Dict[str, Any] = {"capped": True, "size": cap.size}
            if cap.count > 0:
                kwargs["max"] = cap.count
            try:
                self._db.create_collection(name, **kwargs)
            except CollectionInvalid as e:
                self._logger.warning(f"Could not create capped collection '{name}': {e}")
                continue
            existing.add(name)
            created.append(name)
            self._logger.info(f"Created capped collection '{name}' ({kwargs})")
        return created

    def enable_document_validation(self) -> List[str]:
        """Apply the declared ``validation`` schemas; returns the collections changed."""
        changed = []
        for mc in self._entity_classes():
            validation = mc.entity_options.validation
            if validation is None:
                continue
            name = self._mapper.get_collection_name(mc.clazz)
            validator = json.loads(validation.value) if isinstance(validation.value, str) else dict(validation.value)
            try:
                self._db.command(
                    "collMod",
                    name,
                    validator=validator,
                    validationLevel=validation.level,
                    validationAction=validation.action,
                )
            except OperationFailure as e:
                if e.code != NAMESPACE_NOT_FOUND:
                    self._logger.error(f"Failed to enable validation on '{name}': {e}", exc_info=True)
                    raise
                self._db.create_collection(
                    name,
                    validator=validator,
                    validationLevel=validation.level,
                    validationAction=validation.action,
                )
            changed.append(name)
            self._logger.info(f"Enabled document validation on '{name}' ({validation.level}/{validation.action})")
        return changed

    def __repr__(self) -> str:
        return f"Datastore(database={self._database_name!r}, mapper={self._mapper!r})"
