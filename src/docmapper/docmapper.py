# src/docmapper/docmapper.py

import logging
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pymongo import MongoClient
from pymongo.write_concern import WriteConcern

from .datastore import Datastore
from .interceptors import EntityInterceptor
from .mapping.mapped_class import MappedClass
from .mapping.mapper import Mapper
from .mapping.options import MapperOptions

log = logging.getLogger(__name__)

T = TypeVar("T")


class DocMapper:
    """
    Entry point: owns a ``Mapper`` and creates datastores that share it.

    Usage::

        docmapper = DocMapper()
        docmapper.map(User, Address)
        datastore = docmapper.create_datastore(MongoClient(), "app")
        datastore.ensure_indexes()
    """

    def __init__(self, options: Optional[MapperOptions] = None, mapper: Optional[Mapper] = None):
        self._mapper = mapper or Mapper(options)

    @property
    def mapper(self) -> Mapper:
        return self._mapper

    def map(self, *classes: type) -> "DocMapper":
        self._mapper.map(*classes)
        return self

    def map_package(self, package_name: str, include_subpackages: Optional[bool] = None) -> "DocMapper":
        self._mapper.map_package(package_name, include_subpackages)
        return self

    def is_mapped(self, clazz: type) -> bool:
        return self._mapper.is_mapped(clazz)

    def get_mapped_classes(self) -> List[MappedClass]:
        return self._mapper.get_mapped_classes()

    def add_interceptor(self, interceptor: EntityInterceptor) -> "DocMapper":
        self._mapper.add_interceptor(interceptor)
        return self

    def create_datastore(
        self,
        client: MongoClient,
        database_name: str,
        write_concern: Union[None, str, WriteConcern] = None,
    ) -> Datastore:
        log.debug(f"Creating datastore for database '{database_name}'")
        return Datastore(self._mapper, client, database_name, write_concern)

    def to_document(self, entity: Any) -> Dict[str, Any]:
        return self._mapper.to_document(entity)

    def from_document(self, clazz: Optional[Type[T]], document: Dict[str, Any], datastore: Optional[Datastore] = None) -> T:
        return self._mapper.from_document(clazz, document, datastore)
