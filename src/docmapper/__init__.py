# src/docmapper/__init__.py

"""
docmapper: an Object-Document Mapper for MongoDB.

Classes are declared with the ``entity``/``embedded`` decorators and
``typing.Annotated`` field markers, mapped by a ``Mapper`` and stored through
a ``Datastore`` created from ``DocMapper``.

It initializes a logger with a NullHandler and exposes the mapping
declarations, the query and update builders, and the exceptions at the top
level.
"""

import logging

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
# Library logs are discarded unless the consuming application configures
# logging for "docmapper".
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False

# --------------------------------------------------------------------------
# Mapping Declarations
# --------------------------------------------------------------------------
from .annotations import (
    CappedAt,
    Collation,
    Embedded,
    Id,
    Index,
    Indexed,
    IndexField,
    IndexOptions,
    IndexType,
    LifecyclePhase,
    Property,
    Reference,
    Text,
    Transient,
    Validation,
    Version,
    embedded,
    entity,
    indexes,
    post_load,
    post_persist,
    pre_load,
    pre_persist,
    pre_save,
)
from .interceptors import EntityInterceptor
from .key import Key

# --------------------------------------------------------------------------
# Exceptions
# --------------------------------------------------------------------------
from .base.exceptions import (
    ConcurrentModificationError,
    InvalidPathError,
    MappingError,
    QueryError,
    UpdateError,
    ValidationError,
    ValueTypeError,
)

# --------------------------------------------------------------------------
# Mapping, Queries and Updates
# --------------------------------------------------------------------------
from .mapping.mapped_class import MappedClass
from .mapping.mapped_field import MappedField
from .mapping.mapper import Mapper
from .mapping.options import MapperOptions
from .query.operators import FilterOperator
from .query.options import FindOptions, Sort
from .query.query import Query
from .query.shape import Shape
from .query.update import UpdateOperations

# --------------------------------------------------------------------------
# Datastore
# --------------------------------------------------------------------------
from .datastore import Datastore
from .docmapper import DocMapper
from .index_helper import IndexHelper

__all__ = [
    # Entry points
    "DocMapper",
    "Datastore",
    "Mapper",
    "MapperOptions",
    # Declarations
    "entity",
    "embedded",
    "indexes",
    "Id",
    "Property",
    "Embedded",
    "Reference",
    "Version",
    "Transient",
    "Indexed",
    "Text",
    "Index",
    "IndexField",
    "IndexOptions",
    "IndexType",
    "Collation",
    "CappedAt",
    "Validation",
    "LifecyclePhase",
    "pre_persist",
    "pre_save",
    "post_persist",
    "pre_load",
    "post_load",
    "EntityInterceptor",
    "Key",
    # Metadata
    "MappedClass",
    "MappedField",
    "IndexHelper",
    # Query
    "Query",
    "FilterOperator",
    "FindOptions",
    "Sort",
    "Shape",
    # Update
    "UpdateOperations",
    # Exceptions
    "MappingError",
    "ValidationError",
    "InvalidPathError",
    "ValueTypeError",
    "QueryError",
    "ConcurrentModificationError",
    "UpdateError",
    # Logging
    "logger",
]

__version__ = "0.1.0"
