# tests/test_index_helper.py

from typing import Annotated, Optional

import mongomock
import pytest
from bson import ObjectId
from pymongo.collation import Collation as PyMongoCollation

import docmapper
from docmapper import (
    Collation,
    Id,
    Index,
    IndexField,
    IndexHelper,
    IndexOptions,
    IndexType,
    InvalidPathError,
    ValidationError,
    entity,
    indexes,
)
from docmapper import annotations
from docmapper.index_helper import to_collation
from tests.models import Article, Member, User


@entity("weighted")
@indexes(Index(fields=[IndexField("name", weight=3)]))
class MisplacedWeight:
    id: Annotated[Optional[ObjectId], Id()]
    name: str

    def __init__(self):
        self.id = None
        self.name = ""


@entity("loose")
@indexes(
    Index(fields=[IndexField("extra.path")], options=IndexOptions(disable_validation=True)),
    Index(fields=[IndexField("$**")]),
    Index(fields=[IndexField("name", IndexType.TEXT, weight=5), IndexField("notes", IndexType.TEXT)]),
)
class LooseIndexes:
    id: Annotated[Optional[ObjectId], Id()]
    name: str
    notes: str

    def __init__(self):
        self.id = None
        self.name = ""
        self.notes = ""


@entity("broken_index")
@indexes(Index(fields=[IndexField("missing")]))
class UnknownIndexField:
    id: Annotated[Optional[ObjectId], Id()]

    def __init__(self):
        self.id = None


def test_package_indexes_is_the_decorator():
    """The package-level name stays bound to the class decorator."""
    assert docmapper.indexes is annotations.indexes
    assert callable(docmapper.indexes)


def test_collect_indexes_from_class_fields_and_embedded(mapper):
    """Class, field, text and embedded declarations are all collected."""
    helper = IndexHelper(mapper)
    specs = helper.collect_indexes(mapper.get_mapped_class(Article))
    assert specs == [
        ([("author", 1), ("published", -1)], {"name": "author_published", "unique": True}),
        ([("slug", 1)], {"unique": True, "sparse": True}),
        ([("title", "text"), ("body", "text")], {"weights": {"title": 10}}),
        ([("location.city", 1)], {}),
        ([("location.point", "2dsphere")], {}),
    ]


def test_class_without_indexes(mapper):
    assert IndexHelper(mapper).collect_indexes(mapper.get_mapped_class(User)) == []


def test_weight_on_non_text_field_raises(mapper):
    helper = IndexHelper(mapper)
    with pytest.raises(ValidationError, match="Weight values only apply to text indexes"):
        helper.collect_indexes(mapper.get_mapped_class(MisplacedWeight))


def test_index_paths_are_validated(mapper):
    helper = IndexHelper(mapper)
    with pytest.raises(InvalidPathError):
        helper.collect_indexes(mapper.get_mapped_class(UnknownIndexField))


def test_unvalidated_wildcard_and_weighted_text_indexes(mapper):
    specs = IndexHelper(mapper).collect_indexes(mapper.get_mapped_class(LooseIndexes))
    assert specs == [
        ([("extra.path", 1)], {}),
        ([("$**", 1)], {}),
        ([("name", "text"), ("notes", "text")], {"weights": {"name": 5}}),
    ]


def test_get_index_options(mapper):
    """Declared options are converted to driver option names."""
    options = IndexOptions(
        name="ttl",
        background=True,
        sparse=True,
        expire_after_seconds=60,
        partial_filter='{"age": {"$gt": 1}}',
        collation=Collation("en", strength=2),
        language="french",
        language_override="lang",
    )
    result = IndexHelper(mapper).get_index_options(options)
    collation = result.pop("collation")
    assert result == {
        "name": "ttl",
        "background": True,
        "sparse": True,
        "expireAfterSeconds": 60,
        "partialFilterExpression": {"age": {"$gt": 1}},
        "default_language": "french",
        "language_override": "lang",
    }
    assert isinstance(collation, PyMongoCollation)
    assert collation.document == {"locale": "en", "strength": 2}


def test_to_collation_uses_driver_names():
    collation = to_collation(
        Collation("de", case_level=True, case_first="upper", numeric_ordering=True, backwards=True)
    )
    assert collation.document == {
        "locale": "de",
        "caseLevel": True,
        "caseFirst": "upper",
        "numericOrdering": True,
        "backwards": True,
    }


def test_build_index_models(mapper):
    models = IndexHelper(mapper).build_index_models(mapper.get_mapped_class(Member), background=True)
    assert len(models) == 1
    document = models[0].document
    assert dict(document["key"]) == {"email": 1}
    assert document["unique"] is True
    assert document["background"] is True


def test_ensure_indexes_creates_unique_index(datastore):
    """Indexes are created on the entity's collection and enforced."""
    created = datastore.ensure_indexes(Member)
    assert list(created) == ["members"]
    assert len(created["members"]) == 1

    info = datastore.get_collection(Member).index_information()
    assert any(spec.get("unique") for name, spec in info.items() if name != "_id_")

    datastore.save(Member("a@example.com"))
    with pytest.raises(mongomock.DuplicateKeyError):
        datastore.save(Member("a@example.com"))
