# tests/query/test_update_operations.py

from decimal import Decimal

import pytest
from bson import DBRef, ObjectId

from docmapper import InvalidPathError, QueryError, UpdateOperations, ValueTypeError
from tests.models import Address, Author, Book, Note, Shelf, User


def test_set_uses_stored_names(mapper):
    """set() renders $set with translated paths."""
    ops = UpdateOperations(User, mapper).set("first_name", "Ann").set("address.city", "Paris")
    assert ops.get_operations() == {"$set": {"firstName": "Ann", "address.town": "Paris"}}


def test_set_same_field_twice_keeps_the_last_value(mapper):
    ops = UpdateOperations(User, mapper).set("age", 1).set("age", 2)
    assert ops.get_operations() == {"$set": {"age": 2}}
    assert len(ops) == 1


def test_set_encodes_embedded_values(mapper):
    ops = UpdateOperations(User, mapper).set("address", Address("1 Main St", "Paris"))
    assert ops.get_operations() == {
        "$set": {"address": {"className": "tests.models.Address", "street": "1 Main St", "town": "Paris"}}
    }


def test_set_reference_field(mapper):
    author = Author("Ann")
    author.id = ObjectId()
    ops = UpdateOperations(Book, mapper).set("author", author)
    assert ops.get_operations() == {"$set": {"author": DBRef("authors", author.id)}}

    ops = UpdateOperations(Shelf, mapper).set("by_role.editor", author)
    assert ops.get_operations() == {"$set": {"by_role.editor": DBRef("authors", author.id)}}


def test_set_validates_the_value(mapper):
    """Values of the wrong type are rejected unless validation is disabled."""
    with pytest.raises(ValueTypeError, match="User.age"):
        UpdateOperations(User, mapper).set("age", "old")
    ops = UpdateOperations(User, mapper).disable_validation().set("age", "old")
    assert ops.get_operations() == {"$set": {"age": "old"}}


def test_unknown_field_raises(mapper):
    with pytest.raises(InvalidPathError):
        UpdateOperations(User, mapper).set("shoe_size", 42)
    ops = UpdateOperations(User, mapper).disable_validation().set("shoe_size", 42)
    assert ops.get_operations() == {"$set": {"shoe_size": 42}}


def test_null_values_are_rejected(mapper):
    """Directives that take a value refuse None."""
    ops = UpdateOperations(User, mapper)
    for call in (
        lambda: ops.set("age", None),
        lambda: ops.set_on_insert("age", None),
        lambda: ops.inc("age", None),
        lambda: ops.push("tags", None),
        lambda: ops.add_to_set("tags", None),
        lambda: ops.remove_all("tags", None),
    ):
        with pytest.raises(QueryError, match="Value cannot be null."):
            call()
    assert not ops


def test_set_on_insert_and_unset(mapper):
    ops = UpdateOperations(User, mapper).set_on_insert("active", True).unset("status")
    assert ops.get_operations() == {"$setOnInsert": {"active": True}, "$unset": {"status": 1}}


# --- Numbers ---
def test_inc_and_dec(mapper):
    ops = UpdateOperations(User, mapper).inc("age").dec("balance", 2.5)
    assert ops.get_operations() == {"$inc": {"age": 1, "balance": -2.5}}


@pytest.mark.parametrize("value", [True, Decimal("1"), "1", [1]])
def test_inc_rejects_illegal_values(mapper, value):
    """Only int and float amounts are allowed."""
    with pytest.raises(TypeError, match="Currently only the following types are allowed"):
        UpdateOperations(User, mapper).inc("age", value)
    with pytest.raises(TypeError, match="Currently only the following types are allowed"):
        UpdateOperations(User, mapper).dec("age", value)


def test_numeric_directives_require_numeric_fields(mapper):
    with pytest.raises(ValueTypeError, match="non-numeric"):
        UpdateOperations(User, mapper).inc("first_name", 1)
    with pytest.raises(ValueTypeError, match="non-numeric"):
        UpdateOperations(User, mapper).max("tags", 1)


def test_max_and_min(mapper):
    ops = UpdateOperations(User, mapper).max("age", 40).min("balance", 0.0)
    assert ops.get_operations() == {"$max": {"age": 40}, "$min": {"balance": 0.0}}


# --- Arrays ---
def test_push_single_and_many(mapper):
    ops = UpdateOperations(User, mapper).push("tags", "a")
    assert ops.get_operations() == {"$push": {"tags": {"$each": ["a"]}}}

    ops = UpdateOperations(User, mapper).push("scores", [3, 1], position=0, slice=-5, sort=-1)
    assert ops.get_operations() == {
        "$push": {"scores": {"$each": [3, 1], "$position": 0, "$slice": -5, "$sort": -1}}
    }


def test_push_embedded_values(mapper):
    ops = UpdateOperations(User, mapper).push("addresses", Address("s", "Paris"))
    assert ops.get_operations() == {
        "$push": {
            "addresses": {"$each": [{"className": "tests.models.Address", "street": "s", "town": "Paris"}]}
        }
    }


def test_array_directives_require_array_fields(mapper):
    with pytest.raises(ValueTypeError, match="non-array"):
        UpdateOperations(User, mapper).push("age", 1)
    with pytest.raises(ValueTypeError, match="non-array"):
        UpdateOperations(User, mapper).remove_first("first_name")


def test_push_checks_element_types(mapper):
    with pytest.raises(ValueTypeError, match="whose elements are int"):
        UpdateOperations(User, mapper).push("scores", ["high"])


def test_add_to_set(mapper):
    ops = UpdateOperations(User, mapper).add_to_set("tags", "a")
    assert ops.get_operations() == {"$addToSet": {"tags": "a"}}

    ops = UpdateOperations(User, mapper).add_to_set("tags", ["a", "b"])
    assert ops.get_operations() == {"$addToSet": {"tags": {"$each": ["a", "b"]}}}


def test_remove_directives(mapper):
    ops = UpdateOperations(User, mapper).remove_all("tags", "a").remove_all("scores", [1, 2])
    assert ops.get_operations() == {"$pull": {"tags": "a"}, "$pullAll": {"scores": [1, 2]}}

    ops = UpdateOperations(User, mapper).remove_first("tags").remove_last("scores")
    assert ops.get_operations() == {"$pop": {"tags": -1, "scores": 1}}


# --- Versioning and flags ---
def test_versioned_class_increments_version(mapper):
    """Updates of versioned classes bump the version unless it is set explicitly."""
    ops = UpdateOperations(Note, mapper).set("text", "hi")
    assert ops.get_operations() == {"$set": {"text": "hi"}, "$inc": {"v": 1}}
    # Rendering twice does not accumulate.
    assert ops.get_operations() == {"$set": {"text": "hi"}, "$inc": {"v": 1}}

    ops = UpdateOperations(Note, mapper).set("version", 10)
    assert ops.get_operations() == {"$set": {"v": 10}}


def test_isolated_flag(mapper):
    ops = UpdateOperations(User, mapper)
    assert not ops.is_isolated()
    assert ops.isolated() is ops
    assert ops.is_isolated()


def test_empty_operations_are_falsy(mapper):
    ops = UpdateOperations(User, mapper)
    assert not ops
    assert len(ops) == 0
    assert repr(ops) == "UpdateOperations<User>({})"
    ops.inc("age")
    assert ops
