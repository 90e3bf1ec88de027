# tests/test_datastore.py

import pytest
from bson import DBRef, ObjectId
from pymongo.write_concern import WriteConcern

from docmapper import (
    ConcurrentModificationError,
    Key,
    MappingError,
    QueryError,
    UpdateError,
)
from docmapper.datastore import resolve_write_concern
from tests.models import (
    Address,
    Animal,
    Author,
    Book,
    Cat,
    Dog,
    Hooked,
    Note,
    Product,
    User,
)


def save_users(datastore):
    users = [
        User(first_name="Ann", last_name="Lee", age=30, tags=["admin"]),
        User(first_name="Bob", last_name="Lee", age=40),
        User(first_name="Cy", last_name="Ng", age=50, address=Address("1 Main St", "Paris")),
    ]
    datastore.save_many(users)
    return users


# --- Save and load ---
def test_save_generates_an_id_and_returns_a_key(datastore):
    user = User(first_name="Ann", age=30)
    key = datastore.save(user)
    assert isinstance(user.id, ObjectId)
    assert key == Key(User, "users", user.id)

    stored = datastore.get_database()["users"].find_one({"_id": user.id})
    assert stored["firstName"] == "Ann"
    assert stored["className"] == "tests.models.User"


def test_get_round_trip(datastore):
    user = User(first_name="Ann", age=30, address=Address("1 Main St", "Paris"), tags=["a", "b"])
    datastore.save(user)
    loaded = datastore.get(User, user.id)
    assert loaded.id == user.id
    assert loaded.first_name == "Ann"
    assert loaded.address.city == "Paris"
    assert loaded.tags == ["a", "b"]
    assert datastore.get(User, ObjectId()) is None


def test_save_with_existing_id_replaces(datastore):
    """Saving an entity whose id is set upserts the whole document."""
    user = User(first_name="Ann", tags=["a"])
    datastore.save(user)
    user.first_name = "Anne"
    user.tags = []
    datastore.save(user)

    assert datastore.get_count(User) == 1
    stored = datastore.get_database()["users"].find_one({"_id": user.id})
    assert stored["firstName"] == "Anne"
    assert "tags" not in stored


def test_save_with_assigned_string_id(datastore):
    product = Product(id="p-1", name="Pen", unitPrice=2.5)
    key = datastore.save(product)
    assert key.id == "p-1"
    loaded = datastore.get(Product, "p-1")
    assert loaded.name == "Pen"
    assert loaded.unit_price == 2.5


def test_save_without_generatable_id_raises(datastore):
    """Ids that cannot hold an ObjectId must be assigned before saving."""
    with pytest.raises(MappingError, match="assign an id before saving"):
        datastore.save(Product(name="Pen"))


def test_save_non_entity_raises(datastore):
    with pytest.raises(MappingError, match="is not an entity"):
        datastore.save(Address("1 Main St", "Paris"))


def test_lifecycle_hooks_on_save(datastore):
    hooked = Hooked("h")
    datastore.save(hooked)
    assert hooked.calls == ["pre_persist", "pre_save", "post_persist"]
    stored = datastore.get_database()["hooked"].find_one({"_id": hooked.id})
    assert stored["stamped"] is True
    assert stored["saved_by"] == "hook"


def test_insert_one_and_insert_many(datastore):
    """insert_many sends one batch per collection."""
    result = datastore.insert_one(Author("Ann"))
    assert isinstance(result.inserted_id, ObjectId)

    results = datastore.insert_many([Author("Bo"), Author("Cy"), Dog("Rex")])
    assert sorted(len(r.inserted_ids) for r in results) == [1, 2]
    assert datastore.get_count(Author) == 3
    assert datastore.get_count(Dog) == 1


# --- Versioning ---
def test_versioned_save_increments_version(datastore):
    note = Note("first")
    datastore.save(note)
    assert note.version == 1
    note.text = "second"
    datastore.save(note)
    assert note.version == 2
    assert datastore.get_database()["notes"].find_one({"_id": note.id})["v"] == 2


def test_stale_versioned_save_raises(datastore):
    """A save based on an outdated version fails and leaves the entity untouched."""
    note = Note("first")
    datastore.save(note)
    stale = datastore.get(Note, note.id)

    note.text = "second"
    datastore.save(note)

    stale.text = "conflict"
    with pytest.raises(ConcurrentModificationError, match="was concurrently updated"):
        datastore.save(stale)
    assert stale.version == 1
    assert datastore.get(Note, note.id).text == "second"


# --- Merge ---
def test_merge_sets_only_stored_fields(datastore):
    """Fields the entity does not carry are left as stored."""
    user = User(first_name="Ann", tags=["a"])
    datastore.save(user)

    partial = User(first_name="Anne")
    partial.id = user.id
    datastore.merge(partial)

    stored = datastore.get(User, user.id)
    assert stored.first_name == "Anne"
    assert stored.tags == ["a"]


def test_merge_of_missing_document_raises(datastore):
    user = User(first_name="Ghost")
    user.id = ObjectId()
    with pytest.raises(UpdateError, match="Nothing updated"):
        datastore.merge(user)
    with pytest.raises(MappingError):
        datastore.merge(User(first_name="No id"))


def test_merge_of_stale_version_raises(datastore):
    note = Note("first")
    datastore.save(note)
    stale = datastore.get(Note, note.id)
    datastore.save(note)

    with pytest.raises(ConcurrentModificationError):
        datastore.merge(stale)
    assert stale.version == 1


def test_merge_without_version_does_not_overwrite_a_versioned_document(datastore):
    """An entity with no version only merges into documents stored without one."""
    note = Note("first")
    datastore.save(note)
    datastore.save(note)

    detached = Note("overwrite")
    detached.id = note.id
    with pytest.raises(ConcurrentModificationError, match="version='None'"):
        datastore.merge(detached)
    assert detached.version is None
    stored = datastore.get(Note, note.id)
    assert stored.text == "first"
    assert stored.version == 2

    legacy_id = ObjectId()
    datastore.get_database()["notes"].insert_one({"_id": legacy_id, "text": "legacy"})
    legacy = Note("merged")
    legacy.id = legacy_id
    datastore.merge(legacy)
    assert legacy.version == 1
    assert datastore.get(Note, legacy_id).text == "merged"


# --- References ---
def test_references_are_resolved_on_load(datastore):
    author = Author("Ann")
    editor = Author("Ed")
    datastore.save_many([author, editor])
    book = Book("Guide", author=author, editor=editor, reviewers=[author, editor])
    datastore.save(book)

    stored = datastore.get_database()["books"].find_one({"_id": book.id})
    assert stored["author"] == DBRef("authors", author.id)
    assert stored["editor"] == editor.id

    loaded = datastore.get(Book, book.id)
    assert isinstance(loaded.author, Author)
    assert loaded.author.name == "Ann"
    assert loaded.editor.name == "Ed"
    assert [a.name for a in loaded.reviewers] == ["Ann", "Ed"]


def test_missing_references(datastore):
    """Missing targets decode as None when ignored and fail otherwise."""
    author = Author("Ann")
    editor = Author("Ed")
    datastore.save_many([author, editor])
    book = Book("Guide", author=author, editor=editor)
    datastore.save(book)

    datastore.delete(editor)
    assert datastore.get(Book, book.id).editor is None

    datastore.delete(author)
    with pytest.raises(MappingError, match="could not be fetched"):
        datastore.get(Book, book.id)


# --- Queries ---
def test_query_order_limit_and_skip(datastore):
    save_users(datastore)
    query = datastore.find(User).order("-age")
    assert [u.age for u in query.limit(2).as_list()] == [50, 40]
    assert [u.age for u in datastore.find(User).order("age").skip(1)] == [40, 50]


def test_query_get_and_count(datastore):
    save_users(datastore)
    assert datastore.find(User).filter("age >", 45).get().first_name == "Cy"
    assert datastore.find(User).filter("age >", 99).get() is None
    assert datastore.find(User).filter("last_name", "Lee").count() == 2
    assert datastore.get_count(datastore.find(User).filter("tags", "admin")) == 1
    assert datastore.find(User).filter("address.city", "Paris").count() == 1


def test_python_and_stored_names_select_the_same_documents(datastore):
    """Filtering by the attribute name or the stored name is equivalent."""
    save_users(datastore)
    by_python_name = datastore.find(User).filter("first_name", "Ann")
    by_stored_name = datastore.find(User).filter("firstName", "Ann")
    assert by_python_name.get_query_document() == by_stored_name.get_query_document()
    assert by_python_name.count() == by_stored_name.count() == 1
    assert datastore.find(User).filter("lastName", "Lee").count() == 2


def test_query_projection(datastore):
    """Unprojected fields keep their constructor defaults."""
    save_users(datastore)
    user = datastore.find(User).filter("first_name", "Ann").project("first_name").get()
    assert user.first_name == "Ann"
    assert user.last_name == ""
    assert user.tags == []


def test_query_keys(datastore):
    users = save_users(datastore)
    keys = datastore.find(User).order("age").as_key_list()
    assert keys == [Key(User, "users", u.id) for u in users]
    assert datastore.find(User).filter("age", 40).get_key() == Key(User, "users", users[1].id)


def test_query_by_example(datastore):
    save_users(datastore)
    found = datastore.query_by_example(User(first_name="Bob", last_name="Lee", age=40)).as_list()
    assert [u.first_name for u in found] == ["Bob"]


def test_polymorphic_queries(datastore):
    """Base class queries return every subtype; subclass queries only their own."""
    datastore.save_many([Dog("Rex", "collie"), Cat("Tom"), Dog("Fido", "pug")])
    animals = datastore.find(Animal).order("name").as_list()
    assert [type(a) for a in animals] == [Dog, Dog, Cat]
    assert datastore.find(Dog).count() == 2
    assert datastore.find(Cat).count() == 1
    assert {k.type for k in datastore.find(Animal).as_key_list()} == {Dog, Cat}


# --- Lookups ---
def test_get_by_ids_and_keys(datastore):
    users = save_users(datastore)
    found = datastore.get_by_ids(User, [users[0].id, users[2].id]).order("age").as_list()
    assert [u.first_name for u in found] == ["Ann", "Cy"]

    dog = Dog("Rex")
    datastore.save(dog)
    keys = [
        Key(User, "users", users[2].id),
        Key(Dog, "animals", dog.id),
        Key(User, "users", ObjectId()),
        Key(User, "users", users[0].id),
    ]
    loaded = datastore.get_by_keys(keys)
    assert [type(e) for e in loaded] == [User, Dog, User]
    assert loaded[0].first_name == "Cy"
    assert loaded[2].first_name == "Ann"


def test_get_by_key_entity_and_exists(datastore):
    user = User(first_name="Ann")
    key = datastore.save(user)
    assert datastore.get_by_key(User, key).first_name == "Ann"
    assert datastore.get_entity(user).id == user.id
    assert datastore.exists(user) == key
    assert datastore.exists(Key(User, "users", ObjectId())) is None
    assert datastore.exists(User()) is None
    assert datastore.get_key(user) == key

    with pytest.raises(MappingError):
        datastore.get_entity(User())


# --- Updates ---
def test_update_many(datastore):
    save_users(datastore)
    ops = datastore.create_update_operations(User).set("active", False)
    result = datastore.update_many(datastore.find(User).filter("last_name", "Lee"), ops)
    assert result.modified_count == 2
    assert datastore.find(User).filter("active", False).count() == 2


def test_update_one_with_upsert(datastore):
    ops = datastore.create_update_operations(User).set("last_name", "New").set_on_insert("age", 5)
    result = datastore.update_one(datastore.find(User).filter("first_name", "Zed"), ops, upsert=True)
    assert result.upserted_id is not None
    stored = datastore.find(User).filter("first_name", "Zed").get()
    assert stored.last_name == "New"
    assert stored.age == 5


def test_add_to_set_twice_changes_the_array_once(datastore):
    """Re-applying $addToSet with the same value leaves the document unchanged."""
    users = save_users(datastore)
    query = datastore.find(User).filter("_id", users[1].id)
    ops = datastore.create_update_operations(User).add_to_set("tags", "ops")

    assert datastore.update_one(query, ops).modified_count == 1
    assert datastore.update_one(query, ops).modified_count == 0
    assert datastore.get(User, users[1].id).tags == ["ops"]


def test_update_requires_operations(datastore):
    with pytest.raises(QueryError):
        datastore.update_many(datastore.find(User), datastore.create_update_operations(User))
    with pytest.raises(QueryError):
        datastore.update(Key(User, "users", ObjectId()), datastore.create_update_operations(User))


def test_update_by_entity_and_key(datastore):
    note = Note("first")
    datastore.save(note)
    ops = datastore.create_update_operations(Note).set("text", "second")
    result = datastore.update(note, ops)
    assert result.modified_count == 1
    assert note.version == 2
    assert datastore.get(Note, note.id).version == 2

    user = User(first_name="Ann", age=1)
    key = datastore.save(user)
    datastore.update(key, datastore.create_update_operations(User).inc("age", 2))
    assert datastore.get(User, user.id).age == 3


def test_find_and_modify(datastore):
    save_users(datastore)
    query = datastore.find(User).filter("first_name", "Ann")
    ops = datastore.create_update_operations(User).inc("age")

    after = datastore.find_and_modify(query, ops)
    assert after.age == 31
    before = datastore.find_and_modify(query, ops, return_new=False)
    assert before.age == 31
    assert datastore.find_and_modify(datastore.find(User).filter("first_name", "Nobody"), ops) is None


def test_find_and_delete(datastore):
    save_users(datastore)
    deleted = datastore.find_and_delete(datastore.find(User).order("-age"))
    assert deleted.first_name == "Cy"
    assert datastore.get_count(User) == 2


# --- Deletes ---
def test_delete_variants(datastore):
    users = save_users(datastore)
    assert datastore.delete(users[0]).deleted_count == 1
    assert datastore.delete_by_id(User, users[1].id).deleted_count == 1
    assert datastore.get_count(User) == 1

    more = save_users(datastore)
    assert datastore.delete_by_ids(User, [more[0].id, more[1].id]).deleted_count == 2
    assert datastore.delete_one(datastore.find(User)).deleted_count == 1
    assert datastore.delete_many(datastore.find(User)).deleted_count == 1
    assert datastore.get_count(User) == 0


def test_delete_from_foreign_collection_raises(datastore):
    """A class cannot be deleted from a collection mapped to unrelated classes."""
    with pytest.raises(MappingError, match="cannot hold User"):
        datastore.delete_by_id(User, ObjectId(), collection="animals")
    with pytest.raises(MappingError):
        datastore.delete(User())


# --- Write concerns ---
def test_resolve_write_concern():
    assert resolve_write_concern(None) is None
    assert resolve_write_concern("majority") == WriteConcern(w="majority")
    assert resolve_write_concern("UNACKNOWLEDGED") == WriteConcern(w=0)
    concern = WriteConcern(w=2)
    assert resolve_write_concern(concern) is concern
    with pytest.raises(MappingError, match="Unknown write concern"):
        resolve_write_concern("sometimes")
