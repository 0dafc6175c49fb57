# tests/memory/test_collection.py

import pytest

from async_filestore.base.exceptions import (KeyAlreadyExistsException,
                                             ObjectNotFoundException)
from async_filestore.memory.base import Collection


@pytest.fixture
def collection():
    _collection = Collection("users")
    _collection.insert(
        [
            {"_id": "1", "name": "Ernie", "age": 7},
            {"_id": "2", "name": "Oscar", "age": 9},
            {"_id": "3", "name": "BigBird", "age": 13},
        ]
    )
    return _collection


def names(documents):
    return [d["name"] for d in documents]


def test_insert_assigns_sequence_and_meta():
    collection = Collection("users")
    inserted = collection.insert([{"_id": "a", "name": "Ernie"}, {"_id": "b", "name": "Bert"}])

    assert [d["$loki"] for d in inserted] == [1, 2]
    assert inserted[0]["meta"]["revision"] == 0
    assert "created" in inserted[0]["meta"]
    assert collection.max_id == 2
    assert len(collection) == 2


def test_insert_returns_copies(collection):
    inserted = collection.insert([{"_id": "4", "name": "Bert"}])
    inserted[0]["name"] = "changed"
    assert names(collection.chain().find({"_id": "4"}).data()) == ["Bert"]


def test_insert_rejects_stored_documents(collection):
    stored = collection.chain().data()[0]
    with pytest.raises(ValueError):
        collection.insert([stored])


def test_duplicate_id_rejects_whole_batch(collection):
    with pytest.raises(KeyAlreadyExistsException):
        collection.insert([{"_id": "9", "name": "New"}, {"_id": "1", "name": "Dup"}])
    assert len(collection) == 3


def test_duplicate_id_within_batch_rejected():
    collection = Collection("users")
    with pytest.raises(KeyAlreadyExistsException):
        collection.insert([{"_id": "x"}, {"_id": "x"}])
    assert len(collection) == 0


def test_find_default_order_is_insertion(collection):
    assert names(collection.chain().find({}).data()) == ["Ernie", "Oscar", "BigBird"]


def test_simplesort(collection):
    assert names(collection.chain().simplesort("name").data()) == ["BigBird", "Ernie", "Oscar"]
    assert names(collection.chain().simplesort("name", True).data()) == ["Oscar", "Ernie", "BigBird"]


def test_simplesort_puts_missing_values_first(collection):
    collection.insert([{"_id": "4", "name": "Bert"}])
    assert names(collection.chain().simplesort("age").data())[0] == "Bert"


def test_branch_is_independent(collection):
    base = collection.chain().find({"age": {"$gt": 5}})
    count = base.branch().count()
    page = base.simplesort("age").offset(1).limit(1).data()

    assert count == 3
    assert names(page) == ["Oscar"]


def test_negative_offset_and_limit_are_clamped(collection):
    assert names(collection.chain().offset(-2).data()) == ["Ernie", "Oscar", "BigBird"]
    assert collection.chain().limit(-1).data() == []


def test_update_by_sequence(collection):
    document = collection.chain().find({"name": "Oscar"}).data()[0]
    document["colour"] = "green"
    collection.update([document])

    stored = collection.chain().find({"name": "Oscar"}).data()[0]
    assert stored["colour"] == "green"
    assert stored["meta"]["revision"] == 1
    assert "updated" in stored["meta"]


def test_update_unknown_document_raises(collection):
    with pytest.raises(ObjectNotFoundException):
        collection.update([{"$loki": 99, "name": "Ghost"}])


def test_update_id_collision_raises(collection):
    document = collection.chain().find({"name": "Oscar"}).data()[0]
    document["_id"] = "1"
    with pytest.raises(KeyAlreadyExistsException):
        collection.update([document])


def test_remove(collection):
    removed = collection.chain().find({"age": {"$lt": 10}}).remove()
    assert removed == 2
    assert names(collection.chain().data()) == ["BigBird"]


def test_removed_id_can_be_reused(collection):
    collection.chain().find({"_id": "1"}).remove()
    collection.insert([{"_id": "1", "name": "Ernie again"}])
    assert collection.count({"_id": "1"}) == 1


def test_clear_keeps_indexes(collection):
    collection.ensure_index("name")
    collection.clear()
    assert len(collection) == 0
    assert collection.binary_indices == ["name"]
    assert collection.insert([{"_id": "1"}])[0]["$loki"] == 1


def test_unique_index(collection):
    index = collection.ensure_unique_index("name")
    assert index.field == "name"
    assert collection.unique_names == ["name"]

    with pytest.raises(KeyAlreadyExistsException):
        collection.insert([{"_id": "4", "name": "Ernie"}])


def test_unique_index_on_duplicate_data_raises(collection):
    collection.insert([{"_id": "4", "name": "Ernie"}])
    with pytest.raises(KeyAlreadyExistsException):
        collection.ensure_unique_index("name")


def test_unique_index_allows_update_of_same_document(collection):
    collection.ensure_unique_index("name")
    document = collection.chain().find({"name": "Ernie"}).data()[0]
    document["age"] = 8
    collection.update([document])
    assert collection.chain().find({"name": "Ernie"}).data()[0]["age"] == 8


def test_snapshot_and_restore(collection):
    collection.ensure_index("age")
    collection.ensure_unique_index("name")
    restored = Collection.restore(collection.snapshot())

    assert names(restored.chain().data()) == ["Ernie", "Oscar", "BigBird"]
    assert restored.max_id == 3
    assert restored.binary_indices == ["age"]
    assert restored.unique_names == ["name"]
    assert restored.dirty is False

    with pytest.raises(KeyAlreadyExistsException):
        restored.insert([{"_id": "1"}])
