# tests/test_filestore.py

import asyncio
import re

import pytest

from async_filestore import __version__
from async_filestore.base.exceptions import (KeyAlreadyExistsException,
                                             NotConnectedException,
                                             ProjectionValidationException,
                                             UnsupportedOperatorException)
from async_filestore.db_implementations.filestore import (ConnectionState,
                                                         FileStore,
                                                         create_datastore,
                                                         destroy_datastore)
from async_filestore.memory.base import Collection
from async_filestore.memory.database import Database


def names(result):
    return [d["name"] for d in result["results"]]


# --- Connection ---
@pytest.mark.asyncio
async def test_initial_state(config):
    store = create_datastore(config)
    assert store.ready_state == ConnectionState.DISCONNECTED
    assert store.ready_state == 0
    assert store.database is None


@pytest.mark.asyncio
async def test_connect_creates_directory_and_file(config):
    store = create_datastore(config)
    await store.connect("content")

    assert store.ready_state == ConnectionState.CONNECTED
    assert isinstance(store.database, Database)
    assert store.file_path == config.database.file_path("content")
    assert store.file_path.exists()
    await destroy_datastore(store)
    assert not config.database.file_path("content").exists()


@pytest.mark.asyncio
async def test_connect_uses_default_name(config):
    store = create_datastore(config)
    await store.connect()
    assert store.name == "default"
    await destroy_datastore(store)


@pytest.mark.asyncio
async def test_connect_creates_collection(config):
    store = create_datastore(config)
    await store.connect("content", "users")
    assert store.database.get_collection("users") is not None
    await destroy_datastore(store)


@pytest.mark.asyncio
async def test_connect_is_idempotent(config):
    store = create_datastore(config)
    await asyncio.gather(store.connect("content"), store.connect("content"))
    database = store.database

    await store.connect("content", "posts")
    assert store.database is database
    assert store.database.get_collection("posts") is not None
    await destroy_datastore(store)


@pytest.mark.asyncio
async def test_on_connected_fires_once(config):
    store = create_datastore(config)
    seen = []
    store.on_connected(seen.append)

    await asyncio.gather(store.connect("content"), store.connect("content"))
    await store.connect("content")

    assert seen == [store.database]
    await destroy_datastore(store)


@pytest.mark.asyncio
async def test_on_connected_awaits_coroutines_and_unsubscribes(config):
    store = create_datastore(config)
    seen = []

    async def remember(database):
        seen.append(database)

    store.on_connected(remember)
    unsubscribe = store.on_connected(lambda database: seen.append("removed"))
    unsubscribe()

    await store.connect("content")
    assert seen == [store.database]
    await destroy_datastore(store)


@pytest.mark.asyncio
async def test_failing_on_connected_callback_does_not_stop_the_others(config):
    store = create_datastore(config)
    seen = []

    def broken(database):
        raise RuntimeError("callback failed")

    async def broken_coroutine(database):
        raise ValueError("coroutine failed")

    store.on_connected(broken)
    store.on_connected(broken_coroutine)
    store.on_connected(seen.append)

    await store.connect("content")

    assert store.ready_state == ConnectionState.CONNECTED
    assert seen == [store.database]
    await destroy_datastore(store)


@pytest.mark.asyncio
async def test_connect_failure_resets_state(config, tmp_path):
    occupied = tmp_path / "occupied"
    occupied.write_text("not a directory")
    config = config.model_copy(
        update={"database": config.database.model_copy(update={"path": str(occupied)})}
    )
    store = create_datastore(config)

    with pytest.raises(OSError):
        await store.connect("content")
    assert store.ready_state == ConnectionState.DISCONNECTED
    assert store.database is None

    occupied.unlink()
    await store.connect("content")
    assert store.ready_state == ConnectionState.CONNECTED
    assert store.file_path.exists()
    await destroy_datastore(store)


@pytest.mark.asyncio
async def test_operations_need_a_connection(config):
    store = create_datastore(config)
    with pytest.raises(NotConnectedException):
        await store.find({}, "users")
    with pytest.raises(NotConnectedException):
        await store.close()


@pytest.mark.asyncio
async def test_close_then_reconnect_keeps_data(config):
    store = create_datastore(config)
    await store.connect("content")
    await store.insert({"name": "Ernie"}, "users")
    await store.close()
    assert store.ready_state == ConnectionState.DISCONNECTED

    await store.connect("content")
    result = await store.find({}, "users")
    assert names(result) == ["Ernie"]
    await destroy_datastore(store)


@pytest.mark.asyncio
async def test_multiple_databases(config):
    content = create_datastore(config)
    auth = create_datastore(config)
    await content.connect("content")
    await auth.connect("auth")

    await content.insert({"name": "Jim"}, "users")
    await auth.insert({"token": "123456123456123456123456"}, "token-store")

    assert names(await content.find({"name": "Jim"}, "users")) == ["Jim"]
    tokens = await auth.find({"token": "123456123456123456123456"}, "token-store")
    assert tokens["results"][0]["token"] == "123456123456123456123456"
    assert (await auth.find({}, "users"))["results"] == []

    await destroy_datastore(content)
    await destroy_datastore(auth)


# --- Insert ---
@pytest.mark.asyncio
async def test_insert_single_document(store):
    results = await store.insert({"name": "David"}, "users")
    assert isinstance(results, list)
    assert results[0]["name"] == "David"


@pytest.mark.asyncio
async def test_insert_generates_unique_ids(store):
    results = await store.insert([{"name": "Ernie"}, {"name": "Oscar"}], "users")
    ids = [r["_id"] for r in results]
    assert all(ids)
    assert len(set(ids)) == 2


@pytest.mark.asyncio
async def test_insert_preserves_given_id(store):
    results = await store.insert({"_id": "12345", "name": "Ernie"}, "users")
    assert results[0]["_id"] == "12345"


@pytest.mark.asyncio
async def test_insert_duplicate_id_raises(store):
    await store.insert({"_id": "12345"}, "users")
    with pytest.raises(KeyAlreadyExistsException):
        await store.insert({"_id": "12345"}, "users")


@pytest.mark.asyncio
async def test_insert_does_not_modify_input(store):
    document = {"name": "Ernie"}
    await store.insert(document, "users")
    assert document == {"name": "Ernie"}


# --- Find ---
@pytest.mark.asyncio
async def test_find_in_missing_collection_is_empty(store):
    result = await store.find({"name": "x"}, "nothing-here")
    assert result["results"] == []
    assert result["metadata"]["totalCount"] == 0


@pytest.mark.asyncio
async def test_default_order_is_insertion_order(store):
    await store.insert([{"name": "Ernie"}, {"name": "Oscar"}, {"name": "BigBird"}], "users")
    assert names(await store.find({}, "users")) == ["Ernie", "Oscar", "BigBird"]


@pytest.mark.asyncio
async def test_query_without_sort_keeps_insertion_order(store):
    await store.insert([{"name": "BigBird 3"}, {"name": "BigBird 1"}, {"name": "BigBird 2"}], "users")
    result = await store.find({"name": {"$regex": "Big"}}, "users")
    assert names(result) == ["BigBird 3", "BigBird 1", "BigBird 2"]


@pytest.mark.asyncio
async def test_sort_ascending_and_descending(store):
    await store.insert([{"name": "Ernie"}, {"name": "Oscar"}, {"name": "BigBird"}], "users")

    ascending = await store.find({}, "users", {"sort": {"name": 1}})
    descending = await store.find({}, "users", {"sort": {"name": -1}})

    assert names(ascending) == ["BigBird", "Ernie", "Oscar"]
    assert names(descending) == ["Oscar", "Ernie", "BigBird"]


@pytest.mark.asyncio
async def test_limit_skip_and_metadata(store):
    await store.insert([{"name": f"user {i}", "n": i} for i in range(25)], "users")

    result = await store.find({}, "users", {"limit": 10, "skip": 10, "page": 2})

    assert [d["n"] for d in result["results"]] == list(range(10, 20))
    metadata = result["metadata"]
    assert metadata["totalCount"] == 25
    assert metadata["totalPages"] == 3
    assert metadata["nextPage"] == 3
    assert metadata["prevPage"] == 1


@pytest.mark.asyncio
async def test_negative_skip_raises(store, users):
    await store.insert(users, "users")
    with pytest.raises(ValueError):
        await store.find({}, "users", {"skip": -1})


@pytest.mark.asyncio
async def test_fields_projection(store, users):
    await store.insert(users, "users")
    result = await store.find(
        {"colour": "yellow"}, "users", {"sort": {"name": 1}, "fields": {"name": 1, "age": 1}}
    )
    assert len(result["results"]) == 2
    big_bird = result["results"][0]
    assert set(big_bird) == {"_id", "name", "age"}


@pytest.mark.asyncio
async def test_nested_fields_projection(store):
    await store.insert({"name": "Ernie", "data": {"age": 7, "colour": "yellow"}}, "users")
    result = await store.find({"name": "Ernie"}, "users", {"fields": {"data.age": 1}})

    ernie = result["results"][0]
    assert ernie["data"] == {"age": 7}
    assert "name" not in ernie
    assert ernie["_id"]


@pytest.mark.asyncio
async def test_mixed_projection_raises(store):
    with pytest.raises(ProjectionValidationException):
        await store.find({}, "users", {"fields": {"name": 1, "age": 0}})


@pytest.mark.asyncio
async def test_find_with_regex_and_null_semantics(store):
    await store.insert(
        [{"name": "Ernie", "email": None}, {"name": "Bert", "email": "b@x"}, {"name": "Oscar"}],
        "users",
    )

    assert names(await store.find({"name": re.compile("^e", re.I)}, "users")) == ["Ernie"]
    assert names(await store.find({"email": {"$ne": None}}, "users")) == ["Ernie", "Bert"]
    assert names(await store.find({"email": None}, "users")) == ["Oscar"]


@pytest.mark.asyncio
async def test_find_with_or(store, users):
    await store.insert(users, "users")
    result = await store.find({"$or": [{"name": "Oscar"}, {"age": {"$gt": 10}}]}, "users")
    assert names(result) == ["Oscar", "BigBird"]


@pytest.mark.asyncio
async def test_find_by_field_inside_array_of_documents(store):
    await store.insert(
        [
            {"name": "Ernie", "addresses": [{"city": "Sesame"}, {"city": "Muppet"}]},
            {"name": "Oscar", "addresses": [{"city": "Trashcan"}]},
        ],
        "users",
    )

    assert names(await store.find({"addresses.city": "Sesame"}, "users")) == ["Ernie"]
    assert names(await store.find({"addresses.city": {"$regex": "^T"}}, "users")) == ["Oscar"]
    assert (await store.find({"addresses.city": "Nowhere"}, "users"))["results"] == []

    result = await store.update(
        {"addresses.city": "Muppet"}, "users", {"$set": {"colour": "yellow"}}
    )
    assert result == {"matchedCount": 1}


# --- Update ---
@pytest.mark.asyncio
async def test_update_set(store, users):
    await store.insert(users, "users")
    result = await store.update({"colour": "green"}, "users", {"$set": {"colour": "yellow"}})
    assert result == {"matchedCount": 1}

    found = await store.find({"colour": "yellow"}, "users")
    assert len(found["results"]) == 3


@pytest.mark.asyncio
async def test_update_inc(store, users):
    await store.insert(users, "users")
    await store.update({"colour": "green"}, "users", {"$inc": {"age": 10}})

    found = await store.find({"colour": "green"}, "users")
    assert found["results"][0]["age"] == 19


@pytest.mark.asyncio
async def test_update_push(store):
    await store.insert(
        [{"name": "Ernie", "colours": ["yellow"]}, {"name": "Oscar", "colours": ["green"]}],
        "users",
    )
    await store.update({"name": "Ernie"}, "users", {"$push": {"colours": "red"}})

    found = await store.find({"name": "Ernie"}, "users")
    assert found["results"][0]["colours"] == ["yellow", "red"]


@pytest.mark.asyncio
async def test_update_no_match(store, users):
    await store.insert(users, "users")
    result = await store.update({"colour": "blue"}, "users", {"$set": {"age": 1}})
    assert result == {"matchedCount": 0}


@pytest.mark.asyncio
async def test_update_unknown_operator_changes_nothing(store, users):
    await store.insert(users, "users")
    with pytest.raises(UnsupportedOperatorException):
        await store.update({}, "users", {"$set": {"age": 1}, "$rename": {"age": "years"}})

    found = await store.find({"age": 1}, "users")
    assert found["results"] == []


@pytest.mark.asyncio
async def test_update_bumps_revision(store, users):
    await store.insert(users, "users")
    await store.update({"name": "Ernie"}, "users", {"$set": {"age": 8}})

    ernie = (await store.find({"name": "Ernie"}, "users"))["results"][0]
    assert ernie["meta"]["revision"] == 1


# --- Delete ---
@pytest.mark.asyncio
async def test_delete(store, users):
    await store.insert(users, "users")
    result = await store.delete({"colour": "green"}, "users")
    assert result == {"deletedCount": 1}

    found = await store.find({}, "users")
    assert len(found["results"]) == 2


# --- Indexes ---
@pytest.mark.asyncio
async def test_index_and_get_indexes(store):
    collection = await store.get_collection("users")
    results = await store.index(
        collection,
        [
            {"keys": {"_id": 1}},
            {"keys": {"name": 1}},
            {"keys": {"email": 1}, "options": {"unique": True}},
        ],
    )
    assert results == [
        {"collection": "users", "index": "name"},
        {"collection": "users", "index": "email"},
    ]
    assert await store.get_indexes("users") == [
        {"name": "name"},
        {"name": "email", "unique": True},
    ]


@pytest.mark.asyncio
async def test_index_with_id_last_still_returns(store):
    results = await store.index("users", [{"keys": {"name": 1}}, {"keys": {"_id": 1}}])
    assert results == [{"collection": "users", "index": "name"}]


@pytest.mark.asyncio
async def test_unique_index_rejects_duplicates(store):
    await store.index("users", [{"keys": {"email": 1}, "options": {"unique": True}}])
    await store.insert({"email": "ernie@sesame"}, "users")
    with pytest.raises(KeyAlreadyExistsException):
        await store.insert({"email": "ernie@sesame"}, "users")


@pytest.mark.asyncio
async def test_get_collection_returns_collection(store):
    collection = await store.get_collection("users")
    assert isinstance(collection, Collection)
    assert await store.get_collection("users") is collection


# --- Housekeeping ---
@pytest.mark.asyncio
async def test_drop_database_clears_named_collection(store, users):
    await store.insert(users, "users")
    await store.insert({"title": "Hello"}, "posts")

    await store.drop_database("users")

    assert (await store.find({}, "users"))["results"] == []
    assert len((await store.find({}, "posts"))["results"]) == 1


@pytest.mark.asyncio
async def test_drop_database_clears_all_collections(store, users):
    await store.insert(users, "users")
    await store.insert({"title": "Hello"}, "posts")

    await store.drop_database()

    assert (await store.find({}, "users"))["results"] == []
    assert (await store.find({}, "posts"))["results"] == []


@pytest.mark.asyncio
async def test_stats(store, users):
    await store.insert(users, "users")
    await store.index("users", [{"keys": {"name": 1}}])

    stats = await store.stats("users")
    assert stats["count"] == 3
    assert stats["size"] > 0
    assert stats["averageObjectSize"] == stats["size"] // 3
    assert stats["indexes"] == 2
    assert set(stats["indexSizes"]) == {"_id", "name"}
    assert stats["totalIndexSize"] == sum(stats["indexSizes"].values())


def test_handshake(config):
    assert FileStore(config).handshake() == {"version": __version__}


def test_settings(config):
    assert FileStore(config).settings == {"connectWithCollection": False}
    store = FileStore({"connect_with_collection": True})
    assert store.settings == {"connectWithCollection": True}


def test_host_helpers():
    schema = {"data": {"type": "Object"}}
    assert FileStore.get_field_or_parent_schema("data.age", schema) == {"type": "Object"}
    assert FileStore.get_metadata({}, 0)["totalCount"] == 0
