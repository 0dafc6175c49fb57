# src/async_filestore/db_implementations/filestore.py

import asyncio
import inspect
import json
import logging
import os
from enum import IntEnum
from logging import LoggerAdapter
from pathlib import Path
from typing import (Any, Callable, Dict, List, Mapping, Optional, Union)

from async_filestore import __version__
from async_filestore.base.exceptions import NotConnectedException
from async_filestore.base.interfaces import DataStore, Document
from async_filestore.base.metadata import get_metadata
from async_filestore.base.projection import Projection
from async_filestore.base.query import (QueryOptions,
                                        get_field_or_parent_schema,
                                        prepare_query)
from async_filestore.base.update import Update
from async_filestore.base.utils import (MISSING, generate_id, get_nested_value,
                                        prepare_for_storage)
from async_filestore.config import FileStoreConfig, resolve_config
from async_filestore.memory.base import ID_FIELD, Collection
from async_filestore.memory.database import Database

base_logger = logging.getLogger("async_filestore.db_implementations.filestore")

ConnectedCallback = Callable[[Database], Any]


class ConnectionState(IntEnum):
    DISCONNECTED = 0
    CONNECTED = 1
    CONNECTING = 2


class DatabaseLoggerAdapter(LoggerAdapter):
    """Prefixes every message with the name of the open database."""

    def process(self, msg, kwargs):
        return f"[{self.extra.get('database') or '-'}] {msg}", kwargs


class FileStore(DataStore):
    """
    Document store backed by one embedded database file per database name.

    Documents live in memory while the store is connected. The engine writes
    a snapshot to ``<database.path>/<name>.db`` on every autosave tick and
    on :meth:`close`.

    Features/Limitations:
        - One database per store. Connecting again, with any name, while a
          database is open returns the open database.
        - Collections are created on first use by any operation.
        - Queries support the operator set of the engine matcher
          (``$eq $ne $gt $gte $lt $lte $in $nin $regex $exists $contains
          $containsAny $size``) plus top-level ``$and``/``$or``.
        - No transactions. Writes between the last save and a crash are lost.
    """

    def __init__(self, config: Union[FileStoreConfig, Dict[str, Any], None] = None):
        """
        Args:
            config: A FileStoreConfig, a plain mapping validated into one, or
                    None to load the configuration for the current environment.
        """
        self.config = resolve_config(config)
        self.name: Optional[str] = None
        self._database: Optional[Database] = None
        self._connecting: Optional[asyncio.Task] = None
        self._ready_state = ConnectionState.DISCONNECTED
        self._callbacks: List[ConnectedCallback] = []
        self._logger = DatabaseLoggerAdapter(base_logger, {"database": None})

    # --- Connection State ---
    @property
    def ready_state(self) -> ConnectionState:
        return self._ready_state

    @property
    def database(self) -> Optional[Database]:
        return self._database

    @property
    def settings(self) -> Dict[str, Any]:
        """Connector settings read by the host."""
        return {"connectWithCollection": self.config.connect_with_collection}

    @property
    def file_path(self) -> Optional[Path]:
        """Backing file of the current (or last) database, if one was named."""
        if self.name is None:
            return None
        return self.config.database.file_path(self.name)

    def on_connected(self, callback: ConnectedCallback) -> Callable[[], None]:
        """
        Register ``callback`` to run with the Database once it is loaded.
        Coroutine functions are awaited.

        Returns:
            A function that unregisters the callback.
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def connect(
        self, database: Optional[str] = None, collection: Optional[str] = None
    ) -> None:
        if self._database is None:
            if self._connecting is None:
                name = database or self.config.database.default_name
                self._connecting = asyncio.ensure_future(self._open(name))
            try:
                await self._connecting
            except Exception:
                self._connecting = None
                raise
        elif database and database != self.name:
            self._logger.debug(
                f"connect to {database} ignored, {self.name} is already open"
            )

        if collection:
            await self.get_collection(collection)

    async def _open(self, name: str) -> Database:
        self._ready_state = ConnectionState.CONNECTING
        self.name = name
        self._logger.extra["database"] = name
        file_path = self.config.database.file_path(name)
        self._logger.debug(f"connect {name} at {file_path}")

        try:
            await self._ensure_directory(file_path.parent)
            await self._ensure_file(file_path)
            database = await Database.open_or_create(
                str(file_path),
                autosave=self.config.database.autosave,
                autosave_interval=self.config.database.autosave_interval,
                serialization_method=self.config.database.serialization_method,
            )
        except Exception as e:
            self._ready_state = ConnectionState.DISCONNECTED
            self._logger.error(
                f"Failed to open database at {file_path}: {e}", exc_info=True
            )
            raise

        self._database = database
        self._ready_state = ConnectionState.CONNECTED
        self._logger.info(f"Connected to {file_path}")

        # The database is open whatever a callback does; failures are logged.
        for callback in list(self._callbacks):
            try:
                result = callback(database)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self._logger.error(
                    f"on_connected callback {callback!r} failed: {e}", exc_info=True
                )
        return database

    async def _ensure_directory(self, directory: Path) -> None:
        if await asyncio.to_thread(directory.is_dir):
            return
        await asyncio.to_thread(os.makedirs, directory, exist_ok=True)
        self._logger.info(f"created database directory {directory}")

    async def _ensure_file(self, file_path: Path) -> None:
        # An empty file is a valid, empty database.
        if not await asyncio.to_thread(file_path.exists):
            await asyncio.to_thread(file_path.touch)
            self._logger.debug(f"created database file {file_path}")

    async def _get_database(self) -> Database:
        if self._database is None and self._connecting is not None:
            await self._connecting
        if self._database is None:
            raise NotConnectedException()
        return self._database

    async def close(self) -> None:
        """
        Write a final snapshot and release the database.

        Raises:
            NotConnectedException: If no database is open.
        """
        database = await self._get_database()
        self._database = None
        self._connecting = None
        try:
            await database.close()
        except Exception as e:
            self._logger.error(f"Error closing database: {e}", exc_info=True)
            raise
        finally:
            self._ready_state = ConnectionState.DISCONNECTED
        self._logger.info("Closed database")

    # --- Collections ---
    async def get_collection(self, name: str) -> Collection:
        """Return the named collection, creating it if it does not exist."""
        database = await self._get_database()
        await asyncio.sleep(0)
        collection = database.get_collection(name)
        if collection is None:
            collection = database.add_collection(name)
        return collection

    async def _resolve_collection(self, collection: Union[str, Collection]) -> Collection:
        if isinstance(collection, Collection):
            return collection
        return await self.get_collection(collection)

    # --- Core Methods ---
    async def find(
        self,
        query: Optional[Mapping[str, Any]],
        collection: str,
        options: Optional[Mapping[str, Any]] = None,
        schema: Optional[Mapping[str, Any]] = None,
        settings: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        query_options = QueryOptions.from_options(options)
        prepared = prepare_query(query, schema)
        projection = Projection.from_spec(query_options.fields)

        self._logger.debug(
            f"find in {collection} where {json.dumps(prepared, default=repr)} "
            f"{query_options!r}"
        )

        handle = await self.get_collection(collection)
        base_resultset = handle.chain().find(prepared)
        count = base_resultset.branch().count()

        sort = query_options.sort_parameters
        results = (
            base_resultset.simplesort(sort.property, sort.descending)
            .offset(query_options.offset)
            .limit(query_options.limit)
            .data()
        )
        if projection is not None:
            results = projection.apply_many(results)

        return {"results": results, "metadata": self.get_metadata(options, count)}

    async def insert(
        self,
        data: Union[Document, List[Document]],
        collection: str,
        options: Optional[Mapping[str, Any]] = None,
        schema: Optional[Mapping[str, Any]] = None,
        settings: Optional[Mapping[str, Any]] = None,
    ) -> List[Document]:
        documents = data if isinstance(data, list) else [data]
        self._logger.debug(f"insert into {collection} {len(documents)} document(s)")

        prepared = []
        for document in documents:
            document = prepare_for_storage(document)
            if not isinstance(document, dict):
                raise TypeError(
                    f"Documents must be mappings, got {type(document).__name__}"
                )
            document[ID_FIELD] = document.get(ID_FIELD) or generate_id()
            prepared.append(document)

        handle = await self.get_collection(collection)
        return handle.insert(prepared)

    async def update(
        self,
        query: Optional[Mapping[str, Any]],
        collection: str,
        update: Mapping[str, Any],
        options: Optional[Mapping[str, Any]] = None,
        schema: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, int]:
        # Parsed up front so an unsupported operator fails before any read.
        operations = Update.from_dict(update)
        prepared = prepare_query(query, schema)

        self._logger.debug(
            f"update {collection} where {json.dumps(prepared, default=repr)} "
            f"with {operations!r}"
        )

        handle = await self.get_collection(collection)
        documents = handle.chain().find(prepared).data()
        updated = operations.apply(documents)
        handle.update(updated)

        return {"matchedCount": len(updated)}

    async def delete(
        self,
        query: Optional[Mapping[str, Any]],
        collection: str,
        schema: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, int]:
        prepared = prepare_query(query, schema)
        self._logger.debug(
            f"delete from {collection} where {json.dumps(prepared, default=repr)}"
        )

        handle = await self.get_collection(collection)
        deleted = handle.chain().find(prepared).remove()
        return {"deletedCount": deleted}

    # --- Indexes ---
    async def index(
        self, collection: Union[str, Collection], indexes: List[Mapping[str, Any]]
    ) -> List[Dict[str, Any]]:
        """
        Create indexes from specs like ``{"keys": {"field": 1}, "options":
        {"unique": True}}``. Only the first key of each spec is indexed.
        Specs on ``_id`` alone are skipped; ``_id`` is always unique.

        Returns:
            One ``{"collection": name, "index": field}`` entry per index created.
        """
        handle = await self._resolve_collection(collection)
        results = []
        for spec in indexes:
            keys = list(spec.get("keys") or {})
            if not keys:
                raise ValueError(f"Index specification without keys: {spec!r}")
            if keys == [ID_FIELD]:
                continue

            field_path = keys[0]
            if (spec.get("options") or {}).get("unique"):
                field_path = handle.ensure_unique_index(field_path).field
            else:
                handle.ensure_index(field_path)
            self._logger.debug(f"index {handle.name}.{field_path}")
            results.append({"collection": handle.name, "index": field_path})
        return results

    async def get_indexes(self, collection: Union[str, Collection]) -> List[Dict[str, Any]]:
        handle = await self._resolve_collection(collection)
        indexes: List[Dict[str, Any]] = [{"name": name} for name in handle.binary_indices]
        indexes.extend({"name": name, "unique": True} for name in handle.unique_names)
        return indexes

    # --- Housekeeping ---
    async def drop_database(self, collection_name: Optional[str] = None) -> None:
        """Remove every document from ``collection_name``, or from all collections."""
        database = await self._get_database()
        self._logger.info(f"drop {collection_name or 'all collections'}")

        if collection_name:
            collection = database.get_collection(collection_name)
            targets = [collection] if collection is not None else []
        else:
            targets = database.collections

        for collection in targets:
            collection.clear()
            self._logger.debug(f"dropped collection {collection.name}")
        await asyncio.sleep(0)

    async def stats(
        self, collection: str, options: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Size figures for a collection, in bytes of serialized JSON.
        ``storageSize`` is the size of the whole database file.
        """
        handle = await self.get_collection(collection)
        documents = handle.chain().data()

        size = sum(len(json.dumps(d, default=str)) for d in documents)
        count = len(documents)

        index_names = [ID_FIELD] + handle.binary_indices + handle.unique_names
        index_sizes = {}
        for name in index_names:
            values = [get_nested_value(d, name) for d in documents]
            index_sizes[name] = sum(
                len(json.dumps(v, default=str))
                for v in values
                if v is not MISSING and v is not None
            )

        file_path = self.file_path
        storage_size = 0
        if file_path is not None and await asyncio.to_thread(file_path.exists):
            storage_size = (await asyncio.to_thread(file_path.stat)).st_size

        return {
            "count": count,
            "size": size,
            "averageObjectSize": size // count if count else 0,
            "storageSize": storage_size,
            "indexes": len(index_names),
            "totalIndexSize": sum(index_sizes.values()),
            "indexSizes": index_sizes,
        }

    def handshake(self) -> Dict[str, Any]:
        return {"version": __version__}

    # --- Host Helpers ---
    @staticmethod
    def get_field_or_parent_schema(key: str, schema: Mapping[str, Any]) -> Optional[Any]:
        return get_field_or_parent_schema(key, schema)

    @staticmethod
    def get_metadata(options: Optional[Mapping[str, Any]], count: int) -> Dict[str, Any]:
        return get_metadata(options, count)

    def __repr__(self) -> str:
        return (
            f"FileStore(name={self.name!r}, "
            f"state={self._ready_state.name}, path={self.config.database.path!r})"
        )


def create_datastore(
    config: Union[FileStoreConfig, Dict[str, Any], None] = None,
) -> FileStore:
    """Create a new, unconnected store."""
    return FileStore(config)


async def destroy_datastore(store: FileStore, remove_files: bool = True) -> None:
    """
    Close ``store`` if it is open and delete its backing file.
    Meant for test teardown.
    """
    if store.database is not None:
        await store.close()

    file_path = store.file_path
    if remove_files and file_path is not None:
        await asyncio.to_thread(file_path.unlink, missing_ok=True)
        base_logger.debug(f"Removed database file {file_path}")
