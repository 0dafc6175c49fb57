# src/async_filestore/base/interfaces.py

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Union

Document = Dict[str, Any]


class DataStore(ABC):
    """
    The contract a data-layer host expects from a storage adapter.

    Every operation except :meth:`handshake` is a coroutine. Collections are
    addressed by name and created on first use, so reading from a collection
    that does not exist yet returns no results rather than failing.
    """

    @abstractmethod
    async def connect(
        self, database: Optional[str] = None, collection: Optional[str] = None
    ) -> None:
        """
        Open the named database. Calling it again while the database is open
        returns without reopening it.

        Args:
            database: The database name; the configured default when omitted.
            collection: A collection to create if it does not exist.
        """
        pass

    @abstractmethod
    async def find(
        self,
        query: Optional[Mapping[str, Any]],
        collection: str,
        options: Optional[Mapping[str, Any]] = None,
        schema: Optional[Mapping[str, Any]] = None,
        settings: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Query a collection.

        Args:
            query: The filter expression. ``{}`` matches every document.
            collection: The collection name.
            options: ``skip``, ``limit``, ``sort``, ``fields`` and ``page``.
            schema: The collection schema.
            settings: Collection settings from the host.

        Returns:
            ``{"results": [...], "metadata": {...}}``.
        """
        pass

    @abstractmethod
    async def insert(
        self,
        data: Union[Document, List[Document]],
        collection: str,
        options: Optional[Mapping[str, Any]] = None,
        schema: Optional[Mapping[str, Any]] = None,
        settings: Optional[Mapping[str, Any]] = None,
    ) -> List[Document]:
        """
        Insert one document or a list of documents. Documents without an
        ``_id`` get a generated one.

        Returns:
            The inserted documents, always as a list.
        """
        pass

    @abstractmethod
    async def update(
        self,
        query: Optional[Mapping[str, Any]],
        collection: str,
        update: Mapping[str, Any],
        options: Optional[Mapping[str, Any]] = None,
        schema: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, int]:
        """
        Apply an update expression to every document matching ``query``.

        Returns:
            ``{"matchedCount": n}``.
        """
        pass

    @abstractmethod
    async def delete(
        self,
        query: Optional[Mapping[str, Any]],
        collection: str,
        schema: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, int]:
        """
        Remove every document matching ``query``.

        Returns:
            ``{"deletedCount": n}``.
        """
        pass

    @abstractmethod
    async def index(self, collection: Any, indexes: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def get_indexes(self, collection: Any) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def stats(
        self, collection: str, options: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def drop_database(self, collection_name: Optional[str] = None) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        """Persist and release the open database."""
        pass

    @abstractmethod
    def handshake(self) -> Dict[str, Any]:
        """Static adapter metadata. Has no side effects."""
        pass
