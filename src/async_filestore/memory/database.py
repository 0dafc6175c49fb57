# src/async_filestore/memory/database.py
import asyncio
import contextlib
import logging
from typing import Dict, List, Optional

from ..sqlite.base import SerializationMethod, SQLitePersistenceAdapter
from .base import Collection

logger = logging.getLogger(__name__)


class Database:
    """
    An in-memory set of named collections backed by one file.

    Mutations happen in memory. A background task writes a snapshot to disk
    every ``autosave_interval`` milliseconds when something changed, and
    :meth:`close` writes a final one. Nothing is logged ahead of time, so a
    crash between a mutation and the next save loses that mutation.
    """

    def __init__(
        self,
        path: str,
        autosave: bool = True,
        autosave_interval: int = 5000,
        serialization_method: SerializationMethod = "normal",
        persistence: Optional[SQLitePersistenceAdapter] = None,
    ):
        self.path = path
        self.autosave = autosave
        self.autosave_interval = autosave_interval
        self._persistence = persistence or SQLitePersistenceAdapter(
            serialization_method=serialization_method
        )
        self._collections: Dict[str, Collection] = {}
        self._autosave_task: Optional[asyncio.Task] = None
        self._closed = False

    @classmethod
    async def open_or_create(cls, path: str, **options) -> "Database":
        """Load ``path`` (an empty file is a new database) and start autosaving."""
        database = cls(path, **options)
        await database.load()
        if database.autosave:
            database.start_autosave()
        return database

    async def load(self) -> None:
        states = await self._persistence.load(self.path)
        self._collections = {
            state.name: Collection.restore(state) for state in states
        }
        logger.info(
            f"Loaded database {self.path} with {len(self._collections)} collection(s)"
        )

    # --- Collections ---
    @property
    def collections(self) -> List[Collection]:
        return list(self._collections.values())

    def get_collection(self, name: str) -> Optional[Collection]:
        return self._collections.get(name)

    def add_collection(self, name: str) -> Collection:
        collection = self._collections.get(name)
        if collection is None:
            collection = self._collections[name] = Collection(name)
            logger.debug(f"Added collection {name} to {self.path}")
        return collection

    @property
    def dirty(self) -> bool:
        return any(collection.dirty for collection in self._collections.values())

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Persistence ---
    async def save(self) -> None:
        """Write a snapshot of every collection to disk."""
        collections = self.collections
        states = [collection.snapshot() for collection in collections]
        for collection in collections:
            collection.dirty = False
        try:
            await self._persistence.save(self.path, states)
        except Exception:
            for collection in collections:
                collection.dirty = True
            raise

    def start_autosave(self) -> None:
        if self._autosave_task is None or self._autosave_task.done():
            self._autosave_task = asyncio.create_task(self._autosave_loop())

    async def _stop_autosave(self) -> None:
        task, self._autosave_task = self._autosave_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(self.autosave_interval / 1000)
            if not self.dirty:
                continue
            try:
                await self.save()
                logger.debug(f"Autosaved {self.path}")
            except Exception as e:
                # No caller to propagate to; the next tick retries.
                logger.error(f"Autosave of {self.path} failed: {e}", exc_info=True)

    async def close(self) -> None:
        """Stop autosaving, write a final snapshot and release the database."""
        await self._stop_autosave()
        await self.save()
        self._closed = True
        logger.info(f"Closed database {self.path}")

    def __repr__(self) -> str:
        return f"Database({self.path!r}, collections={list(self._collections)!r})"
