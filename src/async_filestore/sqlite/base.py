# src/async_filestore/sqlite/base.py
import json
import logging
from typing import Any, Dict, List, Literal

import aiosqlite

from ..base.query import SEQUENCE_FIELD
from ..memory.base import CollectionState

logger = logging.getLogger(__name__)  # Module-level logger

SerializationMethod = Literal["normal", "pretty"]

COLLECTIONS_TABLE = "collections"
DOCUMENTS_TABLE = "documents"


def quote_identifier(identifier: str) -> str:
    """Quote an identifier for SQLite (SQLite uses double quotes for identifiers)."""
    safe_identifier = identifier.replace('"', '""')
    return f'"{safe_identifier}"'


class SQLitePersistenceAdapter:
    """
    Persists database snapshots to a single SQLite file using aiosqlite.

    Every save writes the full state of every collection in one transaction,
    so the file on disk always holds a complete snapshot.
    """

    def __init__(self, serialization_method: SerializationMethod = "normal"):
        self._serialization_method = serialization_method

    # --- Serialization ---
    def serialize(self, document: Dict[str, Any]) -> str:
        indent = 2 if self._serialization_method == "pretty" else None
        return json.dumps(document, indent=indent, default=str)

    @staticmethod
    def deserialize(body: str) -> Dict[str, Any]:
        return json.loads(body)

    # --- Connection Helper ---
    async def _get_connection(self, path: str) -> aiosqlite.Connection:
        """Connects to the SQLite file and ensures the snapshot tables exist."""
        try:
            conn = await aiosqlite.connect(path)
        except Exception as e:
            logger.error(f"Failed to open SQLite file {path}: {e}", exc_info=True)
            raise
        try:
            conn.row_factory = aiosqlite.Row
            await conn.execute(
                f"CREATE TABLE IF NOT EXISTS {quote_identifier(COLLECTIONS_TABLE)} ("
                "name TEXT PRIMARY KEY, "
                "max_id INTEGER NOT NULL, "
                "indices TEXT NOT NULL, "
                "unique_names TEXT NOT NULL)"
            )
            await conn.execute(
                f"CREATE TABLE IF NOT EXISTS {quote_identifier(DOCUMENTS_TABLE)} ("
                "collection TEXT NOT NULL, "
                "loki INTEGER NOT NULL, "
                "body TEXT NOT NULL, "
                "PRIMARY KEY (collection, loki))"
            )
            await conn.commit()
            return conn
        except Exception as e:
            logger.error(
                f"Failed to initialize SQLite file {path}: {e}", exc_info=True
            )
            await conn.close()
            raise

    # --- Core Methods ---
    async def load(self, path: str) -> List[CollectionState]:
        """Read every collection stored in ``path``."""
        conn = await self._get_connection(path)
        try:
            states: Dict[str, CollectionState] = {}
            async with conn.execute(
                f"SELECT name, max_id, indices, unique_names "
                f"FROM {quote_identifier(COLLECTIONS_TABLE)} ORDER BY rowid"
            ) as cursor:
                async for row in cursor:
                    states[row["name"]] = CollectionState(
                        name=row["name"],
                        max_id=row["max_id"],
                        indices=json.loads(row["indices"]),
                        unique_names=json.loads(row["unique_names"]),
                    )
            async with conn.execute(
                f"SELECT collection, body FROM {quote_identifier(DOCUMENTS_TABLE)} "
                f"ORDER BY collection, loki"
            ) as cursor:
                async for row in cursor:
                    state = states.get(row["collection"])
                    if state is None:
                        state = states[row["collection"]] = CollectionState(
                            name=row["collection"]
                        )
                    state.documents.append(self.deserialize(row["body"]))
        except Exception as e:
            logger.error(f"Error loading database file {path}: {e}", exc_info=True)
            raise
        finally:
            await conn.close()

        logger.debug(
            f"Loaded {len(states)} collection(s) from {path}: "
            f"{', '.join(states) or '-'}"
        )
        return list(states.values())

    async def save(self, path: str, states: List[CollectionState]) -> None:
        """Replace the contents of ``path`` with ``states`` in one transaction."""
        conn = await self._get_connection(path)
        try:
            await conn.execute(f"DELETE FROM {quote_identifier(DOCUMENTS_TABLE)}")
            await conn.execute(f"DELETE FROM {quote_identifier(COLLECTIONS_TABLE)}")
            await conn.executemany(
                f"INSERT INTO {quote_identifier(COLLECTIONS_TABLE)} "
                f"(name, max_id, indices, unique_names) VALUES (?, ?, ?, ?)",
                [
                    (
                        state.name,
                        state.max_id,
                        json.dumps(state.indices),
                        json.dumps(state.unique_names),
                    )
                    for state in states
                ],
            )
            await conn.executemany(
                f"INSERT INTO {quote_identifier(DOCUMENTS_TABLE)} "
                f"(collection, loki, body) VALUES (?, ?, ?)",
                [
                    (state.name, document[SEQUENCE_FIELD], self.serialize(document))
                    for state in states
                    for document in state.documents
                ],
            )
            await conn.commit()
        except Exception as e:
            logger.error(f"Error saving database file {path}: {e}", exc_info=True)
            await conn.rollback()
            raise
        finally:
            await conn.close()

        logger.debug(f"Saved {len(states)} collection(s) to {path}")
