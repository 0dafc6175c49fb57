# src/async_filestore/memory/base.py
import copy
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..base.exceptions import KeyAlreadyExistsException, ObjectNotFoundException
from ..base.query import SEQUENCE_FIELD
from ..base.utils import MISSING, get_nested_value, sort_key
from ..base.matcher import match_document

logger = logging.getLogger(__name__)

ID_FIELD = "_id"
META_FIELD = "meta"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _index_key(value: Any) -> Any:
    """Hashable key for a unique-index value; None when the value is not indexed."""
    if value is MISSING or value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    return value


@dataclass
class UniqueIndex:
    field: str


@dataclass
class CollectionState:
    """A point-in-time copy of a collection, as handed to persistence."""

    name: str
    max_id: int = 0
    indices: List[str] = field(default_factory=list)
    unique_names: List[str] = field(default_factory=list)
    documents: List[Dict[str, Any]] = field(default_factory=list)


class Collection:
    """
    An ordered set of documents keyed by the engine sequence number
    (``$loki``), with a unique ``_id`` map and optional field indexes.
    """

    def __init__(self, name: str):
        self.name = name
        self.max_id = 0
        self.dirty = True
        self._documents: Dict[int, Dict[str, Any]] = {}
        self._id_index: Dict[Any, int] = {}
        self._indices: List[str] = []
        self._unique_index: Dict[str, Dict[Any, int]] = {}

    # --- Index Management ---
    @property
    def binary_indices(self) -> List[str]:
        return list(self._indices)

    @property
    def unique_names(self) -> List[str]:
        return list(self._unique_index)

    def ensure_index(self, field_path: str) -> None:
        if field_path not in self._indices:
            self._indices.append(field_path)
            self.dirty = True
            logger.debug(f"Added index on {self.name}.{field_path}")

    def ensure_unique_index(self, field_path: str) -> UniqueIndex:
        """
        Add a unique constraint on ``field_path``.

        Raises:
            KeyAlreadyExistsException: If existing documents already hold
                duplicate values for the field.
        """
        if field_path not in self._unique_index:
            values: Dict[Any, int] = {}
            for loki, document in self._documents.items():
                key = _index_key(get_nested_value(document, field_path))
                if key is None:
                    continue
                if key in values:
                    raise KeyAlreadyExistsException(
                        f"Cannot add unique index on {self.name}.{field_path}: "
                        f"duplicate value {key!r}"
                    )
                values[key] = loki
            self._unique_index[field_path] = values
            self.dirty = True
            logger.debug(f"Added unique index on {self.name}.{field_path}")
        return UniqueIndex(field=field_path)

    def _check_unique(
        self, documents: Iterable[Dict[str, Any]], replacing: bool = False
    ) -> None:
        """Raise if any document would collide with another on _id or a unique field."""
        fields = [ID_FIELD] + list(self._unique_index)
        for field_path in fields:
            existing = (
                self._id_index
                if field_path == ID_FIELD
                else self._unique_index[field_path]
            )
            seen: Dict[Any, Any] = {}
            for position, document in enumerate(documents):
                key = _index_key(get_nested_value(document, field_path))
                if key is None:
                    continue
                # New documents have no $loki yet; their batch position identifies them.
                token = document.get(SEQUENCE_FIELD) if replacing else position
                owner = existing.get(key)
                if (owner is not None and (not replacing or owner != token)) or (
                    key in seen and seen[key] != token
                ):
                    raise KeyAlreadyExistsException(
                        f"Document with {field_path} {key!r} already exists "
                        f"in collection {self.name}"
                    )
                seen[key] = token

    def _index_document(self, loki: int, document: Dict[str, Any]) -> None:
        key = _index_key(document.get(ID_FIELD, MISSING))
        if key is not None:
            self._id_index[key] = loki
        for field_path, values in self._unique_index.items():
            key = _index_key(get_nested_value(document, field_path))
            if key is not None:
                values[key] = loki

    def _unindex_document(self, loki: int, document: Dict[str, Any]) -> None:
        key = _index_key(document.get(ID_FIELD, MISSING))
        if key is not None and self._id_index.get(key) == loki:
            del self._id_index[key]
        for field_path, values in self._unique_index.items():
            key = _index_key(get_nested_value(document, field_path))
            if key is not None and values.get(key) == loki:
                del values[key]

    # --- Document Operations ---
    def insert(self, documents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Insert documents, assigning ``$loki`` and ``meta``. Either every
        document is inserted or, on a constraint violation, none is.

        Returns:
            Copies of the stored documents.
        """
        prepared = []
        for document in documents:
            if not isinstance(document, Mapping):
                raise TypeError(
                    f"Documents must be mappings, got {type(document).__name__}"
                )
            if SEQUENCE_FIELD in document:
                raise ValueError(
                    f"Document is already in collection {self.name}, use update()"
                )
            prepared.append(copy.deepcopy(dict(document)))

        self._check_unique(prepared)

        now = _now_ms()
        for document in prepared:
            self.max_id += 1
            document[SEQUENCE_FIELD] = self.max_id
            document[META_FIELD] = {"revision": 0, "created": now, "version": 0}
            self._documents[self.max_id] = document
            self._index_document(self.max_id, document)

        self.dirty = True
        return [copy.deepcopy(document) for document in prepared]

    def update(self, documents: List[Dict[str, Any]]) -> None:
        """
        Write back modified documents, matched by ``$loki``.

        Raises:
            ObjectNotFoundException: If a document is not in this collection.
            KeyAlreadyExistsException: On an _id or unique index collision.
        """
        prepared = []
        for document in documents:
            loki = document.get(SEQUENCE_FIELD)
            if loki not in self._documents:
                raise ObjectNotFoundException(
                    f"Document with {SEQUENCE_FIELD} {loki!r} not found "
                    f"in collection {self.name}"
                )
            prepared.append(copy.deepcopy(document))

        self._check_unique(prepared, replacing=True)

        now = _now_ms()
        for document in prepared:
            loki = document[SEQUENCE_FIELD]
            previous = self._documents[loki]
            self._unindex_document(loki, previous)
            meta = dict(previous.get(META_FIELD) or {})
            meta["revision"] = meta.get("revision", 0) + 1
            meta["updated"] = now
            document[META_FIELD] = meta
            self._documents[loki] = document
            self._index_document(loki, document)

        if prepared:
            self.dirty = True

    def remove(self, lokis: Iterable[int]) -> int:
        count = 0
        for loki in list(lokis):
            document = self._documents.pop(loki, None)
            if document is None:
                continue
            self._unindex_document(loki, document)
            count += 1
        if count:
            self.dirty = True
        return count

    def clear(self) -> None:
        """Remove every document. Index definitions are kept."""
        self._documents.clear()
        self._id_index.clear()
        for values in self._unique_index.values():
            values.clear()
        self.max_id = 0
        self.dirty = True

    def count(self, query: Optional[Mapping[str, Any]] = None) -> int:
        return self.chain().find(query).count()

    def chain(self) -> "Resultset":
        return Resultset(self)

    def __len__(self) -> int:
        return len(self._documents)

    # --- Persistence Support ---
    def snapshot(self) -> CollectionState:
        return CollectionState(
            name=self.name,
            max_id=self.max_id,
            indices=list(self._indices),
            unique_names=list(self._unique_index),
            documents=[copy.deepcopy(d) for d in self._documents.values()],
        )

    @classmethod
    def restore(cls, state: CollectionState) -> "Collection":
        collection = cls(state.name)
        for document in state.documents:
            loki = document[SEQUENCE_FIELD]
            collection._documents[loki] = document
            collection._index_document(loki, document)
        collection.max_id = max(
            [state.max_id] + list(collection._documents), default=0
        )
        for field_path in state.indices:
            collection.ensure_index(field_path)
        for field_path in state.unique_names:
            collection.ensure_unique_index(field_path)
        collection.dirty = False
        return collection

    def __repr__(self) -> str:
        return f"Collection({self.name!r}, documents={len(self._documents)})"


class Resultset:
    """
    A chainable view over a collection:
    ``collection.chain().find(q).simplesort("name").offset(0).limit(10).data()``.
    """

    def __init__(self, collection: Collection, lokis: Optional[List[int]] = None):
        self._collection = collection
        self._lokis = list(collection._documents) if lokis is None else lokis

    def find(self, query: Optional[Mapping[str, Any]] = None) -> "Resultset":
        if query:
            documents = self._collection._documents
            self._lokis = [
                loki for loki in self._lokis if match_document(documents[loki], query)
            ]
        return self

    def branch(self) -> "Resultset":
        return Resultset(self._collection, list(self._lokis))

    def count(self) -> int:
        return len(self._lokis)

    def simplesort(self, property: str, descending: bool = False) -> "Resultset":
        documents = self._collection._documents
        self._lokis.sort(
            key=lambda loki: sort_key(get_nested_value(documents[loki], property)),
            reverse=descending,
        )
        return self

    def offset(self, n: int) -> "Resultset":
        self._lokis = self._lokis[max(n, 0):]
        return self

    def limit(self, n: int) -> "Resultset":
        self._lokis = self._lokis[:max(n, 0)]
        return self

    def data(self) -> List[Dict[str, Any]]:
        """Copies of the documents in the resultset, in resultset order."""
        documents = self._collection._documents
        return [copy.deepcopy(documents[loki]) for loki in self._lokis]

    def remove(self) -> int:
        removed = self._collection.remove(self._lokis)
        self._lokis = []
        return removed
