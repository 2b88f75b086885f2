"""
Document store interface and reference adapters.

The production backing store (a managed document database) is an external collaborator;
the core only relies on the async `DocumentStore` surface below. Two adapters ship with the
package:
- `InMemoryDocumentStore`: process-local dicts (tests, demos)
- `JsonFileDocumentStore`: the same, persisted to one JSON file after every write

Documents are plain JSON-compatible dicts; callers validate them into domain models.

Counter updates go through `increment_field`. The base implementation is read-modify-write
serialized per document with a `KeyedLock`; adapters backed by a store with a native atomic
increment should override it.
"""

from __future__ import annotations

import copy
import json
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from finditfast.config.settings import Settings
from finditfast.core.env import resolve_project_path
from finditfast.core.locks import KeyedLock
from finditfast.domain.errors import DocumentNotFoundError

logger = logging.getLogger(__name__)

STORES = "stores"
ITEMS = "items"
REPORTS = "reports"
FLAGGED_ITEMS = "flagged_items"

Document = dict[str, Any]


class DocumentStore(ABC):
    """Async document store keyed by (collection, id)."""

    def __init__(self) -> None:
        self._increment_locks = KeyedLock()

    @abstractmethod
    async def get_by_id(self, collection: str, doc_id: str) -> Document | None:
        """Return the document (including its `id`) or None."""

    @abstractmethod
    async def list_all(self, collection: str) -> list[Document]:
        """Return every document in a collection, in insertion order."""

    @abstractmethod
    async def create(self, collection: str, data: Document, doc_id: str | None = None) -> str:
        """Insert a document and return its id (generated when not given)."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        """Overwrite the given fields of an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """

    async def list_where(self, collection: str, field: str, value: Any) -> list[Document]:
        return [doc for doc in await self.list_all(collection) if doc.get(field) == value]

    async def get_by_store(self, collection: str, store_id: str) -> list[Document]:
        return await self.list_where(collection, "store_id", store_id)

    async def increment_field(
        self,
        collection: str,
        doc_id: str,
        field: str,
        amount: int = 1,
        *,
        extra_fields: Document | None = None,
    ) -> None:
        """Add `amount` to a numeric field (missing counts as 0).

        `extra_fields` are written in the same update, e.g. an `updated_at` stamp.
        """
        async with self._increment_locks.hold((collection, doc_id)):
            doc = await self.get_by_id(collection, doc_id)
            if doc is None:
                raise DocumentNotFoundError(collection, doc_id)
            current = doc.get(field) or 0
            await self.update(collection, doc_id, {**(extra_fields or {}), field: int(current) + int(amount)})


class InMemoryDocumentStore(DocumentStore):
    """Keeps collections in dicts; returned documents are copies."""

    def __init__(self, data: dict[str, dict[str, Document]] | None = None) -> None:
        super().__init__()
        self._data: dict[str, dict[str, Document]] = copy.deepcopy(data) if data else {}

    def _collection(self, collection: str) -> dict[str, Document]:
        return self._data.setdefault(collection, {})

    def _changed(self) -> None:
        """Hook for persistent subclasses; called after every write."""

    async def get_by_id(self, collection: str, doc_id: str) -> Document | None:
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def list_all(self, collection: str) -> list[Document]:
        return [copy.deepcopy(doc) for doc in self._collection(collection).values()]

    async def create(self, collection: str, data: Document, doc_id: str | None = None) -> str:
        new_id = doc_id or uuid.uuid4().hex
        docs = self._collection(collection)
        if new_id in docs:
            raise ValueError(f"{collection}/{new_id} already exists")
        docs[new_id] = {**copy.deepcopy(data), "id": new_id}
        self._changed()
        return new_id

    async def update(self, collection: str, doc_id: str, fields: Document) -> None:
        doc = self._collection(collection).get(doc_id)
        if doc is None:
            raise DocumentNotFoundError(collection, doc_id)
        doc.update(copy.deepcopy({k: v for k, v in fields.items() if k != "id"}))
        self._changed()

    def snapshot(self) -> dict[str, dict[str, Document]]:
        return copy.deepcopy(self._data)


class JsonFileDocumentStore(InMemoryDocumentStore):
    """An in-memory store mirrored to a single JSON file.

    Writes go via a temporary file + atomic replace so a crash never leaves a partial file.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        data: dict[str, dict[str, Document]] = {}
        if self._path.exists():
            raw = json.loads(self._path.read_text(encoding="utf-8")) or {}
            if not isinstance(raw, dict):
                raise ValueError(f"Invalid store file {self._path}; expected a mapping of collections.")
            data = raw
            logger.debug("Loaded document store from %s", self._path)
        super().__init__(data)

    @property
    def path(self) -> Path:
        return self._path

    def _changed(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(self._data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)


def build_store(settings: Settings) -> DocumentStore:
    """Construct the configured document store adapter."""
    if settings.storage.backend == "memory":
        return InMemoryDocumentStore()
    return JsonFileDocumentStore(resolve_project_path(settings.storage.path))
