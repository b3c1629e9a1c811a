"""Document-store boundary with SQLite and in-memory implementations."""

from __future__ import annotations

import copy
import json
import logging
import secrets
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import anyio

logger = logging.getLogger("oripay.documents")

Document = Dict[str, Any]


class _ServerTimestamp:
    """Sentinel replaced by the store with the write time."""

    _instance: Optional["_ServerTimestamp"] = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class DocumentStoreError(RuntimeError):
    """Base class for failures reported by the document store."""


class PermissionDeniedError(DocumentStoreError):
    """The caller may not read or write the requested document."""


class StoreUnavailableError(DocumentStoreError):
    """The store could not be reached or aborted the request."""


class DocumentNotFoundError(DocumentStoreError):
    """A partial update targeted a document that does not exist."""


@dataclass(frozen=True)
class StoredDocument:
    """A document together with its identifier inside a collection."""

    id: str
    data: Document


def _current_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _validate_path(collection: str, doc_id: Optional[str] = None) -> None:
    if not isinstance(collection, str) or not collection.strip() or "/" in collection:
        raise ValueError(f"Invalid collection name: {collection!r}")
    if doc_id is not None and (not isinstance(doc_id, str) or not doc_id.strip() or "/" in doc_id):
        raise ValueError(f"Invalid document id: {doc_id!r}")


def _resolve_sentinels(value: Any, timestamp: str) -> Any:
    if value is SERVER_TIMESTAMP:
        return timestamp
    if isinstance(value, Mapping):
        return {str(key): _resolve_sentinels(item, timestamp) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_resolve_sentinels(item, timestamp) for item in value]
    return value


def _deep_merge(base: Document, incoming: Mapping[str, Any]) -> Document:
    merged = dict(base)
    for key, value in incoming.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _generate_document_id() -> str:
    return secrets.token_hex(10)


class DocumentStore(ABC):
    """Asynchronous collection/document persistence."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Return the document or ``None`` when it does not exist."""

    @abstractmethod
    async def list(self, collection: str) -> List[StoredDocument]:
        """Return every document in ``collection`` ordered by id."""

    @abstractmethod
    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        """Write a document, replacing it unless ``merge`` is requested."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Overwrite top-level fields of an existing document."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Remove a document. Deleting a missing document is not an error."""

    @abstractmethod
    async def add(self, collection: str, fields: Mapping[str, Any]) -> str:
        """Create a document with a generated id and return the id."""


class MemoryDocumentStore(DocumentStore):
    """Process-local store used by tests and throwaway deployments."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Document]] = {}

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        _validate_path(collection, doc_id)
        document = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def list(self, collection: str) -> List[StoredDocument]:
        _validate_path(collection)
        documents = self._collections.get(collection, {})
        return [
            StoredDocument(id=doc_id, data=copy.deepcopy(documents[doc_id]))
            for doc_id in sorted(documents)
        ]

    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        _validate_path(collection, doc_id)
        resolved = _resolve_sentinels(copy.deepcopy(dict(fields)), _current_timestamp())
        documents = self._collections.setdefault(collection, {})
        if merge and doc_id in documents:
            documents[doc_id] = _deep_merge(documents[doc_id], resolved)
        else:
            documents[doc_id] = resolved

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        _validate_path(collection, doc_id)
        documents = self._collections.get(collection, {})
        if doc_id not in documents:
            raise DocumentNotFoundError(f"No document {collection}/{doc_id} to update")
        resolved = _resolve_sentinels(copy.deepcopy(dict(fields)), _current_timestamp())
        documents[doc_id].update(resolved)

    async def delete(self, collection: str, doc_id: str) -> None:
        _validate_path(collection, doc_id)
        self._collections.get(collection, {}).pop(doc_id, None)

    async def add(self, collection: str, fields: Mapping[str, Any]) -> str:
        _validate_path(collection)
        doc_id = _generate_document_id()
        await self.set(collection, doc_id, fields)
        return doc_id


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "oripay.sqlite3").resolve(strict=False)


class SQLiteDocumentStore(DocumentStore):
    """Documents persisted as JSON rows in a local SQLite database."""

    def __init__(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self) -> None:
        """Create the documents table if it does not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                );
                """
            )

    async def _run(self, func, *args):
        try:
            return await anyio.to_thread.run_sync(func, *args)
        except sqlite3.OperationalError as exc:
            logger.warning("Document store request failed: %s", exc)
            raise StoreUnavailableError(str(exc)) from exc
        except sqlite3.DatabaseError as exc:
            logger.warning("Document store rejected request: %s", exc)
            raise StoreUnavailableError(str(exc)) from exc

    @staticmethod
    def _encode(document: Mapping[str, Any]) -> str:
        try:
            return json.dumps(document, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Document is not JSON serialisable: {exc}") from exc

    def _read(self, conn: sqlite3.Connection, collection: str, doc_id: str) -> Optional[Document]:
        row = conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["data"])

    def _write(self, conn: sqlite3.Connection, collection: str, doc_id: str, document: Document) -> None:
        now = _current_timestamp()
        conn.execute(
            """
            INSERT INTO documents (collection, doc_id, data, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (collection, doc_id)
            DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
            """,
            (collection, doc_id, self._encode(document), now, now),
        )

    def _get_sync(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._connect() as conn:
            return self._read(conn, collection, doc_id)

    def _list_sync(self, collection: str) -> List[StoredDocument]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT doc_id, data FROM documents WHERE collection = ? ORDER BY doc_id",
                (collection,),
            ).fetchall()
        return [StoredDocument(id=row["doc_id"], data=json.loads(row["data"])) for row in rows]

    def _set_sync(self, collection: str, doc_id: str, fields: Document, merge: bool) -> None:
        resolved = _resolve_sentinels(fields, _current_timestamp())
        with self._connect() as conn:
            if merge:
                existing = self._read(conn, collection, doc_id)
                if existing is not None:
                    resolved = _deep_merge(existing, resolved)
            self._write(conn, collection, doc_id, resolved)

    def _update_sync(self, collection: str, doc_id: str, fields: Document) -> None:
        resolved = _resolve_sentinels(fields, _current_timestamp())
        with self._connect() as conn:
            existing = self._read(conn, collection, doc_id)
            if existing is None:
                raise DocumentNotFoundError(f"No document {collection}/{doc_id} to update")
            existing.update(resolved)
            self._write(conn, collection, doc_id, existing)

    def _delete_sync(self, collection: str, doc_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            )

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        _validate_path(collection, doc_id)
        return await self._run(self._get_sync, collection, doc_id)

    async def list(self, collection: str) -> List[StoredDocument]:
        _validate_path(collection)
        return await self._run(self._list_sync, collection)

    async def set(
        self,
        collection: str,
        doc_id: str,
        fields: Mapping[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        _validate_path(collection, doc_id)
        await self._run(self._set_sync, collection, doc_id, dict(fields), merge)

    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        _validate_path(collection, doc_id)
        await self._run(self._update_sync, collection, doc_id, dict(fields))

    async def delete(self, collection: str, doc_id: str) -> None:
        _validate_path(collection, doc_id)
        await self._run(self._delete_sync, collection, doc_id)

    async def add(self, collection: str, fields: Mapping[str, Any]) -> str:
        _validate_path(collection)
        doc_id = _generate_document_id()
        await self._run(self._set_sync, collection, doc_id, dict(fields), False)
        return doc_id


__all__ = [
    "Document",
    "DocumentNotFoundError",
    "DocumentStore",
    "DocumentStoreError",
    "MemoryDocumentStore",
    "PermissionDeniedError",
    "SERVER_TIMESTAMP",
    "SQLiteDocumentStore",
    "StoreUnavailableError",
    "StoredDocument",
    "resolve_database_path",
]
