"""Persistence interfaces and implementations for game documents.

Every collection is addressed by name and key. All reads and writes go
through ``transaction()``: writes staged inside one block commit together
or not at all, which is what pairing, settlement and device consumption
rely on for their compare-and-swap semantics.
"""

from __future__ import annotations

import copy
import json
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ContextManager, Protocol


class Transaction(Protocol):
    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Return a copy of the document, locking it for the rest of the transaction."""

    def put(self, collection: str, key: str, document: dict[str, Any]) -> None:
        """Create or replace a document."""

    def insert(self, collection: str, key: str, document: dict[str, Any]) -> bool:
        """Create a document only when the key is free; report whether it was created."""

    def add(self, collection: str, document: dict[str, Any]) -> str:
        """Create a document under a generated key and return the key."""

    def delete(self, collection: str, key: str) -> None:
        """Remove a document; missing keys are ignored."""

    def scan(self, collection: str, **equals: Any) -> list[tuple[str, dict[str, Any]]]:
        """Return (key, document) pairs in insertion order whose top-level fields match."""


class DocumentStore(Protocol):
    def transaction(self) -> ContextManager[Transaction]:
        """Open an all-or-nothing unit of work."""


def _matches(document: dict[str, Any], equals: dict[str, Any]) -> bool:
    return all(document.get(field) == value for field, value in equals.items())


_DELETED = object()


class _InMemoryTransaction:
    def __init__(self, collections: dict[str, dict[str, dict[str, Any]]]) -> None:
        self._collections = collections
        self._staged: dict[tuple[str, str], Any] = {}

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        staged = self._staged.get((collection, key))
        if staged is _DELETED:
            return None
        if staged is not None:
            return copy.deepcopy(staged)
        document = self._collections.get(collection, {}).get(key)
        return copy.deepcopy(document) if document is not None else None

    def put(self, collection: str, key: str, document: dict[str, Any]) -> None:
        self._staged[(collection, key)] = copy.deepcopy(document)

    def insert(self, collection: str, key: str, document: dict[str, Any]) -> bool:
        if self.get(collection, key) is not None:
            return False
        self.put(collection, key, document)
        return True

    def add(self, collection: str, document: dict[str, Any]) -> str:
        key = str(uuid.uuid4())
        self.put(collection, key, document)
        return key

    def delete(self, collection: str, key: str) -> None:
        self._staged[(collection, key)] = _DELETED

    def scan(self, collection: str, **equals: Any) -> list[tuple[str, dict[str, Any]]]:
        keys = list(self._collections.get(collection, {}))
        for staged_collection, staged_key in self._staged:
            if staged_collection == collection and staged_key not in keys:
                keys.append(staged_key)
        results: list[tuple[str, dict[str, Any]]] = []
        for key in keys:
            document = self.get(collection, key)
            if document is not None and _matches(document, equals):
                results.append((key, document))
        return results

    def commit(self) -> None:
        for (collection, key), document in self._staged.items():
            bucket = self._collections.setdefault(collection, {})
            if document is _DELETED:
                bucket.pop(key, None)
            else:
                bucket[key] = document
        self._staged = {}


@dataclass
class InMemoryDocumentStore:
    def __post_init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[_InMemoryTransaction]:
        with self._lock:
            txn = _InMemoryTransaction(self._collections)
            yield txn
            txn.commit()


class _PostgresTransaction:
    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        self._cursor.execute(
            """
            SELECT body
            FROM documents
            WHERE collection = %s AND key = %s
            FOR UPDATE
            """,
            (collection, key),
        )
        row = self._cursor.fetchone()
        if row is None:
            return None
        body = row[0]
        return body if isinstance(body, dict) else json.loads(body)

    def put(self, collection: str, key: str, document: dict[str, Any]) -> None:
        now = datetime.now(timezone.utc)
        self._cursor.execute(
            """
            INSERT INTO documents (collection, key, body, created_at, updated_at)
            VALUES (%s, %s, %s::jsonb, %s, %s)
            ON CONFLICT (collection, key)
            DO UPDATE SET body = EXCLUDED.body, updated_at = EXCLUDED.updated_at
            """,
            (collection, key, json.dumps(document), now, now),
        )

    def insert(self, collection: str, key: str, document: dict[str, Any]) -> bool:
        now = datetime.now(timezone.utc)
        self._cursor.execute(
            """
            INSERT INTO documents (collection, key, body, created_at, updated_at)
            VALUES (%s, %s, %s::jsonb, %s, %s)
            ON CONFLICT (collection, key) DO NOTHING
            """,
            (collection, key, json.dumps(document), now, now),
        )
        return self._cursor.rowcount == 1

    def add(self, collection: str, document: dict[str, Any]) -> str:
        key = str(uuid.uuid4())
        self.put(collection, key, document)
        return key

    def delete(self, collection: str, key: str) -> None:
        self._cursor.execute(
            "DELETE FROM documents WHERE collection = %s AND key = %s",
            (collection, key),
        )

    def scan(self, collection: str, **equals: Any) -> list[tuple[str, dict[str, Any]]]:
        self._cursor.execute(
            """
            SELECT key, body
            FROM documents
            WHERE collection = %s AND body @> %s::jsonb
            ORDER BY created_at, key
            """,
            (collection, json.dumps(equals)),
        )
        rows = self._cursor.fetchall()
        return [(key, body if isinstance(body, dict) else json.loads(body)) for key, body in rows]


@dataclass
class PostgresDocumentStore:
    database_url: str

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    @contextmanager
    def transaction(self) -> Iterator[_PostgresTransaction]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                yield _PostgresTransaction(cur)
            conn.commit()


def create_store(database_url: str | None) -> DocumentStore:
    if database_url:
        return PostgresDocumentStore(database_url=database_url)
    return InMemoryDocumentStore()
