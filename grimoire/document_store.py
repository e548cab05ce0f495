"""Document store collaborator: in-process implementation and Firestore adapter.

Both implementations expose the same surface (``get``, ``set``, ``update``,
``delete``, ``add``, ``query``, ``delete_all`` and ``run_transaction``) so the
engines can be exercised without a live Firestore project.
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol, Sequence, TypeVar

import firebase_admin
from firebase_admin import firestore as firebase_firestore
from google.cloud import firestore as gcloud_firestore
from google.cloud.firestore_v1.base_query import FieldFilter

logger = logging.getLogger("crystal_grimoire")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DELETE_BATCH_SIZE = 400

QueryFilter = tuple[str, str, Any]


class TransactionConflict(RuntimeError):
    """Raised when a transaction keeps losing optimistic version checks."""


@dataclass
class StoredDocument:
    id: str
    path: str
    data: dict[str, Any]


class Transaction(Protocol):
    def get(self, path: str) -> dict[str, Any] | None: ...

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None: ...

    def update(self, path: str, partial: dict[str, Any]) -> None: ...

    def delete(self, path: str) -> None: ...


class DocumentStore(Protocol):
    def get(self, path: str) -> dict[str, Any] | None: ...

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None: ...

    def update(self, path: str, partial: dict[str, Any]) -> None: ...

    def delete(self, path: str) -> None: ...

    def add(self, collection: str, data: dict[str, Any]) -> str: ...

    def query(self, collection: str, filters: Sequence[QueryFilter] = ()) -> list[StoredDocument]: ...

    def delete_all(self, collection: str, filters: Sequence[QueryFilter] = ()) -> int: ...

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T: ...


def _normalize_path(path: str) -> str:
    parts = [p for p in str(path or "").strip().split("/") if p]
    if not parts or len(parts) % 2 != 0:
        raise ValueError(f"Document path must have an even number of segments: {path!r}")
    return "/".join(parts)


def _normalize_collection(collection: str) -> str:
    parts = [p for p in str(collection or "").strip().split("/") if p]
    if not parts or len(parts) % 2 != 1:
        raise ValueError(f"Collection path must have an odd number of segments: {collection!r}")
    return "/".join(parts)


def _deep_merge(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_dotted_update(base: dict[str, Any], partial: dict[str, Any]) -> dict[str, Any]:
    updated = copy.deepcopy(base)
    for dotted_key, value in partial.items():
        parts = str(dotted_key).split(".")
        cursor = updated
        for part in parts[:-1]:
            nxt = cursor.get(part)
            if not isinstance(nxt, dict):
                nxt = {}
                cursor[part] = nxt
            cursor = nxt
        cursor[parts[-1]] = value
    return updated


def _field_value(data: dict[str, Any], dotted_field: str) -> Any:
    cursor: Any = data
    for part in dotted_field.split("."):
        if not isinstance(cursor, dict) or part not in cursor:
            return None
        cursor = cursor[part]
    return cursor


def _matches(data: dict[str, Any], filters: Iterable[QueryFilter]) -> bool:
    for field_path, op, expected in filters:
        actual = _field_value(data, field_path)
        try:
            if op == "==":
                ok = actual == expected
            elif op == "!=":
                ok = actual != expected
            elif op == "<":
                ok = actual is not None and actual < expected
            elif op == "<=":
                ok = actual is not None and actual <= expected
            elif op == ">":
                ok = actual is not None and actual > expected
            elif op == ">=":
                ok = actual is not None and actual >= expected
            elif op == "in":
                ok = actual in expected
            elif op == "array_contains":
                ok = isinstance(actual, list) and expected in actual
            else:
                raise ValueError(f"Unsupported query operator: {op}")
        except TypeError:
            ok = False
        if not ok:
            return False
    return True


class InMemoryDocumentStore:
    """Thread-safe document store with optimistic, retrying transactions."""

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self._docs: dict[str, tuple[dict[str, Any], int]] = {}
        self._lock = threading.RLock()
        self._max_attempts = max(1, int(max_attempts))

    def _read_unlocked(self, path: str) -> tuple[dict[str, Any] | None, int]:
        entry = self._docs.get(path)
        if entry is None:
            return None, 0
        data, version = entry
        return copy.deepcopy(data), version

    def _write_unlocked(self, path: str, data: dict[str, Any] | None) -> None:
        _, version = self._docs.get(path, (None, 0))
        if data is None:
            self._docs.pop(path, None)
            return
        self._docs[path] = (copy.deepcopy(data), version + 1)

    def get(self, path: str) -> dict[str, Any] | None:
        with self._lock:
            data, _ = self._read_unlocked(_normalize_path(path))
            return data

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        key = _normalize_path(path)
        with self._lock:
            current, _ = self._read_unlocked(key)
            payload = _deep_merge(current or {}, data) if merge else dict(data)
            self._write_unlocked(key, payload)

    def update(self, path: str, partial: dict[str, Any]) -> None:
        key = _normalize_path(path)
        with self._lock:
            current, _ = self._read_unlocked(key)
            if current is None:
                raise KeyError(f"No document to update: {key}")
            self._write_unlocked(key, _apply_dotted_update(current, partial))

    def delete(self, path: str) -> None:
        key = _normalize_path(path)
        with self._lock:
            self._write_unlocked(key, None)

    def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self.set(f"{_normalize_collection(collection)}/{doc_id}", data)
        return doc_id

    def query(self, collection: str, filters: Sequence[QueryFilter] = ()) -> list[StoredDocument]:
        prefix = _normalize_collection(collection) + "/"
        depth = prefix.count("/") + 1
        with self._lock:
            results = [
                StoredDocument(id=path.rsplit("/", 1)[-1], path=path, data=copy.deepcopy(data))
                for path, (data, _version) in self._docs.items()
                if path.startswith(prefix) and path.count("/") + 1 == depth and _matches(data, filters)
            ]
        results.sort(key=lambda doc: doc.path)
        return results

    def delete_all(self, collection: str, filters: Sequence[QueryFilter] = ()) -> int:
        docs = self.query(collection, filters)
        with self._lock:
            for doc in docs:
                self._write_unlocked(doc.path, None)
        return len(docs)

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        last_conflict: str | None = None
        for attempt in range(1, self._max_attempts + 1):
            txn = _InMemoryTransaction(self)
            result = fn(txn)
            with self._lock:
                stale = [
                    path for path, version in txn.read_versions.items()
                    if self._docs.get(path, (None, 0))[1] != version
                ]
                if not stale:
                    for path, data in txn.writes.items():
                        self._write_unlocked(path, data)
                    return result
            last_conflict = ",".join(stale)
            logger.debug("Transaction conflict attempt=%s paths=%s", attempt, last_conflict)
        raise TransactionConflict(
            f"Transaction failed after {self._max_attempts} attempts (contended paths: {last_conflict})"
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._docs)


class _InMemoryTransaction:
    def __init__(self, store: InMemoryDocumentStore):
        self._store = store
        self.read_versions: dict[str, int] = {}
        self.writes: dict[str, dict[str, Any] | None] = {}

    def get(self, path: str) -> dict[str, Any] | None:
        key = _normalize_path(path)
        if key in self.writes:
            pending = self.writes[key]
            return copy.deepcopy(pending) if pending is not None else None
        with self._store._lock:
            data, version = self._store._read_unlocked(key)
        self.read_versions.setdefault(key, version)
        return data

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        key = _normalize_path(path)
        if merge:
            current = self.get(key) or {}
            self.writes[key] = _deep_merge(current, data)
        else:
            self.writes[key] = copy.deepcopy(dict(data))

    def update(self, path: str, partial: dict[str, Any]) -> None:
        key = _normalize_path(path)
        current = self.get(key)
        if current is None:
            raise KeyError(f"No document to update: {key}")
        self.writes[key] = _apply_dotted_update(current, partial)

    def delete(self, path: str) -> None:
        self.writes[_normalize_path(path)] = None


class FirestoreDocumentStore:
    """Adapter over the Firebase Admin Firestore client."""

    def __init__(self, client: Any = None, *, project_id: str | None = None, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        if client is None:
            try:
                firebase_admin.get_app()
            except ValueError:
                options = {"projectId": project_id} if project_id else None
                firebase_admin.initialize_app(options=options)
            client = firebase_firestore.client()
        self._client = client
        self._max_attempts = max(1, int(max_attempts))

    def get(self, path: str) -> dict[str, Any] | None:
        snapshot = self._client.document(_normalize_path(path)).get()
        return snapshot.to_dict() if snapshot.exists else None

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        self._client.document(_normalize_path(path)).set(data, merge=merge)

    def update(self, path: str, partial: dict[str, Any]) -> None:
        self._client.document(_normalize_path(path)).update(partial)

    def delete(self, path: str) -> None:
        self._client.document(_normalize_path(path)).delete()

    def add(self, collection: str, data: dict[str, Any]) -> str:
        _update_time, ref = self._client.collection(_normalize_collection(collection)).add(data)
        return ref.id

    def _build_query(self, collection: str, filters: Sequence[QueryFilter]):
        query = self._client.collection(_normalize_collection(collection))
        for field_path, op, value in filters:
            query = query.where(filter=FieldFilter(field_path, op, value))
        return query

    def query(self, collection: str, filters: Sequence[QueryFilter] = ()) -> list[StoredDocument]:
        return [
            StoredDocument(id=snap.id, path=snap.reference.path, data=snap.to_dict() or {})
            for snap in self._build_query(collection, filters).stream()
        ]

    def delete_all(self, collection: str, filters: Sequence[QueryFilter] = ()) -> int:
        deleted = 0
        batch = self._client.batch()
        pending = 0
        for snap in self._build_query(collection, filters).stream():
            batch.delete(snap.reference)
            pending += 1
            deleted += 1
            if pending >= DELETE_BATCH_SIZE:
                batch.commit()
                batch = self._client.batch()
                pending = 0
        if pending:
            batch.commit()
        return deleted

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        transaction = self._client.transaction(max_attempts=self._max_attempts)
        client = self._client

        @gcloud_firestore.transactional
        def _run(txn):
            return fn(_FirestoreTransaction(client, txn))

        return _run(transaction)


class _FirestoreTransaction:
    def __init__(self, client: Any, transaction: Any):
        self._client = client
        self._transaction = transaction

    def get(self, path: str) -> dict[str, Any] | None:
        snapshot = self._client.document(_normalize_path(path)).get(transaction=self._transaction)
        return snapshot.to_dict() if snapshot.exists else None

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        self._transaction.set(self._client.document(_normalize_path(path)), data, merge=merge)

    def update(self, path: str, partial: dict[str, Any]) -> None:
        self._transaction.update(self._client.document(_normalize_path(path)), partial)

    def delete(self, path: str) -> None:
        self._transaction.delete(self._client.document(_normalize_path(path)))


def build_document_store(backend: str, *, project_id: str | None = None) -> DocumentStore:
    if (backend or "memory").strip().lower() == "firestore":
        logger.info("Document store configured backend=firestore project_id=%s", project_id or "default")
        return FirestoreDocumentStore(project_id=project_id)
    logger.info("Document store configured backend=memory")
    return InMemoryDocumentStore()
