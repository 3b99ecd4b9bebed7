"""In-process document store (JSON + fcntl.flock + atomic write).

Used for development and tests. When ``path`` is given the whole document
tree is written to a JSON file after every change.
"""

import copy
import fcntl
import json
import os
import tempfile
import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog

from speaksmart.errors import DocumentNotFoundError, StoreUnavailableError
from speaksmart.storage.document_store import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    Increment,
    SnapshotCallback,
    Unsubscribe,
    split_path,
)

logger = structlog.get_logger()

_DATETIME_TAG = "$datetime"


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_DATETIME_TAG: value.isoformat()}
    raise TypeError(f"Unsupported type: {type(value).__name__}")


def _decode(obj: dict) -> Any:
    if len(obj) == 1 and _DATETIME_TAG in obj:
        return datetime.fromisoformat(obj[_DATETIME_TAG])
    return obj


class LocalDocumentStore(DocumentStore):
    """Document store kept in memory, optionally mirrored to a JSON file.

    Args:
        path: JSON file to load from and persist to. ``None`` keeps data in memory only.
        clock: Source of server timestamps.
    """

    def __init__(self, path: Path | None = None, clock: Callable[[], datetime] = datetime.now):
        self.path = path
        self._clock = clock
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._listeners: dict[str, list[SnapshotCallback]] = defaultdict(list)
        if path is not None and path.exists():
            self._load()

    # -- persistence -------------------------------------------------------

    def _load(self) -> None:
        try:
            with open(self.path, encoding="utf-8") as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                data = json.load(f, object_hook=_decode)
                fcntl.flock(f, fcntl.LOCK_UN)
        except (OSError, ValueError) as e:
            raise StoreUnavailableError(f"Cannot read {self.path}: {e}") from e
        for collection, docs in data.get("collections", {}).items():
            self._collections[collection] = docs
        logger.info("local_store_loaded", path=str(self.path), collections=len(self._collections))

    def _persist(self) -> None:
        if self.path is None:
            return
        lock_path = self.path.with_suffix(self.path.suffix + ".lock")
        try:
            with open(lock_path, "w") as lock_file:
                fcntl.flock(lock_file, fcntl.LOCK_EX)
                payload = {"collections": {k: v for k, v in self._collections.items() if v}}
                with tempfile.NamedTemporaryFile(
                    "w", dir=self.path.parent, delete=False, suffix=".json"
                ) as tmp:
                    json.dump(payload, tmp, default=_encode, indent=2)
                os.replace(tmp.name, self.path)
        except OSError as e:
            logger.error("local_store_persist_failed", path=str(self.path), error=str(e))
            raise StoreUnavailableError(f"Cannot write {self.path}: {e}") from e

    # -- helpers -----------------------------------------------------------

    def _resolve(self, fields: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
        resolved = {}
        for key, value in fields.items():
            if value is SERVER_TIMESTAMP:
                resolved[key] = self._clock()
            elif isinstance(value, Increment):
                base = current.get(key)
                resolved[key] = (base if isinstance(base, int | float) else 0) + value.amount
            else:
                resolved[key] = copy.deepcopy(value)
        return resolved

    def _snapshots(self, collection_path: str) -> list[DocumentSnapshot]:
        docs = self._collections.get(collection_path, {})
        return [
            DocumentSnapshot(path=f"{collection_path}/{doc_id}", data=copy.deepcopy(data))
            for doc_id, data in sorted(docs.items())
        ]

    def _changed(self, collection_path: str) -> None:
        self._persist()
        listeners = list(self._listeners.get(collection_path, []))
        if not listeners:
            return
        snapshots = self._snapshots(collection_path)
        for callback in listeners:
            try:
                callback(snapshots)
            except Exception:
                logger.exception("snapshot_listener_failed", collection=collection_path)

    # -- DocumentStore -----------------------------------------------------

    async def get(self, path: str) -> DocumentSnapshot:
        collection, doc_id = split_path(path)
        data = self._collections.get(collection, {}).get(doc_id)
        return DocumentSnapshot(path=path, data=copy.deepcopy(data) if data is not None else None)

    async def set(self, path: str, fields: dict[str, Any], merge: bool = False) -> None:
        collection, doc_id = split_path(path)
        docs = self._collections[collection]
        current = docs.get(doc_id, {}) if merge else {}
        updated = dict(current)
        updated.update(self._resolve(fields, current))
        docs[doc_id] = updated
        self._changed(collection)

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        collection, doc_id = split_path(path)
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise DocumentNotFoundError(path)
        current = docs[doc_id]
        current.update(self._resolve(fields, current))
        self._changed(collection)

    async def add(self, collection_path: str, fields: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        await self.set(f"{collection_path}/{doc_id}", fields)
        return doc_id

    async def delete(self, path: str) -> None:
        collection, doc_id = split_path(path)
        if self._collections.get(collection, {}).pop(doc_id, None) is not None:
            self._changed(collection)

    async def list_collection(self, collection_path: str) -> list[DocumentSnapshot]:
        return self._snapshots(collection_path)

    async def query(
        self, collection_path: str, filters: dict[str, Any]
    ) -> list[DocumentSnapshot]:
        return [
            snap for snap in self._snapshots(collection_path)
            if all(snap.data.get(k) == v for k, v in filters.items())
        ]

    def subscribe(self, collection_path: str, callback: SnapshotCallback) -> Unsubscribe:
        self._listeners[collection_path].append(callback)
        callback(self._snapshots(collection_path))

        def unsubscribe() -> None:
            listeners = self._listeners.get(collection_path, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def listener_count(self, collection_path: str) -> int:
        return len(self._listeners.get(collection_path, []))
