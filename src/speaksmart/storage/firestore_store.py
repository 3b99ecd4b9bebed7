"""Cloud Firestore implementation of the document store."""

import asyncio
from typing import Any

import structlog
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter

from speaksmart.errors import DocumentNotFoundError, StoreUnavailableError
from speaksmart.storage.document_store import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    Increment,
    SnapshotCallback,
    Unsubscribe,
)

logger = structlog.get_logger()


def _to_firestore(fields: dict[str, Any]) -> dict[str, Any]:
    converted = {}
    for key, value in fields.items():
        if value is SERVER_TIMESTAMP:
            converted[key] = firestore.SERVER_TIMESTAMP
        elif isinstance(value, Increment):
            converted[key] = firestore.Increment(value.amount)
        else:
            converted[key] = value
    return converted


def _snapshot(doc) -> DocumentSnapshot:
    return DocumentSnapshot(
        path=doc.reference.path,
        data=doc.to_dict() if doc.exists else None,
    )


class FirestoreDocumentStore(DocumentStore):
    """Document store backed by Cloud Firestore.

    CRUD goes through the async client. Live subscriptions use the sync
    client's watch stream, whose callbacks run on a background thread and
    are handed back to the event loop.
    """

    def __init__(self, project_id: str | None = None):
        self.project_id = project_id
        self._async_client: firestore.AsyncClient | None = None
        self._sync_client: firestore.Client | None = None

    @property
    def client(self) -> firestore.AsyncClient:
        if self._async_client is None:
            self._async_client = firestore.AsyncClient(project=self.project_id)
        return self._async_client

    @property
    def watch_client(self) -> firestore.Client:
        if self._sync_client is None:
            self._sync_client = firestore.Client(project=self.project_id)
        return self._sync_client

    async def get(self, path: str) -> DocumentSnapshot:
        try:
            doc = await self.client.document(path).get()
        except google_exceptions.GoogleAPICallError as e:
            logger.error("firestore_get_failed", path=path, error=str(e))
            raise StoreUnavailableError(str(e)) from e
        return DocumentSnapshot(path=path, data=doc.to_dict() if doc.exists else None)

    async def set(self, path: str, fields: dict[str, Any], merge: bool = False) -> None:
        try:
            await self.client.document(path).set(_to_firestore(fields), merge=merge)
        except google_exceptions.GoogleAPICallError as e:
            logger.error("firestore_set_failed", path=path, error=str(e))
            raise StoreUnavailableError(str(e)) from e

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        try:
            await self.client.document(path).update(_to_firestore(fields))
        except google_exceptions.NotFound as e:
            raise DocumentNotFoundError(path) from e
        except google_exceptions.GoogleAPICallError as e:
            logger.error("firestore_update_failed", path=path, error=str(e))
            raise StoreUnavailableError(str(e)) from e

    async def add(self, collection_path: str, fields: dict[str, Any]) -> str:
        try:
            _, ref = await self.client.collection(collection_path).add(_to_firestore(fields))
        except google_exceptions.GoogleAPICallError as e:
            logger.error("firestore_add_failed", collection=collection_path, error=str(e))
            raise StoreUnavailableError(str(e)) from e
        return ref.id

    async def delete(self, path: str) -> None:
        try:
            await self.client.document(path).delete()
        except google_exceptions.GoogleAPICallError as e:
            logger.error("firestore_delete_failed", path=path, error=str(e))
            raise StoreUnavailableError(str(e)) from e

    async def list_collection(self, collection_path: str) -> list[DocumentSnapshot]:
        try:
            return [_snapshot(doc) async for doc in self.client.collection(collection_path).stream()]
        except google_exceptions.GoogleAPICallError as e:
            logger.error("firestore_list_failed", collection=collection_path, error=str(e))
            raise StoreUnavailableError(str(e)) from e

    async def query(
        self, collection_path: str, filters: dict[str, Any]
    ) -> list[DocumentSnapshot]:
        query = self.client.collection(collection_path)
        for field_name, value in filters.items():
            query = query.where(filter=FieldFilter(field_name, "==", value))
        try:
            return [_snapshot(doc) async for doc in query.stream()]
        except google_exceptions.GoogleAPICallError as e:
            logger.error("firestore_query_failed", collection=collection_path, error=str(e))
            raise StoreUnavailableError(str(e)) from e

    def subscribe(self, collection_path: str, callback: SnapshotCallback) -> Unsubscribe:
        loop = asyncio.get_running_loop()

        def on_snapshot(docs, changes, read_time) -> None:
            snapshots = [_snapshot(doc) for doc in docs]
            loop.call_soon_threadsafe(callback, snapshots)

        watch = self.watch_client.collection(collection_path).on_snapshot(on_snapshot)
        logger.info("firestore_subscribed", collection=collection_path)

        def unsubscribe() -> None:
            watch.unsubscribe()
            logger.info("firestore_unsubscribed", collection=collection_path)

        return unsubscribe
