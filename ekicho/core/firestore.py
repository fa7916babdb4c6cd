"""Cloud Firestore implementation of the document store protocol."""

import asyncio
from collections.abc import Mapping
from typing import Any

import structlog
from google.api_core.exceptions import GoogleAPIError
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2 import service_account
from opentelemetry.trace import SpanKind

from ekicho.core.config import require_config, settings
from ekicho.core.documents import (
    ACTIVE_FIELD,
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    ErrorCallback,
    SnapshotCallback,
)
from ekicho.core.errors import DocumentStoreError
from ekicho.core.subscriptions import Subscription
from ekicho.core.telemetry import service_span

logger = structlog.get_logger(__name__)


def _credentials() -> service_account.Credentials | None:
    """
    Service account credentials from GOOGLE_APPLICATION_CREDENTIALS, if configured.

    Returns None to let google-auth fall back to the ambient credentials.
    """
    if not settings.GOOGLE_APPLICATION_CREDENTIALS:
        return None
    return service_account.Credentials.from_service_account_file(settings.GOOGLE_APPLICATION_CREDENTIALS)


def get_firestore_client() -> firestore.AsyncClient:
    """
    Create the async Firestore client used for reads and writes.

    Uses the service account file named by GOOGLE_APPLICATION_CREDENTIALS
    (read from the environment or .env), else the ambient credentials.

    Raises:
        ValueError: If FIREBASE_PROJECT_ID is not configured
    """
    require_config("FIREBASE_PROJECT_ID")
    return firestore.AsyncClient(
        project=settings.FIREBASE_PROJECT_ID,
        database=settings.FIRESTORE_DATABASE,
        credentials=_credentials(),
    )


def get_firestore_watch_client() -> firestore.Client:
    """
    Create the sync Firestore client used for snapshot listeners.

    Snapshot listeners are only available on the sync client; they deliver on
    a background thread.
    """
    require_config("FIREBASE_PROJECT_ID")
    return firestore.Client(
        project=settings.FIREBASE_PROJECT_ID,
        database=settings.FIRESTORE_DATABASE,
        credentials=_credentials(),
    )


def _to_firestore(data: Mapping[str, Any]) -> dict[str, Any]:
    """Replace the store-neutral server timestamp placeholder with Firestore's sentinel."""
    return {key: firestore.SERVER_TIMESTAMP if value is SERVER_TIMESTAMP else value for key, value in data.items()}


class FirestoreDocumentStore:
    """DocumentStore backed by Cloud Firestore."""

    def __init__(self, client: firestore.AsyncClient, watch_client: firestore.Client | None = None) -> None:
        """
        Initialize the store.

        Args:
            client: Async client for one-shot reads and writes
            watch_client: Sync client for snapshot listeners (created lazily if omitted)
        """
        self._client = client
        self._watch_client = watch_client

    async def list_active(self, collection: str) -> list[DocumentSnapshot]:
        with service_span(
            "firestore.list_active", "firestore", kind=SpanKind.CLIENT, **{"firestore.path": collection}
        ) as span:
            try:
                query = self._client.collection(collection).where(filter=FieldFilter(ACTIVE_FIELD, "==", True))
                documents = await query.get()
            except GoogleAPIError as e:
                raise DocumentStoreError("list", collection, e) from e
            span.set_attribute("firestore.document_count", len(documents))
            return [DocumentSnapshot(id=doc.id, data=doc.to_dict() or {}) for doc in documents]

    async def get(self, path: str) -> DocumentSnapshot | None:
        with service_span("firestore.get", "firestore", kind=SpanKind.CLIENT, **{"firestore.path": path}) as span:
            try:
                snapshot = await self._client.document(path).get()
            except GoogleAPIError as e:
                raise DocumentStoreError("get", path, e) from e
            span.set_attribute("firestore.exists", bool(snapshot.exists))
            if not snapshot.exists:
                return None
            return DocumentSnapshot(id=snapshot.id, data=snapshot.to_dict() or {})

    async def set(self, path: str, data: Mapping[str, Any]) -> None:
        with service_span("firestore.set", "firestore", kind=SpanKind.CLIENT, **{"firestore.path": path}):
            try:
                await self._client.document(path).set(_to_firestore(data))
            except GoogleAPIError as e:
                raise DocumentStoreError("set", path, e) from e

    async def update(self, path: str, data: Mapping[str, Any]) -> None:
        with service_span("firestore.update", "firestore", kind=SpanKind.CLIENT, **{"firestore.path": path}):
            try:
                await self._client.document(path).update(_to_firestore(data))
            except GoogleAPIError as e:
                raise DocumentStoreError("update", path, e) from e

    async def delete(self, path: str) -> None:
        with service_span("firestore.delete", "firestore", kind=SpanKind.CLIENT, **{"firestore.path": path}):
            try:
                await self._client.document(path).delete()
            except GoogleAPIError as e:
                raise DocumentStoreError("delete", path, e) from e

    async def has_any(self, collection_path: str) -> bool:
        with service_span(
            "firestore.has_any", "firestore", kind=SpanKind.CLIENT, **{"firestore.path": collection_path}
        ):
            try:
                documents = await self._client.collection(collection_path).limit(1).get()
            except GoogleAPIError as e:
                raise DocumentStoreError("probe", collection_path, e) from e
            return len(documents) > 0

    def subscribe(
        self,
        collection_path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """
        Attach a snapshot listener to a collection.

        Must be called from a running event loop: deliveries from the watch
        thread are handed to that loop with ``call_soon_threadsafe``.

        The Firestore watch retries transient stream errors itself and never
        reports a permanent failure; it just stops. A task on the loop polls
        ``watch.is_active`` every FIRESTORE_WATCH_CHECK_SECONDS and reports a
        closed stream through ``on_error``.
        """
        loop = asyncio.get_running_loop()
        if self._watch_client is None:
            self._watch_client = get_firestore_watch_client()

        def _deliver(documents: list[Any], changes: list[Any], read_time: Any) -> None:  # noqa: ANN401
            try:
                snapshots = [DocumentSnapshot(id=doc.id, data=doc.to_dict() or {}) for doc in documents]
            except Exception as e:
                logger.exception("firestore_snapshot_conversion_failed", path=collection_path)
                if on_error is not None:
                    loop.call_soon_threadsafe(on_error, DocumentStoreError("listen", collection_path, e))
                return
            loop.call_soon_threadsafe(on_snapshot, snapshots)

        try:
            watch = self._watch_client.collection(collection_path).on_snapshot(_deliver)
        except GoogleAPIError as e:
            raise DocumentStoreError("listen", collection_path, e) from e

        monitor = loop.create_task(self._report_closed_watch(watch, collection_path, on_error))

        def _teardown() -> None:
            monitor.cancel()
            watch.unsubscribe()

        logger.debug("firestore_listener_attached", path=collection_path)
        return Subscription(_teardown)

    async def _report_closed_watch(
        self,
        watch: Any,  # noqa: ANN401
        collection_path: str,
        on_error: ErrorCallback | None,
    ) -> None:
        while watch.is_active:
            await asyncio.sleep(settings.FIRESTORE_WATCH_CHECK_SECONDS)
        logger.warning("firestore_listener_closed", path=collection_path)
        if on_error is not None:
            on_error(DocumentStoreError("listen", collection_path, ConnectionError("Listener stream closed")))
