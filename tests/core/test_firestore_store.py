"""Tests for the Firestore document store with mocked Google clients."""

import asyncio
import threading
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from ekicho.core import firestore as firestore_module
from ekicho.core.config import settings
from ekicho.core.documents import SERVER_TIMESTAMP, DocumentSnapshot
from ekicho.core.errors import DocumentStoreError
from ekicho.core.firestore import FirestoreDocumentStore
from google.api_core.exceptions import ServiceUnavailable
from google.cloud import firestore


def _document(document_id: str, data: dict[str, Any] | None, exists: bool = True) -> MagicMock:
    doc = MagicMock()
    doc.id = document_id
    doc.exists = exists
    doc.to_dict.return_value = data
    return doc


@pytest.fixture
def client() -> MagicMock:
    """Async Firestore client double."""
    return MagicMock()


@pytest.fixture
def watch_client() -> MagicMock:
    """Sync Firestore client double used for listeners."""
    return MagicMock()


@pytest.fixture
def store(client: MagicMock, watch_client: MagicMock) -> FirestoreDocumentStore:
    return FirestoreDocumentStore(client, watch_client)


class TestReads:
    """Tests for list_active, get and has_any."""

    @pytest.mark.asyncio
    async def test_list_active_filters_on_is_active(self, client: MagicMock, store: FirestoreDocumentStore) -> None:
        """Test that only active documents are queried and converted."""
        query = client.collection.return_value.where.return_value
        query.get = AsyncMock(return_value=[_document("ginza", {"line_id": "ginza"})])

        result = await store.list_active("lines")

        client.collection.assert_called_once_with("lines")
        field_filter = client.collection.return_value.where.call_args.kwargs["filter"]
        assert (field_filter.field_path, field_filter.op_string, field_filter.value) == ("is_active", "==", True)
        assert result == [DocumentSnapshot(id="ginza", data={"line_id": "ginza"})]

    @pytest.mark.asyncio
    async def test_get_existing_document(self, client: MagicMock, store: FirestoreDocumentStore) -> None:
        """Test that an existing document is returned with its id and data."""
        client.document.return_value.get = AsyncMock(return_value=_document("uid_1", {"email": "a@example.com"}))

        result = await store.get("users/uid_1")

        client.document.assert_called_once_with("users/uid_1")
        assert result == DocumentSnapshot(id="uid_1", data={"email": "a@example.com"})

    @pytest.mark.asyncio
    async def test_get_missing_document(self, client: MagicMock, store: FirestoreDocumentStore) -> None:
        """Test that a missing document is None."""
        client.document.return_value.get = AsyncMock(return_value=_document("uid_1", None, exists=False))

        assert await store.get("users/uid_1") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("documents", "expected"), [([], False), (["visit"], True)])
    async def test_has_any(
        self, client: MagicMock, store: FirestoreDocumentStore, documents: list[str], expected: bool
    ) -> None:
        """Test that has_any probes with a single-document limit."""
        limited = client.collection.return_value.limit.return_value
        limited.get = AsyncMock(return_value=[_document(name, {}) for name in documents])

        assert await store.has_any("users/uid_1/visits") is expected
        client.collection.return_value.limit.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_google_errors_are_wrapped(self, client: MagicMock, store: FirestoreDocumentStore) -> None:
        """Test that client failures surface as DocumentStoreError with the cause attached."""
        cause = ServiceUnavailable("backend down")
        client.document.return_value.get = AsyncMock(side_effect=cause)

        with pytest.raises(DocumentStoreError) as exc_info:
            await store.get("users/uid_1")

        assert exc_info.value.operation == "get"
        assert exc_info.value.path == "users/uid_1"
        assert exc_info.value.cause is cause


class TestWrites:
    """Tests for set, update and delete."""

    @pytest.mark.asyncio
    async def test_set_replaces_server_timestamp(self, client: MagicMock, store: FirestoreDocumentStore) -> None:
        """Test that the neutral timestamp placeholder becomes Firestore's sentinel."""
        client.document.return_value.set = AsyncMock()

        await store.set("users/uid_1", {"email": "a@example.com", "created_at": SERVER_TIMESTAMP})

        client.document.return_value.set.assert_awaited_once_with(
            {"email": "a@example.com", "created_at": firestore.SERVER_TIMESTAMP}
        )

    @pytest.mark.asyncio
    async def test_update(self, client: MagicMock, store: FirestoreDocumentStore) -> None:
        """Test that update merges fields into the document."""
        client.document.return_value.update = AsyncMock()

        await store.update("users/uid_1", {"current_city_id": "osaka"})

        client.document.return_value.update.assert_awaited_once_with({"current_city_id": "osaka"})

    @pytest.mark.asyncio
    async def test_delete_failure_is_wrapped(self, client: MagicMock, store: FirestoreDocumentStore) -> None:
        """Test that delete failures surface as DocumentStoreError."""
        client.document.return_value.delete = AsyncMock(side_effect=ServiceUnavailable("backend down"))

        with pytest.raises(DocumentStoreError, match="delete failed for 'users/uid_1/visits/ueno'"):
            await store.delete("users/uid_1/visits/ueno")


class TestSubscribe:
    """Tests for snapshot listeners."""

    @pytest.mark.asyncio
    async def test_delivers_on_event_loop_thread(self, watch_client: MagicMock, store: FirestoreDocumentStore) -> None:
        """Test that watch-thread callbacks are handed to the caller's event loop."""
        received: list[tuple[list[DocumentSnapshot], int]] = []
        delivered = asyncio.Event()

        def on_snapshot(snapshots: list[DocumentSnapshot]) -> None:
            received.append((snapshots, threading.get_ident()))
            delivered.set()

        subscription = store.subscribe("users/uid_1/visits", on_snapshot)
        callback = watch_client.collection.return_value.on_snapshot.call_args.args[0]

        watch_thread = threading.Thread(target=callback, args=([_document("ueno", {"station_id": "ueno"})], [], None))
        watch_thread.start()
        watch_thread.join()
        await asyncio.wait_for(delivered.wait(), timeout=1)

        snapshots, thread_id = received[0]
        assert snapshots == [DocumentSnapshot(id="ueno", data={"station_id": "ueno"})]
        assert thread_id == threading.get_ident()
        watch_client.collection.assert_called_once_with("users/uid_1/visits")

        subscription.cancel()
        watch_client.collection.return_value.on_snapshot.return_value.unsubscribe.assert_called_once()

    @pytest.mark.asyncio
    async def test_attach_failure_is_wrapped(self, watch_client: MagicMock, store: FirestoreDocumentStore) -> None:
        """Test that a listener that cannot be attached raises DocumentStoreError."""
        watch_client.collection.return_value.on_snapshot.side_effect = ServiceUnavailable("backend down")

        with pytest.raises(DocumentStoreError, match="listen failed"):
            store.subscribe("users/uid_1/visits", lambda snapshots: None)

    @pytest.mark.asyncio
    async def test_closed_watch_is_reported(
        self, monkeypatch: pytest.MonkeyPatch, watch_client: MagicMock, store: FirestoreDocumentStore
    ) -> None:
        """Test that a watch stream that stops on its own reaches on_error."""
        monkeypatch.setattr(settings, "FIRESTORE_WATCH_CHECK_SECONDS", 0)
        watch = watch_client.collection.return_value.on_snapshot.return_value
        watch.is_active = True
        errors: list[Exception] = []
        reported = asyncio.Event()

        def on_error(error: Exception) -> None:
            errors.append(error)
            reported.set()

        subscription = store.subscribe("users/uid_1/visits", lambda snapshots: None, on_error)
        await asyncio.sleep(0)
        assert errors == []

        watch.is_active = False
        await asyncio.wait_for(reported.wait(), timeout=1)

        assert isinstance(errors[0], DocumentStoreError)
        assert errors[0].user_message == "Listener stream closed"
        subscription.cancel()

    @pytest.mark.asyncio
    async def test_cancel_stops_watch_monitor(
        self, monkeypatch: pytest.MonkeyPatch, watch_client: MagicMock, store: FirestoreDocumentStore
    ) -> None:
        """Test that an unsubscribed listener is not reported as closed."""
        monkeypatch.setattr(settings, "FIRESTORE_WATCH_CHECK_SECONDS", 0)
        watch = watch_client.collection.return_value.on_snapshot.return_value
        watch.is_active = True
        errors: list[Exception] = []

        subscription = store.subscribe("users/uid_1/visits", lambda snapshots: None, errors.append)
        subscription.cancel()
        watch.is_active = False
        await asyncio.sleep(0.01)

        assert errors == []
        watch.unsubscribe.assert_called_once()


class TestClientFactories:
    """Tests for get_firestore_client and get_firestore_watch_client."""

    def test_ambient_credentials_without_setting(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that no credentials are passed when GOOGLE_APPLICATION_CREDENTIALS is unset."""
        monkeypatch.setattr(settings, "GOOGLE_APPLICATION_CREDENTIALS", None)

        with patch.object(firestore_module.firestore, "AsyncClient") as mock_client:
            firestore_module.get_firestore_client()

        mock_client.assert_called_once_with(
            project=settings.FIREBASE_PROJECT_ID, database=settings.FIRESTORE_DATABASE, credentials=None
        )

    @pytest.mark.parametrize("factory", ["get_firestore_client", "get_firestore_watch_client"])
    def test_service_account_file_from_settings(self, monkeypatch: pytest.MonkeyPatch, factory: str) -> None:
        """Test that a credentials path from settings (e.g. .env) is loaded and passed to the client."""
        monkeypatch.setattr(settings, "GOOGLE_APPLICATION_CREDENTIALS", "/secrets/ekicho-sa.json")
        credentials = MagicMock()

        with (
            patch.object(
                firestore_module.service_account.Credentials, "from_service_account_file", return_value=credentials
            ) as mock_from_file,
            patch.object(firestore_module.firestore, "AsyncClient") as mock_async_client,
            patch.object(firestore_module.firestore, "Client") as mock_sync_client,
        ):
            getattr(firestore_module, factory)()

        mock_from_file.assert_called_once_with("/secrets/ekicho-sa.json")
        mock_client = mock_async_client if factory == "get_firestore_client" else mock_sync_client
        assert mock_client.call_args.kwargs["credentials"] is credentials

    def test_requires_project_id(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "FIREBASE_PROJECT_ID", None)

        with pytest.raises(ValueError, match="FIREBASE_PROJECT_ID"):
            firestore_module.get_firestore_watch_client()
