"""
Document database protocol and collection layout.

The cloud database has no DDL: collections exist once a document is written.
The constants and path builders below are the single source of truth for the
layout the app reads and writes:

    lines/{line_id}
    stations/{station_id}
    users/{uid}
    users/{uid}/visits/{station_id}
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from ekicho.core.subscriptions import Subscription

COLLECTION_LINES = "lines"
COLLECTION_STATIONS = "stations"
COLLECTION_USERS = "users"
SUBCOLLECTION_VISITS = "visits"

ACTIVE_FIELD = "is_active"


class _ServerTimestamp:
    """Placeholder replaced with the database server's commit time on write."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


def user_path(user_id: str) -> str:
    """Path of a user's profile document."""
    return f"{COLLECTION_USERS}/{user_id}"


def visits_path(user_id: str) -> str:
    """Path of a user's visits sub-collection."""
    return f"{user_path(user_id)}/{SUBCOLLECTION_VISITS}"


def visit_path(user_id: str, station_id: str) -> str:
    """Path of a single visit document; the station id is the document key."""
    return f"{visits_path(user_id)}/{station_id}"


@dataclass(frozen=True)
class DocumentSnapshot:
    """A document key together with its raw field data."""

    id: str
    data: Mapping[str, Any]


SnapshotCallback = Callable[[list[DocumentSnapshot]], None]
ErrorCallback = Callable[[Exception], None]


class DocumentStore(Protocol):
    """
    Protocol for the document database used by the services.

    Implementations raise ``DocumentStoreError`` for any failed call.
    """

    async def list_active(self, collection: str) -> list[DocumentSnapshot]:
        """Fetch every document of ``collection`` whose ``is_active`` field is true."""
        ...

    async def get(self, path: str) -> DocumentSnapshot | None:
        """Fetch one document, or None when it does not exist."""
        ...

    async def set(self, path: str, data: Mapping[str, Any]) -> None:
        """Create or fully overwrite a document."""
        ...

    async def update(self, path: str, data: Mapping[str, Any]) -> None:
        """Merge fields into an existing document."""
        ...

    async def delete(self, path: str) -> None:
        """Delete a document (no error when absent)."""
        ...

    async def has_any(self, collection_path: str) -> bool:
        """Whether the collection holds at least one document."""
        ...

    def subscribe(
        self,
        collection_path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        """
        Listen to a collection.

        ``on_snapshot`` receives the full document list on every change and is
        always invoked on the caller's event loop thread.
        """
        ...
