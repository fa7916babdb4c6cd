"""Sync service: loads lines, stations and visits, and mirrors visit toggles."""

import asyncio
from collections.abc import Collection, Iterable
from datetime import UTC, datetime

import structlog

from ekicho.core.config import settings
from ekicho.core.documents import (
    COLLECTION_LINES,
    COLLECTION_STATIONS,
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    user_path,
    visit_path,
    visits_path,
)
from ekicho.core.errors import DecodeError, DocumentStoreError, NotAuthenticatedError
from ekicho.core.identity import IdentitySession
from ekicho.core.subscriptions import Subscription
from ekicho.helpers.soft_delete_filters import index_active_visits
from ekicho.models import Line, Station, StationVisit, User, decode_document, new_visit
from ekicho.models.base import DocumentModelT
from ekicho.state.derived import ProgressInfo, all_companies, filtered_lines, total_progress, visited_station_count
from ekicho.state.store import StateStore
from ekicho.utils.pii import hash_pii

logger = structlog.get_logger(__name__)

DEFAULT_DISPLAY_NAME = "User"


def decode_all(model: type[DocumentModelT], snapshots: Iterable[DocumentSnapshot]) -> list[DocumentModelT]:
    """
    Decode every snapshot that matches ``model``, skipping the rest.

    Undecodable documents are logged at debug level and never surfaced.
    """
    decoded = []
    for snapshot in snapshots:
        try:
            decoded.append(decode_document(model, snapshot.id, snapshot.data))
        except DecodeError as e:
            logger.debug("document_decode_skipped", model=model.__name__, document_id=snapshot.id, reason=str(e))
    return decoded


class SyncService:
    """Keeps the StateStore in step with the user's cloud collections."""

    def __init__(self, documents: DocumentStore, identity: IdentitySession, store: StateStore) -> None:
        """
        Initialize the sync service.

        Args:
            documents: Document database handle
            identity: Identity session gating all per-user operations
            store: State container receiving every mutation
        """
        self.documents = documents
        self.identity = identity
        self.store = store
        self._visit_subscription: Subscription | None = None
        self._subscribed_user_id: str | None = None
        self._visits_received = asyncio.Event()

    # ==================== Read accessors ====================

    @property
    def lines(self) -> list[Line]:
        return self.store.state.lines

    @property
    def stations(self) -> dict[str, Station]:
        return dict(self.store.state.stations)

    @property
    def visits(self) -> dict[str, StationVisit]:
        return dict(self.store.state.visits)

    @property
    def visited_station_ids(self) -> frozenset[str]:
        return self.store.state.visited_station_ids

    @property
    def all_companies(self) -> list[str]:
        return all_companies(self.store.state.lines)

    @property
    def total_progress(self) -> ProgressInfo:
        state = self.store.state
        return total_progress(state.lines, state.stations, state.visited_station_ids)

    def filtered_lines(self, selected: Collection[str] | None) -> list[Line]:
        return filtered_lines(self.store.state.lines, selected)

    def visited_station_count(self, line: Line) -> int:
        return visited_station_count(line, self.store.state.visited_station_ids)

    @property
    def visit_subscription(self) -> Subscription | None:
        return self._visit_subscription

    # ==================== Loading ====================

    async def load_all(self) -> None:
        """
        Load active lines and stations concurrently, then listen to visits.

        Each collection fails independently: a failed fetch records an error
        message and leaves that collection empty.
        """
        self.store.update(is_loading=True, error=None)
        await asyncio.gather(self._load_lines(), self._load_stations())
        self.store.update(is_loading=False)
        self.start_visit_subscription()

    async def _load_lines(self) -> None:
        try:
            snapshots = await self.documents.list_active(COLLECTION_LINES)
        except DocumentStoreError as e:
            logger.warning("lines_load_failed", error=str(e))
            self.store.update(lines=[], error=f"Failed to load lines: {e.user_message}")
            return

        lines = decode_all(Line, snapshots)
        self.store.update(lines=lines)
        logger.info("lines_loaded", count=len(lines), skipped=len(snapshots) - len(lines))

    async def _load_stations(self) -> None:
        try:
            snapshots = await self.documents.list_active(COLLECTION_STATIONS)
        except DocumentStoreError as e:
            logger.warning("stations_load_failed", error=str(e))
            self.store.update(stations={}, error=f"Failed to load stations: {e.user_message}")
            return

        stations = decode_all(Station, snapshots)
        self.store.update(stations={station.station_id: station for station in stations})
        logger.info("stations_loaded", count=len(stations), skipped=len(snapshots) - len(stations))

    def start_visit_subscription(self) -> Subscription | None:
        """
        Listen to the signed-in user's visits, replacing any earlier listener.

        Returns:
            The subscription handle, or None when nobody is signed in or the
            listener could not be attached
        """
        user_id = self.identity.current_user_id
        if user_id is None:
            logger.info("visit_subscription_skipped", reason="not_authenticated")
            return None

        self.stop()
        self._visits_received = asyncio.Event()
        self._subscribed_user_id = user_id

        def _on_snapshot(snapshots: list[DocumentSnapshot]) -> None:
            self._apply_visit_snapshot(user_id, snapshots)

        try:
            self._visit_subscription = self.documents.subscribe(
                visits_path(user_id), _on_snapshot, self._on_visit_error
            )
        except DocumentStoreError as e:
            self._subscribed_user_id = None
            self._on_visit_error(e)
            return None

        logger.info("visit_subscription_started", user_hash=hash_pii(user_id))
        return self._visit_subscription

    def _apply_visit_snapshot(self, user_id: str, snapshots: list[DocumentSnapshot]) -> None:
        # Deliveries queued before a sign-out or user switch are dropped
        if self._subscribed_user_id != user_id or self.identity.current_user_id != user_id:
            logger.debug("visit_snapshot_dropped", user_hash=hash_pii(user_id))
            return
        visits = index_active_visits(decode_all(StationVisit, snapshots))
        self.store.update(visits=visits)
        logger.debug("visit_snapshot_applied", count=len(visits))
        self._visits_received.set()

    async def wait_for_visits(self, timeout: float | None = None) -> bool:
        """
        Wait for the first visit snapshot of the current subscription.

        Returns:
            True once the first snapshot (or a listener error) arrived, False on
            timeout or without a subscription
        """
        if self._visit_subscription is None:
            return False
        try:
            await asyncio.wait_for(self._visits_received.wait(), timeout)
        except TimeoutError:
            logger.warning("visit_snapshot_wait_timed_out", timeout=timeout)
            return False
        return True

    def _on_visit_error(self, error: Exception) -> None:
        message = error.user_message if isinstance(error, DocumentStoreError) else str(error)
        logger.warning("visit_subscription_failed", error=str(error))
        self.store.update(error=f"Failed to load user visits: {message}")
        self._visits_received.set()

    def stop(self) -> None:
        """Cancel the visit listener, if any (idempotent)."""
        self._subscribed_user_id = None
        if self._visit_subscription is not None:
            self._visit_subscription.cancel()
            self._visit_subscription = None
            logger.info("visit_subscription_stopped")

    # ==================== User actions ====================

    async def toggle_visit(self, station_id: str) -> bool | None:
        """
        Mark a station visited, or unmark it if it already is.

        The in-memory visits change only after the remote write succeeds, and
        only while the user who started the toggle is still signed in.

        Args:
            station_id: Station to toggle

        Returns:
            The new visited flag, or None if the toggle failed (see state.error)
        """
        try:
            user_id = self.identity.require_user_id()
        except NotAuthenticatedError as e:
            logger.warning("visit_toggle_rejected", station_id=station_id, reason="not_authenticated")
            self.store.update(error=str(e))
            return None

        path = visit_path(user_id, station_id)

        if station_id in self.store.state.visits:
            try:
                await self.documents.delete(path)
            except DocumentStoreError as e:
                logger.warning("visit_remove_failed", station_id=station_id, error=str(e))
                if not self._is_stale_toggle(user_id, station_id):
                    self.store.update(error=f"Failed to remove visit: {e.user_message}")
                return None

            if self._is_stale_toggle(user_id, station_id):
                return None
            visits = dict(self.store.state.visits)
            visits.pop(station_id, None)
            self.store.update(visits=visits)
            logger.info("visit_removed", station_id=station_id, user_hash=hash_pii(user_id))
            return False

        visit = new_visit(user_id, station_id)
        try:
            await self.documents.set(path, visit.to_document())
        except DocumentStoreError as e:
            logger.warning("visit_add_failed", station_id=station_id, error=str(e))
            if not self._is_stale_toggle(user_id, station_id):
                self.store.update(error=f"Failed to add visit: {e.user_message}")
            return None

        if self._is_stale_toggle(user_id, station_id):
            return None
        self.store.update(visits={**self.store.state.visits, station_id: visit})
        logger.info("visit_added", station_id=station_id, user_hash=hash_pii(user_id))
        return True

    def _is_stale_toggle(self, user_id: str, station_id: str) -> bool:
        # The write finished after a sign-out or account switch
        if self.identity.current_user_id == user_id:
            return False
        logger.info("visit_toggle_stale", station_id=station_id, user_hash=hash_pii(user_id))
        return True

    # ==================== User document ====================

    async def create_user_if_needed(self) -> bool:
        """
        Ensure ``users/{uid}`` exists for the signed-in user.

        Returns:
            True if the document exists or was created, False otherwise
        """
        user = self.identity.current_user
        if user is None:
            logger.warning("user_document_init_skipped", reason="not_authenticated")
            return False

        path = user_path(user.uid)
        user_hash = hash_pii(user.uid)
        try:
            if await self.documents.get(path) is not None:
                logger.debug("user_document_exists", user_hash=user_hash)
                return True

            now = datetime.now(UTC)
            profile = User(
                display_name=user.display_name or DEFAULT_DISPLAY_NAME,
                email=user.email or "",
                auth_provider=settings.DEFAULT_AUTH_PROVIDER,
                current_city_id=settings.DEFAULT_CITY_ID,
                created_at=now,
                last_active_at=now,
            )
            await self.documents.set(path, profile.to_document())
        except DocumentStoreError as e:
            logger.warning("user_document_init_failed", user_hash=user_hash, error=str(e))
            return False

        logger.info("user_document_created", user_hash=user_hash)
        return True

    async def has_any_user_visits(self) -> bool:
        """Whether the signed-in user has at least one visit document (False on failure)."""
        user_id = self.identity.current_user_id
        if user_id is None:
            return False
        try:
            return await self.documents.has_any(visits_path(user_id))
        except DocumentStoreError as e:
            logger.warning("user_visits_probe_failed", error=str(e))
            return False

    async def record_sign_out(self) -> None:
        """Stamp ``last_signed_out_at`` on the user document; failures are only logged."""
        user_id = self.identity.current_user_id
        if user_id is None:
            return
        try:
            await self.documents.update(user_path(user_id), {"last_signed_out_at": SERVER_TIMESTAMP})
        except DocumentStoreError as e:
            logger.warning("sign_out_timestamp_failed", user_hash=hash_pii(user_id), error=str(e))

    async def update_user_city(self, city_id: str) -> bool:
        """
        Change the signed-in user's current city.

        Returns:
            True on success; False with state.error set otherwise
        """
        try:
            user_id = self.identity.require_user_id()
        except NotAuthenticatedError as e:
            self.store.update(error=str(e))
            return False

        try:
            await self.documents.update(
                user_path(user_id),
                {"current_city_id": city_id, "last_updated_at": SERVER_TIMESTAMP},
            )
        except DocumentStoreError as e:
            logger.warning("user_city_update_failed", city_id=city_id, error=str(e))
            self.store.update(error=f"Failed to update city: {e.user_message}")
            return False

        logger.info("user_city_updated", city_id=city_id, user_hash=hash_pii(user_id))
        return True
