"""One-time migration of locally cached visited stations into per-user visit documents."""

import asyncio
import enum
from dataclasses import dataclass, field

import structlog

from ekicho.core.config import settings
from ekicho.core.documents import DocumentStore, visit_path, visits_path
from ekicho.core.errors import DocumentStoreError
from ekicho.core.local_store import (
    VISITED_STATION_IDS_KEY,
    LocalStore,
    migration_flag_key,
    unmigrated_station_ids_key,
)
from ekicho.core.telemetry import service_span
from ekicho.models import new_visit
from ekicho.utils.pii import hash_pii

logger = structlog.get_logger(__name__)


class MigrationState(str, enum.Enum):
    """Migration progress, moving NOT_STARTED -> CHECKING -> SKIPPED|MIGRATING -> COMPLETED."""

    NOT_STARTED = "not_started"
    CHECKING = "checking"
    SKIPPED = "skipped"
    MIGRATING = "migrating"
    COMPLETED = "completed"


@dataclass(frozen=True)
class MigrationResult:
    """Outcome of a migration run."""

    state: MigrationState
    success: bool
    migrated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class MigrationService:
    """
    Copy the pre-sync visited-station cache into the remote visits collection.

    Runs at most once per user: the ``migrationCompleted_<uid>`` flag in the
    local store suppresses every later run. Writes are keyed by station id, so
    a run repeated after an interrupted flag write overwrites rather than
    duplicates.
    """

    def __init__(
        self,
        documents: DocumentStore,
        local_store: LocalStore,
        max_attempts: int | None = None,
        retry_backoff_seconds: float | None = None,
    ) -> None:
        """
        Initialize the migration service.

        Args:
            documents: Document database receiving the visit documents
            local_store: Local store holding the cache and per-user flag
            max_attempts: Attempts per visit write (default: settings.MIGRATION_MAX_ATTEMPTS)
            retry_backoff_seconds: Base backoff between attempts
                (default: settings.MIGRATION_RETRY_BACKOFF_SECONDS)
        """
        self.documents = documents
        self.local_store = local_store
        self.max_attempts = settings.MIGRATION_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.retry_backoff_seconds = (
            settings.MIGRATION_RETRY_BACKOFF_SECONDS if retry_backoff_seconds is None else retry_backoff_seconds
        )
        self._state = MigrationState.NOT_STARTED
        self.last_result: MigrationResult | None = None

    @property
    def state(self) -> MigrationState:
        return self._state

    def _transition(self, state: MigrationState, user_hash: str) -> None:
        if state == self._state:
            return
        logger.info("migration_state_changed", previous=self._state.value, state=state.value, user_hash=user_hash)
        self._state = state

    async def migrate_if_needed(self, user_id: str) -> MigrationResult:
        """
        Migrate only when the user has no remote visits yet.

        A user who already has cloud data is never migrated into, so local
        cache contents cannot resurrect visits removed on another device.

        Args:
            user_id: Signed-in user's id

        Returns:
            SKIPPED result when remote visits exist, else the result of
            migrate_local_visits
        """
        user_hash = hash_pii(user_id)
        self._transition(MigrationState.CHECKING, user_hash)
        try:
            has_remote_visits = await self.documents.has_any(visits_path(user_id))
        except DocumentStoreError as e:
            # Unknown remote state counts as non-empty
            logger.warning("migration_probe_failed", user_hash=user_hash, error=str(e))
            has_remote_visits = True

        if has_remote_visits:
            self._transition(MigrationState.SKIPPED, user_hash)
            logger.info("migration_skipped", user_hash=user_hash, reason="remote_visits_exist")
            self.last_result = MigrationResult(state=MigrationState.SKIPPED, success=True)
            return self.last_result

        return await self.migrate_local_visits(user_id)

    async def migrate_local_visits(self, user_id: str) -> MigrationResult:
        """
        Write one visit document per cached station id, then mark the user migrated.

        The cache is cleared once all writes have finished, whatever their
        outcome. Ids whose writes still failed after every retry are kept
        under ``unmigratedStationIDs_<uid>``.

        Args:
            user_id: Signed-in user's id

        Returns:
            MigrationResult; success means the flag was already set, there was
            nothing to migrate, or at least one write succeeded
        """
        self.last_result = await self._migrate_local_visits(user_id)
        return self.last_result

    async def _migrate_local_visits(self, user_id: str) -> MigrationResult:
        user_hash = hash_pii(user_id)
        flag_key = migration_flag_key(user_id)

        with service_span("migration.migrate_local_visits", "migration", user_hash=user_hash) as span:
            self._transition(MigrationState.CHECKING, user_hash)

            if await self.local_store.get_bool(flag_key):
                self._transition(MigrationState.COMPLETED, user_hash)
                logger.info("migration_already_completed", user_hash=user_hash)
                span.set_attribute("migration.already_completed", True)
                return MigrationResult(state=MigrationState.COMPLETED, success=True)

            cached = await self.local_store.get_string_list(VISITED_STATION_IDS_KEY) or []
            station_ids = list(dict.fromkeys(cached))

            if not station_ids:
                await self.local_store.set_bool(flag_key, True)
                self._transition(MigrationState.COMPLETED, user_hash)
                logger.info("migration_nothing_to_migrate", user_hash=user_hash)
                span.set_attribute("migration.station_count", 0)
                return MigrationResult(state=MigrationState.COMPLETED, success=True)

            self._transition(MigrationState.MIGRATING, user_hash)
            outcomes = await asyncio.gather(*(self._write_visit(user_id, station_id) for station_id in station_ids))

            migrated = [station_id for station_id, ok in zip(station_ids, outcomes, strict=True) if ok]
            failed = [station_id for station_id, ok in zip(station_ids, outcomes, strict=True) if not ok]

            await self.local_store.set_bool(flag_key, True)
            await self.local_store.remove(VISITED_STATION_IDS_KEY)
            if failed:
                await self.local_store.set_string_list(unmigrated_station_ids_key(user_id), failed)
                logger.warning(
                    "migration_visits_unmigrated",
                    user_hash=user_hash,
                    failed_count=len(failed),
                    station_ids=failed,
                )

            self._transition(MigrationState.COMPLETED, user_hash)
            span.set_attribute("migration.station_count", len(station_ids))
            span.set_attribute("migration.migrated_count", len(migrated))
            span.set_attribute("migration.failed_count", len(failed))
            logger.info(
                "migration_completed",
                user_hash=user_hash,
                migrated_count=len(migrated),
                failed_count=len(failed),
            )
            return MigrationResult(
                state=MigrationState.COMPLETED,
                success=len(migrated) > 0,
                migrated=migrated,
                failed=failed,
            )

    async def _write_visit(self, user_id: str, station_id: str) -> bool:
        """Write a single visit, retrying with exponential backoff. Returns whether it landed."""
        path = visit_path(user_id, station_id)
        for attempt in range(self.max_attempts):
            try:
                await self.documents.set(path, new_visit(user_id, station_id).to_document())
            except DocumentStoreError as e:
                if attempt + 1 >= self.max_attempts:
                    logger.warning(
                        "migration_visit_write_failed",
                        station_id=station_id,
                        attempts=attempt + 1,
                        error=str(e),
                    )
                    return False
                delay = self.retry_backoff_seconds * (2**attempt)
                logger.debug("migration_visit_write_retry", station_id=station_id, attempt=attempt + 1, delay=delay)
                await asyncio.sleep(delay)
            else:
                return True
        return False
