"""Session coordinator: reacts to sign-in and sign-out."""

import asyncio

import structlog

from ekicho.core.identity import AuthenticatedUser, IdentitySession
from ekicho.services.migration_service import MigrationService
from ekicho.services.sync_service import SyncService
from ekicho.state.store import StateStore
from ekicho.utils.pii import hash_pii

logger = structlog.get_logger(__name__)

ACCOUNT_INIT_ERROR = "Failed to initialize user account"


class SessionService:
    """
    Drive the sync lifecycle from identity changes.

    On sign-in: make sure the user document exists, migrate the local cache
    if the user has no remote visits yet, then load everything and start
    listening. On sign-out: cancel listeners and reset state.
    """

    def __init__(
        self,
        identity: IdentitySession,
        sync: SyncService,
        migration: MigrationService,
        store: StateStore,
    ) -> None:
        self.identity = identity
        self.sync = sync
        self.migration = migration
        self.store = store
        self._sign_in_task: asyncio.Task[bool] | None = None
        self._identity_subscription = identity.add_listener(self._on_identity_change)

    def _on_identity_change(self, user: AuthenticatedUser | None) -> None:
        if user is None:
            self._on_signed_out()
            return
        self._cancel_sign_in()
        # Identity listeners are synchronous; the sign-in sequence runs as a task
        self._sign_in_task = asyncio.get_running_loop().create_task(self.handle_sign_in(user))
        self._sign_in_task.add_done_callback(self._on_sign_in_done)

    def _on_sign_in_done(self, task: "asyncio.Task[bool]") -> None:
        if task.cancelled():
            return
        if (error := task.exception()) is not None:
            logger.error("session_sign_in_failed", error=str(error))
            self.store.update(is_loading=False, error=ACCOUNT_INIT_ERROR)

    async def handle_sign_in(self, user: AuthenticatedUser) -> bool:
        """
        Run the sign-in sequence for ``user``.

        Returns:
            True once data is loading/listening, False if the account could
            not be initialized
        """
        user_hash = hash_pii(user.uid)
        logger.info("session_sign_in_started", user_hash=user_hash)
        self.store.update(is_loading=True, error=None)

        if not await self.sync.create_user_if_needed():
            self.store.update(is_loading=False, error=ACCOUNT_INIT_ERROR)
            logger.warning("session_account_init_failed", user_hash=user_hash)
            return False

        result = await self.migration.migrate_if_needed(user.uid)
        logger.debug("session_migration_finished", user_hash=user_hash, state=result.state.value)

        await self.sync.load_all()
        logger.info("session_ready", user_hash=user_hash)
        return True

    async def wait_until_ready(self) -> bool:
        """
        Wait for the sign-in sequence started by the last sign-in.

        Returns:
            The sequence's result; False if nothing was started or it was cancelled
        """
        task = self._sign_in_task
        if task is None:
            return False
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return False
            raise

    async def sign_out(self) -> None:
        """Record the sign-out time, then sign out (which cancels listeners and resets state)."""
        if not self.identity.is_signed_in:
            return
        await self.sync.record_sign_out()
        self.identity.sign_out()

    def _on_signed_out(self) -> None:
        self._cancel_sign_in()
        self.sync.stop()
        self.store.reset()
        logger.info("session_signed_out")

    def _cancel_sign_in(self) -> None:
        if self._sign_in_task is not None and not self._sign_in_task.done():
            self._sign_in_task.cancel()

    def close(self) -> None:
        """Stop reacting to identity changes and cancel listeners."""
        self._identity_subscription.cancel()
        self._cancel_sign_in()
        self.sync.stop()
