"""Persisted company filter for the line list."""

import asyncio

import structlog

from ekicho.core.local_store import SELECTED_COMPANIES_KEY, LocalStore
from ekicho.core.subscriptions import Subscription
from ekicho.state.derived import all_companies
from ekicho.state.store import StateStore, SyncState

logger = structlog.get_logger(__name__)


class CompanyFilterService:
    """
    Selected companies, stored in the local store under ``selectedCompanies``.

    The selection lives in ``SyncState.selected_companies``; it stays None
    until lines have been loaded and the saved selection has been read.
    """

    def __init__(self, store: StateStore, local_store: LocalStore) -> None:
        self.store = store
        self.local_store = local_store
        self._store_subscription: Subscription | None = None
        self._pending_load = False

    @property
    def selected_companies(self) -> frozenset[str] | None:
        return self.store.state.selected_companies

    @property
    def all_companies(self) -> list[str]:
        return all_companies(self.store.state.lines)

    def attach(self) -> Subscription:
        """
        Load the saved selection as soon as lines first become available.

        Returns:
            Subscription that stops watching for lines
        """
        if self._store_subscription is None or not self._store_subscription.active:
            self._store_subscription = self.store.subscribe(self._on_state)
        return self._store_subscription

    def _on_state(self, state: SyncState) -> None:
        if state.selected_companies is not None or not state.lines or self._pending_load:
            return
        self._pending_load = True

        # State listeners are synchronous; the load needs the local store
        task = asyncio.get_running_loop().create_task(self.load_selected_companies())
        task.add_done_callback(self._on_load_done)

    def _on_load_done(self, task: "asyncio.Task[frozenset[str] | None]") -> None:
        self._pending_load = False
        if not task.cancelled() and (error := task.exception()) is not None:
            logger.error("selected_companies_load_failed", error=str(error))
        # Lines that arrived while the load was running
        if self._store_subscription is not None and self._store_subscription.active:
            self._on_state(self.store.state)

    async def load_selected_companies(self) -> frozenset[str] | None:
        """
        Restore the saved selection, restricted to companies that still exist.

        Falls back to every company when nothing valid was saved. Does nothing
        while no lines are loaded, and discards the result if the lines change
        before the saved selection has been read.

        Returns:
            The selection now in state, or None if nothing was selected
        """
        companies = self.all_companies
        if not companies:
            return None

        saved = await self.local_store.get_string_list(SELECTED_COMPANIES_KEY)
        if self.all_companies != companies:
            # Lines were reset or replaced while the saved selection was read
            logger.debug("selected_companies_load_discarded")
            return None
        valid = set(saved or []) & set(companies)
        selected = frozenset(valid) if valid else frozenset(companies)

        await self._save(selected)
        logger.info("selected_companies_loaded", selected_count=len(selected), company_count=len(companies))
        return selected

    async def toggle_company(self, company: str) -> frozenset[str]:
        """Select or deselect one company and persist the result."""
        current = self.selected_companies or frozenset()
        selected = current - {company} if company in current else current | {company}
        await self._save(selected)
        logger.debug("company_toggled", company=company, selected=company in selected)
        return selected

    async def toggle_all_companies(self) -> frozenset[str]:
        """Deselect everything if all companies are selected, otherwise select all."""
        companies = frozenset(self.all_companies)
        current = self.selected_companies or frozenset()
        selected = frozenset() if current == companies else companies
        await self._save(selected)
        return selected

    async def clear_saved_preferences(self) -> None:
        """Forget the saved selection; the in-memory selection is left as is."""
        await self.local_store.remove(SELECTED_COMPANIES_KEY)
        logger.info("selected_companies_cleared")

    async def _save(self, selected: frozenset[str]) -> None:
        await self.local_store.set_string_list(SELECTED_COMPANIES_KEY, sorted(selected))
        self.store.update(selected_companies=selected)

    def close(self) -> None:
        if self._store_subscription is not None:
            self._store_subscription.cancel()
            self._store_subscription = None
