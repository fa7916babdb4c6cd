"""Wires the services together around one document store, local store and identity session."""

from dataclasses import dataclass

from ekicho.core.documents import DocumentStore
from ekicho.core.identity import IdentitySession
from ekicho.core.local_store import LocalStore
from ekicho.services.company_filter_service import CompanyFilterService
from ekicho.services.migration_service import MigrationService
from ekicho.services.session_service import SessionService
from ekicho.services.sync_service import SyncService
from ekicho.services.view_state_service import ViewStateService
from ekicho.state.store import StateStore


@dataclass
class EkichoApp:
    """Every long-lived service of one signed-in client."""

    identity: IdentitySession
    store: StateStore
    sync: SyncService
    migration: MigrationService
    session: SessionService
    companies: CompanyFilterService
    view_state: ViewStateService

    @classmethod
    def create(
        cls,
        documents: DocumentStore,
        local_store: LocalStore,
        identity: IdentitySession | None = None,
    ) -> "EkichoApp":
        """
        Build and connect the services.

        Must be called with the event loop running if identity changes are
        expected, since sign-in handling is scheduled on it.
        """
        identity = identity or IdentitySession()
        store = StateStore()
        sync = SyncService(documents, identity, store)
        migration = MigrationService(documents, local_store)
        companies = CompanyFilterService(store, local_store)
        companies.attach()
        return cls(
            identity=identity,
            store=store,
            sync=sync,
            migration=migration,
            session=SessionService(identity, sync, migration, store),
            companies=companies,
            view_state=ViewStateService(store),
        )

    def close(self) -> None:
        """Detach every listener and cancel the visit subscription."""
        self.session.close()
        self.companies.close()
        self.view_state.close()
