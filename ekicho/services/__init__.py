"""Services: sync, migration, company filter, view state and session coordination."""

from ekicho.services.company_filter_service import CompanyFilterService
from ekicho.services.migration_service import MigrationResult, MigrationService, MigrationState
from ekicho.services.session_service import SessionService
from ekicho.services.sync_service import SyncService
from ekicho.services.view_state_service import ViewStateService

__all__ = [
    "CompanyFilterService",
    "MigrationResult",
    "MigrationService",
    "MigrationState",
    "SessionService",
    "SyncService",
    "ViewStateService",
]
