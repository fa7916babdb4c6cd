"""Reactive state container and derived view state."""

from ekicho.state.derived import DerivedViewState, ProgressInfo, compute_view_state, view_state_from
from ekicho.state.store import StateStore, SyncState

__all__ = [
    "DerivedViewState",
    "ProgressInfo",
    "StateStore",
    "SyncState",
    "compute_view_state",
    "view_state_from",
]
