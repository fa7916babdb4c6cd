"""
Single-entry-point state container for the synced collections.

Every mutation goes through ``StateStore.update``, which swaps in a new
immutable ``SyncState`` and then notifies subscribers synchronously. Callers
must only update from the event loop thread.
"""

import dataclasses
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ekicho.core.subscriptions import ListenerRegistry, Subscription
from ekicho.models import Line, Station, StationVisit


@dataclass(frozen=True)
class SyncState:
    """Snapshot of everything loaded from the cloud plus UI-facing status."""

    lines: list[Line] = field(default_factory=list)
    stations: Mapping[str, Station] = field(default_factory=dict)
    visits: Mapping[str, StationVisit] = field(default_factory=dict)  # keyed by station id
    selected_companies: frozenset[str] | None = None  # None until the filter has been loaded
    is_loading: bool = False
    error: str | None = None

    @property
    def visited_station_ids(self) -> frozenset[str]:
        return frozenset(self.visits)


_STATE_FIELDS = frozenset(f.name for f in dataclasses.fields(SyncState))


class StateStore:
    """Holds the current SyncState and the listeners interested in it."""

    def __init__(self, initial: SyncState | None = None) -> None:
        self._state = initial or SyncState()
        self._listeners: ListenerRegistry[SyncState] = ListenerRegistry()

    @property
    def state(self) -> SyncState:
        return self._state

    def update(self, **changes: Any) -> SyncState:  # noqa: ANN401
        """
        Replace the given fields and notify subscribers.

        Args:
            **changes: SyncState field values to replace

        Returns:
            The new state

        Raises:
            ValueError: If a change names a field SyncState does not have
        """
        if unknown := set(changes) - _STATE_FIELDS:
            msg = f"Unknown state field(s): {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        self._state = dataclasses.replace(self._state, **changes)
        self._listeners.notify(self._state)
        return self._state

    def reset(self) -> SyncState:
        """Return to the empty initial state (used on sign-out)."""
        self._state = SyncState()
        self._listeners.notify(self._state)
        return self._state

    def subscribe(self, listener: Callable[[SyncState], None], *, emit_current: bool = False) -> Subscription:
        """
        Register a listener called after every state transition.

        Args:
            listener: Callable receiving the new state
            emit_current: Also call the listener immediately with the current state
        """
        subscription = self._listeners.add(listener)
        if emit_current:
            listener(self._state)
        return subscription
