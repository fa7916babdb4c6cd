"""Keeps the derived view state current as the synced collections change."""

from collections.abc import Callable

from ekicho.core.subscriptions import ListenerRegistry, Subscription
from ekicho.state.derived import DerivedViewState, view_state_from
from ekicho.state.store import StateStore, SyncState


class ViewStateService:
    """
    Recompute DerivedViewState on every state transition.

    Listeners are notified synchronously after each recomputation.
    """

    def __init__(self, store: StateStore) -> None:
        self.store = store
        self._current = view_state_from(store.state)
        self._listeners: ListenerRegistry[DerivedViewState] = ListenerRegistry()
        self._store_subscription = store.subscribe(self._on_state)

    @property
    def current(self) -> DerivedViewState:
        return self._current

    def _on_state(self, state: SyncState) -> None:
        self._current = view_state_from(state)
        self._listeners.notify(self._current)

    def subscribe(self, listener: Callable[[DerivedViewState], None], *, emit_current: bool = False) -> Subscription:
        """Register a listener receiving each recomputed view state."""
        subscription = self._listeners.add(listener)
        if emit_current:
            listener(self._current)
        return subscription

    def close(self) -> None:
        """Stop following the state store and drop all listeners."""
        self._store_subscription.cancel()
        self._listeners.clear()
