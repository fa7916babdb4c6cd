"""Cancellable subscription handles and synchronous listener registries."""

from collections.abc import Callable
from typing import Generic, TypeVar


T = TypeVar("T")


class Subscription:
    """
    Handle returned by every subscribe call.

    ``cancel()`` runs the teardown callback once; later calls are no-ops.
    """

    def __init__(self, teardown: Callable[[], None]) -> None:
        self._teardown: Callable[[], None] | None = teardown

    @property
    def active(self) -> bool:
        """Whether the subscription has not been cancelled yet."""
        return self._teardown is not None

    def cancel(self) -> None:
        """Tear the subscription down (idempotent)."""
        teardown, self._teardown = self._teardown, None
        if teardown is not None:
            teardown()


class ListenerRegistry(Generic[T]):
    """
    Ordered set of listeners notified synchronously with a value.

    Listeners registered or cancelled while a notification is running take
    effect from the next notification.
    """

    def __init__(self) -> None:
        self._listeners: dict[int, Callable[[T], None]] = {}
        self._next_id = 0

    def __len__(self) -> int:
        return len(self._listeners)

    def add(self, listener: Callable[[T], None]) -> Subscription:
        """
        Register a listener.

        Args:
            listener: Callable invoked with each notified value

        Returns:
            Subscription whose cancel() removes the listener
        """
        listener_id = self._next_id
        self._next_id += 1
        self._listeners[listener_id] = listener
        return Subscription(lambda: self._listeners.pop(listener_id, None))

    def notify(self, value: T) -> None:
        """Call every registered listener with ``value`` in registration order."""
        for listener in list(self._listeners.values()):
            listener(value)

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners.clear()
