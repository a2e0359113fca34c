"""
Observable value holder: a current value plus a list of listeners notified
on every change.
"""

import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]


class Observable(Generic[T]):
    """Holds a value and notifies subscribers when it changes."""

    def __init__(self, value: T):
        self._value = value
        self._listeners: List[Listener] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T, force: bool = False):
        """Store ``value`` and notify listeners.

        Listeners are skipped when the value is unchanged unless ``force``
        is set (used for mutable snapshots that compare equal).
        """
        if not force and value == self._value:
            return
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                logger.warning(f"Observable listener failed: {e}")

    def subscribe(self, listener: Listener, emit_current: bool = False) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)
        if emit_current:
            listener(self._value)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
