"""
Push-based state broadcast.

An EventChannel pushes a value to its subscribers whenever it changes and
replays the last value to anyone subscribing late.
"""

import logging
from collections.abc import Callable
from typing import Generic, Optional, TypeVar

logger = logging.getLogger("branch-sync.events")

T = TypeVar("T")

_UNSET = object()


class EventChannel(Generic[T]):
    """
    Last-value channel with change detection.

    Usage:
        channel = EventChannel("grade")
        unsubscribe = channel.subscribe(lambda grade: print(grade))
        channel.publish("A")   # delivered
        channel.publish("A")   # equal to the last value, not delivered
        unsubscribe()
    """

    def __init__(self, name: str, initial: object = _UNSET):
        self.name = name
        self._value = initial
        self._subscribers: list[Callable[[T], None]] = []

    @property
    def has_value(self) -> bool:
        return self._value is not _UNSET

    @property
    def value(self) -> Optional[T]:
        return None if self._value is _UNSET else self._value  # type: ignore[return-value]

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register a callback. Returns a function that removes it."""
        self._subscribers.append(callback)
        if self.has_value:
            self._deliver(callback, self._value)  # type: ignore[arg-type]

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, value: T) -> bool:
        """Store and broadcast a value. Returns False if it did not change."""
        if self.has_value and self._value == value:
            return False
        self._value = value
        for callback in list(self._subscribers):
            self._deliver(callback, value)
        return True

    def _deliver(self, callback: Callable[[T], None], value: T) -> None:
        # One broken subscriber must not starve the others
        try:
            callback(value)
        except Exception as exc:
            logger.error("Subscriber of %s failed: %s", self.name, exc)

    def __len__(self) -> int:
        return len(self._subscribers)
