"""
Small observer primitives shared by the negotiation core and its bridges.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Generic, TypeVar

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class _ObserverTable:
    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.RLock()
        self._counter = 0
        self._observers: Dict[int, Callable[..., None]] = {}

    def add(self, callback: Callable[..., None]) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        with self._lock:
            self._counter += 1
            token = self._counter
            self._observers[token] = callback
        return token

    def remove(self, token: int) -> None:
        with self._lock:
            self._observers.pop(token, None)

    def clear(self) -> None:
        with self._lock:
            self._observers.clear()

    def notify(self, *args: Any) -> None:
        with self._lock:
            observers = dict(self._observers)
        for token, callback in observers.items():
            try:
                callback(*args)
            except Exception:  # pragma: no cover - observer failures must not leak into the core
                LOG.exception("Observer %s of %s failed.", token, self.name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._observers)


class Observable(Generic[T]):
    """
    Holds a value and notifies subscribers whenever it changes.

    Subscribing delivers the current value immediately.
    """

    def __init__(self, initial: T, *, name: str = "observable") -> None:
        self._value = initial
        self._observers = _ObserverTable(name)

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T, *, force: bool = False) -> bool:
        if not force and value == self._value:
            return False
        self._value = value
        self._observers.notify(value)
        return True

    def subscribe(self, callback: Callable[[T], None]) -> int:
        token = self._observers.add(callback)
        try:
            callback(self._value)
        except Exception:  # pragma: no cover - same policy as notify()
            LOG.exception("Observer %s failed during initial value.", token)
        return token

    def unsubscribe(self, token: int) -> None:
        self._observers.remove(token)


class EventHook:
    """A stateless event: subscribers are called with whatever ``emit`` receives."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._observers = _ObserverTable(name)

    def subscribe(self, callback: Callable[..., None]) -> int:
        return self._observers.add(callback)

    def unsubscribe(self, token: int) -> None:
        self._observers.remove(token)

    def clear(self) -> None:
        self._observers.clear()

    def emit(self, *args: Any) -> None:
        self._observers.notify(*args)

    @property
    def subscriber_count(self) -> int:
        return len(self._observers)


__all__ = ["EventHook", "Observable"]
