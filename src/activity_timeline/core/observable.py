"""Observer primitives: change signals and replace-on-publish values."""

import itertools
import logging
import threading
from collections.abc import Callable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Signal:
    """
    Thread-safe change notification.

    Handlers run on the emitting thread. A failing handler is logged and does
    not prevent the remaining handlers from running.

    """

    def __init__(self) -> None:
        self._handlers: list[Callable[..., Any]] = []
        self._lock = threading.Lock()

    def connect(self, handler: Callable[..., Any]) -> None:
        with self._lock:
            if handler not in self._handlers:
                self._handlers.append(handler)

    def disconnect(self, handler: Callable[..., Any]) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def emit(self, *args: Any, **kwargs: Any) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(*args, **kwargs)
            except Exception as exc:
                logger.error("Signal handler %r failed: %s", handler, exc)

    @property
    def handler_count(self) -> int:
        with self._lock:
            return len(self._handlers)


class Subscribable(Generic[T]):
    """
    Value holder that notifies subscribers on every assignment.

    Assigning a value replaces the previous one and always notifies, even when
    the new value equals the old one. Subscribing to a holder that already has
    a value invokes the callback immediately with it.

    Parameters
    ----------
    initial_value : T | None
        Value before the first publish, None means "not available yet"

    """

    def __init__(self, initial_value: T | None = None) -> None:
        self._value = initial_value
        self._subscribers: dict[int, Callable[[T], None]] = {}
        self._keys = itertools.count()
        self._lock = threading.Lock()

    @property
    def value(self) -> T | None:
        with self._lock:
            return self._value

    @value.setter
    def value(self, new_value: T | None) -> None:
        with self._lock:
            self._value = new_value
            subscribers = list(self._subscribers.values())
        if new_value is None:
            return
        for callback in subscribers:
            try:
                callback(new_value)
            except Exception as exc:
                logger.error("Subscriber %r failed: %s", callback, exc)

    def subscribe(self, callback: Callable[[T], None]) -> int:
        """
        Register ``callback`` and return its subscription key.

        Parameters
        ----------
        callback : Callable[[T], None]
            Invoked with every published value

        Returns
        -------
        int
            Key for :meth:`unsubscribe`

        """
        with self._lock:
            key = next(self._keys)
            self._subscribers[key] = callback
            current = self._value
        if current is not None:
            callback(current)
        return key

    def unsubscribe(self, key: int) -> None:
        with self._lock:
            self._subscribers.pop(key, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)
