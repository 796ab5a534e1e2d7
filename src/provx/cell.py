"""Cells — the smallest observable unit.

A Cell holds one value. subscribe() calls the callback right away with the
current value and again after every set(), including sets that store an
identical value. A cell can be given a start notifier: it runs when the
first subscriber attaches and returns a stop function that runs when the
last one leaves. Providers hang their upstream wiring on that hook.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

from provx._scheduling import notify

T = TypeVar("T")

Subscriber = Callable[[T], None]
Unsubscriber = Callable[[], None]
StartNotifier = Callable[[], Unsubscriber]


class Cell(Generic[T]):
    """A single observable value with start/stop hooks."""

    __slots__ = ("_value", "_subscribers", "_start", "_stop")

    def __init__(self, value: T, start: StartNotifier | None = None) -> None:
        self._value = value
        self._subscribers: dict[object, Subscriber[T]] = {}
        self._start = start
        self._stop: Unsubscriber | None = None

    def get(self) -> T:
        """Snapshot read. Does not subscribe."""
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        if self._subscribers:
            notify(list(self._subscribers.values()), value)

    def update(self, fn: Callable[[T], T]) -> None:
        self.set(fn(self._value))

    def subscribe(self, callback: Subscriber[T]) -> Unsubscriber:
        """Register callback and call it with the current value.

        Returns a function that removes the subscription. Calling it more
        than once is harmless.
        """
        token = object()
        first = not self._subscribers
        self._subscribers[token] = callback
        if first and self._start is not None:
            self._stop = self._start()
        callback(self._value)

        def _unsubscribe() -> None:
            if self._subscribers.pop(token, None) is None:
                return
            if not self._subscribers and self._stop is not None:
                stop, self._stop = self._stop, None
                stop()

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def __repr__(self) -> str:
        return f"Cell({self._value!r})"
