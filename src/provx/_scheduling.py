"""Scheduling — deferred refreshes and ordered cell notification.

Two pieces of plumbing shared by every cell and provider:

- defer() pushes a callback onto the running loop's next turn. Providers use
  it so that several dirty triggers raised in the same synchronous run
  collapse into a single refresh, and so that a rebuild never starts from
  inside the notification that caused it.
- notify() delivers cell updates through one module-wide queue. A set()
  issued from inside a subscriber is appended and delivered after the
  current round, so every subscriber sees values in publish order.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable

# Deferred callbacks scheduled but not yet run.
_pending: int = 0

# Notifications awaiting delivery. Non-empty only while a round is running.
_queue: list[tuple[Callable[[Any], None], Any]] = []


def defer(callback: Callable[[], None]) -> None:
    """Run callback on the next turn of the running event loop."""
    global _pending
    loop = asyncio.get_running_loop()
    _pending += 1

    def _run() -> None:
        global _pending
        _pending -= 1
        callback()

    loop.call_soon(_run)


def get_pending_count() -> int:
    """Number of deferred callbacks waiting to run. Useful for testing."""
    return _pending


def notify(subscribers: Iterable[Callable[[Any], None]], value: Any) -> None:
    """Deliver value to subscribers, queueing behind any round in progress."""
    run_queue = not _queue
    _queue.extend((callback, value) for callback in subscribers)
    if not run_queue:
        return
    try:
        i = 0
        # The queue may grow while we drain it.
        while i < len(_queue):
            callback, queued = _queue[i]
            callback(queued)
            i += 1
    finally:
        _queue.clear()
