"""Textual integration for provx. Opt-in — requires textual.

Widgets usually want a provider's settled values, not every intermediate
publish. bind() filters out the sentinel and anything published while the
provider or one of its ancestors is still dirty, skips delivery while the
app is paused or not running, and ignores NoMatches raised by widget
queries against a DOM that is being rebuilt.
"""

from __future__ import annotations

import threading
from collections import Counter
from contextlib import contextmanager
from typing import Any, Callable

from textual.css.query import NoMatches

from provx.cell import Unsubscriber
from provx.provider import Provider

# id(app) -> nesting depth of pause() blocks. Owned by this module so the
# app object itself is never mutated.
_pause_depth: Counter[int] = Counter()


@contextmanager
def pause(app):
    """Hold back bound deliveries while widgets are being swapped out.

    Nested pauses on the same app are fine; delivery resumes when the
    outermost block exits.
    """
    key = id(app)
    _pause_depth[key] += 1
    try:
        yield
    finally:
        _pause_depth[key] -= 1
        if _pause_depth[key] <= 0:
            del _pause_depth[key]


def is_safe(app) -> bool:
    return app.is_running and _pause_depth[id(app)] == 0


def _dispatcher(app) -> Callable[[Callable[[Any], None], Any], None]:
    owner = threading.get_ident()

    def _call(fn: Callable[[Any], None], arg: Any) -> None:
        try:
            fn(arg)
        except NoMatches:
            pass

    def _dispatch(fn: Callable[[Any], None], arg: Any) -> None:
        if not is_safe(app):
            return
        if threading.get_ident() != owner:
            app.call_from_thread(_call, fn, arg)
        else:
            _call(fn, arg)

    return _dispatch


def bind(
    app,
    provider: Provider[Any],
    on_value: Callable[[Any], None],
    *,
    on_error: Callable[[BaseException], None] | None = None,
) -> Unsubscriber:
    """Feed a provider's settled values (and errors) to widget code.

    Keeps the provider subscribed, and therefore warm, until the returned
    function is called.
    """
    dispatch = _dispatcher(app)

    def _value(value: Any) -> None:
        if provider.has_value and provider.settled:
            dispatch(on_value, value)

    def _error(exc: BaseException | None) -> None:
        if on_error is not None and exc is not None and provider.settled:
            dispatch(on_error, exc)

    subscriptions = [provider.subscribe(_value), provider.error.subscribe(_error)]

    def _unbind() -> None:
        while subscriptions:
            subscriptions.pop()()

    return _unbind


def bind_loading(app, provider: Provider[Any], fn: Callable[[bool], None]) -> Unsubscriber:
    """Mirror a provider's loading flag into a widget (spinners, disabled buttons)."""
    dispatch = _dispatcher(app)
    return provider.is_loading.subscribe(lambda loading: dispatch(fn, loading))
