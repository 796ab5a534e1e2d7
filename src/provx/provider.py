"""Providers — cached async values that rebuild when their dependencies change.

A Provider declares the providers it depends on when it is constructed and
computes its value with an async build(). The value is cached in a Cell.
When a dependency publishes a settled value or error, the provider is
marked dirty and a rebuild is scheduled for the loop's next turn.

A dependency can change while a rebuild is still in flight. Instead of
publishing a value computed from stale inputs, the build is told to abort:
it checks the flag before reading each dependency, after reading them all,
and after build() returns, and starts over whenever it is set. Consumers
waiting through ready() only ever see values published while neither the
provider nor any of its ancestors is dirty.

Instances are shared through the registry: use ``SomeProvider.get(*args)``
(or a function from ``SomeProvider.factory()``) rather than calling the
class directly.

Usage:
    class Settings(Provider[dict]):
        async def build(self) -> dict:
            return await load_settings()

    class Greeting(Provider[str]):
        def __init__(self, user: str) -> None:
            super().__init__(None, Settings.get())
            self.user = user

        async def build(self, settings: dict) -> str:
            return f"{settings['greeting']}, {self.user}"

    text = await Greeting.get("ada")
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, ClassVar, Generic, Protocol, TypeVar

from provx import _registry
from provx._scheduling import defer
from provx.cell import Cell, Subscriber, Unsubscriber

logger = logging.getLogger("provx.provider")

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)
P = TypeVar("P", bound="Provider[Any]")


class Buildable(Protocol[T_co]):
    """Anything that can compute a value from its resolved dependencies."""

    async def build(self, *deps: Any) -> T_co: ...


class Provider(ABC, Generic[T]):
    """A node in the dependency graph caching one async value."""

    # Overrides the registry name derived from module and class.
    provider_name: ClassVar[str | None] = None

    def __init__(self, initial: T | None = None, *depends_on: Provider[Any]) -> None:
        self.instance_key: str = ""
        self.is_loading: Cell[bool] = Cell(True)
        self.error: Cell[BaseException | None] = Cell(None)
        self._initial = initial
        self._depends_on: tuple[Provider[Any], ...] = depends_on
        self._value: Cell[T | None] = Cell(initial, start=self._start)
        self._has_value = False
        self._dirty = False
        self._abort = False
        self._build: asyncio.Future[T] | None = None
        self._started = False
        self._upstream: list[Unsubscriber] = []

    # --- Factory ---

    @classmethod
    def get(cls: type[P], *args: Any, **kwargs: Any) -> P:
        """Return the shared instance for these arguments."""
        return _registry.get_instance(cls, args, kwargs)

    @classmethod
    def factory(cls: type[P]) -> Callable[..., P]:
        """A plain function that behaves like ``cls.get``.

        Usage:
            settings = Settings.factory()
            assert settings() is settings()
        """

        def create(*args: Any, **kwargs: Any) -> P:
            return _registry.get_instance(cls, args, kwargs)

        create.__name__ = cls.__name__
        create.__qualname__ = cls.__qualname__
        create.__doc__ = cls.__doc__
        return create

    # --- Build step ---

    @abstractmethod
    async def build(self, *deps: Any) -> T:
        """Compute the value from the dependency values, in declared order."""

    # --- Read-only state ---

    @property
    def depends_on(self) -> tuple[Provider[Any], ...]:
        return self._depends_on

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def building(self) -> bool:
        return self._build is not None and not self._build.done()

    @property
    def has_value(self) -> bool:
        """True when the value cell holds a computed value, not the sentinel."""
        return self._has_value

    @property
    def settled(self) -> bool:
        """Neither this provider nor any transitive dependency is dirty."""
        seen: set[int] = {id(self)}
        stack: list[Provider[Any]] = [self]
        while stack:
            provider = stack.pop()
            if provider._dirty:
                return False
            for dep in provider._depends_on:
                # Shared ancestors (diamonds) are visited once.
                if id(dep) not in seen:
                    seen.add(id(dep))
                    stack.append(dep)
        return True

    def get_value(self) -> T | None:
        """Snapshot of the value cell. May be stale or the sentinel."""
        return self._value.get()

    # --- Subscription ---

    def subscribe(self, callback: Subscriber[T | None]) -> Unsubscriber:
        logger.debug("subscribe to %s", self.instance_key)
        return self._value.subscribe(callback)

    def _start(self) -> Unsubscriber:
        logger.debug("first subscriber on %s (initial=%s)", self.instance_key, not self._started)
        if not self._started and not self._depends_on:
            self.mark_dirty()
        self._started = True
        for dep in self._depends_on:
            self._upstream.append(dep.subscribe(self._upstream_listener(dep, "updated")))
            self._upstream.append(dep.error.subscribe(self._upstream_listener(dep, "failed")))
        return self._stop

    def _stop(self) -> None:
        logger.debug("last subscriber left %s", self.instance_key)
        upstream, self._upstream = self._upstream, []
        for unsubscribe in upstream:
            unsubscribe()

    def _upstream_listener(self, dep: Provider[Any], what: str) -> Subscriber[Any]:
        def _listener(_value: Any) -> None:
            # Only settled transitions count; a dirty dependency will
            # publish again once it has rebuilt.
            if dep.dirty:
                return
            logger.debug("%s %s, so %s is dirty", dep.instance_key, what, self.instance_key)
            self.mark_dirty()

        return _listener

    # --- Invalidation ---

    def mark_dirty(self) -> None:
        """Flag the cached value as stale and arrange for a rebuild.

        Several calls in the same synchronous run schedule one refresh.
        Calling it while a build is in flight makes that build start over.
        """
        if not self._dirty:
            self.is_loading.set(True)
            self._dirty = True
            self._abort = False
            self._build = None
            defer(self._refresh_if_dirty)
        elif self._build is not None:
            self._abort = True

    def _refresh_if_dirty(self) -> None:
        if self._dirty:
            self.refresh()

    def refresh(self) -> asyncio.Future[T]:
        """Start a build now and return its task.

        If a build is already running, it is told to start over and its
        task is returned instead; there is never more than one.
        """
        if self.building:
            self._abort = True
            return self._build  # type: ignore[return-value]
        self._dirty = True
        self.is_loading.set(True)
        self.error.set(None)
        task = asyncio.get_running_loop().create_task(
            self._build_cycle(), name=f"provx build {self.instance_key}"
        )
        task.add_done_callback(self._build_finished)
        self._build = task
        return task

    async def _build_cycle(self) -> T:
        try:
            while True:
                self._abort = False
                logger.debug("refreshing %s", self.instance_key)
                values: list[Any] = []
                for dep in self._depends_on:
                    if self._abort:
                        break
                    values.append(await dep._next_value())
                if self._abort:
                    logger.debug("%s invalidated while reading dependencies, restarting", self.instance_key)
                    continue
                value = await self.build(*values)
                if not self._abort:
                    break
                logger.debug("%s invalidated while building, discarding result", self.instance_key)
            self._dirty = False
            self._publish(value)
            return value
        except asyncio.CancelledError:
            # The cached value may predate the inputs that triggered this
            # build, so it is dropped. A later mark_dirty() starts afresh.
            logger.debug("refresh of %s cancelled, dropping cached value", self.instance_key)
            if self._build is asyncio.current_task():
                self._build = None
            self._dirty = False
            self._has_value = False
            self._value.set(self._initial)
            raise
        except Exception as exc:
            logger.debug("failed to refresh %s: %r", self.instance_key, exc)
            self._dirty = False
            self._publish_error(exc)
            raise
        finally:
            self.is_loading.set(False)

    def _build_finished(self, task: asyncio.Future[T]) -> None:
        # The failure already lives on the error cell; retrieving it here
        # keeps asyncio from reporting it as never retrieved.
        if not task.cancelled() and task.exception() is not None:
            logger.debug("build task for %s ended with %r", self.instance_key, task.exception())

    def _next_value(self) -> Awaitable[T]:
        """What a dependent build awaits to read this provider."""
        if self._build is not None:
            logger.debug("waiting on in-flight build of %s", self.instance_key)
            # Shared with other dependents; one of them being cancelled
            # must not cancel the build itself.
            return asyncio.shield(self._build)
        return self.ready()

    def _publish(self, value: T) -> None:
        self._has_value = True
        self._value.set(value)

    def _publish_error(self, exc: BaseException) -> None:
        self.error.set(exc)
        self._has_value = False
        self._value.set(self._initial)

    # --- Value-ready contract ---

    def ready(self) -> asyncio.Future[T]:
        """Future for the next settled value, or the next settled error.

        If the provider is settled and already holds a value, the future is
        resolved before this returns. Cancelling the future drops its
        subscriptions.
        """
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        subscriptions: list[Unsubscriber] = []

        def _release(_future: asyncio.Future[T] | None = None) -> None:
            while subscriptions:
                subscriptions.pop()()

        def _on_value(value: T | None) -> None:
            if future.done() or not self._has_value or not self.settled:
                return
            logger.debug("resolving ready() for %s", self.instance_key)
            future.set_result(value)  # type: ignore[arg-type]
            _release()

        def _on_error(exc: BaseException | None) -> None:
            if future.done() or exc is None or not self.settled:
                return
            logger.debug("rejecting ready() for %s", self.instance_key)
            future.set_exception(exc)
            _release()

        subscriptions.append(self.subscribe(_on_value))
        if not future.done():
            subscriptions.append(self.error.subscribe(_on_error))
        if future.done():
            _release()
        else:
            future.add_done_callback(_release)
        return future

    def __await__(self):
        return self.ready().__await__()

    # --- Manual mutation ---

    async def set_state(self, new_state: Awaitable[T]) -> T:
        """Publish the outcome of new_state as if a build had produced it.

        The awaitable becomes the in-flight build, so dependents reading
        this provider meanwhile wait on it. A failure is published on the
        error cell and then re-raised.

        A build already in flight is allowed to finish first, so the state
        pushed here is the last thing published.
        """
        while self.building:
            # Its outcome is already on the cells; only completion matters.
            await asyncio.wait({self._build})
        self._build = build = asyncio.ensure_future(new_state)
        try:
            value = await build
        except Exception as exc:
            self._dirty = False
            self._publish_error(exc)
            raise
        finally:
            self.is_loading.set(False)
        self._dirty = False
        self._publish(value)
        return value

    def invalidate_self(self) -> asyncio.Future[T]:
        """Throw away the cached value and rebuild.

        Returns the ready() future for the value the rebuild settles on.
        """
        logger.debug("invalidating %s", self.instance_key)
        if self.building:
            # Keep the handle: dependents should wait for the restarted build.
            self._abort = True
        else:
            self._build = None
        self._has_value = False
        self._value.set(self._initial)
        self.error.set(None)
        self.is_loading.set(True)
        self.mark_dirty()
        return self.ready()

    def __repr__(self) -> str:
        if self._dirty:
            state = "building" if self.building else "dirty"
        elif self.error.get() is not None:
            state = f"error={self.error.get()!r}"
        elif self._has_value:
            state = f"cached={self._value.get()!r}"
        else:
            state = "empty"
        return f"{type(self).__name__}({self.instance_key or '?'}, {state})"
