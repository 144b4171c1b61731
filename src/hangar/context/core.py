from __future__ import annotations

import enum
import hangar
import threading
from contextlib import contextmanager
from functools import cached_property

from hangar.modules import errors


from typing import Any
from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from collections.abc import Iterator
    from datetime import datetime
    from sqlalchemy.orm import Session
    from typing_extensions import TypeAlias

    from hangar.context.registry import Registry
    from hangar.context.session import SessionProvider
    from hangar.modules.locks import LockManager


class _Marker(enum.Enum):
    missing = enum.auto()
    required = enum.auto()


missing_t: TypeAlias = Literal[_Marker.missing]  # noqa: PYI042
required_t: TypeAlias = Literal[_Marker.required]  # noqa: PYI042
missing: missing_t = _Marker.missing
required: required_t = _Marker.required


class StoppableService:
    """ Services inheriting from this class have their stop_service method
    called when the service is discarded.

    Note that this only happens when a service is replaced with a new one
    and not when hangar is stopped (i.e. this is *not* a deconstructor).

    """

    def stop_service(self) -> None:
        pass


class ContextServicesMixin:
    """ Provides access methods to the context's services. Expects
    the class that uses the mixin to provide self.context.

    The results are cached for performance.

    """

    context: Context

    @cached_property
    def clock(self) -> Callable[[], datetime]:
        return self.context.get_service('clock')  # type: ignore[no-any-return]

    @cached_property
    def next_number(self) -> Callable[[str], str]:
        return self.context.get_service('sequence')  # type: ignore[no-any-return]

    @cached_property
    def locks(self) -> LockManager:
        return self.context.get_service('locks')  # type: ignore[no-any-return]

    def clear_cache(self) -> None:
        """ Clears the cache of the mixin. """

        for name in ('clock', 'next_number', 'locks'):
            try:
                delattr(self, name)
            except AttributeError:
                pass

    def setting(self, name: str) -> Any:
        return self.context.get_setting(name)

    def now(self) -> datetime:
        """ Returns the current time in UTC as told by the clock service. """
        return self.clock()

    @property
    def session_provider(self) -> SessionProvider:
        return self.context.get_service('session_provider')  # type: ignore[no-any-return]

    @property
    def session(self) -> Session:
        """ Returns the current session. """
        return self.session_provider.session()  # type: ignore[no-any-return]

    def close(self) -> None:
        """ Closes the current session. """
        self.session.close()

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


class Context:
    """ Used throughout hangar, the context holds settings like the database
    connection string and services like the clock or the sequence generator
    that should be used.

    Contexts allow consumers of hangar to override these settings / services
    as they wish. It also makes sure that multiple consumers can co-exist in
    a single process, as each consumer must operate on it's own context.

    hangar holds all contexts in hangar.registry and provides a master_context.
    When a consumer registers its own context, all lookups happen on the custom
    context. If that context can provide a service or a setting, it is used.

    If the custom context can't provide a service or a setting, the
    master_context is used instead. In other words, the custom context
    inherits from the master context.

    Note that contexts are not meant to be changed often. Classes talking to
    the database usually cache data from the context freely. After changing
    the context you should get a fresh
    :class:`~hangar.db.scheduler.Scheduler` instance or call
    :meth:`~.ContextServicesMixin.clear_cache`.

    A context may be registered as follows::

        from hangar import registry
        my_context = registry.register_context('my_app')

    See also :class:`~hangar.context.registry.Registry`

    """

    def __init__(
        self,
        name: str,
        registry: Registry | None = None,
        parent: Context | None = None,
        locked: bool = False
    ):
        self.name = name
        self.registry = registry or hangar.registry
        self.values: dict[str, Any] = {}
        self.parent = parent
        self.locked = locked
        self.thread_lock = threading.RLock()

    def __repr__(self) -> str:
        return f"<Hangar Context(name='{self.name}')>"

    @contextmanager
    def as_current_context(self) -> Iterator[None]:
        with self.registry.context(self.name):
            yield

    def switch_to(self) -> None:
        self.registry.switch_context(self.name)

    def lock(self) -> None:
        with self.thread_lock:
            self.locked = True

    def unlock(self) -> None:
        with self.thread_lock:
            self.locked = False

    def get(self, key: str) -> Any | missing_t:
        if key in self.values:
            return self.values[key]
        elif self.parent:
            return self.parent.get(key)
        else:
            return missing

    def set(self, key: str, value: Any) -> None:
        if self.locked:
            raise errors.ContextIsLocked

        with self.thread_lock:

            # If a value already exists it could be a stoppable service.
            # Stoppable services are called before they are stopped so they
            # can clean up after themselves without having to wait for the GC.
            if isinstance(self.values.get(key), StoppableService):
                self.values[key].stop_service()

            self.values[key] = value

    def get_setting(self, name: str) -> Any:
        return self.get(f'settings.{name}')

    def set_setting(self, name: str, value: Any) -> None:
        with self.thread_lock:
            self.set(f'settings.{name}', value)

    def get_service(self, name: str) -> Any:
        service_id = f'service/{name}'
        service = self.get(service_id)

        if service is missing:
            raise errors.UnknownService(service_id)

        cache_id = f'service/{name}/cache'
        cache = self.get(cache_id)

        # no cache
        if cache is missing:
            return service(self)

        # the cache lives on the context asking for the service, so a
        # child context never shares a cached service with its parent
        with self.thread_lock:
            cached = self.values.get(cache_id, required)
            if cached is required:
                cached = self.values[cache_id] = service(self)

            return cached

    def set_service(
        self,
        name: str,
        factory: Callable[..., Any],
        cache: bool = False
    ) -> None:
        with self.thread_lock:
            service_id = f'service/{name}'
            self.set(service_id, factory)

            cache_id = f'service/{name}/cache'
            existing = self.values.pop(cache_id, None)
            if isinstance(existing, StoppableService):
                existing.stop_service()

            if cache:
                self.set(cache_id, required)
