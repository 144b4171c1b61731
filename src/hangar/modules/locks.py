from __future__ import annotations

import logging
import threading

from contextlib import contextmanager

from hangar.modules import errors


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Iterable
    from collections.abc import Iterator


log = logging.getLogger('hangar')


class LockManager:
    """ Serializes capacity-affecting operations inside one process.

    There's one lock per resource and one per request. Resource locks are
    always acquired in ascending id order, so two approvals touching an
    overlapping set of resources can't deadlock. Approvals touching disjoint
    resources never wait on each other.

    Across processes the same guarantee is given by the database (row locks
    on the resources and SERIALIZABLE transactions), see
    :meth:`hangar.db.ledger.BookingLedger.hold`.

    """

    def __init__(self, timeout: float = 10):
        self.timeout = timeout
        self.thread_lock = threading.Lock()
        self.resource_locks: dict[int, threading.Lock] = {}
        self.request_locks: dict[int, threading.Lock] = {}

    def _lock(
        self,
        locks: dict[int, threading.Lock],
        key: int
    ) -> threading.Lock:
        with self.thread_lock:
            if key not in locks:
                locks[key] = threading.Lock()
            return locks[key]

    @contextmanager
    def hold_resources(self, resource_ids: Iterable[int]) -> Iterator[None]:
        acquired: list[threading.Lock] = []

        try:
            for resource_id in sorted(set(resource_ids)):
                lock = self._lock(self.resource_locks, resource_id)

                if not lock.acquire(timeout=self.timeout):
                    log.warning(f'Timeout waiting for resource {resource_id}')
                    raise errors.ConcurrencyConflict(
                        f'Resource {resource_id} is locked'
                    )

                acquired.append(lock)

            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    @contextmanager
    def hold_request(
        self,
        request_id: int,
        blocking: bool = True
    ) -> Iterator[None]:
        """ Holds the lock of a single request. If blocking is False and the
        lock is taken, a ConcurrencyConflict is raised straight away.

        """
        lock = self._lock(self.request_locks, request_id)

        if blocking:
            acquired = lock.acquire(timeout=self.timeout)
        else:
            acquired = lock.acquire(blocking=False)

        if not acquired:
            raise errors.ConcurrencyConflict(
                f'Request {request_id} is being processed, try again later'
            )

        try:
            yield
        finally:
            lock.release()

    def is_request_locked(self, request_id: int) -> bool:
        return self._lock(self.request_locks, request_id).locked()
