from __future__ import annotations

import hangar
import pytest
import sqlite3
import threading
import time

from hangar.context.session import SessionProvider
from hangar.context.session import is_serialization_failure
from hangar.db.scheduler import Scheduler
from hangar.modules import errors
from hangar.modules.locks import LockManager
from mock import patch
from psycopg2.extensions import TransactionRollbackError
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm.exc import StaleDataError
from threading import Thread
from uuid import uuid4 as new_uuid

from conftest import add_lab, at, aware, new_request


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from hangar.db.models import Allocation


class SessionId(Thread):
    def __init__(self, dsn: str) -> None:
        Thread.__init__(self)
        self.session_id: int | None = None
        self.dsn = dsn

    def run(self) -> None:
        context = hangar.registry.register_context(new_uuid().hex)
        context.set_setting('dsn', self.dsn)
        scheduler = Scheduler(context, 'UTC')
        self.session_id = id(scheduler.session)

        # make sure the thread runs long enough for test_sessionstore to
        # have both threads running at the same time, since the docs states:
        # "Two objects with non-overlapping lifetimes may have the same
        # id() value."
        time.sleep(0.1)

        scheduler.session_provider.stop_service()


class ExceptionThread(Thread):
    def __init__(self, call: Callable[[], object]) -> None:
        Thread.__init__(self)
        self.call = call
        self.exception: Exception | None = None

    def run(self) -> None:
        try:
            self.call()
        except Exception as e:
            self.exception = e


def test_stop_unused_session(dsn: str) -> None:
    provider = SessionProvider(dsn)
    provider.stop_service()  # should not throw any exceptions


def test_sessionstore(dsn: str) -> None:
    t1 = SessionId(dsn)
    t2 = SessionId(dsn)

    t1.start()
    t2.start()

    t1.join()
    t2.join()

    assert t1.session_id is not None
    assert t2.session_id is not None
    assert t1.session_id != t2.session_id


def test_serialization_failures() -> None:
    assert is_serialization_failure(StaleDataError())
    assert is_serialization_failure(
        DBAPIError('UPDATE', {}, TransactionRollbackError())
    )
    locked = sqlite3.OperationalError('database is locked')
    assert is_serialization_failure(DBAPIError('UPDATE', {}, locked))

    missing = sqlite3.OperationalError('no such table')
    assert not is_serialization_failure(DBAPIError('UPDATE', {}, missing))
    assert not is_serialization_failure(ValueError())


def test_concurrent_approvals(scheduler: Scheduler) -> None:
    lab = add_lab(scheduler)

    first = new_request(scheduler, (lab.id, at(10), at(12))).id
    second = new_request(scheduler, (lab.id, at(11), at(13))).id

    t1 = ExceptionThread(lambda: scheduler.approve_request(first))
    t2 = ExceptionThread(lambda: scheduler.approve_request(second))

    t1.start()
    t2.start()

    t1.join()
    t2.join()

    # forget what this thread has seen before the approvals
    scheduler.commit()

    exceptions = [e for e in (t1.exception, t2.exception) if e is not None]

    # exactly one of the approvals wins
    assert len(exceptions) == 1
    assert isinstance(exceptions[0], errors.CapacityExceeded)

    statuses = {
        scheduler.request_by_id(first).status,
        scheduler.request_by_id(second).status
    }
    assert statuses == {'approved', 'submitted'}

    allocations = scheduler.ledger.query(lab.id, aware(0), aware(23))
    assert len(allocations) == 1


def test_cancel_while_request_is_held(scheduler: Scheduler) -> None:
    lab = add_lab(scheduler)
    request = new_request(scheduler, (lab.id, at(10), at(12)))

    with scheduler.locks.hold_request(request.id):
        with pytest.raises(errors.ConcurrencyConflict):
            scheduler.cancel_request(request.id)

        with pytest.raises(errors.ConcurrencyConflict):
            scheduler.delete_request(request.id)

    assert scheduler.cancel_request(request.id).status == 'cancelled'


def test_cancel_during_approval(scheduler: Scheduler) -> None:
    lab = add_lab(scheduler)
    request_id = new_request(scheduler, (lab.id, at(10), at(12))).id

    committing = threading.Event()
    proceed = threading.Event()
    commit = scheduler.ledger.commit

    def slow_commit(allocations: list[Allocation]) -> list[Allocation]:
        committing.set()
        proceed.wait(5)
        return commit(allocations)

    with patch.object(scheduler.ledger, 'commit', slow_commit):
        approval = ExceptionThread(
            lambda: scheduler.approve_request(request_id)
        )
        approval.start()

        assert committing.wait(5)

        # the cancellation doesn't wait for the approval
        with pytest.raises(errors.ConcurrencyConflict):
            scheduler.cancel_request(request_id)

        proceed.set()
        approval.join()

    scheduler.commit()

    assert approval.exception is None
    assert scheduler.request_by_id(request_id).status == 'approved'

    # once the approval is through, the request may be cancelled
    scheduler.cancel_request(request_id)
    assert scheduler.check_availability(lab.id, at(10), at(12)).available


def test_lock_timeout() -> None:
    locks = LockManager(timeout=0.1)

    with locks.hold_resources([2, 1]):
        assert locks.resource_locks[1].locked()
        assert locks.resource_locks[2].locked()

        with pytest.raises(errors.ConcurrencyConflict):
            with locks.hold_resources([2]):
                pass

    # locks are released after a failure as well
    with locks.hold_resources([1, 2]):
        pass

    assert not locks.is_request_locked(1)

    with locks.hold_request(1):
        assert locks.is_request_locked(1)

        with pytest.raises(errors.ConcurrencyConflict):
            with locks.hold_request(1, blocking=False):
                pass

    assert not locks.is_request_locked(1)
