from __future__ import annotations

import pytest

from hangar.db.models import Allocation
from hangar.db.models.allocation import CONFIRMED, HELD, RELEASED
from hangar.modules import errors

from conftest import add_component, add_lab, aware, new_request


def allocation(request_id, resource_id, start, end, quantity=1, **kwargs):
    return Allocation(
        resource_id=resource_id,
        request_id=request_id,
        start=start,
        end=end,
        quantity=quantity,
        **kwargs
    )


def test_commit_batch(scheduler):
    lab = add_lab(scheduler, capacity=2)
    request = new_request(scheduler, submit=False)

    with scheduler.ledger.hold([lab.id]):
        scheduler.ledger.commit([
            allocation(request.id, lab.id, aware(10), aware(12)),
            allocation(request.id, lab.id, aware(11), aware(13)),
        ])
        scheduler.commit()

    allocations = scheduler.ledger.query(lab.id, aware(9), aware(18))
    assert len(allocations) == 2
    assert {a.status for a in allocations} == {CONFIRMED}
    assert all(a.version == 1 for a in allocations)


def test_commit_refuses_overbooking(scheduler):
    lab = add_lab(scheduler, capacity=2)
    request = new_request(scheduler, submit=False)

    scheduler.ledger.commit([
        allocation(request.id, lab.id, aware(10), aware(12)),
    ])
    scheduler.commit()

    with pytest.raises(errors.CapacityExceeded) as e:
        scheduler.ledger.commit([
            allocation(request.id, lab.id, aware(11), aware(12)),
            allocation(request.id, lab.id, aware(11), aware(13)),
        ])

    assert e.value.resource_id == lab.id
    assert len(e.value.conflicts) == 1

    scheduler.rollback()

    # nothing of the batch was written
    assert scheduler.session.query(Allocation).count() == 1


def test_commit_refuses_overbooking_per_resource(scheduler):
    lab = add_lab(scheduler)
    component = add_component(scheduler, available_quantity=3)
    request = new_request(scheduler, submit=False)

    with pytest.raises(errors.CapacityExceeded) as e:
        scheduler.ledger.commit([
            allocation(request.id, lab.id, aware(10), aware(12)),
            allocation(request.id, component.id, aware(10), aware(12), 4),
        ])

    assert e.value.resource_id == component.id

    scheduler.rollback()
    assert scheduler.session.query(Allocation).count() == 0


def test_held_allocations_occupy(scheduler):
    lab = add_lab(scheduler)
    request = new_request(scheduler, submit=False)

    scheduler.ledger.commit([
        allocation(request.id, lab.id, aware(10), aware(12), status=HELD),
    ])
    scheduler.commit()

    with pytest.raises(errors.CapacityExceeded):
        scheduler.ledger.commit([
            allocation(request.id, lab.id, aware(11), aware(12)),
        ])

    scheduler.rollback()


def test_release(scheduler):
    lab = add_lab(scheduler)
    request = new_request(scheduler, submit=False)

    scheduler.ledger.commit([
        allocation(request.id, lab.id, aware(10), aware(12)),
        allocation(request.id, lab.id, aware(12), aware(14)),
    ])
    scheduler.commit()

    released = scheduler.ledger.release(request.id)
    scheduler.commit()

    assert len(released) == 2
    assert {a.status for a in released} == {RELEASED}
    assert {a.version for a in released} == {2}

    # released allocations are kept but don't occupy the resource
    assert scheduler.ledger.query(lab.id, aware(9), aware(18)) == []
    assert len(scheduler.ledger.allocations_for(request.id)) == 2

    scheduler.ledger.commit([
        allocation(request.id, lab.id, aware(10), aware(14)),
    ])
    scheduler.commit()

    assert len(scheduler.ledger.query(lab.id, aware(9), aware(18))) == 1


def test_query_is_half_open(scheduler):
    lab = add_lab(scheduler)
    request = new_request(scheduler, submit=False)

    scheduler.ledger.commit([
        allocation(request.id, lab.id, aware(10), aware(12)),
    ])
    scheduler.commit()

    assert scheduler.ledger.query(lab.id, aware(12), aware(13)) == []
    assert scheduler.ledger.query(lab.id, aware(9), aware(10)) == []
    assert len(scheduler.ledger.query(lab.id, aware(11), aware(11, 1))) == 1


def test_hold_locks_resources(scheduler):
    lab = add_lab(scheduler)
    locks = scheduler.locks

    with scheduler.ledger.hold([lab.id]):
        assert locks.resource_locks[lab.id].locked()

    assert not locks.resource_locks[lab.id].locked()


def test_allocation_model(scheduler):
    lab = add_lab(scheduler)
    request = new_request(scheduler, submit=False)

    record = allocation(
        request.id, lab.id, aware(10), aware(12),
        status=HELD, hold_expires=aware(9)
    )

    assert record.is_occupying
    assert record.is_held
    assert record.is_expired(aware(9))
    assert not record.is_expired(aware(8))
    assert record.overlaps(aware(11), aware(13))
    assert not record.overlaps(aware(12), aware(13))
    assert record.display_start('Asia/Kolkata').hour == 10

    record.confirm()
    assert record.status == CONFIRMED
    assert record.hold_expires is None

    record.release()
    assert not record.is_occupying
