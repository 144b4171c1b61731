from __future__ import annotations

import pytest

from hangar.modules import errors

from conftest import (
    add_component, add_lab, add_maintenance, add_staff, aware
)


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from hangar.db.scheduler import Scheduler


def test_list_resources(scheduler: Scheduler) -> None:
    lab = add_lab(scheduler)
    other = add_lab(scheduler, code='WT-02', site_id='HYD')
    retired = add_lab(scheduler, code='WT-00', active=False)
    component = add_component(scheduler)
    staff = add_staff(scheduler)

    catalog = scheduler.catalog

    assert catalog.list_resources() == [component, staff, lab, other]
    assert catalog.list_resources(kind='lab') == [lab, other]
    assert catalog.list_resources(kind='component') == [component]
    assert catalog.list_resources(kind='lab', site_id='HYD') == [other]
    assert catalog.list_resources(kind='lab', active_only=False) == [
        retired, lab, other
    ]


def test_get_resource(scheduler: Scheduler) -> None:
    lab = add_lab(scheduler)
    retired = add_lab(scheduler, code='WT-00', active=False)
    staff = add_staff(scheduler)

    assert scheduler.catalog.get_resource(lab.id) == lab
    assert scheduler.resource(staff.id).skills == ['aero', 'telemetry']
    assert scheduler.resource(staff.id).resource_kind() == 'staff'

    with pytest.raises(errors.ResourceInactive):
        scheduler.catalog.get_resource(retired.id)

    assert scheduler.catalog.get_resource(retired.id, include_inactive=True)

    with pytest.raises(errors.UnknownResource):
        scheduler.catalog.get_resource(retired.id + 100)


def test_capacity_models(scheduler: Scheduler) -> None:
    lab = add_lab(scheduler, capacity=3)
    component = add_component(scheduler, available_quantity=7)

    assert lab.capacity_model() == 'concurrent'
    assert lab.capacity_units == 3
    assert component.capacity_model() == 'pooled'
    assert component.capacity_units == 7
    assert component.unit_rate == 250


def test_maintenance_windows(scheduler: Scheduler) -> None:
    lab = add_lab(scheduler)
    window = add_maintenance(scheduler, lab.id, aware(10), aware(12))

    catalog = scheduler.catalog

    assert catalog.maintenance_windows(lab.id, aware(9), aware(18)) == [
        window
    ]
    assert catalog.maintenance_windows(lab.id, aware(11), aware(11, 30)) == [
        window
    ]

    # half-open, the window doesn't touch its neighbours
    assert catalog.maintenance_windows(lab.id, aware(12), aware(13)) == []
    assert catalog.maintenance_windows(lab.id, aware(9), aware(10)) == []

    assert window.resource == lab
    assert window.display_start('Asia/Kolkata').hour == 10
