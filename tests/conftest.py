from __future__ import annotations

import pytest
import sedate

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from hangar import new_scheduler, registry
from hangar.db.models import Component, Lab, MaintenanceWindow, Staff
from hangar.modules import events
from hangar.modules.utils import SequenceGenerator
from uuid import uuid4 as new_uuid


from typing import Any
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path

    from hangar.context.core import Context
    from hangar.db.models import BookingRequest
    from hangar.db.scheduler import Scheduler

    Item = tuple[int, datetime, datetime] | tuple[int, datetime, datetime, int]


TIMEZONE = 'Asia/Kolkata'

#: a monday, the clock of every test starts at 09:00 local time
TODAY = date(2026, 10, 19)
TOMORROW = TODAY + timedelta(days=1)


def at(hour: int, minute: int = 0, day: date = TOMORROW) -> datetime:
    """ A naive local datetime, as passed to the scheduler. """
    return datetime.combine(day, time(hour, minute))


def aware(hour: int, minute: int = 0, day: date = TOMORROW) -> datetime:
    return sedate.replace_timezone(at(hour, minute, day), TIMEZONE)


class FixedClock:
    """ A clock which only moves when told to. """

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current += timedelta(**delta)
        return self.current

    def set(self, now: datetime) -> None:
        self.current = now


@pytest.fixture
def dsn(tmp_path: Path) -> str:
    return f'sqlite:///{tmp_path}/hangar.db'


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(sedate.to_timezone(aware(9, day=TODAY), 'UTC'))


@pytest.fixture
def context(dsn: str, clock: FixedClock) -> Context:
    context = registry.register_context(new_uuid().hex, replace=True)
    context.set_setting('dsn', dsn)
    context.set_setting('lock_timeout', 5)
    context.set_service('clock', lambda ctx: clock)
    context.set_service(
        'sequence', lambda ctx: SequenceGenerator(year=2026), cache=True
    )

    return context


@pytest.fixture
def scheduler(context: Context) -> Generator[Scheduler, None, None]:

    # clear the events before each test
    for event in (e for e in dir(events) if e.startswith('on_')):
        del getattr(events, event)[:]

    del events.undelivered[:]

    scheduler = new_scheduler(context, TIMEZONE)
    scheduler.setup_database()
    scheduler.commit()

    yield scheduler

    scheduler.rollback()
    scheduler.close()
    scheduler.session_provider.stop_service()


@pytest.fixture
def notifications(scheduler: Scheduler) -> list[events.Notification]:
    """ Records every notification sent during the test. """

    received: list[events.Notification] = []

    def record(context: Context, notification: events.Notification) -> None:
        received.append(notification)

    for event in events.by_type().values():
        event.append(record)

    return received


def add_lab(scheduler: Scheduler, **kwargs: Any) -> Lab:
    options: dict[str, Any] = {
        'code': 'WT-01',
        'name': 'Wind Tunnel',
        'site_id': 'BLR',
        'capacity': 1,
        'timezone': TIMEZONE,
        'opens_at': time(9),
        'closes_at': time(18),
        'slot_granularity_minutes': 60,
        'lead_time_days': 1,
        'rate_per_hour': Decimal('5000'),
    }
    options.update(kwargs)

    lab = Lab(**options)
    scheduler.session.add(lab)
    scheduler.commit()

    return lab


def add_component(scheduler: Scheduler, **kwargs: Any) -> Component:
    options: dict[str, Any] = {
        'code': 'C-01',
        'name': 'Strain Gauge',
        'site_id': 'BLR',
        'timezone': TIMEZONE,
        'slot_granularity_minutes': 60,
        'lead_time_days': 0,
        'stock_quantity': 10,
        'available_quantity': 10,
        'price_per_unit': Decimal('250'),
    }
    options.update(kwargs)

    component = Component(**options)
    scheduler.session.add(component)
    scheduler.commit()

    return component


def add_staff(scheduler: Scheduler, **kwargs: Any) -> Staff:
    options: dict[str, Any] = {
        'code': 'ST-01',
        'name': 'Test Engineer',
        'site_id': 'BLR',
        'timezone': TIMEZONE,
        'opens_at': time(9),
        'closes_at': time(18),
        'slot_granularity_minutes': 30,
        'rate_per_hour': Decimal('1200'),
        'email': 'engineer@example.org',
        'skills': ['aero', 'telemetry'],
    }
    options.update(kwargs)

    staff = Staff(**options)
    scheduler.session.add(staff)
    scheduler.commit()

    return staff


def add_maintenance(
    scheduler: Scheduler,
    resource_id: int,
    start: datetime,
    end: datetime,
    reason: str = 'Calibration'
) -> MaintenanceWindow:

    window = MaintenanceWindow(
        resource_id=resource_id,
        start=start,
        end=end,
        reason=reason
    )
    scheduler.session.add(window)
    scheduler.commit()

    return window


def new_request(
    scheduler: Scheduler,
    *items: Item,
    submit: bool = True,
    title: str = 'Wing section test'
) -> BookingRequest:
    """ Creates a request with a line item per tuple of (resource_id, start,
    end[, quantity]) and submits it.

    """
    request = scheduler.create_request(
        organization_id='org-1',
        requested_by='alice',
        title=title,
        items=[
            dict(zip(('resource_id', 'start', 'end', 'quantity'), item))
            for item in items
        ]
    )

    if submit:
        scheduler.submit_request(request.id)

    return request


def approved_request(
    scheduler: Scheduler,
    *items: Item
) -> BookingRequest:
    request = new_request(scheduler, *items)
    return scheduler.approve_request(request.id, reviewed_by='admin')
