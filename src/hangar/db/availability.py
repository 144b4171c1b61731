from __future__ import annotations

import logging

from datetime import timedelta

from hangar.context.core import ContextServicesMixin
from hangar.db.catalog import ResourceCatalog
from hangar.db.queries import Queries
from hangar.modules import errors
from hangar.modules import windows
from hangar.modules.sweep import Occupant, Segment, merged, sweep


from typing import Literal
from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime

    from hangar.context.core import Context
    from hangar.db.models import Allocation
    from hangar.db.models import MaintenanceWindow
    from hangar.db.models import Resource


log = logging.getLogger('hangar')


class Availability(NamedTuple):
    """ The answer to "can the resource take this booking?".

    The conflicts are the allocations occupying the resource where it is
    short of capacity. Remaining is the lowest free capacity over the whole
    interval.

    """
    available: bool
    conflicts: list[Allocation]
    remaining: int
    maintenance: list[MaintenanceWindow]


class CalendarSlot(NamedTuple):
    start: datetime
    end: datetime
    remaining: int


class AlternativeSlot(NamedTuple):
    start: datetime
    end: datetime
    confidence: Literal['high', 'medium', 'low']


class Calendar:
    """ The free capacity of a resource over a date range, as a sequence of
    non-overlapping slots.

    The slots are computed lazily whenever the calendar is iterated, each
    iteration reflecting the ledger at that time.

    """

    def __init__(
        self,
        engine: AvailabilityEngine,
        resource: Resource,
        start: datetime,
        end: datetime,
        operating_hours_only: bool = False
    ):
        self.engine = engine
        self.resource = resource
        self.start = start
        self.end = end
        self.operating_hours_only = operating_hours_only

    def __repr__(self) -> str:
        return (
            f'<Calendar {self.resource.code} '
            f'{self.start.isoformat()} - {self.end.isoformat()}>'
        )

    def ranges(self) -> Iterator[tuple[datetime, datetime]]:
        if self.operating_hours_only:
            yield from windows.windows_between(
                self.resource, self.start, self.end
            )
        else:
            yield self.start, self.end

    def __iter__(self) -> Iterator[CalendarSlot]:
        capacity = self.resource.capacity_units
        occupants, _, _ = self.engine.occupants(
            self.resource, self.start, self.end
        )

        for start, end in self.ranges():
            for segment in merged(sweep(occupants, start, end)):
                yield CalendarSlot(
                    segment.start,
                    segment.end,
                    max(capacity - segment.used, 0)
                )


class AvailabilityEngine(ContextServicesMixin):
    """ Answers whether a resource can take a booking and what the free
    capacity of a resource looks like over time.

    Nothing in here writes to the database.

    """

    def __init__(
        self,
        context: Context,
        catalog: ResourceCatalog | None = None,
        queries: Queries | None = None
    ):
        self.context = context
        self.queries = queries or Queries(context)
        self.catalog = catalog or ResourceCatalog(context, self.queries)

    def validate(
        self,
        resource: Resource,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        enforce_lead_time: bool = True,
        enforce_length: bool = True
    ) -> None:
        """ Runs the constraint checks of a booking, raising the specific
        error of the first failing check.

        """
        if end <= start:
            raise errors.InvalidInterval(start, end)

        if quantity < 1:
            raise errors.InvalidQuantity(
                f'The quantity must be at least 1, got {quantity}'
            )

        if not resource.active:
            raise errors.ResourceInactive(
                resource.id, f'{resource.code} is inactive'
            )

        duration = end - start

        if enforce_length:
            self.validate_length(resource, duration)

        if not windows.is_aligned(resource, start):
            raise errors.MisalignedSlot(
                resource.id,
                f'{start.isoformat()} is not aligned to the '
                f'{resource.slot_granularity_minutes} minute slots '
                f'of {resource.code}'
            )

        if not windows.is_granular(resource, duration):
            raise errors.MisalignedSlot(
                resource.id,
                f'The duration is not a multiple of '
                f'{resource.slot_granularity_minutes} minutes'
            )

        if not windows.is_within_window(resource, start, end):
            raise errors.OutsideOperatingWindow(
                resource.id,
                f'{resource.code} does not operate during the whole of '
                f'{start.isoformat()} - {end.isoformat()}'
            )

        if enforce_lead_time and resource.lead_time_days:
            earliest = self.now() + timedelta(days=resource.lead_time_days)

            if start < earliest:
                raise errors.InsufficientLeadTime(
                    resource.id,
                    f'{resource.code} has to be booked '
                    f'{resource.lead_time_days} day(s) in advance'
                )

    def validate_length(self, resource: Resource, duration: timedelta) -> None:
        max_days = self.setting('max_booking_days')

        if max_days and duration > timedelta(days=max_days):
            raise errors.BookingTooLong(
                f'Bookings may not last longer than {max_days} days'
            )

        minimum = resource.min_booking_minutes
        if minimum and duration < timedelta(minutes=minimum):
            raise errors.BookingTooShort(
                f'{resource.code} has to be booked for at least '
                f'{minimum} minutes'
            )

        maximum = resource.max_booking_minutes
        if maximum and duration > timedelta(minutes=maximum):
            raise errors.BookingTooLong(
                f'{resource.code} may be booked for at most '
                f'{maximum} minutes'
            )

    def occupants(
        self,
        resource: Resource,
        start: datetime,
        end: datetime,
        exclude_request_id: int | None = None
    ) -> tuple[list[Occupant], list[Allocation], list[MaintenanceWindow]]:
        """ Returns everything taking capacity of the resource between start
        and end. Maintenance windows take the whole capacity.

        """
        allocations = self.queries.occupying_allocations(
            resource.id, start, end, exclude_request_id
        ).all()

        maintenance = self.catalog.maintenance_windows(resource.id, start, end)

        full = max(resource.capacity_units, 1)
        occupants = [Occupant(a.start, a.end, a.quantity) for a in allocations]
        occupants.extend(Occupant(m.start, m.end, full) for m in maintenance)

        return occupants, allocations, maintenance

    def capacity(
        self,
        resource: Resource,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        exclude_request_id: int | None = None
    ) -> Availability:
        """ Runs the sweep without any constraint checks. """

        capacity = resource.capacity_units
        occupants, allocations, maintenance = self.occupants(
            resource, start, end, exclude_request_id
        )

        segments = list(sweep(occupants, start, end))
        remaining = min((capacity - s.used for s in segments), default=0)
        remaining = max(remaining, 0)

        short = [s for s in segments if s.used + quantity > capacity]

        if not short:
            return Availability(True, [], remaining, [])

        return Availability(
            available=False,
            conflicts=self.conflicting(allocations, short),
            remaining=remaining,
            maintenance=[
                m for m in maintenance
                if any(m.start < s.end and m.end > s.start for s in short)
            ]
        )

    @staticmethod
    def conflicting(
        allocations: list[Allocation],
        segments: list[Segment]
    ) -> list[Allocation]:
        return [
            allocation for allocation in allocations
            if any(allocation.overlaps(s.start, s.end) for s in segments)
        ]

    def check(
        self,
        resource: Resource,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        exclude_request_id: int | None = None,
        enforce_lead_time: bool = True,
        enforce_length: bool = True
    ) -> Availability:
        self.validate(
            resource, start, end, quantity,
            enforce_lead_time=enforce_lead_time,
            enforce_length=enforce_length
        )
        return self.capacity(
            resource, start, end, quantity, exclude_request_id
        )

    def check_availability(
        self,
        resource_id: int,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        exclude_request_id: int | None = None,
        enforce_lead_time: bool = True
    ) -> Availability:
        """ Checks if the resource can take the given quantity during
        [start, end).

        Constraint violations raise their specific error (a
        :class:`hangar.modules.errors.ValidationError` or
        :class:`hangar.modules.errors.AvailabilityConflict`). A shortage of
        capacity does not raise, the result is unavailable instead and lists
        the conflicting allocations.

        This is a pure read.

        """
        resource = self.catalog.get_resource(resource_id)
        return self.check(
            resource, start, end, quantity,
            exclude_request_id=exclude_request_id,
            enforce_lead_time=enforce_lead_time
        )

    def ensure(
        self,
        resource: Resource,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        exclude_request_id: int | None = None,
        enforce_lead_time: bool = True,
        enforce_length: bool = True
    ) -> Availability:

        result = self.check(
            resource, start, end, quantity,
            exclude_request_id=exclude_request_id,
            enforce_lead_time=enforce_lead_time,
            enforce_length=enforce_length
        )

        if result.available:
            return result

        log.warning(
            'Capacity of %s exceeded between %s and %s',
            resource.code, start.isoformat(), end.isoformat()
        )

        if result.maintenance:
            raise errors.UnderMaintenance(
                resource.id,
                f'{resource.code} is under maintenance',
                conflicts=result.conflicts
            )

        raise errors.CapacityExceeded(
            resource.id,
            f'{resource.code} has {result.remaining} unit(s) left, '
            f'{quantity} requested',
            conflicts=result.conflicts
        )

    def ensure_available(
        self,
        resource_id: int,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        exclude_request_id: int | None = None,
        enforce_lead_time: bool = True
    ) -> Availability:
        """ Same as :meth:`check_availability`, but raises
        :class:`hangar.modules.errors.CapacityExceeded` (or
        :class:`hangar.modules.errors.UnderMaintenance`) if the resource
        is short of capacity.

        """
        resource = self.catalog.get_resource(resource_id)
        return self.ensure(
            resource, start, end, quantity,
            exclude_request_id=exclude_request_id,
            enforce_lead_time=enforce_lead_time
        )

    def get_calendar(
        self,
        resource_id: int,
        start: datetime,
        end: datetime,
        operating_hours_only: bool = False
    ) -> Calendar:
        """ Returns the calendar of the resource between start and end. The
        calendar may be iterated as often as needed.

        """
        if end <= start:
            raise errors.InvalidInterval(start, end)

        resource = self.catalog.get_resource(resource_id)
        return Calendar(self, resource, start, end, operating_hours_only)

    def is_bookable(
        self,
        resource: Resource,
        start: datetime,
        end: datetime,
        quantity: int
    ) -> bool:
        try:
            return self.check(resource, start, end, quantity).available
        except (errors.ValidationError, errors.AvailabilityConflict):
            return False

    def find_alternative_slots(
        self,
        resource_id: int,
        start: datetime,
        duration: timedelta,
        quantity: int = 1,
        limit: int = 5
    ) -> list[AlternativeSlot]:
        """ Looks for bookable slots close to the given start.

        Slots on the same day (up to eight hours earlier or later) come
        first, followed by the same time on the days around it (up to a
        week away).

        """
        resource = self.catalog.get_resource(resource_id)

        step = timedelta(minutes=resource.slot_granularity_minutes)
        steps = max(int(timedelta(hours=8) / step), 1)

        def candidates() -> Iterator[AlternativeSlot]:
            for offset in range(1, steps + 1):
                for direction in (1, -1):
                    candidate = start + direction * offset * step
                    yield AlternativeSlot(
                        candidate, candidate + duration, 'high'
                    )

            for days in range(1, 8):
                for direction in (1, -1):
                    candidate = start + direction * timedelta(days=days)
                    yield AlternativeSlot(
                        candidate,
                        candidate + duration,
                        'medium' if days <= 2 else 'low'
                    )

        found: list[AlternativeSlot] = []

        for candidate in candidates():
            if len(found) >= limit:
                break

            if self.is_bookable(
                resource, candidate.start, candidate.end, quantity
            ):
                found.append(candidate)

        return found
