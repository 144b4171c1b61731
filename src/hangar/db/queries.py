from __future__ import annotations

from sqlalchemy.sql import and_, or_

from hangar.context.core import ContextServicesMixin
from hangar.db.models import Allocation
from hangar.db.models import BookingRequest
from hangar.db.models import Invoice
from hangar.db.models import MaintenanceWindow
from hangar.db.models.allocation import HELD, OCCUPYING
from hangar.db.models.invoice import PARTIALLY_PAID, PENDING
from hangar.db.models.request import IN_PROGRESS, SCHEDULED


from typing import TypeVar
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Collection
    from datetime import datetime
    from sqlalchemy.orm import Query

    from hangar.context.core import Context

_T = TypeVar('_T')


class Queries(ContextServicesMixin):
    """ Contains helper methods shared by the catalog, the availability
    engine, the ledger and the billing reconciler.

    Some contained methods require the current context (for the session).
    Some contained methods do not require any context, they are marked
    as staticmethods.

    """

    def __init__(self, context: Context):
        self.context = context

    @staticmethod
    def allocations_in_range(
        query: Query[_T],
        start: datetime,
        end: datetime
    ) -> Query[_T]:
        """ Takes an allocation query and limits it to the allocations
        sharing at least one instant with [start, end).

        """
        return query.filter(and_(
            Allocation.start < end,
            Allocation.end > start
        ))

    @staticmethod
    def maintenance_in_range(
        query: Query[_T],
        start: datetime,
        end: datetime
    ) -> Query[_T]:
        return query.filter(and_(
            MaintenanceWindow.start < end,
            MaintenanceWindow.end > start
        ))

    def occupying_allocations(
        self,
        resource_id: int,
        start: datetime,
        end: datetime,
        exclude_request_id: int | None = None,
        statuses: Collection[str] = OCCUPYING
    ) -> Query[Allocation]:
        """ Returns the allocations of the resource which take capacity
        between start and end.

        """
        query = self.session.query(Allocation)
        query = query.filter(Allocation.resource_id == resource_id)
        query = query.filter(Allocation.status.in_(statuses))
        query = self.allocations_in_range(query, start, end)

        if exclude_request_id is not None:
            query = query.filter(Allocation.request_id != exclude_request_id)

        return query.order_by(Allocation.start, Allocation.id)

    def maintenance_windows(
        self,
        resource_id: int,
        start: datetime,
        end: datetime
    ) -> Query[MaintenanceWindow]:
        query = self.session.query(MaintenanceWindow)
        query = query.filter(MaintenanceWindow.resource_id == resource_id)
        query = self.maintenance_in_range(query, start, end)

        return query.order_by(MaintenanceWindow.start)

    def allocations_by_request(
        self,
        request_id: int,
        statuses: Collection[str] | None = None
    ) -> Query[Allocation]:
        query = self.session.query(Allocation)
        query = query.filter(Allocation.request_id == request_id)

        if statuses is not None:
            query = query.filter(Allocation.status.in_(statuses))

        return query.order_by(Allocation.resource_id, Allocation.start)

    def expired_holds(self, now: datetime) -> Query[Allocation]:
        """ Returns the HELD allocations whose hold has expired. """

        query = self.session.query(Allocation)
        query = query.filter(Allocation.status == HELD)
        query = query.filter(Allocation.hold_expires <= now)

        return query.order_by(Allocation.request_id)

    def due_invoices(self, now: datetime) -> Query[Invoice]:
        """ Returns the unpaid invoices whose due date has passed. Invoices
        waiting for a refund are not due anymore.

        """

        query = self.session.query(Invoice)
        query = query.filter(Invoice.status.in_((PENDING, PARTIALLY_PAID)))
        query = query.filter(Invoice.refund_pending == False)  # noqa: E712
        query = query.filter(Invoice.due_date < now)

        return query.order_by(Invoice.due_date)

    def requests_to_advance(self, now: datetime) -> Query[BookingRequest]:
        """ Returns the scheduled requests which have started and the
        running requests which have ended.

        """
        query = self.session.query(BookingRequest)
        query = query.filter(or_(
            and_(
                BookingRequest.status == SCHEDULED,
                BookingRequest.scheduled_start <= now
            ),
            and_(
                BookingRequest.status == IN_PROGRESS,
                BookingRequest.scheduled_end <= now
            )
        ))

        return query.order_by(BookingRequest.scheduled_start)
