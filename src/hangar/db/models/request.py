from __future__ import annotations

import sedate

from datetime import datetime
from decimal import Decimal
from sqlalchemy import types
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship
from sqlalchemy.schema import Index

from hangar.db.models.base import ORMBase
from hangar.db.models.other import OtherModels
from hangar.db.models.timestamp import TimestampMixin
from hangar.modules import utils


from typing import Any
from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sedate.types import TzInfoOrName
    from typing_extensions import TypeAlias

    from hangar.db.models import Extension
    from hangar.db.models import Invoice
    from hangar.db.models import LineItem


RequestStatus: TypeAlias = Literal[
    'draft',
    'submitted',
    'under_review',
    'approved',
    'rejected',
    'scheduled',
    'in_progress',
    'completed',
    'cancelled',
]

DRAFT = 'draft'
SUBMITTED = 'submitted'
UNDER_REVIEW = 'under_review'
APPROVED = 'approved'
REJECTED = 'rejected'
SCHEDULED = 'scheduled'
IN_PROGRESS = 'in_progress'
COMPLETED = 'completed'
CANCELLED = 'cancelled'

STATES = (
    DRAFT, SUBMITTED, UNDER_REVIEW, APPROVED, REJECTED,
    SCHEDULED, IN_PROGRESS, COMPLETED, CANCELLED
)

#: requests in these states wait for an admin decision
REVIEWABLE = (SUBMITTED, UNDER_REVIEW)

#: requests in these states hold confirmed allocations
BOOKED = (APPROVED, SCHEDULED, IN_PROGRESS)

#: requests in these states may be extended
EXTENDABLE = (APPROVED, SCHEDULED)


class BookingRequest(TimestampMixin, ORMBase, OtherModels):
    """ A request by an organization to book one or many resources.

    The request is the unit of approval. Either all its line items are
    allocated or none of them are.

    """

    __tablename__ = 'requests'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    #: the human readable number, e.g. REQ-2026-00001
    number: Mapped[str] = mapped_column(types.String(32), unique=True)

    #: opaque identifiers handed in by the caller
    organization_id: Mapped[str]
    requested_by: Mapped[str]

    title: Mapped[str]
    description: Mapped[str] = mapped_column(types.Text(), default='')

    status: Mapped[RequestStatus] = mapped_column(
        types.Enum(*STATES, name='request_status'),
        default=DRAFT
    )

    subtotal: Mapped[Decimal] = mapped_column(default=Decimal('0.00'))
    tax_percent: Mapped[Decimal] = mapped_column(default=Decimal('0.00'))
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal('0.00'))
    total: Mapped[Decimal] = mapped_column(default=Decimal('0.00'))
    currency: Mapped[str] = mapped_column(types.String(3))

    #: the booked time span, defined once the request is approved
    scheduled_start: Mapped[datetime | None]
    scheduled_end: Mapped[datetime | None]

    submitted_at: Mapped[datetime | None]
    reviewed_at: Mapped[datetime | None]
    reviewed_by: Mapped[str | None]
    approved_at: Mapped[datetime | None]
    approval_note: Mapped[str | None]
    rejected_at: Mapped[datetime | None]
    rejection_reason: Mapped[str | None]
    cancelled_at: Mapped[datetime | None]
    cancellation_reason: Mapped[str | None]
    started_at: Mapped[datetime | None]
    completed_at: Mapped[datetime | None]

    #: Custom data reserved for the user
    data: Mapped[dict[str, Any] | None] = mapped_column(deferred=True)

    line_items: Mapped[list[LineItem]] = relationship(
        back_populates='request',
        cascade='all, delete-orphan',
        order_by='LineItem.id'
    )

    extensions: Mapped[list[Extension]] = relationship(
        back_populates='request',
        cascade='all, delete-orphan',
        order_by='Extension.id'
    )

    invoices: Mapped[list[Invoice]] = relationship(
        back_populates='request',
        cascade='all, delete-orphan',
        order_by='Invoice.id'
    )

    __table_args__ = (
        Index('request_status_ix', 'status', 'scheduled_start'),
        Index('request_organization_ix', 'organization_id'),
    )

    def __init__(
        self,
        number: str,
        organization_id: str,
        requested_by: str,
        title: str,
        currency: str,
        tax_percent: Decimal | int,
        description: str = ''
    ) -> None:
        self.number = number
        self.organization_id = organization_id
        self.requested_by = requested_by
        self.title = title
        self.description = description
        self.currency = currency
        self.tax_percent = utils.money(tax_percent)
        self.status = DRAFT
        self.subtotal = self.tax_amount = self.total = utils.money(0)

    def __repr__(self) -> str:
        return f'<BookingRequest {self.number} {self.status}>'

    @property
    def main_invoice(self) -> Invoice | None:
        for invoice in self.invoices:
            if invoice.kind == 'main' and invoice.status != 'cancelled':
                return invoice
        return None

    @property
    def approved_extensions(self) -> list[Extension]:
        return [e for e in self.extensions if e.status == 'approved']

    @property
    def pending_extensions(self) -> list[Extension]:
        return [e for e in self.extensions if e.status == 'pending']

    def recalculate(self) -> None:
        """ Recomputes the totals from the line items and the approved
        extensions. Tax is applied on the sum, not per line.

        """
        subtotal = sum(
            (item.subtotal for item in self.line_items),
            start=Decimal(0)
        )
        subtotal += sum(
            (e.price_delta for e in self.approved_extensions),
            start=Decimal(0)
        )

        self.subtotal = utils.money(subtotal)
        self.tax_amount = utils.money(self.subtotal * self.tax_percent / 100)
        self.total = self.subtotal + self.tax_amount

    def derive_schedule(self) -> None:
        """ Sets the scheduled time span from the line items. """
        if not self.line_items:
            self.scheduled_start = self.scheduled_end = None
            return

        self.scheduled_start = min(i.start for i in self.line_items)
        self.scheduled_end = max(i.current_end for i in self.line_items)

    def display_start(self, timezone: TzInfoOrName) -> datetime | None:
        if self.scheduled_start is None:
            return None
        return sedate.to_timezone(self.scheduled_start, timezone)

    def display_end(self, timezone: TzInfoOrName) -> datetime | None:
        if self.scheduled_end is None:
            return None
        return sedate.to_timezone(self.scheduled_end, timezone)
