from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from sqlalchemy import ForeignKey
from sqlalchemy import types
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship
from sqlalchemy.schema import Index

from hangar.db.models.base import ORMBase
from hangar.db.models.other import OtherModels
from hangar.db.models.timestamp import TimestampMixin
from hangar.modules import utils


from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from typing_extensions import TypeAlias

    from hangar.db.models import BookingRequest


InvoiceKind: TypeAlias = Literal['main', 'supplementary']
InvoiceStatus: TypeAlias = Literal[
    'pending', 'paid', 'partially_paid', 'overdue', 'cancelled'
]

MAIN = 'main'
SUPPLEMENTARY = 'supplementary'

PENDING = 'pending'
PAID = 'paid'
PARTIALLY_PAID = 'partially_paid'
OVERDUE = 'overdue'
CANCELLED = 'cancelled'


class Invoice(TimestampMixin, ORMBase, OtherModels):
    """ An invoice for a request (main) or one of its extensions
    (supplementary).

    The invoice is a snapshot of the request's totals when it was issued.

    """

    __tablename__ = 'invoices'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    #: the human readable number, e.g. INV-2026-00001
    number: Mapped[str] = mapped_column(types.String(32), unique=True)

    request_id: Mapped[int] = mapped_column(
        ForeignKey('requests.id', ondelete='CASCADE')
    )

    extension_id: Mapped[int | None] = mapped_column(
        ForeignKey('extensions.id', ondelete='SET NULL')
    )

    kind: Mapped[InvoiceKind] = mapped_column(
        types.Enum(MAIN, SUPPLEMENTARY, name='invoice_kind'),
        default=MAIN
    )

    subtotal: Mapped[Decimal]
    tax_percent: Mapped[Decimal]
    tax_amount: Mapped[Decimal]
    total: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(types.String(3))

    status: Mapped[InvoiceStatus] = mapped_column(
        types.Enum(
            PENDING, PAID, PARTIALLY_PAID, OVERDUE, CANCELLED,
            name='invoice_status'
        ),
        default=PENDING
    )

    issued_at: Mapped[datetime]
    due_date: Mapped[datetime]

    paid_amount: Mapped[Decimal] = mapped_column(default=Decimal('0.00'))
    paid_at: Mapped[datetime | None]

    #: set if a paid invoice's request was cancelled
    refund_pending: Mapped[bool] = mapped_column(default=False)

    request: Mapped[BookingRequest] = relationship(
        back_populates='invoices'
    )

    payments: Mapped[list[Payment]] = relationship(
        back_populates='invoice',
        cascade='all, delete-orphan',
        order_by='Payment.id'
    )

    __table_args__ = (
        Index('invoice_status_ix', 'status', 'due_date'),
    )

    def __init__(
        self,
        number: str,
        kind: InvoiceKind,
        subtotal: Decimal,
        tax_percent: Decimal,
        currency: str,
        issued_at: datetime,
        due_date: datetime,
        extension_id: int | None = None
    ) -> None:
        self.number = number
        self.kind = kind
        self.subtotal = utils.money(subtotal)
        self.tax_percent = utils.money(tax_percent)
        self.tax_amount = utils.money(self.subtotal * self.tax_percent / 100)
        self.total = self.subtotal + self.tax_amount
        self.currency = currency
        self.issued_at = issued_at
        self.due_date = due_date
        self.extension_id = extension_id
        self.status = PENDING
        self.paid_amount = utils.money(0)
        self.refund_pending = False

    def __repr__(self) -> str:
        return f'<Invoice {self.number} {self.total} {self.status}>'

    @property
    def outstanding(self) -> Decimal:
        return max(self.total - self.paid_amount, Decimal('0.00'))

    @property
    def has_payments(self) -> bool:
        return self.paid_amount > 0


class Payment(TimestampMixin, ORMBase, OtherModels):
    """ A payment captured for an invoice. The transaction id of the payment
    gateway is unique, capturing the same transaction twice has no effect.

    """

    __tablename__ = 'payments'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    invoice_id: Mapped[int] = mapped_column(
        ForeignKey('invoices.id', ondelete='CASCADE')
    )

    transaction_id: Mapped[str] = mapped_column(
        types.String(128),
        unique=True
    )

    amount: Mapped[Decimal]

    captured_at: Mapped[datetime]

    invoice: Mapped[Invoice] = relationship(back_populates='payments')

    def __init__(
        self,
        transaction_id: str,
        amount: Decimal,
        captured_at: datetime
    ) -> None:
        self.transaction_id = transaction_id
        self.amount = utils.money(amount)
        self.captured_at = captured_at

    def __repr__(self) -> str:
        return f'<Payment {self.transaction_id} {self.amount}>'
