from __future__ import annotations

import logging

from datetime import timedelta
from decimal import Decimal
from sqlalchemy.exc import SQLAlchemyError

from hangar.context.core import ContextServicesMixin
from hangar.db.models import Invoice
from hangar.db.models import Payment
from hangar.db.models.invoice import (
    MAIN, SUPPLEMENTARY, CANCELLED, OVERDUE, PAID, PARTIALLY_PAID, PENDING
)
from hangar.db.queries import Queries
from hangar.modules import errors
from hangar.modules import utils
from hangar.modules.events import Outbox


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from datetime import datetime

    from hangar.context.core import Context
    from hangar.db.models import BookingRequest
    from hangar.db.models import Extension


log = logging.getLogger('hangar')


class BillingReconciler(ContextServicesMixin):
    """ Derives the state of the invoices from the lifecycle of the requests
    and the payments reported by the payment collaborator.

    The methods taking an outbox are called by the
    :class:`hangar.db.scheduler.Scheduler` inside its own transactions. The
    others run in a transaction of their own and commit it.

    """

    def __init__(self, context: Context, queries: Queries | None = None):
        self.context = context
        self.queries = queries or Queries(context)

    def invoice_by_id(self, invoice_id: int) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)

        if invoice is None:
            raise errors.UnknownInvoice(invoice_id)

        return invoice

    def invoices_for(self, request_id: int) -> list[Invoice]:
        query = self.session.query(Invoice)
        query = query.filter(Invoice.request_id == request_id)

        return query.order_by(Invoice.id).all()

    def new_invoice(
        self,
        request: BookingRequest,
        kind: str,
        subtotal: Decimal,
        extension_id: int | None = None
    ) -> Invoice:

        issued_at = self.now()
        due_date = issued_at + timedelta(
            days=self.setting('invoice_due_days')
        )

        invoice = Invoice(
            number=self.next_number('INV'),
            kind=kind,  # type:ignore[arg-type]
            subtotal=subtotal,
            tax_percent=request.tax_percent,
            currency=request.currency,
            issued_at=issued_at,
            due_date=due_date,
            extension_id=extension_id
        )
        request.invoices.append(invoice)

        # there is nothing to pay for
        if invoice.total == 0:
            invoice.status = PAID
            invoice.paid_at = issued_at

        self.session.flush()

        return invoice

    def open_invoice(
        self,
        request: BookingRequest,
        outbox: Outbox
    ) -> Invoice:
        """ Opens the main invoice of an approved request, a snapshot of the
        request's totals.

        """
        invoice = self.new_invoice(request, MAIN, request.subtotal)

        log.info(f'Opened invoice {invoice.number} for {request.number}')
        outbox.add(
            'invoice-opened', request.id,
            invoice_id=invoice.id,
            number=invoice.number,
            total=invoice.total,
            due_date=invoice.due_date
        )

        return invoice

    def open_supplementary_invoice(
        self,
        request: BookingRequest,
        extension: Extension,
        outbox: Outbox
    ) -> Invoice:
        """ Opens the invoice for an approved extension. """

        invoice = self.new_invoice(
            request, SUPPLEMENTARY, extension.price_delta,
            extension_id=extension.id
        )

        log.info(
            f'Opened supplementary invoice {invoice.number} '
            f'for {request.number}'
        )
        outbox.add(
            'invoice-opened', request.id,
            invoice_id=invoice.id,
            number=invoice.number,
            total=invoice.total,
            due_date=invoice.due_date,
            extension_id=extension.id
        )

        return invoice

    def capture(
        self,
        invoice: Invoice,
        paid_amount: Decimal | int | str,
        transaction_id: str,
        outbox: Outbox
    ) -> Invoice:

        for payment in invoice.payments:
            if payment.transaction_id == transaction_id:
                log.info(f'Transaction {transaction_id} already captured')
                return invoice

        query = self.session.query(Payment)
        query = query.filter(Payment.transaction_id == transaction_id)

        if query.first() is not None:
            raise errors.InvoiceStateError(
                f'Transaction {transaction_id} belongs to another invoice'
            )

        if invoice.status == CANCELLED:
            raise errors.InvoiceStateError(
                f'Invoice {invoice.number} is cancelled'
            )

        amount = utils.money(paid_amount)

        if amount <= 0:
            raise errors.ValidationError(
                f'The paid amount must be positive, got {amount}'
            )

        now = self.now()
        invoice.payments.append(Payment(transaction_id, amount, now))
        invoice.paid_amount += amount

        if invoice.paid_amount >= invoice.total:
            invoice.status = PAID
            invoice.paid_at = now
        else:
            invoice.status = PARTIALLY_PAID

        self.session.flush()

        log.info(
            f'Captured {amount} for invoice {invoice.number}, '
            f'now {invoice.status}'
        )
        outbox.add(
            'invoice-paid', invoice.request_id,
            invoice_id=invoice.id,
            status=invoice.status,
            amount=amount,
            transaction_id=transaction_id
        )

        return invoice

    def capture_payment(
        self,
        invoice_id: int,
        paid_amount: Decimal | int | str,
        transaction_id: str
    ) -> Invoice:
        """ Records a payment reported by the payment collaborator.

        Capturing the same transaction twice has no effect. The invoice is
        PAID once the paid amount reaches its total, PARTIALLY_PAID before.

        """
        outbox = Outbox()

        try:
            invoice = self.capture(
                self.invoice_by_id(invoice_id),
                paid_amount, transaction_id, outbox
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        outbox.send(self.context)
        return invoice

    def payment_failed(self, invoice_id: int, reason: str) -> None:
        """ Called by the payment collaborator if a capture failed. The
        invoice is left as it is, the failure never reaches the caller.

        """
        log.warning(f'Payment for invoice {invoice_id} failed: {reason}')

        try:
            invoice = self.invoice_by_id(invoice_id)
        except (errors.UnknownInvoice, SQLAlchemyError):
            log.exception(f'Could not look up invoice {invoice_id}')
            return

        outbox = Outbox()
        outbox.add(
            'payment-failed', invoice.request_id,
            invoice_id=invoice.id,
            reason=reason
        )
        outbox.send(self.context)

    def mark_overdue(self, now: datetime | None = None) -> list[Invoice]:
        """ Marks the unpaid invoices past their due date as overdue. This
        is meant to be run periodically.

        """
        now = now or self.now()
        outbox = Outbox()
        overdue: list[Invoice] = []

        try:
            for invoice in self.queries.due_invoices(now).all():

                # a payment may have been captured since the invoice was
                # selected, only unpaid invoices are overwritten
                query = self.session.query(Invoice)
                query = query.filter(Invoice.id == invoice.id)
                query = query.filter(
                    Invoice.status.in_((PENDING, PARTIALLY_PAID))
                )

                if not query.update(
                    {Invoice.status: OVERDUE},
                    synchronize_session=False
                ):
                    continue

                overdue.append(invoice)
                outbox.add(
                    'invoice-overdue', invoice.request_id,
                    invoice_id=invoice.id,
                    number=invoice.number,
                    outstanding=invoice.outstanding
                )

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        if overdue:
            log.info(f'Marked {len(overdue)} invoice(s) as overdue')

        outbox.send(self.context)
        return overdue

    def cancel_invoices(
        self,
        request: BookingRequest,
        outbox: Outbox
    ) -> list[Invoice]:
        """ Cancels the unpaid invoices of a cancelled request. Invoices
        which received money are flagged for a refund instead.

        """
        changed = []

        for invoice in request.invoices:
            if invoice.status == CANCELLED:
                continue

            if invoice.has_payments:
                if not invoice.refund_pending:
                    invoice.refund_pending = True
                    changed.append(invoice)
                    outbox.add(
                        'refund-requested', request.id,
                        invoice_id=invoice.id,
                        amount=invoice.paid_amount
                    )
            else:
                invoice.status = CANCELLED
                changed.append(invoice)
                outbox.add(
                    'invoice-cancelled', request.id,
                    invoice_id=invoice.id
                )

        self.session.flush()

        return changed
