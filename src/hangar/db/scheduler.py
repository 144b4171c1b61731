from __future__ import annotations

import logging
import sedate

from datetime import timedelta
from decimal import Decimal, InvalidOperation
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm.exc import StaleDataError

from hangar.context.core import ContextServicesMixin
from hangar.context.session import is_serialization_failure
from hangar.db.availability import AvailabilityEngine
from hangar.db.billing import BillingReconciler
from hangar.db.catalog import ResourceCatalog
from hangar.db.ledger import BookingLedger
from hangar.db.models import ORMBase
from hangar.db.models import Allocation
from hangar.db.models import BookingRequest
from hangar.db.models import Extension
from hangar.db.models import LineItem
from hangar.db.models.allocation import CONFIRMED, HELD, OCCUPYING
from hangar.db.models.invoice import MAIN, PAID
from hangar.db.models import extension as extension_status
from hangar.db.models import request as status
from hangar.db.queries import Queries
from hangar.modules import errors
from hangar.modules.events import Outbox


from typing import Any
from typing import TypeVar
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable
    from collections.abc import Iterable
    from collections.abc import Mapping
    from datetime import datetime
    from sqlalchemy.orm import Query

    from hangar.context.core import Context
    from hangar.db.availability import AlternativeSlot
    from hangar.db.availability import Availability
    from hangar.db.availability import Calendar
    from hangar.db.models import Invoice
    from hangar.db.models import Resource

_T = TypeVar('_T')


log = logging.getLogger('hangar')


class Scheduler(ContextServicesMixin):
    """ The Scheduler drives booking requests through their lifecycle. It
    is the main part of the API.

    Every operation changing a request runs in a transaction of its own,
    which is committed before the operation returns. The operations
    changing the ledger (approvals, extensions, cancellations) hold the
    request and all the resources it touches while they check and commit.

    Notifications are sent through :mod:`hangar.modules.events` once the
    transaction has been committed.

    """

    def __init__(
        self,
        context: Context,
        timezone: str | None = None
    ):
        """ Initializes a new Scheduler instance.

        :context:
            The :class:`hangar.context.core.Context` this scheduler should
            operate on. Acquire a context by using
            :func:`hangar.context.registry.Registry.register_context`.

        :timezone:
            Dates passed to the scheduler that are not timezone-aware are
            assumed to be of this timezone. Defaults to
            :ref:`settings.timezone`.

        """
        self.context = context
        self.timezone = timezone or context.get_setting('timezone')

        assert isinstance(self.timezone, str)

        self.queries = Queries(context)
        self.catalog = ResourceCatalog(context, self.queries)
        self.availability = AvailabilityEngine(
            context, self.catalog, self.queries
        )
        self.ledger = BookingLedger(context, self.availability, self.queries)
        self.billing = BillingReconciler(context, self.queries)

    def setup_database(self) -> None:
        """ Creates the tables and indices required for hangar. This needs
        to be called once per database. Multiple invocations won't hurt but
        they are unnecessary.

        """
        ORMBase.metadata.create_all(self.session.bind)

    def _prepare_date(self, date: datetime) -> datetime:
        return sedate.standardize_date(date, self.timezone)

    def _prepare_range(
        self,
        start: datetime,
        end: datetime
    ) -> tuple[datetime, datetime]:
        return self._prepare_date(start), self._prepare_date(end)

    # Transactions

    def _attempt(
        self,
        request_id: int,
        operation: Callable[[Outbox], _T],
        touches_resources: bool
    ) -> _T:

        resource_ids: set[int] = set()
        if touches_resources:
            resource_ids = self.resource_ids_of(request_id)

        # nothing read before the locks are held may be trusted, so the
        # operation starts with a fresh transaction
        self.session.commit()

        outbox = Outbox()

        try:
            with self.ledger.hold(resource_ids):
                result = operation(outbox)
                self.session.commit()
        except (StaleDataError, DBAPIError) as e:
            self.session.rollback()

            if is_serialization_failure(e):
                raise errors.ConcurrencyConflict(str(e)) from e

            raise
        except BaseException:
            self.session.rollback()
            raise

        outbox.send(self.context)
        return result

    def _serialized(
        self,
        request_id: int,
        operation: Callable[[Outbox], _T],
        blocking: bool = True,
        touches_resources: bool = True
    ) -> _T:
        """ Runs the operation while holding the request (and the resources
        it touches), commits and sends the resulting notifications.

        Concurrency conflicts are retried up to :ref:`settings.commit_retries`
        times. If the request is held by another operation and blocking is
        False, the conflict is raised straight away.

        """
        retries = max(self.setting('commit_retries') or 0, 0)
        attempt = 0

        with self.locks.hold_request(request_id, blocking=blocking):
            while True:
                try:
                    return self._attempt(
                        request_id, operation, touches_resources
                    )
                except errors.ConcurrencyConflict:
                    if attempt >= retries:
                        log.warning(
                            f'Concurrency conflict on request {request_id}, '
                            f'giving up after {attempt + 1} attempt(s)'
                        )
                        raise

                    attempt += 1
                    log.warning(
                        f'Concurrency conflict on request {request_id}, '
                        f'retrying'
                    )

    def _transaction(self, operation: Callable[[Outbox], _T]) -> _T:
        outbox = Outbox()

        try:
            result = operation(outbox)
            self.session.commit()
        except BaseException:
            self.session.rollback()
            raise

        outbox.send(self.context)
        return result

    # Lookups

    def request_by_id(self, request_id: int) -> BookingRequest:
        request = self.session.get(BookingRequest, request_id)

        if request is None:
            raise errors.UnknownRequest(request_id)

        return request

    def extension_by_id(self, extension_id: int) -> Extension:
        extension = self.session.get(Extension, extension_id)

        if extension is None:
            raise errors.UnknownExtension(extension_id)

        return extension

    def requests(
        self,
        organization_id: str | None = None,
        statuses: Iterable[str] | None = None
    ) -> Query[BookingRequest]:

        query = self.session.query(BookingRequest)

        if organization_id is not None:
            query = query.filter(
                BookingRequest.organization_id == organization_id
            )

        if statuses is not None:
            query = query.filter(BookingRequest.status.in_(tuple(statuses)))

        return query.order_by(BookingRequest.id)

    def resource_ids_of(self, request_id: int) -> set[int]:
        query = self.session.query(LineItem.resource_id)
        query = query.filter(LineItem.request_id == request_id)

        return {resource_id for resource_id, in query}

    def allocations_for(
        self,
        request_id: int,
        statuses: Iterable[str] | None = None
    ) -> list[Allocation]:
        return self.ledger.allocations_for(
            request_id, tuple(statuses) if statuses is not None else None
        )

    # Availability

    def check_availability(
        self,
        resource_id: int,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        exclude_request_id: int | None = None,
        enforce_lead_time: bool = True
    ) -> Availability:
        """ Checks the availability of a resource, see
        :class:`hangar.db.availability.AvailabilityEngine`. Naive dates are
        in the scheduler's timezone.

        """
        start, end = self._prepare_range(start, end)
        return self.availability.check_availability(
            resource_id, start, end, quantity,
            exclude_request_id=exclude_request_id,
            enforce_lead_time=enforce_lead_time
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
        start, end = self._prepare_range(start, end)
        return self.availability.ensure_available(
            resource_id, start, end, quantity,
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
        start, end = self._prepare_range(start, end)
        return self.availability.get_calendar(
            resource_id, start, end, operating_hours_only
        )

    def find_alternative_slots(
        self,
        resource_id: int,
        start: datetime,
        duration: timedelta,
        quantity: int = 1,
        limit: int = 5
    ) -> list[AlternativeSlot]:
        return self.availability.find_alternative_slots(
            resource_id, self._prepare_date(start), duration, quantity, limit
        )

    # Drafting

    def create_request(
        self,
        organization_id: str,
        requested_by: str,
        title: str,
        description: str = '',
        items: Iterable[Mapping[str, Any]] = ()
    ) -> BookingRequest:
        """ Creates a new request in the DRAFT state.

        The items are optional, each one a dictionary with the arguments of
        :meth:`add_line_item` (except for the request id).

        """
        for field, value in (
            ('organization_id', organization_id),
            ('requested_by', requested_by),
            ('title', title),
        ):
            if not value:
                raise errors.MissingField(field)

        def create(outbox: Outbox) -> BookingRequest:
            request = BookingRequest(
                number=self.next_number('REQ'),
                organization_id=organization_id,
                requested_by=requested_by,
                title=title,
                currency=self.setting('currency'),
                tax_percent=self.setting('tax_percent'),
                description=description
            )
            self.session.add(request)

            for item in items:
                self._add_line_item(request, **item)

            self.session.flush()
            log.info(f'Created request {request.number}')

            return request

        return self._transaction(create)

    def _require(
        self,
        request: BookingRequest,
        states: Iterable[str],
        action: str
    ) -> None:
        if request.status not in states:
            raise errors.InvalidTransition(request.status, action)

    def _add_line_item(
        self,
        request: BookingRequest,
        resource_id: int,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        notes: str | None = None
    ) -> LineItem:

        self._require(request, (status.DRAFT, ), 'change')

        start, end = self._prepare_range(start, end)
        resource = self.catalog.get_resource(resource_id)

        # the lead time is checked on submission
        self.availability.validate(
            resource, start, end, quantity, enforce_lead_time=False
        )

        item = LineItem.class_for(resource)(
            resource, start, end, quantity, notes
        )
        request.line_items.append(item)
        request.recalculate()

        return item

    def add_line_item(
        self,
        request_id: int,
        resource_id: int,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        notes: str | None = None
    ) -> LineItem:
        """ Adds a line item to a draft. The rate of the resource is
        captured at this point.

        """
        def add(outbox: Outbox) -> LineItem:
            request = self.request_by_id(request_id)
            item = self._add_line_item(
                request, resource_id, start, end, quantity, notes
            )
            self.session.flush()
            return item

        return self._serialized(request_id, add, touches_resources=False)

    def remove_line_item(self, request_id: int, line_item_id: int) -> None:

        def remove(outbox: Outbox) -> None:
            request = self.request_by_id(request_id)
            self._require(request, (status.DRAFT, ), 'change')

            for item in request.line_items:
                if item.id == line_item_id:
                    request.line_items.remove(item)
                    break
            else:
                raise errors.NotFound(
                    f'Line item {line_item_id} not in {request.number}'
                )

            request.recalculate()

        self._serialized(request_id, remove, touches_resources=False)

    def delete_request(self, request_id: int) -> None:
        """ Deletes a request with all its records.

        Requests holding capacity or with paid invoices cannot be deleted,
        they have to be cancelled (and refunded) instead.

        """
        def delete(outbox: Outbox) -> None:
            request = self.request_by_id(request_id)

            if self.ledger.allocations_for(request.id, OCCUPYING):
                raise errors.RequestNotDeletable(
                    f'{request.number} still holds allocations'
                )

            for invoice in request.invoices:
                if invoice.has_payments or invoice.refund_pending:
                    raise errors.RequestNotDeletable(
                        f'{request.number} has a paid invoice '
                        f'({invoice.number})'
                    )

            query = self.session.query(Allocation)
            query = query.filter(Allocation.request_id == request.id)
            query.delete('fetch')

            self.session.delete(request)
            log.info(f'Deleted request {request.number}')

        self._serialized(
            request_id, delete, blocking=False, touches_resources=False
        )

    # Lifecycle

    def submit_request(self, request_id: int) -> BookingRequest:
        """ Submits a draft for review.

        Every line item is checked against the availability engine. The
        check is advisory, nothing is allocated until the request is
        approved.

        """
        def submit(outbox: Outbox) -> BookingRequest:
            request = self.request_by_id(request_id)
            self._require(request, (status.DRAFT, ), 'submit')

            if not request.line_items:
                raise errors.MissingField('line_items')

            for item in request.line_items:
                resource = self.catalog.get_resource(item.resource_id)
                self.availability.ensure(
                    resource, item.start, item.end, item.quantity,
                    exclude_request_id=request.id
                )

            request.status = status.SUBMITTED
            request.submitted_at = self.now()

            log.info(f'Submitted request {request.number}')
            outbox.add(
                'request-submitted', request.id,
                number=request.number,
                total=request.total
            )

            return request

        return self._serialized(request_id, submit, touches_resources=False)

    def begin_review(
        self,
        request_id: int,
        reviewed_by: str | None = None
    ) -> BookingRequest:

        def review(outbox: Outbox) -> BookingRequest:
            request = self.request_by_id(request_id)
            self._require(request, (status.SUBMITTED, ), 'review')

            request.status = status.UNDER_REVIEW
            request.reviewed_by = reviewed_by

            return request

        return self._serialized(request_id, review, touches_resources=False)

    def approve_request(
        self,
        request_id: int,
        reason: str | None = None,
        reviewed_by: str | None = None
    ) -> BookingRequest:
        """ Approves a submitted request.

        The availability of every line item is checked again, since other
        requests may have been approved in the meantime. Either all line
        items are allocated or none of them are.

        The main invoice is opened. If no payment is required, the request
        is scheduled right away.

        """
        def approve(outbox: Outbox) -> BookingRequest:
            request = self.request_by_id(request_id)
            self._require(request, status.REVIEWABLE, 'approve')

            allocations = []

            for item in request.line_items:
                resource = self.catalog.get_resource(item.resource_id)
                self.availability.ensure(
                    resource, item.start, item.end, item.quantity,
                    exclude_request_id=request.id
                )
                allocations.append(Allocation(
                    resource_id=resource.id,
                    request_id=request.id,
                    start=item.start,
                    end=item.end,
                    quantity=item.quantity,
                    status=CONFIRMED,
                    line_item_id=item.id
                ))

            self.ledger.commit(allocations)

            now = self.now()
            request.status = status.APPROVED
            request.approved_at = request.reviewed_at = now
            request.reviewed_by = reviewed_by or request.reviewed_by
            request.approval_note = reason
            request.recalculate()
            request.derive_schedule()

            log.info(f'Approved request {request.number}')
            outbox.add(
                'request-approved', request.id,
                start=request.scheduled_start,
                end=request.scheduled_end,
                reason=reason
            )

            invoice = self.billing.open_invoice(request, outbox)

            if not self.setting('payment_required') or invoice.status == PAID:
                self._schedule(request, outbox)

            return request

        return self._serialized(request_id, approve)

    def reject_request(
        self,
        request_id: int,
        reason: str,
        reviewed_by: str | None = None
    ) -> BookingRequest:
        """ Rejects a submitted request. Nothing was allocated for it, so
        there's nothing to release.

        """
        if not reason:
            raise errors.MissingField('reason')

        def reject(outbox: Outbox) -> BookingRequest:
            request = self.request_by_id(request_id)
            self._require(request, status.REVIEWABLE, 'reject')

            now = self.now()
            request.status = status.REJECTED
            request.rejected_at = request.reviewed_at = now
            request.reviewed_by = reviewed_by or request.reviewed_by
            request.rejection_reason = reason

            log.info(f'Rejected request {request.number}: {reason}')
            outbox.add('request-rejected', request.id, reason=reason)

            return request

        return self._serialized(request_id, reject)

    def _schedule(self, request: BookingRequest, outbox: Outbox) -> None:
        request.status = status.SCHEDULED

        log.info(f'Scheduled request {request.number}')
        outbox.add(
            'request-scheduled', request.id,
            start=request.scheduled_start,
            end=request.scheduled_end
        )

    def _expire_extensions(
        self,
        request: BookingRequest,
        message: str,
        outbox: Outbox
    ) -> None:
        now = self.now()

        for extension in request.pending_extensions:
            self.ledger.release(request.id, extension.id)

            extension.status = extension_status.REJECTED
            extension.reviewed_at = now
            extension.admin_message = message

            outbox.add(
                'extension-rejected', request.id,
                extension_id=extension.id,
                message=message
            )

    def advance(self, now: datetime | None = None) -> list[BookingRequest]:
        """ Moves the scheduled requests which have started to IN_PROGRESS
        and the running requests which have ended to COMPLETED. This is
        meant to be run periodically.

        Completing a request releases its allocations, they are kept for
        history.

        """
        current = now or self.now()
        request_ids = [
            r.id for r in self.queries.requests_to_advance(current)
        ]

        def advance_request(request_id: int) -> BookingRequest | None:

            def tick(outbox: Outbox) -> BookingRequest | None:
                request = self.request_by_id(request_id)
                changed = False

                assert request.scheduled_start is not None
                assert request.scheduled_end is not None

                if (
                    request.status == status.SCHEDULED
                    and request.scheduled_start <= current
                ):
                    request.status = status.IN_PROGRESS
                    request.started_at = current
                    changed = True

                    log.info(f'Request {request.number} is in progress')
                    outbox.add('request-started', request.id)

                if (
                    request.status == status.IN_PROGRESS
                    and request.scheduled_end <= current
                ):
                    released = self.ledger.release(request.id)
                    self._expire_extensions(
                        request, 'The request has been completed', outbox
                    )

                    request.status = status.COMPLETED
                    request.completed_at = current
                    changed = True

                    log.info(f'Request {request.number} is completed')
                    outbox.add(
                        'request-completed', request.id,
                        released=[a.id for a in released]
                    )

                return request if changed else None

            return self._serialized(request_id, tick)

        advanced = (advance_request(request_id) for request_id in request_ids)
        return [request for request in advanced if request is not None]

    def cancel_request(
        self,
        request_id: int,
        reason: str | None = None
    ) -> BookingRequest:
        """ Cancels a request, releasing all its allocations.

        Unpaid invoices are cancelled, paid ones are flagged for a refund.
        Requests which have not been approved yet may be withdrawn as well.

        If another operation is working on the request (an approval for
        example), a :class:`hangar.modules.errors.ConcurrencyConflict` is
        raised right away. The cancellation may be retried once the other
        operation is done.

        """
        cancellable = (
            status.DRAFT,
            status.SUBMITTED,
            status.UNDER_REVIEW,
            status.APPROVED,
            status.SCHEDULED
        )

        def cancel(outbox: Outbox) -> BookingRequest:
            request = self.request_by_id(request_id)
            self._require(request, cancellable, 'cancel')

            released = self.ledger.release(request.id)
            self._expire_extensions(
                request, 'The request has been cancelled', outbox
            )
            self.billing.cancel_invoices(request, outbox)

            request.status = status.CANCELLED
            request.cancelled_at = self.now()
            request.cancellation_reason = reason

            log.info(
                f'Cancelled request {request.number}, '
                f'released {len(released)} allocation(s)'
            )
            outbox.add(
                'request-cancelled', request.id,
                reason=reason,
                released=[a.id for a in released]
            )

            return request

        return self._serialized(request_id, cancel, blocking=False)

    # Extensions

    def _extension_minutes(self, hours: Decimal | float | int) -> int:
        try:
            minutes = Decimal(str(hours)) * 60
        except InvalidOperation as e:
            raise errors.ValidationError(f'Invalid hours: {hours}') from e

        if minutes <= 0 or minutes != minutes.to_integral_value():
            raise errors.ValidationError(
                f'An extension has to last a positive number of minutes, '
                f'got {hours} hour(s)'
            )

        return int(minutes)

    def _extension_alternatives(
        self,
        resource_id: int,
        start: datetime,
        duration: timedelta,
        quantity: int
    ) -> list[AlternativeSlot]:
        try:
            return self.availability.find_alternative_slots(
                resource_id, start, duration, quantity
            )
        except errors.NotFound:
            return []

    def _extension_allocations(
        self,
        request: BookingRequest,
        extension: Extension,
        allocation_status: str,
        hold_expires: datetime | None = None
    ) -> list[Allocation]:
        """ Checks the time added by the extension for every line item and
        returns the allocations covering it.

        The failures are collected per resource and raised together, along
        with alternative slots for each blocked resource.

        """
        allocations = []
        failures: dict[int, errors.AvailabilityConflict] = {}
        alternatives: dict[int, list[AlternativeSlot]] = {}

        for item in request.line_items:
            start = item.current_end
            end = start + extension.duration

            try:
                resource = self.catalog.get_resource(item.resource_id)
                self.availability.validate_length(resource, end - item.start)
                self.availability.ensure(
                    resource, start, end, item.quantity,
                    enforce_lead_time=False,
                    enforce_length=False
                )
            except errors.AvailabilityConflict as e:
                failures[item.resource_id] = e
                alternatives[item.resource_id] = self._extension_alternatives(
                    item.resource_id, start, extension.duration, item.quantity
                )
                continue

            allocations.append(Allocation(
                resource_id=item.resource_id,
                request_id=request.id,
                start=start,
                end=end,
                quantity=item.quantity,
                status=allocation_status,  # type:ignore[arg-type]
                line_item_id=item.id,
                extension_id=extension.id,
                hold_expires=hold_expires
            ))

        if failures:
            log.warning(
                f'Extension of {request.number} blocked by resource(s) '
                f'{", ".join(str(r) for r in sorted(failures))}'
            )
            raise errors.ExtensionUnavailable(failures, alternatives)

        return allocations

    def _require_extendable(self, request: BookingRequest) -> None:
        self._require(request, status.EXTENDABLE, 'extend')

        assert request.scheduled_end is not None
        if request.scheduled_end <= self.now():
            raise errors.StateError(
                f'{request.number} has already ended'
            )

    def request_extension(
        self,
        request_id: int,
        hours: Decimal | float | int,
        reason: str,
        requested_by: str | None = None,
        auto_approve: bool = False
    ) -> Extension:
        """ Requests additional time at the end of an approved request.

        Only the added time is checked, for every line item of the request.
        If any resource is not available, an
        :class:`hangar.modules.errors.ExtensionUnavailable` listing every
        blocking resource is raised.

        The extension waits for an admin's decision, unless auto_approve
        is given. If :ref:`settings.hold_extensions` is enabled, the added
        time is held for the pending extension.

        """
        minutes = self._extension_minutes(hours)

        if not reason:
            raise errors.MissingField('reason')

        def extend(outbox: Outbox) -> Extension:
            request = self.request_by_id(request_id)
            self._require_extendable(request)

            if request.pending_extensions:
                raise errors.StateError(
                    f'{request.number} already has a pending extension'
                )

            assert request.scheduled_end is not None
            delta = timedelta(minutes=minutes)
            now = self.now()

            extension = Extension(
                minutes=minutes,
                reason=reason,
                requested_at=now,
                previous_end=request.scheduled_end,
                price_delta=sum(
                    (i.extension_charge(delta) for i in request.line_items),
                    start=Decimal('0.00')
                ),
                requested_by=requested_by
            )
            request.extensions.append(extension)
            self.session.flush()

            hold = self.setting('hold_extensions') and not auto_approve
            allocations = self._extension_allocations(
                request, extension,
                HELD if hold else CONFIRMED,
                hold_expires=(
                    now + timedelta(minutes=self.setting('hold_minutes'))
                ) if hold else None
            )

            if hold:
                self.ledger.commit(allocations)

            log.info(
                f'Requested extension of {request.number} '
                f'by {minutes} minute(s)'
            )
            outbox.add(
                'extension-requested', request.id,
                extension_id=extension.id,
                hours=Decimal(minutes) / 60,
                price_delta=extension.price_delta,
                reason=reason
            )

            if auto_approve:
                self._approve_extension(
                    request, extension, outbox, allocations=allocations
                )

            return extension

        return self._serialized(request_id, extend)

    def _approve_extension(
        self,
        request: BookingRequest,
        extension: Extension,
        outbox: Outbox,
        reviewed_by: str | None = None,
        allocations: list[Allocation] | None = None
    ) -> Invoice:

        held = [
            a for a in self.ledger.allocations_for(request.id, (HELD, ))
            if a.extension_id == extension.id
        ]

        if held and len(held) == len(request.line_items):
            for allocation in held:
                allocation.confirm()
        else:
            # some of the holds expired, the time has to be checked again
            for allocation in held:
                allocation.release()

            if allocations is None:
                allocations = self._extension_allocations(
                    request, extension, CONFIRMED
                )

            self.ledger.commit(allocations)

        for item in request.line_items:
            item.extended_minutes = (item.extended_minutes or 0) + (
                extension.minutes
            )

        extension.status = extension_status.APPROVED
        extension.reviewed_at = self.now()
        extension.reviewed_by = reviewed_by

        request.recalculate()
        request.derive_schedule()
        self.session.flush()

        invoice = self.billing.open_supplementary_invoice(
            request, extension, outbox
        )

        log.info(
            f'Approved extension of {request.number}, '
            f'now ending {request.scheduled_end}'
        )
        outbox.add(
            'extension-approved', request.id,
            extension_id=extension.id,
            end=request.scheduled_end,
            invoice_id=invoice.id
        )

        return invoice

    def _pending_extension(self, extension_id: int) -> Extension:
        extension = self.extension_by_id(extension_id)

        if not extension.is_pending:
            raise errors.StateError(
                f'Extension {extension_id} is {extension.status}'
            )

        return extension

    def approve_extension(
        self,
        extension_id: int,
        reviewed_by: str | None = None
    ) -> Extension:
        """ Approves a pending extension. The added time is checked again
        (unless it is still held), allocated, billed through a supplementary
        invoice and the scheduled end of the request is moved.

        """
        request_id = self.extension_by_id(extension_id).request_id

        def approve(outbox: Outbox) -> Extension:
            extension = self._pending_extension(extension_id)
            request = self.request_by_id(request_id)
            self._require_extendable(request)

            self._approve_extension(
                request, extension, outbox, reviewed_by=reviewed_by
            )

            return extension

        return self._serialized(request_id, approve)

    def reject_extension(
        self,
        extension_id: int,
        message: str,
        reviewed_by: str | None = None
    ) -> Extension:
        """ Rejects a pending extension. The request stays as it is, held
        time is released.

        """
        if not message:
            raise errors.MissingField('message')

        request_id = self.extension_by_id(extension_id).request_id

        def reject(outbox: Outbox) -> Extension:
            extension = self._pending_extension(extension_id)
            self.ledger.release(request_id, extension.id)

            extension.status = extension_status.REJECTED
            extension.reviewed_at = self.now()
            extension.reviewed_by = reviewed_by
            extension.admin_message = message

            log.info(f'Rejected extension {extension.id}: {message}')
            outbox.add(
                'extension-rejected', request_id,
                extension_id=extension.id,
                message=message
            )

            return extension

        return self._serialized(request_id, reject)

    def release_expired_holds(
        self,
        now: datetime | None = None
    ) -> list[Allocation]:
        """ Releases the capacity held for pending extensions once the hold
        has expired. The extensions stay pending, approving them checks the
        time again. This is meant to be run periodically.

        """
        current = now or self.now()
        request_ids = sorted({
            a.request_id for a in self.queries.expired_holds(current)
        })

        def release_request(request_id: int) -> list[Allocation]:

            def release(outbox: Outbox) -> list[Allocation]:
                expired = [
                    a for a in self.ledger.allocations_for(request_id, (HELD,))
                    if a.is_expired(current)
                ]

                for allocation in expired:
                    allocation.release()

                return expired

            return self._serialized(request_id, release)

        released = [
            allocation
            for request_id in request_ids
            for allocation in release_request(request_id)
        ]

        if released:
            log.info(f'Released {len(released)} expired hold(s)')

        return released

    # Billing

    def confirm_payment(
        self,
        invoice_id: int,
        paid_amount: Decimal | int | str,
        transaction_id: str
    ) -> Invoice:
        """ Called by the payment collaborator once a payment has been
        captured. An approved request is scheduled as soon as its main
        invoice is paid.

        """
        request_id = self.billing.invoice_by_id(invoice_id).request_id

        def confirm(outbox: Outbox) -> Invoice:
            invoice = self.billing.capture(
                self.billing.invoice_by_id(invoice_id),
                paid_amount, transaction_id, outbox
            )

            request = self.request_by_id(request_id)
            if (
                invoice.kind == MAIN
                and invoice.status == PAID
                and request.status == status.APPROVED
            ):
                self._schedule(request, outbox)

            return invoice

        return self._serialized(request_id, confirm, touches_resources=False)

    def payment_failed(self, invoice_id: int, reason: str) -> None:
        self.billing.payment_failed(invoice_id, reason)

    def mark_overdue(self, now: datetime | None = None) -> list[Invoice]:
        return self.billing.mark_overdue(now)

    def resource(self, resource_id: int) -> Resource:
        return self.catalog.get_resource(resource_id, include_inactive=True)
