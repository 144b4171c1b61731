""" Events are called by the :class:`hangar.db.scheduler.Scheduler` whenever
a request, an extension or an invoice changes its state. They are the
notifications an external notifier (email, SMS) consumes. Hangar itself
never formats a message.

The implementation is very simple:

To add an event::

    from hangar.modules import events

    def on_request_approved(context, notification):
        pass

    events.on_request_approved.append(on_request_approved)

To remove the same event::

    events.on_request_approved.remove(on_request_approved)

Events are called in the order they were added, always after the transaction
that caused them has been committed. Every event receives the
:class:`hangar.context.core.Context` that was used and a
:class:`Notification`.

A failing handler does not stop the other handlers and does not undo the
transition. The failure is logged and the delivery is kept in
:data:`undelivered` until :func:`redeliver` is called. Nothing calls
:func:`redeliver` on its own, applications have to run it periodically
(for example next to :meth:`hangar.db.scheduler.Scheduler.mark_overdue`),
otherwise :data:`undelivered` keeps growing as long as a handler fails.
"""
from __future__ import annotations

import logging
import threading


from typing import Any
from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable

    from hangar.context.core import Context

    Handler = Callable[[Context, 'Notification'], object]


log = logging.getLogger('hangar')


class Notification(NamedTuple):
    type: str
    request_id: int
    payload: dict[str, Any]


class Delivery(NamedTuple):
    handler: Handler
    context: Context
    notification: Notification


undelivered: list[Delivery] = []
""" The deliveries which failed, in the order they failed. Deliveries
succeeding on :func:`redeliver` are removed from it.

"""

_undelivered_lock = threading.Lock()


class Event(list['Handler']):
    """Event subscription. By http://stackoverflow.com/a/2022629

    A list of callable objects. Calling an instance of this will cause a
    call to each item in the list in ascending order by index.

    """

    def __call__(self, context: Context, notification: Notification) -> None:
        for handler in self:
            deliver(handler, context, notification)


def deliver(
    handler: Handler,
    context: Context,
    notification: Notification
) -> bool:
    try:
        handler(context, notification)
    except Exception:
        log.exception(
            'Delivering %s for request %s failed, queued for redelivery',
            notification.type, notification.request_id
        )
        with _undelivered_lock:
            undelivered.append(Delivery(handler, context, notification))
        return False

    return True


def redeliver() -> int:
    """ Retries all undelivered notifications once. Returns the number of
    notifications which could be delivered. The ones failing again are
    queued anew.

    """
    with _undelivered_lock:
        pending = undelivered[:]
        del undelivered[:]

    return sum(1 for d in pending if deliver(*d))


on_request_submitted = Event()
""" Called when a draft is submitted (``request-submitted``). """

on_request_approved = Event()
""" Called when a request is approved (``request-approved``). The payload
contains the scheduled ``start`` and ``end`` and the admin's ``reason``.

"""

on_request_rejected = Event()
""" Called when a request is rejected (``request-rejected``). The payload
contains the ``reason``.

"""

on_request_scheduled = Event()
""" Called when an approved request is scheduled (``request-scheduled``),
either because its invoice was paid or because no payment is required.

"""

on_request_started = Event()
""" Called when a scheduled request reaches its start (``request-started``).
"""

on_request_completed = Event()
""" Called when a request passes its scheduled end
(``request-completed``).

"""

on_request_cancelled = Event()
""" Called when a request is cancelled (``request-cancelled``). The payload
contains the ``reason`` and the released allocation ids.

"""

on_extension_requested = Event()
""" Called when an extension is requested (``extension-requested``). The
payload contains the ``extension_id``, the ``hours`` and the ``price_delta``.

"""

on_extension_approved = Event()
""" Called when an extension is approved (``extension-approved``). The
payload contains the ``extension_id``, the new ``end`` and the
supplementary ``invoice_id``.

"""

on_extension_rejected = Event()
""" Called when an extension is rejected (``extension-rejected``). The
payload contains the ``extension_id`` and the admin's ``message``.

"""

on_invoice_opened = Event()
""" Called when an invoice is opened (``invoice-opened``). """

on_invoice_paid = Event()
""" Called when a payment was captured (``invoice-paid``). The payload
contains the ``invoice_id``, the invoice ``status`` and the
``transaction_id``.

"""

on_invoice_overdue = Event()
""" Called for each invoice the overdue sweep marks (``invoice-overdue``).
"""

on_invoice_cancelled = Event()
""" Called when an unpaid invoice is cancelled (``invoice-cancelled``). """

on_refund_requested = Event()
""" Called when a paid invoice of a cancelled request needs a refund
(``refund-requested``).

"""

on_payment_failed = Event()
""" Called when the payment collaborator reports a failed capture
(``payment-failed``). The invoice stays unpaid.

"""


def by_type() -> dict[str, Event]:
    """ Returns the events keyed by their notification type. """

    return {
        'request-submitted': on_request_submitted,
        'request-approved': on_request_approved,
        'request-rejected': on_request_rejected,
        'request-scheduled': on_request_scheduled,
        'request-started': on_request_started,
        'request-completed': on_request_completed,
        'request-cancelled': on_request_cancelled,
        'extension-requested': on_extension_requested,
        'extension-approved': on_extension_approved,
        'extension-rejected': on_extension_rejected,
        'invoice-opened': on_invoice_opened,
        'invoice-paid': on_invoice_paid,
        'invoice-overdue': on_invoice_overdue,
        'invoice-cancelled': on_invoice_cancelled,
        'refund-requested': on_refund_requested,
        'payment-failed': on_payment_failed,
    }


def emit(context: Context, notification: Notification) -> None:
    by_type()[notification.type](context, notification)


class Outbox(list[Notification]):
    """ Collects the notifications of a transaction. They are only sent
    once the transaction has been committed, a rolled back transaction
    discards them.

    """

    def add(self, type: str, request_id: int, **payload: Any) -> None:
        self.append(Notification(type, request_id, payload))

    def send(self, context: Context) -> None:
        notifications = self[:]
        del self[:]

        for notification in notifications:
            emit(context, notification)
