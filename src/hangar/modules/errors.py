from __future__ import annotations

from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Mapping
    from collections.abc import Sequence
    from datetime import datetime
    from hangar.db.availability import AlternativeSlot
    from hangar.db.models import Allocation


class HangarError(Exception):
    pass


class ContextAlreadyExists(HangarError):
    pass


class UnknownContext(HangarError):
    pass


class ContextIsLocked(HangarError):
    pass


class UnknownService(HangarError):
    pass


class NotFound(HangarError):
    pass


# Malformed input, rejected synchronously and never retried

class ValidationError(HangarError):
    pass


class InvalidInterval(ValidationError):

    __slots__ = ('start', 'end')

    def __init__(self, start: datetime, end: datetime):
        super().__init__(f'{end} is not after {start}')
        self.start = start
        self.end = end


class InvalidQuantity(ValidationError):
    pass


class MissingField(ValidationError):

    __slots__ = ('field',)

    def __init__(self, field: str):
        super().__init__(f'{field} is required')
        self.field = field


class NotTimezoneAware(ValidationError):
    pass


class BookingTooShort(ValidationError):
    pass


class BookingTooLong(ValidationError):
    pass


# The resource cannot take the booking, the caller may try another interval

class AvailabilityConflict(HangarError):

    __slots__ = ('resource_id', 'conflicts')

    def __init__(
        self,
        resource_id: int | None = None,
        message: str | None = None,
        conflicts: Sequence[Allocation] = ()
    ):
        super().__init__(message or self.__class__.__name__)
        self.resource_id = resource_id
        self.conflicts = list(conflicts)


class MisalignedSlot(AvailabilityConflict):
    pass


class OutsideOperatingWindow(AvailabilityConflict):
    pass


class InsufficientLeadTime(AvailabilityConflict):
    pass


class ResourceInactive(AvailabilityConflict, NotFound):
    pass


class UnderMaintenance(AvailabilityConflict):
    pass


class CapacityExceeded(AvailabilityConflict):
    pass


class ExtensionUnavailable(AvailabilityConflict):
    """ Raised when an extension cannot be granted. Holds the reason per
    resource so the requester knows which resource blocked the extension,
    together with the alternative slots found for each blocked resource.

    """

    __slots__ = ('failures', 'alternatives')

    def __init__(
        self,
        failures: Mapping[int, AvailabilityConflict],
        alternatives: Mapping[int, list[AlternativeSlot]] | None = None
    ):
        conflicts = [c for f in failures.values() for c in f.conflicts]
        super().__init__(
            message='Extension blocked by resource(s) {}'.format(
                ', '.join(str(r) for r in sorted(failures))
            ),
            conflicts=conflicts
        )
        self.failures = dict(failures)
        self.alternatives = dict(alternatives or {})


# Lost a race in the ledger, safe to retry

class ConcurrencyConflict(HangarError):
    pass


# The requested transition is impossible in the current state

class StateError(HangarError):
    pass


class InvalidTransition(StateError):

    __slots__ = ('current', 'action')

    def __init__(self, current: str, action: str):
        super().__init__(f'Cannot {action} a request which is {current}')
        self.current = current
        self.action = action


class InvoiceStateError(StateError):
    pass


class RequestNotDeletable(StateError):
    pass


class UnknownResource(NotFound):
    pass


class UnknownRequest(NotFound):
    pass


class UnknownInvoice(NotFound):
    pass


class UnknownExtension(NotFound):
    pass
