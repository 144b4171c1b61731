from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy import ForeignKey
from sqlalchemy import types
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship

from hangar.db.models.base import ORMBase
from hangar.db.models.other import OtherModels
from hangar.db.models.timestamp import TimestampMixin
from hangar.modules import utils


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from hangar.db.models import BookingRequest
    from hangar.db.models import Resource
    from hangar.db.models.resource import CapacityModel
    from hangar.db.models.resource import ResourceKind


class LineItem(TimestampMixin, ORMBase, OtherModels):
    """ One resource booked as part of a request.

    The rate (or unit price) of the resource is captured when the item is
    added, later changes to the catalog don't affect the request anymore.

    Approved extensions move the end of every line item. The original end
    is kept, the extended part is tracked separately since it is billed
    through the extension.

    """

    __tablename__ = 'line_items'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    #: the polymorphic type of the line item
    type: Mapped[str] = mapped_column(types.String(20))

    request_id: Mapped[int] = mapped_column(
        ForeignKey('requests.id', ondelete='CASCADE')
    )

    resource_id: Mapped[int] = mapped_column(ForeignKey('resources.id'))

    start: Mapped[datetime]

    end: Mapped[datetime]

    quantity: Mapped[int] = mapped_column(default=1)

    rate_snapshot: Mapped[Decimal]

    subtotal: Mapped[Decimal]

    #: the minutes added by approved extensions
    extended_minutes: Mapped[int] = mapped_column(default=0)

    notes: Mapped[str | None]

    request: Mapped[BookingRequest] = relationship(
        back_populates='line_items'
    )

    resource: Mapped[Resource] = relationship(lazy='joined')

    __mapper_args__ = {
        'polymorphic_identity': 'line_item',
        'polymorphic_on': 'type'
    }

    kind = ''

    def __init__(
        self,
        resource: Resource,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        notes: str | None = None
    ) -> None:
        self.resource = resource
        self.resource_id = resource.id
        self.start = start
        self.end = end
        self.quantity = quantity
        self.notes = notes
        self.rate_snapshot = utils.money(resource.unit_rate)
        self.extended_minutes = 0
        self.subtotal = self.charge()

    def __repr__(self) -> str:
        return (
            f'<{self.__class__.__name__} {self.resource_id} '
            f'{self.start.isoformat()} - {self.end.isoformat()} '
            f'x{self.quantity}>'
        )

    @staticmethod
    def class_for(resource: Resource) -> type[LineItem]:
        return {
            'lab': LabLine,
            'component': ComponentLine,
            'staff': StaffLine,
        }[resource.resource_kind()]

    def resource_kind(self) -> ResourceKind:
        return self.kind  # type:ignore[return-value]

    def capacity_model(self) -> CapacityModel:
        return 'concurrent'

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def current_end(self) -> datetime:
        """ The end of the line item including approved extensions. """
        return self.end + timedelta(minutes=self.extended_minutes or 0)

    def charge(self) -> Decimal:
        """ The charge of the line item as originally requested. """
        return self.charge_for(self.duration)

    def charge_for(self, duration: timedelta) -> Decimal:
        """ The charge of the line item if it lasted for the given time. """
        return utils.money(
            self.rate_snapshot * utils.hours(duration) * self.quantity
        )

    def extension_charge(self, duration: timedelta) -> Decimal:
        """ The additional charge of extending the line item. """
        return self.charge_for(duration)


class LabLine(LineItem):
    __mapper_args__ = {'polymorphic_identity': 'lab'}

    kind = 'lab'


class StaffLine(LineItem):
    __mapper_args__ = {'polymorphic_identity': 'staff'}

    kind = 'staff'


class ComponentLine(LineItem):
    """ Components are charged per unit, no matter how long they're used. """

    __mapper_args__ = {'polymorphic_identity': 'component'}

    kind = 'component'

    def capacity_model(self) -> CapacityModel:
        return 'pooled'

    def charge_for(self, duration: timedelta) -> Decimal:
        return utils.money(self.rate_snapshot * self.quantity)

    def extension_charge(self, duration: timedelta) -> Decimal:
        return utils.money(0)
