from __future__ import annotations

from datetime import time
from decimal import Decimal
from sqlalchemy import types
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column
from sqlalchemy.schema import Index

from hangar.db.models.base import ORMBase
from hangar.db.models.timestamp import TimestampMixin


from typing import Any
from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from typing_extensions import TypeAlias


ResourceKind: TypeAlias = Literal['lab', 'component', 'staff']
CapacityModel: TypeAlias = Literal['concurrent', 'pooled']


class Resource(TimestampMixin, ORMBase):
    """ Describes something that can be booked: a lab (or a machine in it),
    a component or a staff member.

    Resources are maintained by the catalog administration. The scheduler
    only ever reads them.

    """

    __tablename__ = 'resources'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    #: the polymorphic type of the resource
    type: Mapped[str] = mapped_column(types.String(20))

    #: the unique code of the resource (e.g. 'WT-01' for a wind tunnel)
    code: Mapped[str] = mapped_column(types.String(64), unique=True)

    name: Mapped[str]

    #: the site the resource is located at, opaque to hangar
    site_id: Mapped[str | None]

    #: the number of concurrent bookings the resource supports, 1 means
    #: exclusive use
    capacity: Mapped[int] = mapped_column(default=1)

    #: the timezone the operating window is defined in
    timezone: Mapped[str] = mapped_column(default='Asia/Kolkata')

    #: daily operating window, if both are missing the resource may be
    #: booked around the clock. A closing time of 00:00 means midnight.
    opens_at: Mapped[time | None]
    closes_at: Mapped[time | None]

    #: weekdays (0 = monday) the resource operates on, all if empty
    operating_days: Mapped[list[int] | None] = mapped_column(types.JSON)

    #: the raster bookings have to fit in, relative to the opening time
    slot_granularity_minutes: Mapped[int] = mapped_column(default=60)

    #: the number of days a booking has to be made in advance
    lead_time_days: Mapped[int] = mapped_column(default=0)

    min_booking_minutes: Mapped[int | None]
    max_booking_minutes: Mapped[int | None]

    #: hourly rate of labs and staff
    rate_per_hour: Mapped[Decimal | None]

    #: inactive resources are not bookable
    active: Mapped[bool] = mapped_column(default=True)

    #: Custom data reserved for the user
    data: Mapped[dict[str, Any] | None]

    __table_args__ = (
        Index('resource_type_active_ix', 'type', 'active'),
    )

    __mapper_args__ = {
        'polymorphic_identity': 'resource',
        'polymorphic_on': 'type'
    }

    kind = ''

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.code}>'

    def resource_kind(self) -> ResourceKind:
        return self.kind  # type:ignore[return-value]

    def capacity_model(self) -> CapacityModel:
        return 'concurrent'

    @property
    def capacity_units(self) -> int:
        """ The number of units the availability sweep checks against. """
        return self.capacity or 1

    @property
    def unit_rate(self) -> Decimal:
        """ The rate captured on line items booking this resource. """
        return self.rate_per_hour or Decimal(0)


class Lab(Resource):
    """ A lab or a machine inside a lab, booked by the hour. """

    __mapper_args__ = {'polymorphic_identity': 'lab'}

    kind = 'lab'


class Staff(Resource):
    """ A staff member assisting with a test, booked by the hour. """

    __mapper_args__ = {'polymorphic_identity': 'staff'}

    kind = 'staff'

    email: Mapped[str | None] = mapped_column(types.Unicode(254))
    skills: Mapped[list[str] | None] = mapped_column(types.JSON)


class Component(Resource):
    """ A component taken from a pooled stock.

    Components are not tracked instant by instant like labs are. A booking
    takes units out of the available quantity for the duration of the
    booking, the sweep runs against that pool.

    """

    __mapper_args__ = {'polymorphic_identity': 'component'}

    kind = 'component'

    stock_quantity: Mapped[int | None]
    available_quantity: Mapped[int | None]
    price_per_unit: Mapped[Decimal | None]

    def capacity_model(self) -> CapacityModel:
        return 'pooled'

    @property
    def capacity_units(self) -> int:
        return self.available_quantity or 0

    @property
    def unit_rate(self) -> Decimal:
        return self.price_per_unit or Decimal(0)
