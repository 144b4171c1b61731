from __future__ import annotations

import sedate

from datetime import datetime
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
    from sedate.types import TzInfoOrName
    from typing_extensions import TypeAlias

    from hangar.db.models import Resource


AllocationStatus: TypeAlias = Literal['held', 'confirmed', 'released']


HELD = 'held'
CONFIRMED = 'confirmed'
RELEASED = 'released'

#: allocations with these states count against the capacity of a resource
OCCUPYING = (HELD, CONFIRMED)


class Allocation(TimestampMixin, ORMBase, OtherModels):
    """Describes a committed reservation of a resource's capacity.

    An allocation covers the half-open interval ``[start, end)``, so an
    allocation ending at 12:00 and another starting at 12:00 do not overlap.

    Allocations are never deleted once committed. Cancelling or completing
    a request releases them, which keeps them around for history but frees
    the capacity.

    Allocations created through an extension carry the id of the extension.
    They adjoin the allocation of the same line item they extend.

    """

    __tablename__ = 'allocations'

    #: the id of the allocation, autoincremented
    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    resource_id: Mapped[int] = mapped_column(ForeignKey('resources.id'))

    request_id: Mapped[int] = mapped_column(
        ForeignKey('requests.id', ondelete='CASCADE')
    )

    line_item_id: Mapped[int | None] = mapped_column(
        ForeignKey('line_items.id', ondelete='SET NULL')
    )

    extension_id: Mapped[int | None] = mapped_column(
        ForeignKey('extensions.id', ondelete='SET NULL')
    )

    start: Mapped[datetime]

    end: Mapped[datetime]

    #: the number of capacity units taken
    quantity: Mapped[int] = mapped_column(default=1)

    status: Mapped[AllocationStatus] = mapped_column(
        types.Enum(
            HELD, CONFIRMED, RELEASED,
            name='allocation_status'
        ),
        default=CONFIRMED
    )

    #: HELD allocations are released once this date has passed
    hold_expires: Mapped[datetime | None]

    #: optimistic concurrency counter, a stale write raises on flush
    version: Mapped[int] = mapped_column(default=1)

    resource: Mapped[Resource] = relationship(lazy='joined')

    __table_args__ = (
        Index('allocation_resource_ix', 'resource_id', 'status', 'start'),
        Index('allocation_request_ix', 'request_id'),
    )

    __mapper_args__ = {
        'version_id_col': version
    }

    def __init__(
        self,
        resource_id: int,
        request_id: int,
        start: datetime,
        end: datetime,
        quantity: int = 1,
        status: AllocationStatus = CONFIRMED,
        line_item_id: int | None = None,
        extension_id: int | None = None,
        hold_expires: datetime | None = None
    ) -> None:
        # NOTE: Avoid auto-generated __init__, the mypy plugin is
        #       deprecated and cannot be used with newer versions.
        self.resource_id = resource_id
        self.request_id = request_id
        self.start = start
        self.end = end
        self.quantity = quantity
        self.status = status
        self.line_item_id = line_item_id
        self.extension_id = extension_id
        self.hold_expires = hold_expires

    def __repr__(self) -> str:
        return (
            f'<Allocation {self.id} resource={self.resource_id} '
            f'{self.start.isoformat()} - {self.end.isoformat()} '
            f'x{self.quantity} {self.status}>'
        )

    @property
    def is_occupying(self) -> bool:
        return self.status in OCCUPYING

    @property
    def is_held(self) -> bool:
        return self.status == HELD

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """ True if the allocation shares at least one instant with the
        given half-open interval.

        """
        return utils.overlaps(start, end, self.start, self.end)

    def is_expired(self, now: datetime) -> bool:
        return (
            self.status == HELD
            and self.hold_expires is not None
            and self.hold_expires <= now
        )

    def release(self) -> None:
        self.status = RELEASED
        self.hold_expires = None

    def confirm(self) -> None:
        self.status = CONFIRMED
        self.hold_expires = None

    def display_start(self, timezone: TzInfoOrName) -> datetime:
        return sedate.to_timezone(self.start, timezone)

    def display_end(self, timezone: TzInfoOrName) -> datetime:
        return sedate.to_timezone(self.end, timezone)
