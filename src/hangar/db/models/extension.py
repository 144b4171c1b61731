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


from typing import Literal
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from typing_extensions import TypeAlias

    from hangar.db.models import BookingRequest


ExtensionStatus: TypeAlias = Literal['pending', 'approved', 'rejected']

PENDING = 'pending'
APPROVED = 'approved'
REJECTED = 'rejected'


class Extension(TimestampMixin, ORMBase, OtherModels):
    """ Additional time appended to the end of an approved request.

    The price delta is the charge of the additional time, before tax. It is
    billed through a supplementary invoice once the extension is approved.

    """

    __tablename__ = 'extensions'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    request_id: Mapped[int] = mapped_column(
        ForeignKey('requests.id', ondelete='CASCADE')
    )

    #: the additional duration
    minutes: Mapped[int]

    reason: Mapped[str]

    status: Mapped[ExtensionStatus] = mapped_column(
        types.Enum(PENDING, APPROVED, REJECTED, name='extension_status'),
        default=PENDING
    )

    requested_by: Mapped[str | None]
    requested_at: Mapped[datetime]

    #: the scheduled end of the request when the extension was requested
    previous_end: Mapped[datetime]
    new_end: Mapped[datetime]

    price_delta: Mapped[Decimal]

    reviewed_at: Mapped[datetime | None]
    reviewed_by: Mapped[str | None]
    admin_message: Mapped[str | None]

    request: Mapped[BookingRequest] = relationship(
        back_populates='extensions'
    )

    def __init__(
        self,
        minutes: int,
        reason: str,
        requested_at: datetime,
        previous_end: datetime,
        price_delta: Decimal,
        requested_by: str | None = None
    ) -> None:
        self.minutes = minutes
        self.reason = reason
        self.requested_at = requested_at
        self.previous_end = previous_end
        self.new_end = previous_end + timedelta(minutes=minutes)
        self.price_delta = price_delta
        self.requested_by = requested_by
        self.status = PENDING

    def __repr__(self) -> str:
        return f'<Extension {self.id} +{self.minutes}min {self.status}>'

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.minutes)

    @property
    def is_pending(self) -> bool:
        return self.status == PENDING
