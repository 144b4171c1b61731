from __future__ import annotations

import sedate

from datetime import datetime
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import object_session
from sqlalchemy.schema import Index

from hangar.db.models.base import ORMBase
from hangar.db.models.other import OtherModels
from hangar.db.models.timestamp import TimestampMixin


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from sedate.types import TzInfoOrName

    from hangar.db.models import Resource


class MaintenanceWindow(TimestampMixin, ORMBase, OtherModels):
    """Describes a maintenance window.

    Maintenance windows block a resource for the specified time span, in
    order to e.g. calibrate a wind tunnel. While a window is in place the
    resource is not bookable at all, no matter its capacity.

    """

    __tablename__ = 'maintenance_windows'

    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )

    resource_id: Mapped[int] = mapped_column(
        ForeignKey('resources.id', ondelete='CASCADE')
    )

    start: Mapped[datetime]

    end: Mapped[datetime]

    reason: Mapped[str | None]

    __table_args__ = (
        Index('maintenance_resource_ix', 'resource_id', 'start', 'end'),
    )

    def __repr__(self) -> str:
        return (
            f'<MaintenanceWindow {self.resource_id} '
            f'{self.start.isoformat()} - {self.end.isoformat()}>'
        )

    @property
    def resource(self) -> Resource | None:
        session = object_session(self)
        assert session, (
            "Don't call if the maintenance window is detached"
        )
        return session.get(self.models.Resource, self.resource_id)

    def display_start(self, timezone: TzInfoOrName) -> datetime:
        """Does nothing but to form a nice pair to display_end."""
        return sedate.to_timezone(self.start, timezone)

    def display_end(self, timezone: TzInfoOrName) -> datetime:
        return sedate.to_timezone(self.end, timezone)
