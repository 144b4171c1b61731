from __future__ import annotations

from hangar.context.core import ContextServicesMixin
from hangar.db.models import Resource
from hangar.db.queries import Queries
from hangar.modules import errors


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from datetime import datetime

    from hangar.context.core import Context
    from hangar.db.models import MaintenanceWindow
    from hangar.db.models.resource import ResourceKind


class ResourceCatalog(ContextServicesMixin):
    """ Read-only access to the bookable resources.

    The catalog is maintained elsewhere (by the catalog administration),
    hangar never changes it.

    """

    def __init__(self, context: Context, queries: Queries | None = None):
        self.context = context
        self.queries = queries or Queries(context)

    def get_resource(
        self,
        resource_id: int,
        include_inactive: bool = False
    ) -> Resource:
        """ Returns the resource with the given id.

        Raises :class:`hangar.modules.errors.UnknownResource` if there's no
        such resource and :class:`hangar.modules.errors.ResourceInactive` if
        the resource may not be booked anymore.

        """
        resource = self.session.get(Resource, resource_id)

        if resource is None:
            raise errors.UnknownResource(resource_id)

        if not resource.active and not include_inactive:
            raise errors.ResourceInactive(
                resource_id, f'{resource.code} is inactive'
            )

        return resource

    def get_resources(
        self,
        resource_ids: set[int] | list[int],
        include_inactive: bool = False
    ) -> dict[int, Resource]:
        return {
            resource_id: self.get_resource(resource_id, include_inactive)
            for resource_id in sorted(set(resource_ids))
        }

    def list_resources(
        self,
        kind: ResourceKind | None = None,
        site_id: str | None = None,
        active_only: bool = True
    ) -> list[Resource]:

        query = self.session.query(Resource)

        if kind is not None:
            query = query.filter(Resource.type == kind)

        if site_id is not None:
            query = query.filter(Resource.site_id == site_id)

        if active_only:
            query = query.filter(Resource.active == True)  # noqa: E712

        return query.order_by(Resource.code).all()

    def maintenance_windows(
        self,
        resource_id: int,
        start: datetime,
        end: datetime
    ) -> list[MaintenanceWindow]:
        """ Returns the maintenance windows of the resource overlapping
        [start, end).

        """
        return self.queries.maintenance_windows(resource_id, start, end).all()
