from __future__ import annotations

import logging

from contextlib import contextmanager
from itertools import groupby
from operator import attrgetter

from hangar.context.core import ContextServicesMixin
from hangar.db.availability import AvailabilityEngine
from hangar.db.models import Allocation
from hangar.db.models import Resource
from hangar.db.models.allocation import OCCUPYING
from hangar.db.queries import Queries
from hangar.modules import errors
from hangar.modules.sweep import Occupant, sweep


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Collection
    from collections.abc import Iterable
    from collections.abc import Iterator
    from datetime import datetime

    from hangar.context.core import Context


log = logging.getLogger('hangar')


class BookingLedger(ContextServicesMixin):
    """ The authoritative store of allocations.

    The ledger never writes an allocation that would take a resource over
    its capacity. Batches are written completely or not at all.

    The ledger doesn't commit the transaction, that's up to the caller,
    which is expected to hold the resources (see :meth:`hold`) from the
    check up to the commit.

    """

    def __init__(
        self,
        context: Context,
        engine: AvailabilityEngine | None = None,
        queries: Queries | None = None
    ):
        self.context = context
        self.queries = queries or Queries(context)
        self.engine = engine or AvailabilityEngine(
            context, queries=self.queries
        )

    @contextmanager
    def hold(self, resource_ids: Iterable[int]) -> Iterator[None]:
        """ Serializes all capacity changes of the given resources.

        The in-process locks are acquired in ascending id order. Inside
        the database the resource rows are locked as well (``SELECT ...
        FOR UPDATE``), which serializes approvals running in different
        processes.

        """
        ids = sorted(set(resource_ids))

        with self.locks.hold_resources(ids):
            if ids:
                query = self.session.query(Resource.id)
                query = query.filter(Resource.id.in_(ids))
                query = query.order_by(Resource.id)
                query.with_for_update().all()

            yield

    def commit(self, allocations: Collection[Allocation]) -> list[Allocation]:
        """ Writes the given allocations after making sure that they fit
        in, together with everything already committed.

        Raises :class:`hangar.modules.errors.CapacityExceeded` if any
        resource would be over capacity at any instant. Nothing is written
        in this case.

        """
        batch = sorted(allocations, key=attrgetter('resource_id'))

        for resource_id, group in groupby(batch, attrgetter('resource_id')):
            self.check_batch(resource_id, list(group))

        self.session.add_all(batch)
        self.session.flush()

        log.info(f'Committed {len(batch)} allocation(s)')

        return batch

    def check_batch(
        self,
        resource_id: int,
        allocations: list[Allocation]
    ) -> None:
        resource = self.session.get(Resource, resource_id)

        if resource is None:
            raise errors.UnknownResource(resource_id)

        start = min(a.start for a in allocations)
        end = max(a.end for a in allocations)

        occupants, existing, _ = self.engine.occupants(resource, start, end)
        occupants.extend(
            Occupant(a.start, a.end, a.quantity)
            for a in allocations if a.is_occupying
        )

        capacity = resource.capacity_units
        short = [s for s in sweep(occupants, start, end) if s.used > capacity]

        if short:
            log.warning(
                f'Refused {len(allocations)} allocation(s) for '
                f'{resource.code}, capacity exceeded'
            )
            raise errors.CapacityExceeded(
                resource_id,
                f'{resource.code} cannot take the allocation(s)',
                conflicts=self.engine.conflicting(existing, short)
            )

    def release(
        self,
        request_id: int,
        extension_id: int | None = None
    ) -> list[Allocation]:
        """ Releases the allocations of the given request, optionally only
        the ones created by the given extension. Released allocations are
        kept for history.

        """
        query = self.queries.allocations_by_request(request_id, OCCUPYING)

        if extension_id is not None:
            query = query.filter(Allocation.extension_id == extension_id)

        released = query.all()

        for allocation in released:
            allocation.release()

        self.session.flush()

        return released

    def query(
        self,
        resource_id: int,
        start: datetime,
        end: datetime,
        statuses: Collection[str] = OCCUPYING
    ) -> list[Allocation]:
        return self.queries.occupying_allocations(
            resource_id, start, end, statuses=statuses
        ).all()

    def allocations_for(
        self,
        request_id: int,
        statuses: Collection[str] | None = None
    ) -> list[Allocation]:
        return self.queries.allocations_by_request(request_id, statuses).all()
