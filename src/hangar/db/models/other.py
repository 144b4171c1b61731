from __future__ import annotations


from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from typing import Protocol

    import hangar.db.models as _models

    class _Models(Protocol):
        Resource: type[_models.Resource]
        Allocation: type[_models.Allocation]
        MaintenanceWindow: type[_models.MaintenanceWindow]
        BookingRequest: type[_models.BookingRequest]
        LineItem: type[_models.LineItem]
        Extension: type[_models.Extension]
        Invoice: type[_models.Invoice]
        Payment: type[_models.Payment]


models = None


class OtherModels:
    """ Mixin class which allows for all models to access the other model
    classes without causing circular imports. """

    @property
    def models(self) -> _Models:
        global models
        if not models:
            from hangar.db import models as m_
            models = m_

        return models
