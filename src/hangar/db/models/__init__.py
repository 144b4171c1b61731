from __future__ import annotations

from hangar.db.models.base import ORMBase
from hangar.db.models.resource import Resource, Lab, Component, Staff
from hangar.db.models.maintenance import MaintenanceWindow
from hangar.db.models.request import BookingRequest
from hangar.db.models.line_item import LineItem
from hangar.db.models.line_item import LabLine, ComponentLine, StaffLine
from hangar.db.models.extension import Extension
from hangar.db.models.invoice import Invoice, Payment
from hangar.db.models.allocation import Allocation


__all__ = (
    'ORMBase',
    'Resource',
    'Lab',
    'Component',
    'Staff',
    'MaintenanceWindow',
    'BookingRequest',
    'LineItem',
    'LabLine',
    'ComponentLine',
    'StaffLine',
    'Extension',
    'Invoice',
    'Payment',
    'Allocation',
)
