"""
Vista ERP reconciliation models.

Import batches plus one table per Vista export type (contracts, work orders,
employees, customers, vendors), all sharing the link-state columns.
"""

from .schema import (
    EntityType,
    ImportBatch,
    LinkStatus,
    VistaContract,
    VistaCustomer,
    VistaEmployee,
    VistaRecordMixin,
    VistaVendor,
    VistaWorkOrder,
)

__all__ = [
    "EntityType",
    "ImportBatch",
    "LinkStatus",
    "VistaContract",
    "VistaCustomer",
    "VistaEmployee",
    "VistaRecordMixin",
    "VistaVendor",
    "VistaWorkOrder",
]
