"""
SQLAlchemy models for records imported from the Vista ERP export.

Each Vista entity type has its own table sharing the reconciliation columns
defined on ``VistaRecordMixin``. Rows are keyed by the Vista natural key and
scoped to a tenant; re-importing a key updates the existing row in place.
"""

from __future__ import annotations

import enum
from datetime import date, datetime, timezone

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

from ..base import BaseModel, db


class LinkStatus(str, enum.Enum):
    """Reconciliation state of a Vista record relative to platform entities."""

    UNMATCHED = "unmatched"
    AUTO_MATCHED = "auto_matched"
    MANUAL_MATCHED = "manual_matched"
    IGNORED = "ignored"

    @property
    def is_matched(self) -> bool:
        return self in (LinkStatus.AUTO_MATCHED, LinkStatus.MANUAL_MATCHED)


class EntityType(str, enum.Enum):
    """Vista export entity types handled by the reconciliation engine."""

    CONTRACT = "contracts"
    WORK_ORDER = "work_orders"
    EMPLOYEE = "employees"
    CUSTOMER = "customers"
    VENDOR = "vendors"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportBatch(BaseModel):
    """Audit record for one sheet of one uploaded workbook."""

    __tablename__ = "vista_import_batches"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)
    file_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    entity_type: Mapped[EntityType] = mapped_column(
        Enum(EntityType, name="vista_entity_type_enum"),
        nullable=False,
        index=True,
    )
    sheet_name: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    records_total: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_new: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_skipped: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_failed: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    records_auto_matched: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    imported_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    imported_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)

    imported_by_user = relationship("User", foreign_keys=[imported_by])

    __table_args__ = (Index("idx_vista_import_batches_tenant_type", "tenant_id", "entity_type"),)

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "entity_type": self.entity_type.value if self.entity_type else None,
            "sheet_name": self.sheet_name,
            "records_total": self.records_total,
            "records_new": self.records_new,
            "records_updated": self.records_updated,
            "records_skipped": self.records_skipped,
            "records_failed": self.records_failed,
            "records_auto_matched": self.records_auto_matched,
            "imported_by": self.imported_by,
            "imported_at": self.imported_at.isoformat() if self.imported_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self) -> str:
        return f"<ImportBatch {self.id} {self.entity_type} {self.file_name}>"


class VistaRecordMixin:
    """Reconciliation bookkeeping shared by every Vista record table."""

    # Columns that are never overwritten by a re-import.
    LINK_COLUMNS = ("linked_entity_id",)
    BOOKKEEPING_COLUMNS = frozenset(
        {
            "id",
            "tenant_id",
            "raw_data",
            "link_status",
            "linked_entity_id",
            "linked_customer_id",
            "linked_employee_id",
            "linked_department_id",
            "link_confidence",
            "linked_at",
            "linked_by",
            "import_batch_id",
            "imported_at",
            "created_at",
            "updated_at",
        }
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    raw_data: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    link_confidence: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    linked_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    imported_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)

    @declared_attr
    def tenant_id(cls) -> Mapped[int]:
        return mapped_column(ForeignKey("organizations.id"), nullable=False, index=True)

    @declared_attr
    def link_status(cls) -> Mapped[LinkStatus]:
        return mapped_column(
            Enum(LinkStatus, name="vista_link_status_enum"),
            nullable=False,
            default=LinkStatus.UNMATCHED,
            index=True,
        )

    @declared_attr
    def linked_by(cls) -> Mapped[int | None]:
        return mapped_column(ForeignKey("users.id"), nullable=True)

    @declared_attr
    def import_batch_id(cls) -> Mapped[int | None]:
        return mapped_column(ForeignKey("vista_import_batches.id"), nullable=True, index=True)

    @declared_attr
    def import_batch(cls):
        return relationship("ImportBatch")

    @classmethod
    def business_columns(cls) -> tuple[str, ...]:
        """Column names copied from the source row on every import."""
        return tuple(
            column.key for column in cls.__table__.columns if column.key not in cls.BOOKKEEPING_COLUMNS
        )

    @property
    def has_link(self) -> bool:
        return any(getattr(self, column) is not None for column in self.LINK_COLUMNS)

    def to_dict(self, *, include_raw: bool = False) -> dict[str, object]:
        payload: dict[str, object] = {}
        for column in self.__table__.columns:
            if column.key == "raw_data" and not include_raw:
                continue
            value = getattr(self, column.key)
            if isinstance(value, enum.Enum):
                value = value.value
            elif isinstance(value, (datetime, date)):
                value = value.isoformat()
            payload[column.key] = value
        return payload


class ProjectBearingMixin:
    """Association links carried by contracts and work orders."""

    LINK_COLUMNS = (
        "linked_entity_id",
        "linked_customer_id",
        "linked_employee_id",
        "linked_department_id",
    )

    @declared_attr
    def linked_entity_id(cls) -> Mapped[int | None]:
        return mapped_column(ForeignKey("projects.id"), nullable=True, index=True)

    @declared_attr
    def linked_customer_id(cls) -> Mapped[int | None]:
        return mapped_column(ForeignKey("customers.id"), nullable=True)

    @declared_attr
    def linked_employee_id(cls) -> Mapped[int | None]:
        return mapped_column(ForeignKey("employees.id"), nullable=True)

    @declared_attr
    def linked_department_id(cls) -> Mapped[int | None]:
        return mapped_column(ForeignKey("departments.id"), nullable=True, index=True)


class VistaContract(ProjectBearingMixin, VistaRecordMixin, BaseModel):
    """Row from the TGPBI_PMContractStatus sheet."""

    __tablename__ = "vista_contracts"

    contract_number: Mapped[str] = mapped_column(db.String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(db.String(500))
    status: Mapped[str | None] = mapped_column(db.String(50))
    employee_number: Mapped[str | None] = mapped_column(db.String(50))
    project_manager_name: Mapped[str | None] = mapped_column(db.String(200))
    department_code: Mapped[str | None] = mapped_column(db.String(50), index=True)
    orig_contract_amount: Mapped[float | None] = mapped_column(db.Float)
    contract_amount: Mapped[float | None] = mapped_column(db.Float)
    billed_amount: Mapped[float | None] = mapped_column(db.Float)
    received_amount: Mapped[float | None] = mapped_column(db.Float)
    backlog: Mapped[float | None] = mapped_column(db.Float)
    projected_revenue: Mapped[float | None] = mapped_column(db.Float)
    gross_profit_percent: Mapped[float | None] = mapped_column(db.Float)
    earned_revenue: Mapped[float | None] = mapped_column(db.Float)
    actual_cost: Mapped[float | None] = mapped_column(db.Float)
    projected_cost: Mapped[float | None] = mapped_column(db.Float)
    pf_hours_estimate: Mapped[float | None] = mapped_column(db.Float)
    pf_hours_jtd: Mapped[float | None] = mapped_column(db.Float)
    sm_hours_estimate: Mapped[float | None] = mapped_column(db.Float)
    sm_hours_jtd: Mapped[float | None] = mapped_column(db.Float)
    total_hours_estimate: Mapped[float | None] = mapped_column(db.Float)
    total_hours_jtd: Mapped[float | None] = mapped_column(db.Float)
    start_month: Mapped[date | None] = mapped_column(db.Date)
    month_closed: Mapped[date | None] = mapped_column(db.Date)
    customer_number: Mapped[str | None] = mapped_column(db.String(50))
    customer_name: Mapped[str | None] = mapped_column(db.String(255))
    ship_city: Mapped[str | None] = mapped_column(db.String(100))
    ship_state: Mapped[str | None] = mapped_column(db.String(50))
    ship_zip: Mapped[str | None] = mapped_column(db.String(20))
    primary_market: Mapped[str | None] = mapped_column(db.String(100))
    negotiated_work: Mapped[str | None] = mapped_column(db.String(50))
    delivery_method: Mapped[str | None] = mapped_column(db.String(100))

    __table_args__ = (
        UniqueConstraint("tenant_id", "contract_number", name="uq_vista_contracts_tenant_number"),
        Index("idx_vista_contracts_tenant_status", "tenant_id", "link_status"),
    )


class VistaWorkOrder(ProjectBearingMixin, VistaRecordMixin, BaseModel):
    """Row from the TGPBI_SMWorkOrderStatus sheet."""

    __tablename__ = "vista_work_orders"

    work_order_number: Mapped[str] = mapped_column(db.String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(db.String(500))
    entered_date: Mapped[date | None] = mapped_column(db.Date)
    requested_date: Mapped[date | None] = mapped_column(db.Date)
    status: Mapped[str | None] = mapped_column(db.String(50))
    employee_number: Mapped[str | None] = mapped_column(db.String(50))
    project_manager_name: Mapped[str | None] = mapped_column(db.String(200))
    department_code: Mapped[str | None] = mapped_column(db.String(50), index=True)
    negotiated_work: Mapped[str | None] = mapped_column(db.String(50))
    contract_amount: Mapped[float | None] = mapped_column(db.Float)
    actual_cost: Mapped[float | None] = mapped_column(db.Float)
    billed_amount: Mapped[float | None] = mapped_column(db.Float)
    received_amount: Mapped[float | None] = mapped_column(db.Float)
    backlog: Mapped[float | None] = mapped_column(db.Float)
    gross_profit_percent: Mapped[float | None] = mapped_column(db.Float)
    pf_hours_jtd: Mapped[float | None] = mapped_column(db.Float)
    sm_hours_jtd: Mapped[float | None] = mapped_column(db.Float)
    mep_jtd: Mapped[float | None] = mapped_column(db.Float)
    material_jtd: Mapped[float | None] = mapped_column(db.Float)
    subcontracts_jtd: Mapped[float | None] = mapped_column(db.Float)
    rentals_jtd: Mapped[float | None] = mapped_column(db.Float)
    customer_name: Mapped[str | None] = mapped_column(db.String(255))
    city: Mapped[str | None] = mapped_column(db.String(100))
    state: Mapped[str | None] = mapped_column(db.String(50))
    zip: Mapped[str | None] = mapped_column(db.String(20))
    primary_market: Mapped[str | None] = mapped_column(db.String(100))

    __table_args__ = (
        UniqueConstraint("tenant_id", "work_order_number", name="uq_vista_work_orders_tenant_number"),
        Index("idx_vista_work_orders_tenant_status", "tenant_id", "link_status"),
    )


class VistaEmployee(VistaRecordMixin, BaseModel):
    """Row from the TGPREmployees sheet."""

    __tablename__ = "vista_employees"

    employee_number: Mapped[str] = mapped_column(db.String(50), nullable=False)
    first_name: Mapped[str | None] = mapped_column(db.String(100))
    last_name: Mapped[str | None] = mapped_column(db.String(100))
    hire_date: Mapped[date | None] = mapped_column(db.Date)
    active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)
    linked_entity_id: Mapped[int | None] = mapped_column(ForeignKey("employees.id"), nullable=True, index=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "employee_number", name="uq_vista_employees_tenant_number"),
        Index("idx_vista_employees_tenant_status", "tenant_id", "link_status"),
    )

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class _AddressedRecord:
    name: Mapped[str | None] = mapped_column(db.String(255))
    address: Mapped[str | None] = mapped_column(db.String(255))
    address2: Mapped[str | None] = mapped_column(db.String(255))
    city: Mapped[str | None] = mapped_column(db.String(100))
    state: Mapped[str | None] = mapped_column(db.String(50))
    zip: Mapped[str | None] = mapped_column(db.String(20))
    active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)


class VistaCustomer(_AddressedRecord, VistaRecordMixin, BaseModel):
    """Row from the TGARCustomers sheet."""

    __tablename__ = "vista_customers"

    customer_number: Mapped[str] = mapped_column(db.String(50), nullable=False)
    linked_entity_id: Mapped[int | None] = mapped_column(ForeignKey("customers.id"), nullable=True, index=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "customer_number", name="uq_vista_customers_tenant_number"),
        Index("idx_vista_customers_tenant_status", "tenant_id", "link_status"),
    )


class VistaVendor(_AddressedRecord, VistaRecordMixin, BaseModel):
    """Row from the TGAPVendors sheet."""

    __tablename__ = "vista_vendors"

    vendor_number: Mapped[str] = mapped_column(db.String(50), nullable=False)
    linked_entity_id: Mapped[int | None] = mapped_column(ForeignKey("vendors.id"), nullable=True, index=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "vendor_number", name="uq_vista_vendors_tenant_number"),
        Index("idx_vista_vendors_tenant_status", "tenant_id", "link_status"),
    )
