"""
Entity-type descriptors driving the generic reconciliation engine.

One ``EntityDescriptor`` per Vista entity type captures everything that varies
between types: the record model, its natural key, the internal table it links
to, how display names are derived, and the sheet columns it is parsed from.
Every engine component takes a descriptor instead of branching per type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from flask_app.models.internal import Customer, Employee, Project, Vendor
from flask_app.models.vista import (
    EntityType,
    VistaContract,
    VistaCustomer,
    VistaEmployee,
    VistaVendor,
    VistaWorkOrder,
)

from .errors import UnknownEntityType
from .similarity import normalize_key
from .workbook import ColumnSpec, coerce_date, coerce_flag, coerce_key, coerce_number


def _money(field: str, *headers: str) -> ColumnSpec:
    return ColumnSpec(field, headers, coerce_number)


def _date(field: str, *headers: str) -> ColumnSpec:
    return ColumnSpec(field, headers, coerce_date)


CONTRACT_COLUMNS = (
    ColumnSpec("contract_number", ("Contract", "Contract Number"), coerce_key),
    ColumnSpec("description", ("Contract Description", "Description")),
    ColumnSpec("status", ("Contract Status", "Status")),
    ColumnSpec("employee_number", ("Employee Number Emp Number", "Project Manager Emp Number"), coerce_key),
    ColumnSpec("project_manager_name", ("Project Manager",)),
    ColumnSpec("department_code", ("Department",), coerce_key),
    _money("orig_contract_amount", "Orig Contract Amt"),
    _money("contract_amount", "Contract Amt", "Contract Amount"),
    _money("billed_amount", "Billed Amt"),
    _money("received_amount", "Received Amt"),
    _money("backlog", "Backlog"),
    _money("projected_revenue", "Projected Revenue"),
    _money("gross_profit_percent", "Gross Profit %"),
    _money("earned_revenue", "EarnedRevenue", "Earned Revenue"),
    _money("actual_cost", "Actual Cost"),
    _money("projected_cost", "Projected Cost"),
    _money("pf_hours_estimate", "PF Hours Estimate"),
    _money("pf_hours_jtd", "PF Hours JTD"),
    _money("sm_hours_estimate", "SM Hours Estimate"),
    _money("sm_hours_jtd", "SM Hours JTD"),
    _money("total_hours_estimate", "Total Hours Estimate"),
    _money("total_hours_jtd", "Total Hours JTD"),
    _date("start_month", "StartMonth", "Start Month"),
    _date("month_closed", "MonthClosed", "Month Closed"),
    ColumnSpec("customer_number", ("Customer", "Customer Number"), coerce_key),
    ColumnSpec("customer_name", ("Customer Name",)),
    ColumnSpec("ship_city", ("Ship City", "City")),
    ColumnSpec("ship_state", ("Ship State", "State")),
    ColumnSpec("ship_zip", ("Ship Zip", "Zip"), coerce_key),
    ColumnSpec("primary_market", ("Primary Market",)),
    ColumnSpec("negotiated_work", ("Negotiated Work",)),
    ColumnSpec("delivery_method", ("Delivery Method",)),
)

WORK_ORDER_COLUMNS = (
    ColumnSpec("work_order_number", ("Work Order", "Work Order Number"), coerce_key),
    ColumnSpec("description", ("Description",)),
    _date("entered_date", "EnteredDateTime", "Entered Date"),
    _date("requested_date", "RequestedDate", "Requested Date"),
    ColumnSpec("status", ("Status",)),
    ColumnSpec("employee_number", ("Project Manager Emp Number", "Employee Number Emp Number"), coerce_key),
    ColumnSpec("project_manager_name", ("Project Manager",)),
    ColumnSpec("department_code", ("Department",), coerce_key),
    ColumnSpec("negotiated_work", ("Negotiated Work",)),
    _money(
        "contract_amount",
        "Contract Amt",
        "Contract Amount",
        "ContractAmt",
        "Orig Contract Amt",
        "Original Contract",
        "Total Contract",
    ),
    _money("actual_cost", "Actual Cost"),
    _money("billed_amount", "Billed Amt", "Billed Amount", "BilledAmt"),
    _money("received_amount", "Received Amt", "Received Amount", "ReceivedAmt"),
    _money("backlog", "Backlog"),
    _money("gross_profit_percent", "Gross Profit %", "Gross Profit Pct", "GP%"),
    _money("pf_hours_jtd", "PF/SF/PF Hours JTD", "PF Hours JTD"),
    _money("sm_hours_jtd", "SM Hours JTD"),
    _money("mep_jtd", "MEP JTD"),
    _money("material_jtd", "Material JTD"),
    _money("subcontracts_jtd", "Subcontracts JTD"),
    _money("rentals_jtd", "Rentals JTD"),
    ColumnSpec("customer_name", ("Customer", "Customer Name")),
    ColumnSpec("city", ("City",)),
    ColumnSpec("state", ("State",)),
    ColumnSpec("zip", ("Zip",), coerce_key),
    ColumnSpec("primary_market", ("Primary Market",)),
)

EMPLOYEE_COLUMNS = (
    ColumnSpec("employee_number", ("Employee", "Employee Number"), coerce_key),
    ColumnSpec("first_name", ("First Name",)),
    ColumnSpec("last_name", ("Last Name",)),
    _date("hire_date", "Hire Date"),
    ColumnSpec("active", ("Active Y/N", "Active"), coerce_flag),
)


def _addressed_columns(key_field: str, *key_headers: str) -> tuple[ColumnSpec, ...]:
    return (
        ColumnSpec(key_field, key_headers, coerce_key),
        ColumnSpec("name", ("Name",)),
        ColumnSpec("address", ("Address",)),
        ColumnSpec("address2", ("Address2", "Address 2")),
        ColumnSpec("city", ("City",)),
        ColumnSpec("state", ("State",)),
        ColumnSpec("zip", ("Zip",), coerce_key),
        ColumnSpec("active", ("Active Y/N", "Active"), coerce_flag),
    )


CUSTOMER_COLUMNS = _addressed_columns("customer_number", "Customer Number", "Customer")
VENDOR_COLUMNS = _addressed_columns("vendor_number", "Vendor Number", "Vendor")


@dataclass(frozen=True)
class EntityDescriptor:
    """Strategy object describing one Vista entity type."""

    entity_type: EntityType
    model: type
    key_field: str
    internal_model: type
    internal_kind: str
    internal_key_field: str
    sheet_name: str
    slug: str
    result_key: str
    columns: tuple[ColumnSpec, ...]
    record_name: Callable[[Any], str | None]
    internal_name: Callable[[Any], str | None]
    internal_alt_name: Callable[[Any], str | None] | None = None
    key_prefixes: tuple[str, ...] = ("",)
    exclusive_link: bool = True
    project_bearing: bool = False
    has_location: bool = False
    last_name_boost: bool = False

    @property
    def label(self) -> str:
        return self.entity_type.value

    def record_key(self, record: Any) -> str:
        return getattr(record, self.key_field)

    def internal_key(self, entity: Any) -> str | None:
        return getattr(entity, self.internal_key_field, None)

    def key_variants(self, key: object | None) -> tuple[str, ...]:
        """Internal-key spellings that count as an exact key match for ``key``."""
        normalized = normalize_key(key)
        if not normalized:
            return ()
        return tuple(f"{prefix}{normalized}" for prefix in self.key_prefixes)

    def matches_key(self, record_key: object | None, internal_key: object | None) -> bool:
        candidate = normalize_key(internal_key)
        return bool(candidate) and candidate in self.key_variants(record_key)

    def internal_names(self, entity: Any) -> tuple[str | None, ...]:
        names = [self.internal_name(entity)]
        if self.internal_alt_name is not None:
            names.append(self.internal_alt_name(entity))
        return tuple(names)

    def record_location(self, record: Any) -> tuple[str | None, str | None]:
        if not self.has_location:
            return None, None
        return getattr(record, "city", None), getattr(record, "state", None)

    def internal_location(self, entity: Any) -> tuple[str | None, str | None]:
        if not self.has_location:
            return None, None
        return getattr(entity, "city", None), getattr(entity, "state", None)


def _full_name(entity: Any) -> str | None:
    return getattr(entity, "full_name", None) or None


CONTRACT = EntityDescriptor(
    entity_type=EntityType.CONTRACT,
    model=VistaContract,
    key_field="contract_number",
    internal_model=Project,
    internal_kind="project",
    internal_key_field="number",
    sheet_name="TGPBI_PMContractStatus",
    slug="contracts",
    result_key="contracts",
    columns=CONTRACT_COLUMNS,
    record_name=lambda record: record.description,
    internal_name=lambda project: project.name,
    exclusive_link=False,
    project_bearing=True,
)

WORK_ORDER = EntityDescriptor(
    entity_type=EntityType.WORK_ORDER,
    model=VistaWorkOrder,
    key_field="work_order_number",
    internal_model=Project,
    internal_kind="project",
    internal_key_field="number",
    sheet_name="TGPBI_SMWorkOrderStatus",
    slug="work-orders",
    result_key="workOrders",
    columns=WORK_ORDER_COLUMNS,
    record_name=lambda record: record.description,
    internal_name=lambda project: project.name,
    key_prefixes=("", "WO-"),
    exclusive_link=False,
    project_bearing=True,
)

EMPLOYEE = EntityDescriptor(
    entity_type=EntityType.EMPLOYEE,
    model=VistaEmployee,
    key_field="employee_number",
    internal_model=Employee,
    internal_kind="employee",
    internal_key_field="employee_number",
    sheet_name="TGPREmployees",
    slug="employees",
    result_key="employees",
    columns=EMPLOYEE_COLUMNS,
    record_name=_full_name,
    internal_name=_full_name,
    last_name_boost=True,
)

CUSTOMER = EntityDescriptor(
    entity_type=EntityType.CUSTOMER,
    model=VistaCustomer,
    key_field="customer_number",
    internal_model=Customer,
    internal_kind="customer",
    internal_key_field="customer_number",
    sheet_name="TGARCustomers",
    slug="customers",
    result_key="customers",
    columns=CUSTOMER_COLUMNS,
    record_name=lambda record: record.name,
    internal_name=lambda customer: customer.name,
    internal_alt_name=lambda customer: customer.facility_name,
    has_location=True,
)

VENDOR = EntityDescriptor(
    entity_type=EntityType.VENDOR,
    model=VistaVendor,
    key_field="vendor_number",
    internal_model=Vendor,
    internal_kind="vendor",
    internal_key_field="vendor_number",
    sheet_name="TGAPVendors",
    slug="vendors",
    result_key="vendors",
    columns=VENDOR_COLUMNS,
    record_name=lambda record: record.name,
    internal_name=lambda vendor: vendor.name,
    has_location=True,
)

DESCRIPTORS: Mapping[EntityType, EntityDescriptor] = {
    descriptor.entity_type: descriptor for descriptor in (CONTRACT, WORK_ORDER, EMPLOYEE, CUSTOMER, VENDOR)
}

# Import order matters: people and parties first so project associations resolve.
INGEST_ORDER = (EntityType.EMPLOYEE, EntityType.CUSTOMER, EntityType.VENDOR, EntityType.CONTRACT, EntityType.WORK_ORDER)

_ALIASES: dict[str, EntityType] = {}
for _descriptor in DESCRIPTORS.values():
    for _alias in (_descriptor.entity_type.value, _descriptor.slug, _descriptor.result_key, _descriptor.sheet_name):
        _ALIASES[_alias.casefold()] = _descriptor.entity_type
    _ALIASES[_descriptor.entity_type.name.casefold()] = _descriptor.entity_type
for _singular, _entity_type in (
    ("contract", EntityType.CONTRACT),
    ("work-order", EntityType.WORK_ORDER),
    ("work_order", EntityType.WORK_ORDER),
    ("employee", EntityType.EMPLOYEE),
    ("customer", EntityType.CUSTOMER),
    ("vendor", EntityType.VENDOR),
):
    _ALIASES[_singular] = _entity_type


def resolve_entity_type(value: EntityType | str) -> EntityType:
    """Accept an ``EntityType``, its value, URL slug or sheet name."""

    if isinstance(value, EntityType):
        return value
    if isinstance(value, str):
        resolved = _ALIASES.get(value.strip().casefold())
        if resolved is not None:
            return resolved
    raise UnknownEntityType(value)


def get_descriptor(value: EntityType | str) -> EntityDescriptor:
    return DESCRIPTORS[resolve_entity_type(value)]


def descriptor_for_sheet(sheet_name: str) -> EntityDescriptor | None:
    for descriptor in DESCRIPTORS.values():
        if descriptor.sheet_name == sheet_name.strip():
            return descriptor
    return None


__all__ = [
    "CONTRACT",
    "CUSTOMER",
    "DESCRIPTORS",
    "EMPLOYEE",
    "INGEST_ORDER",
    "VENDOR",
    "WORK_ORDER",
    "EntityDescriptor",
    "descriptor_for_sheet",
    "get_descriptor",
    "resolve_entity_type",
]
