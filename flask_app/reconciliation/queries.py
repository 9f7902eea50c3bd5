"""
Read-side queries over Vista records for the reconciliation API.

Listing with status/search filters and pagination, single-record detail with
resolved link targets, dashboard counts, internal entities that no Vista
record points at, and the tenant-admin bulk delete of unmatched rows.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from flask import current_app
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from flask_app.models.base import db
from flask_app.models.internal import Customer, Department, Employee, Project, Vendor
from flask_app.models.vista import EntityType, LinkStatus, VistaContract, VistaWorkOrder

from .batches import ImportBatchManager
from .descriptors import DESCRIPTORS, EntityDescriptor, get_descriptor
from .errors import InternalEntityNotFound, RecordNotFound, ReconciliationError, UnknownInternalKind
from .link_state import ASSOCIATION_TARGETS

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500

SEARCH_FIELDS = {
    EntityType.CONTRACT: ("contract_number", "description", "customer_name"),
    EntityType.WORK_ORDER: ("work_order_number", "description", "customer_name"),
    EntityType.EMPLOYEE: ("employee_number", "first_name", "last_name"),
    EntityType.CUSTOMER: ("customer_number", "name", "city"),
    EntityType.VENDOR: ("vendor_number", "name", "city"),
}

# ``matched`` is a convenience filter covering both matched states.
STATUS_FILTERS = {status.value: (status,) for status in LinkStatus}
STATUS_FILTERS["matched"] = (LinkStatus.AUTO_MATCHED, LinkStatus.MANUAL_MATCHED)

INTERNAL_KINDS = {
    "projects": (Project, (Project.name,)),
    "employees": (Employee, (Employee.last_name, Employee.first_name)),
    "customers": (Customer, (Customer.name,)),
    "vendors": (Vendor, (Vendor.name,)),
}
_INTERNAL_KIND_ALIASES = {"project": "projects", "employee": "employees", "customer": "customers", "vendor": "vendors"}

# Column on contracts and work orders that references each kind of platform entity
PROJECT_BEARING_LINKS = {
    "projects": "linked_entity_id",
    "customers": "linked_customer_id",
    "employees": "linked_employee_id",
}


def _coerce_positive_int(value: Any, *, fallback: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return number if number > 0 else fallback


@dataclass(frozen=True)
class RecordFilters:
    status: tuple[LinkStatus, ...] = ()
    search: str | None = None
    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE

    @classmethod
    def coerce(
        cls,
        *,
        status: str | None = None,
        search: str | None = None,
        page: int | str | None = None,
        page_size: int | str | None = None,
    ) -> "RecordFilters":
        statuses: tuple[LinkStatus, ...] = ()
        if status:
            key = status.strip().lower()
            if key not in STATUS_FILTERS:
                raise ReconciliationError(f"Unsupported status filter '{status}'.")
            statuses = STATUS_FILTERS[key]
        return cls(
            status=statuses,
            search=(search or "").strip() or None,
            page=_coerce_positive_int(page, fallback=DEFAULT_PAGE),
            page_size=min(_coerce_positive_int(page_size, fallback=DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE),
        )


@dataclass(slots=True)
class RecordListResult:
    items: list[dict[str, Any]]
    total: int
    page: int
    page_size: int
    total_pages: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "items": self.items,
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


def _entity_label(entity) -> str | None:
    if entity is None:
        return None
    if isinstance(entity, Employee):
        return entity.full_name
    return getattr(entity, "name", None)


class ReconciliationQueries:
    """Facade for the read-only side of the reconciliation API."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def list_records(
        self,
        entity_type: EntityType | str,
        tenant_id: int,
        filters: RecordFilters | None = None,
    ) -> RecordListResult:
        descriptor = get_descriptor(entity_type)
        filters = filters or RecordFilters()
        model = descriptor.model

        stmt = select(model).where(model.tenant_id == tenant_id)
        if filters.status:
            stmt = stmt.where(model.link_status.in_(filters.status))
        if filters.search:
            pattern = f"%{filters.search}%"
            stmt = stmt.where(
                or_(*(getattr(model, name).ilike(pattern) for name in SEARCH_FIELDS[descriptor.entity_type]))
            )

        total = self.session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        if total == 0:
            return RecordListResult(items=[], total=0, page=filters.page, page_size=filters.page_size, total_pages=0)

        rows = self.session.scalars(
            stmt.order_by(getattr(model, descriptor.key_field))
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
        ).all()
        return RecordListResult(
            items=[self._serialize(descriptor, row) for row in rows],
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            total_pages=math.ceil(total / filters.page_size),
        )

    def get_record(self, entity_type: EntityType | str, record_id: int, tenant_id: int) -> dict[str, Any]:
        descriptor = get_descriptor(entity_type)
        model = descriptor.model
        record = self.session.scalars(select(model).where(model.id == record_id, model.tenant_id == tenant_id)).first()
        if record is None:
            raise RecordNotFound(descriptor.label, record_id)
        return self._serialize(descriptor, record, include_raw=True)

    def _serialize(self, descriptor: EntityDescriptor, record, *, include_raw: bool = False) -> dict[str, Any]:
        payload = record.to_dict(include_raw=include_raw)
        payload["display_name"] = descriptor.record_name(record)
        if record.linked_entity_id is not None:
            entity = self.session.get(descriptor.internal_model, record.linked_entity_id)
            payload["linked_entity"] = {
                "id": record.linked_entity_id,
                "kind": descriptor.internal_kind,
                "key": descriptor.internal_key(entity) if entity else None,
                "name": _entity_label(entity),
            }
        if descriptor.project_bearing:
            for column, (_kind, internal_model) in ASSOCIATION_TARGETS.items():
                value = getattr(record, column)
                if value is None:
                    continue
                payload[f"{column.removesuffix('_id')}_name"] = _entity_label(self.session.get(internal_model, value))
        return payload

    def _count(self, model, *criteria) -> int:
        return int(self.session.scalar(select(func.count()).select_from(model).where(*criteria)) or 0)

    def stats(self, tenant_id: int) -> dict[str, Any]:
        """Dashboard counts per Vista type plus platform totals and last imports."""
        vista: dict[str, dict[str, int]] = {}
        for descriptor in DESCRIPTORS.values():
            model = descriptor.model
            counts = {
                status.value: self._count(model, model.tenant_id == tenant_id, model.link_status == status)
                for status in LinkStatus
            }
            counts["total"] = sum(counts.values())
            counts["matched"] = counts[LinkStatus.AUTO_MATCHED.value] + counts[LinkStatus.MANUAL_MATCHED.value]
            vista[descriptor.result_key] = counts

        internal: dict[str, dict[str, int]] = {}
        for kind, (internal_model, _) in INTERNAL_KINDS.items():
            internal[kind] = {
                "total": self._count(internal_model, internal_model.tenant_id == tenant_id),
                "unlinked": len(self._internal_only_ids(kind, tenant_id)),
            }
        internal["departments"] = {"total": self._count(Department, Department.tenant_id == tenant_id)}

        department_codes: set[str] = set()
        for model in (VistaContract, VistaWorkOrder):
            department_codes.update(
                code.strip()
                for code in self.session.scalars(
                    select(model.department_code)
                    .where(model.tenant_id == tenant_id, model.department_code.is_not(None))
                    .distinct()
                )
                if code.strip()
            )

        last_imports = {
            entity_type: batch.imported_at.isoformat() if batch.imported_at else None
            for entity_type, batch in ImportBatchManager(self.session).latest_by_type(tenant_id).items()
        }
        return {
            "vista": vista,
            "internal": internal,
            "department_codes": len(department_codes),
            "last_imports": last_imports,
        }

    def _resolve_kind(self, entity_kind: str) -> str:
        kind = (entity_kind or "").strip().lower()
        kind = _INTERNAL_KIND_ALIASES.get(kind, kind)
        if kind not in INTERNAL_KINDS:
            raise UnknownInternalKind(entity_kind)
        return kind

    def _linking_models(self, kind: str) -> list:
        internal_model = INTERNAL_KINDS[kind][0]
        return [d.model for d in DESCRIPTORS.values() if d.internal_model is internal_model]

    def _internal_only_ids(self, kind: str, tenant_id: int) -> set[int]:
        internal_model = INTERNAL_KINDS[kind][0]
        stmt = select(internal_model.id).where(internal_model.tenant_id == tenant_id)
        for model in self._linking_models(kind):
            stmt = stmt.where(
                internal_model.id.not_in(
                    select(model.linked_entity_id).where(
                        model.tenant_id == tenant_id,
                        model.linked_entity_id.is_not(None),
                    )
                )
            )
        return set(self.session.scalars(stmt))

    def internal_only(self, entity_kind: str, tenant_id: int) -> list[dict[str, Any]]:
        """Platform entities of ``entity_kind`` that no Vista record links to."""
        kind = self._resolve_kind(entity_kind)
        internal_model, order = INTERNAL_KINDS[kind]
        ids = self._internal_only_ids(kind, tenant_id)
        if not ids:
            return []
        entities = self.session.scalars(select(internal_model).where(internal_model.id.in_(ids)).order_by(*order)).all()
        if kind == "employees":
            return [
                {
                    "id": employee.id,
                    "employee_number": employee.employee_number,
                    "name": employee.full_name,
                    "email": employee.email,
                    "is_active": employee.is_active,
                }
                for employee in entities
            ]
        if kind == "projects":
            return [
                {"id": project.id, "number": project.number, "name": project.name, "status": project.status}
                for project in entities
            ]
        return [
            {
                "id": entity.id,
                "number": getattr(entity, "customer_number", None) or getattr(entity, "vendor_number", None),
                "name": entity.name,
                "city": entity.city,
                "state": entity.state,
                "is_active": entity.is_active,
            }
            for entity in entities
        ]

    def _linked_totals(self, model, *criteria) -> dict[str, Any]:
        count, amount, backlog = self.session.execute(
            select(
                func.count(model.id),
                func.coalesce(func.sum(model.contract_amount), 0),
                func.coalesce(func.sum(model.backlog), 0),
            ).where(*criteria)
        ).one()
        return {"count": int(count), "total_contract_amount": float(amount), "total_backlog": float(backlog)}

    def for_internal(self, entity_kind: str, entity_id: int, tenant_id: int) -> dict[str, Any]:
        """
        Vista data attached to one platform entity.

        ``records`` holds the Vista rows of the entity's own type linked to it.
        Projects, customers and employees also get the contracts and work
        orders that reference them, newest number first, with contract amount
        and backlog totals.
        """
        kind = self._resolve_kind(entity_kind)
        internal_model = INTERNAL_KINDS[kind][0]
        entity = self.session.scalars(
            select(internal_model).where(internal_model.id == entity_id, internal_model.tenant_id == tenant_id)
        ).first()
        if entity is None:
            raise InternalEntityNotFound(kind.removesuffix("s"), entity_id)

        records: list[dict[str, Any]] = []
        for descriptor in DESCRIPTORS.values():
            if descriptor.project_bearing or descriptor.internal_model is not internal_model:
                continue
            model = descriptor.model
            rows = self.session.scalars(
                select(model)
                .where(model.tenant_id == tenant_id, model.linked_entity_id == entity.id)
                .order_by(getattr(model, descriptor.key_field))
            )
            records.extend(self._serialize(descriptor, row) for row in rows)

        payload: dict[str, Any] = {
            "entity": {"id": entity.id, "kind": kind, "name": _entity_label(entity)},
            "records": records,
        }
        column = PROJECT_BEARING_LINKS.get(kind)
        if column is None:
            return payload

        for descriptor in DESCRIPTORS.values():
            if not descriptor.project_bearing:
                continue
            model = descriptor.model
            criteria = (model.tenant_id == tenant_id, getattr(model, column) == entity.id)
            rows = self.session.scalars(
                select(model).where(*criteria).order_by(getattr(model, descriptor.key_field).desc())
            )
            key = descriptor.result_key
            singular = key.removesuffix("s")
            payload[key] = [self._serialize(descriptor, row) for row in rows]
            payload[f"{singular}Totals"] = self._linked_totals(model, *criteria)
        return payload

    def contract_for_project(self, project_id: int, tenant_id: int) -> dict[str, Any] | None:
        """The Vista contract linked to a project, or ``None``."""
        descriptor = get_descriptor(EntityType.CONTRACT)
        contract = self.session.scalars(
            select(VistaContract)
            .where(VistaContract.tenant_id == tenant_id, VistaContract.linked_entity_id == project_id)
            .order_by(VistaContract.contract_number)
        ).first()
        if contract is None:
            return None
        return self._serialize(descriptor, contract, include_raw=True)

    def delete_external_only(self, entity_type: EntityType | str, tenant_id: int, *, user_id: int | None = None) -> int:
        """Physically delete a tenant's ``unmatched`` rows of one type. Returns the row count."""
        descriptor = get_descriptor(entity_type)
        model = descriptor.model
        result = self.session.execute(
            delete(model)
            .where(model.tenant_id == tenant_id, model.link_status == LinkStatus.UNMATCHED)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        deleted = result.rowcount or 0
        current_app.logger.warning(
            "Vista unmatched records deleted",
            extra={
                "vista_entity_type": descriptor.label,
                "tenant_id": tenant_id,
                "user_id": user_id,
                "vista_deleted": deleted,
            },
        )
        return deleted


__all__ = [
    "RecordFilters",
    "RecordListResult",
    "ReconciliationQueries",
    "STATUS_FILTERS",
]
