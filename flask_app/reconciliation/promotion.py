"""
Promotion of unmatched Vista records into new platform entities.

Each record is promoted in its own transaction: the internal entity is
inserted and flushed, then the record is claimed with a conditional update.
If another actor linked or ignored the record in the meantime the claim
affects no rows and the transaction is rolled back, so no orphan entity is
left behind. Running a promotion twice creates nothing the second time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from flask import current_app
from sqlalchemy import func, select, update

from config.monitoring import ReconciliationMonitoring
from flask_app.models.base import db
from flask_app.models.internal import Department, Employee
from flask_app.models.vista import EntityType, LinkStatus, VistaContract, VistaWorkOrder

from .descriptors import EntityDescriptor, get_descriptor
from .errors import LinkTargetNotFound, ReconciliationError
from .link_state import LinkAction, claim_unmatched
from .similarity import normalize_key

DEPARTMENT_CODE_MODELS = (("contracts", VistaContract), ("work_orders", VistaWorkOrder))


@dataclass
class PromotionResult:
    imported: int = 0
    total: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {"imported": self.imported, "total": self.total, "results": list(self.results)}


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


class PromotionEngine:
    def __init__(self, session=None):
        self.session = session or db.session

    def _manager_lookup(self, tenant_id: int) -> dict[str, int]:
        rows = self.session.execute(
            select(Employee.employee_number, Employee.id)
            .where(Employee.tenant_id == tenant_id, Employee.employee_number.is_not(None))
            .order_by(Employee.id)
        )
        lookup: dict[str, int] = {}
        for number, employee_id in rows:
            lookup.setdefault(normalize_key(number), employee_id)
        return lookup

    def _project_values(self, record, number: str, fallback_name: str, managers: dict[str, int]) -> dict[str, Any]:
        return {
            "number": number,
            "name": _text(record.description, fallback_name),
            "client_name": _text(record.customer_name, "Unknown Client"),
            "status": _text(record.status, "Open"),
            "contract_amount": record.contract_amount,
            "manager_id": managers.get(normalize_key(record.employee_number)) or record.linked_employee_id,
            "customer_id": record.linked_customer_id,
            "department_id": record.linked_department_id,
        }

    def _builder(self, descriptor: EntityDescriptor, tenant_id: int) -> Callable[[Any], tuple[dict[str, Any], str]]:
        entity_type = descriptor.entity_type
        if entity_type == EntityType.CONTRACT:
            managers = self._manager_lookup(tenant_id)

            def build(record):
                number = _text(record.contract_number)
                values = self._project_values(record, number, number or "Imported Contract", managers)
                return values, values["name"]

            return build
        if entity_type == EntityType.WORK_ORDER:
            managers = self._manager_lookup(tenant_id)

            def build(record):
                number = _text(record.work_order_number)
                values = self._project_values(record, f"WO-{number}", f"Work Order {number}", managers)
                return values, values["name"]

            return build
        if entity_type == EntityType.EMPLOYEE:

            def build(record):
                values = {
                    "employee_number": _text(record.employee_number) or None,
                    "first_name": _text(record.first_name),
                    "last_name": _text(record.last_name),
                    "hire_date": record.hire_date,
                    "is_active": bool(record.active),
                }
                return values, record.full_name

            return build

        def build(record):
            name = _text(record.name, "Unknown")
            values = {
                descriptor.internal_key_field: _text(descriptor.record_key(record)) or None,
                "name": name,
                "address": record.address,
                "address2": record.address2,
                "city": record.city,
                "state": record.state,
                "zip_code": record.zip,
                "is_active": bool(record.active),
            }
            if entity_type == EntityType.CUSTOMER:
                values["facility_name"] = name
            return values, name

        return build

    def promote(self, entity_type: EntityType | str, tenant_id: int, acting_user_id: int | None) -> PromotionResult:
        """Create an internal entity for every unmatched record and link the two."""
        descriptor = get_descriptor(entity_type)
        model = descriptor.model
        records = self.session.scalars(
            select(model)
            .where(model.tenant_id == tenant_id, model.link_status == LinkStatus.UNMATCHED)
            .order_by(getattr(model, descriptor.key_field))
        ).all()

        result = PromotionResult(total=len(records))
        if not records:
            return result

        build = self._builder(descriptor, tenant_id)
        # Commits below expire the loaded records, so read everything up front.
        plans = [(record.id, descriptor.record_key(record), *build(record)) for record in records]

        skipped = 0
        for record_id, record_key, values, name in plans:
            entity = descriptor.internal_model(tenant_id=tenant_id, **values)
            self.session.add(entity)
            self.session.flush()
            entity_id = entity.id
            claimed = claim_unmatched(
                descriptor,
                record_id,
                tenant_id,
                action=LinkAction.PROMOTE,
                links={"linked_entity_id": entity_id},
                user_id=acting_user_id,
                session=self.session,
            )
            if not claimed:
                self.session.rollback()
                skipped += 1
                continue
            self.session.commit()
            result.imported += 1
            result.results.append({"record_id": record_id, "record_key": record_key, "entity_id": entity_id, "name": name})

        ReconciliationMonitoring.record_promotion(entity_type=descriptor.label, outcome="created", count=result.imported)
        if skipped:
            ReconciliationMonitoring.record_promotion(entity_type=descriptor.label, outcome="skipped", count=skipped)
        current_app.logger.info(
            "Vista records promoted",
            extra={
                "vista_entity_type": descriptor.label,
                "tenant_id": tenant_id,
                "user_id": acting_user_id,
                "vista_promoted": result.imported,
                "vista_skipped": skipped,
                "vista_total": result.total,
            },
        )
        return result

    def _department_codes(self, tenant_id: int, *, unlinked_only: bool = False) -> list[str]:
        codes: set[str] = set()
        for _, model in DEPARTMENT_CODE_MODELS:
            stmt = select(model.department_code).where(
                model.tenant_id == tenant_id,
                model.department_code.is_not(None),
                model.department_code != "",
            )
            if unlinked_only:
                stmt = stmt.where(model.linked_department_id.is_(None))
            codes.update(code.strip() for code in self.session.scalars(stmt.distinct()) if code.strip())
        return sorted(codes)

    def _departments_by_number(self, tenant_id: int) -> dict[str, Department]:
        departments = self.session.scalars(select(Department).where(Department.tenant_id == tenant_id)).all()
        return {department.department_number.strip(): department for department in departments}

    def promote_departments(self, tenant_id: int, acting_user_id: int | None = None) -> PromotionResult:
        """Create a placeholder department for each referenced code that has none."""
        existing = self._departments_by_number(tenant_id)
        missing = [code for code in self._department_codes(tenant_id) if code not in existing]
        result = PromotionResult(total=len(missing))
        for code in missing:
            department = Department(tenant_id=tenant_id, department_number=code, name=f"Department {code}")
            self.session.add(department)
            self.session.flush()
            result.imported += 1
            result.results.append({"entity_id": department.id, "department_code": code})
        self.session.commit()

        ReconciliationMonitoring.record_promotion(entity_type="departments", outcome="created", count=result.imported)
        current_app.logger.info(
            "Vista department codes promoted",
            extra={"tenant_id": tenant_id, "user_id": acting_user_id, "vista_promoted": result.imported},
        )
        return result

    def _link_code(
        self,
        code: str,
        department_id: int,
        tenant_id: int,
        *,
        unlinked_only: bool,
    ) -> dict[str, int]:
        counts: dict[str, int] = {}
        for label, model in DEPARTMENT_CODE_MODELS:
            stmt = update(model).where(model.tenant_id == tenant_id, func.trim(model.department_code) == code)
            if unlinked_only:
                stmt = stmt.where(model.linked_department_id.is_(None))
            outcome = self.session.execute(
                stmt.values(linked_department_id=department_id).execution_options(synchronize_session=False)
            )
            counts[label] = outcome.rowcount or 0
        return counts

    def auto_link_departments(self, tenant_id: int, user_id: int | None = None) -> dict[str, Any]:
        """Link department codes that equal a department number exactly. Link status is unchanged."""
        departments = self._departments_by_number(tenant_id)
        details: list[dict[str, Any]] = []
        contracts_updated = 0
        work_orders_updated = 0
        for code in self._department_codes(tenant_id, unlinked_only=True):
            department = departments.get(code)
            if department is None:
                continue
            counts = self._link_code(code, department.id, tenant_id, unlinked_only=True)
            contracts_updated += counts["contracts"]
            work_orders_updated += counts["work_orders"]
            details.append(
                {
                    "department_code": code,
                    "department_id": department.id,
                    "department_name": department.name,
                    "contracts_updated": counts["contracts"],
                    "work_orders_updated": counts["work_orders"],
                }
            )
        self.session.commit()

        summary = {
            "codes_linked": len(details),
            "contracts_updated": contracts_updated,
            "work_orders_updated": work_orders_updated,
            "total_updated": contracts_updated + work_orders_updated,
            "details": details,
        }
        current_app.logger.info(
            "Vista department codes auto-linked",
            extra={"tenant_id": tenant_id, "user_id": user_id, "vista_codes_linked": len(details)},
        )
        return summary

    def link_department_code(
        self,
        code: str,
        department_id: int,
        tenant_id: int,
        user_id: int | None = None,
    ) -> dict[str, Any]:
        """Point every contract and work order carrying ``code`` at one department."""
        code = _text(code)
        if not code:
            raise ReconciliationError("department_code is required.")
        try:
            department_id = int(department_id)
        except (TypeError, ValueError) as exc:
            raise LinkTargetNotFound("department", department_id) from exc
        department = self.session.scalars(
            select(Department).where(Department.id == department_id, Department.tenant_id == tenant_id)
        ).first()
        if department is None:
            raise LinkTargetNotFound("department", department_id)

        counts = self._link_code(code, department.id, tenant_id, unlinked_only=False)
        self.session.commit()
        current_app.logger.info(
            "Vista department code linked",
            extra={"tenant_id": tenant_id, "user_id": user_id, "vista_department_code": code},
        )
        return {
            "department_code": code,
            "department_id": department.id,
            "contracts_updated": counts["contracts"],
            "work_orders_updated": counts["work_orders"],
            "total_updated": counts["contracts"] + counts["work_orders"],
        }


__all__ = ["PromotionEngine", "PromotionResult"]
