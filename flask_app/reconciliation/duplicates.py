"""
Similarity report for unmatched Vista records awaiting human review.

For each unmatched record the reporter lists the closest internal entities
(top-N above a floor). Internal entities already linked to another Vista
record of the same type are left out, since linking them again would conflict.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from flask import current_app
from sqlalchemy import func, select

from flask_app.models.base import db
from flask_app.models.internal import Department
from flask_app.models.vista import EntityType, LinkStatus, VistaContract, VistaWorkOrder

from .auto_match import CandidateIndex, MatchCandidate
from .descriptors import DESCRIPTORS, EntityDescriptor, get_descriptor
from .similarity import bigram_similarity, is_exact_match, name_similarity, normalize_key

LAST_NAME_FLOOR = 0.7


@dataclass
class DuplicateGroup:
    record_id: int
    record_key: str
    record_name: str | None
    details: dict[str, Any] = field(default_factory=dict)
    candidates: list[dict[str, Any]] = field(default_factory=list)

    @property
    def best_score(self) -> float:
        return self.candidates[0]["score"] if self.candidates else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "record_key": self.record_key,
            "record_name": self.record_name,
            **self.details,
            "best_score": self.best_score,
            "potential_matches": list(self.candidates),
        }


@dataclass
class DepartmentCodeGroup:
    department_code: str
    usage: dict[str, int]
    candidates: list[dict[str, Any]] = field(default_factory=list)

    @property
    def best_score(self) -> float:
        return self.candidates[0]["score"] if self.candidates else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "department_code": self.department_code,
            "usage_count": dict(self.usage),
            "best_score": self.best_score,
            "potential_matches": list(self.candidates),
        }


def _rank(candidates: list[dict[str, Any]], limit: int) -> list[dict[str, Any]]:
    candidates.sort(key=lambda c: (-c["score"], not c["exact_match"], (c["name"] or "").casefold()))
    return candidates[:limit]


class DuplicateReporter:
    def __init__(self, session=None):
        self.session = session or db.session

    @property
    def floor(self) -> float:
        return float(current_app.config.get("RECONCILE_DUPLICATE_FLOOR", 0.5))

    @property
    def top_n(self) -> int:
        return int(current_app.config.get("RECONCILE_DUPLICATE_TOP_N", 5))

    def _available_internal(self, descriptor: EntityDescriptor, tenant_id: int) -> list[Any]:
        internal_model = descriptor.internal_model
        model = descriptor.model
        stmt = select(internal_model).where(internal_model.tenant_id == tenant_id)
        if descriptor.exclusive_link:
            linked = select(model.linked_entity_id).where(
                model.tenant_id == tenant_id, model.linked_entity_id.is_not(None)
            )
            stmt = stmt.where(internal_model.id.not_in(linked))
        return list(self.session.scalars(stmt.order_by(internal_model.id)))

    def _score_record(
        self,
        descriptor: EntityDescriptor,
        record,
        index: CandidateIndex,
        customer_index: CandidateIndex | None,
    ) -> list[MatchCandidate]:
        city, state = descriptor.record_location(record)
        scored = {
            candidate.entity_id: candidate
            for candidate in index.score(
                key=descriptor.record_key(record),
                name=descriptor.record_name(record),
                city=city,
                state=state,
            )
        }
        if customer_index is not None:
            # Contracts also compare their customer against the project's customer.
            for candidate in customer_index.score(name=record.customer_name):
                current = scored.get(candidate.entity_id)
                if current is None or candidate.score > current.score:
                    scored[candidate.entity_id] = MatchCandidate(
                        entity_id=candidate.entity_id,
                        name=current.name if current else descriptor.internal_name(candidate.entity),
                        score=candidate.score,
                        exact_key_match=current.exact_key_match if current else False,
                        exact_name_match=(current.exact_name_match if current else False) or candidate.exact_name_match,
                        same_location=False,
                        entity=candidate.entity,
                    )
        return list(scored.values())

    def find(
        self,
        entity_type: EntityType | str,
        tenant_id: int,
        min_similarity: float | None = None,
        limit: int | None = None,
    ) -> list[DuplicateGroup]:
        descriptor = get_descriptor(entity_type)
        floor = self.floor if min_similarity is None else float(min_similarity)
        top_n = self.top_n if limit is None else max(int(limit), 1)
        model = descriptor.model

        records = list(
            self.session.scalars(
                select(model)
                .where(model.tenant_id == tenant_id, model.link_status == LinkStatus.UNMATCHED)
                .order_by(getattr(model, descriptor.key_field))
            )
        )
        if not records:
            return []

        internal = self._available_internal(descriptor, tenant_id)
        index = CandidateIndex.for_descriptor(descriptor, internal)
        customer_index = None
        if descriptor.project_bearing:
            customer_index = CandidateIndex(
                internal,
                key_of=lambda project: None,
                names_of=lambda project: (project.customer.name if project.customer else project.client_name,),
            )

        groups: list[DuplicateGroup] = []
        for record in records:
            matches: list[dict[str, Any]] = []
            for candidate in self._score_record(descriptor, record, index, customer_index):
                score = candidate.score
                last_name_match = False
                if descriptor.last_name_boost:
                    last_name_match = is_exact_match(record.last_name, candidate.entity.last_name)
                    if last_name_match:
                        score = max(score, LAST_NAME_FLOOR)
                if candidate.exact_key_match:
                    score = 1.0
                if score < floor:
                    continue
                match = {
                    "entity_id": candidate.entity_id,
                    "name": candidate.name,
                    "key": descriptor.internal_key(candidate.entity),
                    "score": round(score, 2),
                    "exact_key_match": candidate.exact_key_match,
                    "exact_name_match": candidate.exact_name_match,
                    "exact_match": candidate.exact_key_match or candidate.exact_name_match,
                    "same_location": candidate.same_location,
                }
                if descriptor.last_name_boost:
                    match["last_name_match"] = last_name_match
                matches.append(match)
            if not matches:
                continue
            groups.append(
                DuplicateGroup(
                    record_id=record.id,
                    record_key=descriptor.record_key(record),
                    record_name=descriptor.record_name(record),
                    details=self._record_details(descriptor, record),
                    candidates=_rank(matches, top_n),
                )
            )

        groups.sort(key=lambda group: group.best_score, reverse=True)
        return groups

    def _record_details(self, descriptor: EntityDescriptor, record) -> dict[str, Any]:
        if descriptor.project_bearing:
            return {
                "customer_name": record.customer_name,
                "contract_amount": record.contract_amount,
                "status": record.status,
            }
        if descriptor.has_location:
            return {"city": record.city, "state": record.state, "active": record.active}
        return {"active": record.active}

    def _unlinked_department_usage(self, tenant_id: int) -> dict[str, dict[str, int]]:
        usage: dict[str, dict[str, int]] = {}
        for label, model in (("contracts", VistaContract), ("work_orders", VistaWorkOrder)):
            rows = self.session.execute(
                select(model.department_code, func.count(model.id))
                .where(
                    model.tenant_id == tenant_id,
                    model.department_code.is_not(None),
                    model.department_code != "",
                    model.linked_department_id.is_(None),
                )
                .group_by(model.department_code)
            )
            for code, count in rows:
                entry = usage.setdefault(code.strip(), {"contracts": 0, "work_orders": 0})
                entry[label] += count
        return usage

    def find_departments(self, tenant_id: int, min_similarity: float | None = None) -> list[DepartmentCodeGroup]:
        """Unlinked department codes on contracts/work orders against internal departments."""
        floor = self.floor if min_similarity is None else float(min_similarity)
        usage = self._unlinked_department_usage(tenant_id)
        if not usage:
            return []
        departments = list(
            self.session.scalars(
                select(Department).where(Department.tenant_id == tenant_id).order_by(Department.department_number)
            )
        )

        groups: list[DepartmentCodeGroup] = []
        for code in sorted(usage):
            matches: list[dict[str, Any]] = []
            for department in departments:
                exact = normalize_key(code) == normalize_key(department.department_number)
                score = 1.0 if exact else bigram_similarity(code, department.department_number)
                score = max(score, name_similarity(code, department.name))
                if score < floor:
                    continue
                matches.append(
                    {
                        "entity_id": department.id,
                        "key": department.department_number,
                        "name": department.name,
                        "score": round(score, 2),
                        "exact_match": exact,
                    }
                )
            if matches:
                groups.append(
                    DepartmentCodeGroup(
                        department_code=code,
                        usage=usage[code],
                        candidates=_rank(matches, self.top_n),
                    )
                )
        groups.sort(key=lambda group: group.best_score, reverse=True)
        return groups

    def _band_counts(self, tenant_id: int, descriptor: EntityDescriptor) -> dict[str, int]:
        high = float(current_app.config.get("RECONCILE_BAND_HIGH", 0.8))
        medium = float(current_app.config.get("RECONCILE_BAND_MEDIUM", 0.6))
        model = descriptor.model
        total_unmatched = self.session.scalar(
            select(func.count(model.id)).where(
                model.tenant_id == tenant_id,
                model.link_status == LinkStatus.UNMATCHED,
            )
        )
        counts = {"total_unmatched": int(total_unmatched or 0), "high": 0, "medium": 0, "low": 0}
        groups = self.find(descriptor.entity_type, tenant_id)
        for group in groups:
            if group.best_score >= high:
                counts["high"] += 1
            elif group.best_score >= medium:
                counts["medium"] += 1
            else:
                counts["low"] += 1
        counts["no_candidates"] = counts["total_unmatched"] - len(groups)
        return counts

    def stats(self, tenant_id: int) -> dict[str, dict[str, int]]:
        """Per-type confidence band counts for the review queue."""
        return {descriptor.result_key: self._band_counts(tenant_id, descriptor) for descriptor in DESCRIPTORS.values()}


__all__ = ["DepartmentCodeGroup", "DuplicateGroup", "DuplicateReporter"]
