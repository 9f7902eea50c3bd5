"""
Automatic linking of unmatched Vista records to platform entities.

Decision rule:

* exactly one candidate with the same natural key links with confidence 1.0;
* more than one exact-key candidate is ambiguous and links nothing;
* otherwise the best name score must reach ``RECONCILE_AUTO_MATCH_THRESHOLD``
  and beat the runner-up by more than ``RECONCILE_AUTO_MATCH_MARGIN``.

Contracts and work orders resolve a project link plus customer, employee and
department associations; the record is auto-matched when any of them resolve
and its confidence is the mean of the resolved scores.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

from flask import current_app
from sqlalchemy import select

from config.monitoring import ReconciliationMonitoring
from flask_app.models.base import db
from flask_app.models.internal import Customer, Department, Employee
from flask_app.models.vista import EntityType, LinkStatus

from .batches import ImportBatchManager
from .descriptors import CONTRACT, WORK_ORDER, EntityDescriptor, get_descriptor
from .link_state import LinkAction, claim_unmatched
from .similarity import is_exact_match, is_same_location, name_similarity, normalize_key

DEFAULT_THRESHOLD = 0.92
DEFAULT_MARGIN = 0.03


@dataclass(frozen=True)
class MatchCandidate:
    entity_id: int
    name: str | None
    score: float
    exact_key_match: bool
    exact_name_match: bool
    same_location: bool
    entity: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class MatchDecision:
    candidate: MatchCandidate | None
    confidence: float | None
    reason: str

    @property
    def linked(self) -> bool:
        return self.candidate is not None


def decide(candidates: Sequence[MatchCandidate], *, threshold: float, margin: float) -> MatchDecision:
    """Apply the auto-match rule to a scored candidate list."""

    exact = [candidate for candidate in candidates if candidate.exact_key_match]
    if len(exact) == 1:
        return MatchDecision(exact[0], 1.0, "exact_key")
    if len(exact) > 1:
        return MatchDecision(None, None, "ambiguous")

    ranked = sorted((c for c in candidates if c.score > 0), key=lambda c: c.score, reverse=True)
    if not ranked:
        return MatchDecision(None, None, "no_candidates")
    best = ranked[0]
    runner_up = ranked[1].score if len(ranked) > 1 else 0.0
    if best.score < threshold:
        return MatchDecision(None, None, "below_threshold")
    if best.score - runner_up <= margin:
        return MatchDecision(None, None, "ambiguous")
    return MatchDecision(best, best.score, "name")


def decide_exact(candidates: Sequence[MatchCandidate]) -> MatchDecision:
    """Exact-only variant: a unique exact key, else a unique exact name."""

    exact_keys = [candidate for candidate in candidates if candidate.exact_key_match]
    if len(exact_keys) == 1:
        return MatchDecision(exact_keys[0], 1.0, "exact_key")
    if len(exact_keys) > 1:
        return MatchDecision(None, None, "ambiguous")
    exact_names = [candidate for candidate in candidates if candidate.exact_name_match]
    if len(exact_names) == 1:
        return MatchDecision(exact_names[0], 1.0, "exact_name")
    if len(exact_names) > 1:
        return MatchDecision(None, None, "ambiguous")
    return MatchDecision(None, None, "no_candidates")


class CandidateIndex:
    """Scores one external record against a tenant's internal entities."""

    def __init__(
        self,
        entities: Iterable[Any],
        *,
        key_of: Callable[[Any], object | None],
        names_of: Callable[[Any], tuple[str | None, ...]],
        location_of: Callable[[Any], tuple[str | None, str | None]] | None = None,
        key_prefixes: tuple[str, ...] = ("",),
    ):
        # Values are captured eagerly so later commits (which expire ORM
        # instances) never trigger per-candidate reloads.
        self.entries = [
            (
                entity,
                entity.id,
                normalize_key(key_of(entity)),
                tuple(name for name in names_of(entity) if name),
                location_of(entity) if location_of is not None else None,
            )
            for entity in entities
        ]
        self.key_prefixes = key_prefixes

    @classmethod
    def for_descriptor(cls, descriptor: EntityDescriptor, entities: Iterable[Any]) -> "CandidateIndex":
        return cls(
            entities,
            key_of=descriptor.internal_key,
            names_of=descriptor.internal_names,
            location_of=descriptor.internal_location if descriptor.has_location else None,
            key_prefixes=descriptor.key_prefixes,
        )

    def _key_variants(self, key: object | None) -> tuple[str, ...]:
        normalized = normalize_key(key)
        if not normalized:
            return ()
        return tuple(f"{prefix}{normalized}" for prefix in self.key_prefixes)

    def score(
        self,
        *,
        key: object | None = None,
        name: object | None = None,
        city: object | None = None,
        state: object | None = None,
        exclude_ids: frozenset[int] | set[int] = frozenset(),
    ) -> list[MatchCandidate]:
        variants = self._key_variants(key)
        candidates: list[MatchCandidate] = []
        for entity, entity_id, entity_key, names, location in self.entries:
            if entity_id in exclude_ids:
                continue
            exact_key = bool(variants) and entity_key in variants
            score = max((name_similarity(name, candidate) for candidate in names), default=0.0)
            exact_name = any(is_exact_match(name, candidate) for candidate in names)
            same_location = False
            if location is not None:
                entity_city, entity_state = location
                same_location = is_same_location(city, state, entity_city, entity_state)
            if not (exact_key or score > 0):
                continue
            candidates.append(
                MatchCandidate(
                    entity_id=entity_id,
                    name=names[0] if names else None,
                    score=score,
                    exact_key_match=exact_key,
                    exact_name_match=exact_name,
                    same_location=same_location,
                    entity=entity,
                )
            )
        return candidates


@dataclass
class AutoMatchSummary:
    entity_type: str
    total: int = 0
    matched: int = 0
    ambiguous: int = 0
    no_candidates: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "matched": self.matched,
            "total": self.total,
            "ambiguous": self.ambiguous,
            "no_candidates": self.no_candidates,
            "skipped": self.skipped,
        }


def _customer_index(tenant_id: int, session) -> CandidateIndex:
    customers = session.scalars(select(Customer).where(Customer.tenant_id == tenant_id)).all()
    return CandidateIndex(
        customers,
        key_of=lambda customer: customer.customer_number,
        names_of=lambda customer: (customer.name, customer.facility_name),
    )


def _employee_index(tenant_id: int, session) -> CandidateIndex:
    employees = session.scalars(select(Employee).where(Employee.tenant_id == tenant_id)).all()
    return CandidateIndex(
        employees,
        key_of=lambda employee: employee.employee_number,
        names_of=lambda employee: (employee.full_name,),
    )


def _department_index(tenant_id: int, session) -> CandidateIndex:
    departments = session.scalars(select(Department).where(Department.tenant_id == tenant_id)).all()
    return CandidateIndex(
        departments,
        key_of=lambda department: department.department_number,
        names_of=lambda department: (),
    )


class AutoMatchEngine:
    def __init__(self, session=None):
        self.session = session or db.session

    @property
    def threshold(self) -> float:
        return float(current_app.config.get("RECONCILE_AUTO_MATCH_THRESHOLD", DEFAULT_THRESHOLD))

    @property
    def margin(self) -> float:
        return float(current_app.config.get("RECONCILE_AUTO_MATCH_MARGIN", DEFAULT_MARGIN))

    def _unmatched(self, descriptor: EntityDescriptor, tenant_id: int, batch_id: int | None):
        model = descriptor.model
        stmt = select(model).where(model.tenant_id == tenant_id, model.link_status == LinkStatus.UNMATCHED)
        if batch_id is not None:
            stmt = stmt.where(model.import_batch_id == batch_id)
        return self.session.scalars(stmt.order_by(model.id)).all()

    def _linked_internal_ids(self, descriptor: EntityDescriptor, tenant_id: int) -> set[int]:
        model = descriptor.model
        return set(
            self.session.scalars(
                select(model.linked_entity_id).where(model.tenant_id == tenant_id, model.linked_entity_id.is_not(None))
            )
        )

    def _lookups(self, descriptor: EntityDescriptor, record) -> list[tuple[str, str, dict[str, Any]]]:
        """(link column, index name, score kwargs) for each link a record can resolve."""
        if not descriptor.project_bearing:
            city, state = descriptor.record_location(record)
            return [
                (
                    "linked_entity_id",
                    "primary",
                    {
                        "key": descriptor.record_key(record),
                        "name": descriptor.record_name(record),
                        "city": city,
                        "state": state,
                    },
                )
            ]
        return [
            (
                "linked_entity_id",
                "primary",
                {"key": descriptor.record_key(record), "name": descriptor.record_name(record)},
            ),
            (
                "linked_customer_id",
                "customer",
                {"key": getattr(record, "customer_number", None), "name": record.customer_name},
            ),
            ("linked_employee_id", "employee", {"key": record.employee_number, "name": record.project_manager_name}),
            ("linked_department_id", "department", {"key": record.department_code}),
        ]

    def _run(
        self,
        entity_type: EntityType | str,
        tenant_id: int,
        *,
        rule: Callable[[Sequence[MatchCandidate]], MatchDecision],
        batch_id: int | None = None,
        user_id: int | None = None,
    ) -> AutoMatchSummary:
        descriptor = get_descriptor(entity_type)
        summary = AutoMatchSummary(entity_type=descriptor.label)
        records = self._unmatched(descriptor, tenant_id, batch_id)
        summary.total = len(records)
        if not records:
            return summary

        internal = self.session.scalars(
            select(descriptor.internal_model).where(descriptor.internal_model.tenant_id == tenant_id)
        ).all()
        indexes = {"primary": CandidateIndex.for_descriptor(descriptor, internal)}
        if descriptor.project_bearing:
            indexes.update(
                {
                    "customer": _customer_index(tenant_id, self.session),
                    "employee": _employee_index(tenant_id, self.session),
                    "department": _department_index(tenant_id, self.session),
                }
            )
        taken = self._linked_internal_ids(descriptor, tenant_id) if descriptor.exclusive_link else set()

        plans = [(record.id, self._lookups(descriptor, record)) for record in records]

        for record_id, lookups in plans:
            links: dict[str, int] = {}
            scores: list[float] = []
            reasons: list[str] = []
            for column, index_name, query in lookups:
                exclude = taken if column == "linked_entity_id" else frozenset()
                decision = rule(indexes[index_name].score(**query, exclude_ids=exclude))
                reasons.append(decision.reason)
                if decision.linked:
                    links[column] = decision.candidate.entity_id
                    scores.append(decision.confidence)

            if not links:
                outcome = "ambiguous" if "ambiguous" in reasons else "no_candidates"
                if outcome == "ambiguous":
                    summary.ambiguous += 1
                else:
                    summary.no_candidates += 1
                ReconciliationMonitoring.record_auto_match(entity_type=descriptor.label, outcome=outcome)
                continue

            confidence = sum(scores) / len(scores)
            claimed = claim_unmatched(
                descriptor,
                record_id,
                tenant_id,
                action=LinkAction.AUTO_MATCH,
                links=links,
                confidence=confidence,
                user_id=user_id,
                session=self.session,
            )
            if not claimed:
                self.session.rollback()
                summary.skipped += 1
                ReconciliationMonitoring.record_auto_match(entity_type=descriptor.label, outcome="skipped")
                continue
            self.session.commit()
            summary.matched += 1
            if descriptor.exclusive_link:
                taken.add(links["linked_entity_id"])
            ReconciliationMonitoring.record_auto_match(entity_type=descriptor.label, outcome="matched")

        if batch_id is not None and summary.matched:
            ImportBatchManager(self.session).record_auto_matched(batch_id, summary.matched)

        current_app.logger.info(
            "Vista auto-match finished",
            extra={
                "vista_entity_type": descriptor.label,
                "tenant_id": tenant_id,
                "vista_auto_match": summary.as_dict(),
            },
        )
        return summary

    def run(
        self,
        entity_type: EntityType | str,
        tenant_id: int,
        *,
        batch_id: int | None = None,
        user_id: int | None = None,
    ) -> AutoMatchSummary:
        return self._run(
            entity_type,
            tenant_id,
            rule=lambda candidates: decide(candidates, threshold=self.threshold, margin=self.margin),
            batch_id=batch_id,
            user_id=user_id,
        )

    def run_all(self, tenant_id: int, *, user_id: int | None = None) -> dict[str, AutoMatchSummary]:
        """Auto-match contracts and work orders, keyed by their payload names."""
        return {
            descriptor.result_key: self.run(descriptor.entity_type, tenant_id, user_id=user_id)
            for descriptor in (CONTRACT, WORK_ORDER)
        }

    def auto_link_exact(
        self,
        entity_type: EntityType | str,
        tenant_id: int,
        *,
        user_id: int | None = None,
        batch_id: int | None = None,
    ) -> AutoMatchSummary:
        """Link only records with a unique exact key or exact name candidate."""
        return self._run(entity_type, tenant_id, rule=decide_exact, batch_id=batch_id, user_id=user_id)


__all__ = [
    "AutoMatchEngine",
    "AutoMatchSummary",
    "CandidateIndex",
    "MatchCandidate",
    "MatchDecision",
    "decide",
    "decide_exact",
]
