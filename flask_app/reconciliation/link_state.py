"""
Link state machine for Vista records.

``TRANSITIONS`` is the single source of truth for which actions may move a
record between link states. Manual actions go through ``LinkService``; system
writers (auto-match, promotion) use ``claim_unmatched`` which re-checks the
status inside the ``UPDATE`` so a concurrent manual action always wins.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Mapping

from flask import current_app
from sqlalchemy import select, update

from flask_app.models.base import db
from flask_app.models.internal import Customer, Department, Employee
from flask_app.models.vista import EntityType, LinkStatus

from .descriptors import EntityDescriptor, get_descriptor
from .errors import (
    InvalidLinkTransition,
    LinkConflict,
    LinkTargetNotFound,
    RecordNotFound,
    ReconciliationError,
)


class LinkAction(str, enum.Enum):
    AUTO_MATCH = "auto_match"
    LINK = "link"
    PROMOTE = "promote"
    IGNORE = "ignore"
    UNLINK = "unlink"


_ANY = frozenset(LinkStatus)

TRANSITIONS: Mapping[LinkAction, tuple[frozenset[LinkStatus], LinkStatus]] = {
    LinkAction.AUTO_MATCH: (frozenset({LinkStatus.UNMATCHED}), LinkStatus.AUTO_MATCHED),
    LinkAction.PROMOTE: (frozenset({LinkStatus.UNMATCHED}), LinkStatus.MANUAL_MATCHED),
    LinkAction.LINK: (_ANY, LinkStatus.MANUAL_MATCHED),
    LinkAction.IGNORE: (frozenset({LinkStatus.UNMATCHED, LinkStatus.IGNORED}), LinkStatus.IGNORED),
    LinkAction.UNLINK: (_ANY, LinkStatus.UNMATCHED),
}

# Association columns on contracts/work orders and the internal model behind each.
ASSOCIATION_TARGETS = {
    "linked_customer_id": ("customer", Customer),
    "linked_employee_id": ("employee", Employee),
    "linked_department_id": ("department", Department),
}
_ASSOCIATION_ALIASES = {
    "customer_id": "linked_customer_id",
    "employee_id": "linked_employee_id",
    "department_id": "linked_department_id",
}


def transition(action: LinkAction, current: LinkStatus) -> LinkStatus:
    """Return the target status for ``action`` or raise if it is not allowed from ``current``."""

    allowed, target = TRANSITIONS[action]
    if current not in allowed:
        raise InvalidLinkTransition(action.value, current.value)
    return target


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def claim_unmatched(
    descriptor: EntityDescriptor,
    record_id: int,
    tenant_id: int,
    *,
    action: LinkAction,
    links: Mapping[str, Any],
    confidence: float | None = None,
    user_id: int | None = None,
    session=None,
) -> bool:
    """
    Conditionally move an ``unmatched`` record into the action's target state.

    Returns False when the record is no longer unmatched; the caller must treat
    that as "another actor won" and leave the record alone.
    """
    session = session or db.session
    allowed, target = TRANSITIONS[action]
    model = descriptor.model
    stmt = (
        update(model)
        .where(
            model.id == record_id,
            model.tenant_id == tenant_id,
            model.link_status.in_(list(allowed)),
        )
        .values(
            **dict(links),
            link_status=target,
            link_confidence=confidence,
            linked_at=_utcnow(),
            linked_by=user_id,
        )
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    return bool(result.rowcount)


class LinkService:
    """Manual link, unlink and ignore actions initiated by a user."""

    def __init__(self, session=None):
        self.session = session or db.session

    def get_record(self, descriptor: EntityDescriptor, record_id: int, tenant_id: int):
        record = self.session.scalars(
            select(descriptor.model).where(descriptor.model.id == record_id, descriptor.model.tenant_id == tenant_id)
        ).first()
        if record is None:
            raise RecordNotFound(descriptor.label, record_id)
        return record

    def _require_target(self, kind: str, model, entity_id: Any, tenant_id: int):
        try:
            entity_id = int(entity_id)
        except (TypeError, ValueError) as exc:
            raise LinkTargetNotFound(kind, entity_id) from exc
        entity = self.session.scalars(select(model).where(model.id == entity_id, model.tenant_id == tenant_id)).first()
        if entity is None:
            raise LinkTargetNotFound(kind, entity_id)
        return entity

    def _check_exclusive(self, descriptor: EntityDescriptor, record, entity_id: int) -> None:
        model = descriptor.model
        other = self.session.scalars(
            select(model).where(
                model.tenant_id == record.tenant_id,
                model.linked_entity_id == entity_id,
                model.id != record.id,
            )
        ).first()
        if other is not None:
            raise LinkConflict(descriptor.internal_kind, entity_id, descriptor.record_key(other))

    def _resolve_associations(self, associations: Mapping[str, Any] | None, tenant_id: int) -> dict[str, int]:
        resolved: dict[str, int] = {}
        for name, value in (associations or {}).items():
            if value is None:
                continue
            column = _ASSOCIATION_ALIASES.get(name, name)
            if column not in ASSOCIATION_TARGETS:
                raise ReconciliationError(f"Unknown association '{name}'.")
            kind, model = ASSOCIATION_TARGETS[column]
            resolved[column] = self._require_target(kind, model, value, tenant_id).id
        return resolved

    def link(
        self,
        entity_type: EntityType | str,
        record_id: int,
        tenant_id: int,
        *,
        entity_id: int | None = None,
        user_id: int | None = None,
        associations: Mapping[str, Any] | None = None,
    ):
        """
        Manually link a record. Re-linking replaces the previous target.

        Contracts and work orders may carry ``associations`` (customer,
        employee, department) alongside or instead of the project link.
        """
        descriptor = get_descriptor(entity_type)
        record = self.get_record(descriptor, record_id, tenant_id)
        target_status = transition(LinkAction.LINK, record.link_status)

        updates: dict[str, int] = {}
        if entity_id is not None:
            target = self._require_target(descriptor.internal_kind, descriptor.internal_model, entity_id, tenant_id)
            if descriptor.exclusive_link:
                self._check_exclusive(descriptor, record, target.id)
            updates["linked_entity_id"] = target.id
        if associations:
            if not descriptor.project_bearing:
                raise ReconciliationError(f"Vista {descriptor.label} records do not carry associations.")
            updates.update(self._resolve_associations(associations, tenant_id))
        if not updates:
            raise ReconciliationError("A link target is required.")

        previous = record.linked_entity_id
        for column, value in updates.items():
            setattr(record, column, value)
        record.link_status = target_status
        record.link_confidence = None
        record.linked_at = _utcnow()
        record.linked_by = user_id
        self.session.commit()

        current_app.logger.info(
            "Vista record linked",
            extra={
                "vista_entity_type": descriptor.label,
                "vista_record_id": record.id,
                "vista_linked_entity_id": record.linked_entity_id,
                "vista_previous_entity_id": previous,
                "tenant_id": tenant_id,
                "user_id": user_id,
            },
        )
        return record

    def unlink(self, entity_type: EntityType | str, record_id: int, tenant_id: int, *, user_id: int | None = None):
        """Return a record to ``unmatched``; a no-op when it already is."""
        descriptor = get_descriptor(entity_type)
        record = self.get_record(descriptor, record_id, tenant_id)
        if record.link_status == LinkStatus.UNMATCHED:
            return record

        record.link_status = transition(LinkAction.UNLINK, record.link_status)
        for column in descriptor.model.LINK_COLUMNS:
            setattr(record, column, None)
        record.link_confidence = None
        record.linked_at = None
        record.linked_by = None
        self.session.commit()

        current_app.logger.info(
            "Vista record unlinked",
            extra={
                "vista_entity_type": descriptor.label,
                "vista_record_id": record.id,
                "tenant_id": tenant_id,
                "user_id": user_id,
            },
        )
        return record

    def ignore(self, entity_type: EntityType | str, record_id: int, tenant_id: int, *, user_id: int | None = None):
        """Mark a record as intentionally unreconciled. Matched records must be unlinked first."""
        descriptor = get_descriptor(entity_type)
        record = self.get_record(descriptor, record_id, tenant_id)
        target_status = transition(LinkAction.IGNORE, record.link_status)
        if record.link_status == target_status:
            return record

        record.link_status = target_status
        record.linked_at = _utcnow()
        record.linked_by = user_id
        self.session.commit()

        current_app.logger.info(
            "Vista record ignored",
            extra={
                "vista_entity_type": descriptor.label,
                "vista_record_id": record.id,
                "tenant_id": tenant_id,
                "user_id": user_id,
            },
        )
        return record


__all__ = [
    "ASSOCIATION_TARGETS",
    "LinkAction",
    "LinkService",
    "TRANSITIONS",
    "claim_unmatched",
    "transition",
]
