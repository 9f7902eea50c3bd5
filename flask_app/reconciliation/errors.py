"""
Exception hierarchy for the Vista reconciliation engine.

Each error carries the HTTP status the API layer should answer with so route
handlers can translate them uniformly.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Sequence


class ReconciliationError(Exception):
    """Base class for reconciliation failures surfaced to callers."""

    http_status: HTTPStatus = HTTPStatus.BAD_REQUEST

    def to_payload(self) -> dict[str, object]:
        return {"error": str(self)}


class UnknownEntityType(ReconciliationError):
    http_status = HTTPStatus.NOT_FOUND

    def __init__(self, value: object) -> None:
        super().__init__(f"Unknown Vista entity type '{value}'.")
        self.value = value


class UnknownInternalKind(ReconciliationError):
    http_status = HTTPStatus.NOT_FOUND

    def __init__(self, value: object) -> None:
        super().__init__(f"Unknown internal entity kind '{value}'.")


class MissingTenantContext(ReconciliationError):
    def __init__(self) -> None:
        super().__init__("An organization context is required for reconciliation requests.")


class RecordNotFound(ReconciliationError):
    http_status = HTTPStatus.NOT_FOUND

    def __init__(self, entity_type: str, record_id: int) -> None:
        super().__init__(f"Vista {entity_type} record {record_id} not found.")
        self.entity_type = entity_type
        self.record_id = record_id


class InternalEntityNotFound(ReconciliationError):
    http_status = HTTPStatus.NOT_FOUND

    def __init__(self, kind: str, entity_id: int) -> None:
        super().__init__(f"{kind.capitalize()} {entity_id} not found in this organization.")
        self.kind = kind
        self.entity_id = entity_id


class LinkTargetNotFound(ReconciliationError):
    """The requested internal entity does not exist in the caller's tenant."""

    def __init__(self, kind: str, entity_id: object) -> None:
        super().__init__(f"{kind.capitalize()} {entity_id} not found in this organization.")
        self.kind = kind
        self.entity_id = entity_id


class LinkConflict(ReconciliationError):
    """The internal entity is already linked to a different Vista record."""

    http_status = HTTPStatus.CONFLICT

    def __init__(self, kind: str, entity_id: int, other_key: str) -> None:
        super().__init__(f"This {kind} ({entity_id}) is already linked to Vista record {other_key}.")
        self.kind = kind
        self.entity_id = entity_id
        self.other_key = other_key


class InvalidLinkTransition(ReconciliationError):
    http_status = HTTPStatus.CONFLICT

    def __init__(self, action: str, status: str) -> None:
        super().__init__(f"Cannot {action} a record whose link status is '{status}'.")
        self.action = action
        self.status = status


class WorkbookReadError(ReconciliationError):
    """The uploaded file could not be opened as a spreadsheet workbook."""


class UnrecognizedWorkbook(ReconciliationError):
    """None of the workbook's sheets matched a known Vista export."""

    def __init__(self, available_sheets: Sequence[str]) -> None:
        super().__init__("No recognized Vista sheets found in workbook.")
        self.available_sheets = tuple(available_sheets)

    def to_payload(self) -> dict[str, object]:
        return {"error": str(self), "availableSheets": list(self.available_sheets)}


__all__ = [
    "ReconciliationError",
    "UnknownEntityType",
    "UnknownInternalKind",
    "MissingTenantContext",
    "RecordNotFound",
    "InternalEntityNotFound",
    "LinkTargetNotFound",
    "LinkConflict",
    "InvalidLinkTransition",
    "WorkbookReadError",
    "UnrecognizedWorkbook",
]
