"""
JSON API for the Vista ERP reconciliation engine, mounted at ``/api/vista``.

Every endpoint runs against the organization selected by the org context
middleware. Reads need ``view_reconciliation``; anything that writes needs
``manage_reconciliation``.
"""

from __future__ import annotations

import time
from http import HTTPStatus

from flask import Blueprint, current_app, g, jsonify, request
from flask_login import current_user, login_required

from config.monitoring import ReconciliationMonitoring
from flask_app.models import AdminLog
from flask_app.models.role import MANAGE_RECONCILIATION, VIEW_RECONCILIATION
from flask_app.reconciliation import is_reconciliation_enabled
from flask_app.reconciliation.auto_match import AutoMatchEngine
from flask_app.reconciliation.batches import ImportBatchManager
from flask_app.reconciliation.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from flask_app.reconciliation.descriptors import get_descriptor
from flask_app.reconciliation.duplicates import DuplicateReporter
from flask_app.reconciliation.errors import MissingTenantContext, ReconciliationError
from flask_app.reconciliation.ingest import WorkbookIngestService
from flask_app.reconciliation.link_state import LinkService
from flask_app.reconciliation.promotion import PromotionEngine
from flask_app.reconciliation.queries import ReconciliationQueries, RecordFilters
from flask_app.reconciliation.uploads import allowed_workbook, cleanup_upload, persist_upload
from flask_app.utils.permissions import get_current_organization, permission_required

vista_blueprint = Blueprint("vista", __name__, url_prefix="/api/vista")

DEPARTMENTS = "departments"
_TRUTHY = {"1", "true", "yes", "on"}


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


def _tenant_id() -> int:
    organization = get_current_organization()
    if organization is None:
        raise MissingTenantContext()
    return organization.id


def _user_id() -> int | None:
    return current_user.id if current_user.is_authenticated else None


def _audit(action: str, details: dict) -> None:
    AdminLog.log_action(
        admin_user_id=_user_id(),
        organization_id=_tenant_id(),
        action=action,
        details=details,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def _parse_min_similarity() -> float | None:
    raw = request.args.get("min_similarity")
    if raw in (None, ""):
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ReconciliationError("min_similarity must be a number between 0 and 1.") from exc
    if not 0.0 <= value <= 1.0:
        raise ReconciliationError("min_similarity must be a number between 0 and 1.")
    return value


def _parse_limit(name: str = "limit") -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ReconciliationError(f"{name} must be a positive integer.") from exc
    if value < 1:
        raise ReconciliationError(f"{name} must be a positive integer.")
    return value


@vista_blueprint.errorhandler(ReconciliationError)
def handle_reconciliation_error(exc: ReconciliationError):
    return jsonify(exc.to_payload()), exc.http_status


@vista_blueprint.before_request
def start_request_timer():
    g.vista_request_started = time.perf_counter()


@vista_blueprint.after_request
def record_request_metrics(response):
    started = g.pop("vista_request_started", None)
    if started is not None:
        ReconciliationMonitoring.record_request(
            endpoint=request.endpoint or "unknown",
            duration_seconds=time.perf_counter() - started,
            status=str(response.status_code),
        )
    return response


# ---------------------------------------------------------------------------
# Dashboard and import
# ---------------------------------------------------------------------------


@vista_blueprint.get("/stats")
@login_required
@permission_required(VIEW_RECONCILIATION)
def vista_stats():
    return jsonify(ReconciliationQueries().stats(_tenant_id()))


@vista_blueprint.get("/import/history")
@login_required
@permission_required(VIEW_RECONCILIATION)
def vista_import_history():
    limit = _parse_limit() or current_app.config.get("RECONCILE_HISTORY_LIMIT", 20)
    batches = ImportBatchManager().history(_tenant_id(), limit=limit)
    return jsonify({"batches": [batch.to_dict() for batch in batches]})


@vista_blueprint.post("/import/upload")
@login_required
@permission_required(MANAGE_RECONCILIATION)
def vista_import_upload():
    """
    Import a Vista export workbook.

    ``?background=1`` stores the upload and hands it to the worker, answering
    202 with the Celery task id; otherwise the ingest runs inline.
    """
    tenant_id = _tenant_id()
    file_storage = request.files.get("file")
    if file_storage is None or not file_storage.filename:
        return _json_error("No file uploaded.", HTTPStatus.BAD_REQUEST)
    if not allowed_workbook(file_storage.filename):
        return _json_error("Unsupported file type; upload an .xlsx or .xlsm workbook.", HTTPStatus.BAD_REQUEST)

    if (request.args.get("background") or "").strip().lower() in _TRUTHY:
        return _enqueue_upload(file_storage, tenant_id)

    result = WorkbookIngestService().ingest(
        file_storage.stream,
        file_name=file_storage.filename,
        tenant_id=tenant_id,
        user_id=_user_id(),
    )
    if result.failed:
        return jsonify(result.as_dict()), HTTPStatus.INTERNAL_SERVER_ERROR
    return jsonify(result.as_dict())


def _enqueue_upload(file_storage, tenant_id: int):
    celery_app = get_celery_app(current_app)
    if celery_app is None or not current_app.config.get("RECONCILE_WORKER_ENABLED"):
        return _json_error("Reconciliation worker is not configured.", HTTPStatus.SERVICE_UNAVAILABLE)

    stored_path = persist_upload(file_storage, current_app)
    try:
        async_result = celery_app.send_task(
            "reconciliation.ingest_workbook",
            kwargs={
                "tenant_id": tenant_id,
                "file_path": str(stored_path),
                "file_name": file_storage.filename,
                "user_id": _user_id(),
            },
        )
    except Exception as exc:  # pragma: no cover - broker failure
        current_app.logger.exception(
            "Failed to enqueue Vista workbook ingest",
            extra={"tenant_id": tenant_id, "vista_file_name": file_storage.filename},
            exc_info=exc,
        )
        cleanup_upload(stored_path)
        return _json_error("Failed to enqueue the import; please retry later.", HTTPStatus.INTERNAL_SERVER_ERROR)

    current_app.logger.info(
        "Vista workbook ingest enqueued",
        extra={
            "tenant_id": tenant_id,
            "vista_file_name": file_storage.filename,
            "celery_task_id": async_result.id,
        },
    )
    return (
        jsonify({"task_id": async_result.id, "status": "queued", "queue": DEFAULT_QUEUE_NAME}),
        HTTPStatus.ACCEPTED,
    )


@vista_blueprint.post("/import/auto-match")
@login_required
@permission_required(MANAGE_RECONCILIATION)
def vista_auto_match_all():
    summaries = AutoMatchEngine().run_all(_tenant_id(), user_id=_user_id())
    return jsonify({key: summary.as_dict() for key, summary in summaries.items()})


@vista_blueprint.post("/auto-match/<entity_type>")
@login_required
@permission_required(MANAGE_RECONCILIATION)
def vista_auto_match(entity_type: str):
    summary = AutoMatchEngine().run(entity_type, _tenant_id(), user_id=_user_id())
    return jsonify(summary.as_dict())


@vista_blueprint.post("/auto-link/<entity_type>")
@login_required
@permission_required(MANAGE_RECONCILIATION)
def vista_auto_link_exact(entity_type: str):
    summary = AutoMatchEngine().auto_link_exact(entity_type, _tenant_id(), user_id=_user_id())
    return jsonify(summary.as_dict())


# ---------------------------------------------------------------------------
# Similarity review
# ---------------------------------------------------------------------------


@vista_blueprint.get("/duplicates/stats")
@login_required
@permission_required(VIEW_RECONCILIATION)
def vista_duplicate_stats():
    return jsonify(DuplicateReporter().stats(_tenant_id()))


@vista_blueprint.get("/duplicates/<entity_type>")
@login_required
@permission_required(VIEW_RECONCILIATION)
def vista_duplicates(entity_type: str):
    reporter = DuplicateReporter()
    min_similarity = _parse_min_similarity()
    if entity_type == DEPARTMENTS:
        groups = reporter.find_departments(_tenant_id(), min_similarity)
    else:
        groups = reporter.find(entity_type, _tenant_id(), min_similarity=min_similarity, limit=_parse_limit())
    return jsonify({"groups": [group.to_dict() for group in groups], "total": len(groups)})


# ---------------------------------------------------------------------------
# Promotion and department codes
# ---------------------------------------------------------------------------


@vista_blueprint.post("/import-to-titan/<entity_type>")
@login_required
@permission_required(MANAGE_RECONCILIATION)
def vista_promote(entity_type: str):
    engine = PromotionEngine()
    tenant_id = _tenant_id()
    if entity_type == DEPARTMENTS:
        result = engine.promote_departments(tenant_id, _user_id())
    else:
        result = engine.promote(entity_type, tenant_id, _user_id())
    _audit("VISTA_PROMOTE", {"entity_type": entity_type, "imported": result.imported, "total": result.total})
    return jsonify(result.as_dict())


@vista_blueprint.post("/link-department-code")
@login_required
@permission_required(MANAGE_RECONCILIATION)
def vista_link_department_code():
    payload = _json_body()
    department_id = payload.get("department_id")
    if department_id is None:
        raise ReconciliationError("department_id is required.")
    result = PromotionEngine().link_department_code(
        payload.get("department_code"),
        department_id,
        _tenant_id(),
        _user_id(),
    )
    return jsonify(result)


@vista_blueprint.post("/auto-link-departments")
@login_required
@permission_required(MANAGE_RECONCILIATION)
def vista_auto_link_departments():
    return jsonify(PromotionEngine().auto_link_departments(_tenant_id(), _user_id()))


# ---------------------------------------------------------------------------
# Coverage gaps
# ---------------------------------------------------------------------------


@vista_blueprint.get("/internal-only/<kind>")
@login_required
@permission_required(VIEW_RECONCILIATION)
def vista_internal_only(kind: str):
    items = ReconciliationQueries().internal_only(kind, _tenant_id())
    return jsonify({"items": items, "total": len(items)})


@vista_blueprint.delete("/external-only/<entity_type>")
@login_required
@permission_required(MANAGE_RECONCILIATION)
def vista_delete_external_only(entity_type: str):
    descriptor = get_descriptor(entity_type)
    deleted = ReconciliationQueries().delete_external_only(descriptor.entity_type, _tenant_id(), user_id=_user_id())
    _audit("VISTA_DELETE_UNMATCHED", {"entity_type": descriptor.entity_type.value, "deleted": deleted})
    return jsonify({"deleted": deleted})


# ---------------------------------------------------------------------------
# Platform entity views
# ---------------------------------------------------------------------------


@vista_blueprint.get("/project/<int:entity_id>", defaults={"kind": "projects"})
@vista_blueprint.get("/customer/<int:entity_id>", defaults={"kind": "customers"})
@vista_blueprint.get("/employee/<int:entity_id>", defaults={"kind": "employees"})
@vista_blueprint.get("/vendor/<int:entity_id>", defaults={"kind": "vendors"})
@login_required
@permission_required(VIEW_RECONCILIATION)
def vista_internal_entity(kind: str, entity_id: int):
    """Vista records, contracts and work orders linked to one platform entity."""
    return jsonify(ReconciliationQueries().for_internal(kind, entity_id, _tenant_id()))


@vista_blueprint.get("/contracts/by-project/<int:project_id>")
@login_required
@permission_required(VIEW_RECONCILIATION)
def vista_contract_by_project(project_id: int):
    contract = ReconciliationQueries().contract_for_project(project_id, _tenant_id())
    if contract is None:
        return _json_error("No Vista contract is linked to this project.", HTTPStatus.NOT_FOUND)
    return jsonify(contract)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@vista_blueprint.get("/<entity_type>")
@login_required
@permission_required(VIEW_RECONCILIATION)
def vista_list_records(entity_type: str):
    filters = RecordFilters.coerce(
        status=request.args.get("status"),
        search=request.args.get("search"),
        page=request.args.get("page"),
        page_size=request.args.get("page_size"),
    )
    return jsonify(ReconciliationQueries().list_records(entity_type, _tenant_id(), filters).as_dict())


@vista_blueprint.get("/<entity_type>/<int:record_id>")
@login_required
@permission_required(VIEW_RECONCILIATION)
def vista_get_record(entity_type: str, record_id: int):
    return jsonify(ReconciliationQueries().get_record(entity_type, record_id, _tenant_id()))


@vista_blueprint.post("/<entity_type>/<int:record_id>/link")
@login_required
@permission_required(MANAGE_RECONCILIATION)
def vista_link_record(entity_type: str, record_id: int):
    payload = _json_body()
    associations = {
        name: payload[name] for name in ("customer_id", "employee_id", "department_id") if payload.get(name) is not None
    }
    tenant_id = _tenant_id()
    LinkService().link(
        entity_type,
        record_id,
        tenant_id,
        entity_id=payload.get("entity_id"),
        user_id=_user_id(),
        associations=associations or None,
    )
    return jsonify(ReconciliationQueries().get_record(entity_type, record_id, tenant_id))


@vista_blueprint.delete("/<entity_type>/<int:record_id>/link")
@login_required
@permission_required(MANAGE_RECONCILIATION)
def vista_unlink_record(entity_type: str, record_id: int):
    tenant_id = _tenant_id()
    LinkService().unlink(entity_type, record_id, tenant_id, user_id=_user_id())
    return jsonify(ReconciliationQueries().get_record(entity_type, record_id, tenant_id))


@vista_blueprint.post("/<entity_type>/<int:record_id>/ignore")
@login_required
@permission_required(MANAGE_RECONCILIATION)
def vista_ignore_record(entity_type: str, record_id: int):
    tenant_id = _tenant_id()
    LinkService().ignore(entity_type, record_id, tenant_id, user_id=_user_id())
    return jsonify(ReconciliationQueries().get_record(entity_type, record_id, tenant_id))


def register_vista_routes(app):
    """
    Register the reconciliation API when RECONCILIATION_ENABLED is set.
    """

    if not is_reconciliation_enabled(app):
        return

    if vista_blueprint.name in app.blueprints:
        return

    app.register_blueprint(vista_blueprint)
