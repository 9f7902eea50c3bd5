"""
Reconciliation Celery tasks.

The worker runs the same ingest and auto-match code paths as the web process;
only the process differs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from celery import shared_task
from flask import current_app

from .auto_match import AutoMatchEngine
from .ingest import WorkbookIngestService
from .uploads import cleanup_upload


@shared_task(name="reconciliation.healthcheck", bind=True)
def reconciliation_healthcheck(self) -> dict[str, Any]:
    """
    Heartbeat task used by worker health checks.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="reconciliation.ingest_workbook", bind=True)
def ingest_workbook(
    self,
    *,
    tenant_id: int,
    file_path: str,
    file_name: str,
    user_id: int | None = None,
    keep_file: bool = False,
) -> dict[str, Any]:
    """
    Import a stored workbook. The file is removed afterwards unless ``keep_file``.
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Workbook not found: {file_path}")

    current_app.logger.info(
        "Vista workbook ingest started by worker",
        extra={"vista_file_name": file_name, "tenant_id": tenant_id, "celery_task_id": self.request.id},
    )
    try:
        with path.open("rb") as handle:
            result = WorkbookIngestService().ingest(handle, file_name=file_name, tenant_id=tenant_id, user_id=user_id)
    finally:
        if not keep_file:
            cleanup_upload(path)
    return result.as_dict()


@shared_task(name="reconciliation.auto_match", bind=True)
def auto_match(self, *, tenant_id: int, entity_type: str | None = None, user_id: int | None = None) -> dict[str, Any]:
    engine = AutoMatchEngine()
    if entity_type:
        summary = engine.run(entity_type, tenant_id, user_id=user_id)
        return {summary.entity_type: summary.as_dict()}
    return {key: summary.as_dict() for key, summary in engine.run_all(tenant_id, user_id=user_id).items()}


__all__ = ["auto_match", "ingest_workbook", "reconciliation_healthcheck"]
