"""
Workbook ingest: recognised sheets in, import batches and upserted rows out.

Sheets are recognised by name and processed in dependency order. Rows are
streamed from openpyxl in read-only mode and upserted chunk by chunk, so a
large export never has to be held in memory at once.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import IO, Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from config.monitoring import ReconciliationMonitoring
from flask_app.models.base import db

from .auto_match import AutoMatchEngine
from .batches import ImportBatchManager
from .descriptors import DESCRIPTORS, INGEST_ORDER
from .errors import ReconciliationError, UnrecognizedWorkbook
from .promotion import PromotionEngine
from .upsert import UpsertEngine, UpsertSummary
from .workbook import iter_parsed_chunks, open_workbook


@dataclass
class IngestResult:
    sheets: dict[str, dict[str, Any]] = field(default_factory=dict)
    sheets_found: list[str] = field(default_factory=list)
    sheets_processed: list[str] = field(default_factory=list)
    post_import: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.sheets)
        payload["sheetsFound"] = list(self.sheets_found)
        payload["sheetsProcessed"] = list(self.sheets_processed)
        if self.post_import:
            payload["postImport"] = dict(self.post_import)
        if self.error:
            payload["error"] = self.error
        return payload


class WorkbookIngestService:
    def __init__(self, session=None):
        self.session = session or db.session
        self.batches = ImportBatchManager(self.session)
        self.upserts = UpsertEngine(self.session)

    def ingest(
        self,
        stream: bytes | IO[bytes],
        *,
        file_name: str,
        tenant_id: int,
        user_id: int | None = None,
    ) -> IngestResult:
        """
        Import every recognised sheet of an uploaded workbook.

        Raises ``WorkbookReadError`` when the file cannot be opened and
        ``UnrecognizedWorkbook`` when none of its sheets is a Vista export.
        Row-level problems are counted, never raised. A database failure
        stops the import: the open sheet's batch is completed with the rows
        that already committed, later sheets are not read, and the partial
        result comes back with ``error`` set.
        """
        started = time.perf_counter()
        workbook = open_workbook(stream)
        try:
            result = IngestResult(sheets_found=list(workbook.sheetnames))
            by_sheet = {name.strip(): name for name in workbook.sheetnames}
            recognised = [
                DESCRIPTORS[entity_type] for entity_type in INGEST_ORDER if DESCRIPTORS[entity_type].sheet_name in by_sheet
            ]
            if not recognised:
                ReconciliationMonitoring.record_ingest(duration_seconds=time.perf_counter() - started, status="rejected")
                raise UnrecognizedWorkbook(result.sheets_found)

            for descriptor in recognised:
                worksheet = workbook[by_sheet[descriptor.sheet_name]]
                batch = self.batches.create_batch(
                    tenant_id,
                    file_name=file_name,
                    entity_type=descriptor.entity_type,
                    sheet_name=descriptor.sheet_name,
                    imported_by=user_id,
                )
                batch_id = batch.id
                summary = UpsertSummary()
                try:
                    for chunk in iter_parsed_chunks(
                        worksheet,
                        descriptor.columns,
                        chunk_size=int(current_app.config.get("RECONCILE_CHUNK_SIZE", 500)),
                    ):
                        self.upserts.upsert_rows(descriptor.entity_type, chunk, tenant_id, batch_id, summary=summary)
                except SQLAlchemyError as exc:
                    self.session.rollback()
                    result.error = f"Import of {descriptor.sheet_name} stopped: {exc.__class__.__name__}"
                    current_app.logger.exception(
                        "Vista sheet import failed",
                        extra={
                            "vista_file_name": file_name,
                            "vista_sheet": descriptor.sheet_name,
                            "vista_batch_id": batch_id,
                            "tenant_id": tenant_id,
                            "vista_rows_committed": summary.total,
                        },
                    )
                finally:
                    self.batches.complete_batch(
                        batch_id,
                        records_total=summary.total,
                        records_new=summary.new,
                        records_updated=summary.updated,
                        records_skipped=summary.skipped,
                        records_failed=summary.failed,
                    )
                result.sheets[descriptor.result_key] = {**summary.as_dict(), "batch_id": batch_id}
                if result.failed:
                    break
                result.sheets_processed.append(descriptor.sheet_name)
        finally:
            workbook.close()

        if not result.failed:
            self._post_import(result, recognised, tenant_id, user_id)

        duration = time.perf_counter() - started
        status = "partial" if result.failed else "success"
        ReconciliationMonitoring.record_ingest(duration_seconds=duration, status=status)
        current_app.logger.info(
            "Vista workbook partially imported" if result.failed else "Vista workbook imported",
            extra={
                "vista_file_name": file_name,
                "tenant_id": tenant_id,
                "user_id": user_id,
                "vista_sheets_processed": result.sheets_processed,
                "duration_seconds": round(duration, 3),
            },
        )
        return result

    def _post_import(self, result: IngestResult, descriptors, tenant_id: int, user_id: int | None) -> None:
        config = current_app.config
        if config.get("RECONCILE_POST_IMPORT_AUTO_LINK"):
            matcher = AutoMatchEngine(self.session)
            linked: dict[str, Any] = {}
            for descriptor in descriptors:
                batch_id = result.sheets[descriptor.result_key]["batch_id"]
                linked[descriptor.result_key] = self._guarded(
                    "auto-link",
                    lambda d=descriptor, b=batch_id: matcher.auto_link_exact(
                        d.entity_type, tenant_id, user_id=user_id, batch_id=b
                    ).as_dict(),
                )
            linked["departments"] = self._guarded(
                "department auto-link",
                lambda: PromotionEngine(self.session).auto_link_departments(tenant_id, user_id),
            )
            result.post_import["autoLink"] = linked

        if config.get("RECONCILE_POST_IMPORT_PROMOTE"):
            promoter = PromotionEngine(self.session)
            promoted: dict[str, Any] = {}
            for descriptor in descriptors:
                promoted[descriptor.result_key] = self._guarded(
                    "promotion",
                    lambda d=descriptor: promoter.promote(d.entity_type, tenant_id, user_id).as_dict(),
                )
            result.post_import["promoted"] = promoted

    def _guarded(self, step: str, action):
        # Post-import steps never fail the upload.
        try:
            return action()
        except (ReconciliationError, SQLAlchemyError) as exc:
            self.session.rollback()
            current_app.logger.exception(
                "Vista post-import step failed",
                extra={"vista_post_import_step": step, "error": str(exc)},
            )
            return {"error": str(exc)}


__all__ = ["IngestResult", "WorkbookIngestService"]
