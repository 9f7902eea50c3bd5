"""
Import batch bookkeeping.

A batch is opened for every recognised sheet of an uploaded workbook and
completed once its rows are upserted, even when the sheet is empty. Batches
are append-only audit records.
"""

from __future__ import annotations

from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from flask_app.models.base import db
from flask_app.models.vista import EntityType, ImportBatch


class ImportBatchManager:
    def __init__(self, session=None):
        self.session = session or db.session

    def create_batch(
        self,
        tenant_id: int,
        *,
        file_name: str,
        entity_type: EntityType,
        sheet_name: str | None = None,
        records_total: int = 0,
        imported_by: int | None = None,
    ) -> ImportBatch:
        batch = ImportBatch(
            tenant_id=tenant_id,
            file_name=file_name,
            entity_type=entity_type,
            sheet_name=sheet_name,
            records_total=records_total,
            imported_by=imported_by,
            imported_at=datetime.now(timezone.utc),
        )
        self.session.add(batch)
        self.session.commit()
        current_app.logger.info(
            "Vista import batch opened",
            extra={
                "vista_batch_id": batch.id,
                "vista_entity_type": entity_type.value,
                "vista_file_name": file_name,
                "tenant_id": tenant_id,
            },
        )
        return batch

    def complete_batch(
        self,
        batch_id: int,
        *,
        records_total: int | None = None,
        records_new: int,
        records_updated: int,
        records_skipped: int = 0,
        records_failed: int = 0,
    ) -> None:
        """
        Stamp final counters on a batch.

        Bookkeeping is best-effort: a failure here is logged and never undoes
        the upserts that already committed.
        """
        values = {
            "records_new": records_new,
            "records_updated": records_updated,
            "records_skipped": records_skipped,
            "records_failed": records_failed,
            "completed_at": datetime.now(timezone.utc),
        }
        if records_total is not None:
            values["records_total"] = records_total
        try:
            self.session.execute(
                update(ImportBatch)
                .where(ImportBatch.id == batch_id, ImportBatch.completed_at.is_(None))
                .values(**values)
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            current_app.logger.exception(
                "Failed to complete Vista import batch",
                extra={"vista_batch_id": batch_id},
            )

    def record_auto_matched(self, batch_id: int, count: int) -> None:
        if count <= 0:
            return
        try:
            self.session.execute(
                update(ImportBatch)
                .where(ImportBatch.id == batch_id)
                .values(records_auto_matched=ImportBatch.records_auto_matched + count)
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            current_app.logger.exception(
                "Failed to record auto-matched count on batch",
                extra={"vista_batch_id": batch_id, "vista_auto_matched": count},
            )

    def history(self, tenant_id: int, limit: int | None = None) -> list[ImportBatch]:
        """Most recent batches for a tenant, newest first."""
        if limit is None:
            limit = int(current_app.config.get("RECONCILE_HISTORY_LIMIT", 20))
        stmt = (
            select(ImportBatch)
            .where(ImportBatch.tenant_id == tenant_id)
            .order_by(ImportBatch.imported_at.desc(), ImportBatch.id.desc())
            .limit(max(limit, 1))
        )
        return list(self.session.scalars(stmt))

    def latest_by_type(self, tenant_id: int) -> dict[str, ImportBatch]:
        latest: dict[str, ImportBatch] = {}
        for entity_type in EntityType:
            batch = self.session.scalars(
                select(ImportBatch)
                .where(ImportBatch.tenant_id == tenant_id, ImportBatch.entity_type == entity_type)
                .order_by(ImportBatch.imported_at.desc(), ImportBatch.id.desc())
                .limit(1)
            ).first()
            if batch is not None:
                latest[entity_type.value] = batch
        return latest


__all__ = ["ImportBatchManager"]
