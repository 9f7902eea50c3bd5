"""
Idempotent upsert of Vista rows keyed by ``(tenant_id, natural key)``.

The insert is attempted with the dialect's ``ON CONFLICT DO NOTHING`` so the
unique constraint is the single serialization point between concurrent
imports. When nothing was inserted the existing row is updated, touching only
business attributes, ``raw_data`` and import bookkeeping. Link state is never
part of the update set, so re-importing a file cannot undo reconciliation work.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config.monitoring import ReconciliationMonitoring
from flask_app.models.base import db
from flask_app.models.vista import EntityType

from .descriptors import EntityDescriptor, get_descriptor
from .workbook import ParsedRow


@dataclass(frozen=True)
class UpsertResult:
    is_new: bool


@dataclass
class UpsertSummary:
    total: int = 0
    new: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def merge(self, other: "UpsertSummary") -> None:
        self.total += other.total
        self.new += other.new
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "new": self.new,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
        }


def _dialect_insert(dialect_name: str):
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        return pg_insert
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        return sqlite_insert
    return None


class UpsertEngine:
    def __init__(self, session=None):
        self.session = session or db.session

    def _business_values(self, descriptor: EntityDescriptor, record: Mapping[str, Any]) -> dict[str, Any]:
        allowed = set(descriptor.model.business_columns())
        return {name: value for name, value in record.items() if name in allowed and name != descriptor.key_field}

    def upsert(
        self,
        entity_type: EntityType | str,
        record: Mapping[str, Any],
        tenant_id: int,
        batch_id: int | None,
        *,
        raw_data: Mapping[str, Any] | None = None,
    ) -> UpsertResult:
        """
        Insert or update one record.

        ``record`` must carry a non-blank natural key; callers skip rows that
        do not. Raises ``IntegrityError`` for constraint violations other than
        the natural-key conflict.
        """
        descriptor = get_descriptor(entity_type)
        model = descriptor.model
        key = record.get(descriptor.key_field)
        if key is None or str(key).strip() == "":
            raise ValueError(f"{descriptor.key_field} is required for upsert")

        now = datetime.now(timezone.utc)
        business = self._business_values(descriptor, record)
        raw = dict(raw_data) if raw_data is not None else None
        key_column = getattr(model, descriptor.key_field)

        insert_fn = _dialect_insert(self.session.get_bind().dialect.name)
        if insert_fn is not None:
            stmt = (
                insert_fn(model)
                .values(
                    tenant_id=tenant_id,
                    **{descriptor.key_field: key},
                    **business,
                    raw_data=raw,
                    import_batch_id=batch_id,
                    imported_at=now,
                )
                .on_conflict_do_nothing(index_elements=["tenant_id", descriptor.key_field])
            )
            result = self.session.execute(stmt)
            if result.rowcount:
                return UpsertResult(is_new=True)
        else:
            existing_id = self.session.scalar(
                select(model.id).where(model.tenant_id == tenant_id, key_column == key)
            )
            if existing_id is None:
                self.session.add(
                    model(
                        tenant_id=tenant_id,
                        **{descriptor.key_field: key},
                        **business,
                        raw_data=raw,
                        import_batch_id=batch_id,
                        imported_at=now,
                    )
                )
                self.session.flush()
                return UpsertResult(is_new=True)

        self.session.execute(
            update(model)
            .where(model.tenant_id == tenant_id, key_column == key)
            .values(**business, raw_data=raw, import_batch_id=batch_id, imported_at=now)
            .execution_options(synchronize_session=False)
        )
        return UpsertResult(is_new=False)

    def upsert_rows(
        self,
        entity_type: EntityType | str,
        rows: Iterable[ParsedRow | Mapping[str, Any]],
        tenant_id: int,
        batch_id: int | None,
        *,
        chunk_size: int | None = None,
        summary: UpsertSummary | None = None,
    ) -> UpsertSummary:
        """
        Upsert a stream of rows, committing once per chunk.

        Rows with a blank natural key are skipped. A constraint violation on a
        single row marks it failed and the rest of the chunk continues;
        infrastructure errors roll back the open chunk and propagate.

        Counts only reach ``summary`` when their chunk commits, so a caller
        that passes its own summary still holds the committed tally after an
        infrastructure error.
        """
        descriptor = get_descriptor(entity_type)
        if chunk_size is None:
            chunk_size = int(current_app.config.get("RECONCILE_CHUNK_SIZE", 500))
        chunk_size = max(chunk_size, 1)

        committed = summary if summary is not None else UpsertSummary()
        chunk = UpsertSummary()
        pending = 0
        try:
            for row in rows:
                if isinstance(row, ParsedRow):
                    values, raw, row_number = row.values, row.raw, row.row_number
                else:
                    values, raw, row_number = row, None, None
                chunk.total += 1

                key = values.get(descriptor.key_field)
                if key is None or str(key).strip() == "":
                    chunk.skipped += 1
                    continue

                try:
                    with self.session.begin_nested():
                        result = self.upsert(descriptor.entity_type, values, tenant_id, batch_id, raw_data=raw)
                except IntegrityError as exc:
                    chunk.failed += 1
                    current_app.logger.warning(
                        "Vista row failed to upsert",
                        extra={
                            "vista_entity_type": descriptor.label,
                            "vista_key": key,
                            "vista_row_number": row_number,
                            "vista_batch_id": batch_id,
                            "vista_error": str(exc.orig) if exc.orig is not None else str(exc),
                        },
                    )
                    continue

                if result.is_new:
                    chunk.new += 1
                else:
                    chunk.updated += 1
                pending += 1
                if pending >= chunk_size:
                    self._commit_chunk(descriptor, chunk, committed)
                    chunk = UpsertSummary()
                    pending = 0

            self._commit_chunk(descriptor, chunk, committed)
        except SQLAlchemyError:
            self.session.rollback()
            raise
        return committed

    def _commit_chunk(self, descriptor: EntityDescriptor, chunk: UpsertSummary, committed: UpsertSummary) -> None:
        self.session.commit()
        committed.merge(chunk)
        ReconciliationMonitoring.record_upsert(
            entity_type=descriptor.label,
            new=chunk.new,
            updated=chunk.updated,
            skipped=chunk.skipped,
            failed=chunk.failed,
        )


__all__ = ["UpsertEngine", "UpsertResult", "UpsertSummary"]
