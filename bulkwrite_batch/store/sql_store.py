"""
SqlRecordStore -- SAVEPOINT-per-record reference store.

Contract:
    ``write()`` runs every record of the call inside its own SAVEPOINT, so
    a rejected record rolls back alone and the rest of the call commits
    (partial-failure semantics).  One transaction, one commit per call.

Architecture: bulkwrite_batch/store.  Imports from bulkwrite_batch.models,
    the registry, and the codec's value encoding.

Per-record rules:
    INSERT  -- record must not carry a record_id; all required fields.
    UPDATE  -- record_id must exist; present fields are merged.
    UPSERT  -- matched on the named external id field's value; merge or
               insert.  A new row is keyed on that same field.
    DELETE  -- record_id must exist.
    Unknown or mistyped fields reject the record.  A duplicate external
    id hits the unique constraint and rejects the record.
"""

from __future__ import annotations

from typing import Any, Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bulkwrite_kernel.domain.schemas import EntitySchema
from bulkwrite_kernel.exceptions import (
    ChunkLimitExceededError,
    UnknownEntityTypeError,
    UnsupportedOperationError,
)
from bulkwrite_kernel.logging_config import get_logger

from bulkwrite_batch.codec import encode_fields, encode_value
from bulkwrite_batch.domain.types import OperationKind, Record, RecordOutcome
from bulkwrite_batch.models.stored_record import StoredRecordModel
from bulkwrite_batch.registry import EntityTypeRegistry

logger = get_logger("batch.store")


class _RecordRejected(Exception):
    """Per-record rejection inside a SAVEPOINT."""


class SqlRecordStore:
    """Record store backed by the ``stored_records`` table."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: EntityTypeRegistry,
        actor_id: UUID | None = None,
        max_records_per_call: int = 200,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry
        self._actor_id = actor_id or uuid4()
        self._max_records_per_call = max_records_per_call

    @property
    def max_records_per_call(self) -> int:
        return self._max_records_per_call

    @property
    def supported_operations(self) -> frozenset[OperationKind]:
        return frozenset(OperationKind)

    # -------------------------------------------------------------------------
    # Schema lookups
    # -------------------------------------------------------------------------

    def field_exists(self, entity_type: str, field_name: str) -> bool:
        return self._registry.field_exists(entity_type, field_name)

    def is_external_id(self, entity_type: str, field_name: str) -> bool:
        return self._registry.is_external_id(entity_type, field_name)

    # -------------------------------------------------------------------------
    # Write
    # -------------------------------------------------------------------------

    def write(
        self,
        records: Sequence[Record],
        operation: OperationKind,
        external_id_field: str | None = None,
    ) -> tuple[RecordOutcome, ...]:
        if operation not in self.supported_operations:
            raise UnsupportedOperationError(operation)
        if len(records) > self._max_records_per_call:
            raise ChunkLimitExceededError(len(records), self._max_records_per_call)

        outcomes: list[RecordOutcome] = []
        session = self._session_factory()
        try:
            for record in records:
                savepoint = session.begin_nested()
                try:
                    record_id = self._apply(session, record, operation, external_id_field)
                    session.flush()
                    savepoint.commit()
                    outcomes.append(RecordOutcome.success(record, record_id))
                except _RecordRejected as exc:
                    savepoint.rollback()
                    outcomes.append(RecordOutcome.failure(record, str(exc)))
                except SQLAlchemyError as exc:
                    savepoint.rollback()
                    reason = getattr(exc, "orig", None) or exc
                    outcomes.append(
                        RecordOutcome.failure(record, f"{type(exc).__name__}: {reason}")
                    )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        failed = sum(1 for o in outcomes if not o.succeeded)
        logger.debug(
            "store_write_completed",
            extra={
                "operation": operation.value,
                "record_count": len(records),
                "failed": failed,
            },
        )
        return tuple(outcomes)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, entity_type: str, record_id: str) -> Record | None:
        """Load one persisted record, rehydrated to its declared types."""
        schema = self._registry.get(entity_type)
        session = self._session_factory()
        try:
            row = self._load_row(session, entity_type, record_id)
            if row is None:
                return None
            return Record(
                entity_type=entity_type,
                fields=schema.decode_values(row.fields),
                record_id=str(row.id),
            )
        finally:
            session.close()

    def count(self, entity_type: str) -> int:
        session = self._session_factory()
        try:
            return session.execute(
                select(func.count()).select_from(StoredRecordModel).where(
                    StoredRecordModel.entity_type == entity_type,
                )
            ).scalar_one()
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _apply(
        self,
        session: Session,
        record: Record,
        operation: OperationKind,
        external_id_field: str | None,
    ) -> str:
        try:
            schema = self._registry.get(record.entity_type)
        except UnknownEntityTypeError as exc:
            raise _RecordRejected(str(exc)) from None

        if operation is OperationKind.INSERT:
            if record.record_id:
                raise _RecordRejected(f"record {record.record_id} is already persisted")
            return self._insert(session, schema, record)

        if operation is OperationKind.UPSERT:
            return self._upsert(session, schema, record, external_id_field)

        if not record.record_id:
            raise _RecordRejected(f"{operation.value} requires a record id")
        try:
            UUID(record.record_id)
        except ValueError:
            raise _RecordRejected(f"invalid record id {record.record_id!r}") from None
        row = self._load_row(session, record.entity_type, record.record_id)
        if row is None:
            raise _RecordRejected(f"record {record.record_id} does not exist")

        if operation is OperationKind.UPDATE:
            self._merge(schema, row, record)
        else:
            session.delete(row)
        return str(row.id)

    def _insert(
        self,
        session: Session,
        schema: EntitySchema,
        record: Record,
        external_id_field: str | None = None,
    ) -> str:
        self._check(schema, record, partial=False)
        ext_field, ext_value = self._external_key(
            schema, record.fields, preferred=external_id_field,
        )
        row = StoredRecordModel(
            id=uuid4(),
            entity_type=record.entity_type,
            fields=encode_fields(record.fields),
            external_id_field=ext_field,
            external_id_value=ext_value,
            created_by_id=self._actor_id,
        )
        session.add(row)
        return str(row.id)

    def _upsert(
        self,
        session: Session,
        schema: EntitySchema,
        record: Record,
        external_id_field: str | None,
    ) -> str:
        if not external_id_field:
            raise _RecordRejected("upsert requires an external id field")
        value = record.get(external_id_field)
        if value is None:
            raise _RecordRejected(f"external id '{external_id_field}' has no value")

        row = session.execute(
            select(StoredRecordModel).where(
                StoredRecordModel.entity_type == record.entity_type,
                StoredRecordModel.external_id_field == external_id_field,
                StoredRecordModel.external_id_value == str(encode_value(value)),
            )
        ).scalar_one_or_none()
        if row is None:
            return self._insert(session, schema, record, external_id_field)
        self._merge(schema, row, record)
        return str(row.id)

    def _merge(self, schema: EntitySchema, row: StoredRecordModel, record: Record) -> None:
        self._check(schema, record, partial=True)
        merged = {**row.fields, **encode_fields(record.fields)}
        row.fields = merged
        ext_field, ext_value = self._external_key(
            schema, record.fields, preferred=row.external_id_field,
        )
        if ext_field is not None:
            row.external_id_field = ext_field
            row.external_id_value = ext_value
        row.updated_by_id = self._actor_id

    @staticmethod
    def _check(schema: EntitySchema, record: Record, partial: bool) -> None:
        problems = schema.check_values(record.fields, partial=partial)
        if problems:
            raise _RecordRejected("; ".join(problems))

    @staticmethod
    def _external_key(
        schema: EntitySchema,
        fields: dict[str, Any],
        preferred: str | None = None,
    ) -> tuple[str | None, str | None]:
        candidates = [f.name for f in schema.fields if f.external_id]
        if preferred in candidates:
            candidates.remove(preferred)
            candidates.insert(0, preferred)
        for name in candidates:
            value = fields.get(name)
            if value is not None:
                return name, str(encode_value(value))
        return None, None

    @staticmethod
    def _load_row(
        session: Session, entity_type: str, record_id: str,
    ) -> StoredRecordModel | None:
        try:
            key = UUID(record_id)
        except ValueError:
            return None
        row = session.get(StoredRecordModel, key)
        if row is None or row.entity_type != entity_type:
            return None
        return row
