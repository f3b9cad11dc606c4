"""
ORM model for persisted retry jobs.

Contract:
    RetryJobModel persists one retry attempt of a failed sub-batch.  Each
    reschedule inserts a new row whose ``previous_job_id`` points at its
    predecessor; the predecessor records ``successor_job_id``.  Rows never
    return to PENDING.  ``to_dto()`` / ``from_dto()`` round-trip.

Architecture: bulkwrite_batch/models. Imports from bulkwrite_kernel.db.base only.

Invariants enforced:
    - ``retries_left`` >= 0 and ``attempt`` >= 1 (CHECK constraints).
    - ``entity_type`` is stored beside ``serialized_records`` so the payload
      is rehydrated through the type registry, never by guesswork.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from bulkwrite_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from bulkwrite_batch.domain.types import RetryJob


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RetryJobModel(TrackedBase):
    """Persistent retry job (append-only chain of attempts)."""

    __tablename__ = "retry_jobs"

    __table_args__ = (
        Index("ix_retry_jobs_status", "status"),
        Index("ix_retry_jobs_scheduled_for", "scheduled_for"),
        Index("ix_retry_jobs_previous_job_id", "previous_job_id"),
        CheckConstraint("retries_left >= 0", name="ck_retry_jobs_retries_left"),
        CheckConstraint("attempt >= 1", name="ck_retry_jobs_attempt"),
    )

    entity_type: Mapped[str] = mapped_column(String(200), nullable=False)
    operation: Mapped[str] = mapped_column(String(20), nullable=False)
    external_id_field: Mapped[str | None] = mapped_column(String(200), nullable=True)
    serialized_records: Mapped[str] = mapped_column(Text, nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payload_bytes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    retries_left: Mapped[int] = mapped_column(Integer, nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    delay_seconds: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    base_delay_seconds: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    max_delay_seconds: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    scheduled_for: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    previous_job_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    successor_job_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    succeeded_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    correlation_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def to_dto(self) -> RetryJob:
        from bulkwrite_batch.domain.types import OperationKind, RetryJob, RetryJobStatus

        return RetryJob(
            job_id=self.id,
            entity_type=self.entity_type,
            operation=OperationKind(self.operation),
            external_id_field=self.external_id_field,
            serialized_records=self.serialized_records,
            record_count=self.record_count,
            payload_bytes=self.payload_bytes,
            retries_left=self.retries_left,
            attempt=self.attempt,
            status=RetryJobStatus(self.status),
            error_message=self.error_message,
            error_detail=self.error_detail,
            delay_seconds=self.delay_seconds,
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
            scheduled_for=as_utc(self.scheduled_for),
            started_at=as_utc(self.started_at),
            completed_at=as_utc(self.completed_at),
            previous_job_id=self.previous_job_id,
            successor_job_id=self.successor_job_id,
            succeeded_records=self.succeeded_records,
            failed_records=self.failed_records,
            correlation_id=self.correlation_id,
            created_at=as_utc(self.created_at),
            created_by=self.created_by_id,
        )

    @classmethod
    def from_dto(cls, dto: RetryJob, created_by_id: UUID) -> RetryJobModel:
        return cls(
            id=dto.job_id,
            entity_type=dto.entity_type,
            operation=dto.operation.value,
            external_id_field=dto.external_id_field,
            serialized_records=dto.serialized_records,
            record_count=dto.record_count,
            payload_bytes=dto.payload_bytes,
            retries_left=dto.retries_left,
            attempt=dto.attempt,
            status=dto.status.value,
            error_message=dto.error_message,
            error_detail=dto.error_detail,
            delay_seconds=dto.delay_seconds,
            base_delay_seconds=dto.base_delay_seconds,
            max_delay_seconds=dto.max_delay_seconds,
            scheduled_for=dto.scheduled_for,
            started_at=dto.started_at,
            completed_at=dto.completed_at,
            previous_job_id=dto.previous_job_id,
            successor_job_id=dto.successor_job_id,
            succeeded_records=dto.succeeded_records,
            failed_records=dto.failed_records,
            correlation_id=dto.correlation_id,
            created_by_id=created_by_id,
            updated_by_id=None,
        )
