"""
bulkwrite_batch.domain.types -- Pure frozen dataclasses for bulk writes.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - Records are never mutated; identity and type are read-only.
    - OperationDescriptor is validated at construction: UPSERT requires an
      external id field, every other operation forbids one.
    - ExecutionResult.failed_records holds at most one entry per record key.
    - RetryPolicy / RetryJob carry retries_left >= 0 and attempt >= 1.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from bulkwrite_kernel.exceptions import (
    InvalidDescriptorError,
    InvalidRetryBudgetError,
    UnsupportedOperationError,
)
from bulkwrite_kernel.utils.hashing import hash_record_content


# =============================================================================
# Enums
# =============================================================================


class OperationKind(str, Enum):
    """Write operation applied to every record of a batch."""

    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"


class RetryJobStatus(str, Enum):
    """Retry job lifecycle status.  Never moves back to PENDING."""

    PENDING = "pending"  # Created, waiting for the scheduler
    RUNNING = "running"  # Claimed by exactly one runner
    COMPLETED = "completed"  # Rerun left no failures
    FAILED = "failed"  # Exhausted, fatal, or superseded by a successor


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True)
class Record:
    """
    An opaque typed entity.

    ``record_id`` is present once the store has persisted the record.
    ``fields`` is excluded from hashing; equality still compares it.
    """

    entity_type: str
    fields: dict[str, Any] = field(default_factory=dict, hash=False)
    record_id: str | None = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    @property
    def key(self) -> str:
        return record_key(self)


def record_key(record: Record) -> str:
    """Identity key: persisted id when present, else a content hash."""
    if record.record_id:
        return f"id:{record.record_id}"
    return f"hash:{hash_record_content(record.entity_type, record.fields)}"


# =============================================================================
# Operation descriptor
# =============================================================================


@dataclass(frozen=True)
class OperationDescriptor:
    """
    What to do with a batch: operation, entity type, upsert key.

    Raises at construction:
        UnsupportedOperationError: ``operation`` is not an OperationKind.
        InvalidDescriptorError: missing entity type, or external id field
            present/absent against the operation.
    """

    operation: OperationKind
    entity_type: str
    external_id_field: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.operation, OperationKind):
            try:
                object.__setattr__(self, "operation", OperationKind(self.operation))
            except ValueError:
                raise UnsupportedOperationError(self.operation) from None
        self.validate()

    def validate(self) -> None:
        """Raise InvalidDescriptorError if the field combination is invalid."""
        if not isinstance(self.entity_type, str) or not self.entity_type.strip():
            raise InvalidDescriptorError("entity_type must be a non-empty string")

        if self.operation is OperationKind.UPSERT:
            if not self.external_id_field:
                raise InvalidDescriptorError("upsert requires external_id_field")
        elif self.external_id_field is not None:
            raise InvalidDescriptorError(
                f"external_id_field is only valid for upsert, "
                f"not {self.operation.value}"
            )

    @classmethod
    def from_values(
        cls,
        operation: str,
        entity_type: str,
        external_id_field: str | None = None,
    ) -> OperationDescriptor:
        """Build from plain strings (e.g. a persisted retry job row)."""
        return cls(operation, entity_type, external_id_field or None)  # type: ignore[arg-type]

    @classmethod
    def insert(cls, entity_type: str) -> OperationDescriptor:
        return cls(OperationKind.INSERT, entity_type)

    @classmethod
    def update(cls, entity_type: str) -> OperationDescriptor:
        return cls(OperationKind.UPDATE, entity_type)

    @classmethod
    def upsert(cls, entity_type: str, external_id_field: str) -> OperationDescriptor:
        return cls(OperationKind.UPSERT, entity_type, external_id_field)

    @classmethod
    def delete(cls, entity_type: str) -> OperationDescriptor:
        return cls(OperationKind.DELETE, entity_type)


def require_descriptor(descriptor: Any) -> OperationDescriptor:
    """Guard for entry points that accept a descriptor from callers."""
    if descriptor is None:
        raise InvalidDescriptorError("descriptor is required")
    if not isinstance(descriptor, OperationDescriptor):
        raise InvalidDescriptorError(
            f"expected OperationDescriptor, got {type(descriptor).__name__}"
        )
    return descriptor


# =============================================================================
# Chunks and outcomes
# =============================================================================


@dataclass(frozen=True)
class Chunk:
    """Ordered, homogeneous slice of a batch sized to the store's quota."""

    index: int
    records: tuple[Record, ...]

    @property
    def entity_type(self) -> str | None:
        return self.records[0].entity_type if self.records else None

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class RecordOutcome:
    """The store's independent verdict for one record of a write call."""

    record: Record
    succeeded: bool
    record_id: str | None = None
    message: str | None = None

    @classmethod
    def success(cls, record: Record, record_id: str | None = None) -> RecordOutcome:
        return cls(record=record, succeeded=True, record_id=record_id or record.record_id)

    @classmethod
    def failure(cls, record: Record, message: str) -> RecordOutcome:
        return cls(record=record, succeeded=False, message=message)


@dataclass(frozen=True)
class FailedRecord:
    """A deduplicated failure collected by the processor."""

    key: str
    record: Record
    message: str
    chunk_index: int


@dataclass(frozen=True)
class ChunkError:
    """A chunk the executor refused as a whole (structural or request-level)."""

    chunk_index: int
    record_count: int
    error_type: str
    message: str
    code: str | None = None


@dataclass(frozen=True)
class ExecutionResult:
    """
    Immutable result of one ``Processor.process`` call.

    ``retry_job_id`` is set when a retry was scheduled; ``retry_error``
    when scheduling was attempted and failed (write outcomes still stand).
    ``chunk_errors`` lists chunks that were refused as a whole; their
    records are neither counted as successes nor retried.
    """

    run_id: UUID
    operation: OperationKind
    entity_type: str
    total_records: int
    chunk_count: int
    success_count: int
    failed_records: tuple[FailedRecord, ...] = ()
    log: str = ""
    retry_job_id: UUID | None = None
    retry_error: str | None = None
    chunk_errors: tuple[ChunkError, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0

    @property
    def failure_count(self) -> int:
        return len(self.failed_records)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed_records)

    @property
    def aborted_chunks(self) -> tuple[int, ...]:
        return tuple(e.chunk_index for e in self.chunk_errors)

    @property
    def failed_keys(self) -> frozenset[str]:
        return frozenset(f.key for f in self.failed_records)


# =============================================================================
# Retry policy and job snapshot
# =============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """
    Caller's retry request for one ``process`` call.

    ``retries`` is the budget handed to the first retry job.  A budget of
    0 schedules nothing unless ``final_attempt`` asks for one last try.
    Delays left as None fall back to settings.
    """

    retries: int = 0
    final_attempt: bool = False
    base_delay_seconds: float | None = None
    max_delay_seconds: float | None = None
    correlation_id: str | None = None
    enabled: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.retries, bool) or not isinstance(self.retries, int) or self.retries < 0:
            raise InvalidRetryBudgetError(self.retries)

    @classmethod
    def disabled(cls) -> RetryPolicy:
        return cls(enabled=False)

    @property
    def should_schedule(self) -> bool:
        return self.enabled and (self.retries > 0 or self.final_attempt)


@dataclass(frozen=True)
class RetryJob:
    """Immutable snapshot of a persisted retry job."""

    job_id: UUID
    entity_type: str
    operation: OperationKind
    serialized_records: str
    retries_left: int
    attempt: int
    status: RetryJobStatus
    external_id_field: str | None = None
    record_count: int = 0
    payload_bytes: int = 0
    error_message: str | None = None
    error_detail: str | None = None
    delay_seconds: float = 0.0
    base_delay_seconds: float = 0.0
    max_delay_seconds: float = 0.0
    scheduled_for: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    previous_job_id: UUID | None = None
    successor_job_id: UUID | None = None
    succeeded_records: int = 0
    failed_records: int = 0
    correlation_id: str | None = None
    created_at: datetime | None = None
    created_by: UUID | None = None

    @property
    def descriptor(self) -> OperationDescriptor:
        return OperationDescriptor(
            self.operation, self.entity_type, self.external_id_field,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (RetryJobStatus.COMPLETED, RetryJobStatus.FAILED)
