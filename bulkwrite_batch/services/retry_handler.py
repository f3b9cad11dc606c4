"""
RetryHandler -- persist a failed sub-batch and schedule its rerun.

Contract:
    ``schedule_retry()`` validates the request, serializes the records with
    their entity type, commits one PENDING ``retry_jobs`` row in its own
    transaction, then registers the runner with the scheduler at the
    backoff delay for ``attempt``.

    The row is committed before the scheduler is called, so a scheduler
    that runs the unit inline finds a committed PENDING row.

Architecture: bulkwrite_batch/services.  The runner is injected as a plain
    callable (``run_job(job_id)``) so the handler never imports it.

Invariants enforced:
    - Empty ``failed_records`` is a no-op: no row, no error.
    - ``retries_left == 0`` is legal (last scheduled attempt).
    - Oversized payloads are rejected before any row exists.
    - No orphaned PENDING rows: a scheduler failure deletes the row just
      created, then raises SchedulingFailure.
"""

from __future__ import annotations

from functools import partial
from typing import Callable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import delete
from sqlalchemy.orm import Session

from bulkwrite_config.schema import BulkWriteSettings
from bulkwrite_kernel.db.engine import session_scope
from bulkwrite_kernel.domain.clock import Clock, SystemClock
from bulkwrite_kernel.exceptions import (
    InvalidRetryBudgetError,
    MixedEntityTypeError,
    PayloadTooLargeError,
    SchedulingFailure,
)
from bulkwrite_kernel.logging_config import get_logger

from bulkwrite_batch.codec import RecordCodec
from bulkwrite_batch.domain.backoff import compute_retry_delay, compute_scheduled_for
from bulkwrite_batch.domain.chunker import ensure_homogeneous
from bulkwrite_batch.domain.types import (
    OperationDescriptor,
    Record,
    RetryJob,
    RetryJobStatus,
    require_descriptor,
)
from bulkwrite_batch.models.retry_job import RetryJobModel
from bulkwrite_batch.registry import EntityTypeRegistry
from bulkwrite_batch.services.scheduler import JobScheduler

logger = get_logger("batch.retry_handler")


def _is_count(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class RetryHandler:
    """Creates retry job rows and registers them with the scheduler.

    Contract:
        - Sole creator of ``retry_jobs`` rows.
        - Deletes only a row it created in the same call, and only when
          the scheduler refused it.

    Non-goals:
        - Does NOT run jobs -- ``run_job`` does, when the scheduler fires.
        - Does NOT transition job status.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        codec: RecordCodec,
        registry: EntityTypeRegistry,
        scheduler: JobScheduler,
        settings: BulkWriteSettings | None = None,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        run_job: Callable[[UUID], object] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._codec = codec
        self._registry = registry
        self._scheduler = scheduler
        self._settings = settings or BulkWriteSettings()
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or uuid4()
        self._run_job = run_job

    def bind_runner(self, run_job: Callable[[UUID], object]) -> None:
        """Set the callable the scheduler invokes with the job id."""
        self._run_job = run_job

    @property
    def scheduler(self) -> JobScheduler:
        return self._scheduler

    # -------------------------------------------------------------------------
    # Schedule
    # -------------------------------------------------------------------------

    def schedule_retry(
        self,
        descriptor: OperationDescriptor,
        failed_records: Sequence[Record],
        retries_left: int,
        attempt: int = 1,
        *,
        base_delay_seconds: float | None = None,
        max_delay_seconds: float | None = None,
        previous_job_id: UUID | None = None,
        correlation_id: str | None = None,
    ) -> RetryJob | None:
        """Persist and schedule one retry job.

        Returns the created job snapshot (status PENDING at creation), or
        None when there is nothing to retry.

        Raises:
            InvalidDescriptorError: Missing or malformed descriptor.
            InvalidRetryBudgetError: retries_left < 0 or attempt < 1.
            MixedEntityTypeError: Records not all of the descriptor's type.
            UnknownEntityTypeError: Entity type not registered.
            PayloadTooLargeError: Serialized payload over the limit.
            SchedulingFailure: Row persistence or scheduler registration
                failed (no row is left behind).
        """
        records = tuple(failed_records or ())
        if not records:
            return None

        descriptor = require_descriptor(descriptor)
        descriptor.validate()
        if not _is_count(retries_left) or retries_left < 0:
            raise InvalidRetryBudgetError(retries_left, attempt)
        if not _is_count(attempt) or attempt < 1:
            raise InvalidRetryBudgetError(retries_left, attempt)

        entity_type = ensure_homogeneous(records)
        if entity_type != descriptor.entity_type:
            raise MixedEntityTypeError(descriptor.entity_type, entity_type, 0)
        self._registry.get(entity_type)

        payload = self._codec.serialize(records)
        payload_bytes = len(payload.encode("utf-8"))
        limit = self._settings.max_retry_payload_bytes
        if payload_bytes > limit:
            raise PayloadTooLargeError(payload_bytes, limit, what="retry payload")

        base = (
            self._settings.base_delay_seconds
            if base_delay_seconds is None else base_delay_seconds
        )
        cap = (
            self._settings.max_delay_seconds
            if max_delay_seconds is None else max_delay_seconds
        )
        delay = compute_retry_delay(attempt, base, cap)

        if self._run_job is None:
            raise SchedulingFailure("no retry runner is bound")

        now = self._clock.now()
        job = RetryJob(
            job_id=uuid4(),
            entity_type=entity_type,
            operation=descriptor.operation,
            external_id_field=descriptor.external_id_field,
            serialized_records=payload,
            record_count=len(records),
            payload_bytes=payload_bytes,
            retries_left=retries_left,
            attempt=attempt,
            status=RetryJobStatus.PENDING,
            delay_seconds=delay,
            base_delay_seconds=base,
            max_delay_seconds=cap,
            scheduled_for=compute_scheduled_for(now, delay),
            previous_job_id=previous_job_id,
            correlation_id=correlation_id,
            created_at=now,
            created_by=self._actor_id,
        )

        self._persist(job)

        try:
            handle = self._scheduler.schedule_at(delay, partial(self._run_job, job.job_id))
        except Exception as exc:
            try:
                self._remove(job.job_id)
            except Exception:
                logger.exception("retry_job_cleanup_failed", extra={"job_id": str(job.job_id)})
            raise SchedulingFailure(
                f"scheduler rejected the job: {type(exc).__name__}: {exc}",
                job_id=str(job.job_id),
            ) from exc

        logger.info(
            "retry_job_created",
            extra={
                "job_id": str(job.job_id),
                "entity_type": entity_type,
                "operation": descriptor.operation.value,
                "record_count": len(records),
                "payload_bytes": payload_bytes,
                "retries_left": retries_left,
                "attempt": attempt,
                "delay_seconds": delay,
                "previous_job_id": str(previous_job_id) if previous_job_id else None,
                "handle": handle,
            },
        )
        return job

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _persist(self, job: RetryJob) -> None:
        try:
            with session_scope(self._session_factory) as session:
                model = RetryJobModel.from_dto(job, created_by_id=self._actor_id)
                model.created_at = job.created_at
                session.add(model)
        except Exception as exc:
            raise SchedulingFailure(
                f"could not persist retry job: {type(exc).__name__}: {exc}",
            ) from exc

    def _remove(self, job_id: UUID) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(delete(RetryJobModel).where(RetryJobModel.id == job_id))
        logger.warning("retry_job_removed", extra={"job_id": str(job_id)})
