"""
ScheduledRetryRunner -- execute one retry job when the scheduler fires.

Contract:
    ``run(job_id)`` drives one job through its state machine:

        PENDING --claim--> RUNNING --+--> COMPLETED   (no failures left)
                                     +--> FAILED      (corrupt payload,
                                     |                 raised error,
                                     |                 budget exhausted,
                                     |                 reschedule failed)
                                     +--> FAILED + successor_job_id
                                                      (superseded)

    The claim is a conditional UPDATE (``WHERE status = 'pending'``); a
    runner that loses it returns None with no side effects.  Every finishing
    transition is guarded on ``status = 'running'``.  Each state change
    runs in its own short transaction, so a successor scheduled inline can
    run to completion before this job is finished.

Architecture: bulkwrite_batch/services.  Reruns go through the Processor
    with retries disabled; rescheduling goes through the RetryHandler.
"""

from __future__ import annotations

import traceback
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from bulkwrite_kernel.db.engine import session_scope
from bulkwrite_kernel.domain.clock import Clock, SystemClock
from bulkwrite_kernel.exceptions import DeserializationError, RetryJobNotFoundError
from bulkwrite_kernel.logging_config import LogContext, get_logger

from bulkwrite_batch.codec import RecordCodec
from bulkwrite_batch.domain.types import (
    ExecutionResult,
    RetryJob,
    RetryJobStatus,
    RetryPolicy,
)
from bulkwrite_batch.models.retry_job import RetryJobModel
from bulkwrite_batch.services.processor import Processor
from bulkwrite_batch.services.retry_handler import RetryHandler

logger = get_logger("batch.retry_runner")


class ScheduledRetryRunner:
    """Runs persisted retry jobs.

    Contract:
        - Sole owner of PENDING -> RUNNING -> {COMPLETED, FAILED}.
        - Never raises out of ``run()`` for job-level problems; they are
          recorded on the row.  ``run()`` raises only if the job row
          itself cannot be read or written.
        - ``get_job()`` / ``get_chain()`` / ``list_jobs()`` for queries.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        processor: Processor,
        retry_handler: RetryHandler,
        codec: RecordCodec,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._processor = processor
        self._retry_handler = retry_handler
        self._codec = codec
        self._clock = clock or SystemClock()
        self._actor_id = actor_id or uuid4()

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self, job_id: UUID | str) -> RetryJob | None:
        """Run one job.  Returns its final snapshot, or None if not claimed."""
        job_id = job_id if isinstance(job_id, UUID) else UUID(str(job_id))

        job = self._claim(job_id)
        if job is None:
            logger.info("retry_job_not_claimed", extra={"job_id": str(job_id)})
            return None

        with LogContext.bind(
            job_id=str(job.job_id),
            entity_type=job.entity_type,
            correlation_id=job.correlation_id,
        ):
            logger.info(
                "retry_job_started",
                extra={
                    "attempt": job.attempt,
                    "retries_left": job.retries_left,
                    "record_count": job.record_count,
                },
            )
            return self._execute(job)

    def _execute(self, job: RetryJob) -> RetryJob:
        # Deserialization failures are terminal: a corrupt payload never heals
        try:
            records = self._codec.deserialize(job.serialized_records, job.entity_type)
        except DeserializationError as exc:
            return self._finish(
                job,
                RetryJobStatus.FAILED,
                error_message=str(exc),
                error_detail=exc.reason,
            )

        descriptor = job.descriptor
        try:
            result = self._processor.process(
                records,
                descriptor,
                RetryPolicy.disabled(),
                job_id=job.job_id,
                attempt=job.attempt,
            )
        except Exception as exc:
            return self._finish(
                job,
                RetryJobStatus.FAILED,
                error_message=f"{type(exc).__name__}: {exc}",
                error_detail=traceback.format_exc(),
            )

        counts = {
            "succeeded_records": result.success_count,
            "failed_records": result.failure_count,
        }

        if not result.has_failures:
            return self._finish(job, RetryJobStatus.COMPLETED, **counts)

        if job.retries_left > 0:
            try:
                successor = self._retry_handler.schedule_retry(
                    descriptor,
                    [f.record for f in result.failed_records],
                    job.retries_left - 1,
                    job.attempt + 1,
                    base_delay_seconds=job.base_delay_seconds,
                    max_delay_seconds=job.max_delay_seconds,
                    previous_job_id=job.job_id,
                    correlation_id=job.correlation_id,
                )
            except Exception as exc:
                return self._finish(
                    job,
                    RetryJobStatus.FAILED,
                    error_message=(
                        f"{result.failure_count} record(s) still failing; "
                        f"reschedule failed: {type(exc).__name__}: {exc}"
                    ),
                    error_detail=_diagnostic(result),
                    **counts,
                )
            return self._finish(
                job,
                RetryJobStatus.FAILED,
                error_message=(
                    f"{result.failure_count} record(s) still failing; "
                    f"superseded by job {successor.job_id}"
                ),
                successor_job_id=successor.job_id,
                **counts,
            )

        return self._finish(
            job,
            RetryJobStatus.FAILED,
            error_message=(
                f"Retries exhausted: {result.failure_count} record(s) still "
                f"failing after attempt {job.attempt}"
            ),
            error_detail=_diagnostic(result),
            **counts,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_job(self, job_id: UUID) -> RetryJob:
        """Raises RetryJobNotFoundError if the job does not exist."""
        session = self._session_factory()
        try:
            model = session.get(RetryJobModel, job_id)
            if model is None:
                raise RetryJobNotFoundError(str(job_id))
            return model.to_dto()
        finally:
            session.close()

    def get_chain(self, job_id: UUID) -> tuple[RetryJob, ...]:
        """The job and every successor after it, in attempt order."""
        chain: list[RetryJob] = []
        seen: set[UUID] = set()
        current: UUID | None = job_id
        while current is not None and current not in seen:
            seen.add(current)
            job = self.get_job(current)
            chain.append(job)
            current = job.successor_job_id
        return tuple(chain)

    def list_jobs(self, status: RetryJobStatus | None = None) -> tuple[RetryJob, ...]:
        session = self._session_factory()
        try:
            query = select(RetryJobModel)
            if status is not None:
                query = query.where(RetryJobModel.status == status.value)
            query = query.order_by(RetryJobModel.attempt, RetryJobModel.created_at)
            return tuple(m.to_dto() for m in session.execute(query).scalars().all())
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------------

    def _claim(self, job_id: UUID) -> RetryJob | None:
        with session_scope(self._session_factory) as session:
            claimed = session.execute(
                update(RetryJobModel)
                .where(
                    RetryJobModel.id == job_id,
                    RetryJobModel.status == RetryJobStatus.PENDING.value,
                )
                .values(
                    status=RetryJobStatus.RUNNING.value,
                    started_at=self._clock.now(),
                    updated_by_id=self._actor_id,
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            if claimed != 1:
                return None
            return session.get(RetryJobModel, job_id).to_dto()

    def _finish(
        self,
        job: RetryJob,
        status: RetryJobStatus,
        **values: Any,
    ) -> RetryJob:
        with session_scope(self._session_factory) as session:
            updated = session.execute(
                update(RetryJobModel)
                .where(
                    RetryJobModel.id == job.job_id,
                    RetryJobModel.status == RetryJobStatus.RUNNING.value,
                )
                .values(
                    status=status.value,
                    completed_at=self._clock.now(),
                    updated_by_id=self._actor_id,
                    **values,
                )
                .execution_options(synchronize_session=False)
            ).rowcount

        log = logger.info if status is RetryJobStatus.COMPLETED else logger.warning
        if updated != 1:
            logger.warning(
                "retry_job_transition_skipped",
                extra={"job_id": str(job.job_id), "target_status": status.value},
            )
        else:
            log(
                "retry_job_finished",
                extra={
                    "job_id": str(job.job_id),
                    "status": status.value,
                    "attempt": job.attempt,
                    "retries_left": job.retries_left,
                    "successor_job_id": (
                        str(values["successor_job_id"])
                        if values.get("successor_job_id") else None
                    ),
                    "error_message": values.get("error_message"),
                },
            )
        return self.get_job(job.job_id)


def _diagnostic(result: ExecutionResult) -> str:
    lines = [f"{f.key}: {f.message}" for f in result.failed_records]
    return "Failed records:\n" + "\n".join(lines) + "\n\nExecution log:\n" + result.log
