"""
Processor -- run a whole batch: chunk, execute, hook, aggregate, schedule.

Contract:
    ``process(records, descriptor, retry_policy)`` validates the request,
    splits the batch into quota-compliant chunks and runs every chunk in
    order: pre hooks, one executor call, post hooks, and, when the store
    rejected records, error hooks with the failing records and a
    ``PartialFailure``.  Failures are collected in one map keyed by record
    key.  After the last chunk, if the policy asks for it and failures
    remain, the deduplicated failures are handed to the RetryHandler.

Architecture: bulkwrite_batch/services.  Imports from bulkwrite_batch.domain
    and sibling services; RetryHandler is optional and injected.

Failure modes:
    ValidationError -- bad descriptor, mixed batch, bad chunk size.  Raised
        before any write.
    StructuralError (and any request-level store error) -- aborts only the
        chunk that raised it: logged, error hooks fire for that chunk, and
        it is recorded in ``ExecutionResult.chunk_errors``.  The remaining
        chunks still run and per-record failures are still scheduled for
        retry.  The first such error is then re-raised with the run's
        result attached as ``partial_result``.
    Retry scheduling errors never propagate; they are logged and reported
        in ``ExecutionResult.retry_error``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable, Sequence
from uuid import UUID, uuid4

from bulkwrite_config.schema import BulkWriteSettings
from bulkwrite_kernel.domain.clock import Clock, SystemClock
from bulkwrite_kernel.exceptions import MixedEntityTypeError, PartialFailure
from bulkwrite_kernel.logging_config import LogContext, get_logger

from bulkwrite_batch.domain.chunker import ensure_homogeneous, split, split_within_quota
from bulkwrite_batch.domain.types import (
    Chunk,
    ChunkError,
    ExecutionResult,
    FailedRecord,
    OperationDescriptor,
    Record,
    RetryPolicy,
    record_key,
    require_descriptor,
)
from bulkwrite_batch.services.context import ExecutionContext, RunMetadata
from bulkwrite_batch.services.executor import OperationExecutor
from bulkwrite_batch.services.hooks import HookManager

if TYPE_CHECKING:
    from bulkwrite_batch.services.retry_handler import RetryHandler

logger = get_logger("batch.processor")


class Processor:
    """Top-level bulk write pipeline for one homogeneous batch.

    Contract:
        - Every chunk runs; neither per-record failures nor a chunk-level
          error stop later chunks.
        - ``failed_records`` holds at most one entry per record key.
        - Hooks fire on every attempt, whatever the remaining budget.

    Non-goals:
        - Does NOT rerun failures itself -- retries are deferred jobs.
        - Does NOT run chunks concurrently.
    """

    def __init__(
        self,
        executor: OperationExecutor,
        hooks: HookManager | None = None,
        settings: BulkWriteSettings | None = None,
        retry_handler: RetryHandler | None = None,
        clock: Clock | None = None,
        size_of: Callable[[Record], int] | None = None,
    ) -> None:
        self._executor = executor
        self._hooks = hooks or HookManager()
        self._settings = settings or BulkWriteSettings()
        self._retry_handler = retry_handler
        self._clock = clock or SystemClock()
        self._size_of = size_of
        if self._settings.max_call_payload_bytes is not None and size_of is None:
            raise ValueError("max_call_payload_bytes requires a size_of function")

    @property
    def hooks(self) -> HookManager:
        return self._hooks

    @property
    def settings(self) -> BulkWriteSettings:
        return self._settings

    # -------------------------------------------------------------------------
    # Process
    # -------------------------------------------------------------------------

    def process(
        self,
        records: Sequence[Record],
        descriptor: OperationDescriptor,
        retry_policy: RetryPolicy | None = None,
        *,
        job_id: UUID | None = None,
        attempt: int = 1,
    ) -> ExecutionResult:
        """Write ``records`` and return the aggregated result.

        ``retry_policy`` None means no retry is scheduled.  ``job_id`` and
        ``attempt`` identify a retry rerun in the log and run metadata.
        """
        descriptor = require_descriptor(descriptor)
        descriptor.validate()
        policy = retry_policy if retry_policy is not None else RetryPolicy.disabled()

        batch_type = ensure_homogeneous(records)
        if batch_type is not None and batch_type != descriptor.entity_type:
            raise MixedEntityTypeError(descriptor.entity_type, batch_type, 0)

        chunks = self._split(records)

        start = time.monotonic()
        started_at = self._clock.now()
        run_id = uuid4()
        context = ExecutionContext(
            RunMetadata(
                run_id=run_id,
                operation=descriptor.operation,
                entity_type=descriptor.entity_type,
                started_at=started_at,
                job_id=job_id,
                attempt=attempt,
                correlation_id=policy.correlation_id,
            ),
            max_chars=self._settings.max_log_chars,
            clock=self._clock,
        )

        with LogContext.bind(
            run_id=str(run_id),
            entity_type=descriptor.entity_type,
            job_id=str(job_id) if job_id else None,
            correlation_id=policy.correlation_id,
        ):
            context.log(
                f"{descriptor.operation.value} {len(records)} "
                f"{descriptor.entity_type} record(s) in {len(chunks)} chunk(s), "
                f"attempt {attempt}"
            )

            failures: dict[str, FailedRecord] = {}
            chunk_errors: list[ChunkError] = []
            first_error: Exception | None = None
            success_count = 0
            for chunk in chunks:
                try:
                    success_count += self._run_chunk(chunk, descriptor, context, failures)
                except Exception as exc:
                    chunk_errors.append(_chunk_error(chunk, exc))
                    if first_error is None:
                        first_error = exc

            context.log(
                f"run finished: {success_count} succeeded, "
                f"{len(failures)} failed"
                + (f", {len(chunk_errors)} chunk(s) aborted" if chunk_errors else "")
            )

            retry_job_id, retry_error = None, None
            if failures and policy.should_schedule:
                retry_job_id, retry_error = self._schedule(
                    descriptor, failures, policy, context,
                )

            completed_at = self._clock.now()
            duration_ms = int((time.monotonic() - start) * 1000)

            logger.info(
                "process_completed",
                extra={
                    "operation": descriptor.operation.value,
                    "total_records": len(records),
                    "chunk_count": len(chunks),
                    "success_count": success_count,
                    "failure_count": len(failures),
                    "aborted_chunks": len(chunk_errors),
                    "attempt": attempt,
                    "retry_job_id": str(retry_job_id) if retry_job_id else None,
                    "duration_ms": duration_ms,
                },
            )

        result = ExecutionResult(
            run_id=run_id,
            operation=descriptor.operation,
            entity_type=descriptor.entity_type,
            total_records=len(records),
            chunk_count=len(chunks),
            success_count=success_count,
            failed_records=tuple(failures.values()),
            log=context.text,
            retry_job_id=retry_job_id,
            retry_error=retry_error,
            chunk_errors=tuple(chunk_errors),
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=duration_ms,
        )

        if first_error is not None:
            first_error.partial_result = result
            raise first_error
        return result

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _split(self, records: Sequence[Record]) -> tuple[Chunk, ...]:
        chunk_size = min(
            self._settings.effective_chunk_size,
            self._executor.store.max_records_per_call,
        )
        max_bytes = self._settings.max_call_payload_bytes
        if max_bytes is None:
            return split(records, chunk_size)
        return split_within_quota(records, chunk_size, max_bytes, self._size_of)

    def _run_chunk(
        self,
        chunk: Chunk,
        descriptor: OperationDescriptor,
        context: ExecutionContext,
        failures: dict[str, FailedRecord],
    ) -> int:
        """Run one chunk; returns the number of succeeded records."""
        self._hooks.dispatch_pre(chunk, context)

        try:
            outcomes = self._executor.execute(chunk, descriptor)
        except Exception as exc:
            context.log(
                f"chunk {chunk.index} aborted: {type(exc).__name__}: {exc}",
                logging.ERROR,
            )
            logger.error(
                "chunk_aborted",
                extra={
                    "chunk_index": chunk.index,
                    "chunk_size": len(chunk),
                    "error_type": type(exc).__name__,
                    "error_code": getattr(exc, "code", None),
                },
            )
            self._hooks.dispatch_error(chunk.records, context, exc)
            raise

        self._hooks.dispatch_post(chunk, outcomes, context)

        failed = [o for o in outcomes if not o.succeeded]
        succeeded = len(outcomes) - len(failed)
        for outcome in failed:
            key = record_key(outcome.record)
            if key not in failures:
                failures[key] = FailedRecord(
                    key=key,
                    record=outcome.record,
                    message=outcome.message or "rejected by store",
                    chunk_index=chunk.index,
                )

        context.log(
            f"chunk {chunk.index}: {succeeded}/{len(chunk)} succeeded",
            logging.WARNING if failed else logging.INFO,
        )
        for outcome in failed:
            context.log(
                f"record {record_key(outcome.record)} failed: {outcome.message}",
                logging.WARNING,
            )

        if failed:
            error = PartialFailure(
                chunk.index,
                len(failed),
                tuple(o.message or "" for o in failed),
            )
            self._hooks.dispatch_error(
                tuple(o.record for o in failed), context, error,
            )
        return succeeded

    def _schedule(
        self,
        descriptor: OperationDescriptor,
        failures: dict[str, FailedRecord],
        policy: RetryPolicy,
        context: ExecutionContext,
    ) -> tuple[UUID | None, str | None]:
        if self._retry_handler is None:
            context.log("retry requested but no retry handler is configured", logging.WARNING)
            return None, "no retry handler configured"

        try:
            job = self._retry_handler.schedule_retry(
                descriptor,
                [f.record for f in failures.values()],
                policy.retries,
                1,
                base_delay_seconds=policy.base_delay_seconds,
                max_delay_seconds=policy.max_delay_seconds,
                correlation_id=policy.correlation_id,
            )
        except Exception as exc:
            message = f"{type(exc).__name__}: {exc}"
            context.log(f"retry scheduling failed: {message}", logging.ERROR)
            logger.exception("retry_scheduling_failed")
            return None, message

        if job is None:
            return None, None
        context.log(
            f"retry job {job.job_id} scheduled in {job.delay_seconds:g}s "
            f"with {job.retries_left} retries left"
        )
        return job.job_id, None


def _chunk_error(chunk: Chunk, exc: Exception) -> ChunkError:
    return ChunkError(
        chunk_index=chunk.index,
        record_count=len(chunk),
        error_type=type(exc).__name__,
        message=str(exc),
        code=getattr(exc, "code", None),
    )
