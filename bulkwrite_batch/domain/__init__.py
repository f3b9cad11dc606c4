"""
bulkwrite_batch.domain -- Pure types and functions for bulk writes.

ZERO I/O.  All types are frozen dataclasses.
"""

from bulkwrite_batch.domain.backoff import compute_retry_delay, compute_scheduled_for
from bulkwrite_batch.domain.chunker import ensure_homogeneous, split, split_within_quota
from bulkwrite_batch.domain.types import (
    Chunk,
    ChunkError,
    ExecutionResult,
    FailedRecord,
    OperationDescriptor,
    OperationKind,
    Record,
    RecordOutcome,
    RetryJob,
    RetryJobStatus,
    RetryPolicy,
    record_key,
    require_descriptor,
)

__all__ = [
    "Chunk",
    "ChunkError",
    "ExecutionResult",
    "FailedRecord",
    "OperationDescriptor",
    "OperationKind",
    "Record",
    "RecordOutcome",
    "RetryJob",
    "RetryJobStatus",
    "RetryPolicy",
    "compute_retry_delay",
    "compute_scheduled_for",
    "ensure_homogeneous",
    "record_key",
    "require_descriptor",
    "split",
    "split_within_quota",
]
