"""
Chunker -- quota-aware partitioning of a homogeneous batch.

Contract:
    ``split(records, chunk_size)`` returns ceil(n / chunk_size) chunks; all
    but the last hold exactly ``chunk_size`` records.  Concatenating the
    chunks reproduces the input, order for order.

Architecture: bulkwrite_batch/domain.  ZERO I/O.

Failure modes:
    InvalidChunkSizeError -- chunk_size is not a positive int.
    MixedEntityTypeError -- records of more than one entity type.
    PayloadTooLargeError -- (quota split) one record alone is over budget.
"""

from __future__ import annotations

from typing import Callable, Sequence

from bulkwrite_kernel.exceptions import (
    InvalidChunkSizeError,
    MixedEntityTypeError,
    PayloadTooLargeError,
)

from bulkwrite_batch.domain.types import Chunk, Record


def _require_positive(size: object) -> int:
    if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
        raise InvalidChunkSizeError(size)
    return size


def ensure_homogeneous(records: Sequence[Record]) -> str | None:
    """Return the batch's entity type, or None for an empty batch."""
    if not records:
        return None
    expected = records[0].entity_type
    for index, record in enumerate(records):
        if record.entity_type != expected:
            raise MixedEntityTypeError(expected, record.entity_type, index)
    return expected


def split(records: Sequence[Record], chunk_size: int) -> tuple[Chunk, ...]:
    """Split ``records`` into chunks of ``chunk_size``."""
    size = _require_positive(chunk_size)
    ensure_homogeneous(records)
    return tuple(
        Chunk(index=i, records=tuple(records[start:start + size]))
        for i, start in enumerate(range(0, len(records), size))
    )


def split_within_quota(
    records: Sequence[Record],
    max_records: int,
    max_bytes: int,
    size_of: Callable[[Record], int],
) -> tuple[Chunk, ...]:
    """
    Split so that every chunk respects both the record and byte quota.

    A chunk is closed as soon as adding the next record would exceed
    either limit.  ``size_of`` returns the serialized size of one record.
    """
    count_limit = _require_positive(max_records)
    byte_limit = _require_positive(max_bytes)
    ensure_homogeneous(records)

    chunks: list[Chunk] = []
    current: list[Record] = []
    current_bytes = 0
    for record in records:
        record_bytes = size_of(record)
        if record_bytes > byte_limit:
            raise PayloadTooLargeError(record_bytes, byte_limit, what="record")
        if current and (
            len(current) >= count_limit or current_bytes + record_bytes > byte_limit
        ):
            chunks.append(Chunk(index=len(chunks), records=tuple(current)))
            current, current_bytes = [], 0
        current.append(record)
        current_bytes += record_bytes
    if current:
        chunks.append(Chunk(index=len(chunks), records=tuple(current)))
    return tuple(chunks)
