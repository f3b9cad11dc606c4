"""
OperationExecutor -- one chunk, one store call.

Contract:
    ``execute(chunk, descriptor)`` checks everything that would make the
    whole call meaningless (operation support, hard limits, upsert key),
    then dispatches exactly one ``store.write`` and returns one outcome per
    record.  Per-record failures are data, never exceptions.

Architecture: bulkwrite_batch/services.  Imports from bulkwrite_batch.domain
    and the RecordStore protocol only.

Non-goals:
    - Does NOT log -- the processor owns the execution log.
    - Does NOT deduplicate or retry.
"""

from __future__ import annotations

from bulkwrite_kernel.exceptions import (
    ChunkLimitExceededError,
    MissingExternalIdFieldError,
    MixedEntityTypeError,
    StoreContractError,
    UnsupportedOperationError,
)

from bulkwrite_batch.domain.types import (
    Chunk,
    OperationDescriptor,
    OperationKind,
    RecordOutcome,
    require_descriptor,
)
from bulkwrite_batch.store.base import RecordStore


class OperationExecutor:
    """Dispatches a single chunk to the record store."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    @property
    def store(self) -> RecordStore:
        return self._store

    def execute(
        self, chunk: Chunk, descriptor: OperationDescriptor,
    ) -> tuple[RecordOutcome, ...]:
        """Write one chunk.

        Raises:
            InvalidDescriptorError: Missing or malformed descriptor.
            MixedEntityTypeError: Chunk type differs from the descriptor.
            UnsupportedOperationError: Store cannot run the operation.
            ChunkLimitExceededError: Chunk over the store's per-call limit.
            MissingExternalIdFieldError: Upsert key absent or not an
                external id.
            StoreContractError: Store answered with the wrong outcome count.
        """
        descriptor = require_descriptor(descriptor)
        descriptor.validate()

        if not chunk.records:
            return ()

        for index, record in enumerate(chunk.records):
            if record.entity_type != descriptor.entity_type:
                raise MixedEntityTypeError(
                    descriptor.entity_type, record.entity_type, index,
                )

        if descriptor.operation not in self._store.supported_operations:
            raise UnsupportedOperationError(descriptor.operation)

        limit = self._store.max_records_per_call
        if len(chunk) > limit:
            raise ChunkLimitExceededError(len(chunk), limit)

        if descriptor.operation is OperationKind.UPSERT:
            self._check_external_id(descriptor)

        outcomes = tuple(
            self._store.write(
                chunk.records, descriptor.operation, descriptor.external_id_field,
            )
        )
        if len(outcomes) != len(chunk):
            raise StoreContractError(
                f"expected {len(chunk)} outcomes for chunk {chunk.index}, "
                f"got {len(outcomes)}"
            )
        return outcomes

    def _check_external_id(self, descriptor: OperationDescriptor) -> None:
        entity_type = descriptor.entity_type
        field_name = descriptor.external_id_field or ""
        if not self._store.field_exists(entity_type, field_name):
            raise MissingExternalIdFieldError(
                entity_type, field_name, "field does not exist",
            )
        if not self._store.is_external_id(entity_type, field_name):
            raise MissingExternalIdFieldError(
                entity_type, field_name, "field is not an external id",
            )
