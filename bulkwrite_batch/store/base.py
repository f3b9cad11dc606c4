"""
RecordStore protocol.

Contract:
    A store executes one write call over a homogeneous list of records and
    answers with exactly one ``RecordOutcome`` per record, in order.  One
    bad record never aborts the call; only request-level problems (limits,
    unsupported operations, lost connections) raise.

Non-goals:
    - Does NOT chunk -- callers size requests to ``max_records_per_call``.
    - Does NOT retry -- failed records come back as outcomes.
"""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from bulkwrite_batch.domain.types import OperationKind, Record, RecordOutcome


@runtime_checkable
class RecordStore(Protocol):
    """Interface every record store implementation satisfies."""

    @property
    def max_records_per_call(self) -> int: ...

    @property
    def supported_operations(self) -> frozenset[OperationKind]: ...

    def write(
        self,
        records: Sequence[Record],
        operation: OperationKind,
        external_id_field: str | None = None,
    ) -> Sequence[RecordOutcome]:
        """Apply ``operation`` to every record; one outcome per record."""
        ...

    def field_exists(self, entity_type: str, field_name: str) -> bool: ...

    def is_external_id(self, entity_type: str, field_name: str) -> bool: ...
