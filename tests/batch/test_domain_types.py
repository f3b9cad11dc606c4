"""
Tests for bulkwrite_batch.domain.types.

Validates frozen DTOs, record identity keys, descriptor validation,
retry policy budgets, and result/job convenience properties.
"""

from dataclasses import FrozenInstanceError
from decimal import Decimal
from uuid import uuid4

import pytest

from bulkwrite_kernel.exceptions import (
    InvalidDescriptorError,
    InvalidRetryBudgetError,
    UnsupportedOperationError,
)

from bulkwrite_batch.domain.types import (
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


class TestRecordKey:
    def test_persisted_record_uses_id(self):
        record = Record("Contact", {"email": "a@example.com"}, record_id="abc")
        assert record_key(record) == "id:abc"
        assert record.key == "id:abc"

    def test_new_record_uses_content_hash(self):
        record = Record("Contact", {"email": "a@example.com"})
        assert record.key.startswith("hash:")
        assert len(record.key) == len("hash:") + 64

    def test_equal_content_gives_equal_key(self):
        a = Record("Contact", {"email": "a@example.com", "name": "A"})
        b = Record("Contact", {"name": "A", "email": "a@example.com"})
        assert a.key == b.key

    def test_entity_type_is_part_of_the_hash(self):
        a = Record("Contact", {"code": "X"})
        b = Record("Account", {"code": "X"})
        assert a.key != b.key

    def test_decimal_normalization_in_hash(self):
        a = Record("Contact", {"balance": Decimal("1.50")})
        b = Record("Contact", {"balance": Decimal("1.5")})
        assert a.key == b.key

    def test_record_is_frozen(self):
        record = Record("Contact", {"email": "a@example.com"})
        with pytest.raises(FrozenInstanceError):
            record.record_id = "x"


class TestOperationDescriptor:
    def test_factories(self):
        assert OperationDescriptor.insert("Contact").operation is OperationKind.INSERT
        assert OperationDescriptor.update("Contact").operation is OperationKind.UPDATE
        assert OperationDescriptor.delete("Contact").operation is OperationKind.DELETE
        upsert = OperationDescriptor.upsert("Contact", "email")
        assert upsert.operation is OperationKind.UPSERT
        assert upsert.external_id_field == "email"

    def test_from_values_coerces_strings(self):
        descriptor = OperationDescriptor.from_values("upsert", "Contact", "email")
        assert descriptor.operation is OperationKind.UPSERT

    def test_from_values_treats_blank_field_as_none(self):
        descriptor = OperationDescriptor.from_values("insert", "Contact", "")
        assert descriptor.external_id_field is None

    def test_unknown_operation_rejected(self):
        with pytest.raises(UnsupportedOperationError):
            OperationDescriptor.from_values("merge", "Contact")

    def test_upsert_requires_field(self):
        with pytest.raises(InvalidDescriptorError, match="upsert requires"):
            OperationDescriptor(OperationKind.UPSERT, "Contact")

    def test_field_forbidden_for_other_operations(self):
        with pytest.raises(InvalidDescriptorError, match="only valid for upsert"):
            OperationDescriptor(OperationKind.INSERT, "Contact", "email")

    @pytest.mark.parametrize("entity_type", ["", "   "])
    def test_entity_type_required(self, entity_type):
        with pytest.raises(InvalidDescriptorError):
            OperationDescriptor.insert(entity_type)

    def test_require_descriptor_rejects_none(self):
        with pytest.raises(InvalidDescriptorError, match="required"):
            require_descriptor(None)

    def test_require_descriptor_rejects_wrong_type(self):
        with pytest.raises(InvalidDescriptorError, match="expected OperationDescriptor"):
            require_descriptor({"operation": "insert"})


class TestRecordOutcome:
    def test_success_defaults_to_record_id(self):
        record = Record("Contact", {}, record_id="r1")
        assert RecordOutcome.success(record).record_id == "r1"

    def test_failure(self):
        outcome = RecordOutcome.failure(Record("Contact", {}), "bad")
        assert not outcome.succeeded
        assert outcome.message == "bad"


class TestRetryPolicy:
    def test_zero_budget_without_final_attempt_does_not_schedule(self):
        assert not RetryPolicy(retries=0).should_schedule

    def test_zero_budget_with_final_attempt_schedules(self):
        assert RetryPolicy(retries=0, final_attempt=True).should_schedule

    def test_positive_budget_schedules(self):
        assert RetryPolicy(retries=2).should_schedule

    def test_disabled_never_schedules(self):
        assert not RetryPolicy.disabled().should_schedule

    @pytest.mark.parametrize("retries", [-1, 1.5, None, True])
    def test_invalid_budget_rejected(self, retries):
        with pytest.raises(InvalidRetryBudgetError):
            RetryPolicy(retries=retries)


class TestExecutionResult:
    def test_failure_properties(self):
        record = Record("Contact", {"email": "a@example.com"})
        failed = FailedRecord(key=record.key, record=record, message="x", chunk_index=0)
        result = ExecutionResult(
            run_id=uuid4(),
            operation=OperationKind.INSERT,
            entity_type="Contact",
            total_records=2,
            chunk_count=1,
            success_count=1,
            failed_records=(failed,),
        )
        assert result.failure_count == 1
        assert result.has_failures
        assert result.failed_keys == frozenset({record.key})


class TestRetryJob:
    def _job(self, status: RetryJobStatus) -> RetryJob:
        return RetryJob(
            job_id=uuid4(),
            entity_type="Contact",
            operation=OperationKind.UPSERT,
            external_id_field="email",
            serialized_records="{}",
            retries_left=1,
            attempt=1,
            status=status,
        )

    def test_descriptor_rebuilt(self):
        descriptor = self._job(RetryJobStatus.PENDING).descriptor
        assert descriptor == OperationDescriptor.upsert("Contact", "email")

    @pytest.mark.parametrize(
        "status,terminal",
        [
            (RetryJobStatus.PENDING, False),
            (RetryJobStatus.RUNNING, False),
            (RetryJobStatus.COMPLETED, True),
            (RetryJobStatus.FAILED, True),
        ],
    )
    def test_is_terminal(self, status, terminal):
        assert self._job(status).is_terminal is terminal
