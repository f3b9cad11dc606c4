"""
Tests for bulkwrite_batch.services.processor -- whole-batch pipeline.

Uses FakeRecordStore and a stub retry handler; no database required.
"""

from uuid import uuid4

import pytest

from bulkwrite_config.schema import BulkWriteSettings
from bulkwrite_kernel.exceptions import (
    InvalidChunkSizeError,
    InvalidDescriptorError,
    MissingExternalIdFieldError,
    MixedEntityTypeError,
    PayloadTooLargeError,
    SchedulingFailure,
    StoreContractError,
)

from bulkwrite_batch.domain.types import (
    OperationDescriptor,
    OperationKind,
    Record,
    RecordOutcome,
    RetryPolicy,
)
from bulkwrite_batch.services.executor import OperationExecutor
from bulkwrite_batch.services.hooks import HookManager
from bulkwrite_batch.services.processor import Processor

from tests.batch.fakes import ExplodingStore, FakeRecordStore, RaisingHook, RecordingHook, contact


class StubRetryHandler:
    """Records schedule_retry calls; optionally raises."""

    def __init__(self, exc: Exception | None = None):
        self.calls = []
        self._exc = exc

    def schedule_retry(self, descriptor, failed_records, retries_left, attempt=1, **kwargs):
        self.calls.append((descriptor, list(failed_records), retries_left, attempt, kwargs))
        if self._exc is not None:
            raise self._exc

        class _Job:
            job_id = uuid4()
            delay_seconds = 60.0

        _Job.retries_left = retries_left
        return _Job()


class DuplicatingStore(FakeRecordStore):
    """Fails every record and echoes the first record's failure twice per chunk."""

    def write(self, records, operation, external_id_field=None):
        self.calls.append((tuple(records), operation, external_id_field))
        return [RecordOutcome.failure(records[0], "dup")] * len(records)


def _processor(store=None, settings=None, retry_handler=None, hooks=None, clock=None):
    return Processor(
        executor=OperationExecutor(store or FakeRecordStore()),
        hooks=hooks,
        settings=settings or BulkWriteSettings(chunk_size=100),
        retry_handler=retry_handler,
        clock=clock,
    )


def _contacts(n, start=0):
    return [contact(i) for i in range(start, start + n)]


INSERT = OperationDescriptor.insert("Contact")


class TestChunking:
    def test_250_records_in_three_chunks(self):
        store = FakeRecordStore()
        result = _processor(store).process(_contacts(250), INSERT)

        assert result.chunk_count == 3
        assert [len(records) for records, _, _ in store.calls] == [100, 100, 50]
        assert result.success_count == 250
        assert not result.has_failures
        assert result.retry_job_id is None

    def test_chunk_size_capped_by_store_limit(self):
        store = FakeRecordStore(max_records_per_call=40)
        result = _processor(store).process(_contacts(100), INSERT)

        assert [len(records) for records, _, _ in store.calls] == [40, 40, 20]
        assert result.chunk_count == 3

    def test_chunk_size_capped_by_settings_limit(self):
        settings = BulkWriteSettings(chunk_size=500, max_records_per_call=30)
        store = FakeRecordStore()
        _processor(store, settings=settings).process(_contacts(60), INSERT)
        assert [len(records) for records, _, _ in store.calls] == [30, 30]

    def test_byte_quota_used_when_configured(self):
        settings = BulkWriteSettings(chunk_size=100, max_call_payload_bytes=50)
        store = FakeRecordStore()
        processor = Processor(
            executor=OperationExecutor(store),
            settings=settings,
            size_of=lambda r: 20,
        )
        processor.process(_contacts(5), INSERT)
        assert [len(records) for records, _, _ in store.calls] == [2, 2, 1]

    def test_byte_quota_requires_size_function(self):
        with pytest.raises(ValueError):
            Processor(
                executor=OperationExecutor(FakeRecordStore()),
                settings=BulkWriteSettings(max_call_payload_bytes=50),
            )

    def test_oversized_record_rejected_before_any_write(self):
        store = FakeRecordStore()
        processor = Processor(
            executor=OperationExecutor(store),
            settings=BulkWriteSettings(max_call_payload_bytes=10),
            size_of=lambda r: 11,
        )
        with pytest.raises(PayloadTooLargeError):
            processor.process(_contacts(2), INSERT)
        assert store.calls == []

    def test_empty_batch(self):
        store = FakeRecordStore()
        result = _processor(store).process([], INSERT)

        assert result.total_records == 0
        assert result.chunk_count == 0
        assert result.success_count == 0
        assert store.calls == []


class TestValidation:
    def test_missing_descriptor(self):
        with pytest.raises(InvalidDescriptorError):
            _processor().process(_contacts(1), None)

    def test_batch_type_must_match_descriptor(self):
        with pytest.raises(MixedEntityTypeError):
            _processor().process([Record("Account", {"code": "A"})], INSERT)

    def test_mixed_batch_rejected(self):
        store = FakeRecordStore()
        with pytest.raises(MixedEntityTypeError):
            _processor(store).process([contact(0), Record("Account", {"code": "A"})], INSERT)
        assert store.calls == []

    def test_invalid_chunk_size_setting(self):
        with pytest.raises(InvalidChunkSizeError):
            _processor(settings=BulkWriteSettings(chunk_size=0)).process(_contacts(1), INSERT)


class TestFailureAggregation:
    def test_failures_collected_across_chunks(self):
        failing = {3, 150, 249}
        store = FakeRecordStore(
            fail_when=lambda r: int(r.get("email")[4:8]) in failing,
        )
        result = _processor(store).process(_contacts(250), INSERT)

        assert result.success_count == 247
        assert result.failure_count == 3
        assert sorted(f.chunk_index for f in result.failed_records) == [0, 1, 2]

    def test_failures_deduplicated_by_key(self):
        store = DuplicatingStore()
        records = _contacts(10)
        result = _processor(store, settings=BulkWriteSettings(chunk_size=5)).process(records, INSERT)

        assert result.failure_count == 2
        assert len(result.failed_keys) == 2
        assert {f.record for f in result.failed_records} == {records[0], records[5]}

    def test_same_logical_record_in_two_chunks_counted_once(self):
        store = FakeRecordStore(fail_when=lambda r: True)
        record = contact(7)
        result = _processor(store, settings=BulkWriteSettings(chunk_size=1)).process(
            [record, Record("Contact", dict(record.fields))], INSERT,
        )
        assert result.chunk_count == 2
        assert result.failure_count == 1

    def test_later_chunks_run_after_failures(self):
        store = FakeRecordStore(fail_when=lambda r: True)
        result = _processor(store).process(_contacts(250), INSERT)

        assert len(store.calls) == 3
        assert result.failure_count == 250


class TestHooks:
    def test_hooks_fire_per_chunk(self):
        events = []
        hooks = HookManager()
        hooks.register(RecordingHook("h", events))
        store = FakeRecordStore(fail_when=lambda r: r.get("email") == "user0000@example.com")

        _processor(store, settings=BulkWriteSettings(chunk_size=2), hooks=hooks).process(
            _contacts(3), INSERT,
        )

        assert events == [
            ("h", "pre", 0),
            ("h", "post", 0, 2),
            ("h", "error", 1, "PartialFailure"),
            ("h", "pre", 1),
            ("h", "post", 1, 1),
        ]

    def test_raising_hooks_do_not_break_pipeline(self):
        hooks = HookManager()
        hooks.register(RaisingHook())
        store = FakeRecordStore(fail_when=lambda r: True)

        result = _processor(store, hooks=hooks).process(_contacts(3), INSERT)

        assert result.failure_count == 3
        assert "pre hook boom" in result.log
        assert "error hook boom" in result.log

    def test_hooks_fire_when_retries_disabled(self):
        events = []
        hooks = HookManager()
        hooks.register(RecordingHook("h", events))
        store = FakeRecordStore(fail_when=lambda r: True)

        _processor(store, hooks=hooks).process(_contacts(1), INSERT, RetryPolicy.disabled())

        assert [e[1] for e in events] == ["pre", "post", "error"]


class RaisingChunkStore(FakeRecordStore):
    """Raises ``exc`` on the call numbered ``raise_on`` (0-based) only."""

    def __init__(self, exc, raise_on, **kwargs):
        super().__init__(**kwargs)
        self._exc = exc
        self._raise_on = raise_on

    def write(self, records, operation, external_id_field=None):
        if len(self.calls) == self._raise_on:
            self.calls.append((tuple(records), operation, external_id_field))
            raise self._exc
        return super().write(records, operation, external_id_field)


class TestStructuralAbort:
    def test_structural_error_propagates_after_error_hooks(self):
        events = []
        hooks = HookManager()
        hooks.register(RecordingHook("h", events))

        with pytest.raises(MissingExternalIdFieldError):
            _processor(hooks=hooks).process(
                _contacts(2), OperationDescriptor.upsert("Contact", "name"),
            )

        assert ("h", "error", 2, "MissingExternalIdFieldError") in events

    def test_store_error_does_not_stop_remaining_chunks(self):
        store = ExplodingStore(ConnectionError("store down"), ok_calls=1)
        with pytest.raises(ConnectionError) as exc_info:
            _processor(store, settings=BulkWriteSettings(chunk_size=2)).process(_contacts(6), INSERT)

        assert len(store.calls) == 3
        result = exc_info.value.partial_result
        assert result.success_count == 2
        assert result.aborted_chunks == (1, 2)

    def test_earlier_chunk_failures_still_scheduled(self):
        handler = StubRetryHandler()
        store = ExplodingStore(
            StoreContractError("connection reset mid-call"),
            ok_calls=1,
            fail_when=lambda r: r.get("email") < "user0010",
        )

        with pytest.raises(StoreContractError) as exc_info:
            _processor(store, retry_handler=handler).process(
                _contacts(150), INSERT, RetryPolicy(retries=2),
            )

        assert len(handler.calls) == 1
        _, records, retries_left, _, _ = handler.calls[0]
        assert len(records) == 10
        assert retries_left == 2

        result = exc_info.value.partial_result
        assert result.success_count == 90
        assert result.failure_count == 10
        assert result.retry_job_id is not None
        assert result.chunk_errors[0].chunk_index == 1
        assert result.chunk_errors[0].record_count == 50
        assert result.chunk_errors[0].code == "STORE_CONTRACT_VIOLATION"

    def test_chunks_after_aborted_chunk_run(self):
        events = []
        hooks = HookManager()
        hooks.register(RecordingHook("h", events))
        store = RaisingChunkStore(ConnectionError("blip"), raise_on=1)

        with pytest.raises(ConnectionError) as exc_info:
            _processor(store, settings=BulkWriteSettings(chunk_size=2), hooks=hooks).process(
                _contacts(6), INSERT,
            )

        assert len(store.calls) == 3
        assert [e[1] for e in events].count("pre") == 3
        result = exc_info.value.partial_result
        assert result.success_count == 4
        assert result.aborted_chunks == (1,)
        assert result.chunk_errors[0].error_type == "ConnectionError"
        assert "1 chunk(s) aborted" in result.log

    def test_structural_error_recorded_for_every_chunk(self):
        store = FakeRecordStore()

        with pytest.raises(MissingExternalIdFieldError) as exc_info:
            _processor(store, settings=BulkWriteSettings(chunk_size=2)).process(
                _contacts(3), OperationDescriptor.upsert("Contact", "name"),
            )

        assert store.calls == []
        result = exc_info.value.partial_result
        assert result.aborted_chunks == (0, 1)
        assert result.success_count == 0
        assert not result.has_failures

    def test_abort_is_logged(self, captured_logs):
        with pytest.raises(MissingExternalIdFieldError):
            _processor().process(_contacts(1), OperationDescriptor.upsert("Contact", "name"))

        aborted = [r for r in captured_logs() if r["message"] == "chunk_aborted"]
        assert aborted[0]["error_code"] == "MISSING_EXTERNAL_ID_FIELD"
        completed = [r for r in captured_logs() if r["message"] == "process_completed"]
        assert completed[0]["aborted_chunks"] == 1


class TestRetryScheduling:
    def test_schedules_deduplicated_failures(self):
        handler = StubRetryHandler()
        store = FakeRecordStore(fail_when=lambda r: r.get("email") < "user0005")
        result = _processor(store, retry_handler=handler).process(
            _contacts(50), INSERT, RetryPolicy(retries=2, correlation_id="corr-1"),
        )

        assert len(handler.calls) == 1
        descriptor, records, retries_left, attempt, kwargs = handler.calls[0]
        assert descriptor == INSERT
        assert len(records) == 5
        assert retries_left == 2
        assert attempt == 1
        assert kwargs["correlation_id"] == "corr-1"
        assert result.retry_job_id is not None
        assert result.retry_error is None

    def test_no_failures_no_schedule(self):
        handler = StubRetryHandler()
        _processor(retry_handler=handler).process(_contacts(5), INSERT, RetryPolicy(retries=3))
        assert handler.calls == []

    def test_zero_budget_does_not_schedule(self):
        handler = StubRetryHandler()
        store = FakeRecordStore(fail_when=lambda r: True)
        _processor(store, retry_handler=handler).process(_contacts(2), INSERT, RetryPolicy(retries=0))
        assert handler.calls == []

    def test_final_attempt_schedules_at_zero_budget(self):
        handler = StubRetryHandler()
        store = FakeRecordStore(fail_when=lambda r: True)
        _processor(store, retry_handler=handler).process(
            _contacts(2), INSERT, RetryPolicy(retries=0, final_attempt=True),
        )
        assert handler.calls[0][2] == 0

    def test_default_policy_does_not_schedule(self):
        handler = StubRetryHandler()
        store = FakeRecordStore(fail_when=lambda r: True)
        _processor(store, retry_handler=handler).process(_contacts(2), INSERT)
        assert handler.calls == []

    def test_scheduling_failure_does_not_mask_outcomes(self):
        handler = StubRetryHandler(exc=SchedulingFailure("scheduler down"))
        store = FakeRecordStore(fail_when=lambda r: r.get("email") == "user0001@example.com")

        result = _processor(store, retry_handler=handler).process(
            _contacts(3), INSERT, RetryPolicy(retries=1),
        )

        assert result.success_count == 2
        assert result.failure_count == 1
        assert result.retry_job_id is None
        assert "scheduler down" in result.retry_error
        assert "retry scheduling failed" in result.log

    def test_missing_handler_reported(self):
        store = FakeRecordStore(fail_when=lambda r: True)
        result = _processor(store).process(_contacts(1), INSERT, RetryPolicy(retries=1))
        assert result.retry_error == "no retry handler configured"


class TestResult:
    def test_result_metadata(self, clock):
        result = _processor(clock=clock).process(_contacts(3), INSERT)

        assert result.operation is OperationKind.INSERT
        assert result.entity_type == "Contact"
        assert result.total_records == 3
        assert result.started_at == clock.now()
        assert result.duration_ms >= 0
        assert "insert 3 Contact record(s) in 1 chunk(s), attempt 1" in result.log

    def test_completion_logged(self, captured_logs):
        _processor().process(_contacts(3), INSERT)

        completed = [r for r in captured_logs() if r["message"] == "process_completed"]
        assert len(completed) == 1
        assert completed[0]["success_count"] == 3
        assert completed[0]["entity_type"] == "Contact"
