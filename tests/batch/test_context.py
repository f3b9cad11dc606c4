"""
Tests for bulkwrite_batch.services.context -- the bounded execution log.
"""

import logging
from dataclasses import FrozenInstanceError
from uuid import uuid4

import pytest

from bulkwrite_batch.domain.types import OperationKind
from bulkwrite_batch.services.context import (
    TRUNCATION_MARKER,
    ExecutionContext,
    RunMetadata,
)


@pytest.fixture
def metadata(clock):
    return RunMetadata(
        run_id=uuid4(),
        operation=OperationKind.INSERT,
        entity_type="Contact",
        started_at=clock.now(),
    )


class TestLog:
    def test_entry_is_timestamped(self, metadata, clock):
        context = ExecutionContext(metadata, clock=clock)
        context.log("hello")

        assert context.text == f"{clock.now().isoformat()} INFO hello\n"

    def test_level_name_in_entry(self, metadata, clock):
        context = ExecutionContext(metadata, clock=clock)
        context.log("careful", logging.WARNING)
        assert " WARNING careful" in context.text

    @pytest.mark.parametrize("message", ["", "   ", "\n", None])
    def test_blank_input_is_noop(self, metadata, message):
        context = ExecutionContext(metadata)
        context.log(message)
        assert context.text == ""
        assert len(context) == 0

    def test_entries_kept_in_order(self, metadata):
        context = ExecutionContext(metadata)
        for i in range(3):
            context.log(f"entry {i}")
        lines = context.text.splitlines()
        assert [line.rsplit(" ", 1)[-1] for line in lines] == ["0", "1", "2"]

    def test_mirrored_to_logger(self, metadata, captured_logs):
        context = ExecutionContext(metadata)
        context.log("mirrored entry", logging.WARNING)

        logs = [r for r in captured_logs() if r["message"] == "mirrored entry"]
        assert len(logs) == 1
        assert logs[0]["level"] == "WARNING"
        assert logs[0]["run_id"] == str(metadata.run_id)


class TestTruncation:
    def test_never_exceeds_bound(self, metadata):
        context = ExecutionContext(metadata, max_chars=500)
        for i in range(200):
            context.log(f"entry number {i} " + "x" * (i % 37))
            assert len(context.text) <= 500
            assert len(context) == len(context.text)

    def test_marker_appears_exactly_once(self, metadata):
        context = ExecutionContext(metadata, max_chars=300)
        for i in range(100):
            context.log(f"entry {i}")

        assert context.truncated
        assert context.text.startswith(TRUNCATION_MARKER)
        assert context.text.count(TRUNCATION_MARKER) == 1

    def test_most_recent_entries_survive(self, metadata):
        context = ExecutionContext(metadata, max_chars=400)
        for i in range(100):
            context.log(f"entry {i}")

        assert context.text.rstrip("\n").endswith("entry 99")
        assert "entry 0\n" not in context.text

    def test_no_truncation_below_bound(self, metadata):
        context = ExecutionContext(metadata, max_chars=30_000)
        context.log("short")
        assert not context.truncated
        assert TRUNCATION_MARKER not in context.text

    def test_single_oversized_entry_keeps_tail(self, metadata):
        context = ExecutionContext(metadata, max_chars=200)
        context.log("A" * 50 + "B" * 500)

        assert len(context.text) == 200
        assert context.text.startswith(TRUNCATION_MARKER)
        assert context.text.endswith("B\n")

    def test_bound_must_exceed_marker(self, metadata):
        with pytest.raises(ValueError):
            ExecutionContext(metadata, max_chars=len(TRUNCATION_MARKER))


class TestMetadata:
    def test_metadata_is_immutable(self, metadata):
        context = ExecutionContext(metadata)
        assert context.metadata is metadata
        with pytest.raises(FrozenInstanceError):
            context.metadata.entity_type = "Other"

    def test_metadata_property_is_read_only(self, metadata):
        context = ExecutionContext(metadata)
        with pytest.raises(AttributeError):
            context.metadata = metadata
