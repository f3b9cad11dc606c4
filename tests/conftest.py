"""
Pytest fixtures for the bulkwrite test suite.

Provides:
- File-backed SQLite session factories (one database per test, via tmp_path)
- A Contact entity schema and registry used across tests
- Deterministic clock and logging capture

SQLite runs with explicit BEGIN handling (see bulkwrite_kernel.db.engine) so
the record store's SAVEPOINT-per-record isolation behaves as on PostgreSQL.
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from bulkwrite_config.schema import BulkWriteSettings
from bulkwrite_kernel.db.base import Base
from bulkwrite_kernel.db.engine import build_engine
from bulkwrite_kernel.domain.clock import DeterministicClock
from bulkwrite_kernel.domain.schemas import EntitySchema, FieldSchema, FieldType
from bulkwrite_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

import bulkwrite_batch.models  # noqa: F401
from bulkwrite_batch.codec import JsonRecordCodec
from bulkwrite_batch.domain.types import Record
from bulkwrite_batch.registry import EntityTypeRegistry


# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

CONTACT_SCHEMA = EntitySchema(
    entity_type="Contact",
    fields=(
        FieldSchema("email", FieldType.STRING, required=True, external_id=True),
        FieldSchema("name", FieldType.STRING, required=True),
        FieldSchema("age", FieldType.INTEGER),
        FieldSchema("balance", FieldType.DECIMAL),
        FieldSchema("active", FieldType.BOOLEAN),
        FieldSchema("birthday", FieldType.DATE),
        FieldSchema("last_seen", FieldType.DATETIME),
        FieldSchema("account_id", FieldType.UUID),
    ),
)

ACCOUNT_SCHEMA = EntitySchema(
    entity_type="Account",
    fields=(
        FieldSchema("code", FieldType.STRING, required=True, external_id=True),
        FieldSchema("title", FieldType.STRING),
    ),
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture bulkwrite logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, processor):
            processor.process(...)
            logs = captured_logs()
            assert any(r["message"] == "process_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("bulkwrite")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine with all bulkwrite tables."""
    eng = build_engine(f"sqlite:///{tmp_path / 'bulkwrite.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def registry():
    return EntityTypeRegistry((CONTACT_SCHEMA, ACCOUNT_SCHEMA))


@pytest.fixture
def codec(registry):
    return JsonRecordCodec(registry)


@pytest.fixture
def settings():
    return BulkWriteSettings(
        chunk_size=100,
        max_records_per_call=200,
        base_delay_seconds=60.0,
        max_delay_seconds=3600.0,
    )


@pytest.fixture
def make_contacts():
    """Factory: ``make_contacts(n, start=0)`` -> list of new Contact records."""

    def _make(count: int, start: int = 0) -> list[Record]:
        return [
            Record(
                entity_type="Contact",
                fields={"email": f"user{i:04d}@example.com", "name": f"User {i}"},
            )
            for i in range(start, start + count)
        ]

    return _make
