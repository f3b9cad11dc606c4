"""
ORM model backing the reference SQL record store.

One row per persisted record of any entity type.  Field values live in a
JSON column; the external id used by upserts is denormalized into two
indexed columns so lookups do not scan JSON.
"""

from __future__ import annotations

from sqlalchemy import JSON, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from bulkwrite_kernel.db.base import TrackedBase


class StoredRecordModel(TrackedBase):
    """A record as persisted by SqlRecordStore."""

    __tablename__ = "stored_records"

    __table_args__ = (
        Index("ix_stored_records_entity_type", "entity_type"),
        UniqueConstraint(
            "entity_type", "external_id_field", "external_id_value",
            name="uq_stored_records_external_id",
        ),
    )

    entity_type: Mapped[str] = mapped_column(String(200), nullable=False)
    fields: Mapped[dict] = mapped_column(JSON, nullable=False)
    external_id_field: Mapped[str | None] = mapped_column(String(200), nullable=True)
    external_id_value: Mapped[str | None] = mapped_column(String(500), nullable=True)
