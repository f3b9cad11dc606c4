"""
Record serialization for retry payloads.

Contract:
    ``RecordCodec`` maps a homogeneous record list to a string and back,
    given the entity type.  ``JsonRecordCodec`` is the reference codec:
    an envelope ``{"entity_type", "records": [{"id", "fields"}]}`` encoded
    as compact, key-sorted JSON.  Decoding resolves the entity type through
    the registry and converts each field to its declared type, so
    ``deserialize(serialize(records), type) == records``.

Failure modes:
    DeserializationError -- bad JSON, wrong envelope, envelope/requested
        type mismatch, unregistered type, undeclared field, bad value.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable
from uuid import UUID

from bulkwrite_kernel.exceptions import DeserializationError, UnknownEntityTypeError

from bulkwrite_batch.domain.chunker import ensure_homogeneous
from bulkwrite_batch.domain.types import Record
from bulkwrite_batch.registry import EntityTypeRegistry


@runtime_checkable
class RecordCodec(Protocol):
    """Typed round-trip between records and a string payload."""

    def serialize(self, records: Sequence[Record]) -> str: ...

    def deserialize(self, payload: str, entity_type: str) -> tuple[Record, ...]: ...


def encode_value(value: Any) -> Any:
    """Render one field value in its JSON form (exact, not normalized)."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def encode_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {name: encode_value(value) for name, value in fields.items()}


class JsonRecordCodec:
    """JSON codec whose decoder is driven by the entity type registry."""

    def __init__(self, registry: EntityTypeRegistry) -> None:
        self._registry = registry

    def serialize(self, records: Sequence[Record]) -> str:
        entity_type = ensure_homogeneous(records)
        envelope = {
            "entity_type": entity_type,
            "records": [
                {"id": r.record_id, "fields": encode_fields(r.fields)}
                for r in records
            ],
        }
        return json.dumps(envelope, sort_keys=True, separators=(",", ":"))

    def deserialize(self, payload: str, entity_type: str) -> tuple[Record, ...]:
        try:
            schema = self._registry.get(entity_type)
        except UnknownEntityTypeError as exc:
            raise DeserializationError(entity_type, str(exc)) from exc

        try:
            envelope = json.loads(payload)
        except (TypeError, ValueError) as exc:
            raise DeserializationError(entity_type, f"invalid JSON: {exc}") from exc

        if not isinstance(envelope, dict) or not isinstance(envelope.get("records"), list):
            raise DeserializationError(entity_type, "payload is not a record envelope")
        declared = envelope.get("entity_type")
        if declared is not None and declared != entity_type:
            raise DeserializationError(
                entity_type, f"payload holds '{declared}' records",
            )

        records: list[Record] = []
        for index, item in enumerate(envelope["records"]):
            if not isinstance(item, dict) or not isinstance(item.get("fields"), dict):
                raise DeserializationError(entity_type, f"record {index} is malformed")
            record_id = item.get("id")
            if record_id is not None and not isinstance(record_id, str):
                raise DeserializationError(entity_type, f"record {index} has a non-string id")
            try:
                fields = schema.decode_values(item["fields"])
            except ValueError as exc:
                raise DeserializationError(entity_type, f"record {index}: {exc}") from exc
            records.append(Record(entity_type=entity_type, fields=fields, record_id=record_id))
        return tuple(records)

    def payload_size(self, records: Sequence[Record]) -> int:
        """UTF-8 byte size of the serialized payload."""
        return len(self.serialize(records).encode("utf-8"))
