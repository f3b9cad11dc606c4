"""
Tests for bulkwrite_batch.codec -- typed record serialization.

The decoder is driven by the entity type registry, so every declared field
kind must come back as exactly the value that went in.
"""

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from bulkwrite_kernel.exceptions import DeserializationError, MixedEntityTypeError

from bulkwrite_batch.codec import JsonRecordCodec, RecordCodec
from bulkwrite_batch.domain.types import Record


def _full_contact(i: int, record_id: str | None = None) -> Record:
    return Record(
        entity_type="Contact",
        fields={
            "email": f"user{i}@example.com",
            "name": f"Zoë {i}",
            "age": 30 + i,
            "balance": Decimal("1234.500"),
            "active": i % 2 == 0,
            "birthday": date(1990, 1, 1 + i),
            "last_seen": datetime(2024, 5, 1, 8, 30, 15, 123456, tzinfo=timezone.utc),
            "account_id": UUID(int=i + 1),
        },
        record_id=record_id,
    )


class TestRoundTrip:
    def test_every_field_kind_round_trips(self, codec):
        records = [_full_contact(0), _full_contact(1, record_id="abc-1")]

        restored = codec.deserialize(codec.serialize(records), "Contact")

        assert list(restored) == records
        assert isinstance(restored[0].fields["balance"], Decimal)
        assert str(restored[0].fields["balance"]) == "1234.500"
        assert isinstance(restored[0].fields["birthday"], date)
        assert restored[0].fields["last_seen"].tzinfo is not None
        assert isinstance(restored[0].fields["account_id"], UUID)
        assert restored[1].record_id == "abc-1"

    def test_null_values_round_trip(self, codec):
        record = Record("Contact", {"email": "a@example.com", "name": "A", "age": None})
        assert codec.deserialize(codec.serialize([record]), "Contact") == (record,)

    def test_empty_list(self, codec):
        assert codec.deserialize(codec.serialize([]), "Contact") == ()

    def test_satisfies_protocol(self, codec):
        assert isinstance(codec, RecordCodec)


class TestSerialize:
    def test_envelope_carries_entity_type(self, codec):
        payload = json.loads(codec.serialize([_full_contact(0)]))
        assert payload["entity_type"] == "Contact"
        assert payload["records"][0]["fields"]["balance"] == "1234.500"

    def test_output_is_deterministic(self, codec):
        a = Record("Contact", {"name": "A", "email": "a@example.com"})
        b = Record("Contact", {"email": "a@example.com", "name": "A"})
        assert codec.serialize([a]) == codec.serialize([b])

    def test_mixed_types_rejected(self, codec):
        with pytest.raises(MixedEntityTypeError):
            codec.serialize([_full_contact(0), Record("Account", {"code": "X"})])

    def test_payload_size_counts_utf8_bytes(self, codec):
        records = [_full_contact(0)]
        assert codec.payload_size(records) == len(codec.serialize(records).encode("utf-8"))


class TestDeserializeFailures:
    def test_unregistered_type(self, codec):
        with pytest.raises(DeserializationError, match="Unknown entity type"):
            codec.deserialize('{"entity_type":"Ghost","records":[]}', "Ghost")

    def test_invalid_json(self, codec):
        with pytest.raises(DeserializationError, match="invalid JSON"):
            codec.deserialize("{not json", "Contact")

    def test_not_an_envelope(self, codec):
        with pytest.raises(DeserializationError, match="envelope"):
            codec.deserialize("[1, 2, 3]", "Contact")

    def test_envelope_type_mismatch(self, codec):
        with pytest.raises(DeserializationError, match="'Account'"):
            codec.deserialize('{"entity_type":"Account","records":[]}', "Contact")

    def test_undeclared_field(self, codec):
        payload = '{"entity_type":"Contact","records":[{"id":null,"fields":{"shoe_size":9}}]}'
        with pytest.raises(DeserializationError, match="shoe_size"):
            codec.deserialize(payload, "Contact")

    def test_wrong_value_type(self, codec):
        payload = '{"entity_type":"Contact","records":[{"id":null,"fields":{"age":"old"}}]}'
        with pytest.raises(DeserializationError) as exc_info:
            codec.deserialize(payload, "Contact")
        assert exc_info.value.entity_type == "Contact"
        assert exc_info.value.code == "DESERIALIZATION_FAILURE"

    def test_bad_decimal(self, codec):
        payload = '{"entity_type":"Contact","records":[{"id":null,"fields":{"balance":"1.2.3"}}]}'
        with pytest.raises(DeserializationError, match="balance"):
            codec.deserialize(payload, "Contact")

    def test_malformed_record(self, codec):
        with pytest.raises(DeserializationError, match="malformed"):
            codec.deserialize('{"entity_type":"Contact","records":[42]}', "Contact")
