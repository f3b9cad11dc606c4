"""
Entity schema data structures.

Immutable descriptions of the record types the bulk writer handles.  An
``EntitySchema`` knows its fields, which of them can act as an external
identifier, how to check live field values, and how to turn decoded JSON
back into correctly typed values.  Pure: no I/O, no ORM.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping
from uuid import UUID


class FieldType(str, Enum):
    """Supported field types in entity schemas."""

    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"  # ISO 8601 date (YYYY-MM-DD)
    DATETIME = "datetime"  # ISO 8601 datetime
    UUID = "uuid"


_PYTHON_TYPES: dict[FieldType, tuple[type, ...]] = {
    FieldType.STRING: (str,),
    FieldType.INTEGER: (int,),
    FieldType.DECIMAL: (Decimal, int),
    FieldType.BOOLEAN: (bool,),
    FieldType.DATE: (date,),
    FieldType.DATETIME: (datetime,),
    FieldType.UUID: (UUID,),
}


@dataclass(frozen=True)
class FieldSchema:
    """Schema definition for a single field."""

    name: str
    field_type: FieldType
    required: bool = False
    external_id: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Field name must be non-empty")
        if self.external_id and self.field_type not in (
            FieldType.STRING,
            FieldType.INTEGER,
            FieldType.UUID,
        ):
            raise ValueError(
                f"Field '{self.name}' of type {self.field_type.value} "
                f"cannot be an external id"
            )

    def accepts(self, value: Any) -> bool:
        """True if ``value`` is a live Python value of this field's type."""
        if value is None:
            return not self.required
        if isinstance(value, bool) and self.field_type is not FieldType.BOOLEAN:
            return False
        if self.field_type is FieldType.DATE and isinstance(value, datetime):
            return False
        return isinstance(value, _PYTHON_TYPES[self.field_type])

    def decode(self, raw: Any) -> Any:
        """
        Convert a JSON-decoded value back to this field's Python type.

        Raises:
            ValueError: If ``raw`` cannot represent a value of this type.
        """
        if raw is None:
            return None
        ft = self.field_type
        try:
            if ft is FieldType.STRING and isinstance(raw, str):
                return raw
            if ft is FieldType.INTEGER and isinstance(raw, int) and not isinstance(raw, bool):
                return raw
            if ft is FieldType.BOOLEAN and isinstance(raw, bool):
                return raw
            if ft is FieldType.DECIMAL and isinstance(raw, (str, int)):
                return Decimal(str(raw))
            if ft is FieldType.DATE and isinstance(raw, str):
                return date.fromisoformat(raw)
            if ft is FieldType.DATETIME and isinstance(raw, str):
                return datetime.fromisoformat(raw)
            if ft is FieldType.UUID and isinstance(raw, str):
                return UUID(raw)
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(
                f"Field '{self.name}': {raw!r} is not a valid {ft.value}"
            ) from exc
        raise ValueError(
            f"Field '{self.name}': {type(raw).__name__} value {raw!r} "
            f"is not a valid {ft.value}"
        )


@dataclass(frozen=True)
class EntitySchema:
    """
    Schema definition for one entity type.

    Immutable and hashable; fields are a tuple in declaration order.
    """

    entity_type: str
    fields: tuple[FieldSchema, ...] = ()

    def __post_init__(self) -> None:
        if not self.entity_type:
            raise ValueError("Entity type name must be non-empty")
        names = [f.name for f in self.fields]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(
                f"Entity '{self.entity_type}' declares duplicate fields: {dupes}"
            )

    def get_field(self, name: str) -> FieldSchema | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def has_field(self, name: str) -> bool:
        return self.get_field(name) is not None

    def is_external_id(self, name: str) -> bool:
        f = self.get_field(name)
        return f is not None and f.external_id

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def check_values(self, values: Mapping[str, Any], partial: bool = False) -> list[str]:
        """
        Return a list of problems with live field values (empty if valid).

        ``partial`` checks only the fields present, for updates that merge
        into an existing record.
        """
        problems: list[str] = []
        for name in values:
            if not self.has_field(name):
                problems.append(f"unknown field '{name}'")
        for f in self.fields:
            if partial and f.name not in values:
                continue
            value = values.get(f.name)
            if value is None and f.required:
                problems.append(f"required field '{f.name}' is missing")
            elif not f.accepts(value):
                problems.append(
                    f"field '{f.name}' expects {f.field_type.value}, "
                    f"got {type(value).__name__}"
                )
        return problems

    def decode_values(self, raw: Mapping[str, Any]) -> dict[str, Any]:
        """
        Rehydrate a JSON-decoded field mapping into typed values.

        Raises:
            ValueError: On unknown fields or values of the wrong type.
        """
        decoded: dict[str, Any] = {}
        for name, value in raw.items():
            f = self.get_field(name)
            if f is None:
                raise ValueError(
                    f"Field '{name}' is not declared on {self.entity_type}"
                )
            decoded[name] = f.decode(value)
        return decoded
