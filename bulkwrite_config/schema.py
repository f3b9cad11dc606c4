"""
BulkWriteSettings schema.

The typed form of the YAML configuration.  The loader parses YAML
fragments into these frozen dataclasses; nothing else in the system reads
configuration files.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldDef:
    """One declared field of an entity type."""

    name: str
    kind: str  # FieldType value: string, integer, decimal, ...
    required: bool = False
    external_id: bool = False


@dataclass(frozen=True)
class EntityDef:
    """Declared entity type; bridged into the runtime type registry."""

    entity_type: str
    fields: tuple[FieldDef, ...] = ()


@dataclass(frozen=True)
class BulkWriteSettings:
    """Validated runtime settings."""

    chunk_size: int = 200
    max_records_per_call: int = 200
    max_call_payload_bytes: int | None = None
    default_retries: int = 3
    base_delay_seconds: float = 60.0
    max_delay_seconds: float = 3600.0
    max_retry_payload_bytes: int = 32768
    max_log_chars: int = 30000
    entities: tuple[EntityDef, ...] = ()

    @property
    def effective_chunk_size(self) -> int:
        """Chunk size never exceeds the store's per-call record limit."""
        return min(self.chunk_size, self.max_records_per_call)
