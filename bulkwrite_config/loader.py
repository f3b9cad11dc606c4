"""
Configuration Loader (``bulkwrite_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into ``bulkwrite_config.schema``
dataclasses.  The single public entry point for runtime settings is
``bulkwrite_config.get_settings()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range or mistyped values  -> ``ValueError`` naming the key.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from bulkwrite_kernel.domain.schemas import FieldType

from bulkwrite_config.schema import BulkWriteSettings, EntityDef, FieldDef

_SECTIONS: dict[str, tuple[str, ...]] = {
    "chunking": ("chunk_size", "max_records_per_call", "max_call_payload_bytes"),
    "retry": (
        "default_retries",
        "base_delay_seconds",
        "max_delay_seconds",
        "max_retry_payload_bytes",
    ),
    "execution_log": ("max_log_chars",),
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def merge_documents(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_documents(merged[key], value)
        else:
            merged[key] = value
    return merged


def parse_field(name: str, data: dict[str, Any] | str) -> FieldDef:
    """Parse a field definition; a bare string is shorthand for its kind."""
    if isinstance(data, str):
        data = {"kind": data}
    kind = data.get("kind")
    valid = {ft.value for ft in FieldType}
    if kind not in valid:
        raise ValueError(
            f"Field '{name}': kind must be one of {sorted(valid)}, got {kind!r}"
        )
    return FieldDef(
        name=name,
        kind=kind,
        required=bool(data.get("required", False)),
        external_id=bool(data.get("external_id", False)),
    )


def parse_entity(entity_type: str, data: dict[str, Any] | None) -> EntityDef:
    fields = (data or {}).get("fields") or {}
    if not isinstance(fields, dict):
        raise ValueError(f"Entity '{entity_type}': fields must be a mapping")
    return EntityDef(
        entity_type=entity_type,
        fields=tuple(parse_field(name, spec) for name, spec in fields.items()),
    )


def parse_settings(data: dict[str, Any]) -> BulkWriteSettings:
    """
    Parse a merged YAML document into ``BulkWriteSettings``.

    Unknown sections or keys are rejected so typos do not silently fall
    back to defaults.
    """
    values: dict[str, Any] = {}
    for section, payload in data.items():
        if section == "entities":
            continue
        if section not in _SECTIONS:
            raise ValueError(f"Unknown configuration section '{section}'")
        for key, value in (payload or {}).items():
            if key not in _SECTIONS[section]:
                raise ValueError(f"Unknown key '{section}.{key}'")
            values[key] = value

    entities = data.get("entities") or {}
    if not isinstance(entities, dict):
        raise ValueError("'entities' must be a mapping of entity type to definition")
    values["entities"] = tuple(
        parse_entity(name, spec) for name, spec in entities.items()
    )
    return BulkWriteSettings(**values)


def apply_overrides(
    settings: BulkWriteSettings, overrides: dict[str, Any],
) -> BulkWriteSettings:
    """Replace top-level settings fields by name."""
    known = {f.name for f in dataclasses.fields(BulkWriteSettings)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"Unknown settings override(s): {unknown}")
    return dataclasses.replace(settings, **overrides)


def _require_int(name: str, value: Any, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"'{name}' must be an integer >= {minimum}, got {value!r}")


def _require_number(name: str, value: Any, minimum: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < minimum:
        raise ValueError(f"'{name}' must be a number >= {minimum}, got {value!r}")


def validate_settings(settings: BulkWriteSettings) -> BulkWriteSettings:
    """
    Check ranges and cross-field constraints.

    Raises:
        ValueError: naming the offending key.
    """
    _require_int("chunk_size", settings.chunk_size, 1)
    _require_int("max_records_per_call", settings.max_records_per_call, 1)
    if settings.max_call_payload_bytes is not None:
        _require_int("max_call_payload_bytes", settings.max_call_payload_bytes, 1)
    _require_int("default_retries", settings.default_retries, 0)
    _require_number("base_delay_seconds", settings.base_delay_seconds, 0)
    _require_number("max_delay_seconds", settings.max_delay_seconds, 0)
    if settings.max_delay_seconds < settings.base_delay_seconds:
        raise ValueError(
            "'max_delay_seconds' must be >= 'base_delay_seconds' "
            f"({settings.max_delay_seconds} < {settings.base_delay_seconds})"
        )
    _require_int("max_retry_payload_bytes", settings.max_retry_payload_bytes, 1)
    # Room for the truncation marker plus at least one entry
    _require_int("max_log_chars", settings.max_log_chars, 100)

    seen: set[str] = set()
    for entity in settings.entities:
        if entity.entity_type in seen:
            raise ValueError(f"Entity '{entity.entity_type}' declared twice")
        seen.add(entity.entity_type)
    return settings


def compute_checksum(settings: BulkWriteSettings) -> str:
    """
    SHA-256 checksum of the canonical JSON form of ``settings``.

    Identical settings always produce identical checksums.
    """
    canonical = json.dumps(dataclasses.asdict(settings), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
