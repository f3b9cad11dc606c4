"""
bulkwrite_config -- single public entrypoint for bulk write settings.

Responsibility:
    ``get_settings()`` is the ONLY way to obtain settings at runtime.  No
    other component reads configuration files.  The packaged
    ``defaults.yaml`` is always loaded first; an optional user file and
    keyword overrides are layered on top, and the result is validated.

Failure modes:
    - ``FileNotFoundError`` -- user config path does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ValueError`` -- unknown keys or out-of-range values.

Every successful call emits a ``settings_loaded`` log entry carrying the
settings checksum, so a run can be tied to the configuration it used.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from bulkwrite_kernel.logging_config import get_logger

from bulkwrite_config.loader import (
    apply_overrides,
    compute_checksum,
    load_yaml_file,
    merge_documents,
    parse_settings,
    validate_settings,
)
from bulkwrite_config.schema import BulkWriteSettings, EntityDef, FieldDef

_logger = get_logger("config")

_DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"


def get_settings(
    config_path: Path | str | None = None,
    overrides: dict[str, Any] | None = None,
) -> BulkWriteSettings:
    """Load, merge, and validate settings."""
    document = load_yaml_file(_DEFAULTS_FILE)
    if config_path is not None:
        document = merge_documents(document, load_yaml_file(Path(config_path)))

    settings = parse_settings(document)
    if overrides:
        settings = apply_overrides(settings, overrides)
    validate_settings(settings)

    _logger.info(
        "settings_loaded",
        extra={
            "config_path": str(config_path) if config_path else None,
            "checksum": compute_checksum(settings),
            "entity_count": len(settings.entities),
        },
    )
    return settings


__all__ = [
    "BulkWriteSettings",
    "EntityDef",
    "FieldDef",
    "compute_checksum",
    "get_settings",
]
