"""
EntityTypeRegistry -- entity type name to typed deserializer.

Contract:
    ``register()`` adds an ``EntitySchema``; raises ValueError on duplicate.
    ``get()`` retrieves by entity type; raises UnknownEntityTypeError.
    ``build_registry()`` bridges configured ``EntityDef`` values into a
    registry at startup.

Retry payloads are rehydrated through this registry using the entity type
captured on the job row, so every field comes back as its declared type.
"""

from __future__ import annotations

from bulkwrite_config.schema import BulkWriteSettings, EntityDef
from bulkwrite_kernel.domain.schemas import EntitySchema, FieldSchema, FieldType
from bulkwrite_kernel.exceptions import UnknownEntityTypeError


class EntityTypeRegistry:
    """Registry mapping entity type names to EntitySchema definitions."""

    def __init__(self, schemas: tuple[EntitySchema, ...] = ()) -> None:
        self._schemas: dict[str, EntitySchema] = {}
        for schema in schemas:
            self.register(schema)

    def register(self, schema: EntitySchema) -> None:
        """
        Register an entity schema.

        Raises:
            ValueError: If the entity type is already registered.
        """
        if schema.entity_type in self._schemas:
            raise ValueError(
                f"Entity type '{schema.entity_type}' is already registered"
            )
        self._schemas[schema.entity_type] = schema

    def get(self, entity_type: str) -> EntitySchema:
        try:
            return self._schemas[entity_type]
        except KeyError:
            raise UnknownEntityTypeError(entity_type, self.list_types()) from None

    def list_types(self) -> tuple[str, ...]:
        """Return all registered entity types, sorted."""
        return tuple(sorted(self._schemas))

    def field_exists(self, entity_type: str, field_name: str) -> bool:
        schema = self._schemas.get(entity_type)
        return schema is not None and schema.has_field(field_name)

    def is_external_id(self, entity_type: str, field_name: str) -> bool:
        schema = self._schemas.get(entity_type)
        return schema is not None and schema.is_external_id(field_name)

    def __len__(self) -> int:
        return len(self._schemas)

    def __contains__(self, entity_type: str) -> bool:
        return entity_type in self._schemas


def schema_from_definition(definition: EntityDef) -> EntitySchema:
    return EntitySchema(
        entity_type=definition.entity_type,
        fields=tuple(
            FieldSchema(
                name=f.name,
                field_type=FieldType(f.kind),
                required=f.required,
                external_id=f.external_id,
            )
            for f in definition.fields
        ),
    )


def build_registry(settings: BulkWriteSettings) -> EntityTypeRegistry:
    """Create a registry pre-loaded with every configured entity type."""
    return EntityTypeRegistry(
        tuple(schema_from_definition(d) for d in settings.entities)
    )
