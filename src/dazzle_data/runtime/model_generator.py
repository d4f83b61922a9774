"""
Model generator - generates Pydantic models from EntitySpec.

This module creates entity models at runtime from entity definitions.
Models accept extra attributes so eagerly loaded relations can be
attached to the instances the repository returns.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, create_model

from dazzle_data.specs.entity import (
    CREATED_AT_FIELD,
    TRANSLATIONS_RELATION,
    EntitySpec,
    FieldSpec,
    FieldType,
    ScalarType,
)

# Fields the repository fills in when they are missing on create
AUTO_FIELDS = frozenset({"id", CREATED_AT_FIELD})

# =============================================================================
# Type Mapping
# =============================================================================


def _scalar_type_to_python(scalar_type: ScalarType) -> type:
    """Map scalar types to Python types."""
    mapping: dict[ScalarType, type] = {
        ScalarType.STR: str,
        ScalarType.TEXT: str,
        ScalarType.INT: int,
        ScalarType.DECIMAL: Decimal,
        ScalarType.BOOL: bool,
        ScalarType.DATE: date,
        ScalarType.DATETIME: datetime,
        ScalarType.UUID: UUID,
        ScalarType.EMAIL: str,
        ScalarType.URL: str,
        ScalarType.JSON: dict,
    }
    return mapping.get(scalar_type, str)


def field_type_to_python(field_type: FieldType) -> type:
    """
    Convert FieldType to Python type.

    Args:
        field_type: The field type specification

    Returns:
        Python type for Pydantic model
    """
    if field_type.kind == "scalar" and field_type.scalar_type:
        return _scalar_type_to_python(field_type.scalar_type)
    elif field_type.kind == "ref" and field_type.ref_entity:
        # References are stored as UUIDs (foreign keys)
        return UUID
    else:
        return str


def _build_field_info(field: FieldSpec) -> tuple[Any, Any]:
    """
    Build Pydantic field tuple for create_model.

    Returns:
        Tuple of (type, default_or_field_info)
    """
    python_type: Any = field_type_to_python(field.type)

    if field.name in AUTO_FIELDS:
        return (python_type | None, Field(default=None, description=field.label))

    field_kwargs: dict[str, Any] = {}

    if field.label:
        field_kwargs["description"] = field.label

    if field.default is not None:
        field_kwargs["default"] = field.default
    elif not field.required:
        field_kwargs["default"] = None
        python_type = python_type | None

    if field.type.max_length:
        field_kwargs["max_length"] = field.type.max_length

    if field_kwargs:
        return (python_type, Field(**field_kwargs))
    return (python_type, ...)


# =============================================================================
# Model Generation
# =============================================================================


def generate_entity_model(entity: EntitySpec) -> type[BaseModel]:
    """
    Generate a Pydantic model from an EntitySpec.

    The model always has an ``id`` field, a ``created_at`` field when the
    entity keeps timestamps, and a ``translations`` list when the entity
    is localizable.

    Args:
        entity: Entity specification

    Returns:
        Dynamically created Pydantic model class

    Example:
        >>> entity = EntitySpec(name="Tag", fields=[...])
        >>> TagModel = generate_entity_model(entity)
        >>> tag = TagModel(name="python", slug="python")
    """
    field_definitions: dict[str, Any] = {
        field.name: _build_field_info(field) for field in entity.all_fields()
    }

    if entity.is_localizable:
        field_definitions[TRANSLATIONS_RELATION] = (
            list[dict[str, Any]],
            Field(default_factory=list, description="Loaded translation rows"),
        )

    return create_model(
        entity.name,
        __config__=ConfigDict(extra="allow"),
        __doc__=entity.description or f"Generated model for {entity.name}",
        **field_definitions,
    )


def generate_all_entity_models(entities: list[EntitySpec]) -> dict[str, type[BaseModel]]:
    """
    Generate Pydantic models for all entities.

    Refs are plain UUID foreign keys, so entities can be generated in any
    order.

    Args:
        entities: List of entity specifications

    Returns:
        Dictionary mapping entity names to generated models
    """
    return {entity.name: generate_entity_model(entity) for entity in entities}
