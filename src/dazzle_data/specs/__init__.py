"""
Entity specification types.

This module exports the metadata types repositories are built from.
"""

from dazzle_data.specs.entity import (
    CREATED_AT_FIELD,
    TRANSLATIONS_RELATION,
    EntitySpec,
    FieldSpec,
    FieldType,
    OnDeleteAction,
    RelationKind,
    RelationSpec,
    ScalarType,
    TranslationSpec,
)

__all__ = [
    # Entity types
    "EntitySpec",
    "FieldSpec",
    "FieldType",
    "ScalarType",
    "RelationSpec",
    "RelationKind",
    "OnDeleteAction",
    # Localization
    "TranslationSpec",
    "TRANSLATIONS_RELATION",
    "CREATED_AT_FIELD",
]
