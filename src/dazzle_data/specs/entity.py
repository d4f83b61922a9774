"""
Entity specification types.

Defines entities, fields, relationships and the localization capability.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Relation name under which translations are attached to localizable entities
TRANSLATIONS_RELATION = "translations"

# Timestamp column maintained for entities with ``timestamps=True``
CREATED_AT_FIELD = "created_at"

# =============================================================================
# Field Type System
# =============================================================================


class ScalarType(str, Enum):
    """Scalar field types."""

    STR = "str"
    TEXT = "text"
    INT = "int"
    DECIMAL = "decimal"
    BOOL = "bool"
    DATE = "date"
    DATETIME = "datetime"
    UUID = "uuid"
    EMAIL = "email"
    URL = "url"
    JSON = "json"


class FieldType(BaseModel):
    """
    Field type specification.

    Examples:
        - str: FieldType(kind="scalar", scalar_type=ScalarType.STR)
        - str(200): FieldType(kind="scalar", scalar_type=ScalarType.STR, max_length=200)
        - enum: FieldType(kind="enum", enum_values=["draft", "published"])
        - ref: FieldType(kind="ref", ref_entity="Author")
    """

    kind: Literal["scalar", "enum", "ref"] = Field(
        description="Type category: scalar, enum, or ref"
    )
    scalar_type: ScalarType | None = Field(
        default=None, description="Scalar type (for kind=scalar)"
    )
    max_length: int | None = Field(default=None, description="Max length for str types")
    enum_values: list[str] | None = Field(
        default=None, description="Allowed values for enum types"
    )
    ref_entity: str | None = Field(
        default=None, description="Referenced entity name for ref types"
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("enum_values")
    @classmethod
    def validate_enum_values(cls, v: list[str] | None) -> list[str] | None:
        """Ensure enum values are valid identifiers."""
        if v:
            for val in v:
                if not val.replace("_", "").replace("-", "").isalnum():
                    raise ValueError(f"Enum value '{val}' must be alphanumeric (with _ or -)")
        return v


UUID_TYPE = FieldType(kind="scalar", scalar_type=ScalarType.UUID)
DATETIME_TYPE = FieldType(kind="scalar", scalar_type=ScalarType.DATETIME)


# =============================================================================
# Fields
# =============================================================================


class FieldSpec(BaseModel):
    """
    Field specification for an entity.

    Attributes:
        name: Field identifier
        type: Field type specification
        required: Whether the field is required
        default: Default value
        indexed: Whether to create a database index
        unique: Whether values must be unique
    """

    name: str = Field(description="Field name")
    label: str | None = Field(default=None, description="Human-readable label")
    type: FieldType = Field(description="Field type specification")
    required: bool = Field(default=False, description="Is this field required?")
    default: Any | None = Field(default=None, description="Default value")
    indexed: bool = Field(default=False, description="Create database index?")
    unique: bool = Field(default=False, description="Values must be unique?")

    model_config = ConfigDict(frozen=True)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure field name is a valid identifier."""
        if not v.isidentifier():
            raise ValueError(f"Field name '{v}' must be a valid identifier")
        return v


# =============================================================================
# Relations
# =============================================================================


class RelationKind(str, Enum):
    """Types of relationships between entities."""

    ONE_TO_MANY = "one_to_many"
    MANY_TO_ONE = "many_to_one"
    ONE_TO_ONE = "one_to_one"


class OnDeleteAction(str, Enum):
    """Actions to take when referenced entity is deleted."""

    RESTRICT = "restrict"
    CASCADE = "cascade"
    NULLIFY = "nullify"


class RelationSpec(BaseModel):
    """
    Relationship between entities.

    Examples:
        - One-to-many: Author has many Articles
          RelationSpec(name="articles", to_entity="Article", kind="one_to_many")

        - Many-to-one: Article belongs to Author
          RelationSpec(name="author", to_entity="Author", kind="many_to_one")

    ``foreign_key`` defaults to ``<name>_id`` for to-one relations and to
    ``<entity>_id`` on the target for one-to-many relations.
    """

    name: str = Field(description="Relation name")
    to_entity: str = Field(description="Target entity")
    kind: RelationKind = Field(description="Relationship type")
    foreign_key: str | None = Field(default=None, description="Foreign key column")
    on_delete: OnDeleteAction = Field(
        default=OnDeleteAction.RESTRICT, description="Action on delete"
    )

    model_config = ConfigDict(frozen=True)


# =============================================================================
# Localization
# =============================================================================


class TranslationSpec(BaseModel):
    """
    Localization capability of an entity.

    Each translation row belongs to one owner row, is tagged with a locale
    and carries the localized fields. At most one row exists per
    (owner, locale) pair.

    Example:
        TranslationSpec(fields=[
            FieldSpec(name="title", type=FieldType(kind="scalar", scalar_type=ScalarType.STR)),
            FieldSpec(name="slug", type=FieldType(kind="scalar", scalar_type=ScalarType.STR)),
        ])
    """

    table: str | None = Field(default=None, description="Translation table name")
    foreign_key: str | None = Field(default=None, description="Column pointing at the owner")
    locale_field: str = Field(default="locale", description="Locale column")
    fields: list[FieldSpec] = Field(default_factory=list, description="Localized fields")

    model_config = ConfigDict(frozen=True)


# =============================================================================
# Entities
# =============================================================================


class EntitySpec(BaseModel):
    """
    Entity specification.

    An entity represents a persisted record type with fields, relationships
    and, optionally, translations.

    Example:
        EntitySpec(
            name="Article",
            fields=[
                FieldSpec(name="status", type=FieldType(kind="scalar", scalar_type=ScalarType.STR)),
            ],
            translations=TranslationSpec(fields=[...]),
        )
    """

    name: str = Field(description="Entity name")
    label: str | None = Field(default=None, description="Human-readable label")
    description: str | None = Field(default=None, description="Entity description")
    fields: list[FieldSpec] = Field(default_factory=list, description="Entity fields")
    relations: list[RelationSpec] = Field(
        default_factory=list, description="Entity relationships"
    )
    translations: TranslationSpec | None = Field(
        default=None, description="Localization capability"
    )
    timestamps: bool = Field(default=True, description="Maintain a created_at column?")
    unique_together: list[tuple[str, ...]] = Field(
        default_factory=list, description="Composite unique constraints"
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure entity name is a valid identifier."""
        if not v.isidentifier():
            raise ValueError(f"Entity name '{v}' must be a valid identifier")
        return v

    @property
    def is_localizable(self) -> bool:
        """True when the entity carries a translation relation."""
        return self.translations is not None

    def get_field(self, name: str) -> FieldSpec | None:
        """Get field by name."""
        for field in self.fields:
            if field.name == name:
                return field
        return None

    @property
    def id_type(self) -> FieldType:
        """Type of the primary key; UUID unless an ``id`` field says otherwise."""
        id_field = self.get_field("id")
        return id_field.type if id_field else UUID_TYPE

    def all_fields(self) -> list[FieldSpec]:
        """Declared fields plus the implicit ``id`` and ``created_at`` columns."""
        fields: list[FieldSpec] = []
        if self.get_field("id") is None:
            fields.append(FieldSpec(name="id", type=UUID_TYPE, required=True))
        fields.extend(self.fields)
        if self.timestamps and self.get_field(CREATED_AT_FIELD) is None:
            fields.append(FieldSpec(name=CREATED_AT_FIELD, type=DATETIME_TYPE, indexed=True))
        return fields

    def translation_table(self) -> str:
        """Name of the translation table."""
        if self.translations is None:
            raise ValueError(f"Entity '{self.name}' is not localizable")
        return self.translations.table or f"{self.name}Translation"

    def translation_foreign_key(self) -> str:
        """Column on the translation table that points at this entity."""
        if self.translations is None:
            raise ValueError(f"Entity '{self.name}' is not localizable")
        return self.translations.foreign_key or f"{self.name.lower()}_id"

    def translation_entity(self) -> "EntitySpec":
        """Build the spec of the translation table for a localizable entity."""
        if self.translations is None:
            raise ValueError(f"Entity '{self.name}' is not localizable")

        fk = self.translation_foreign_key()
        locale = self.translations.locale_field
        return EntitySpec(
            name=self.translation_table(),
            description=f"Translations of {self.name}",
            fields=[
                FieldSpec(
                    name="id",
                    type=FieldType(kind="scalar", scalar_type=ScalarType.INT),
                    required=True,
                ),
                FieldSpec(name=fk, type=self.id_type, required=True, indexed=True),
                FieldSpec(
                    name=locale,
                    type=FieldType(kind="scalar", scalar_type=ScalarType.STR, max_length=16),
                    required=True,
                ),
                *self.translations.fields,
            ],
            relations=[
                RelationSpec(
                    name=self.name.lower(),
                    to_entity=self.name,
                    kind=RelationKind.MANY_TO_ONE,
                    foreign_key=fk,
                    on_delete=OnDeleteAction.CASCADE,
                )
            ],
            timestamps=False,
            unique_together=[(fk, locale)],
        )
