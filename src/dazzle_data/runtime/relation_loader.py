"""
Relation loader for eager relation fetching.

Handles loading related rows in batches and attaching them to the
parent rows, one extra query per relation instead of one per row.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from dazzle_data.errors import InvalidArgumentError
from dazzle_data.runtime.query_builder import quote_identifier
from dazzle_data.specs.entity import TRANSLATIONS_RELATION, OnDeleteAction, RelationKind

if TYPE_CHECKING:
    from dazzle_data.specs.entity import EntitySpec, RelationSpec


@dataclass
class RelationInfo:
    """Information about a relation between entities."""

    name: str
    from_entity: str
    to_entity: str
    kind: str  # "one_to_many", "many_to_one", "one_to_one"
    foreign_key_field: str  # The FK column: on the source for to-one, on the target for to-many
    on_delete: str = "restrict"  # restrict, cascade, nullify

    @property
    def is_to_one(self) -> bool:
        """Check if this is a to-one relation (FK holder side)."""
        return self.kind in ("many_to_one", "one_to_one")

    @property
    def is_to_many(self) -> bool:
        """Check if this is a to-many relation."""
        return self.kind == "one_to_many"


@dataclass
class RelationRegistry:
    """
    Registry of relations between entities.

    Tracks all relations and provides lookup methods.
    """

    _relations: dict[str, list[RelationInfo]] = field(default_factory=dict)
    _by_name: dict[tuple[str, str], RelationInfo] = field(default_factory=dict)

    def register(self, entity_name: str, relation: RelationInfo) -> None:
        """Register a relation for an entity."""
        self._relations.setdefault(entity_name, []).append(relation)
        self._by_name[(entity_name, relation.name)] = relation

    def get_relations(self, entity_name: str) -> list[RelationInfo]:
        """Get all relations for an entity."""
        return self._relations.get(entity_name, [])

    def get_relation(self, entity_name: str, relation_name: str) -> RelationInfo | None:
        """Get a specific relation by name."""
        return self._by_name.get((entity_name, relation_name))

    def has_relation(self, entity_name: str, relation_name: str) -> bool:
        """Check if a relation exists."""
        return (entity_name, relation_name) in self._by_name

    @classmethod
    def from_entities(cls, entities: list[EntitySpec]) -> RelationRegistry:
        """
        Build a relation registry from entity specifications.

        Registers explicit relations, implicit many-to-one relations for
        ``ref`` fields, and the ``translations`` relation of localizable
        entities together with the back-reference on the translation table.

        Args:
            entities: List of entity specs

        Returns:
            Populated RelationRegistry
        """
        registry = cls()

        for entity in _expand_translation_entities(entities):
            for rel in entity.relations:
                registry.register(
                    entity.name,
                    RelationInfo(
                        name=rel.name,
                        from_entity=entity.name,
                        to_entity=rel.to_entity,
                        kind=rel.kind.value,
                        foreign_key_field=_infer_fk_field(rel, entity.name),
                        on_delete=rel.on_delete.value,
                    ),
                )

            for field_spec in entity.fields:
                if field_spec.type.kind != "ref" or not field_spec.type.ref_entity:
                    continue
                existing = any(
                    r.foreign_key_field == field_spec.name
                    for r in registry.get_relations(entity.name)
                )
                if existing:
                    continue
                registry.register(
                    entity.name,
                    RelationInfo(
                        name=field_spec.name.removesuffix("_id"),
                        from_entity=entity.name,
                        to_entity=field_spec.type.ref_entity,
                        kind=RelationKind.MANY_TO_ONE.value,
                        foreign_key_field=field_spec.name,
                    ),
                )

            if entity.is_localizable:
                registry.register(
                    entity.name,
                    RelationInfo(
                        name=TRANSLATIONS_RELATION,
                        from_entity=entity.name,
                        to_entity=entity.translation_table(),
                        kind=RelationKind.ONE_TO_MANY.value,
                        foreign_key_field=entity.translation_foreign_key(),
                        on_delete=OnDeleteAction.CASCADE.value,
                    ),
                )

        return registry


def _expand_translation_entities(entities: list[EntitySpec]) -> list[EntitySpec]:
    """Return the entities followed by the translation tables they imply."""
    expanded = list(entities)
    for entity in entities:
        if entity.is_localizable:
            expanded.append(entity.translation_entity())
    return expanded


def _infer_fk_field(relation: RelationSpec, entity_name: str) -> str:
    """Infer the foreign key field name from a relation."""
    if relation.foreign_key:
        return relation.foreign_key
    if relation.kind in (RelationKind.MANY_TO_ONE, RelationKind.ONE_TO_ONE):
        # FK is on this entity
        return f"{relation.name}_id"
    # FK is on the other entity
    return f"{entity_name.lower()}_id"


class RelationLoader:
    """
    Loads related rows for eager relation fetching.

    Every requested relation costs one batched ``IN (...)`` query on the
    connection of the main query.
    """

    def __init__(self, registry: RelationRegistry, entities: list[EntitySpec]):
        """
        Initialize the relation loader.

        Args:
            registry: Relation registry
            entities: List of entity specs (translation tables included)
        """
        self.registry = registry
        self.entity_map = {e.name: e for e in entities}

    def validate_includes(self, entity_name: str, include: list[str]) -> None:
        """
        Check that every requested relation exists on the entity.

        Raises:
            InvalidArgumentError: For an unknown relation name
        """
        for relation_name in include:
            if not self.registry.has_relation(entity_name, relation_name):
                raise InvalidArgumentError(
                    f"Unknown relation '{relation_name}' on entity '{entity_name}'"
                )

    def load_relations(
        self,
        entity_name: str,
        rows: list[dict[str, Any]],
        include: list[str],
        conn: sqlite3.Connection,
    ) -> list[dict[str, Any]]:
        """
        Load relations for a list of entity rows.

        Args:
            entity_name: Name of the entity
            rows: List of entity data dicts
            include: List of relation names to include
            conn: Connection the main query ran on

        Returns:
            Rows with nested relation data
        """
        if not include or not rows:
            return rows

        self.validate_includes(entity_name, include)
        result = [dict(row) for row in rows]

        for relation_name in include:
            relation = self.registry.get_relation(entity_name, relation_name)
            assert relation is not None  # checked by validate_includes
            if relation.is_to_one:
                result = self._load_to_one(relation, result, conn)
            else:
                result = self._load_to_many(relation, result, conn)

        return result

    def _load_to_one(
        self,
        relation: RelationInfo,
        rows: list[dict[str, Any]],
        conn: sqlite3.Connection,
    ) -> list[dict[str, Any]]:
        """
        Load a to-one relation (many-to-one or one-to-one).

        Uses batched loading to avoid N+1 queries.
        """
        fk_field = relation.foreign_key_field
        fk_values = list({row[fk_field] for row in rows if row.get(fk_field) is not None})

        if not fk_values:
            for row in rows:
                row[relation.name] = None
            return rows

        placeholders = ", ".join("?" * len(fk_values))
        sql = (
            f"SELECT * FROM {quote_identifier(relation.to_entity)} "
            f'WHERE "id" IN ({placeholders})'
        )
        related_rows = [dict(r) for r in _fetch_rows(conn, sql, fk_values)]

        related_map = {str(r["id"]): r for r in related_rows}

        for row in rows:
            fk_value = row.get(fk_field)
            row[relation.name] = related_map.get(str(fk_value)) if fk_value is not None else None

        return rows

    def _load_to_many(
        self,
        relation: RelationInfo,
        rows: list[dict[str, Any]],
        conn: sqlite3.Connection,
    ) -> list[dict[str, Any]]:
        """
        Load a to-many relation.

        Uses batched loading; related rows are ordered by their id.
        """
        ids = list({row["id"] for row in rows if row.get("id") is not None})

        if not ids:
            for row in rows:
                row[relation.name] = []
            return rows

        # The FK on the related entity points back to us
        fk_field = quote_identifier(relation.foreign_key_field)
        placeholders = ", ".join("?" * len(ids))
        sql = (
            f"SELECT * FROM {quote_identifier(relation.to_entity)} "
            f'WHERE {fk_field} IN ({placeholders}) ORDER BY "id"'
        )
        related_rows = _fetch_rows(conn, sql, ids)

        related_map: dict[str, list[dict[str, Any]]] = {}
        for r in related_rows:
            r_dict = dict(r)
            related_map.setdefault(str(r_dict[relation.foreign_key_field]), []).append(r_dict)

        for row in rows:
            row[relation.name] = related_map.get(str(row.get("id")), [])

        return rows


def _fetch_rows(conn: sqlite3.Connection, sql: str, params: list[Any]) -> list[sqlite3.Row]:
    cursor = conn.execute(sql, params)
    return cursor.fetchall()


# =============================================================================
# Foreign Key Management
# =============================================================================


def build_foreign_key_constraint(relation: RelationInfo) -> str:
    """
    Build a FOREIGN KEY constraint for a to-one relation.

    Args:
        relation: Relation info (FK held by ``relation.from_entity``)

    Returns:
        SQL constraint string
    """
    on_delete_map = {
        "restrict": "RESTRICT",
        "cascade": "CASCADE",
        "nullify": "SET NULL",
    }

    on_delete = on_delete_map.get(relation.on_delete.lower(), "RESTRICT")

    return (
        f"FOREIGN KEY ({quote_identifier(relation.foreign_key_field)}) "
        f'REFERENCES {quote_identifier(relation.to_entity)}("id") ON DELETE {on_delete}'
    )


def get_foreign_key_constraints(entity: EntitySpec, registry: RelationRegistry) -> list[str]:
    """
    Get all FK constraints for an entity.

    Args:
        entity: Entity spec
        registry: Relation registry

    Returns:
        List of FK constraint SQL strings
    """
    return [
        build_foreign_key_constraint(relation)
        for relation in registry.get_relations(entity.name)
        if relation.is_to_one
    ]


def get_foreign_key_indexes(entity: EntitySpec, registry: RelationRegistry) -> list[str]:
    """
    Get index creation statements for FK columns.

    Args:
        entity: Entity spec
        registry: Relation registry

    Returns:
        List of CREATE INDEX SQL statements
    """
    indexes = []

    for relation in registry.get_relations(entity.name):
        if relation.is_to_one:
            idx_name = quote_identifier(f"idx_{entity.name}_{relation.foreign_key_field}")
            sql = (
                f"CREATE INDEX IF NOT EXISTS {idx_name} "
                f"ON {quote_identifier(entity.name)}"
                f"({quote_identifier(relation.foreign_key_field)})"
            )
            indexes.append(sql)

    return indexes
