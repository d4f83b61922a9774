"""
SQLite database manager and value conversion.

Creates tables from EntitySpec (translation tables included), hands out
connections and converts values between Python and SQLite.
"""

from __future__ import annotations

import json
import re
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any
from uuid import UUID

from dazzle_data.config import get_settings
from dazzle_data.logging import get_store_logger
from dazzle_data.runtime.query_builder import quote_identifier
from dazzle_data.runtime.relation_loader import (
    RelationRegistry,
    get_foreign_key_constraints,
    get_foreign_key_indexes,
)
from dazzle_data.specs.entity import (
    EntitySpec,
    FieldSpec,
    FieldType,
    ScalarType,
)

logger = get_store_logger()

# =============================================================================
# SQLite Type Mapping
# =============================================================================


def _scalar_type_to_sqlite(scalar_type: ScalarType) -> str:
    """Map scalar types to SQLite types."""
    mapping: dict[ScalarType, str] = {
        ScalarType.STR: "TEXT",
        ScalarType.TEXT: "TEXT",
        ScalarType.INT: "INTEGER",
        ScalarType.DECIMAL: "REAL",
        ScalarType.BOOL: "INTEGER",  # SQLite uses 0/1 for bool
        ScalarType.DATE: "TEXT",  # ISO format
        ScalarType.DATETIME: "TEXT",  # ISO format
        ScalarType.UUID: "TEXT",  # UUID as string
        ScalarType.EMAIL: "TEXT",
        ScalarType.URL: "TEXT",
        ScalarType.JSON: "TEXT",  # JSON as string
    }
    return mapping.get(scalar_type, "TEXT")


def _field_type_to_sqlite(field_type: FieldType) -> str:
    """Convert FieldType to SQLite column type."""
    if field_type.kind == "scalar" and field_type.scalar_type:
        return _scalar_type_to_sqlite(field_type.scalar_type)
    return "TEXT"  # enums and refs (UUID strings)


def python_to_sqlite(value: Any, field_type: FieldType | None = None) -> Any:
    """Convert Python value to SQLite-compatible value."""
    if value is None:
        return None
    elif isinstance(value, UUID):
        return str(value)
    elif isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.isoformat()
    elif isinstance(value, date):
        return value.isoformat()
    elif isinstance(value, Decimal):
        return float(value)
    elif isinstance(value, bool):
        return 1 if value else 0
    elif isinstance(value, (dict, list)):
        return json.dumps(value)
    else:
        return value


def sqlite_to_python(value: Any, field_type: FieldType | None = None) -> Any:
    """Convert SQLite value to Python type based on field type."""
    if value is None:
        return None
    if field_type is None:
        return value

    if field_type.kind == "scalar" and field_type.scalar_type:
        scalar = field_type.scalar_type
        if scalar == ScalarType.UUID:
            return UUID(str(value))
        elif scalar == ScalarType.DATETIME:
            return datetime.fromisoformat(value)
        elif scalar == ScalarType.DATE:
            return date.fromisoformat(value)
        elif scalar == ScalarType.DECIMAL:
            return Decimal(str(value))
        elif scalar == ScalarType.BOOL:
            return bool(value)
        elif scalar == ScalarType.JSON:
            return json.loads(value)
        else:
            return value
    elif field_type.kind == "ref":
        return UUID(str(value))
    else:
        return value


# =============================================================================
# Constraint Errors
# =============================================================================


def parse_constraint_error(exc: sqlite3.IntegrityError | str) -> tuple[str, str | None]:
    """Parse an integrity error message to extract constraint type and field.

    Returns:
        (constraint_type, field_name_or_none)
    """
    err = str(exc)

    # "UNIQUE constraint failed: Article.slug" or "...: T.a, T.b"
    if "UNIQUE constraint failed:" in err:
        parts = err.split("UNIQUE constraint failed:")[-1].strip()
        field_name = parts.split(",")[0].split(".")[-1].strip() if parts else None
        return "unique", field_name or None

    # "NOT NULL constraint failed: Article.status"
    if "NOT NULL constraint failed:" in err:
        parts = err.split("NOT NULL constraint failed:")[-1].strip()
        return "not_null", parts.split(".")[-1].strip() or None

    if "FOREIGN KEY constraint failed" in err:
        return "foreign_key", None

    match = re.search(r"constraint failed: \w+\.(\w+)", err)
    return "integrity", match.group(1) if match else None


# =============================================================================
# Database Manager
# =============================================================================


class DatabaseManager:
    """
    Manages SQLite database connection and schema.

    Handles database creation and table creation from entity specs.
    """

    def __init__(self, db_path: str | Path | None = None):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file (defaults to settings)
        """
        self.db_path = Path(db_path) if db_path is not None else get_settings().database_path
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Get a database connection context manager.

        Commits on success and rolls back on any exception.

        Yields:
            SQLite connection
        """
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def create_table(self, entity: EntitySpec, *, registry: RelationRegistry | None = None) -> None:
        """
        Create a table for an entity if it doesn't exist.

        Args:
            entity: Entity specification
            registry: Optional RelationRegistry for FK constraints
        """
        columns = self._build_columns(entity, registry=registry)
        table = quote_identifier(entity.name)
        sql = f"CREATE TABLE IF NOT EXISTS {table} ({columns})"

        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(sql)

            for field in entity.all_fields():
                if field.indexed and field.name != "id":
                    idx = quote_identifier(f"idx_{entity.name}_{field.name}")
                    col = quote_identifier(field.name)
                    cursor.execute(f"CREATE INDEX IF NOT EXISTS {idx} ON {table}({col})")

            if registry is not None:
                for fk_idx_sql in get_foreign_key_indexes(entity, registry):
                    cursor.execute(fk_idx_sql)

        logger.debug(f"Ensured table {entity.name}")

    def _build_columns(self, entity: EntitySpec, *, registry: RelationRegistry | None = None) -> str:
        """Build column definitions for CREATE TABLE."""
        columns = [self._build_column(field) for field in entity.all_fields()]

        for unique_columns in entity.unique_together:
            cols = ", ".join(quote_identifier(c) for c in unique_columns)
            columns.append(f"UNIQUE ({cols})")

        if registry is not None:
            columns.extend(get_foreign_key_constraints(entity, registry))

        return ", ".join(columns)

    def _build_column(self, field: FieldSpec) -> str:
        """Build a single column definition."""
        sqlite_type = _field_type_to_sqlite(field.type)
        parts = [quote_identifier(field.name), sqlite_type]

        if field.name == "id":
            # INTEGER PRIMARY KEY aliases the rowid and autoincrements
            parts.append("PRIMARY KEY")
        elif field.required:
            parts.append("NOT NULL")

        if field.unique:
            parts.append("UNIQUE")

        if field.default is not None:
            default_val = python_to_sqlite(field.default, field.type)
            if isinstance(default_val, str):
                escaped = default_val.replace("'", "''")
                parts.append(f"DEFAULT '{escaped}'")
            else:
                parts.append(f"DEFAULT {default_val}")

        return " ".join(parts)

    def create_all_tables(self, entities: list[EntitySpec]) -> None:
        """
        Create tables for all entities and their translation tables.

        Owners are created before their translation tables so the FK
        constraints resolve.

        Args:
            entities: List of entity specifications
        """
        registry = RelationRegistry.from_entities(entities)
        for entity in entities:
            self.create_table(entity, registry=registry)
        for entity in entities:
            if entity.is_localizable:
                self.create_table(entity.translation_entity(), registry=registry)

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table_name,)
            )
            return cursor.fetchone() is not None

    def get_table_columns(self, table_name: str) -> list[str]:
        """Get column names for a table."""
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"PRAGMA table_info({quote_identifier(table_name)})")
            return [row[1] for row in cursor.fetchall()]
