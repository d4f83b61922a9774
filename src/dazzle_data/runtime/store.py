"""
Store - executes built queries against the database.

The repository talks to the database only through the ``Store`` protocol:
it hands over a ``QueryBuilder`` (or plain column maps for writes) and
gets back rows as dicts. ``SQLiteStore`` is the SQLite implementation; it
runs the main query, eager-loads the requested relations on the same
connection and converts values back to Python types.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any, Protocol

from dazzle_data.errors import ConstraintViolationError, StoreError
from dazzle_data.logging import get_store_logger, log_with_context
from dazzle_data.runtime.database import (
    DatabaseManager,
    parse_constraint_error,
    python_to_sqlite,
    sqlite_to_python,
)
from dazzle_data.runtime.query_builder import QueryBuilder, quote_identifier
from dazzle_data.runtime.relation_loader import RelationLoader, RelationRegistry
from dazzle_data.specs.entity import EntitySpec, FieldType

logger = get_store_logger()

Row = dict[str, Any]


class Store(Protocol):
    """Operations the repository needs from the underlying store."""

    def supports_translations(self, entity: EntitySpec) -> bool: ...

    def first(self, builder: QueryBuilder) -> Row | None: ...

    def get(self, builder: QueryBuilder) -> list[Row]: ...

    def count(self, builder: QueryBuilder) -> int: ...

    def paginate(self, builder: QueryBuilder) -> tuple[list[Row], int]: ...

    def pluck(self, builder: QueryBuilder, value_column: str, key_column: str) -> dict[Any, Any]: ...

    def insert(self, table: str, data: Mapping[str, Any]) -> Any: ...

    def insert_with_translations(
        self,
        entity: EntitySpec,
        data: Mapping[str, Any],
        translations: Mapping[str, Mapping[str, Any]],
    ) -> Any: ...

    def insert_many(self, table: str, records: Sequence[Mapping[str, Any]]) -> int: ...

    def update(self, table: str, id: Any, data: Mapping[str, Any]) -> int: ...

    def update_with_translations(
        self,
        entity: EntitySpec,
        id: Any,
        data: Mapping[str, Any],
        translations: Mapping[str, Mapping[str, Any]],
    ) -> int: ...

    def delete_ids(self, table: str, ids: Sequence[Any]) -> int: ...

    def save_translations(
        self,
        entity: EntitySpec,
        owner_id: Any,
        translations: Mapping[str, Mapping[str, Any]],
    ) -> int: ...


class SQLiteStore:
    """
    SQLite implementation of the ``Store`` protocol.

    Knows every entity it serves (translation tables included) so it can
    resolve relations and convert column values.
    """

    def __init__(self, db_manager: DatabaseManager, entities: list[EntitySpec]):
        """
        Initialize the store.

        Args:
            db_manager: Database manager instance
            entities: Entity specifications served by this store
        """
        self.db = db_manager
        self.entities: dict[str, EntitySpec] = {}
        for entity in entities:
            self.entities[entity.name] = entity
            if entity.is_localizable:
                translation = entity.translation_entity()
                self.entities[translation.name] = translation

        self.registry = RelationRegistry.from_entities(entities)
        self.relation_loader = RelationLoader(self.registry, list(self.entities.values()))
        self._field_types: dict[str, dict[str, FieldType]] = {
            name: {f.name: f.type for f in spec.all_fields()}
            for name, spec in self.entities.items()
        }

    # -------------------------------------------------------------------------
    # Execution helpers
    # -------------------------------------------------------------------------

    @contextmanager
    def _connection(self, operation: str, table: str) -> Iterator[sqlite3.Connection]:
        """Open a connection and translate SQLite failures into store errors."""
        try:
            with self.db.connection() as conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            ctype, field = parse_constraint_error(exc)
            if ctype == "unique":
                msg = (
                    f"A {table} with this {field} already exists"
                    if field
                    else f"Duplicate value violates unique constraint on {table}"
                )
            elif ctype == "foreign_key":
                msg = f"Referenced record does not exist for {table}"
            elif ctype == "not_null":
                msg = f"Field '{field}' of {table} cannot be null"
            else:
                msg = f"Integrity constraint violated on {table}: {exc}"
            log_with_context(
                logger, logging.ERROR, msg, operation=operation, table=table, field=field
            )
            raise ConstraintViolationError(msg, field=field, constraint_type=ctype) from exc
        except sqlite3.Error as exc:
            msg = f"{operation} on {table} failed: {exc}"
            log_with_context(logger, logging.ERROR, msg, operation=operation, table=table)
            raise StoreError(msg) from exc

    def _select(self, conn: sqlite3.Connection, builder: QueryBuilder) -> list[Row]:
        sql, params = builder.build_select()
        logger.debug(f"{sql} {params}")
        rows = [dict(row) for row in conn.execute(sql, params).fetchall()]
        if builder.includes:
            rows = self.relation_loader.load_relations(
                builder.table_name, rows, builder.includes, conn=conn
            )
        return [self._convert_row(builder.table_name, row) for row in rows]

    def _convert_row(self, entity_name: str, row: Row) -> Row:
        """Convert column values and nested relation rows to Python types."""
        field_types = self._field_types.get(entity_name, {})
        result: Row = {}
        for key, value in row.items():
            relation = self.registry.get_relation(entity_name, key)
            if relation is not None and isinstance(value, dict):
                result[key] = self._convert_row(relation.to_entity, value)
            elif relation is not None and isinstance(value, list):
                result[key] = [self._convert_row(relation.to_entity, item) for item in value]
            else:
                result[key] = sqlite_to_python(value, field_types.get(key))
        return result

    def _to_db(self, table: str, data: Mapping[str, Any]) -> Row:
        field_types = self._field_types.get(table, {})
        return {k: python_to_sqlite(v, field_types.get(k)) for k, v in data.items()}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def supports_translations(self, entity: EntitySpec) -> bool:
        """Capability query: does the entity carry a translation relation?"""
        return entity.is_localizable

    def get(self, builder: QueryBuilder) -> list[Row]:
        """Run the query and return all rows with relations loaded."""
        self.relation_loader.validate_includes(builder.table_name, builder.includes)
        with self._connection("select", builder.table_name) as conn:
            return self._select(conn, builder)

    def first(self, builder: QueryBuilder) -> Row | None:
        """Run the query limited to one row."""
        builder.set_limit(1)
        rows = self.get(builder)
        return rows[0] if rows else None

    def count(self, builder: QueryBuilder) -> int:
        """Count rows matched by the builder's conditions."""
        sql, params = builder.build_count()
        with self._connection("count", builder.table_name) as conn:
            return int(conn.execute(sql, params).fetchone()[0])

    def paginate(self, builder: QueryBuilder) -> tuple[list[Row], int]:
        """Return one page of rows and the total row count."""
        self.relation_loader.validate_includes(builder.table_name, builder.includes)
        count_sql, count_params = builder.build_count()
        with self._connection("paginate", builder.table_name) as conn:
            total = int(conn.execute(count_sql, count_params).fetchone()[0])
            rows = self._select(conn, builder)
        return rows, total

    def pluck(self, builder: QueryBuilder, value_column: str, key_column: str) -> dict[Any, Any]:
        """Map ``key_column`` to ``value_column`` for every matched row."""
        builder.set_columns([key_column, value_column])
        builder.includes = []
        with self._connection("pluck", builder.table_name) as conn:
            rows = self._select(conn, builder)
        return {row[key_column]: row[value_column] for row in rows}

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _insert_row(self, conn: sqlite3.Connection, table: str, data: Mapping[str, Any]) -> Any:
        db_data = self._to_db(table, data)
        columns = ", ".join(quote_identifier(k) for k in db_data)
        placeholders = ", ".join("?" for _ in db_data)
        sql = f"INSERT INTO {quote_identifier(table)} ({columns}) VALUES ({placeholders})"
        row_id = conn.execute(sql, list(db_data.values())).lastrowid
        return data["id"] if data.get("id") is not None else row_id

    def _update_row(
        self, conn: sqlite3.Connection, table: str, id: Any, data: Mapping[str, Any]
    ) -> int:
        db_data = self._to_db(table, data)
        set_clause = ", ".join(f"{quote_identifier(k)} = ?" for k in db_data)
        values = list(db_data.values())
        values.append(python_to_sqlite(id))
        sql = f'UPDATE {quote_identifier(table)} SET {set_clause} WHERE "id" = ?'
        return conn.execute(sql, values).rowcount

    def _row_exists(self, conn: sqlite3.Connection, table: str, id: Any) -> bool:
        sql = f'SELECT 1 FROM {quote_identifier(table)} WHERE "id" = ?'
        return conn.execute(sql, [python_to_sqlite(id)]).fetchone() is not None

    def _upsert_translations(
        self,
        conn: sqlite3.Connection,
        entity: EntitySpec,
        owner_id: Any,
        translations: Mapping[str, Mapping[str, Any]],
    ) -> None:
        table = entity.translation_table()
        fk = entity.translation_foreign_key()
        locale_field = entity.translations.locale_field if entity.translations else "locale"

        for locale, fields in translations.items():
            db_data = self._to_db(table, {fk: owner_id, locale_field: locale, **fields})
            columns = ", ".join(quote_identifier(k) for k in db_data)
            placeholders = ", ".join("?" for _ in db_data)
            if fields:
                updates = ", ".join(
                    f"{quote_identifier(k)} = excluded.{quote_identifier(k)}" for k in fields
                )
                conflict = f"DO UPDATE SET {updates}"
            else:
                conflict = "DO NOTHING"
            sql = (
                f"INSERT INTO {quote_identifier(table)} ({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT ({quote_identifier(fk)}, {quote_identifier(locale_field)}) "
                f"{conflict}"
            )
            conn.execute(sql, list(db_data.values()))

    def insert(self, table: str, data: Mapping[str, Any]) -> Any:
        """
        Insert one row.

        Returns:
            The row id: the supplied ``id`` or the generated rowid
        """
        with self._connection("insert", table) as conn:
            return self._insert_row(conn, table, data)

    def insert_with_translations(
        self,
        entity: EntitySpec,
        data: Mapping[str, Any],
        translations: Mapping[str, Mapping[str, Any]],
    ) -> Any:
        """
        Insert an owner row and its translations in one transaction.

        A failing translation write rolls back the owner row too.

        Returns:
            The owner row id
        """
        with self._connection("insert", entity.name) as conn:
            row_id = self._insert_row(conn, entity.name, data)
            if translations:
                self._upsert_translations(conn, entity, row_id, translations)
        return row_id

    def insert_many(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
        """Insert several rows sharing one column set in a single batch."""
        if not records:
            return 0
        keys = list(records[0].keys())
        columns = ", ".join(quote_identifier(k) for k in keys)
        placeholders = ", ".join("?" for _ in keys)
        sql = f"INSERT INTO {quote_identifier(table)} ({columns}) VALUES ({placeholders})"
        values = [list(self._to_db(table, {k: record[k] for k in keys}).values()) for record in records]

        with self._connection("insert_many", table) as conn:
            conn.executemany(sql, values)

        return len(records)

    def update(self, table: str, id: Any, data: Mapping[str, Any]) -> int:
        """Update columns of the row with the given id; returns rows affected."""
        with self._connection("update", table) as conn:
            return self._update_row(conn, table, id, data)

    def update_with_translations(
        self,
        entity: EntitySpec,
        id: Any,
        data: Mapping[str, Any],
        translations: Mapping[str, Mapping[str, Any]],
    ) -> int:
        """
        Update an owner row and upsert its translations in one transaction.

        Nothing is written when the row does not exist.

        Returns:
            1 if the row exists, 0 otherwise
        """
        with self._connection("update", entity.name) as conn:
            if data:
                found = self._update_row(conn, entity.name, id, data) > 0
            else:
                found = self._row_exists(conn, entity.name, id)
            if found and translations:
                self._upsert_translations(conn, entity, id, translations)
        return 1 if found else 0

    def delete_ids(self, table: str, ids: Sequence[Any]) -> int:
        """Delete rows by id in one statement; returns rows deleted."""
        sql, params = QueryBuilder(table_name=table).add_in_filter("id", ids).build_delete()
        with self._connection("delete", table) as conn:
            return conn.execute(sql, params).rowcount

    def save_translations(
        self,
        entity: EntitySpec,
        owner_id: Any,
        translations: Mapping[str, Mapping[str, Any]],
    ) -> int:
        """
        Insert or update translation rows, one per locale.

        Args:
            entity: Localizable owner entity
            owner_id: Id of the owner row
            translations: Mapping of locale to localized field values

        Returns:
            Number of locales written
        """
        with self._connection("save_translations", entity.translation_table()) as conn:
            self._upsert_translations(conn, entity, owner_id, translations)
        return len(translations)
