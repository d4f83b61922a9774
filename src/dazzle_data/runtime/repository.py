"""
Repository - uniform data access for a single entity type.

This module implements the repository pattern on top of a ``Store``.
Every operation builds a fresh ``QueryBuilder``, shapes it (filters,
relations, ordering, pagination) and hands it to the store. Entities that
carry translations get the ``translations`` relation attached to every
query unless the caller chooses the relations explicitly.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from math import ceil
from pathlib import Path
from typing import Any, Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel

from dazzle_data.config import DataSettings, get_settings
from dazzle_data.errors import InvalidArgumentError, NotFoundError
from dazzle_data.logging import get_repository_logger, log_with_context
from dazzle_data.runtime.database import DatabaseManager
from dazzle_data.runtime.model_generator import generate_entity_model
from dazzle_data.runtime.query_builder import QueryBuilder
from dazzle_data.runtime.store import Row, SQLiteStore, Store
from dazzle_data.specs.entity import (
    CREATED_AT_FIELD,
    TRANSLATIONS_RELATION,
    EntitySpec,
    ScalarType,
)

logger = get_repository_logger()

T = TypeVar("T", bound=BaseModel)


# =============================================================================
# Pagination
# =============================================================================


class Page(BaseModel, Generic[T]):
    """One page of an ordered result set."""

    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def last_page(self) -> int:
        """Number of the last page (at least 1)."""
        return max(1, ceil(self.total / self.page_size))

    @property
    def has_more(self) -> bool:
        """Whether pages follow this one."""
        return self.page < self.last_page


# =============================================================================
# Repository
# =============================================================================


class Repository(Generic[T]):
    """
    Repository for a single entity type.

    Provides find/list/paginate, create/update/delete and attribute-based
    queries. Stateless apart from the entity metadata, model class and
    store it was built with.

    Ordering arguments accept a field name or ``None``; ``None`` means no
    ORDER BY clause at all. Sort directions are ``"asc"`` or ``"desc"``.
    """

    def __init__(
        self,
        store: Store,
        entity_spec: EntitySpec,
        model_class: type[T],
        settings: DataSettings | None = None,
    ):
        """
        Initialize the repository.

        Args:
            store: Store executing the queries
            entity_spec: Entity specification
            model_class: Pydantic model class for the entity
            settings: Page size defaults (read from the environment if omitted)
        """
        self.store = store
        self.entity_spec = entity_spec
        self.model_class = model_class
        self.table_name = entity_spec.name
        self.settings = settings or get_settings()
        self._has_created_at = any(f.name == CREATED_AT_FIELD for f in entity_spec.all_fields())

    # -------------------------------------------------------------------------
    # Query construction
    # -------------------------------------------------------------------------

    def get_query(self) -> QueryBuilder:
        """Return a bare query builder for the entity's table."""
        return QueryBuilder(table_name=self.table_name)

    def get_model(self) -> type[T]:
        """Return the model class of the entity."""
        return self.model_class

    def _query(self) -> QueryBuilder:
        """Fresh builder with translations attached when the entity supports them."""
        builder = self.get_query()
        if self.store.supports_translations(self.entity_spec):
            builder.add_include(TRANSLATIONS_RELATION)
        return builder

    def _query_with(self, relations: Iterable[str] | None) -> QueryBuilder:
        """Fresh builder loading exactly the caller's relations."""
        builder = self.get_query()
        if relations:
            builder.add_includes(relations)
        return builder

    def _apply_ordering(
        self, builder: QueryBuilder, order_by: str | None, sort_order: str
    ) -> QueryBuilder:
        if order_by is None:
            return builder
        if order_by == CREATED_AT_FIELD and not self._has_created_at:
            # Entities without timestamps have no creation order
            return builder
        return builder.add_sort(order_by, sort_order)

    def _build_query_by_attributes(
        self,
        attributes: Mapping[str, Any],
        order_by: str | None = None,
        sort_order: str = "asc",
        builder: QueryBuilder | None = None,
    ) -> QueryBuilder:
        """Equality filters in insertion order, then the ordering clause."""
        builder = builder if builder is not None else self._query()
        builder.add_filters(attributes)
        return self._apply_ordering(builder, order_by, sort_order)

    def _to_model(self, row: Row) -> T:
        return self.model_class.model_validate(row)

    def _to_models(self, rows: Iterable[Row]) -> list[T]:
        return [self._to_model(row) for row in rows]

    def _first(self, builder: QueryBuilder) -> T | None:
        row = self.store.first(builder)
        return self._to_model(row) if row is not None else None

    def _project(self, builder: QueryBuilder, columns: Sequence[str] | None) -> QueryBuilder:
        builder.set_columns(columns)
        if columns and "id" not in columns:
            # Relations are matched on id; without it nothing can be attached
            builder.includes = []
        return builder

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def find(self, id: Any) -> T | None:
        """Find an entity by id."""
        logger.debug(f"find {self.table_name} id={id}")
        return self._first(self._query().add_filter("id", id))

    def all(self) -> list[T]:
        """All entities, newest first."""
        builder = self._apply_ordering(self._query(), CREATED_AT_FIELD, "desc")
        return self._to_models(self.store.get(builder))

    def all_with_builder(self) -> QueryBuilder:
        """A builder for the entity with translations already attached."""
        return self._query()

    def paginate(self, page_size: int | None = None, page: int = 1) -> Page[T]:
        """
        One page of entities, newest first.

        Args:
            page_size: Items per page (defaults to ``default_page_size``, 15)
            page: Page number, 1-indexed

        Returns:
            Page with items, total, page and page_size

        Raises:
            InvalidArgumentError: If page_size or page is below 1
        """
        if page_size is None:
            page_size = self.settings.default_page_size
        if page_size < 1:
            raise InvalidArgumentError(f"Page size must be at least 1, got {page_size}")
        if page < 1:
            raise InvalidArgumentError(f"Page must be at least 1, got {page}")
        page_size = min(page_size, self.settings.max_page_size)

        builder = self._apply_ordering(self._query(), CREATED_AT_FIELD, "desc")
        builder.set_pagination(page, page_size)
        rows, total = self.store.paginate(builder)
        return Page(items=self._to_models(rows), total=total, page=page, page_size=page_size)

    def all_translated_in(self, locale: str) -> list[T]:
        """
        Entities having at least one translation in ``locale``, newest first.

        Raises:
            InvalidArgumentError: If the entity is not localizable
        """
        if not self.store.supports_translations(self.entity_spec):
            raise InvalidArgumentError(f"Entity '{self.table_name}' is not localizable")
        translations = self.entity_spec.translations
        assert translations is not None

        builder = self._query()
        builder.add_relation_filter(
            self.entity_spec.translation_table(),
            self.entity_spec.translation_foreign_key(),
            {translations.locale_field: locale},
        )
        self._apply_ordering(builder, CREATED_AT_FIELD, "desc")
        return self._to_models(self.store.get(builder))

    def find_by_slug(self, slug: str) -> T | None:
        """
        Find an entity by slug.

        Localizable entities match the slug of any of their translations;
        other entities match their own ``slug`` column. Matching is exact.
        """
        builder = self._query()
        if self.store.supports_translations(self.entity_spec):
            builder.add_relation_filter(
                self.entity_spec.translation_table(),
                self.entity_spec.translation_foreign_key(),
                {"slug": slug},
            )
        else:
            builder.add_filter("slug", slug)
        return self._first(builder)

    def find_by_attributes(self, attributes: Mapping[str, Any]) -> T | None:
        """First entity matching all attributes (newest first)."""
        builder = self._build_query_by_attributes(attributes, CREATED_AT_FIELD, "desc")
        return self._first(builder)

    def get_by_attributes(
        self,
        attributes: Mapping[str, Any],
        order_by: str | None = CREATED_AT_FIELD,
        sort_order: str = "desc",
    ) -> list[T]:
        """All entities matching all attributes."""
        builder = self._build_query_by_attributes(attributes, order_by, sort_order)
        return self._to_models(self.store.get(builder))

    def find_by_many(self, ids: Iterable[Any]) -> list[T]:
        """Entities whose id is in ``ids``, newest first."""
        ids = list(ids)
        if not ids:
            return []
        builder = self._query().add_in_filter("id", ids)
        self._apply_ordering(builder, CREATED_AT_FIELD, "desc")
        return self._to_models(self.store.get(builder))

    def get_by_attributes_with_columns(
        self,
        attributes: Mapping[str, Any],
        columns: Sequence[str] | None = None,
        order_by: str | None = CREATED_AT_FIELD,
        sort_order: str = "desc",
    ) -> list[Row]:
        """
        Rows matching all attributes, restricted to ``columns``.

        The projection does not change filtering or ordering. Translations
        are attached when the projection includes ``id``.
        """
        builder = self._build_query_by_attributes(attributes, order_by, sort_order)
        return self.store.get(self._project(builder, columns))

    def find_by_attributes_with_columns(
        self,
        attributes: Mapping[str, Any],
        columns: Sequence[str],
        order_by: str | None = None,
        sort_order: str = "desc",
    ) -> Row | None:
        """First row matching all attributes, restricted to ``columns``."""
        builder = self._build_query_by_attributes(attributes, order_by, sort_order)
        return self.store.first(self._project(builder, columns))

    def all_with(
        self,
        relations: Iterable[str] | None,
        order: str = "desc",
        sort_field: str | None = CREATED_AT_FIELD,
    ) -> list[T]:
        """All entities with exactly the given relations loaded."""
        builder = self._apply_ordering(self._query_with(relations), sort_field, order)
        return self._to_models(self.store.get(builder))

    def all_with_columns(
        self,
        columns: Sequence[str],
        order_by: str | None = None,
        sort_order: str = "asc",
    ) -> list[Row]:
        """All rows restricted to ``columns``."""
        builder = self._apply_ordering(self.get_query(), order_by, sort_order)
        return self.store.get(builder.set_columns(columns))

    def find_with(self, id: Any, relations: Iterable[str] | None) -> T | None:
        """Find an entity by id with exactly the given relations loaded."""
        return self._first(self._query_with(relations).add_filter("id", id))

    def find_many_by_with(
        self,
        attributes: Mapping[str, Any],
        relations: Iterable[str] | None,
        order_by: str | None = CREATED_AT_FIELD,
        direction: str = "desc",
    ) -> list[T]:
        """Entities matching all attributes, with exactly the given relations."""
        builder = self._build_query_by_attributes(
            attributes, order_by, direction, builder=self._query_with(relations)
        )
        return self._to_models(self.store.get(builder))

    def find_many_by_attributes(
        self, attributes: Mapping[str, Any], order_by: str | None = None
    ) -> list[T]:
        """Entities matching all attributes, descending on ``order_by`` if given."""
        builder = self._build_query_by_attributes(attributes, order_by, "desc")
        return self._to_models(self.store.get(builder))

    def find_by_attributes_with(
        self,
        attributes: Mapping[str, Any],
        relations: Iterable[str] | None,
        order_by: str | None = None,
        sort_order: str = "desc",
    ) -> T | None:
        """First entity matching all attributes, with exactly the given relations."""
        builder = self._build_query_by_attributes(
            attributes, order_by, sort_order, builder=self._query_with(relations)
        )
        return self._first(builder)

    def get_by_attributes_with(
        self,
        attributes: Mapping[str, Any],
        relations: Iterable[str] | None,
        order_by: str | None = None,
        sort_order: str = "desc",
    ) -> list[T]:
        """All entities matching all attributes, with exactly the given relations."""
        builder = self._build_query_by_attributes(
            attributes, order_by, sort_order, builder=self._query_with(relations)
        )
        return self._to_models(self.store.get(builder))

    def get_name_value(self, name_column: str = "name", id_column: str = "id") -> dict[Any, Any]:
        """Map ``id_column`` to ``name_column`` for every row, e.g. for select lists."""
        return self.store.pluck(self.get_query(), name_column, id_column)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _pop_translations(self, data: dict[str, Any]) -> Mapping[str, Mapping[str, Any]] | None:
        if not self.store.supports_translations(self.entity_spec):
            return None
        translations = data.pop(TRANSLATIONS_RELATION, None)
        if translations is None:
            return None
        if not isinstance(translations, Mapping) or not all(
            isinstance(v, Mapping) for v in translations.values()
        ):
            raise InvalidArgumentError(
                "translations must map a locale to a mapping of localized fields"
            )
        return translations

    def _fill_auto_fields(self, data: dict[str, Any]) -> dict[str, Any]:
        """Generate a UUID id and creation timestamp when they are missing."""
        if data.get("id") is None and self.entity_spec.id_type.scalar_type == ScalarType.UUID:
            data["id"] = uuid4()
        if self._has_created_at and data.get(CREATED_AT_FIELD) is None:
            data[CREATED_AT_FIELD] = datetime.now(timezone.utc)
        return data

    def create(self, data: Mapping[str, Any]) -> T:
        """
        Create a new entity.

        Args:
            data: Field values; localizable entities also accept
                ``translations={"en": {...}, "fr": {...}}``

        Returns:
            Created entity (with translations loaded when localizable)
        """
        data = dict(data)
        translations = self._pop_translations(data)
        entity = self._to_model(self._fill_auto_fields(data))

        row = entity.model_dump(exclude={TRANSLATIONS_RELATION})
        if row.get("id") is None:
            row.pop("id", None)
        row_id = self.store.insert_with_translations(self.entity_spec, row, translations or {})
        if entity.id is None:  # type: ignore[attr-defined]
            entity.id = row_id  # type: ignore[attr-defined]

        log_with_context(
            logger, logging.INFO, f"Created {self.table_name}", id=str(row_id)
        )

        if self.store.supports_translations(self.entity_spec):
            return self.find(row_id) or entity
        return entity

    def update(self, entity: T, data: Mapping[str, Any]) -> T:
        """
        Update supplied fields of an entity.

        Only the keys present in ``data`` change, on the row and on the
        instance, which is returned.

        Raises:
            InvalidArgumentError: If ``data`` tries to change the id
            NotFoundError: If the row no longer exists
        """
        data = dict(data)
        translations = self._pop_translations(data)
        entity_id = entity.id  # type: ignore[attr-defined]
        if "id" in data and data["id"] != entity_id:
            raise InvalidArgumentError(f"Cannot change the id of {self.table_name} {entity_id}")
        data.pop("id", None)

        changes: dict[str, Any] = {}
        if data:
            validated = self._to_model({**entity.model_dump(), **data})
            changes = {key: getattr(validated, key) for key in data}

        found = self.store.update_with_translations(
            self.entity_spec, entity_id, changes, translations or {}
        )
        if found == 0:
            raise NotFoundError(self.table_name, entity_id)
        for key, value in changes.items():
            setattr(entity, key, value)

        if translations:
            refreshed = self.find(entity_id)
            if refreshed is None:
                raise NotFoundError(self.table_name, entity_id)
            setattr(entity, TRANSLATIONS_RELATION, getattr(refreshed, TRANSLATIONS_RELATION))

        log_with_context(
            logger,
            logging.INFO,
            f"Updated {self.table_name}",
            id=str(entity_id),
            fields=sorted(data),
            locales=sorted(translations or {}),
        )
        return entity

    def destroy(self, entity: T) -> bool:
        """
        Delete an entity.

        Returns:
            True if a row was deleted, False if it was already gone
        """
        entity_id = entity.id  # type: ignore[attr-defined]
        if entity_id is None:
            return False
        deleted = self.store.delete_ids(self.table_name, [entity_id]) > 0
        log_with_context(
            logger, logging.INFO, f"Destroyed {self.table_name}", id=str(entity_id), deleted=deleted
        )
        return deleted

    def delete_by_id(self, id: Any) -> int:
        """Delete the entity with the given id; returns rows deleted."""
        return self.store.delete_ids(self.table_name, [id])

    def delete_all(self, ids: Iterable[Any]) -> int:
        """
        Delete all entities with the given ids in one statement.

        Raises:
            InvalidArgumentError: If ``ids`` is empty
        """
        ids = list(ids)
        if not ids:
            raise InvalidArgumentError("delete_all requires at least one id")
        count = self.store.delete_ids(self.table_name, ids)
        log_with_context(
            logger, logging.INFO, f"Deleted {count} {self.table_name} rows", requested=len(ids)
        )
        return count

    def insert(self, records: Sequence[Mapping[str, Any]]) -> bool:
        """
        Insert several records in one batch.

        Records are not validated against the model and no ids are
        returned. Missing UUID ids and creation timestamps are filled in.

        Raises:
            InvalidArgumentError: If the records do not share one set of keys
        """
        if not records:
            return True
        keys = set(records[0])
        for record in records[1:]:
            if set(record) != keys:
                raise InvalidArgumentError("All records passed to insert must have the same keys")

        prepared = [self._fill_auto_fields(dict(record)) for record in records]
        count = self.store.insert_many(self.table_name, prepared)
        log_with_context(logger, logging.INFO, f"Inserted {count} {self.table_name} rows")
        return True

    def clear_cache(self) -> bool:
        """Hook for caching decorators; nothing is cached here."""
        return True


# =============================================================================
# Repository Factory
# =============================================================================


class RepositoryFactory:
    """
    Factory for creating repositories from entity specifications.
    """

    def __init__(
        self,
        store: Store,
        models: dict[str, type[BaseModel]] | None = None,
        settings: DataSettings | None = None,
    ):
        """
        Initialize the factory.

        Args:
            store: Store shared by all repositories
            models: Entity name to model class; missing models are generated
            settings: Settings passed to every repository
        """
        self.store = store
        self.models = dict(models or {})
        self.settings = settings
        self._repositories: dict[str, Repository[Any]] = {}

    @classmethod
    def for_sqlite(
        cls,
        entities: list[EntitySpec],
        db_path: str | Path | None = None,
        *,
        create_tables: bool = True,
        settings: DataSettings | None = None,
    ) -> RepositoryFactory:
        """
        Build a factory backed by a SQLite store.

        Args:
            entities: Entities the store serves
            db_path: SQLite database file (defaults to settings)
            create_tables: Create missing tables (translation tables included)
            settings: Settings for the database path and repositories
        """
        settings = settings or get_settings()
        db_manager = DatabaseManager(db_path if db_path is not None else settings.database_path)
        if create_tables:
            db_manager.create_all_tables(entities)
        return cls(SQLiteStore(db_manager, entities), settings=settings)

    def create_repository(self, entity: EntitySpec) -> Repository[Any]:
        """
        Create a repository for an entity.

        Args:
            entity: Entity specification

        Returns:
            Repository instance
        """
        model = self.models.get(entity.name)
        if model is None:
            model = generate_entity_model(entity)
            self.models[entity.name] = model

        repo: Repository[Any] = Repository(
            store=self.store,
            entity_spec=entity,
            model_class=model,
            settings=self.settings,
        )
        self._repositories[entity.name] = repo
        return repo

    def create_all_repositories(self, entities: list[EntitySpec]) -> dict[str, Repository[Any]]:
        """
        Create repositories for all entities.

        Args:
            entities: List of entity specifications

        Returns:
            Dictionary mapping entity names to repositories
        """
        for entity in entities:
            self.create_repository(entity)
        return self._repositories

    def get_repository(self, entity_name: str) -> Repository[Any] | None:
        """Get a repository by entity name."""
        return self._repositories.get(entity_name)
