"""Shared pytest fixtures for dazzle-data tests."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from dazzle_data.config import DataSettings
from dazzle_data.runtime.database import DatabaseManager
from dazzle_data.runtime.repository import Repository, RepositoryFactory
from dazzle_data.runtime.store import SQLiteStore
from dazzle_data.specs.entity import (
    EntitySpec,
    FieldSpec,
    FieldType,
    ScalarType,
    TranslationSpec,
)

STR = FieldType(kind="scalar", scalar_type=ScalarType.STR)


def ts(day: int) -> datetime:
    """Deterministic creation timestamp: 2024-01-<day> UTC."""
    return datetime(2024, 1, day, tzinfo=timezone.utc)


# =============================================================================
# Entities
# =============================================================================


@pytest.fixture
def article_entity() -> EntitySpec:
    """Localizable entity with an integer id and translated title/slug."""
    return EntitySpec(
        name="Article",
        fields=[
            FieldSpec(
                name="id",
                type=FieldType(kind="scalar", scalar_type=ScalarType.INT),
                required=True,
            ),
            FieldSpec(name="status", type=STR, required=True, default="draft"),
            FieldSpec(name="author", type=STR),
        ],
        translations=TranslationSpec(
            fields=[
                FieldSpec(name="title", type=STR, required=True),
                FieldSpec(name="slug", type=STR),
            ]
        ),
    )


@pytest.fixture
def tag_entity() -> EntitySpec:
    """Plain entity with a UUID id and its own slug."""
    return EntitySpec(
        name="Tag",
        fields=[
            FieldSpec(name="name", type=STR, required=True),
            FieldSpec(name="slug", type=STR, unique=True),
        ],
    )


# =============================================================================
# Storage
# =============================================================================


@pytest.fixture
def settings(tmp_path: Path) -> DataSettings:
    """Settings pointing at temporary paths."""
    return DataSettings(database_path=tmp_path / "data.db", log_dir=tmp_path / "logs")


@pytest.fixture
def db_manager(settings: DataSettings) -> DatabaseManager:
    """Database manager on a temporary database."""
    return DatabaseManager(settings.database_path)


@pytest.fixture
def store(
    db_manager: DatabaseManager, article_entity: EntitySpec, tag_entity: EntitySpec
) -> SQLiteStore:
    """SQLite store with Article, ArticleTranslation and Tag tables created."""
    entities = [article_entity, tag_entity]
    db_manager.create_all_tables(entities)
    return SQLiteStore(db_manager, entities)


@pytest.fixture
def factory(store: SQLiteStore, settings: DataSettings) -> RepositoryFactory:
    """Repository factory sharing the temporary store."""
    return RepositoryFactory(store, settings=settings)


@pytest.fixture
def article_repo(factory: RepositoryFactory, article_entity: EntitySpec) -> Repository:
    """Repository for the localizable Article entity."""
    return factory.create_repository(article_entity)


@pytest.fixture
def tag_repo(factory: RepositoryFactory, tag_entity: EntitySpec) -> Repository:
    """Repository for the plain Tag entity."""
    return factory.create_repository(tag_entity)
