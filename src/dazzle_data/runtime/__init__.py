"""
Dazzle Data Runtime

This module provides:
- Query composition (QueryBuilder, filters, ordering, pagination)
- Relation registry and batched eager loading
- Model generation (Pydantic models from EntitySpec)
- SQLite database manager and store
- Repository and repository factory

Example usage:
    >>> from dazzle_data.runtime import RepositoryFactory
    >>>
    >>> factory = RepositoryFactory.for_sqlite([article_spec, tag_spec], "app.db")
    >>> repos = factory.create_all_repositories([article_spec, tag_spec])
    >>> articles = repos["Article"].paginate(page_size=10)
"""

from dazzle_data.runtime.database import DatabaseManager
from dazzle_data.runtime.model_generator import (
    generate_all_entity_models,
    generate_entity_model,
)
from dazzle_data.runtime.query_builder import (
    FilterCondition,
    FilterOperator,
    QueryBuilder,
    RelationFilter,
    SortField,
)
from dazzle_data.runtime.relation_loader import (
    RelationInfo,
    RelationLoader,
    RelationRegistry,
)
from dazzle_data.runtime.repository import Page, Repository, RepositoryFactory
from dazzle_data.runtime.store import SQLiteStore, Store

__all__ = [
    # Database
    "DatabaseManager",
    # Models
    "generate_entity_model",
    "generate_all_entity_models",
    # Queries
    "FilterCondition",
    "FilterOperator",
    "QueryBuilder",
    "RelationFilter",
    "SortField",
    # Relations
    "RelationInfo",
    "RelationLoader",
    "RelationRegistry",
    # Repository
    "Page",
    "Repository",
    "RepositoryFactory",
    # Store
    "SQLiteStore",
    "Store",
]
