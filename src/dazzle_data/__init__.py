"""
Dazzle Data - capability-aware repository layer

Uniform data access for Dazzle entities on top of a relational store.

This package provides:
- EntitySpec: Entity metadata (fields, relations, localization capability)
- Repository: find/list/paginate/create/update/delete and attribute queries
- SQLiteStore: Store implementation with batched eager relation loading
"""

__version__ = "0.1.0"

from dazzle_data.errors import (
    ConstraintViolationError,
    InvalidArgumentError,
    NotFoundError,
    RepositoryError,
    StoreError,
)
from dazzle_data.runtime.repository import Page, Repository, RepositoryFactory
from dazzle_data.runtime.store import SQLiteStore, Store
from dazzle_data.specs.entity import EntitySpec, FieldSpec, TranslationSpec

__all__ = [
    "ConstraintViolationError",
    "EntitySpec",
    "FieldSpec",
    "InvalidArgumentError",
    "NotFoundError",
    "Page",
    "Repository",
    "RepositoryError",
    "RepositoryFactory",
    "SQLiteStore",
    "Store",
    "StoreError",
    "TranslationSpec",
]
