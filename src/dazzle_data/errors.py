"""
Error taxonomy for the repository layer.

Lookups surface absence as ``None``; these exceptions cover argument
errors caught before the store is touched and failures raised by the
store itself.
"""

from __future__ import annotations


class RepositoryError(Exception):
    """Base class for all repository-layer errors."""


class InvalidArgumentError(RepositoryError, ValueError):
    """Raised when an operation is called with arguments it cannot use."""


class NotFoundError(RepositoryError, LookupError):
    """Raised when a row expected to exist is gone."""

    def __init__(self, entity: str, id: object):
        self.entity = entity
        self.id = id
        super().__init__(f"{entity} with id {id!r} not found")


class StoreError(RepositoryError):
    """Raised when the underlying store fails (connectivity, bad SQL, ...)."""


class ConstraintViolationError(StoreError):
    """Raised when a database constraint (unique, FK, not null) is violated."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        constraint_type: str = "integrity",
    ):
        self.field = field
        self.constraint_type = constraint_type  # "unique" | "foreign_key" | "not_null"
        super().__init__(message)
