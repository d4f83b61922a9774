"""
Query builder for attribute filtering, relation filters and sorting.

Provides SQL generation for equality predicates, relation-existence
filters, ordering, column projection and pagination. The builder only
produces SQL and parameters; executing it is the store's job.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from dazzle_data.errors import InvalidArgumentError

# Valid SQL identifier pattern (alphanumeric and underscore, not starting with digit)
_VALID_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

# Alias used for the correlated table inside EXISTS subqueries
_RELATION_ALIAS = "_rel"


def validate_sql_identifier(name: str, context: str = "identifier") -> str:
    """
    Validate that a string is a safe SQL identifier.

    Args:
        name: The identifier to validate
        context: Description of what's being validated (for error messages)

    Returns:
        The validated name

    Raises:
        InvalidArgumentError: If the name is empty or contains invalid characters
    """
    if not name or not isinstance(name, str):
        raise InvalidArgumentError(f"SQL {context} cannot be empty")
    if not _VALID_IDENTIFIER_PATTERN.match(name):
        raise InvalidArgumentError(
            f"Invalid SQL {context} '{name}': must contain only letters, digits, "
            "and underscores, and cannot start with a digit"
        )
    return name


def quote_identifier(name: str, context: str = "identifier") -> str:
    """Validate and double-quote an identifier."""
    return f'"{validate_sql_identifier(name, context)}"'


def normalize_direction(direction: str) -> str:
    """
    Normalize a sort direction to ``ASC`` or ``DESC``.

    Raises:
        InvalidArgumentError: If the direction is anything else
    """
    normalized = str(direction).strip().upper()
    if normalized not in ("ASC", "DESC"):
        raise InvalidArgumentError(f"Invalid sort direction '{direction}': use 'asc' or 'desc'")
    return normalized


def convert_value(value: Any) -> Any:
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
    elif isinstance(value, (list, tuple, set, frozenset)):
        return [convert_value(v) for v in value]
    else:
        return value


class FilterOperator(str, Enum):
    """Supported filter operators."""

    EQ = "eq"  # Equal (default)
    IN = "in"  # In list


@dataclass
class FilterCondition:
    """A single filter condition on a column of the queried table."""

    field: str
    value: Any
    operator: FilterOperator = FilterOperator.EQ

    def __post_init__(self) -> None:
        validate_sql_identifier(self.field, "field name")

    def to_sql(self, table_alias: str | None = None) -> tuple[str, list[Any]]:
        """
        Convert condition to SQL fragment and parameters.

        Args:
            table_alias: Optional table name or alias to qualify the column

        Returns:
            Tuple of (sql_fragment, parameters)
        """
        column = quote_identifier(self.field)
        field_ref = f"{quote_identifier(table_alias)}.{column}" if table_alias else column
        converted_value = convert_value(self.value)

        if self.operator == FilterOperator.IN:
            if not isinstance(converted_value, list):
                converted_value = [converted_value]
            if not converted_value:
                # IN () is not valid SQL; an empty set matches nothing
                return "1 = 0", []
            placeholders = ", ".join("?" * len(converted_value))
            return f"{field_ref} IN ({placeholders})", converted_value

        if converted_value is None:
            return f"{field_ref} IS NULL", []
        return f"{field_ref} = ?", [converted_value]


@dataclass
class RelationFilter:
    """
    Existence filter on a to-many relation.

    Matches parent rows that have at least one related row satisfying all
    conditions, e.g. articles with a translation in a given locale.
    """

    table: str
    foreign_key: str
    conditions: list[FilterCondition] = field(default_factory=list)
    owner_key: str = "id"

    def __post_init__(self) -> None:
        validate_sql_identifier(self.table, "table name")
        validate_sql_identifier(self.foreign_key, "foreign key")
        validate_sql_identifier(self.owner_key, "owner key")

    def to_sql(self, parent_table: str) -> tuple[str, list[Any]]:
        """Build an ``EXISTS (...)`` fragment correlated with ``parent_table``."""
        alias = quote_identifier(_RELATION_ALIAS)
        fragments = [
            f"{alias}.{quote_identifier(self.foreign_key)} = "
            f"{quote_identifier(parent_table)}.{quote_identifier(self.owner_key)}"
        ]
        params: list[Any] = []
        for condition in self.conditions:
            sql, condition_params = condition.to_sql(_RELATION_ALIAS)
            fragments.append(sql)
            params.extend(condition_params)

        where = " AND ".join(fragments)
        return (
            f"EXISTS (SELECT 1 FROM {quote_identifier(self.table)} AS {alias} WHERE {where})",
            params,
        )


@dataclass
class SortField:
    """A single sort field."""

    field: str
    descending: bool = False

    def __post_init__(self) -> None:
        validate_sql_identifier(self.field, "sort field")

    def to_sql(self, table_alias: str | None = None) -> str:
        """Convert to SQL ORDER BY fragment."""
        column = quote_identifier(self.field)
        field_ref = f"{quote_identifier(table_alias)}.{column}" if table_alias else column
        direction = "DESC" if self.descending else "ASC"
        return f"{field_ref} {direction}"


@dataclass
class QueryBuilder:
    """
    Builds SQL queries with filters, relation filters, sorting and pagination.

    Conditions are rendered in the order they were added and joined with
    AND; ORDER BY follows all predicates. Relation names in ``includes`` are
    not part of the SQL: the store loads them after the main query.

    Example:
        builder = QueryBuilder(table_name="Article")
        builder.add_include("translations")
        builder.add_filters({"status": "published", "author_id": 3})
        builder.add_sort("created_at", "desc")
        builder.set_pagination(page=1, page_size=15)

        sql, params = builder.build_select()
    """

    table_name: str
    conditions: list[FilterCondition] = field(default_factory=list)
    relation_filters: list[RelationFilter] = field(default_factory=list)
    sorts: list[SortField] = field(default_factory=list)
    includes: list[str] = field(default_factory=list)
    select_fields: list[str] = field(default_factory=list)
    limit: int | None = None
    offset: int = 0
    page: int | None = None
    page_size: int | None = None

    def __post_init__(self) -> None:
        """Validate table name on initialization."""
        validate_sql_identifier(self.table_name, "table name")

    # -------------------------------------------------------------------------
    # Composition
    # -------------------------------------------------------------------------

    def add_filter(self, key: str, value: Any) -> QueryBuilder:
        """Add an equality condition."""
        self.conditions.append(FilterCondition(field=key, value=value))
        return self

    def add_filters(self, filters: Mapping[str, Any]) -> QueryBuilder:
        """Add one equality condition per item, in insertion order."""
        for key, value in filters.items():
            self.add_filter(key, value)
        return self

    def add_in_filter(self, key: str, values: Iterable[Any]) -> QueryBuilder:
        """Add an ``IN (...)`` condition."""
        self.conditions.append(
            FilterCondition(field=key, value=list(values), operator=FilterOperator.IN)
        )
        return self

    def add_relation_filter(
        self,
        table: str,
        foreign_key: str,
        filters: Mapping[str, Any] | None = None,
    ) -> QueryBuilder:
        """Require at least one related row in ``table`` matching ``filters``."""
        conditions = [FilterCondition(field=k, value=v) for k, v in (filters or {}).items()]
        self.relation_filters.append(
            RelationFilter(table=table, foreign_key=foreign_key, conditions=conditions)
        )
        return self

    def add_include(self, relation: str) -> QueryBuilder:
        """Eager-load a relation with the results."""
        validate_sql_identifier(relation, "relation name")
        if relation not in self.includes:
            self.includes.append(relation)
        return self

    def add_includes(self, relations: Iterable[str]) -> QueryBuilder:
        """Eager-load several relations."""
        for relation in relations:
            self.add_include(relation)
        return self

    def add_sort(self, field_name: str, direction: str = "asc") -> QueryBuilder:
        """Add a sort field with an explicit direction."""
        descending = normalize_direction(direction) == "DESC"
        self.sorts.append(SortField(field=field_name, descending=descending))
        return self

    def set_columns(self, columns: Iterable[str] | None) -> QueryBuilder:
        """Restrict the selected columns; ``None`` selects all."""
        self.select_fields = []
        for column in columns or []:
            validate_sql_identifier(column, "column name")
            self.select_fields.append(column)
        return self

    def set_limit(self, limit: int) -> QueryBuilder:
        """Limit the number of returned rows."""
        if limit < 1:
            raise InvalidArgumentError(f"Limit must be at least 1, got {limit}")
        self.limit = limit
        return self

    def set_pagination(self, page: int, page_size: int) -> QueryBuilder:
        """Set pagination parameters."""
        if page_size < 1:
            raise InvalidArgumentError(f"Page size must be at least 1, got {page_size}")
        if page < 1:
            raise InvalidArgumentError(f"Page must be at least 1, got {page}")
        self.page = page
        self.page_size = page_size
        self.limit = page_size
        self.offset = (page - 1) * page_size
        return self

    # -------------------------------------------------------------------------
    # SQL generation
    # -------------------------------------------------------------------------

    def build_where_clause(self) -> tuple[str, list[Any]]:
        """
        Build the WHERE clause from conditions and relation filters.

        Returns:
            Tuple of (where_clause, parameters)
        """
        if not self.conditions and not self.relation_filters:
            return "", []

        fragments = []
        params: list[Any] = []

        for condition in self.conditions:
            sql, condition_params = condition.to_sql(self.table_name)
            fragments.append(sql)
            params.extend(condition_params)

        for relation_filter in self.relation_filters:
            sql, filter_params = relation_filter.to_sql(self.table_name)
            fragments.append(sql)
            params.extend(filter_params)

        return f"WHERE {' AND '.join(fragments)}", params

    def build_order_clause(self) -> str:
        """Build the ORDER BY clause."""
        if not self.sorts:
            return ""

        order_parts = [sort.to_sql(self.table_name) for sort in self.sorts]
        return f"ORDER BY {', '.join(order_parts)}"

    def build_limit_offset(self) -> tuple[str, list[int]]:
        """Build LIMIT/OFFSET clause."""
        if self.limit is None:
            return "", []
        if self.offset:
            return "LIMIT ? OFFSET ?", [self.limit, self.offset]
        return "LIMIT ?", [self.limit]

    def build_select(self, count_only: bool = False) -> tuple[str, list[Any]]:
        """
        Build complete SELECT query.

        Args:
            count_only: If True, build COUNT(*) query without ordering or limits

        Returns:
            Tuple of (sql, parameters)
        """
        table = quote_identifier(self.table_name)
        params: list[Any] = []

        if count_only:
            select = f"SELECT COUNT(*) FROM {table}"
        elif self.select_fields:
            fields = ", ".join(f"{table}.{quote_identifier(c)}" for c in self.select_fields)
            select = f"SELECT {fields} FROM {table}"
        else:
            select = f"SELECT {table}.* FROM {table}"

        query_parts = [select]

        where_clause, where_params = self.build_where_clause()
        if where_clause:
            query_parts.append(where_clause)
            params.extend(where_params)

        if not count_only:
            order_clause = self.build_order_clause()
            if order_clause:
                query_parts.append(order_clause)

            limit_clause, limit_params = self.build_limit_offset()
            if limit_clause:
                query_parts.append(limit_clause)
                params.extend(limit_params)

        return " ".join(query_parts), params

    def build_count(self) -> tuple[str, list[Any]]:
        """Build COUNT query."""
        return self.build_select(count_only=True)

    def build_delete(self) -> tuple[str, list[Any]]:
        """Build a DELETE for the rows matched by the conditions."""
        where_clause, params = self.build_where_clause()
        if not where_clause:
            raise InvalidArgumentError("Refusing to build a DELETE without conditions")
        return f"DELETE FROM {quote_identifier(self.table_name)} {where_clause}", params
