"""
Tests for query builder.

Tests predicate composition, relation filters, ordering, projection and
pagination SQL.
"""

from uuid import UUID

import pytest

from dazzle_data.errors import InvalidArgumentError
from dazzle_data.runtime.query_builder import (
    FilterCondition,
    FilterOperator,
    QueryBuilder,
    RelationFilter,
    SortField,
    normalize_direction,
    validate_sql_identifier,
)

# =============================================================================
# Identifier Tests
# =============================================================================


class TestIdentifiers:
    """Tests for identifier validation."""

    @pytest.mark.parametrize("name", ["status", "_private", "created_at", "Article2"])
    def test_valid_identifiers(self, name):
        """Plain identifiers pass unchanged."""
        assert validate_sql_identifier(name) == name

    @pytest.mark.parametrize("name", ["", "1st", "name; DROP TABLE x", "a-b", 'x"y', "a.b"])
    def test_invalid_identifiers(self, name):
        """Anything that could break out of a quoted identifier is rejected."""
        with pytest.raises(InvalidArgumentError):
            validate_sql_identifier(name)

    def test_builder_rejects_bad_table(self):
        """Table names are validated on construction."""
        with pytest.raises(InvalidArgumentError):
            QueryBuilder(table_name="Article; --")

    def test_filter_rejects_bad_field(self):
        """Filter keys are validated before any SQL is built."""
        with pytest.raises(InvalidArgumentError):
            QueryBuilder(table_name="Article").add_filter("status OR 1=1", "x")


# =============================================================================
# FilterCondition Tests
# =============================================================================


class TestFilterCondition:
    """Tests for FilterCondition SQL generation."""

    def test_equality(self):
        """Test equality predicate qualified by table."""
        sql, params = FilterCondition("status", "draft").to_sql("Article")

        assert sql == '"Article"."status" = ?'
        assert params == ["draft"]

    def test_none_is_null(self):
        """None compiles to IS NULL without a parameter."""
        sql, params = FilterCondition("author", None).to_sql()

        assert sql == '"author" IS NULL'
        assert params == []

    def test_uuid_value_converted(self):
        """UUID values are bound as strings."""
        uid = UUID("12345678-1234-5678-1234-567812345678")
        _, params = FilterCondition("id", uid).to_sql()

        assert params == ["12345678-1234-5678-1234-567812345678"]

    def test_in_operator(self):
        """Test IN predicate."""
        cond = FilterCondition("id", [1, 2, 3], FilterOperator.IN)
        sql, params = cond.to_sql("Tag")

        assert sql == '"Tag"."id" IN (?, ?, ?)'
        assert params == [1, 2, 3]

    def test_empty_in_matches_nothing(self):
        """An empty IN set never matches."""
        sql, params = FilterCondition("id", [], FilterOperator.IN).to_sql()

        assert sql == "1 = 0"
        assert params == []


# =============================================================================
# RelationFilter Tests
# =============================================================================


class TestRelationFilter:
    """Tests for relation-existence filters."""

    def test_exists_subquery(self):
        """Test EXISTS fragment correlated with the parent table."""
        rel = RelationFilter(
            table="ArticleTranslation",
            foreign_key="article_id",
            conditions=[FilterCondition("locale", "fr")],
        )
        sql, params = rel.to_sql("Article")

        assert sql == (
            'EXISTS (SELECT 1 FROM "ArticleTranslation" AS "_rel" '
            'WHERE "_rel"."article_id" = "Article"."id" AND "_rel"."locale" = ?)'
        )
        assert params == ["fr"]

    def test_without_conditions(self):
        """Without conditions any related row satisfies the filter."""
        sql, params = RelationFilter("ArticleTranslation", "article_id").to_sql("Article")

        assert sql.endswith('WHERE "_rel"."article_id" = "Article"."id")')
        assert params == []


# =============================================================================
# SortField Tests
# =============================================================================


class TestSortField:
    """Tests for SortField SQL and directions."""

    def test_ascending(self):
        """Ascending is the default."""
        assert SortField("name").to_sql() == '"name" ASC'

    def test_descending_qualified(self):
        """Descending sort qualified by table."""
        sort = SortField("created_at", descending=True)

        assert sort.to_sql("Article") == '"Article"."created_at" DESC'

    def test_rejects_bad_field(self):
        with pytest.raises(InvalidArgumentError):
            SortField("created_at DESC; --")

    @pytest.mark.parametrize("direction,expected", [("asc", "ASC"), ("DESC", "DESC"), (" Desc ", "DESC")])
    def test_normalize_direction(self, direction, expected):
        """Directions are case-insensitive."""
        assert normalize_direction(direction) == expected

    def test_invalid_direction(self):
        """Unknown directions are rejected."""
        with pytest.raises(InvalidArgumentError):
            normalize_direction("sideways")


# =============================================================================
# QueryBuilder Tests
# =============================================================================


class TestQueryBuilder:
    """Tests for QueryBuilder."""

    def test_plain_select(self):
        """Test select without conditions."""
        sql, params = QueryBuilder(table_name="Tag").build_select()

        assert sql == 'SELECT "Tag".* FROM "Tag"'
        assert params == []

    def test_filters_keep_insertion_order(self):
        """Predicates appear in insertion order joined with AND."""
        builder = QueryBuilder(table_name="Article")
        builder.add_filters({"status": "draft", "author": "ann"})
        sql, params = builder.build_select()

        assert sql == (
            'SELECT "Article".* FROM "Article" '
            'WHERE "Article"."status" = ? AND "Article"."author" = ?'
        )
        assert params == ["draft", "ann"]

    def test_empty_filters_match_everything(self):
        """An empty attribute map adds no WHERE clause."""
        builder = QueryBuilder(table_name="Article").add_filters({})

        assert builder.build_where_clause() == ("", [])

    def test_order_after_predicates(self):
        """ORDER BY follows all predicates."""
        builder = QueryBuilder(table_name="Article")
        builder.add_sort("created_at", "desc")
        builder.add_filter("status", "draft")
        sql, _ = builder.build_select()

        assert sql.index("WHERE") < sql.index("ORDER BY")
        assert sql.endswith('ORDER BY "Article"."created_at" DESC')

    def test_relation_filter_combined_with_conditions(self):
        """Relation filters follow plain conditions."""
        builder = QueryBuilder(table_name="Article")
        builder.add_filter("status", "published")
        builder.add_relation_filter("ArticleTranslation", "article_id", {"locale": "fr"})
        sql, params = builder.build_select()

        assert '"Article"."status" = ? AND EXISTS (' in sql
        assert params == ["published", "fr"]

    def test_projection(self):
        """Selected columns are qualified by table."""
        builder = QueryBuilder(table_name="Tag").set_columns(["id", "name"])
        sql, _ = builder.build_select()

        assert sql == 'SELECT "Tag"."id", "Tag"."name" FROM "Tag"'

    def test_projection_reset(self):
        """None restores the full row."""
        builder = QueryBuilder(table_name="Tag").set_columns(["id"]).set_columns(None)

        assert builder.select_fields == []

    def test_pagination(self):
        """Test pagination limit and offset."""
        builder = QueryBuilder(table_name="Article").set_pagination(page=3, page_size=10)
        sql, params = builder.build_select()

        assert sql.endswith("LIMIT ? OFFSET ?")
        assert params == [10, 20]

    def test_first_page_has_no_offset(self):
        """Page one only needs a LIMIT."""
        sql, params = QueryBuilder(table_name="Article").set_pagination(1, 15).build_select()

        assert sql.endswith("LIMIT ?")
        assert params == [15]

    @pytest.mark.parametrize("page,page_size", [(1, 0), (0, 10), (-1, 10), (1, -5)])
    def test_invalid_pagination(self, page, page_size):
        """Pages and page sizes start at one."""
        with pytest.raises(InvalidArgumentError):
            QueryBuilder(table_name="Article").set_pagination(page, page_size)

    def test_count_ignores_order_and_limit(self):
        """COUNT queries keep the predicates only."""
        builder = QueryBuilder(table_name="Article")
        builder.add_filter("status", "draft").add_sort("created_at", "desc").set_limit(5)
        sql, params = builder.build_count()

        assert sql == 'SELECT COUNT(*) FROM "Article" WHERE "Article"."status" = ?'
        assert params == ["draft"]

    def test_includes_deduplicated(self):
        """A relation is only scheduled once."""
        builder = QueryBuilder(table_name="Article")
        builder.add_include("translations").add_includes(["translations", "author"])

        assert builder.includes == ["translations", "author"]

    def test_includes_not_in_sql(self):
        """Relations are loaded separately from the main query."""
        sql, _ = QueryBuilder(table_name="Article").add_include("translations").build_select()

        assert "translations" not in sql

    def test_delete(self):
        """Test bulk delete by ids."""
        sql, params = QueryBuilder(table_name="Tag").add_in_filter("id", ["a", "b"]).build_delete()

        assert sql == 'DELETE FROM "Tag" WHERE "Tag"."id" IN (?, ?)'
        assert params == ["a", "b"]

    def test_delete_requires_conditions(self):
        """An unconditional DELETE is never built."""
        with pytest.raises(InvalidArgumentError):
            QueryBuilder(table_name="Tag").build_delete()
