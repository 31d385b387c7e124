"""Tests for SQL validation and table-reference extraction."""

import pytest

from ql_shared.errors import InvalidSyntax
from ql_sql.sql_parser import extract_tables, is_query, validate_sql


class TestValidateSql:

    @pytest.mark.parametrize("sql", [
        "SELECT * FROM users WHERE (id = 1",
        "SELEC * FROM users",
        "   ",
        "",
        "SELECT 1; SELECT 2",
    ])
    def test_rejects_invalid_sql(self, sql):
        with pytest.raises(InvalidSyntax):
            validate_sql(sql)

    def test_accepts_select(self):
        statement = validate_sql("SELECT id, name FROM users WHERE active")
        assert is_query(statement)

    def test_accepts_trailing_semicolon(self):
        assert is_query(validate_sql("SELECT 1;"))

    def test_accepts_dml(self):
        statement = validate_sql("UPDATE orders SET status = 'closed' WHERE id = 7")
        assert not is_query(statement)

    def test_error_carries_parser_message(self):
        with pytest.raises(InvalidSyntax, match="Invalid SQL"):
            validate_sql("SELECT * FROM users WHERE (id = 1")


class TestExtractTables:

    def test_single_table(self):
        assert extract_tables("SELECT * FROM users") == ["users"]

    def test_three_way_join(self):
        sql = """
            SELECT o.id, c.name, p.title
            FROM orders o
            JOIN customers c ON c.id = o.customer_id
            LEFT JOIN products p ON p.id = o.product_id
            WHERE o.status = 'shipped'
        """
        assert extract_tables(sql) == ["orders", "customers", "products"]

    def test_union(self):
        sql = "SELECT id FROM active_users UNION SELECT id FROM archived_users"
        assert sorted(extract_tables(sql)) == ["active_users", "archived_users"]

    def test_written_order_across_nesting(self):
        sql = """
            SELECT * FROM (SELECT id FROM x UNION ALL SELECT id FROM y) t
            JOIN z ON z.id = t.id
        """
        assert extract_tables(sql) == ["x", "y", "z"]

    def test_subquery_in_from(self):
        sql = """
            SELECT t.customer_id, t.total
            FROM (SELECT customer_id, SUM(amount) AS total FROM payments GROUP BY customer_id) t
            WHERE t.total > 100
        """
        assert extract_tables(sql) == ["payments"]

    def test_cte_name_is_not_a_table(self):
        sql = """
            WITH recent AS (SELECT * FROM orders WHERE created_at > now() - interval '1 day')
            SELECT r.id, c.name FROM recent r JOIN customers c ON c.id = r.customer_id
        """
        assert sorted(extract_tables(sql)) == ["customers", "orders"]

    def test_schema_qualified_and_deduplicated(self):
        sql = """
            SELECT a.id FROM sales.orders a
            JOIN sales.orders b ON a.parent_id = b.id
            JOIN public.regions r ON r.id = a.region_id
        """
        assert extract_tables(sql) == ["sales.orders", "public.regions"]

    def test_intersect_and_except(self):
        sql = """
            SELECT email FROM subscribers
            INTERSECT
            SELECT email FROM customers
            EXCEPT
            SELECT email FROM unsubscribed
        """
        assert sorted(extract_tables(sql)) == ["customers", "subscribers", "unsubscribed"]

    def test_case_preserved(self):
        assert extract_tables('SELECT * FROM "UserEvents"') == ["UserEvents"]

    def test_non_query_gives_empty_list(self):
        assert extract_tables("DELETE FROM users WHERE id = 1") == []

    def test_unparsable_gives_empty_list(self):
        assert extract_tables("SELEC * FROM users") == []
