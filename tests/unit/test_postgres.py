"""
Unit tests for the PostgreSQL adapters.

Connections and cursors are mocked; statements are checked by structure and
parameters rather than by rendered SQL text.
"""

import pytest
from unittest.mock import MagicMock, patch

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor

from src.merge.models import TableDescriptor
from src.merge.postgres import (
    PostgresCatalog,
    PostgresRowSink,
    PostgresRowSource,
    connect_node,
)


def mock_connection(rows=None):
    """Create a mock psycopg2 connection whose cursor returns rows."""
    conn = MagicMock()
    cursor = MagicMock()
    cursor.fetchall.return_value = rows or []
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn, cursor


def identifiers(composable):
    """Collect identifier strings from a composed statement."""
    found = []
    if isinstance(composable, sql.Identifier):
        found.extend(composable.strings)
    elif isinstance(composable, sql.Composed):
        for part in composable.seq:
            found.extend(identifiers(part))
    return found


class TestPostgresRowSource:
    """Test reading rows from one node."""

    def test_fetch_rows_returns_dicts(self, users_table):
        conn, cursor = mock_connection([{"id": 1, "email": "a"}, {"id": 2, "email": "b"}])
        source = PostgresRowSource(conn, node="A")

        rows = source.fetch_rows(users_table)

        assert rows == [{"id": 1, "email": "a"}, {"id": 2, "email": "b"}]
        conn.cursor.assert_called_once_with(cursor_factory=RealDictCursor)
        conn.rollback.assert_called_once()

    def test_select_quotes_identifiers_and_orders_by_key(self, order_items_table):
        source = PostgresRowSource(MagicMock())

        query = source.build_select(order_items_table)

        assert identifiers(query) == ["public", "order_items", "order_id", "line_no"]

    def test_select_without_key_has_no_order(self):
        query = PostgresRowSource(MagicMock()).build_select(TableDescriptor("public", "logs"))

        assert identifiers(query) == ["public", "logs"]

    def test_statement_timeout(self, users_table):
        conn, cursor = mock_connection()
        source = PostgresRowSource(conn, statement_timeout_ms=5000)

        source.fetch_rows(users_table)

        first_call = cursor.execute.call_args_list[0]
        assert first_call[0] == ("SET LOCAL statement_timeout = %s", (5000,))
        assert cursor.execute.call_count == 2

    def test_rollback_even_on_error(self, users_table):
        conn, cursor = mock_connection()
        cursor.execute.side_effect = psycopg2.OperationalError("connection lost")
        source = PostgresRowSource(conn)

        with pytest.raises(psycopg2.OperationalError):
            source.fetch_rows(users_table)

        conn.rollback.assert_called_once()

    def test_cancel_interrupts_running_query(self):
        conn, _ = mock_connection()

        PostgresRowSource(conn, node="A").cancel()

        conn.cancel.assert_called_once_with()


class TestPostgresRowSink:
    """Test writing kept rows to both nodes."""

    def test_upsert_written_to_both_nodes(self, users_table):
        conn_a, cursor_a = mock_connection()
        conn_b, cursor_b = mock_connection()
        sink = PostgresRowSink(conn_a, conn_b)

        sink.apply_row(users_table, {"id": 7, "email": "x@example.com"})

        for conn, cursor in ((conn_a, cursor_a), (conn_b, cursor_b)):
            statement, params = cursor.execute.call_args[0]
            assert isinstance(statement, sql.Composed)
            assert params == [7, "x@example.com"]
            conn.commit.assert_called_once()

    def test_upsert_structure(self, order_items_table):
        sink = PostgresRowSink(MagicMock(), MagicMock())

        statement, params = sink.build_upsert(
            order_items_table, {"order_id": 1, "line_no": 2, "qty": 5}
        )

        # table, insert columns, conflict target, then SET col = EXCLUDED.col
        assert identifiers(statement) == [
            "public", "order_items",
            "order_id", "line_no", "qty",
            "order_id", "line_no",
            "qty", "qty",
        ]
        assert params == [1, 2, 5]

    def test_key_only_row_does_nothing_on_conflict(self):
        table = TableDescriptor("public", "tags", ("name",))
        statement, _ = PostgresRowSink(MagicMock(), MagicMock()).build_upsert(table, {"name": "x"})

        assert any(
            isinstance(part, sql.SQL) and part.string == "DO NOTHING"
            for part in statement.seq
        )

    def test_json_values_are_wrapped(self, users_table):
        _, params = PostgresRowSink(MagicMock(), MagicMock()).build_upsert(
            users_table, {"id": 1, "prefs": {"theme": "dark"}, "tags": ["a"]}
        )

        assert params[0] == 1
        assert isinstance(params[1], Json)
        assert isinstance(params[2], Json)

    def test_requires_key_columns(self):
        with pytest.raises(ValueError, match="without primary key"):
            PostgresRowSink(MagicMock(), MagicMock()).build_upsert(TableDescriptor("public", "logs"), {"a": 1})

    def test_row_must_contain_key(self, users_table):
        with pytest.raises(ValueError, match="missing key columns"):
            PostgresRowSink(MagicMock(), MagicMock()).build_upsert(users_table, {"email": "x"})

    def test_failure_rolls_back_and_raises(self, users_table):
        conn_a, _ = mock_connection()
        conn_b, cursor_b = mock_connection()
        cursor_b.execute.side_effect = psycopg2.IntegrityError("fk violation")
        sink = PostgresRowSink(conn_a, conn_b)

        with pytest.raises(psycopg2.IntegrityError):
            sink.apply_row(users_table, {"id": 1})

        conn_a.commit.assert_called_once()
        conn_b.rollback.assert_called_once()
        conn_b.commit.assert_not_called()


class TestPostgresCatalog:
    """Test catalog lookups."""

    def test_primary_key_columns(self):
        conn, cursor = mock_connection([("order_id",), ("line_no",)])

        columns = PostgresCatalog(conn).primary_key_columns("public", "order_items")

        assert columns == ("order_id", "line_no")
        assert cursor.execute.call_args[0][1] == ("public", "order_items")

    def test_describe_tables_defaults_schema(self):
        catalog = PostgresCatalog(MagicMock())
        with patch.object(catalog, "primary_key_columns", return_value=("id",)) as pk:
            tables = catalog.describe_tables(["users", "sales.orders"])

        assert [t.identity for t in tables] == ["public.users", "sales.orders"]
        assert tables[0].primary_key_columns == ("id",)
        pk.assert_any_call("public", "users")

    def test_foreign_keys_filtered_to_children(self, users_table, orders_table):
        conn, _ = mock_connection([
            {"child_schema": "public", "child_table": "orders", "parent_schema": "public", "parent_table": "users"},
            {"child_schema": "public", "child_table": "audit", "parent_schema": "public", "parent_table": "users"},
        ])

        edges = PostgresCatalog(conn).foreign_keys([users_table, orders_table])

        assert [(e.child_identity, e.parent_identity) for e in edges] == [
            ("public.orders", "public.users")
        ]


@patch('src.merge.postgres.psycopg2.connect')
def test_connect_node(mock_connect):
    connect_node("host=node-a dbname=app")

    mock_connect.assert_called_once_with("host=node-a dbname=app")
