"""
PostgreSQL Adapters for Replica Reconciliation

Row sources, the row sink and catalog lookups backed by psycopg2:
- PostgresRowSource reads a whole table from one node
- PostgresRowSink upserts a kept row into both nodes
- PostgresCatalog discovers key columns and foreign-key edges

Identifiers are always composed with psycopg2.sql and values are always
passed as query parameters.
"""

import logging
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor

from src.merge.models import (
    DEFAULT_SCHEMA,
    ForeignKeyEdge,
    RowSnapshot,
    TableDescriptor,
)

logger = logging.getLogger(__name__)

PRIMARY_KEY_QUERY = """
    SELECT kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
     AND tc.table_name = kcu.table_name
    WHERE tc.constraint_type = 'PRIMARY KEY'
      AND tc.table_schema = %s
      AND tc.table_name = %s
    ORDER BY kcu.ordinal_position
"""

FOREIGN_KEY_QUERY = """
    SELECT DISTINCT
        cn.nspname AS child_schema,
        c.relname AS child_table,
        pn.nspname AS parent_schema,
        p.relname AS parent_table
    FROM pg_constraint con
    JOIN pg_class c ON c.oid = con.conrelid
    JOIN pg_namespace cn ON cn.oid = c.relnamespace
    JOIN pg_class p ON p.oid = con.confrelid
    JOIN pg_namespace pn ON pn.oid = p.relnamespace
    WHERE con.contype = 'f'
    ORDER BY 1, 2, 3, 4
"""


def connect_node(dsn: Optional[str] = None, **params: Any):
    """
    Open a connection to one node.

    Args:
        dsn: libpq connection string
        **params: Individual connection parameters (host, port, dbname, user, password)

    Returns:
        psycopg2 connection
    """
    conn = psycopg2.connect(dsn, **params) if dsn else psycopg2.connect(**params)
    logger.info(f"Connected to PostgreSQL node {conn.dsn}")
    return conn


def table_reference(table: TableDescriptor) -> sql.Composed:
    return sql.SQL("{}.{}").format(sql.Identifier(table.schema), sql.Identifier(table.name))


class PostgresRowSource:
    """Reads every row of a table from one node."""

    def __init__(self, conn, statement_timeout_ms: Optional[int] = None, node: str = ""):
        """
        Initialize the row source.

        Args:
            conn: psycopg2 connection to the node
            statement_timeout_ms: Per-query timeout enforced by the server
            node: Node label used in log messages
        """
        self.conn = conn
        self.statement_timeout_ms = statement_timeout_ms
        self.node = node
        logger.debug(f"Initialized PostgresRowSource for node {node or '?'}")

    def build_select(self, table: TableDescriptor) -> sql.Composed:
        query = sql.SQL("SELECT * FROM {}").format(table_reference(table))
        if table.primary_key_columns:
            query = query + sql.SQL(" ORDER BY {}").format(
                sql.SQL(", ").join(sql.Identifier(c) for c in table.primary_key_columns)
            )
        return query

    def fetch_rows(self, table: TableDescriptor) -> List[RowSnapshot]:
        """
        Fetch all rows of a table.

        The read runs in its own transaction, which is rolled back afterwards
        so no snapshot is held between tables.

        Args:
            table: Table to read

        Returns:
            Rows as ordered dicts keyed by column name
        """
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cursor:
                if self.statement_timeout_ms:
                    cursor.execute("SET LOCAL statement_timeout = %s", (int(self.statement_timeout_ms),))
                cursor.execute(self.build_select(table))
                rows = [dict(row) for row in cursor.fetchall()]
        finally:
            self.conn.rollback()

        logger.info(f"Fetched {len(rows)} rows from node {self.node or '?'} {table.identity}")
        return rows

    def cancel(self) -> None:
        """Cancel the query currently running on this source's connection."""
        logger.debug(f"Sending cancel request to node {self.node or '?'}")
        self.conn.cancel()


class PostgresRowSink:
    """
    Writes a kept row to both nodes.

    Each write is an INSERT ... ON CONFLICT DO UPDATE on the key columns, so
    applying the same row again leaves both nodes unchanged.
    """

    def __init__(self, node_a_conn, node_b_conn):
        """
        Initialize the row sink.

        Args:
            node_a_conn: psycopg2 connection to node A
            node_b_conn: psycopg2 connection to node B
        """
        self.connections: List[Tuple[str, Any]] = [("A", node_a_conn), ("B", node_b_conn)]
        logger.debug("Initialized PostgresRowSink")

    def build_upsert(self, table: TableDescriptor, row: RowSnapshot) -> Tuple[sql.Composed, List[Any]]:
        """
        Build the upsert statement for a row.

        Args:
            table: Target table; must have key columns
            row: Full row to write

        Returns:
            (statement, parameters)

        Raises:
            ValueError: If the table has no key columns or the row lacks one
        """
        key_columns = list(table.primary_key_columns)
        if not key_columns:
            raise ValueError(f"Cannot upsert into {table.identity} without primary key columns")

        missing = [c for c in key_columns if c not in row]
        if missing:
            raise ValueError(f"Row for {table.identity} is missing key columns {missing}")

        columns = list(row.keys())
        update_columns = [c for c in columns if c not in key_columns]

        statement = sql.SQL("INSERT INTO {} ({}) VALUES ({}) ON CONFLICT ({}) ").format(
            table_reference(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            sql.SQL(", ").join(sql.Placeholder() for _ in columns),
            sql.SQL(", ").join(sql.Identifier(c) for c in key_columns),
        )

        if update_columns:
            statement = statement + sql.SQL("DO UPDATE SET {}").format(
                sql.SQL(", ").join(
                    sql.SQL("{} = EXCLUDED.{}").format(sql.Identifier(c), sql.Identifier(c))
                    for c in update_columns
                )
            )
        else:
            statement = statement + sql.SQL("DO NOTHING")

        params = [_adapt_value(row[c]) for c in columns]
        return statement, params

    def apply_row(self, table: TableDescriptor, row: RowSnapshot) -> None:
        """
        Upsert a row into both nodes, committing each node separately.

        Raises:
            psycopg2.Error: If either node rejects the write; that node's
                transaction is rolled back
        """
        statement, params = self.build_upsert(table, row)

        for node, conn in self.connections:
            try:
                with conn.cursor() as cursor:
                    cursor.execute(statement, params)
                conn.commit()
            except psycopg2.Error as e:
                conn.rollback()
                logger.error(f"Upsert into node {node} {table.identity} failed: {e}")
                raise

        logger.debug(f"Applied row to {table.identity} on both nodes")


class PostgresCatalog:
    """Reads table metadata from one node's system catalog."""

    def __init__(self, conn):
        self.conn = conn

    def primary_key_columns(self, schema: str, table: str) -> Tuple[str, ...]:
        with self.conn.cursor() as cursor:
            cursor.execute(PRIMARY_KEY_QUERY, (schema, table))
            columns = tuple(row[0] for row in cursor.fetchall())
        self.conn.rollback()
        return columns

    def describe_tables(self, names: Iterable[str], default_schema: str = DEFAULT_SCHEMA) -> List[TableDescriptor]:
        """
        Build descriptors for qualified or bare table names.

        Args:
            names: "schema.table" or bare table names
            default_schema: Schema assumed for bare names

        Returns:
            Descriptors with key columns read from the catalog
        """
        tables = []
        for name in names:
            base = TableDescriptor.from_qualified_name(name.strip(), default_schema=default_schema)
            pk = self.primary_key_columns(base.schema, base.name)
            if not pk:
                logger.warning(f"Table {base.identity} has no primary key")
            tables.append(TableDescriptor(base.schema, base.name, pk))
        return tables

    def foreign_keys(self, tables: Optional[Sequence[TableDescriptor]] = None) -> List[ForeignKeyEdge]:
        """
        List foreign-key edges, optionally limited to children in a table set.

        Args:
            tables: If given, only edges whose child is one of these tables

        Returns:
            Edges in catalog order
        """
        with self.conn.cursor(cursor_factory=RealDictCursor) as cursor:
            cursor.execute(FOREIGN_KEY_QUERY)
            edges = [
                ForeignKeyEdge(
                    child_schema=row["child_schema"],
                    child_table=row["child_table"],
                    parent_schema=row["parent_schema"],
                    parent_table=row["parent_table"],
                )
                for row in cursor.fetchall()
            ]
        self.conn.rollback()

        if tables is not None:
            wanted = {t.identity for t in tables}
            edges = [e for e in edges if e.child_identity in wanted]

        logger.debug(f"Found {len(edges)} foreign-key edges")
        return edges


def _adapt_value(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return Json(value)
    return value
