"""
Error Taxonomy for Replica Reconciliation

Every failure the merge engine can raise derives from MergeError. Only
CyclicDependency aborts a whole run; the orchestrator contains the others at
table or row level.
"""

from typing import List, Optional


class MergeError(Exception):
    """Base class for reconciliation engine errors."""
    pass


class UnparseableTimestamp(MergeError, ValueError):
    """Raised when a value cannot be normalized to a UTC instant."""

    def __init__(self, value):
        self.value = value
        super().__init__(
            f"Could not parse timestamp from {type(value).__name__}: {value!r}"
        )


class CyclicDependency(MergeError):
    """
    Raised when the foreign-key graph of the merge set contains a cycle.

    Attributes:
        remaining_tables: Identities (schema.name) of every table that could
            not be ordered, sorted lexicographically
    """

    def __init__(self, remaining_tables: List[str]):
        self.remaining_tables = sorted(remaining_tables)
        super().__init__(
            f"Circular foreign key dependency among {len(self.remaining_tables)} "
            f"tables: {', '.join(self.remaining_tables)}"
        )


class MissingPrimaryKeyValue(MergeError):
    """Raised when a row lacks a value for one of its table's key columns."""

    def __init__(
        self,
        table: str,
        column: str,
        row_index: int,
        node: Optional[str] = None
    ):
        self.table = table
        self.column = column
        self.row_index = row_index
        self.node = node
        where = f" on node {node}" if node else ""
        super().__init__(
            f"Row {row_index} of {table}{where} has no value for "
            f"primary key column '{column}'"
        )


class RowFetchError(MergeError):
    """Raised when a row source fails to return a table's rows."""

    def __init__(self, table: str, node: str, cause: BaseException):
        self.table = table
        self.node = node
        self.cause = cause
        super().__init__(f"Fetching {table} from node {node} failed: {cause}")


class FetchTimeout(MergeError):
    """Raised when the two-sided fetch for a table exceeds its deadline."""

    def __init__(self, table: str, timeout_seconds: float):
        self.table = table
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Fetching {table} did not complete within {timeout_seconds}s"
        )


class FetchCancelled(MergeError):
    """Raised when the caller cancels a run while a table is being fetched."""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Fetching {table} was cancelled")
