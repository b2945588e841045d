"""
Row Conflict Detector for Replica Reconciliation

Pairs the rows of one table fetched from node A and node B by primary key
and classifies every key as a match, a conflict, or present on one side only.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from src.merge.comparer import RowComparer
from src.merge.errors import MissingPrimaryKeyValue
from src.merge.models import ConflictDetail, RowKey, RowSnapshot, TableDescriptor

logger = logging.getLogger(__name__)


@dataclass
class DiffResult:
    """Classification of one table's rows across both nodes."""

    conflicts: List[ConflictDetail] = field(default_factory=list)
    only_in_a: List[RowSnapshot] = field(default_factory=list)
    only_in_b: List[RowSnapshot] = field(default_factory=list)
    matches: int = 0

    @property
    def rows_compared(self) -> int:
        """Keys present on both nodes."""
        return self.matches + len(self.conflicts)


class ConflictDetector:
    """
    Detects row-level conflicts between two snapshots of a table.

    Identifies:
    - Conflicts (same key on both nodes, different values)
    - Rows only on node A
    - Rows only on node B

    One-sided rows are surfaced for the operator; they are never resolved.
    """

    def __init__(
        self,
        comparer: Optional[RowComparer] = None,
        ignore_columns: Optional[Iterable[str]] = None
    ):
        """
        Initialize the conflict detector.

        Args:
            comparer: Row comparer to use (default RowComparer())
            ignore_columns: Columns excluded from value comparison
        """
        self.comparer = comparer or RowComparer()
        self.ignore_columns = list(ignore_columns or [])
        logger.debug("Initialized ConflictDetector")

    def diff(
        self,
        table: TableDescriptor,
        node_a_rows: List[RowSnapshot],
        node_b_rows: List[RowSnapshot]
    ) -> DiffResult:
        """
        Classify the rows of a table fetched from both nodes.

        Args:
            table: Table being reconciled
            node_a_rows: Rows fetched from node A, any order
            node_b_rows: Rows fetched from node B, any order

        Returns:
            DiffResult with conflicts and one-sided rows ordered by key

        Raises:
            MissingPrimaryKeyValue: If any row lacks a key column value
        """
        index_a = self.build_key_index(table, node_a_rows, node="A")
        index_b = self.build_key_index(table, node_b_rows, node="B")

        result = DiffResult()
        key_columns = list(table.primary_key_columns)
        ignore = set(self.ignore_columns) | set(key_columns)

        for key in _sorted_keys(set(index_a) & set(index_b)):
            row_a = index_a[key]
            row_b = index_b[key]

            differing = self.comparer.differing_columns(row_a, row_b, ignore_columns=ignore)
            if not differing:
                result.matches += 1
                continue

            result.conflicts.append(ConflictDetail(
                pk_value={column: row_a[column] for column in key_columns},
                node_a_value=row_a,
                node_b_value=row_b,
                differing_columns=differing
            ))

        result.only_in_a = [index_a[key] for key in _sorted_keys(set(index_a) - set(index_b))]
        result.only_in_b = [index_b[key] for key in _sorted_keys(set(index_b) - set(index_a))]

        logger.info(
            f"{table.identity}: {result.rows_compared} compared, "
            f"{result.matches} matching, {len(result.conflicts)} conflicting, "
            f"{len(result.only_in_a)} only on A, {len(result.only_in_b)} only on B"
        )

        return result

    def build_key_index(
        self,
        table: TableDescriptor,
        rows: List[RowSnapshot],
        node: Optional[str] = None
    ) -> Dict[RowKey, RowSnapshot]:
        """
        Build index for fast key lookups.

        Args:
            table: Table whose key columns identify rows
            rows: Rows to index
            node: Node label used in errors and log messages

        Returns:
            Dictionary mapping row key → row

        Raises:
            MissingPrimaryKeyValue: If a key column is missing or NULL in any row
        """
        if not table.primary_key_columns:
            raise ValueError(f"Table {table.identity} has no primary key columns")

        index: Dict[RowKey, RowSnapshot] = {}
        duplicates = 0

        for i, row in enumerate(rows):
            key = self.extract_key(table, row, row_index=i, node=node)
            if key in index:
                duplicates += 1
            index[key] = row

        if duplicates:
            logger.warning(
                f"{table.identity}: {duplicates} duplicate keys on node {node}; "
                f"the last row for each key was kept"
            )

        return index

    def extract_key(
        self,
        table: TableDescriptor,
        row: RowSnapshot,
        row_index: int = 0,
        node: Optional[str] = None
    ) -> RowKey:
        """
        Extract the key tuple of a row.

        Raises:
            MissingPrimaryKeyValue: If a key column is missing or NULL
        """
        parts = []
        for column in table.primary_key_columns:
            value = row.get(column)
            if value is None:
                raise MissingPrimaryKeyValue(table.identity, column, row_index, node)
            parts.append(_hashable(self.comparer.normalize_value(value)))
        return tuple(parts)


def _hashable(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_hashable(v) for v in value)
    if isinstance(value, dict):
        return tuple(sorted((k, _hashable(v)) for k, v in value.items()))
    return value


def _sorted_keys(keys: Iterable[RowKey]) -> List[RowKey]:
    keys = list(keys)
    try:
        return sorted(keys)
    except TypeError:
        # Mixed value types within a key column
        return sorted(keys, key=lambda key: tuple(str(part) for part in key))
