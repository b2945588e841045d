"""
Row Comparer for Replica Reconciliation

Column-level comparison of two snapshots of the same logical row taken from
node A and node B. Handles type normalization, NULL values and the usual
driver edge cases (UUID objects vs strings, Decimal scale, naive datetimes).
"""

import logging
from typing import Dict, Any, List, Optional, Iterable
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

logger = logging.getLogger(__name__)


class RowComparer:
    """
    Compares rows from two nodes.

    A column absent from one snapshot is treated as NULL, so a value on one
    side and an absent column on the other is a difference while NULL and
    absent are equal.
    """

    def __init__(self, float_tolerance: float = 0.0):
        """
        Initialize the row comparer.

        Args:
            float_tolerance: Maximum absolute difference for two floats to be
                considered equal (0.0 means exact)
        """
        self.float_tolerance = float_tolerance
        logger.debug("Initialized RowComparer")

    def compare_rows(
        self,
        node_a_row: Dict[str, Any],
        node_b_row: Dict[str, Any],
        ignore_columns: Optional[Iterable[str]] = None
    ) -> bool:
        """
        Compare two rows for equality.

        Args:
            node_a_row: Row snapshot from node A
            node_b_row: Row snapshot from node B
            ignore_columns: Column names to leave out of the comparison

        Returns:
            True if every compared column is equal
        """
        return not self.differing_columns(node_a_row, node_b_row, ignore_columns)

    def differing_columns(
        self,
        node_a_row: Dict[str, Any],
        node_b_row: Dict[str, Any],
        ignore_columns: Optional[Iterable[str]] = None
    ) -> List[str]:
        """
        List the columns whose values differ between the two rows.

        Only the compared columns are normalized; ignored columns are never
        touched.

        Args:
            node_a_row: Row snapshot from node A
            node_b_row: Row snapshot from node B
            ignore_columns: Column names to leave out of the comparison

        Returns:
            Sorted list of differing column names
        """
        columns = set(node_a_row) | set(node_b_row)
        if ignore_columns:
            columns -= set(ignore_columns)

        differing = []
        for column in columns:
            a_value = self.normalize_value(node_a_row.get(column))
            b_value = self.normalize_value(node_b_row.get(column))

            if not self._values_equal(a_value, b_value):
                differing.append(column)
                logger.debug(f"Column {column} mismatch: node A={a_value!r}, node B={b_value!r}")

        return sorted(differing)

    def normalize_value(self, value: Any) -> Any:
        if value is None:
            return None

        if isinstance(value, UUID):
            return str(value)

        if isinstance(value, Decimal):
            return value.normalize()

        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value

        if isinstance(value, (list, tuple)):
            return [self.normalize_value(item) for item in value]

        if isinstance(value, dict):
            return {k: self.normalize_value(v) for k, v in value.items()}

        if isinstance(value, memoryview):
            return value.tobytes()

        return value

    def _values_equal(self, value1: Any, value2: Any) -> bool:
        """
        Compare two normalized values for equality.

        Args:
            value1: First value
            value2: Second value

        Returns:
            True if values are equal
        """
        if value1 is None and value2 is None:
            return True
        if value1 is None or value2 is None:
            return False

        # bool is an int subclass; True must not equal 1 here
        if isinstance(value1, bool) or isinstance(value2, bool):
            return type(value1) is type(value2) and value1 == value2

        if isinstance(value1, float) and isinstance(value2, float):
            return abs(value1 - value2) <= self.float_tolerance

        if isinstance(value1, list) and isinstance(value2, list):
            if len(value1) != len(value2):
                return False
            return all(self._values_equal(v1, v2) for v1, v2 in zip(value1, value2))

        if isinstance(value1, dict) and isinstance(value2, dict):
            if set(value1.keys()) != set(value2.keys()):
                return False
            return all(
                self._values_equal(value1[k], value2[k])
                for k in value1.keys()
            )

        return value1 == value2
