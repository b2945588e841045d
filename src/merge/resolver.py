"""
Conflict Resolver for Replica Reconciliation

Decides which node's row is authoritative for each conflict. The decision is
a pure function of the conflict, so resolving the same conflict again always
yields the same outcome.

The last-modified strategy:
- looks up the first present candidate column on each side
  (updated_at, modified_at, last_modified, timestamp by default)
- the side with the strictly later instant wins; equal instants keep node A
- a side with a parseable timestamp beats a side without one
- with no usable timestamp on either side node A is kept
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from src.merge.models import (
    ConflictDetail,
    ConflictStrategy,
    Resolution,
    ResolutionOutcome,
    RowSnapshot,
)
from src.merge.timestamps import try_parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TIMESTAMP_COLUMNS: Tuple[str, ...] = (
    "updated_at",
    "modified_at",
    "last_modified",
    "timestamp",
)


class ConflictResolver:
    """
    Resolves conflicts by keeping one node's entire row.

    Rows are never blended field by field: the kept value is always a row
    one of the nodes actually held.
    """

    def __init__(
        self,
        strategy: ConflictStrategy = ConflictStrategy.LAST_MODIFIED,
        timestamp_columns: Optional[Sequence[str]] = None
    ):
        """
        Initialize the conflict resolver.

        Args:
            strategy: Resolution strategy; MANUAL cannot resolve and is
                handled by the orchestrator
            timestamp_columns: "Last modified" candidate columns in priority order

        Raises:
            ValueError: If the strategy is MANUAL or timestamp_columns is empty
        """
        if strategy is ConflictStrategy.MANUAL:
            raise ValueError("The manual strategy leaves conflicts for operator review")

        if timestamp_columns is None:
            timestamp_columns = DEFAULT_TIMESTAMP_COLUMNS
        if not timestamp_columns:
            raise ValueError("At least one timestamp column is required")

        self.strategy = strategy
        self.timestamp_columns: List[str] = list(timestamp_columns)
        logger.debug(
            f"Initialized ConflictResolver (strategy={strategy.value}, "
            f"timestamp_columns={self.timestamp_columns})"
        )

    @property
    def resolved_by(self) -> str:
        return f"strategy:{self.strategy.value}"

    def resolve(self, conflict: ConflictDetail) -> Resolution:
        """
        Resolve one conflict.

        Args:
            conflict: Conflict between node A and node B snapshots

        Returns:
            Resolution holding a copy of the winning row
        """
        if self.strategy is ConflictStrategy.PREFER_NODE_A:
            outcome = ResolutionOutcome.KEPT_A
        elif self.strategy is ConflictStrategy.PREFER_NODE_B:
            outcome = ResolutionOutcome.KEPT_B
        else:
            outcome = self.resolve_by_last_modified(conflict)

        winner = conflict.node_a_value if outcome is ResolutionOutcome.KEPT_A else conflict.node_b_value

        return Resolution(
            conflict=conflict,
            outcome=outcome,
            kept_value=dict(winner),
            resolved_by=self.resolved_by
        )

    def resolve_by_last_modified(self, conflict: ConflictDetail) -> ResolutionOutcome:
        """
        Pick the side with the more recent modification timestamp.

        Args:
            conflict: Conflict to decide

        Returns:
            KEPT_A or KEPT_B
        """
        a_time = self.find_timestamp(conflict.node_a_value)
        b_time = self.find_timestamp(conflict.node_b_value)

        if a_time is not None and b_time is not None:
            outcome = ResolutionOutcome.KEPT_B if b_time > a_time else ResolutionOutcome.KEPT_A
        elif b_time is not None:
            outcome = ResolutionOutcome.KEPT_B
        else:
            # A has the only timestamp, or neither side has one
            outcome = ResolutionOutcome.KEPT_A

        logger.debug(
            f"Conflict {conflict.pk_value}: node A at {a_time}, node B at {b_time} "
            f"-> {outcome.value}"
        )
        return outcome

    def find_timestamp(self, row: RowSnapshot) -> Optional[datetime]:
        """
        Return the instant held by the first candidate column present in a row.

        Only that column is consulted: if its value cannot be parsed the row
        has no timestamp, even when a lower-priority column is present.

        Args:
            row: Row snapshot

        Returns:
            Aware UTC datetime, or None
        """
        for column in self.timestamp_columns:
            if column in row:
                return try_parse_timestamp(row[column])
        return None
