"""
Data Model for Replica Reconciliation

Table descriptors, foreign-key edges, conflicts, resolutions and the merge
report produced by a reconciliation run.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

# Row values keyed by column name. Column order follows the source row and
# columns unknown to the engine pass through untouched.
RowSnapshot = Dict[str, Any]

# Primary key values in the table's declared key column order.
RowKey = Tuple[Any, ...]

DEFAULT_SCHEMA = "public"


class ResolutionOutcome(Enum):
    """Which node's row was kept for a conflict."""
    KEPT_A = "kept_a"
    KEPT_B = "kept_b"


class ConflictStrategy(Enum):
    """How conflicting rows are resolved."""
    LAST_MODIFIED = "last-modified"
    PREFER_NODE_A = "prefer-node-a"
    PREFER_NODE_B = "prefer-node-b"
    MANUAL = "manual"


class TableStatus(Enum):
    """Processing status of one table within a run."""
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class TableDescriptor:
    """
    A table taking part in a merge.

    Attributes:
        schema: Schema name
        name: Table name
        primary_key_columns: Key columns in declared order
    """

    schema: str
    name: str
    primary_key_columns: Tuple[str, ...] = ()

    def __post_init__(self):
        # Accept any sequence but store a tuple so the descriptor stays hashable
        object.__setattr__(self, "primary_key_columns", tuple(self.primary_key_columns))

    @property
    def identity(self) -> str:
        """Qualified name used for ordering and reporting."""
        return f"{self.schema}.{self.name}"

    @classmethod
    def from_qualified_name(
        cls,
        qualified_name: str,
        primary_key_columns: Tuple[str, ...] = (),
        default_schema: str = DEFAULT_SCHEMA
    ) -> "TableDescriptor":
        """
        Build a descriptor from "schema.table" or a bare table name.

        Args:
            qualified_name: Table reference
            primary_key_columns: Key columns in declared order
            default_schema: Schema assumed for bare names

        Returns:
            TableDescriptor
        """
        parts = qualified_name.strip().split(".", 1)
        if len(parts) == 2:
            schema, name = parts
        else:
            schema, name = default_schema, parts[0]

        if not schema or not name:
            raise ValueError(f"Invalid table reference: {qualified_name!r}")

        return cls(schema=schema, name=name, primary_key_columns=primary_key_columns)

    def __str__(self) -> str:
        return self.identity


@dataclass(frozen=True)
class ForeignKeyEdge:
    """A child table whose rows reference rows of a parent table."""

    child_schema: str
    child_table: str
    parent_schema: str
    parent_table: str

    @property
    def child_identity(self) -> str:
        return f"{self.child_schema}.{self.child_table}"

    @property
    def parent_identity(self) -> str:
        return f"{self.parent_schema}.{self.parent_table}"

    @property
    def is_self_reference(self) -> bool:
        return self.child_identity == self.parent_identity


@dataclass
class ConflictDetail:
    """
    A row present on both nodes with differing values.

    Attributes:
        pk_value: Primary key column → value
        node_a_value: Full row snapshot from node A
        node_b_value: Full row snapshot from node B
        differing_columns: Columns whose values differ, sorted
    """

    pk_value: Dict[str, Any]
    node_a_value: RowSnapshot
    node_b_value: RowSnapshot
    differing_columns: List[str] = field(default_factory=list)

    @property
    def row_key(self) -> RowKey:
        return tuple(self.pk_value.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pk_value": to_json_safe(self.pk_value),
            "node_a_value": to_json_safe(self.node_a_value),
            "node_b_value": to_json_safe(self.node_b_value),
            "differing_columns": list(self.differing_columns),
        }


@dataclass
class Resolution:
    """The decision taken for one conflict."""

    conflict: ConflictDetail
    outcome: ResolutionOutcome
    kept_value: RowSnapshot
    resolved_by: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pk_value": to_json_safe(self.conflict.pk_value),
            "outcome": self.outcome.value,
            "resolved_by": self.resolved_by,
            "differing_columns": list(self.conflict.differing_columns),
            "kept_value": to_json_safe(self.kept_value),
            "node_a_value": to_json_safe(self.conflict.node_a_value),
            "node_b_value": to_json_safe(self.conflict.node_b_value),
        }


@dataclass
class ApplyError:
    """A resolved row the sink failed to write."""

    row_key: Dict[str, Any]
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"row_key": to_json_safe(self.row_key), "error": self.error}


@dataclass
class TableOutcome:
    """
    Result of reconciling one table.

    rows_compared counts keys present on both nodes; one-sided rows are
    reported in only_in_a / only_in_b and never resolved automatically.
    """

    table: str
    tables_processed_before_it: List[str] = field(default_factory=list)
    rows_compared: int = 0
    conflicts_found: int = 0
    matches: int = 0
    rows_applied: int = 0
    resolutions: List[Resolution] = field(default_factory=list)
    unresolved_conflicts: List[ConflictDetail] = field(default_factory=list)
    only_in_a: List[RowSnapshot] = field(default_factory=list)
    only_in_b: List[RowSnapshot] = field(default_factory=list)
    apply_errors: List[ApplyError] = field(default_factory=list)
    status: TableStatus = TableStatus.COMPLETED
    error: Optional[str] = None

    def resolutions_by_outcome(self) -> Dict[str, int]:
        counts = {outcome.value: 0 for outcome in ResolutionOutcome}
        for resolution in self.resolutions:
            counts[resolution.outcome.value] += 1
        return counts

    def to_dict(self, include_rows: bool = True) -> Dict[str, Any]:
        data = {
            "table": self.table,
            "status": self.status.value,
            "error": self.error,
            "tables_processed_before_it": list(self.tables_processed_before_it),
            "rows_compared": self.rows_compared,
            "matches": self.matches,
            "conflicts_found": self.conflicts_found,
            "only_in_a_count": len(self.only_in_a),
            "only_in_b_count": len(self.only_in_b),
            "resolutions_by_outcome": self.resolutions_by_outcome(),
            "unresolved_count": len(self.unresolved_conflicts),
            "rows_applied": self.rows_applied,
            "apply_error_count": len(self.apply_errors),
            "apply_errors": [e.to_dict() for e in self.apply_errors],
        }

        if include_rows:
            data["resolutions"] = [r.to_dict() for r in self.resolutions]
            data["unresolved_conflicts"] = [c.to_dict() for c in self.unresolved_conflicts]
            data["only_in_a"] = to_json_safe(self.only_in_a)
            data["only_in_b"] = to_json_safe(self.only_in_b)

        return data


@dataclass
class MergeReport:
    """Ordered per-table outcomes of one reconciliation run."""

    merge_id: str
    strategy: ConflictStrategy
    dry_run: bool
    started_at: datetime
    completed_at: Optional[datetime] = None
    tables: List[TableOutcome] = field(default_factory=list)

    def add_table(self, outcome: TableOutcome) -> None:
        self.tables.append(outcome)

    @property
    def has_failures(self) -> bool:
        """True if any table failed or any row could not be applied."""
        return any(
            t.status is TableStatus.FAILED or t.apply_errors
            for t in self.tables
        )

    def totals(self) -> Dict[str, int]:
        totals = {
            "tables": len(self.tables),
            "tables_completed": 0,
            "tables_skipped": 0,
            "tables_failed": 0,
            "rows_compared": 0,
            "matches": 0,
            "conflicts_found": 0,
            "kept_a": 0,
            "kept_b": 0,
            "unresolved": 0,
            "only_in_a": 0,
            "only_in_b": 0,
            "rows_applied": 0,
            "apply_errors": 0,
        }

        for t in self.tables:
            totals[f"tables_{t.status.value}"] += 1
            totals["rows_compared"] += t.rows_compared
            totals["matches"] += t.matches
            totals["conflicts_found"] += t.conflicts_found
            for outcome, count in t.resolutions_by_outcome().items():
                totals[outcome] += count
            totals["unresolved"] += len(t.unresolved_conflicts)
            totals["only_in_a"] += len(t.only_in_a)
            totals["only_in_b"] += len(t.only_in_b)
            totals["rows_applied"] += t.rows_applied
            totals["apply_errors"] += len(t.apply_errors)

        return totals

    def to_dict(self, include_rows: bool = True) -> Dict[str, Any]:
        duration = None
        if self.completed_at is not None:
            duration = (self.completed_at - self.started_at).total_seconds()

        return {
            "merge_id": self.merge_id,
            "strategy": self.strategy.value,
            "dry_run": self.dry_run,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": duration,
            "totals": self.totals(),
            "tables": [t.to_dict(include_rows=include_rows) for t in self.tables],
        }

    def to_json(self, include_rows: bool = True, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(include_rows=include_rows), indent=indent)


def to_json_safe(value: Any) -> Any:
    """
    Convert driver values into JSON-serializable equivalents.

    Handles:
    - datetime/date → ISO 8601 strings
    - Decimal and UUID → strings
    - bytes → hex strings
    - nested dicts, lists and tuples

    Args:
        value: Value to convert

    Returns:
        JSON-safe value
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value

    if isinstance(value, (datetime, date)):
        return value.isoformat()

    if isinstance(value, (Decimal, UUID)):
        return str(value)

    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()

    if isinstance(value, dict):
        return {str(k): to_json_safe(v) for k, v in value.items()}

    if isinstance(value, (list, tuple, set)):
        return [to_json_safe(v) for v in value]

    return str(value)
