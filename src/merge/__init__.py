"""
Merge Module for Replica Reconciliation

Reconciles tables between two database nodes that accepted writes
independently, resolving each row-level conflict by keeping one node's row.

Main components:
- graph: Parents-first ordering of tables by foreign key
- comparer: Column-level row comparison
- detector: Conflict detection between two snapshots of a table
- resolver: Conflict resolution strategies
- orchestrator: Per-table fetch, diff, resolve and apply loop

Usage:
    from src.merge import MergeOrchestrator, TableDescriptor, ForeignKeyEdge

    tables = [
        TableDescriptor("public", "users", ("id",)),
        TableDescriptor("public", "orders", ("id",)),
    ]
    edges = [ForeignKeyEdge("public", "orders", "public", "users")]

    orchestrator = MergeOrchestrator(node_a_source, node_b_source, sink)
    report = orchestrator.run(tables, edges)
    print(report.to_json())
"""

from src.merge.comparer import RowComparer
from src.merge.detector import ConflictDetector, DiffResult
from src.merge.errors import (
    CyclicDependency,
    FetchCancelled,
    FetchTimeout,
    MergeError,
    MissingPrimaryKeyValue,
    RowFetchError,
    UnparseableTimestamp,
)
from src.merge.graph import DependencySorter, sort_tables
from src.merge.models import (
    ConflictDetail,
    ConflictStrategy,
    ForeignKeyEdge,
    MergeReport,
    Resolution,
    ResolutionOutcome,
    TableDescriptor,
    TableOutcome,
    TableStatus,
)
from src.merge.orchestrator import CancellationToken, MergeOrchestrator, run_preflight_checks
from src.merge.resolver import ConflictResolver
from src.merge.timestamps import parse_timestamp

__all__ = [
    "RowComparer",
    "ConflictDetector",
    "DiffResult",
    "CyclicDependency",
    "FetchCancelled",
    "FetchTimeout",
    "MergeError",
    "MissingPrimaryKeyValue",
    "RowFetchError",
    "UnparseableTimestamp",
    "DependencySorter",
    "sort_tables",
    "ConflictDetail",
    "ConflictStrategy",
    "ForeignKeyEdge",
    "MergeReport",
    "Resolution",
    "ResolutionOutcome",
    "TableDescriptor",
    "TableOutcome",
    "TableStatus",
    "CancellationToken",
    "MergeOrchestrator",
    "run_preflight_checks",
    "ConflictResolver",
    "parse_timestamp",
]

__version__ = "1.0.0"
