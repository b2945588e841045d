"""
Merge Orchestrator for Replica Reconciliation

Drives a one-shot reconciliation pass between two diverged nodes:

1. Sort the tables parents-first (a dependency cycle aborts the run)
2. For each table, in that order and one at a time:
   - fetch the rows of both nodes concurrently
   - detect conflicts and one-sided rows
   - resolve each conflict
   - apply each kept row through the sink
3. Collect every table's outcome into a MergeReport

Failures below the run level degrade to partial completion: a table whose
fetch or key extraction fails is marked failed and the next table proceeds,
and a row the sink rejects is recorded without stopping its siblings.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import FIRST_EXCEPTION, Future, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from src.merge.detector import ConflictDetector
from src.merge.errors import (
    CyclicDependency,
    FetchCancelled,
    FetchTimeout,
    MissingPrimaryKeyValue,
    RowFetchError,
)
from src.merge.graph import DependencySorter
from src.merge.interfaces import RowSink, RowSource
from src.merge.models import (
    ApplyError,
    ConflictStrategy,
    ForeignKeyEdge,
    MergeReport,
    RowSnapshot,
    TableDescriptor,
    TableOutcome,
    TableStatus,
)
from src.merge.resolver import ConflictResolver
from src.utils.correlation import CorrelationContext

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation shared between the caller and a running merge."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class PreflightResult:
    """
    Pre-flight checks over a merge set.

    Attributes:
        warnings: Conditions worth an operator's attention
        skipped_tables: Table identity → reason it will be skipped
    """

    warnings: List[str] = field(default_factory=list)
    skipped_tables: Dict[str, str] = field(default_factory=dict)


def run_preflight_checks(
    tables: Iterable[TableDescriptor],
    edges: Iterable[ForeignKeyEdge]
) -> PreflightResult:
    """
    Check a merge set before any rows are fetched.

    Args:
        tables: Tables in the merge set
        edges: Foreign-key edges

    Returns:
        PreflightResult
    """
    result = PreflightResult()
    tables = list(tables)
    identities = {t.identity for t in tables}

    for table in tables:
        if not table.primary_key_columns:
            reason = f"table {table.identity} has no primary key"
            result.skipped_tables[table.identity] = reason

    for edge in edges:
        if edge.child_identity in identities and edge.parent_identity not in identities:
            result.warnings.append(
                f"{edge.child_identity} references {edge.parent_identity}, "
                f"which is not part of this merge"
            )

    return result


class MergeOrchestrator:
    """
    Reconciles a fixed set of tables between node A and node B.

    Construct one per run; it holds no state between runs.
    """

    def __init__(
        self,
        node_a: RowSource,
        node_b: RowSource,
        sink: RowSink,
        strategy: ConflictStrategy = ConflictStrategy.LAST_MODIFIED,
        timestamp_columns: Optional[Sequence[str]] = None,
        ignore_columns: Optional[Sequence[str]] = None,
        dry_run: bool = False,
        fetch_timeout: Optional[float] = None,
        cancellation_token: Optional[CancellationToken] = None,
        metrics=None,
        poll_interval: float = 0.1
    ):
        """
        Initialize the orchestrator.

        Args:
            node_a: Row source for node A
            node_b: Row source for node B
            sink: Writer that converges both nodes on a row
            strategy: Conflict resolution strategy
            timestamp_columns: "Last modified" candidate columns, in priority order
            ignore_columns: Columns excluded from conflict detection
            dry_run: If True, resolve conflicts but apply nothing
            fetch_timeout: Seconds allowed for both fetches of one table
            cancellation_token: Token checked while fetches are pending
            metrics: Optional MergeMetrics recorder
            poll_interval: Seconds between cancellation checks while waiting
        """
        self.node_a = node_a
        self.node_b = node_b
        self.sink = sink
        self.strategy = strategy
        self.dry_run = dry_run
        self.fetch_timeout = fetch_timeout
        self.cancellation_token = cancellation_token
        self.metrics = metrics
        self.poll_interval = poll_interval

        self.sorter = DependencySorter()
        self.detector = ConflictDetector(ignore_columns=ignore_columns)
        self.resolver = None
        if strategy is not ConflictStrategy.MANUAL:
            self.resolver = ConflictResolver(strategy, timestamp_columns=timestamp_columns)

        logger.info(
            f"MergeOrchestrator initialized (strategy={strategy.value}, dry_run={dry_run}, "
            f"fetch_timeout={fetch_timeout})"
        )

    def run(
        self,
        tables: Iterable[TableDescriptor],
        edges: Iterable[ForeignKeyEdge],
        merge_id: Optional[str] = None
    ) -> MergeReport:
        """
        Run one reconciliation pass.

        Args:
            tables: Tables to reconcile
            edges: Foreign-key edges between them (others are ignored)
            merge_id: Identifier for the run (default: new UUID4)

        Returns:
            MergeReport with one outcome per table, in processing order

        Raises:
            CyclicDependency: If the tables cannot be ordered; no report is produced
        """
        merge_id = merge_id or str(uuid.uuid4())
        tables = list(tables)
        edges = list(edges)

        with CorrelationContext(merge_id):
            started_at = datetime.now(timezone.utc)
            start = time.monotonic()
            logger.info(f"Starting merge {merge_id} over {len(tables)} tables")

            try:
                ordered = self.sorter.sort(tables, edges)
            except CyclicDependency:
                if self.metrics is not None:
                    self.metrics.record_aborted_run(self.strategy.value)
                raise

            preflight = run_preflight_checks(ordered, edges)
            for warning in preflight.warnings:
                logger.warning(f"Preflight: {warning}")

            report = MergeReport(
                merge_id=merge_id,
                strategy=self.strategy,
                dry_run=self.dry_run,
                started_at=started_at
            )

            processed: List[str] = []
            for table in ordered:
                outcome = self._process_table(table, list(processed), preflight)
                report.add_table(outcome)
                processed.append(table.identity)

                if self.metrics is not None:
                    self.metrics.record_table(outcome)

            report.completed_at = datetime.now(timezone.utc)
            duration = time.monotonic() - start

            if self.metrics is not None:
                self.metrics.record_run(report, duration)

            totals = report.totals()
            logger.info(
                f"Merge {merge_id} finished in {duration:.2f}s: "
                f"{totals['tables_completed']} completed, {totals['tables_failed']} failed, "
                f"{totals['tables_skipped']} skipped; {totals['conflicts_found']} conflicts, "
                f"{totals['rows_applied']} rows applied, {totals['apply_errors']} apply errors"
            )

            return report

    def _process_table(
        self,
        table: TableDescriptor,
        processed_before: List[str],
        preflight: PreflightResult
    ) -> TableOutcome:
        outcome = TableOutcome(table=table.identity, tables_processed_before_it=processed_before)

        skip_reason = preflight.skipped_tables.get(table.identity)
        if skip_reason:
            logger.warning(f"Skipping {table.identity}: {skip_reason}")
            outcome.status = TableStatus.SKIPPED
            outcome.error = skip_reason
            return outcome

        try:
            rows_a, rows_b = self._fetch_both(table)
            diff = self.detector.diff(table, rows_a, rows_b)
        except (RowFetchError, FetchTimeout, FetchCancelled, MissingPrimaryKeyValue) as e:
            logger.error(f"Reconciliation of {table.identity} aborted: {e}")
            outcome.status = TableStatus.FAILED
            outcome.error = str(e)
            return outcome

        outcome.rows_compared = diff.rows_compared
        outcome.matches = diff.matches
        outcome.conflicts_found = len(diff.conflicts)
        outcome.only_in_a = diff.only_in_a
        outcome.only_in_b = diff.only_in_b

        if self.resolver is None:
            outcome.unresolved_conflicts = list(diff.conflicts)
            if diff.conflicts:
                logger.warning(
                    f"{table.identity} has {len(diff.conflicts)} conflicts requiring manual resolution"
                )
            return outcome

        for conflict in diff.conflicts:
            resolution = self.resolver.resolve(conflict)
            outcome.resolutions.append(resolution)

            if self.dry_run:
                continue

            try:
                self.sink.apply_row(table, resolution.kept_value)
                outcome.rows_applied += 1
            except Exception as e:
                logger.error(f"Failed to apply {resolution.outcome.value} for {table.identity} {conflict.pk_value}: {e}")
                outcome.apply_errors.append(ApplyError(row_key=dict(conflict.pk_value), error=str(e)))

        if self.dry_run and outcome.resolutions:
            logger.info(f"DRY RUN - {len(outcome.resolutions)} resolutions for {table.identity} not applied")

        return outcome

    def _fetch_both(self, table: TableDescriptor) -> Tuple[List[RowSnapshot], List[RowSnapshot]]:
        """
        Fetch a table from both nodes concurrently and join the results.

        A fetch still running when the table is given up on is asked to stop
        through its source's cancel() and left to finish on a daemon thread,
        so it can hold up neither the run nor interpreter exit.

        Raises:
            RowFetchError: If either source raised
            FetchTimeout: If the fetches outlive fetch_timeout
            FetchCancelled: If the cancellation token fires first
        """
        self._raise_if_cancelled(table)

        sources = {"A": self.node_a, "B": self.node_b}
        futures = {
            self._start_fetch(source, table, node): node
            for node, source in sources.items()
        }

        deadline = None
        if self.fetch_timeout is not None:
            deadline = time.monotonic() + self.fetch_timeout

        pending = set(futures)
        try:
            while pending:
                self._raise_if_cancelled(table)

                wait_for = self.poll_interval
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise FetchTimeout(table.identity, self.fetch_timeout)
                    wait_for = min(wait_for, remaining)

                done, pending = wait(pending, timeout=wait_for, return_when=FIRST_EXCEPTION)

                for future in done:
                    error = future.exception()
                    if error is not None:
                        raise RowFetchError(table.identity, futures[future], error) from error
        except (RowFetchError, FetchTimeout, FetchCancelled):
            for future in pending:
                self._cancel_fetch(sources[futures[future]], table, futures[future])
            raise

        rows = {node: future.result() for future, node in futures.items()}
        logger.debug(
            f"Fetched {table.identity}: {len(rows['A'])} rows from A, {len(rows['B'])} rows from B"
        )
        return list(rows["A"]), list(rows["B"])

    def _start_fetch(self, source: RowSource, table: TableDescriptor, node: str) -> Future:
        future: Future = Future()

        def fetch():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(source.fetch_rows(table))
            except Exception as e:
                future.set_exception(e)

        thread = threading.Thread(target=fetch, name=f"merge-fetch-{node}", daemon=True)
        thread.start()
        return future

    def _cancel_fetch(self, source: RowSource, table: TableDescriptor, node: str) -> None:
        logger.warning(f"Cancelling unfinished fetch of {table.identity} from node {node}")
        try:
            source.cancel()
        except Exception as e:
            # The table already failed; keep that error as the reported one
            logger.error(f"Could not cancel fetch of {table.identity} from node {node}: {e}")

    def _raise_if_cancelled(self, table: TableDescriptor) -> None:
        if self.cancellation_token is not None and self.cancellation_token.is_cancelled():
            raise FetchCancelled(table.identity)
