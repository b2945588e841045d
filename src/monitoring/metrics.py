"""
Prometheus Metrics for Replica Reconciliation

Counters and histograms describing merge runs: how many tables were
reconciled, how many conflicts were found and how they were resolved, and
how many rows the sink rejected. Metrics live in a per-instance registry so
several orchestrators (or test cases) never collide on metric names.
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from src.merge.models import MergeReport, TableOutcome

logger = logging.getLogger(__name__)


class MergeMetrics:
    """Prometheus metrics for merge runs."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize merge metrics.

        Args:
            registry: Registry to register into (default: a fresh registry)
        """
        self.registry = registry or CollectorRegistry()

        self.merge_runs_total = Counter(
            'steep_merge_runs_total',
            'Total number of merge runs',
            ['strategy', 'dry_run', 'status'],
            registry=self.registry
        )

        self.tables_total = Counter(
            'steep_merge_tables_total',
            'Tables processed by final status',
            ['table', 'status'],
            registry=self.registry
        )

        self.conflicts_found_total = Counter(
            'steep_merge_conflicts_found_total',
            'Rows whose values differ between the two nodes',
            ['table'],
            registry=self.registry
        )

        self.resolutions_total = Counter(
            'steep_merge_resolutions_total',
            'Conflicts resolved by outcome',
            ['table', 'outcome'],
            registry=self.registry
        )

        self.unresolved_conflicts_total = Counter(
            'steep_merge_unresolved_conflicts_total',
            'Conflicts left for manual review',
            ['table'],
            registry=self.registry
        )

        self.rows_applied_total = Counter(
            'steep_merge_rows_applied_total',
            'Resolved rows written through the sink',
            ['table'],
            registry=self.registry
        )

        self.apply_errors_total = Counter(
            'steep_merge_apply_errors_total',
            'Resolved rows the sink failed to apply',
            ['table'],
            registry=self.registry
        )

        self.one_sided_rows = Gauge(
            'steep_merge_one_sided_rows',
            'Rows present on only one node at the last run',
            ['table', 'node'],
            registry=self.registry
        )

        self.merge_duration_seconds = Histogram(
            'steep_merge_duration_seconds',
            'Duration of merge runs in seconds',
            ['strategy'],
            buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600],
            registry=self.registry
        )

        logger.debug("Initialized MergeMetrics")

    def record_table(self, outcome: TableOutcome) -> None:
        """
        Record the outcome of one table.

        Args:
            outcome: Table outcome produced by the orchestrator
        """
        table = outcome.table

        self.tables_total.labels(table=table, status=outcome.status.value).inc()
        self.conflicts_found_total.labels(table=table).inc(outcome.conflicts_found)

        for resolved, count in outcome.resolutions_by_outcome().items():
            self.resolutions_total.labels(table=table, outcome=resolved).inc(count)

        self.unresolved_conflicts_total.labels(table=table).inc(len(outcome.unresolved_conflicts))
        self.rows_applied_total.labels(table=table).inc(outcome.rows_applied)
        self.apply_errors_total.labels(table=table).inc(len(outcome.apply_errors))

        self.one_sided_rows.labels(table=table, node='a').set(len(outcome.only_in_a))
        self.one_sided_rows.labels(table=table, node='b').set(len(outcome.only_in_b))

        logger.debug(f"Recorded metrics for {table}: status={outcome.status.value}")

    def record_run(self, report: MergeReport, duration_seconds: float) -> None:
        """
        Record a finished merge run.

        Args:
            report: Report of the run
            duration_seconds: Wall-clock duration of the run
        """
        status = 'partial' if report.has_failures else 'success'
        strategy = report.strategy.value

        self.merge_runs_total.labels(
            strategy=strategy,
            dry_run=str(report.dry_run).lower(),
            status=status
        ).inc()
        self.merge_duration_seconds.labels(strategy=strategy).observe(duration_seconds)

    def record_aborted_run(self, strategy: str, dry_run: bool = False) -> None:
        """Record a run that aborted before any table was processed."""
        self.merge_runs_total.labels(
            strategy=strategy,
            dry_run=str(dry_run).lower(),
            status='aborted'
        ).inc()

    def start_server(self, port: int = 9090) -> None:
        """Expose this registry on an HTTP endpoint for Prometheus scraping."""
        try:
            start_http_server(port, registry=self.registry)
            logger.info(f"Metrics server started on port {port}")
        except OSError as e:
            if "Address already in use" in str(e):
                logger.warning(f"Metrics server already running on port {port}")
            else:
                raise
