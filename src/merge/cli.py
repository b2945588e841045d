"""
Command-line Interface for the Replica Merge Tool

Reconciles tables between two diverged PostgreSQL nodes:
- analyze: dry run, prints the full report
- merge: resolves conflicts and writes the kept rows to both nodes
- status: lists stored merge reports
- report: prints one stored report

Usage:
    steep-merge --config merge.yml analyze --tables users,orders
    steep-merge --config merge.yml merge --tables users,orders --strategy prefer-node-a
    steep-merge merge --tables public.users --dry-run --fetch-timeout 120
    steep-merge status
    steep-merge report --merge-id 3f1c...

Exit codes:
    0  every table reconciled
    1  a table failed, a row could not be applied, or the tool errored
    2  the tables' foreign keys form a cycle; nothing was reconciled
"""

import argparse
import json
import logging
import signal
import threading
from typing import Callable, List, Optional, Tuple

from src.merge.errors import CyclicDependency
from src.merge.models import ConflictStrategy, MergeReport
from src.merge.orchestrator import CancellationToken, MergeOrchestrator
from src.merge.postgres import PostgresCatalog, PostgresRowSink, PostgresRowSource, connect_node
from src.merge.report_store import ReportStore
from src.monitoring.metrics import MergeMetrics
from src.monitoring.notifier import WebhookNotifier
from src.utils.config import ConfigurationError, MergeSettings, load_settings
from src.utils.logging_config import configure_logging
from src.utils.vault_client import VaultClient

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CYCLE = 2


def parse_tables(value: str) -> List[str]:
    """Split a comma-separated table list, dropping blanks."""
    tables = [t.strip() for t in value.split(",") if t.strip()]
    if not tables:
        raise argparse.ArgumentTypeError("at least one table is required")
    return tables


class MergeTool:
    """Wires settings, connections and the orchestrator together for one command."""

    def __init__(
        self,
        settings: MergeSettings,
        connect: Callable[..., object] = connect_node,
        vault_factory: Callable[..., VaultClient] = VaultClient
    ):
        self.settings = settings
        self.connect = connect
        self.vault_factory = vault_factory
        self.report_store = ReportStore(settings.report_dir)
        self.cancellation_token = CancellationToken()

    def resolve_dsns(self) -> Tuple[str, str]:
        """
        Determine the connection strings of both nodes.

        Raises:
            ConfigurationError: If a node has no DSN configured
        """
        dsn_a, dsn_b = self.settings.node_a_dsn, self.settings.node_b_dsn
        vault_settings = self.settings.vault

        if vault_settings.enabled:
            paths = {}
            if vault_settings.node_a_path:
                paths["a"] = vault_settings.node_a_path
            if vault_settings.node_b_path:
                paths["b"] = vault_settings.node_b_path

            with self.vault_factory(
                vault_url=vault_settings.url,
                verify_ssl=vault_settings.verify_ssl,
                mount_point=vault_settings.mount_point,
                secret_paths=paths
            ) as vault:
                dsn_a = dsn_a or vault.get_node_dsn("a")
                dsn_b = dsn_b or vault.get_node_dsn("b")

        if not dsn_a or not dsn_b:
            raise ConfigurationError(
                "Both node DSNs are required (nodes.a.dsn / nodes.b.dsn, "
                "STEEP_MERGE_NODE_A_DSN / STEEP_MERGE_NODE_B_DSN, or vault.enabled)"
            )
        return dsn_a, dsn_b

    def run_merge(
        self,
        table_names: List[str],
        strategy: ConflictStrategy,
        dry_run: bool,
        fetch_timeout: Optional[float] = None,
        metrics: Optional[MergeMetrics] = None
    ) -> MergeReport:
        """
        Reconcile tables between the two configured nodes.

        Readers and writers use separate connections so a fetch abandoned on
        timeout can never block a write.

        Raises:
            CyclicDependency: If the tables cannot be ordered
        """
        dsn_a, dsn_b = self.resolve_dsns()
        connections = []

        def open_connection(dsn):
            conn = self.connect(dsn)
            connections.append(conn)
            return conn

        try:
            read_a = open_connection(dsn_a)
            read_b = open_connection(dsn_b)

            catalog = PostgresCatalog(read_a)
            tables = catalog.describe_tables(table_names)
            edges = catalog.foreign_keys(tables)

            if fetch_timeout is None:
                fetch_timeout = self.settings.fetch_timeout
            statement_timeout_ms = self.settings.statement_timeout_ms
            if statement_timeout_ms is None and fetch_timeout is not None:
                # Server-side bound matching the client deadline
                statement_timeout_ms = max(1, int(fetch_timeout * 1000))

            if dry_run:
                sink = _RefusingSink()
            else:
                sink = PostgresRowSink(open_connection(dsn_a), open_connection(dsn_b))

            orchestrator = MergeOrchestrator(
                node_a=PostgresRowSource(read_a, statement_timeout_ms, node="A"),
                node_b=PostgresRowSource(read_b, statement_timeout_ms, node="B"),
                sink=sink,
                strategy=strategy,
                timestamp_columns=self.settings.timestamp_columns,
                ignore_columns=self.settings.ignore_columns,
                dry_run=dry_run,
                fetch_timeout=fetch_timeout,
                cancellation_token=self.cancellation_token,
                metrics=metrics
            )
            return orchestrator.run(tables, edges)

        finally:
            for conn in connections:
                conn.close()

    def notify(self, report: MergeReport) -> None:
        if not self.settings.webhook_url:
            return
        WebhookNotifier(self.settings.webhook_url).notify_report(report)

    def get_status(self) -> dict:
        reports = self.report_store.list_reports()
        return {"stored_reports": len(reports), "reports": reports}


class _RefusingSink:
    """Sink for dry runs; the orchestrator never calls it."""

    def apply_row(self, table, row):
        raise RuntimeError(f"Refusing to write {table} during a dry run")


def install_cancellation_handler(token: CancellationToken) -> None:
    """Cancel pending fetches on SIGTERM."""
    if threading.current_thread() is not threading.main_thread():
        return

    def handle(signum, frame):
        logger.warning("Received SIGTERM; cancelling the merge")
        token.cancel()

    signal.signal(signal.SIGTERM, handle)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="steep-merge",
        description="Reconcile tables between two diverged PostgreSQL nodes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    strategies = [s.value for s in ConflictStrategy]

    analyze_parser = subparsers.add_parser("analyze", help="Report conflicts without writing")
    analyze_parser.add_argument("--tables", required=True, type=parse_tables, help="Comma-separated tables")
    analyze_parser.add_argument("--strategy", choices=strategies, help="Conflict resolution strategy")
    analyze_parser.add_argument("--fetch-timeout", type=float, help="Seconds allowed per table fetch")

    merge_parser = subparsers.add_parser("merge", help="Reconcile tables")
    merge_parser.add_argument("--tables", required=True, type=parse_tables, help="Comma-separated tables")
    merge_parser.add_argument("--strategy", choices=strategies, help="Conflict resolution strategy")
    merge_parser.add_argument("--dry-run", action="store_true", help="Resolve conflicts but write nothing")
    merge_parser.add_argument("--fetch-timeout", type=float, help="Seconds allowed per table fetch")

    subparsers.add_parser("status", help="List stored merge reports")

    report_parser = subparsers.add_parser("report", help="Print a stored merge report")
    report_parser.add_argument("--merge-id", required=True, help="Merge ID")

    return parser


def main(argv: Optional[List[str]] = None, tool_factory: Callable[[MergeSettings], MergeTool] = MergeTool) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=args.verbose)

    if not args.command:
        parser.print_help()
        return EXIT_FAILURE

    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_FAILURE

    tool = tool_factory(settings)

    try:
        if args.command == "status":
            print(json.dumps(tool.get_status(), indent=2))
            return EXIT_OK

        if args.command == "report":
            report = tool.report_store.load(args.merge_id)
            if report is None:
                logger.error(f"No stored report for merge {args.merge_id}")
                return EXIT_FAILURE
            print(json.dumps(report, indent=2))
            return EXIT_OK

        strategy = ConflictStrategy(args.strategy) if args.strategy else settings.strategy
        dry_run = args.command == "analyze" or args.dry_run

        metrics = None
        if args.command == "merge" and settings.metrics_port:
            metrics = MergeMetrics()
            metrics.start_server(settings.metrics_port)

        install_cancellation_handler(tool.cancellation_token)

        try:
            report = tool.run_merge(
                args.tables,
                strategy=strategy,
                dry_run=dry_run,
                fetch_timeout=args.fetch_timeout,
                metrics=metrics
            )
        except CyclicDependency as e:
            logger.error(f"Merge aborted: {e}")
            return EXIT_CYCLE

        if args.command == "analyze":
            print(report.to_json())
        else:
            tool.report_store.save(report)
            tool.notify(report)
            print(json.dumps(report.to_dict(include_rows=False), indent=2))

        return EXIT_FAILURE if report.has_failures else EXIT_OK

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_FAILURE
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=args.verbose)
        return EXIT_FAILURE
