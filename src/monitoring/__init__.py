"""
Monitoring Module for Replica Reconciliation

Observability components for merge runs:
- Prometheus metrics for runs, tables, conflicts and apply errors
- Alert rule definitions over those metrics
- Webhook notification of finished merges

Usage:
    from src.monitoring import MergeMetrics, MergeAlertRuleGenerator

    metrics = MergeMetrics()
    orchestrator = MergeOrchestrator(node_a, node_b, sink, metrics=metrics)

    alerts = MergeAlertRuleGenerator()
    alerts.export_to_yaml("merge_alerts.yml")
"""

from src.monitoring.metrics import MergeMetrics
from src.monitoring.alerts import MergeAlertRuleGenerator
from src.monitoring.notifier import WebhookNotifier

__all__ = [
    "MergeMetrics",
    "MergeAlertRuleGenerator",
    "WebhookNotifier",
]

__version__ = "1.0.0"
