"""
Alert Rule Generator for Prometheus AlertManager

Generates alert rule definitions over the merge metrics exported by
MergeMetrics. Rules cover aborted and partial runs, rows the sink rejected,
unresolved conflicts and rows that exist on only one node.
"""

import logging
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)


class MergeAlertRuleGenerator:
    """Generates Prometheus AlertManager rules for merge runs."""

    def __init__(self, one_sided_row_threshold: int = 100):
        """
        Initialize alert rule generator.

        Args:
            one_sided_row_threshold: Rows on only one node before a warning fires
        """
        self.one_sided_row_threshold = one_sided_row_threshold
        logger.debug("Initialized MergeAlertRuleGenerator")

    def generate_alert_rules(self) -> Dict[str, Any]:
        """
        Generate complete alert rule configuration.

        Returns:
            Dict with alert rule groups in Prometheus format
        """
        groups = [
            self._generate_run_alerts(),
            self._generate_apply_alerts(),
            self._generate_divergence_alerts(),
        ]

        logger.info(f"Generated {len(groups)} alert rule groups")
        return {"groups": groups}

    def _generate_run_alerts(self) -> Dict[str, Any]:
        return {
            "name": "steep_merge_runs",
            "interval": "1m",
            "rules": [
                {
                    "alert": "MergeAborted",
                    "expr": "increase(steep_merge_runs_total{status=\"aborted\"}[1h]) > 0",
                    "for": "1m",
                    "labels": {
                        "severity": "critical",
                        "component": "merge"
                    },
                    "annotations": {
                        "summary": "Merge run aborted",
                        "description": "A merge run with strategy {{ $labels.strategy }} aborted on a foreign-key cycle. No table was reconciled."
                    }
                },
                {
                    "alert": "MergePartiallyCompleted",
                    "expr": "increase(steep_merge_runs_total{status=\"partial\"}[1h]) > 0",
                    "for": "1m",
                    "labels": {
                        "severity": "warning",
                        "component": "merge"
                    },
                    "annotations": {
                        "summary": "Merge run completed with failures",
                        "description": "A merge run finished with failed tables or rejected rows. Check the stored report."
                    }
                },
                {
                    "alert": "MergeTableFailed",
                    "expr": "increase(steep_merge_tables_total{status=\"failed\"}[1h]) > 0",
                    "for": "1m",
                    "labels": {
                        "severity": "warning",
                        "component": "merge"
                    },
                    "annotations": {
                        "summary": "Table reconciliation failed",
                        "description": "{{ $labels.table }} could not be fetched or keyed on one of the nodes"
                    }
                }
            ]
        }

    def _generate_apply_alerts(self) -> Dict[str, Any]:
        return {
            "name": "steep_merge_apply",
            "interval": "1m",
            "rules": [
                {
                    "alert": "MergeApplyErrors",
                    "expr": "increase(steep_merge_apply_errors_total[1h]) > 0",
                    "for": "1m",
                    "labels": {
                        "severity": "warning",
                        "component": "merge"
                    },
                    "annotations": {
                        "summary": "Resolved rows could not be applied",
                        "description": "{{ $value }} resolved rows of {{ $labels.table }} were rejected by the sink"
                    }
                }
            ]
        }

    def _generate_divergence_alerts(self) -> Dict[str, Any]:
        return {
            "name": "steep_merge_divergence",
            "interval": "5m",
            "rules": [
                {
                    "alert": "UnresolvedConflictsPending",
                    "expr": "increase(steep_merge_unresolved_conflicts_total[24h]) > 0",
                    "for": "5m",
                    "labels": {
                        "severity": "info",
                        "component": "merge"
                    },
                    "annotations": {
                        "summary": "Conflicts awaiting manual review",
                        "description": "{{ $labels.table }} has {{ $value }} conflicts left by the manual strategy"
                    }
                },
                {
                    "alert": "HighOneSidedRowCount",
                    "expr": f"steep_merge_one_sided_rows > {self.one_sided_row_threshold}",
                    "for": "15m",
                    "labels": {
                        "severity": "warning",
                        "component": "merge"
                    },
                    "annotations": {
                        "summary": "Rows present on only one node",
                        "description": f"{{{{ $labels.table }}}} has {{{{ $value }}}} rows only on node {{{{ $labels.node }}}} (threshold: {self.one_sided_row_threshold})"
                    }
                }
            ]
        }

    def export_to_yaml(self, output_file: str) -> None:
        """
        Export alert rules to YAML file.

        Args:
            output_file: Path to output YAML file
        """
        rules = self.generate_alert_rules()

        with open(output_file, 'w') as f:
            yaml.safe_dump(rules, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Alert rules exported to {output_file}")

    def get_alert_summary(self) -> Dict[str, int]:
        """
        Get summary of alert rules.

        Returns:
            Dict with counts by severity
        """
        rules = self.generate_alert_rules()

        summary = {
            "total_groups": len(rules["groups"]),
            "total_alerts": 0,
            "critical": 0,
            "warning": 0,
            "info": 0
        }

        for group in rules["groups"]:
            for rule in group["rules"]:
                summary["total_alerts"] += 1
                severity = rule["labels"].get("severity", "unknown")
                if severity in summary:
                    summary[severity] += 1

        return summary
