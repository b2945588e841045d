"""
Webhook Notifier for Replica Reconciliation

Posts a summary of each finished merge to an HTTP endpoint. Delivery is
retried with exponential backoff on connection errors, HTTP 5xx and HTTP 429;
other client errors are not retried. A notification that cannot be delivered
is logged and reported as False, never raised into the merge.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import requests

from src.merge.models import MergeReport
from src.utils.correlation import attach_correlation_header

logger = logging.getLogger(__name__)

USER_AGENT = "steep-merge/1.0.0"


class WebhookNotifier:
    """Delivers merge summaries to a webhook endpoint."""

    def __init__(
        self,
        url: str,
        max_retries: int = 3,
        initial_backoff: float = 1.0,
        max_backoff: float = 30.0,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the notifier.

        Args:
            url: Webhook endpoint
            max_retries: Retry attempts after the first delivery
            initial_backoff: Seconds before the first retry
            max_backoff: Upper bound on the delay between retries
            timeout: HTTP request timeout in seconds
            session: HTTP session to use (default: a new requests.Session)
            sleep: Function used to wait between attempts
        """
        self.url = url
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.timeout = timeout
        self.sleep = sleep

        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        })

        logger.debug(f"Initialized WebhookNotifier for {url}")

    def notify_report(self, report: MergeReport, event: str = "merge_completed") -> bool:
        """
        Send the summary of a merge report.

        Args:
            report: Finished merge report
            event: Event name placed in the payload

        Returns:
            True if the webhook accepted the notification
        """
        return self.send(self.build_payload(report, event))

    def build_payload(self, report: MergeReport, event: str = "merge_completed") -> Dict[str, Any]:
        summary = report.to_dict(include_rows=False)
        return {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "merge": {
                "merge_id": summary["merge_id"],
                "strategy": summary["strategy"],
                "dry_run": summary["dry_run"],
                "has_failures": report.has_failures,
                "duration_seconds": summary["duration_seconds"],
                "totals": summary["totals"],
                "tables": [
                    {"table": t["table"], "status": t["status"], "error": t["error"]}
                    for t in summary["tables"]
                ],
            },
        }

    def send(self, payload: Dict[str, Any]) -> bool:
        """
        Post a payload, retrying transient failures.

        Args:
            payload: JSON-serializable payload

        Returns:
            True on a 2xx response, False once retries are exhausted or on a
            non-retryable response
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                backoff = self.calculate_backoff(attempt)
                logger.debug(f"Webhook retry attempt {attempt}/{self.max_retries} after {backoff}s")
                self.sleep(backoff)

            try:
                response = self.session.post(
                    self.url,
                    json=payload,
                    headers=attach_correlation_header(),
                    timeout=self.timeout
                )
            except requests.RequestException as e:
                last_error = f"HTTP request failed: {e}"
                logger.debug(f"Webhook attempt {attempt + 1} failed: {last_error}")
                continue

            if 200 <= response.status_code < 300:
                if attempt > 0:
                    logger.info(f"Webhook delivery succeeded on attempt {attempt + 1}")
                else:
                    logger.debug(f"Webhook delivered: {payload.get('event')}")
                return True

            last_error = f"HTTP {response.status_code}: {response.text[:1024]}"
            if response.status_code < 500 and response.status_code != 429:
                logger.error(f"Webhook rejected notification (not retryable): {last_error}")
                return False

            logger.debug(f"Webhook attempt {attempt + 1} failed: {last_error}")

        logger.error(f"Webhook delivery failed after {self.max_retries + 1} attempts: {last_error}")
        return False

    def calculate_backoff(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based), capped at max_backoff."""
        return min(self.initial_backoff * (2 ** (attempt - 1)), self.max_backoff)
