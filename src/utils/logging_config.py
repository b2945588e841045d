"""
Logging Configuration for Replica Reconciliation

Console logging for operators, or JSON lines for log shippers when the
JSON_LOGGING environment variable is "true". Every record is stamped with the
merge ID of the run in progress.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from src.utils.correlation import correlation_id_filter

CONSOLE_FORMAT = '[%(asctime)s] %(levelname)s [%(merge_id)s] %(name)s - %(message)s'
CONSOLE_DATEFMT = '%Y-%m-%d %H:%M:%S'

_EXTRA_FIELDS = ("table", "node", "strategy", "duration", "status")


class StructuredJSONFormatter(logging.Formatter):
    """JSON formatter with merge ID support."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'merge_id': getattr(record, 'merge_id', None),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def json_logging_enabled() -> bool:
    return os.getenv('JSON_LOGGING', 'false').lower() == 'true'


def configure_logging(verbose: bool = False, json_output: Optional[bool] = None) -> logging.Handler:
    """
    Configure the root logger for the command-line tool.

    Args:
        verbose: Log at DEBUG instead of INFO
        json_output: Force JSON (True) or console (False) output; defaults
            to the JSON_LOGGING environment variable

    Returns:
        The installed handler
    """
    if json_output is None:
        json_output = json_logging_enabled()

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(StructuredJSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT))
    handler.addFilter(correlation_id_filter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    return handler
