"""
Merge Correlation Utility for Replica Reconciliation

Binds the identifier of the running merge to the current context so every
log record, metric annotation and webhook emitted during a run can be traced
back to its MergeReport.
"""

import contextvars
import logging
import uuid
from typing import Dict, Optional

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Merge-ID"

_merge_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'merge_id',
    default=None
)


def generate_merge_id() -> str:
    """
    Generate a new merge identifier.

    Returns:
        String representation of a UUID4
    """
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    """
    Get the merge identifier bound to the current context.

    Returns:
        Current merge identifier or None outside a merge
    """
    return _merge_id.get()


def set_correlation_id(merge_id: str) -> contextvars.Token:
    """
    Bind a merge identifier to the current context.

    Args:
        merge_id: Identifier to bind

    Returns:
        Token that restores the previous binding when passed to reset

    Raises:
        ValueError: If merge_id is empty or not a string
    """
    if not merge_id or not isinstance(merge_id, str):
        raise ValueError("Merge ID must be a non-empty string")

    return _merge_id.set(merge_id)


def clear_correlation_id() -> None:
    """Remove any merge identifier from the current context."""
    _merge_id.set(None)


class CorrelationContext:
    """
    Context manager that binds a merge identifier for the duration of a run.

    Nested contexts restore the outer identifier on exit.
    """

    def __init__(self, merge_id: Optional[str] = None):
        """
        Initialize correlation context.

        Args:
            merge_id: Identifier to bind; a new one is generated when omitted
        """
        self.merge_id = merge_id or generate_merge_id()
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> str:
        self._token = set_correlation_id(self.merge_id)
        logger.debug(f"Bound merge ID {self.merge_id}")
        return self.merge_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _merge_id.reset(self._token)
            self._token = None


def correlation_id_filter(record: logging.LogRecord) -> bool:
    """
    Logging filter that stamps records with the current merge identifier.

    Args:
        record: Log record to augment

    Returns:
        True (always allow record)
    """
    record.merge_id = get_correlation_id() or "N/A"
    return True


def attach_correlation_header(headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Return HTTP headers carrying the current merge identifier.

    Args:
        headers: Existing headers, copied rather than mutated

    Returns:
        Headers with CORRELATION_HEADER set when a merge is in progress
    """
    result = dict(headers or {})
    merge_id = get_correlation_id()
    if merge_id:
        result[CORRELATION_HEADER] = merge_id
    return result
