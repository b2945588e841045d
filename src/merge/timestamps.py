"""
Timestamp Normalizer for Replica Reconciliation

Turns the "last modified" values found in row snapshots into aware UTC
datetimes so that both nodes' recency signals can be compared.

Accepted inputs:
- datetime objects (naive values are taken as UTC)
- RFC 3339 strings with a "Z" suffix or a numeric offset, with fractional
  seconds of any precision
- "YYYY-MM-DD HH:MM:SS" and "YYYY-MM-DDTHH:MM:SS" strings, optionally with
  fractional seconds, interpreted as UTC

No other timezone inference is performed.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from src.merge.errors import UnparseableTimestamp

logger = logging.getLogger(__name__)

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"
    r"(?:([Zz])|([+-])(\d{2}):(\d{2}))",
    re.ASCII
)

_NAIVE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[ T](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?",
    re.ASCII
)


def parse_timestamp(value: Any) -> datetime:
    """
    Normalize a timestamp value to an aware UTC datetime.

    Args:
        value: datetime or string in one of the accepted shapes

    Returns:
        Aware datetime in UTC

    Raises:
        UnparseableTimestamp: If the value has any other type or shape
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if not isinstance(value, str):
        raise UnparseableTimestamp(value)

    match = _RFC3339.fullmatch(value)
    if match:
        year, month, day, hour, minute, second, fraction = match.groups()[:7]
        zulu, sign, offset_hours, offset_minutes = match.groups()[7:]

        if zulu:
            tz = timezone.utc
        else:
            tz = _fixed_offset(value, sign, offset_hours, offset_minutes)

        parsed = _build(value, year, month, day, hour, minute, second, fraction, tz)
        return parsed.astimezone(timezone.utc)

    match = _NAIVE.fullmatch(value)
    if match:
        return _build(value, *match.groups(), tz=timezone.utc)

    raise UnparseableTimestamp(value)


def try_parse_timestamp(value: Any) -> Optional[datetime]:
    """Like parse_timestamp, but returns None instead of raising."""
    try:
        return parse_timestamp(value)
    except UnparseableTimestamp:
        logger.debug(f"Ignoring unparseable timestamp value: {value!r}")
        return None


def _build(
    raw: str,
    year: str,
    month: str,
    day: str,
    hour: str,
    minute: str,
    second: str,
    fraction: Optional[str],
    tz: timezone
) -> datetime:
    # datetime keeps microseconds; extra precision is truncated
    microsecond = int((fraction or "")[:6].ljust(6, "0"))

    try:
        return datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second),
            microsecond,
            tzinfo=tz
        )
    except ValueError as e:
        raise UnparseableTimestamp(raw) from e


def _fixed_offset(raw: str, sign: str, hours: str, minutes: str) -> timezone:
    h, m = int(hours), int(minutes)
    if h > 23 or m > 59:
        raise UnparseableTimestamp(raw)

    delta = timedelta(hours=h, minutes=m)
    return timezone(-delta if sign == "-" else delta)
