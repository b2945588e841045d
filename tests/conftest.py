"""
Pytest configuration and shared fixtures.

Provides in-memory row sources and a recording sink so the merge engine can
be exercised without database nodes.
"""

import threading
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from src.merge.models import ForeignKeyEdge, TableDescriptor
from src.utils.correlation import clear_correlation_id


class FakeRowSource:
    """Row source serving canned rows per table identity."""

    def __init__(
        self,
        rows: Optional[Dict[str, List[dict]]] = None,
        errors: Optional[Dict[str, Exception]] = None,
        block: Optional[threading.Event] = None
    ):
        self.rows = rows or {}
        self.errors = errors or {}
        self.block = block
        self.calls: List[str] = []
        self.cancel_calls = 0

    def fetch_rows(self, table: TableDescriptor) -> List[dict]:
        self.calls.append(table.identity)
        if self.block is not None:
            self.block.wait(timeout=5)
        if table.identity in self.errors:
            raise self.errors[table.identity]
        return [dict(row) for row in self.rows.get(table.identity, [])]

    def cancel(self) -> None:
        self.cancel_calls += 1


class RecordingSink:
    """Sink that records applied rows and fails for rows matching a predicate."""

    def __init__(self, fail_when: Optional[Callable[[TableDescriptor, dict], bool]] = None):
        self.fail_when = fail_when
        self.applied: List[Tuple[str, dict]] = []

    def apply_row(self, table: TableDescriptor, row: dict) -> None:
        if self.fail_when is not None and self.fail_when(table, row):
            raise RuntimeError(f"rejected {table.identity} {row}")
        self.applied.append((table.identity, dict(row)))


@pytest.fixture(autouse=True)
def reset_correlation():
    """Ensure no merge ID leaks between tests."""
    clear_correlation_id()
    yield
    clear_correlation_id()


@pytest.fixture
def users_table():
    return TableDescriptor("public", "users", ("id",))


@pytest.fixture
def orders_table():
    return TableDescriptor("public", "orders", ("id",))


@pytest.fixture
def order_items_table():
    return TableDescriptor("public", "order_items", ("order_id", "line_no"))


@pytest.fixture
def shop_edges():
    return [
        ForeignKeyEdge("public", "orders", "public", "users"),
        ForeignKeyEdge("public", "order_items", "public", "orders"),
    ]


@pytest.fixture
def make_source():
    return FakeRowSource


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_sink():
    return RecordingSink
