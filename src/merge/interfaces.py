"""
Capability interfaces consumed by the merge orchestrator.

A RowSource is read-only and one instance exists per node. The RowSink is the
only writer; it must make both nodes converge on the given row and applying
the same row twice must leave the same end state.
"""

from typing import List, Protocol

from src.merge.models import RowSnapshot, TableDescriptor


class RowSource(Protocol):
    def fetch_rows(self, table: TableDescriptor) -> List[RowSnapshot]:
        """Return every row of the table as of a consistent point in time."""
        ...

    def cancel(self) -> None:
        """
        Ask an in-flight fetch_rows call to stop.

        Called from another thread when the orchestrator gives up on a fetch
        (timeout, cancellation, or the other node failing). A no-op when
        nothing is running.
        """
        ...


class RowSink(Protocol):
    def apply_row(self, table: TableDescriptor, row: RowSnapshot) -> None:
        """Write or overwrite the logical row identified by its key columns."""
        ...
