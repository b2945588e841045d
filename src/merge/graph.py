"""
Dependency Graph Sorter for Replica Reconciliation

Orders the tables of a merge set so that every parent table is reconciled
before the tables whose foreign keys reference it.

Conventions:
- Edges touching a table outside the merge set are ignored.
- A self-referencing table does not block its own position.
- Ties between ready tables go to the smallest "schema.name", so the same
  input always produces the same order.
"""

import heapq
import logging
from typing import Dict, Iterable, List, Set

from src.merge.errors import CyclicDependency
from src.merge.models import ForeignKeyEdge, TableDescriptor

logger = logging.getLogger(__name__)


class DependencySorter:
    """Topologically sorts tables by foreign-key dependency (Kahn's algorithm)."""

    def sort(
        self,
        tables: Iterable[TableDescriptor],
        edges: Iterable[ForeignKeyEdge]
    ) -> List[TableDescriptor]:
        """
        Sort tables parents-first.

        Args:
            tables: Tables in the merge set
            edges: Foreign-key edges, possibly referencing other tables

        Returns:
            Tables in processing order

        Raises:
            ValueError: If the same table appears twice
            CyclicDependency: If the edges inside the set form a cycle
        """
        by_identity: Dict[str, TableDescriptor] = {}
        for table in tables:
            if table.identity in by_identity:
                raise ValueError(f"Duplicate table in merge set: {table.identity}")
            by_identity[table.identity] = table

        dependents: Dict[str, Set[str]] = {key: set() for key in by_identity}
        in_degree: Dict[str, int] = {key: 0 for key in by_identity}

        for edge in edges:
            parent = edge.parent_identity
            child = edge.child_identity

            if parent not in by_identity or child not in by_identity:
                logger.debug(
                    f"Ignoring foreign key {child} -> {parent}: "
                    f"table outside the merge set"
                )
                continue

            if edge.is_self_reference:
                continue

            # Multi-column or repeated constraints between the same pair count once
            if child in dependents[parent]:
                continue

            dependents[parent].add(child)
            in_degree[child] += 1

        ready = [key for key, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)

        ordered: List[str] = []
        while ready:
            current = heapq.heappop(ready)
            ordered.append(current)

            for child in dependents[current]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    heapq.heappush(ready, child)

        if len(ordered) != len(by_identity):
            placed = set(ordered)
            remaining = [key for key in by_identity if key not in placed]
            logger.error(f"Dependency cycle blocks {len(remaining)} tables: {sorted(remaining)}")
            raise CyclicDependency(remaining)

        logger.info(f"Resolved processing order for {len(ordered)} tables: {ordered}")
        return [by_identity[key] for key in ordered]


def sort_tables(
    tables: Iterable[TableDescriptor],
    edges: Iterable[ForeignKeyEdge]
) -> List[TableDescriptor]:
    """Sort tables parents-first with a default DependencySorter."""
    return DependencySorter().sort(tables, edges)
