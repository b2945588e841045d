"""
Unit tests for foreign-key dependency ordering.
"""

import pytest

from src.merge.errors import CyclicDependency
from src.merge.graph import DependencySorter, sort_tables
from src.merge.models import ForeignKeyEdge, TableDescriptor


def table(name, schema="public"):
    return TableDescriptor(schema, name, ("id",))


def edge(child, parent, schema="public"):
    return ForeignKeyEdge(schema, child, schema, parent)


def identities(tables):
    return [t.identity for t in tables]


class TestDependencySorter:
    """Test topological ordering of tables."""

    @pytest.fixture
    def sorter(self):
        return DependencySorter()

    def test_parents_come_before_children(self, sorter):
        """Test that every edge points forward in the result."""
        tables = [table("order_items"), table("orders"), table("users")]
        edges = [edge("orders", "users"), edge("order_items", "orders")]

        result = identities(sorter.sort(tables, edges))

        assert result == ["public.users", "public.orders", "public.order_items"]

    def test_topological_validity_on_diamond(self, sorter):
        """Test a diamond-shaped graph yields a valid order."""
        tables = [table("d"), table("c"), table("b"), table("a")]
        edges = [edge("b", "a"), edge("c", "a"), edge("d", "b"), edge("d", "c")]

        result = identities(sorter.sort(tables, edges))
        position = {name: i for i, name in enumerate(result)}

        for e in edges:
            assert position[e.parent_identity] < position[e.child_identity]
        assert result == ["public.a", "public.b", "public.c", "public.d"]

    def test_independent_tables_sorted_lexicographically(self, sorter):
        """Test that ties are broken by identity."""
        tables = [table("zeta"), table("alpha"), table("mid", schema="archive")]

        result = identities(sorter.sort(tables, []))

        assert result == ["archive.mid", "public.alpha", "public.zeta"]

    def test_order_is_deterministic(self, sorter):
        """Test that input order does not change the result."""
        tables = [table("c"), table("a"), table("b"), table("d")]
        edges = [edge("d", "a"), edge("c", "b")]

        first = identities(sorter.sort(tables, edges))
        second = identities(sorter.sort(list(reversed(tables)), list(reversed(edges))))

        assert first == second

    def test_empty_input(self, sorter):
        assert sorter.sort([], []) == []

    def test_three_table_cycle_reports_all_tables(self, sorter):
        """Test that a 3-cycle names every blocked table."""
        tables = [table("a"), table("b"), table("c")]
        edges = [edge("a", "b"), edge("b", "c"), edge("c", "a")]

        with pytest.raises(CyclicDependency) as exc_info:
            sorter.sort(tables, edges)

        assert exc_info.value.remaining_tables == ["public.a", "public.b", "public.c"]

    def test_cycle_remaining_excludes_ordered_tables(self, sorter):
        """Test that tables placed before the cycle are not reported."""
        tables = [table("root"), table("x"), table("y")]
        edges = [edge("x", "root"), edge("x", "y"), edge("y", "x")]

        with pytest.raises(CyclicDependency) as exc_info:
            sorter.sort(tables, edges)

        assert exc_info.value.remaining_tables == ["public.x", "public.y"]

    def test_external_parent_is_ignored(self, sorter):
        """Test that edges to tables outside the set do not block sorting."""
        tables = [table("orders")]
        edges = [edge("orders", "users")]

        assert identities(sorter.sort(tables, edges)) == ["public.orders"]

    def test_external_child_is_ignored(self, sorter):
        tables = [table("users")]
        edges = [edge("orders", "users")]

        assert identities(sorter.sort(tables, edges)) == ["public.users"]

    def test_self_reference_does_not_block(self, sorter):
        """Test that a self-referencing table is still ordered."""
        tables = [table("employees"), table("departments")]
        edges = [edge("employees", "employees"), edge("employees", "departments")]

        result = identities(sorter.sort(tables, edges))

        assert result == ["public.departments", "public.employees"]

    def test_duplicate_edges_count_once(self, sorter):
        """Test that repeated constraints between a pair do not corrupt degrees."""
        tables = [table("users"), table("orders")]
        edges = [edge("orders", "users"), edge("orders", "users")]

        assert identities(sorter.sort(tables, edges)) == ["public.users", "public.orders"]

    def test_duplicate_table_raises(self, sorter):
        with pytest.raises(ValueError, match="Duplicate table"):
            sorter.sort([table("users"), table("users")], [])

    def test_returns_original_descriptors(self, sorter):
        """Test that descriptors keep their key columns."""
        composite = TableDescriptor("public", "items", ("order_id", "line_no"))

        result = sorter.sort([composite], [])

        assert result[0] is composite


def test_sort_tables_convenience():
    tables = [table("orders"), table("users")]

    assert identities(sort_tables(tables, [edge("orders", "users")])) == [
        "public.users", "public.orders"
    ]
