"""Tests for the rule dependency graph."""

import pytest

from core.errors import DependencyCycleError
from rules.dependency_graph import DependencyGraph


class TestDependencyGraph:
    """Tests for DependencyGraph."""

    def test_dependencies_of(self):
        graph = DependencyGraph({"allotment": ["deduction", "income_limit"], "income_limit": ["deduction"]})
        assert graph.dependencies_of("allotment") == {"deduction", "income_limit"}
        assert graph.dependencies_of("deduction") == set()

    def test_transitive_dependents(self):
        """Test dependents are found through intermediate rules."""
        graph = DependencyGraph({"b": ["a"], "c": ["b"], "d": ["a"], "e": ["x"]})
        assert graph.transitive_dependents("a") == {"b", "c", "d"}
        assert graph.transitive_dependents("c") == set()

    def test_find_path(self):
        graph = DependencyGraph({"c": ["b"], "b": ["a"]})
        assert graph.find_path("c", "a") == ["c", "b", "a"]
        assert graph.find_path("a", "c") is None

    def test_cycle_rejected(self):
        """Test an edge closing a cycle raises and leaves the graph unchanged."""
        graph = DependencyGraph({"b": ["a"], "c": ["b"]})

        with pytest.raises(DependencyCycleError) as exc_info:
            graph.set_dependencies("a", ["c"])

        assert exc_info.value.cycle == ["a", "c", "b", "a"]
        assert graph.dependencies_of("a") == set()

    def test_self_dependency_rejected(self):
        graph = DependencyGraph()
        with pytest.raises(DependencyCycleError):
            graph.set_dependencies("a", ["a"])

    def test_set_dependencies_replaces_edges(self):
        graph = DependencyGraph({"b": ["a"]})
        graph.set_dependencies("b", ["c"])
        assert graph.dependencies_of("b") == {"c"}
        assert graph.transitive_dependents("a") == set()

    def test_topological_order(self):
        """Test every dependency precedes its dependents."""
        graph = DependencyGraph({"allotment": ["deduction", "income_limit"], "income_limit": ["deduction"]})
        order = graph.topological_order()
        assert order.index("deduction") < order.index("income_limit") < order.index("allotment")

    def test_contains(self):
        graph = DependencyGraph({"b": ["a"]})
        assert "a" in graph
        assert "b" in graph
        assert "z" not in graph
