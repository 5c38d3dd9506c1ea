"""
Rule dependency graph.

Edges point from a rule lineage to the lineages its formula depends on.
Lineages (not individual versions) are the nodes, so superseding a rule
keeps every dependent pointing at the current version. The graph must
stay acyclic; cycles are rejected when an edge is authored.
"""

import logging
from collections import deque
from typing import Dict, Iterable, List, Optional, Set

from core.errors import DependencyCycleError

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Directed acyclic graph of rule lineages."""

    def __init__(self, edges: Optional[Dict[str, Iterable[str]]] = None):
        self._depends_on: Dict[str, Set[str]] = {}
        self._dependents: Dict[str, Set[str]] = {}
        for node, targets in (edges or {}).items():
            for target in targets:
                self._add_edge(node, target)

    def _add_edge(self, node: str, target: str) -> None:
        self._depends_on.setdefault(node, set()).add(target)
        self._dependents.setdefault(target, set()).add(node)

    def dependencies_of(self, node: str) -> Set[str]:
        """Direct dependencies of a node."""
        return set(self._depends_on.get(node, set()))

    def find_path(self, start: str, goal: str) -> Optional[List[str]]:
        """Path start -> ... -> goal following depends-on edges, if one exists."""
        if start == goal:
            return [start]
        parents: Dict[str, str] = {}
        queue = deque([start])
        seen = {start}
        while queue:
            current = queue.popleft()
            for nxt in sorted(self._depends_on.get(current, ())):
                if nxt in seen:
                    continue
                parents[nxt] = current
                if nxt == goal:
                    path = [goal]
                    while path[-1] != start:
                        path.append(parents[path[-1]])
                    return list(reversed(path))
                seen.add(nxt)
                queue.append(nxt)
        return None

    def set_dependencies(self, node: str, targets: Iterable[str]) -> None:
        """
        Replace a node's outgoing edges.

        Raises:
            DependencyCycleError: If any new edge would close a cycle.
        """
        targets = set(targets)
        for target in sorted(targets):
            # node -> target closes a cycle iff target already reaches node
            path = self.find_path(target, node)
            if path is not None:
                raise DependencyCycleError([node] + path)

        for old in self._depends_on.pop(node, set()):
            self._dependents.get(old, set()).discard(node)
        for target in targets:
            self._add_edge(node, target)

    def transitive_dependents(self, node: str) -> Set[str]:
        """All nodes that depend on node, directly or indirectly."""
        result: Set[str] = set()
        queue = deque([node])
        while queue:
            current = queue.popleft()
            for dependent in self._dependents.get(current, ()):
                if dependent not in result and dependent != node:
                    result.add(dependent)
                    queue.append(dependent)
        return result

    def topological_order(self) -> List[str]:
        """Nodes ordered so every dependency precedes its dependents."""
        nodes = set(self._depends_on) | set(self._dependents)
        in_degree = {n: len(self._depends_on.get(n, ())) for n in nodes}
        queue = deque(sorted(n for n, d in in_degree.items() if d == 0))
        order: List[str] = []
        while queue:
            current = queue.popleft()
            order.append(current)
            for dependent in sorted(self._dependents.get(current, ())):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)
        return order

    def __contains__(self, node: str) -> bool:
        return node in self._depends_on or node in self._dependents
