"""Minimal directed acyclic graph used to validate task dependencies."""

from __future__ import annotations


class DagError(Exception):
    """Base for graph construction failures."""


class EntityNotFoundError(DagError):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"entity '{node_id}' not found")


class EntityExistsError(DagError):
    def __init__(self, node_id: str) -> None:
        self.node_id = node_id
        super().__init__(f"entity '{node_id}' already exists")


class EdgeCreatesCycleError(DagError):
    def __init__(self, from_id: str, to_id: str) -> None:
        self.from_id = from_id
        self.to_id = to_id
        super().__init__(f"edge {from_id} -> {to_id} would create a cycle")


class Dag:
    """Nodes with outgoing edges; ``add_edge`` refuses edges that would close a cycle."""

    def __init__(self) -> None:
        self._edges: dict[str, list[str]] = {}

    def add_node(self, node_id: str) -> None:
        if node_id in self._edges:
            raise EntityExistsError(node_id)
        self._edges[node_id] = []

    def add_edge(self, from_id: str, to_id: str) -> None:
        for node_id in (from_id, to_id):
            if node_id not in self._edges:
                raise EntityNotFoundError(node_id)
        if self._reaches(to_id, from_id):
            raise EdgeCreatesCycleError(from_id, to_id)
        self._edges[from_id].append(to_id)

    def exists(self, node_id: str) -> bool:
        return node_id in self._edges

    def edges(self, node_id: str) -> list[str]:
        if node_id not in self._edges:
            raise EntityNotFoundError(node_id)
        return list(self._edges[node_id])

    def _reaches(self, start: str, target: str) -> bool:
        """Whether ``target`` is reachable from ``start`` (a node reaches itself)."""
        stack = [start]
        seen: set[str] = set()
        while stack:
            node = stack.pop()
            if node == target:
                return True
            if node in seen:
                continue
            seen.add(node)
            stack.extend(self._edges[node])
        return False

    def __len__(self) -> int:
        return len(self._edges)
