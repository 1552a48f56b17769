from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator


N = TypeVar("N")


@dataclass
class _CycleNode:
    visited: bool = False
    on_stack: bool = False


class Graph(Generic[N]):
    """Append-only directed graph of nodes identified by their insertion order.

    Edges are not stored: `edges_from(node)` is asked for the orders of the
    nodes a node depends on, so the graph always reflects the current state of
    whatever derives the edges.
    """

    def __init__(self, edges_from: Callable[[N], Iterable[int]]) -> None:
        self._nodes: list[N] = []
        self._edges_from = edges_from

    def add(self, node: N) -> int:
        """Add a node and return its order."""
        order = len(self._nodes)
        self._nodes.append(node)
        return order

    def pop(self) -> N:
        """Remove the last added node."""
        return self._nodes.pop()

    @property
    def order(self) -> int:
        """Total number of nodes in the graph."""
        return len(self._nodes)

    def node(self, order: int) -> N:
        return self._nodes[order]

    def __iter__(self) -> Iterator[N]:
        return iter(self._nodes)

    def edges_from(self, u: int) -> list[int]:
        return list(self._edges_from(self._nodes[u]))

    def is_acyclic(self) -> tuple[bool, list[int]]:
        """Depth-first search for cycles.

        If a cycle is found, returns the orders of the nodes in the cyclic path,
        the first node repeated at the end (``1 -> 2 -> 1`` gives ``[1, 2, 1]``).
        """
        info = [_CycleNode() for _ in range(self.order)]

        for u in range(self.order):
            for node in info:
                node.on_stack = False

            cycle = self._visit(u, info, [])
            if cycle:
                return False, cycle

        return True, []

    def _visit(self, u: int, info: list[_CycleNode], path: list[int]) -> list[int]:
        # Already verified that there are no cycles from this node.
        if info[u].visited:
            return []
        info[u].visited = True
        info[u].on_stack = True

        path = [*path, u]
        for v in self.edges_from(u):
            if not info[v].visited:
                cycle = self._visit(v, info, path)
                if cycle:
                    return cycle
            elif info[v].on_stack:
                # Found a cycle with a full path back: prune it down to the cyclic nodes.
                start = len(path) - 1 - path[::-1].index(v)
                return [*path[start:], v]

        info[u].on_stack = False
        return []
