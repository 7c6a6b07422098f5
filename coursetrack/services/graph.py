"""Prerequisite graph checks.

Edges run from an item to each of its prerequisites.  A cycle means no
item on it could ever unlock, so edits that would create one are refused.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from uuid import UUID

from coursetrack.models.catalog import CourseOutline

_WHITE, _GREY, _BLACK = 0, 1, 2


def prerequisite_edges(outline: CourseOutline) -> dict[UUID, frozenset[UUID]]:
    return {
        item.id: item.prerequisites
        for topic in outline.topics
        for item in topic.contents
    }


def find_cycle(edges: Mapping[UUID, Iterable[UUID]]) -> list[UUID] | None:
    """Return one cycle as a list of ids (first id repeated at the end), or None.

    Iterative three-colour DFS; nodes that only appear as targets are
    treated as leaves.
    """
    color: dict[UUID, int] = {}
    parent: dict[UUID, UUID] = {}

    for root in edges:
        if color.get(root, _WHITE) != _WHITE:
            continue
        stack: list[tuple[UUID, list[UUID]]] = [(root, list(edges.get(root, ())))]
        color[root] = _GREY
        while stack:
            node, pending = stack[-1]
            if not pending:
                color[node] = _BLACK
                stack.pop()
                continue
            nxt = pending.pop()
            state = color.get(nxt, _WHITE)
            if state == _GREY:
                cycle = [nxt, node]
                walk = node
                while walk != nxt:
                    walk = parent[walk]
                    cycle.append(walk)
                cycle.reverse()
                return cycle
            if state == _WHITE:
                color[nxt] = _GREY
                parent[nxt] = node
                stack.append((nxt, list(edges.get(nxt, ()))))
    return None
