"""
Relation tree building for link queries.

A link query answers with source -> target rows. build_work_item_tree turns
those rows plus the fetched records into a forest of WorkItemTreeNode.
Nodes hold children only, never a parent, and one node object exists per
work item id, so an item reached through two parents is the same node.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from .models import RelationEdge, WorkItem


@dataclass(eq=False)
class WorkItemTreeNode:
    work_item: WorkItem
    children: list[WorkItemTreeNode] = field(default_factory=list)


def build_work_item_tree(
    edges: Iterable[RelationEdge],
    nodes_by_id: Mapping[int, WorkItem],
) -> list[WorkItemTreeNode]:
    """
    Build a forest from relation edges.

    Args:
        edges: Rows of the link query. Rows without a source (the roots of
            a tree query) add no relationship.
        nodes_by_id: Fetched work items keyed by id, in the order roots
            should be returned

    Returns:
        Root nodes: every known item that is never the target of an edge.
        Child ids missing from nodes_by_id are skipped. Items that only
        take part in a cycle with no outside root are not returned.
    """
    nodes = {item_id: WorkItemTreeNode(work_item=item) for item_id, item in nodes_by_id.items()}

    children_of: dict[int, list[int]] = {}
    parent_of: dict[int, int] = {}
    for edge in edges:
        if edge.source_id is None or edge.target_id is None:
            continue
        children_of.setdefault(edge.source_id, []).append(edge.target_id)
        parent_of[edge.target_id] = edge.source_id

    for item_id, node in nodes.items():
        node.children = [nodes[c] for c in children_of.get(item_id, []) if c in nodes]

    return [node for item_id, node in nodes.items() if item_id not in parent_of]


def iter_tree(roots: Iterable[WorkItemTreeNode]) -> Iterator[tuple[WorkItemTreeNode, int]]:
    """
    Yield (node, depth) in depth-first pre-order.

    A node already on the current path is yielded but not expanded again,
    so a cycle below a root terminates.
    """
    on_path: set[int] = set()
    stack: list[tuple[WorkItemTreeNode, int, bool]] = [
        (root, 0, False) for root in reversed(list(roots))
    ]
    while stack:
        node, depth, leaving = stack.pop()
        if leaving:
            on_path.discard(id(node))
            continue
        yield node, depth
        if id(node) in on_path:
            continue
        on_path.add(id(node))
        stack.append((node, depth, True))
        for child in reversed(node.children):
            stack.append((child, depth + 1, False))


def count_work_items(roots: Iterable[WorkItemTreeNode]) -> int:
    """Number of node positions in the forest, an item under two parents counts twice."""
    return sum(1 for _ in iter_tree(roots))


def serialize_tree(roots: Iterable[WorkItemTreeNode]) -> list[dict[str, Any]]:
    """
    Convert a forest to plain dicts for JSON output.

    Each node becomes {"workItem": {...}, "children": [...]}. Built from
    iter_tree, so deep chains do not hit the recursion limit.
    """
    output: list[dict[str, Any]] = []
    # levels[d] is the children list that nodes at depth d are appended to
    levels: list[list[dict[str, Any]]] = [output]
    for node, depth in iter_tree(roots):
        entry: dict[str, Any] = {"workItem": node.work_item.to_dict(), "children": []}
        del levels[depth + 1 :]
        levels[depth].append(entry)
        levels.append(entry["children"])
    return output
