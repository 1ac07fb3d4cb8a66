# src/outline_kit/structure/hierarchy.py

import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import TypeVar

from outline_kit.errors import NodeValidationError
from outline_kit.models import PersistedNode, ResolvedNode

logger = logging.getLogger(__name__)

N = TypeVar("N", ResolvedNode, PersistedNode)


def find_parent(candidates: Iterable[N], node: ResolvedNode | PersistedNode) -> N | None:
    """Pick the parent for ``node`` among shallower ``candidates``.

    The deepest candidate whose range contains the node wins; among equally
    deep ones the latest start is the closest. A node no candidate contains
    stays a root.
    """
    best: N | None = None
    for candidate in candidates:
        if candidate.depth >= node.depth or candidate.id == node.id:
            continue
        if not candidate.contains(node):
            continue
        if best is None or (candidate.depth, candidate.start_offset) > (
            best.depth,
            best.start_offset,
        ):
            best = candidate
    return best


class NodeHierarchyBuilder:
    """Links flat, offset-resolved nodes into a tree by range nesting."""

    def build_hierarchy(self, nodes: Sequence[ResolvedNode]) -> list[ResolvedNode]:
        """Assign ``parent_id`` and widen parents to contain their children.

        Mutates the given nodes and returns them in document order. Start
        offsets are never touched and end offsets only ever grow.
        """
        if not nodes:
            return []

        processed: list[ResolvedNode] = []
        for node in sorted(nodes, key=lambda n: (n.depth, n.start_offset)):
            parent = find_parent(processed, node)
            node.parent_id = parent.id if parent is not None else None
            processed.append(node)

        widened = self.widen_parents(processed)
        roots = sum(1 for n in processed if n.parent_id is None)
        logger.info(
            "Built hierarchy for %d nodes: %d roots, %d parents widened",
            len(processed),
            roots,
            widened,
        )
        return sorted(processed, key=lambda n: (n.start_offset, n.depth))

    @staticmethod
    def widen_parents(nodes: Sequence[ResolvedNode] | Sequence[PersistedNode]) -> int:
        """Walk deepest to shallowest, growing each parent's end to its children's.

        Returns the number of parents whose end offset changed.
        """
        by_id = {n.id: n for n in nodes}
        changed: set[str] = set()
        for node in sorted(nodes, key=lambda n: n.depth, reverse=True):
            parent = by_id.get(node.parent_id) if node.parent_id else None
            if parent is not None and node.end_offset > parent.end_offset:
                logger.debug(
                    "Widening '%s' end %d -> %d to contain '%s'",
                    parent.title,
                    parent.end_offset,
                    node.end_offset,
                    node.title,
                )
                parent.end_offset = node.end_offset
                changed.add(parent.id)
        return len(changed)

    def validate_parent_child_containment(
        self, nodes: Sequence[ResolvedNode] | Sequence[PersistedNode]
    ) -> None:
        """Raise ``NodeValidationError`` if any child leaks out of its parent."""
        by_id = {n.id: n for n in nodes}
        for node in nodes:
            if node.parent_id is None:
                continue
            parent = by_id.get(node.parent_id)
            if parent is None:
                continue
            if not parent.contains(node):
                raise NodeValidationError(
                    f"Child node '{node.title}' [{node.start_offset},{node.end_offset}] "
                    f"is not contained within parent '{parent.title}' "
                    f"[{parent.start_offset},{parent.end_offset}]"
                )
            if node.depth <= parent.depth:
                raise NodeValidationError(
                    f"Child node '{node.title}' depth {node.depth} is not deeper than "
                    f"parent '{parent.title}' depth {parent.depth}"
                )

    @staticmethod
    def children_by_parent(
        nodes: Iterable[PersistedNode],
    ) -> dict[str | None, list[PersistedNode]]:
        grouped: dict[str | None, list[PersistedNode]] = defaultdict(list)
        for node in nodes:
            grouped[node.parent_id].append(node)
        for siblings in grouped.values():
            siblings.sort(key=lambda n: (n.sibling_index, n.start_offset))
        return grouped
