"""
Cost Tree - In-memory index over one project's cost-control nodes.

Built fresh from the repository for every run; never cached across calls.
Nodes are the ORM rows themselves, so attribute changes made through the
tree are picked up by the session that loaded them.
"""
from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Optional

from costcontrol.domain.exceptions import InvariantViolationError


class CostTree:
    """
    Parent/child index over cost-control nodes of a single project.

    Holds live and soft-deleted nodes; traversal helpers skip deleted
    nodes unless asked otherwise.
    """

    def __init__(self, project_id: str, nodes: Iterable = ()):
        self.project_id = project_id
        self._nodes: Dict[str, object] = {}
        self._children: Dict[Optional[str], List[object]] = defaultdict(list)
        for node in nodes:
            self.add(node)

    # =========================================================================
    # Mutation of the index
    # =========================================================================

    def add(self, node) -> None:
        """Register a node (new or loaded)."""
        if node.id in self._nodes:
            raise ValueError(f"Node {node.id} already registered")
        self._nodes[node.id] = node
        self._children[node.parent_id].append(node)

    def reparent(self, node, new_parent_id: Optional[str]) -> Optional[str]:
        """Move a node under another parent; returns the old parent id."""
        old_parent_id = node.parent_id
        if old_parent_id == new_parent_id:
            return old_parent_id
        siblings = self._children[old_parent_id]
        self._children[old_parent_id] = [n for n in siblings if n.id != node.id]
        node.parent_id = new_parent_id
        self._children[new_parent_id].append(node)
        return old_parent_id

    # =========================================================================
    # Lookup
    # =========================================================================

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: Optional[str]):
        if node_id is None:
            return None
        return self._nodes.get(node_id)

    def all_nodes(self) -> List:
        return list(self._nodes.values())

    def live_nodes(self) -> List:
        return [n for n in self._nodes.values() if not n.is_deleted]

    def children(self, node_id: Optional[str], include_deleted: bool = False) -> List:
        """Direct children ordered by order_index."""
        kids = self._children.get(node_id, [])
        if not include_deleted:
            kids = [k for k in kids if not k.is_deleted]
        return sorted(kids, key=lambda k: (k.order_index or 0, k.id))

    def roots(self) -> List:
        """Live level-0 nodes (and any live node whose parent is missing)."""
        return [
            n for n in self.live_nodes()
            if n.parent_id is None or n.parent_id not in self._nodes
        ]

    def parent(self, node):
        return self.get(node.parent_id)

    def ancestors(self, node_id: str) -> Iterator:
        """
        Yield ancestors from the immediate parent up to the root.

        Raises:
            InvariantViolationError: if the parent links form a cycle
        """
        node = self.get(node_id)
        if node is None:
            return
        seen = {node.id}
        current = self.get(node.parent_id)
        while current is not None:
            if current.id in seen:
                raise InvariantViolationError(
                    "acyclic_tree",
                    "parent links form a forest",
                    f"cycle through node {current.id}",
                )
            seen.add(current.id)
            yield current
            current = self.get(current.parent_id)

    def descendants(self, node_id: str, include_deleted: bool = True) -> List:
        """All nodes below node_id, parents before children."""
        result = []
        seen = {node_id}
        stack = list(reversed(self.children(node_id, include_deleted=include_deleted)))
        while stack:
            child = stack.pop()
            if child.id in seen:
                raise InvariantViolationError(
                    "acyclic_tree",
                    "parent links form a forest",
                    f"cycle through node {child.id}",
                )
            seen.add(child.id)
            result.append(child)
            stack.extend(reversed(self.children(child.id, include_deleted=include_deleted)))
        return result

    def live_by_source_ref(self) -> Dict[str, List]:
        """Live nodes grouped by source_ref (manual nodes omitted)."""
        grouped: Dict[str, List] = defaultdict(list)
        for node in self.live_nodes():
            if node.source_ref is not None:
                grouped[node.source_ref].append(node)
        return dict(grouped)

    def has_live_children(self, node_id: str) -> bool:
        return any(not k.is_deleted for k in self._children.get(node_id, []))

    def next_order_index(self, parent_id: Optional[str]) -> int:
        """Order index placing a new node after all existing siblings."""
        siblings = self._children.get(parent_id, [])
        if not siblings:
            return 0
        return max((s.order_index or 0) for s in siblings) + 1

    def post_order(self) -> List:
        """Live nodes, children before parents."""
        ordered = []
        for root in self.roots():
            ordered.extend(reversed([root] + self.descendants(root.id, include_deleted=False)))
        return ordered
