"""
Aggregation Engine - Bottom-up budget roll-up for the cost-control tree.

Implements the aggregation rules:
- Leaf: bo_amount is authoritative (from the estimate or a manual edit)
- Parent: bo_amount = Σ(live children bo_amount)
- is_parent is true iff at least one live child exists

The cascade walks parent links all the way to the root, whatever the depth.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from costcontrol.domain.entities import DETAIL_LEVEL
from costcontrol.domain.exceptions import CostNodeNotFoundError
from costcontrol.domain.money import amounts_differ, cents_to_display
from costcontrol.domain.tree import CostTree

logger = logging.getLogger(__name__)


@dataclass
class InvariantViolation:
    """One failed invariant check on one node."""
    invariant: str
    node_id: str
    message: str


class AggregationEngine:
    """
    Recomputes derived budget totals on a CostTree.

    Ensures mathematical invariants:
    - Parent.bo_amount = Σ(Child.bo_amount | parent_id = Parent.id, not deleted)
    - Child.level = Parent.level + 1
    - Parent links form a forest
    - Parent.is_parent = ∃ live child
    - At most one live node per source_ref
    """

    def __init__(self, epsilon_cents: int = 1):
        self.epsilon_cents = epsilon_cents

    # =========================================================================
    # Single-node recompute
    # =========================================================================

    def recompute_node(self, tree: CostTree, node) -> bool:
        """
        Recompute one node as the sum of its direct live children.

        A node with no live children gets 0 and is_parent False.

        Returns:
            True if bo_amount or is_parent changed
        """
        children = tree.children(node.id)
        has_children = bool(children)
        changed = False

        total = sum(c.bo_amount_cents or 0 for c in children)
        if amounts_differ(node.bo_amount_cents, total, self.epsilon_cents):
            logger.debug(
                "Recomputed %s (%s): %s -> %s", node.name, node.id,
                cents_to_display(node.bo_amount_cents), cents_to_display(total),
            )
            node.bo_amount_cents = total
            changed = True

        if bool(node.is_parent) != has_children:
            node.is_parent = has_children
            changed = True

        return changed

    def recompute_ancestors(
        self,
        tree: CostTree,
        changed_node_id: str,
        stop_early: bool = False,
    ) -> List[str]:
        """
        Walk from a changed node to its root, recomputing every ancestor.

        Args:
            tree: Project tree holding the node
            changed_node_id: Node whose amount or membership changed
            stop_early: Stop at the first ancestor whose value is unchanged.
                Only safe when the tree was consistent before the change.

        Returns:
            Ids of ancestors whose stored values changed, nearest first

        Raises:
            CostNodeNotFoundError: if the node is not in the tree
            InvariantViolationError: if the parent links form a cycle
        """
        if changed_node_id not in tree:
            raise CostNodeNotFoundError(changed_node_id)

        changed: List[str] = []
        for ancestor in tree.ancestors(changed_node_id):
            if ancestor.is_deleted:
                # A deleted ancestor keeps its last values; live ones above still need the walk
                continue
            if self.recompute_node(tree, ancestor):
                changed.append(ancestor.id)
            elif stop_early:
                break
        return changed

    def recompute_parent_chain(self, tree: CostTree, parent_id: Optional[str]) -> List[str]:
        """
        Recompute a node that lost or gained children, then its ancestors.

        Returns:
            Ids of nodes whose stored values changed
        """
        node = tree.get(parent_id)
        if node is None:
            return []
        changed: List[str] = []
        if not node.is_deleted and self.recompute_node(tree, node):
            changed.append(node.id)
        changed.extend(self.recompute_ancestors(tree, node.id))
        return changed

    def recompute_from(self, tree: CostTree, node_ids, stop_early: bool = False) -> List[str]:
        """Recompute ancestors of several changed nodes; returns changed ids without repeats."""
        changed: List[str] = []
        seen = set()
        for node_id in node_ids:
            for ancestor_id in self.recompute_ancestors(tree, node_id, stop_early=stop_early):
                if ancestor_id not in seen:
                    seen.add(ancestor_id)
                    changed.append(ancestor_id)
        return changed

    # =========================================================================
    # Whole-tree recompute
    # =========================================================================

    def recompute_all(self, tree: CostTree) -> List[str]:
        """
        Recompute every live parent bottom-up without touching leaf amounts.

        Childless nodes keep their amount unless they were imported above
        the detail level, where the amount is always derived.

        Returns:
            Ids of nodes whose stored values changed
        """
        changed = []
        for node in tree.post_order():
            derived = tree.has_live_children(node.id) or (
                node.source_ref is not None and node.level < DETAIL_LEVEL
            )
            if derived:
                touched = self.recompute_node(tree, node)
            else:
                touched = self.refresh_is_parent(tree, node.id)
            if touched:
                changed.append(node.id)
        return changed

    def recompute_stale(self, tree: CostTree) -> List[str]:
        """
        Bring every live parent back to the sum of its children, bottom-up.

        Unlike recompute_all, childless nodes are left alone.

        Returns:
            Ids of parents whose stored values changed
        """
        changed = []
        for node in tree.post_order():
            if tree.has_live_children(node.id) and self.recompute_node(tree, node):
                changed.append(node.id)
        return changed

    def refresh_is_parent(self, tree: CostTree, node_id: Optional[str]) -> bool:
        """Bring is_parent in line with live children without touching amounts."""
        node = tree.get(node_id)
        if node is None:
            return False
        has_children = tree.has_live_children(node.id)
        if bool(node.is_parent) != has_children:
            node.is_parent = has_children
            return True
        return False

    # =========================================================================
    # Verification
    # =========================================================================

    def verify(self, tree: CostTree, check_sums: bool = True) -> List[InvariantViolation]:
        """
        Check the structural and numeric invariants of a tree.

        Args:
            tree: Project tree
            check_sums: Include the parent-sum check (skipped when a run
                intentionally deferred recomputation)

        Returns:
            List of violations, empty when the tree is consistent
        """
        violations: List[InvariantViolation] = []

        for node in tree.live_nodes():
            parent = tree.parent(node)
            if node.parent_id is not None and parent is None:
                violations.append(InvariantViolation(
                    "parent_exists", node.id, f"parent {node.parent_id} is not in project {tree.project_id}"
                ))
            if parent is not None:
                if parent.is_deleted:
                    violations.append(InvariantViolation(
                        "live_under_deleted", node.id, f"parent {parent.id} is deleted"
                    ))
                if node.level != parent.level + 1:
                    violations.append(InvariantViolation(
                        "level_step", node.id,
                        f"level {node.level} under parent level {parent.level}",
                    ))
            elif node.level != 0:
                violations.append(InvariantViolation(
                    "root_level", node.id, f"root node has level {node.level}"
                ))

            has_children = tree.has_live_children(node.id)
            if bool(node.is_parent) != has_children:
                violations.append(InvariantViolation(
                    "is_parent", node.id, f"is_parent={node.is_parent} but live children={has_children}"
                ))

            if check_sums and has_children:
                total = sum(c.bo_amount_cents or 0 for c in tree.children(node.id))
                if amounts_differ(node.bo_amount_cents, total, self.epsilon_cents):
                    violations.append(InvariantViolation(
                        "parent_sum", node.id,
                        f"bo_amount {node.bo_amount_cents} != children sum {total}",
                    ))

        for source_ref, nodes in tree.live_by_source_ref().items():
            for extra in sorted(nodes, key=lambda n: n.id)[1:]:
                violations.append(InvariantViolation(
                    "unique_source_ref", extra.id,
                    f"{len(nodes)} live nodes share source_ref {source_ref}",
                ))

        for node in tree.all_nodes():
            seen = {node.id}
            current = tree.get(node.parent_id)
            while current is not None:
                if current.id in seen:
                    violations.append(InvariantViolation(
                        "acyclic_tree", node.id, f"cycle through node {current.id}"
                    ))
                    break
                seen.add(current.id)
                current = tree.get(current.parent_id)

        return violations
