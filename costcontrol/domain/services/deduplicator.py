"""
Duplicate Detection for cost-control nodes.

Identifies nodes that stand for the same thing and picks one survivor:
- Imported nodes: same (project, source_ref), wherever they sit in the tree
- Manual nodes: same (project, parent, name)

The survivor is the earliest-created node. Live children of a removed
duplicate move under the survivor, and grouping runs level by level so
children merged under one survivor are deduplicated in turn.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

_LATEST = datetime.max


@dataclass
class DedupeResult:
    """Outcome of deduplication. Nothing is mutated until the caller applies it."""
    kept: List = field(default_factory=list)
    removed: List = field(default_factory=list)
    # (child node, new parent id) for children of removed duplicates
    reparented: List[Tuple[object, str]] = field(default_factory=list)
    # Survivor id for each removed node id
    survivor_of: Dict[str, str] = field(default_factory=dict)

    @property
    def removed_count(self) -> int:
        return len(self.removed)

    @property
    def affected_parent_ids(self) -> List[Optional[str]]:
        """Parents of removed duplicates, whose totals shrink once they go."""
        ids = []
        for node in self.removed:
            if node.parent_id not in ids:
                ids.append(node.parent_id)
        return ids

    @property
    def recompute_start_ids(self) -> List[str]:
        """Nodes whose ancestors need a recompute once the result is applied."""
        ids = []
        seen = set()
        for node_id in list(self.survivor_of.values()) + [child.id for child, _ in self.reparented]:
            if node_id not in seen:
                seen.add(node_id)
                ids.append(node_id)
        return ids


def dedupe_key(node, parent_id: Optional[str] = None) -> tuple:
    """
    Grouping key for a node under the given (effective) parent.

    Imported nodes are keyed project-wide: one estimate row maps to at most
    one live node.
    """
    if node.source_ref is not None:
        return (node.project_id, "source_ref", node.source_ref)
    parent = node.parent_id if parent_id is None else parent_id
    return (node.project_id, parent, "name", (node.name or "").strip())


def choose_survivor(nodes: Iterable):
    """Earliest created node wins; ties broken by id."""
    return min(nodes, key=lambda n: (n.created_at or _LATEST, n.id))


class Deduplicator:
    """Finds duplicate nodes and plans their removal."""

    def dedupe(self, nodes: Iterable) -> DedupeResult:
        """
        Plan duplicate removal across all live nodes of a project.

        Args:
            nodes: Cost-control nodes (deleted nodes are ignored)

        Returns:
            DedupeResult listing survivors, removed duplicates and
            children to move under survivors
        """
        live = [n for n in nodes if not n.is_deleted]
        result = DedupeResult()
        if not live:
            return result

        effective_parent: Dict[str, Optional[str]] = {n.id: n.parent_id for n in live}
        children_of: Dict[Optional[str], List] = defaultdict(list)
        for node in live:
            children_of[node.parent_id].append(node)

        removed_ids = set()
        for level in sorted({n.level for n in live}):
            groups: Dict[tuple, List] = defaultdict(list)
            for node in live:
                if node.level == level and node.id not in removed_ids:
                    groups[dedupe_key(node, effective_parent[node.id])].append(node)

            for key, group in groups.items():
                if len(group) == 1:
                    result.kept.append(group[0])
                    continue

                survivor = choose_survivor(group)
                result.kept.append(survivor)
                for duplicate in group:
                    if duplicate is survivor:
                        continue
                    removed_ids.add(duplicate.id)
                    result.removed.append(duplicate)
                    result.survivor_of[duplicate.id] = survivor.id
                    for child in children_of.get(duplicate.id, []):
                        effective_parent[child.id] = survivor.id
                        result.reparented.append((child, survivor.id))

                logger.info(
                    "Duplicate group %s: keeping %s, removing %d",
                    key[-2:], survivor.id, len(group) - 1,
                )

        # Moved children that turned out to be duplicates themselves are removed, not moved
        result.reparented = [
            (child, new_parent_id) for child, new_parent_id in result.reparented
            if child.id not in removed_ids
        ]
        return result
