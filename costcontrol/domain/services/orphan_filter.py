"""
Orphan Filter - Finds cost-control nodes whose estimate row is gone.

A node is orphaned when its source_ref is missing from the valid set of its
level. Everything below an orphan is orphaned with it, even if a descendant's
own source row still exists.

Existence checks are batched: one query per level, never one per node.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

logger = logging.getLogger(__name__)


@dataclass
class OrphanClassification:
    """Result of classifying nodes against the source hierarchy."""
    valid: List = field(default_factory=list)
    orphaned: List = field(default_factory=list)

    @property
    def orphaned_ids(self) -> Set[str]:
        return {n.id for n in self.orphaned}


class OrphanFilter:
    """Classifies cost-control nodes as valid or orphaned."""

    @staticmethod
    def collect_source_refs(nodes: Iterable) -> Dict[int, Set[str]]:
        """Group the non-null source refs of live nodes by level."""
        refs: Dict[int, Set[str]] = defaultdict(set)
        for node in nodes:
            if node.source_ref is not None and not node.is_deleted:
                refs[node.level].add(node.source_ref)
        return dict(refs)

    def filter_valid(
        self,
        nodes: Iterable,
        valid_source_refs_by_level: Dict[int, Set[str]],
    ) -> OrphanClassification:
        """
        Split live nodes into valid and orphaned.

        Args:
            nodes: Nodes of one project (deleted nodes are ignored)
            valid_source_refs_by_level: Existing source ids per level; a level
                missing from the mapping has no valid ids

        Returns:
            OrphanClassification with orphans listed parents first
        """
        live = [n for n in nodes if not n.is_deleted]
        by_parent: Dict = defaultdict(list)
        for node in live:
            by_parent[node.parent_id].append(node)

        directly_orphaned = [
            n for n in live
            if n.source_ref is not None
            and n.source_ref not in valid_source_refs_by_level.get(n.level, set())
        ]

        orphaned_ids: Set[str] = set()
        orphaned: List = []
        stack = list(reversed(directly_orphaned))
        while stack:
            node = stack.pop()
            if node.id in orphaned_ids:
                continue
            orphaned_ids.add(node.id)
            orphaned.append(node)
            stack.extend(reversed(by_parent.get(node.id, [])))

        valid = [n for n in live if n.id not in orphaned_ids]

        if orphaned:
            logger.info(
                "Found %d orphaned cost control items (%d directly, %d by cascade)",
                len(orphaned), len(directly_orphaned), len(orphaned) - len(directly_orphaned),
            )
        return OrphanClassification(valid=valid, orphaned=orphaned)

    def classify_against_store(self, nodes: Iterable, reader, project_id: str) -> OrphanClassification:
        """
        Classify a project's nodes by asking the source store which refs exist.

        Args:
            nodes: Nodes of the project
            reader: EstimateSnapshotReader (one existence query per level)
            project_id: Project the nodes belong to
        """
        nodes = [n for n in nodes if not n.is_deleted]
        refs_by_level = self.collect_source_refs(nodes)
        existing = reader.existing_source_refs(project_id, refs_by_level)
        return self.filter_valid(nodes, existing)
