"""
Source Entity - Read-only view of one estimate row.

Purpose: Give the engine a uniform shape for structures, elements and
detail items so synchronization never touches the estimate tables directly.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

STRUCTURE_LEVEL = 0
ELEMENT_LEVEL = 1
DETAIL_LEVEL = 2
SOURCE_LEVELS = (STRUCTURE_LEVEL, ELEMENT_LEVEL, DETAIL_LEVEL)


@dataclass(frozen=True)
class SourceEntity:
    """
    One estimate row as seen by the cost-control engine.

    Attributes:
        id: Estimate row id (becomes the node's source_ref)
        level: 0 structure, 1 element, 2 detail item
        parent_source_ref: Id of the estimate parent, None for structures
        name: Display label
        computed_amount_cents: quantity x rate for detail items, stored amount otherwise
        order_index: Position among siblings in the estimate
    """

    id: str
    level: int
    parent_source_ref: Optional[str]
    name: str
    computed_amount_cents: int = 0
    order_index: int = 0


@dataclass
class EstimateSnapshot:
    """
    Point-in-time copy of a project's estimate hierarchy.

    Entities are ordered by level ascending, then order_index.
    """

    project_id: str
    entities: List[SourceEntity] = field(default_factory=list)

    def __post_init__(self):
        self._by_id: Dict[str, SourceEntity] = {e.id: e for e in self.entities}

    def __len__(self) -> int:
        return len(self.entities)

    def __iter__(self):
        return iter(self.entities)

    def get(self, source_ref: str) -> Optional[SourceEntity]:
        return self._by_id.get(source_ref)

    def __contains__(self, source_ref: str) -> bool:
        return source_ref in self._by_id

    def at_level(self, level: int) -> List[SourceEntity]:
        return [e for e in self.entities if e.level == level]

    def valid_refs_by_level(self) -> Dict[int, Set[str]]:
        """Source ids grouped by level, the valid-set input of orphan filtering."""
        refs: Dict[int, Set[str]] = defaultdict(set)
        for entity in self.entities:
            refs[entity.level].add(entity.id)
        return {level: refs.get(level, set()) for level in SOURCE_LEVELS}

    def counts_by_level(self) -> Dict[int, int]:
        return {level: len(ids) for level, ids in self.valid_refs_by_level().items()}

    @classmethod
    def from_entities(cls, project_id: str, entities: Iterable[SourceEntity]) -> "EstimateSnapshot":
        ordered = sorted(entities, key=lambda e: (e.level, e.order_index, e.id))
        return cls(project_id=project_id, entities=ordered)
