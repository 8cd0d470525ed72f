"""
Estimate Snapshot Reader - Read-only access to the estimate hierarchy.

Structures, elements and detail items are flattened into SourceEntity
records. Detail amounts are recomputed as quantity x rate; the denormalized
amount column on detail rows is not trusted.
"""
import logging
from typing import Dict, Iterable, List, Set

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from costcontrol.models import (
    Project, EstimateStructure, EstimateElement, EstimateDetailItem,
)
from costcontrol.domain.entities import (
    SourceEntity, EstimateSnapshot, STRUCTURE_LEVEL, ELEMENT_LEVEL, DETAIL_LEVEL,
)
from costcontrol.domain.exceptions import SourceFetchError
from costcontrol.domain.money import to_cents, line_amount_cents

logger = logging.getLogger(__name__)

# Source table per level
LEVEL_MODELS = {
    STRUCTURE_LEVEL: EstimateStructure,
    ELEMENT_LEVEL: EstimateElement,
    DETAIL_LEVEL: EstimateDetailItem,
}


class EstimateSnapshotReader:
    """
    Reads a project's estimate hierarchy. Never writes.

    Connectivity failures surface as SourceFetchError; retrying is the
    caller's decision.
    """

    def __init__(self, session: Session):
        self.session = session

    def project_exists(self, project_id: str) -> bool:
        """Check whether the project row exists."""
        try:
            return self.session.get(Project, project_id) is not None
        except DBAPIError as e:
            raise SourceFetchError(project_id, str(e.orig or e)) from e

    def read_hierarchy(self, project_id: str) -> EstimateSnapshot:
        """
        Read all three estimate levels of a project.

        Args:
            project_id: Project identifier

        Returns:
            EstimateSnapshot ordered by level, order_index, id

        Raises:
            SourceFetchError: if the estimate tables cannot be read
        """
        try:
            structures = self.session.query(EstimateStructure).filter(
                EstimateStructure.project_id == project_id
            ).all()
            elements = self.session.query(EstimateElement).filter(
                EstimateElement.project_id == project_id
            ).all()
            details = self.session.query(EstimateDetailItem).filter(
                EstimateDetailItem.project_id == project_id
            ).all()
        except DBAPIError as e:
            logger.error("Failed to read estimate hierarchy for project %s: %s", project_id, e)
            raise SourceFetchError(project_id, str(e.orig or e)) from e

        entities: List[SourceEntity] = []
        for s in structures:
            entities.append(SourceEntity(
                id=s.id,
                level=STRUCTURE_LEVEL,
                parent_source_ref=None,
                name=s.name,
                computed_amount_cents=to_cents(s.amount),
                order_index=s.order_index or 0,
            ))
        for e in elements:
            entities.append(SourceEntity(
                id=e.id,
                level=ELEMENT_LEVEL,
                parent_source_ref=e.structure_id,
                name=e.name,
                computed_amount_cents=to_cents(e.amount),
                order_index=e.order_index or 0,
            ))
        for d in details:
            entities.append(SourceEntity(
                id=d.id,
                level=DETAIL_LEVEL,
                parent_source_ref=d.element_id,
                name=d.name,
                computed_amount_cents=line_amount_cents(d.quantity, d.rate),
                order_index=d.order_index or 0,
            ))

        snapshot = EstimateSnapshot.from_entities(project_id, entities)
        counts = snapshot.counts_by_level()
        logger.info(
            "Read estimate for project %s: %d structures, %d elements, %d detail items",
            project_id, counts[STRUCTURE_LEVEL], counts[ELEMENT_LEVEL], counts[DETAIL_LEVEL],
        )
        return snapshot

    def existing_source_refs(
        self,
        project_id: str,
        refs_by_level: Dict[int, Iterable[str]],
    ) -> Dict[int, Set[str]]:
        """
        Return which of the given source ids still exist, per level.

        Issues exactly one query per level that has ids to check.

        Raises:
            SourceFetchError: if the estimate tables cannot be read
        """
        existing: Dict[int, Set[str]] = {level: set() for level in LEVEL_MODELS}
        for level, refs in refs_by_level.items():
            refs = list(refs)
            model = LEVEL_MODELS.get(level)
            if model is None or not refs:
                continue
            try:
                rows = self.session.query(model.id).filter(
                    model.project_id == project_id,
                    model.id.in_(refs),
                ).all()
            except DBAPIError as e:
                raise SourceFetchError(project_id, str(e.orig or e)) from e
            existing[level] = {row[0] for row in rows}
        return existing
