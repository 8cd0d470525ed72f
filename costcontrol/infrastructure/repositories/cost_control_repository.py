"""
Cost Control Repository - Data access layer for cost-control nodes.

The only component that writes cost_control_items rows. Callers run every
write of one operation inside a single UnitOfWork; this class never commits.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from costcontrol.models import CostControlItem, CostControlSyncRun
from costcontrol.domain.exceptions import CostNodeNotFoundError
from costcontrol.domain.tree import CostTree
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CostControlRepository(BaseRepository[CostControlItem]):
    """
    Repository for cost-control nodes.

    Soft delete is the normal removal path; hard delete exists only for the
    project reset maintenance operation.
    """

    def __init__(self, session: Session):
        super().__init__(session, CostControlItem)

    def get_required(self, node_id: str) -> CostControlItem:
        """
        Get a node or raise.

        Raises:
            CostNodeNotFoundError: if no node has this id
        """
        node = self.get_by_id(node_id)
        if node is None:
            raise CostNodeNotFoundError(node_id)
        return node

    def get_by_project(self, project_id: str, include_deleted: bool = False) -> List[CostControlItem]:
        """
        Get all nodes of a project ordered for top-down processing.

        Args:
            project_id: Project identifier
            include_deleted: Include soft-deleted rows

        Returns:
            List of nodes ordered by level, order_index
        """
        query = self.session.query(CostControlItem).filter(
            CostControlItem.project_id == project_id
        )
        if not include_deleted:
            query = query.filter(CostControlItem.is_deleted.is_(False))
        return query.order_by(
            CostControlItem.level,
            CostControlItem.order_index,
            CostControlItem.created_at,
        ).all()

    def load_tree(self, project_id: str) -> CostTree:
        """
        Load a project's cost-control forest, soft-deleted rows included.

        Args:
            project_id: Project identifier

        Returns:
            CostTree over the project's nodes
        """
        nodes = self.get_by_project(project_id, include_deleted=True)
        logger.debug("Loaded %d cost control items for project %s", len(nodes), project_id)
        return CostTree(project_id, nodes)

    def find_by_source_ref(self, project_id: str, source_ref: str) -> Optional[CostControlItem]:
        """
        Get the live node generated from a source row.

        When legacy duplicates exist the earliest-created one is returned,
        which is also the one deduplication keeps.
        """
        return self.session.query(CostControlItem).filter(
            CostControlItem.project_id == project_id,
            CostControlItem.source_ref == source_ref,
            CostControlItem.is_deleted.is_(False),
        ).order_by(CostControlItem.created_at, CostControlItem.id).first()

    def create(
        self,
        project_id: str,
        name: str,
        level: int,
        parent_id: Optional[str] = None,
        bo_amount_cents: int = 0,
        order_index: int = 0,
        source_ref: Optional[str] = None,
        import_date: Optional[datetime] = None,
    ) -> CostControlItem:
        """
        Create a node and flush it so its id is usable as a parent id.

        Args:
            project_id: Owning project
            name: Display label
            level: Tree depth (0 for roots)
            parent_id: Parent node id, None for roots
            bo_amount_cents: Initial budget
            order_index: Position among siblings
            source_ref: Estimate row id for imported nodes
            import_date: Set for imported nodes

        Returns:
            Created node
        """
        node = CostControlItem(
            project_id=project_id,
            parent_id=parent_id,
            name=name,
            level=level,
            bo_amount_cents=bo_amount_cents,
            order_index=order_index,
            source_ref=source_ref,
            imported_from_estimate=source_ref is not None,
            import_date=import_date,
            is_parent=False,
            is_deleted=False,
            created_at=datetime.utcnow(),
        )
        return self.upsert(node)

    def upsert(self, node: CostControlItem) -> CostControlItem:
        """
        Insert a new node or write pending changes of a loaded one.

        Args:
            node: Node to persist

        Returns:
            The persisted node
        """
        if node not in self.session:
            self.session.add(node)
        self.session.flush()
        return node

    def upsert_all(self, nodes: List[CostControlItem]) -> None:
        """Persist several nodes with one flush."""
        for node in nodes:
            if node not in self.session:
                self.session.add(node)
        self.session.flush()

    def soft_delete(self, node_id: str) -> CostControlItem:
        """
        Mark a node deleted. Children are not touched; callers cascade.

        Raises:
            CostNodeNotFoundError: if no node has this id
        """
        node = self.get_required(node_id)
        if not node.is_deleted:
            node.is_deleted = True
            node.is_parent = False
            self.session.flush()
        return node

    def count_for_project(self, project_id: str, include_deleted: bool = True) -> int:
        """Count a project's nodes."""
        query = self.session.query(CostControlItem).filter(
            CostControlItem.project_id == project_id
        )
        if not include_deleted:
            query = query.filter(CostControlItem.is_deleted.is_(False))
        return query.count()

    def record_run(self, project_id: str, run_type: str, started_at: datetime, **counts) -> CostControlSyncRun:
        """
        Append an audit row for a completed run.

        Args:
            project_id: Project the run touched
            run_type: sync, reset or recalculate
            started_at: When the run began
            **counts: Remaining CostControlSyncRun columns (counts, warning, ...)
        """
        run = CostControlSyncRun(
            project_id=project_id,
            run_type=run_type,
            status='completed',
            started_at=started_at,
            finished_at=datetime.utcnow(),
            **counts,
        )
        self.session.add(run)
        self.session.flush()
        return run

    def hard_delete_project(self, project_id: str) -> int:
        """
        Physically delete every node of a project.

        Parent links are cleared first so the self-referencing foreign key
        never blocks the delete.

        Returns:
            Number of rows deleted
        """
        self.session.execute(
            update(CostControlItem)
            .where(CostControlItem.project_id == project_id)
            .values(parent_id=None)
            .execution_options(synchronize_session=False)
        )
        deleted = self.session.query(CostControlItem).filter(
            CostControlItem.project_id == project_id
        ).delete(synchronize_session=False)
        self.session.expire_all()
        logger.info("Hard-deleted %d cost control items for project %s", deleted, project_id)
        return deleted
