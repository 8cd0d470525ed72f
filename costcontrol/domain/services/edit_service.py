"""
Cost Control Edit Service - Direct user edits of the cost-control tree.

Every edit runs in its own unit of work under the project lock and fails
fast when a synchronization holds it. Edits that change a budget recompute
the ancestors of the changed node before commit.
"""
import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy.orm import Session

from costcontrol.config import CostControlConfig, get_config
from costcontrol.domain.exceptions import (
    CostNodeNotFoundError,
    ProjectNotFoundError,
    ValidationError,
)
from costcontrol.domain.services.aggregation_engine import AggregationEngine
from costcontrol.infrastructure.locks import ProjectLockRegistry, default_lock_registry
from costcontrol.infrastructure.repositories import CostControlRepository, EstimateSnapshotReader
from costcontrol.infrastructure.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

# Entered by users, never written by synchronization
MANUAL_FIELDS = (
    'paid_bills_cents',
    'external_bills_cents',
    'pending_bills_cents',
    'wages_cents',
)


def _check_amount(field: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, "must be an integer number of cents")
    if value < 0:
        raise ValidationError(field, "cannot be negative")


class CostControlEditService:
    """Service for manual changes to cost-control nodes."""

    def __init__(
        self,
        session: Session,
        config: Optional[CostControlConfig] = None,
        lock_registry: Optional[ProjectLockRegistry] = None,
        repository: Optional[CostControlRepository] = None,
        engine: Optional[AggregationEngine] = None,
    ):
        self.session = session
        self.config = config or get_config()
        self.locks = lock_registry or default_lock_registry
        self.repository = repository or CostControlRepository(session)
        self.reader = EstimateSnapshotReader(session)
        self.engine = engine or AggregationEngine(epsilon_cents=self.config.amount_epsilon_cents)

    @contextmanager
    def _edit(self, project_id: str, operation: str):
        """Project lock around a unit of work; yields the unit of work."""
        blocking = not self.config.edit_fail_fast
        with self.locks.hold(
            self.session, project_id,
            blocking=blocking,
            timeout=self.config.import_wait_seconds if blocking else None,
            holder=operation,
        ):
            with UnitOfWork(self.session, operation) as uow:
                yield uow

    def _live_node(self, tree, node_id: str):
        node = tree.get(node_id)
        if node is None or node.is_deleted:
            raise CostNodeNotFoundError(node_id)
        return node

    # =========================================================================
    # Field edits
    # =========================================================================

    def update_manual_fields(self, node_id: str, **values):
        """
        Set paid bills, external bills, pending bills and/or wages.

        Args:
            node_id: Node to edit
            **values: Any of MANUAL_FIELDS in cents; None leaves a field unchanged

        Returns:
            The updated node

        Raises:
            ValidationError: unknown field or negative amount
            CostNodeNotFoundError: unknown or deleted node
        """
        changes = {k: v for k, v in values.items() if v is not None}
        for name, value in changes.items():
            if name not in MANUAL_FIELDS:
                raise ValidationError(name, "is not a manually editable field")
            _check_amount(name, value)

        node = self.repository.get_required(node_id)
        if node.is_deleted:
            raise CostNodeNotFoundError(node_id)

        with self._edit(node.project_id, "update_manual_fields") as uow:
            for name, value in changes.items():
                setattr(node, name, value)
            self.repository.upsert(node)
            uow.commit()

        logger.info("Updated manual fields %s on %s", sorted(changes), node_id)
        return node

    def set_budget_amount(self, node_id: str, amount_cents: int):
        """
        Set the budget of a manual leaf and recompute its ancestors.

        Imported nodes take their budget from the estimate and parents
        derive theirs from children, so both are rejected.

        Raises:
            ValidationError: negative amount, imported node or parent node
            CostNodeNotFoundError: unknown or deleted node
        """
        _check_amount("bo_amount_cents", amount_cents)
        project_id = self.repository.get_required(node_id).project_id

        with self._edit(project_id, "set_budget_amount") as uow:
            tree = self.repository.load_tree(project_id)
            node = self._live_node(tree, node_id)
            if node.source_ref is not None:
                raise ValidationError("bo_amount_cents", "imported nodes take their budget from the estimate")
            if tree.has_live_children(node.id):
                raise ValidationError("bo_amount_cents", "parent budgets are the sum of their children")

            node.bo_amount_cents = amount_cents
            changed = self.engine.recompute_ancestors(tree, node.id)
            self.repository.upsert_all(tree.live_nodes())
            uow.commit()

        logger.info("Set budget of %s to %d cents (%d ancestors changed)", node_id, amount_cents, len(changed))
        return node

    # =========================================================================
    # Structural edits
    # =========================================================================

    def add_manual_node(
        self,
        project_id: str,
        name: str,
        parent_id: Optional[str] = None,
        budget_amount_cents: int = 0,
    ):
        """
        Add a user-entered node at the end of its siblings.

        Args:
            project_id: Owning project
            name: Display label
            parent_id: Parent node, None for a new root
            budget_amount_cents: Initial budget of the new leaf

        Returns:
            The created node

        Raises:
            ProjectNotFoundError: unknown project
            CostNodeNotFoundError: parent missing or deleted
            ValidationError: blank name or negative amount
        """
        if not name or not name.strip():
            raise ValidationError("name", "cannot be blank")
        _check_amount("bo_amount_cents", budget_amount_cents)
        if not self.reader.project_exists(project_id):
            raise ProjectNotFoundError(project_id)

        with self._edit(project_id, "add_manual_node") as uow:
            tree = self.repository.load_tree(project_id)
            parent = self._live_node(tree, parent_id) if parent_id is not None else None
            node = self.repository.create(
                project_id=project_id,
                name=name.strip(),
                level=parent.level + 1 if parent is not None else 0,
                parent_id=parent_id,
                bo_amount_cents=budget_amount_cents,
                order_index=tree.next_order_index(parent_id),
            )
            tree.add(node)
            self.engine.recompute_ancestors(tree, node.id)
            self.repository.upsert_all(tree.live_nodes())
            uow.commit()

        logger.info("Added manual node %s under %s in project %s", node.id, parent_id, project_id)
        return node

    def remove_node(self, node_id: str) -> int:
        """
        Soft-delete a node and its whole subtree, then recompute ancestors.

        Returns:
            Number of nodes marked deleted

        Raises:
            CostNodeNotFoundError: unknown or already deleted node
        """
        project_id = self.repository.get_required(node_id).project_id

        with self._edit(project_id, "remove_node") as uow:
            tree = self.repository.load_tree(project_id)
            node = self._live_node(tree, node_id)
            subtree = [node] + tree.descendants(node.id, include_deleted=False)
            for item in subtree:
                self.repository.soft_delete(item.id)
            self.engine.recompute_ancestors(tree, node.id)
            self.repository.upsert_all(tree.live_nodes())
            uow.commit()

        logger.info("Removed %s and %d descendants", node_id, len(subtree) - 1)
        return len(subtree)
