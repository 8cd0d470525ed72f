"""
Sync Orchestrator - Brings a project's cost-control tree in line with its estimate.

One synchronization is one atomic unit of work under the project lock:
1. Read the tree and the estimate snapshot, validate the snapshot
2. Create missing nodes top-down (and move nodes whose source parent changed)
3. Update budgets of imported detail leaves
4. Soft-delete orphans
5. Soft-delete duplicates
6. Recompute ancestors of everything that changed, then any parent total
   still out of line with its children
7. Verify invariants, record the run, commit

Manual fields (paid bills, external bills, pending bills, wages) are never
written here.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from costcontrol.config import CostControlConfig, get_config
from costcontrol.domain.entities import (
    EstimateSnapshot, DETAIL_LEVEL, SOURCE_LEVELS, STRUCTURE_LEVEL,
)
from costcontrol.domain.exceptions import (
    InvariantViolationError,
    ProjectNotFoundError,
    ValidationError,
)
from costcontrol.domain.money import amounts_differ
from costcontrol.domain.tree import CostTree
from costcontrol.domain.services.aggregation_engine import AggregationEngine, InvariantViolation
from costcontrol.domain.services.deduplicator import Deduplicator, choose_survivor
from costcontrol.domain.services.orphan_filter import OrphanFilter
from costcontrol.infrastructure.locks import ProjectLockRegistry, default_lock_registry
from costcontrol.infrastructure.repositories import CostControlRepository, EstimateSnapshotReader
from costcontrol.infrastructure.unit_of_work import Deadline, UnitOfWork

logger = logging.getLogger(__name__)

# Violations that abort a run
STRUCTURAL_INVARIANTS = (
    "parent_exists", "live_under_deleted", "level_step", "root_level",
    "acyclic_tree", "is_parent", "parent_sum", "unique_source_ref",
)


@dataclass
class SyncResult:
    """Outcome of one successful synchronization."""
    project_id: str
    recalculate_parents: bool = True
    created_count: int = 0
    updated_count: int = 0
    orphaned_count: int = 0
    deduplicated_count: int = 0
    recalculated_count: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def warning(self) -> Optional[str]:
        return "; ".join(self.warnings) if self.warnings else None

    def to_response(self) -> Dict:
        """Wire shape returned by the sync endpoint."""
        response = {
            "success": True,
            "createdCount": self.created_count,
            "updatedCount": self.updated_count,
            "orphanedCount": self.orphaned_count,
        }
        if self.warning:
            response["warning"] = self.warning
        return response


@dataclass
class MaintenanceResult:
    """Outcome of reset, recalculate or verify."""
    project_id: str
    operation: str
    affected_count: int = 0
    violations: List[InvariantViolation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations


class SyncOrchestrator:
    """
    Runs synchronization and maintenance operations for one session.

    Collaborators are injectable; by default they are built on the session.
    """

    def __init__(
        self,
        session: Session,
        config: Optional[CostControlConfig] = None,
        lock_registry: Optional[ProjectLockRegistry] = None,
        reader: Optional[EstimateSnapshotReader] = None,
        repository: Optional[CostControlRepository] = None,
        engine: Optional[AggregationEngine] = None,
    ):
        self.session = session
        self.config = config or get_config()
        self.locks = lock_registry or default_lock_registry
        self.reader = reader or EstimateSnapshotReader(session)
        self.repository = repository or CostControlRepository(session)
        self.engine = engine or AggregationEngine(epsilon_cents=self.config.amount_epsilon_cents)
        self.orphan_filter = OrphanFilter()
        self.deduplicator = Deduplicator()

    # =========================================================================
    # Synchronization
    # =========================================================================

    def import_from_estimate(
        self,
        project_id: str,
        recalculate_parents: Optional[bool] = None,
        deadline: Optional[Deadline] = None,
    ) -> SyncResult:
        """
        Synchronize the project's cost-control tree with its estimate.

        Args:
            project_id: Project to synchronize
            recalculate_parents: Recompute ancestor totals of changed nodes;
                None uses sync.recalculate_parents_default
            deadline: Cancel before commit once this expires; None uses
                sync.deadline_seconds

        Returns:
            SyncResult with counts and an optional warning

        Raises:
            ProjectNotFoundError: unknown project (no side effects)
            ValidationError: malformed estimate (nothing written)
            SourceFetchError: estimate tables unreadable
            ConcurrentSyncInProgressError: lock wait timed out
            SyncCancelledError: deadline expired, rolled back
            PartialStoreFailureError: a write failed, rolled back
            InvariantViolationError: the result would break the tree, rolled back
        """
        if recalculate_parents is None:
            recalculate_parents = self.config.recalculate_parents_default
        if deadline is None:
            deadline = Deadline.after(self.config.deadline_seconds)

        self._require_project(project_id)
        logger.info(
            "Starting cost control sync for project %s (recalculate_parents=%s)",
            project_id, recalculate_parents,
        )

        started_at = datetime.utcnow()
        result = SyncResult(project_id=project_id, recalculate_parents=recalculate_parents)

        with self.locks.hold(
            self.session, project_id,
            blocking=True, timeout=self.config.import_wait_seconds, holder="import",
        ):
            with UnitOfWork(self.session, "import_from_estimate", deadline) as uow:
                snapshot = self.reader.read_hierarchy(project_id)
                self.validate_snapshot(snapshot)
                tree = self.repository.load_tree(project_id)
                uow.checkpoint("read")

                # Nodes whose ancestors need a recompute, and parents that lost children
                start_ids: List[str] = []
                dirty_parent_ids: List[str] = []
                created_ids = set()
                updated_ids = set()

                node_for_ref = self._create_missing(
                    tree, snapshot, started_at, result, start_ids, dirty_parent_ids, created_ids, updated_ids,
                )
                uow.checkpoint("create")

                self._update_amounts(tree, snapshot, node_for_ref, start_ids, created_ids, updated_ids)
                result.updated_count = len(updated_ids)
                uow.checkpoint("update")

                self._remove_orphans(tree, snapshot, result, start_ids)
                uow.checkpoint("orphans")

                self._remove_duplicates(tree, result, start_ids)
                uow.checkpoint("dedupe")

                self._recompute(tree, recalculate_parents, start_ids, dirty_parent_ids, result)
                uow.checkpoint("recompute")

                self._verify_or_raise(tree, result)
                self.repository.record_run(
                    project_id, "sync", started_at,
                    recalculate_parents=recalculate_parents,
                    created_count=result.created_count,
                    updated_count=result.updated_count,
                    orphaned_count=result.orphaned_count,
                    deduplicated_count=result.deduplicated_count,
                    warning=result.warning,
                )
                uow.commit()

        logger.info(
            "Cost control sync for project %s complete: created=%d updated=%d orphaned=%d deduplicated=%d",
            project_id, result.created_count, result.updated_count,
            result.orphaned_count, result.deduplicated_count,
        )
        return result

    def validate_snapshot(self, snapshot: EstimateSnapshot) -> None:
        """
        Reject an estimate that cannot be mirrored as a tree.

        Raises:
            ValidationError: negative amount, unknown level, bad parent level
                or dangling parent reference
        """
        for entity in snapshot:
            if entity.level not in SOURCE_LEVELS:
                raise ValidationError("level", f"estimate row {entity.id} has unknown level {entity.level}")
            if entity.computed_amount_cents < 0:
                raise ValidationError(
                    "amount", f"estimate row {entity.id} has negative amount {entity.computed_amount_cents}"
                )
            if entity.level == STRUCTURE_LEVEL:
                if entity.parent_source_ref is not None:
                    raise ValidationError("parent", f"structure {entity.id} cannot have a parent")
                continue
            parent = snapshot.get(entity.parent_source_ref) if entity.parent_source_ref else None
            if parent is None:
                raise ValidationError(
                    "parent", f"estimate row {entity.id} references missing parent {entity.parent_source_ref}"
                )
            if parent.level != entity.level - 1:
                raise ValidationError(
                    "level",
                    f"estimate row {entity.id} at level {entity.level} is under level {parent.level}",
                )

    def _create_missing(
        self,
        tree: CostTree,
        snapshot: EstimateSnapshot,
        now: datetime,
        result: SyncResult,
        start_ids: List[str],
        dirty_parent_ids: List[str],
        created_ids: set,
        updated_ids: set,
    ) -> Dict:
        """Create nodes for new estimate rows; returns source ref -> node."""
        node_for_ref = {
            ref: choose_survivor(nodes) for ref, nodes in tree.live_by_source_ref().items()
        }

        for entity in snapshot:
            parent = node_for_ref.get(entity.parent_source_ref) if entity.parent_source_ref else None
            parent_id = parent.id if parent is not None else None
            node = node_for_ref.get(entity.id)

            if node is None:
                node = self.repository.create(
                    project_id=snapshot.project_id,
                    name=entity.name,
                    level=entity.level,
                    parent_id=parent_id,
                    bo_amount_cents=entity.computed_amount_cents if entity.level == DETAIL_LEVEL else 0,
                    order_index=entity.order_index,
                    source_ref=entity.id,
                    import_date=now,
                )
                tree.add(node)
                node_for_ref[entity.id] = node
                created_ids.add(node.id)
                result.created_count += 1
                start_ids.append(node.id)
                logger.debug("Created %s (level %d) for estimate row %s", node.id, entity.level, entity.id)
            elif node.parent_id != parent_id:
                old_parent_id = tree.reparent(node, parent_id)
                node.level = entity.level
                self.repository.upsert(node)
                updated_ids.add(node.id)
                start_ids.append(node.id)
                if old_parent_id is not None:
                    dirty_parent_ids.append(old_parent_id)
                logger.info("Moved %s from parent %s to %s", node.id, old_parent_id, parent_id)

        return node_for_ref

    def _update_amounts(
        self,
        tree: CostTree,
        snapshot: EstimateSnapshot,
        node_for_ref: Dict,
        start_ids: List[str],
        created_ids: set,
        updated_ids: set,
    ) -> None:
        """Copy computed amounts onto imported detail leaves."""
        changed = []
        for entity in snapshot.at_level(DETAIL_LEVEL):
            node = node_for_ref.get(entity.id)
            if node is None or node.id in created_ids or tree.has_live_children(node.id):
                continue
            if amounts_differ(node.bo_amount_cents, entity.computed_amount_cents, self.engine.epsilon_cents):
                logger.debug(
                    "Budget of %s: %d -> %d", node.id, node.bo_amount_cents, entity.computed_amount_cents,
                )
                node.bo_amount_cents = entity.computed_amount_cents
                changed.append(node)
                updated_ids.add(node.id)
                start_ids.append(node.id)
        if changed:
            self.repository.upsert_all(changed)

    def _remove_orphans(
        self,
        tree: CostTree,
        snapshot: EstimateSnapshot,
        result: SyncResult,
        start_ids: List[str],
    ) -> None:
        classification = self.orphan_filter.filter_valid(tree.live_nodes(), snapshot.valid_refs_by_level())
        if not classification.orphaned:
            return
        orphan_ids = classification.orphaned_ids
        for node in classification.orphaned:
            self.repository.soft_delete(node.id)
            if node.parent_id not in orphan_ids:
                start_ids.append(node.id)
        result.orphaned_count = len(classification.orphaned)
        result.warnings.append(f"{result.orphaned_count} orphaned nodes removed")

    def _remove_duplicates(self, tree: CostTree, result: SyncResult, start_ids: List[str]) -> None:
        dedupe = self.deduplicator.dedupe(tree.live_nodes())
        if not dedupe.removed:
            return
        for child, new_parent_id in dedupe.reparented:
            tree.reparent(child, new_parent_id)
            self.repository.upsert(child)
        for node in dedupe.removed:
            self.repository.soft_delete(node.id)
            start_ids.append(node.id)
        start_ids.extend(dedupe.recompute_start_ids)
        result.deduplicated_count = dedupe.removed_count
        result.warnings.append(f"{dedupe.removed_count} duplicate nodes removed")

    def _recompute(
        self,
        tree: CostTree,
        recalculate_parents: bool,
        start_ids: List[str],
        dirty_parent_ids: List[str],
        result: SyncResult,
    ) -> None:
        if recalculate_parents:
            changed = self.engine.recompute_from(tree, start_ids)
            for parent_id in dirty_parent_ids:
                changed.extend(self.engine.recompute_parent_chain(tree, parent_id))
            stale = self.engine.recompute_stale(tree)
            if stale:
                logger.warning("Corrected %d parent totals outside the synchronized branches", len(stale))
                result.warnings.append(f"{len(stale)} stale parent totals corrected")
            result.recalculated_count = len(set(changed + stale))
            logger.info("Recomputed %d parent totals", result.recalculated_count)
        else:
            result.warnings.append("parent totals were not recalculated")
        for node in tree.live_nodes():
            self.engine.refresh_is_parent(tree, node.id)
        self.repository.upsert_all(tree.live_nodes())

    def _verify_or_raise(self, tree: CostTree, result: SyncResult) -> None:
        violations = self.engine.verify(tree, check_sums=result.recalculate_parents)
        structural = [v for v in violations if v.invariant in STRUCTURAL_INVARIANTS]
        if structural:
            first = structural[0]
            logger.error("Sync would leave %d invariant violations, first: %s", len(structural), first.message)
            raise InvariantViolationError(first.invariant, "consistent cost control tree", first.message)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def reset(self, project_id: str, deadline: Optional[Deadline] = None) -> MaintenanceResult:
        """
        Hard-delete every cost-control node of a project.

        Raises:
            ProjectNotFoundError: unknown project
        """
        self._require_project(project_id)
        started_at = datetime.utcnow()
        with self.locks.hold(
            self.session, project_id,
            blocking=True, timeout=self.config.import_wait_seconds, holder="reset",
        ):
            with UnitOfWork(self.session, "reset", deadline) as uow:
                deleted = self.repository.hard_delete_project(project_id)
                uow.checkpoint("delete")
                self.repository.record_run(project_id, "reset", started_at)
                uow.commit()
        logger.info("Reset cost control tree of project %s (%d nodes removed)", project_id, deleted)
        return MaintenanceResult(project_id=project_id, operation="reset", affected_count=deleted)

    def recalculate(self, project_id: str, deadline: Optional[Deadline] = None) -> MaintenanceResult:
        """
        Recompute every parent total and is_parent flag of a project.

        Raises:
            ProjectNotFoundError: unknown project
            InvariantViolationError: the tree is structurally broken
        """
        self._require_project(project_id)
        started_at = datetime.utcnow()
        with self.locks.hold(
            self.session, project_id,
            blocking=True, timeout=self.config.import_wait_seconds, holder="recalculate",
        ):
            with UnitOfWork(self.session, "recalculate", deadline) as uow:
                tree = self.repository.load_tree(project_id)
                changed = self.engine.recompute_all(tree)
                uow.checkpoint("recompute")
                self.repository.upsert_all(tree.live_nodes())

                violations = self.engine.verify(tree)
                if violations:
                    first = violations[0]
                    raise InvariantViolationError(first.invariant, "consistent cost control tree", first.message)
                self.repository.record_run(
                    project_id, "recalculate", started_at, updated_count=len(changed),
                )
                uow.commit()
        logger.info("Recalculated project %s: %d nodes changed", project_id, len(changed))
        return MaintenanceResult(project_id=project_id, operation="recalculate", affected_count=len(changed))

    def verify(self, project_id: str) -> MaintenanceResult:
        """Report invariant violations without writing anything."""
        self._require_project(project_id)
        with UnitOfWork(self.session, "verify"):
            tree = self.repository.load_tree(project_id)
            violations = self.engine.verify(tree)
            live_count = self.repository.count_for_project(project_id, include_deleted=False)
        return MaintenanceResult(
            project_id=project_id,
            operation="verify",
            affected_count=live_count,
            violations=violations,
        )

    def _require_project(self, project_id: str) -> None:
        if not self.reader.project_exists(project_id):
            raise ProjectNotFoundError(project_id)
