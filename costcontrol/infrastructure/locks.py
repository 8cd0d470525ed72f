"""
Per-project mutual exclusion for synchronization, recompute and edits.

Two layers:
- a process-local threading.Lock per project, which also covers SQLite
  where row locks do not exist
- SELECT ... FOR UPDATE on the project's cost_control_sync_locks row,
  held until the surrounding transaction commits or rolls back

Lock policy:
- import, reset and recalculate block (bounded by an optional timeout)
- direct edits fail fast (NOWAIT)
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from costcontrol.models import CostControlSyncLock
from costcontrol.domain.exceptions import ConcurrentSyncInProgressError, PartialStoreFailureError

logger = logging.getLogger(__name__)


class ProjectLockRegistry:
    """Hands out the exclusive lock of each project."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _local_lock(self, project_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[project_id] = lock
            return lock

    def is_locked(self, project_id: str) -> bool:
        """True while some caller in this process holds the project lock."""
        return self._local_lock(project_id).locked()

    @contextmanager
    def hold(
        self,
        session: Session,
        project_id: str,
        blocking: bool = True,
        timeout: Optional[float] = None,
        holder: str = "sync",
    ) -> Iterator[None]:
        """
        Hold the project lock for the duration of the block.

        Enter the caller's unit of work inside this block. The row lock lasts
        until that unit of work commits or rolls back, and the process-local
        lock is released only after that.

        Args:
            session: Session of the caller's unit of work
            project_id: Project to lock
            blocking: Wait for the lock instead of failing immediately
            timeout: Maximum wait in seconds when blocking, None waits forever
            holder: Label stored on the lock row

        Raises:
            ConcurrentSyncInProgressError: if the lock is not obtained
        """
        local = self._local_lock(project_id)
        if blocking:
            acquired = local.acquire(timeout=-1 if timeout is None else timeout)
        else:
            acquired = local.acquire(blocking=False)
        if not acquired:
            logger.warning("Project %s is locked; %s rejected", project_id, holder)
            raise ConcurrentSyncInProgressError(project_id)

        try:
            self._lock_row(session, project_id, nowait=not blocking, holder=holder)
            logger.debug("Acquired cost control lock for project %s (%s)", project_id, holder)
            yield
        finally:
            local.release()

    def _lock_row(self, session: Session, project_id: str, nowait: bool, holder: str) -> None:
        stmt = (
            select(CostControlSyncLock)
            .where(CostControlSyncLock.project_id == project_id)
            .with_for_update(nowait=nowait)
            .execution_options(populate_existing=True)
        )
        try:
            row = session.execute(stmt).scalar_one_or_none()
            if row is None:
                # First run for this project
                row = CostControlSyncLock(project_id=project_id)
                session.add(row)
                session.flush()
        except (OperationalError, IntegrityError) as e:
            # NOWAIT refusal, or another process created the row first
            session.rollback()
            raise ConcurrentSyncInProgressError(project_id) from e
        except SQLAlchemyError as e:
            session.rollback()
            raise PartialStoreFailureError("lock", str(e)) from e

        row.locked_at = datetime.utcnow()
        row.holder = holder


default_lock_registry = ProjectLockRegistry()
