"""
Tests for per-project locking and the unit of work.
"""
import threading
import time
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from costcontrol.models import CostControlSyncLock
from costcontrol.domain.exceptions import (
    ConcurrentSyncInProgressError,
    PartialStoreFailureError,
    SyncCancelledError,
)
from costcontrol.infrastructure.locks import ProjectLockRegistry
from costcontrol.infrastructure.unit_of_work import Deadline, UnitOfWork

from helpers import PROJECT_ID


def mock_session():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = CostControlSyncLock(project_id=PROJECT_ID)
    return session


class TestProjectLockRegistry:
    """Blocking and fail-fast acquisition."""

    def test_fail_fast_when_held(self):
        registry = ProjectLockRegistry()
        with registry.hold(mock_session(), PROJECT_ID):
            with pytest.raises(ConcurrentSyncInProgressError):
                with registry.hold(mock_session(), PROJECT_ID, blocking=False):
                    pass

    def test_other_projects_unaffected(self):
        registry = ProjectLockRegistry()
        with registry.hold(mock_session(), PROJECT_ID):
            with registry.hold(mock_session(), "proj-2", blocking=False):
                assert registry.is_locked("proj-2")

    def test_blocking_times_out(self):
        registry = ProjectLockRegistry()
        with registry.hold(mock_session(), PROJECT_ID):
            started = time.monotonic()
            with pytest.raises(ConcurrentSyncInProgressError):
                with registry.hold(mock_session(), PROJECT_ID, timeout=0.05):
                    pass
            assert time.monotonic() - started >= 0.04

    def test_blocking_waits_for_release(self):
        registry = ProjectLockRegistry()
        order = []
        held = threading.Event()

        def first():
            with registry.hold(mock_session(), PROJECT_ID, holder="first"):
                held.set()
                time.sleep(0.1)
                order.append("first")

        worker = threading.Thread(target=first)
        worker.start()
        held.wait(1)
        with registry.hold(mock_session(), PROJECT_ID, holder="second"):
            order.append("second")
        worker.join()

        assert order == ["first", "second"]

    def test_row_lock_uses_nowait_for_fail_fast(self):
        registry = ProjectLockRegistry()
        session = mock_session()
        with registry.hold(session, PROJECT_ID, blocking=False):
            pass
        stmt = session.execute.call_args[0][0]
        assert stmt._for_update_arg.nowait is True

    def test_creates_missing_lock_row(self):
        registry = ProjectLockRegistry()
        session = MagicMock()
        session.execute.return_value.scalar_one_or_none.return_value = None

        with registry.hold(session, PROJECT_ID, holder="import"):
            pass

        created = session.add.call_args[0][0]
        assert isinstance(created, CostControlSyncLock)
        assert created.holder == "import"
        session.flush.assert_called_once()

    @pytest.mark.parametrize("error", [
        OperationalError("SELECT", {}, Exception("could not obtain lock")),
        IntegrityError("INSERT", {}, Exception("duplicate key")),
    ])
    def test_database_contention_maps_to_concurrent_error(self, error):
        registry = ProjectLockRegistry()
        session = MagicMock()
        session.execute.side_effect = error

        with pytest.raises(ConcurrentSyncInProgressError):
            with registry.hold(session, PROJECT_ID, blocking=False):
                pass
        assert registry.is_locked(PROJECT_ID) is False
        session.rollback.assert_called_once()


class TestUnitOfWork:
    """Commit once, roll back on anything else."""

    def test_commit(self):
        session = MagicMock()
        with UnitOfWork(session, "test") as uow:
            uow.commit()
        session.commit.assert_called_once()
        session.rollback.assert_not_called()

    def test_no_commit_rolls_back(self):
        session = MagicMock()
        with UnitOfWork(session, "test"):
            pass
        session.rollback.assert_called_once()

    def test_domain_errors_pass_through(self):
        session = MagicMock()
        with pytest.raises(ConcurrentSyncInProgressError):
            with UnitOfWork(session, "test"):
                raise ConcurrentSyncInProgressError(PROJECT_ID)
        session.rollback.assert_called_once()

    def test_database_errors_become_partial_store_failure(self):
        session = MagicMock()
        with pytest.raises(PartialStoreFailureError) as exc_info:
            with UnitOfWork(session, "import_from_estimate"):
                raise OperationalError("INSERT", {}, Exception("disk full"))
        assert exc_info.value.operation == "import_from_estimate"
        session.rollback.assert_called_once()

    def test_expired_deadline_blocks_commit(self):
        session = MagicMock()
        deadline = Deadline(seconds=5)
        deadline.cancel()
        with pytest.raises(SyncCancelledError):
            with UnitOfWork(session, "test", deadline) as uow:
                uow.commit()
        session.commit.assert_not_called()


class TestDeadline:

    def test_never_expires(self):
        assert Deadline.never().expired is False
        assert Deadline.after(None).remaining is None

    def test_expires_with_clock(self):
        now = [0.0]
        deadline = Deadline(seconds=2, clock=lambda: now[0])
        assert deadline.expired is False
        now[0] = 2.5
        assert deadline.expired is True
        with pytest.raises(SyncCancelledError):
            deadline.check("sync", "update")
