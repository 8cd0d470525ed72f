"""
Tests for the cost-control node repository.
"""
from datetime import datetime

import pytest
from sqlalchemy import text

from costcontrol.models import CostControlItem, CostControlSyncRun
from costcontrol.domain.exceptions import CostNodeNotFoundError
from costcontrol.infrastructure.repositories import CostControlRepository

from helpers import PROJECT_ID


@pytest.fixture
def repository(session):
    return CostControlRepository(session)


def imported(session, source_ref, created_at, is_deleted=False, parent_id=None, level=0):
    node = CostControlItem(
        project_id=PROJECT_ID, parent_id=parent_id, name=source_ref, level=level,
        source_ref=source_ref, imported_from_estimate=True,
        is_deleted=is_deleted, created_at=created_at,
    )
    session.add(node)
    session.flush()
    return node


class TestFindBySourceRef:

    def test_skips_deleted_nodes(self, session, repository):
        imported(session, "S1", datetime(2025, 1, 1), is_deleted=True)
        live = imported(session, "S1", datetime(2025, 6, 1))
        session.commit()

        assert repository.find_by_source_ref(PROJECT_ID, "S1").id == live.id

    def test_earliest_of_legacy_duplicates(self, session, repository):
        session.execute(text("DROP INDEX uq_cost_control_items_project_source_live"))
        imported(session, "S1", datetime(2025, 6, 1))
        earliest = imported(session, "S1", datetime(2025, 1, 1))
        session.commit()

        assert repository.find_by_source_ref(PROJECT_ID, "S1").id == earliest.id

    def test_unknown_ref_or_other_project(self, session, repository):
        imported(session, "S1", datetime(2025, 1, 1))
        session.commit()

        assert repository.find_by_source_ref(PROJECT_ID, "S9") is None
        assert repository.find_by_source_ref("other", "S1") is None


class TestWrites:

    def test_create_flushes_an_id(self, session, repository):
        node = repository.create(PROJECT_ID, "Main House", level=0, source_ref="S1", import_date=datetime.utcnow())

        assert node.id is not None
        assert node.imported_from_estimate is True
        assert node.is_parent is False
        assert repository.get_required(node.id) is node

    def test_soft_delete_clears_parent_flag(self, session, repository):
        node = repository.create(PROJECT_ID, "Main House", level=0)
        node.is_parent = True

        repository.soft_delete(node.id)

        assert node.is_deleted is True
        assert node.is_parent is False
        assert repository.count_for_project(PROJECT_ID) == 1
        assert repository.count_for_project(PROJECT_ID, include_deleted=False) == 0

    def test_soft_delete_unknown(self, repository):
        with pytest.raises(CostNodeNotFoundError):
            repository.soft_delete("missing")

    def test_hard_delete_project(self, session, repository):
        root = repository.create(PROJECT_ID, "Main House", level=0)
        repository.create(PROJECT_ID, "Substructure", level=1, parent_id=root.id)
        session.commit()

        assert repository.hard_delete_project(PROJECT_ID) == 2
        assert repository.count_for_project(PROJECT_ID) == 0

    def test_record_run(self, session, repository):
        run = repository.record_run(PROJECT_ID, "sync", datetime.utcnow(), created_count=3, warning="w")

        stored = session.get(CostControlSyncRun, run.id)
        assert (stored.run_type, stored.created_count, stored.warning) == ("sync", 3, "w")
        assert stored.finished_at is not None
