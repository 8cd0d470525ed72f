"""
Tests for reading the estimate hierarchy.
"""
from unittest.mock import MagicMock

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from costcontrol.domain.exceptions import SourceFetchError
from costcontrol.domain.money import line_amount_cents, to_cents
from costcontrol.infrastructure.repositories import EstimateSnapshotReader

from helpers import PROJECT_ID


@pytest.fixture
def reader(session):
    return EstimateSnapshotReader(session)


@pytest.fixture
def count_queries(db_engine):
    statements = []

    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(db_engine, "before_cursor_execute", before_cursor_execute)
    yield statements
    event.remove(db_engine, "before_cursor_execute", before_cursor_execute)


class TestMoney:

    def test_half_up_rounding(self):
        assert to_cents("0.005") == 1
        assert to_cents("2.675") == 268
        assert line_amount_cents("3", "0.335") == 101

    def test_missing_values(self):
        assert to_cents(None) == 0
        assert line_amount_cents(None, "10") == 0


class TestReadHierarchy:

    def test_ordered_by_level_then_position(self, reader, estimate):
        estimate.structure("S2", order_index=1)
        estimate.structure("S1", order_index=0)
        estimate.element("E1", "S1")
        estimate.detail("D2", "E1", quantity=1, rate=1, order_index=1)
        estimate.detail("D1", "E1", quantity=1, rate=1, order_index=0)
        estimate.commit()

        snapshot = reader.read_hierarchy(PROJECT_ID)

        assert [e.id for e in snapshot] == ["S1", "S2", "E1", "D1", "D2"]
        assert snapshot.get("E1").parent_source_ref == "S1"
        assert snapshot.get("S1").parent_source_ref is None

    def test_detail_amount_is_quantity_times_rate(self, reader, estimate):
        estimate.structure("S1")
        estimate.element("E1", "S1")
        estimate.detail("D1", "E1", quantity="2.5", rate="10.01")
        estimate.commit()

        assert reader.read_hierarchy(PROJECT_ID).get("D1").computed_amount_cents == 2503

    def test_other_projects_excluded(self, reader, estimate):
        estimate.structure("S1")
        estimate.commit()

        assert len(reader.read_hierarchy("other")) == 0

    def test_database_error(self):
        session = MagicMock()
        session.query.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))

        with pytest.raises(SourceFetchError) as exc_info:
            EstimateSnapshotReader(session).read_hierarchy(PROJECT_ID)
        assert "connection refused" in exc_info.value.reason


class TestExistingSourceRefs:

    def test_one_query_per_level(self, reader, basic_estimate, count_queries):
        existing = reader.existing_source_refs(
            PROJECT_ID, {0: {"S1", "S9"}, 1: {"E1"}, 2: {"D1", "D9"}}
        )

        assert existing == {0: {"S1"}, 1: {"E1"}, 2: {"D1"}}
        assert len(count_queries) == 3

    def test_empty_levels_skipped(self, reader, basic_estimate, count_queries):
        existing = reader.existing_source_refs(PROJECT_ID, {0: set(), 2: {"D2"}})

        assert existing[2] == {"D2"}
        assert existing[0] == set()
        assert len(count_queries) == 1

    def test_project_exists(self, reader):
        assert reader.project_exists(PROJECT_ID) is True
        assert reader.project_exists("missing") is False
