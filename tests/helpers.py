"""
Test helpers shared across modules.
"""
from datetime import datetime, timedelta
from decimal import Decimal

from costcontrol.models import (
    CostControlItem, EstimateStructure, EstimateElement, EstimateDetailItem,
)

PROJECT_ID = "proj-1"


def live_node(session, source_ref, project_id=PROJECT_ID):
    """The single live node generated from a source row."""
    return session.query(CostControlItem).filter(
        CostControlItem.project_id == project_id,
        CostControlItem.source_ref == source_ref,
        CostControlItem.is_deleted.is_(False),
    ).one()


def assert_parent_sums(session, project_id=PROJECT_ID):
    """Every live parent equals the sum of its live children."""
    live = session.query(CostControlItem).filter(
        CostControlItem.project_id == project_id,
        CostControlItem.is_deleted.is_(False),
    ).all()
    for node in live:
        children = [c for c in live if c.parent_id == node.id]
        assert node.is_parent == bool(children), node
        if children:
            assert node.bo_amount_cents == sum(c.bo_amount_cents for c in children), node


def make_node(id, parent_id=None, level=0, bo=0, source_ref=None, name=None,
              is_deleted=False, is_parent=False, created_offset=0, project_id=PROJECT_ID):
    """Transient node for pure domain tests."""
    return CostControlItem(
        id=id,
        project_id=project_id,
        parent_id=parent_id,
        name=name or id,
        level=level,
        order_index=0,
        bo_amount_cents=bo,
        paid_bills_cents=0,
        external_bills_cents=0,
        pending_bills_cents=0,
        wages_cents=0,
        is_parent=is_parent,
        source_ref=source_ref,
        imported_from_estimate=source_ref is not None,
        is_deleted=is_deleted,
        created_at=datetime(2026, 1, 1) + timedelta(seconds=created_offset),
    )


class EstimateBuilder:
    """Writes estimate rows for one project."""

    def __init__(self, session, project_id=PROJECT_ID):
        self.session = session
        self.project_id = project_id

    def structure(self, id, name="Main House", amount=0, order_index=0):
        row = EstimateStructure(
            id=id, project_id=self.project_id, name=name,
            amount=Decimal(str(amount)), order_index=order_index,
        )
        self.session.add(row)
        return row

    def element(self, id, structure_id, name="Substructure", order_index=0):
        row = EstimateElement(
            id=id, project_id=self.project_id, structure_id=structure_id,
            name=name, amount=Decimal("0"), order_index=order_index,
        )
        self.session.add(row)
        return row

    def detail(self, id, element_id, quantity, rate, name="Excavation", order_index=0):
        row = EstimateDetailItem(
            id=id, project_id=self.project_id, element_id=element_id, name=name,
            quantity=Decimal(str(quantity)), unit="m3", rate=Decimal(str(rate)),
            order_index=order_index,
        )
        self.session.add(row)
        return row

    def commit(self):
        self.session.commit()
