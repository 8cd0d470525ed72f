"""
Database models and SQLAlchemy setup for the cost-control engine.
All monetary values owned by the engine are stored as integer cents to avoid float drift.
"""
import os
import uuid
from datetime import datetime

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean, Numeric,
    DateTime, Text, ForeignKey, Index, text
)
from sqlalchemy.orm import declarative_base, sessionmaker, relationship

DATABASE_URL = os.environ.get("COST_CONTROL_DATABASE_URL", "sqlite:///./cost_control.db")
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Source Estimate Tables (owned by the surrounding application, read-only here)
# =============================================================================

class Project(Base):
    """Construction project. Every estimate and cost-control row belongs to one."""
    __tablename__ = "projects"

    id = Column(String(64), primary_key=True, default=_new_id)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    structures = relationship("EstimateStructure", back_populates="project")


class EstimateStructure(Base):
    """Level 0 of the estimate (e.g. Main House)."""
    __tablename__ = "estimate_structures"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(500), nullable=False)
    amount = Column(Numeric(14, 2), default=0)
    order_index = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    project = relationship("Project", back_populates="structures")
    elements = relationship("EstimateElement", back_populates="structure", cascade="all, delete-orphan")


class EstimateElement(Base):
    """Level 1 of the estimate (e.g. Substructure, RC Frame)."""
    __tablename__ = "estimate_elements"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    structure_id = Column(String(64), ForeignKey('estimate_structures.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(500), nullable=False)
    amount = Column(Numeric(14, 2), default=0)
    order_index = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    structure = relationship("EstimateStructure", back_populates="elements")
    detail_items = relationship("EstimateDetailItem", back_populates="element", cascade="all, delete-orphan")


class EstimateDetailItem(Base):
    """
    Level 2 of the estimate (e.g. Excavation, Concrete).
    Its amount is quantity x rate.
    """
    __tablename__ = "estimate_detail_items"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    element_id = Column(String(64), ForeignKey('estimate_elements.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(500), nullable=False)
    quantity = Column(Numeric(14, 4), nullable=False, default=0)
    unit = Column(String(20), nullable=True)
    rate = Column(Numeric(14, 4), nullable=False, default=0)
    amount = Column(Numeric(14, 2), default=0)  # Denormalized by the estimate editor
    order_index = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    element = relationship("EstimateElement", back_populates="detail_items")


# =============================================================================
# Cost Control Tree (owned by the engine)
# =============================================================================

class CostControlItem(Base):
    """
    One node of a project's cost-control tree.

    INVARIANT: non-leaf bo_amount_cents = Σ(live children bo_amount_cents)
    INVARIANT: level(child) = level(parent) + 1
    INVARIANT: is_parent iff at least one live child exists
    """
    __tablename__ = "cost_control_items"

    id = Column(String(36), primary_key=True, default=_new_id)
    project_id = Column(String(64), ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    parent_id = Column(String(36), ForeignKey('cost_control_items.id', ondelete='CASCADE'), nullable=True)
    name = Column(String(500), nullable=False)
    level = Column(Integer, nullable=False, default=0)  # 0 structure, 1 element, 2 detail
    order_index = Column(Integer, nullable=False, default=0)

    # Budget ("BO amount"): authoritative on leaves, derived on parents
    bo_amount_cents = Column(Integer, nullable=False, default=0)

    # Manually entered, never written by synchronization
    paid_bills_cents = Column(Integer, nullable=False, default=0)
    external_bills_cents = Column(Integer, nullable=False, default=0)
    pending_bills_cents = Column(Integer, nullable=False, default=0)
    wages_cents = Column(Integer, nullable=False, default=0)

    is_parent = Column(Boolean, nullable=False, default=False)
    source_ref = Column(String(64), nullable=True)  # Estimate structure/element/detail id
    imported_from_estimate = Column(Boolean, nullable=False, default=False)
    import_date = Column(DateTime, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('ix_cost_control_items_project_parent', 'project_id', 'parent_id'),
        Index(
            'uq_cost_control_items_project_source_live',
            'project_id', 'source_ref',
            unique=True,
            sqlite_where=text('source_ref IS NOT NULL AND is_deleted = 0'),
            postgresql_where=text('source_ref IS NOT NULL AND is_deleted = false'),
        ),
    )

    @property
    def actual_amount_cents(self) -> int:
        """Actual = paid bills + external bills + wages."""
        return (self.paid_bills_cents or 0) + (self.external_bills_cents or 0) + (self.wages_cents or 0)

    @property
    def difference_cents(self) -> int:
        """Budget remaining after actuals."""
        return (self.bo_amount_cents or 0) - self.actual_amount_cents

    def __repr__(self) -> str:
        return (
            f"<CostControlItem {self.id} level={self.level} name={self.name!r} "
            f"bo={self.bo_amount_cents} deleted={self.is_deleted}>"
        )


class CostControlSyncLock(Base):
    """
    One row per project; row-locked for the duration of a synchronization
    or recompute so runs for the same project never interleave.
    """
    __tablename__ = "cost_control_sync_locks"

    project_id = Column(String(64), ForeignKey('projects.id', ondelete='CASCADE'), primary_key=True)
    locked_at = Column(DateTime, nullable=True)
    holder = Column(String(100), nullable=True)


class CostControlSyncRun(Base):
    """Audit trail for synchronization and maintenance runs."""
    __tablename__ = "cost_control_sync_runs"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(String(64), ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, index=True)
    run_type = Column(String(30), nullable=False)  # sync, reset, recalculate
    status = Column(String(20), nullable=False, default='completed')
    recalculate_parents = Column(Boolean, nullable=True)
    created_count = Column(Integer, default=0)
    updated_count = Column(Integer, default=0)
    orphaned_count = Column(Integer, default=0)
    deduplicated_count = Column(Integer, default=0)
    warning = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow)
    finished_at = Column(DateTime, nullable=True)


def init_db():
    """Initialize the database and create all tables."""
    Base.metadata.create_all(bind=engine)


def get_db():
    """Database session dependency for FastAPI."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
