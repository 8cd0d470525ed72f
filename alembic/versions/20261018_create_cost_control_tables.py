"""create_cost_control_tables

Revision ID: 20261018_cost_control
Revises:
Create Date: 2026-10-18 12:00:00.000000

Migration for the cost-control engine.
Adds:
- cost_control_items: one row per node of a project's cost-control tree
- cost_control_sync_locks: per-project lock row for synchronization
- cost_control_sync_runs: audit trail of synchronization and maintenance runs

The estimate tables (projects, estimate_structures, estimate_elements,
estimate_detail_items) belong to the surrounding application.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261018_cost_control'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""

    # =========================================================================
    # 1. Create cost_control_items table
    # =========================================================================
    op.create_table(
        'cost_control_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('project_id', sa.String(length=64), nullable=False),
        sa.Column('parent_id', sa.String(length=36), nullable=True),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
        # Amounts in cents
        sa.Column('bo_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_bills_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('external_bills_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pending_bills_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('wages_cents', sa.Integer(), nullable=False, server_default='0'),
        # Tree and import metadata
        sa.Column('is_parent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('source_ref', sa.String(length=64), nullable=True),
        sa.Column('imported_from_estimate', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('import_date', sa.DateTime(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['parent_id'], ['cost_control_items.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_cost_control_items_project_id', 'cost_control_items', ['project_id'], unique=False)
    op.create_index('ix_cost_control_items_is_deleted', 'cost_control_items', ['is_deleted'], unique=False)
    op.create_index(
        'ix_cost_control_items_project_parent',
        'cost_control_items',
        ['project_id', 'parent_id'],
        unique=False
    )
    # At most one live node per (project, source row)
    op.create_index(
        'uq_cost_control_items_project_source_live',
        'cost_control_items',
        ['project_id', 'source_ref'],
        unique=True,
        sqlite_where=sa.text('source_ref IS NOT NULL AND is_deleted = 0'),
        postgresql_where=sa.text('source_ref IS NOT NULL AND is_deleted = false'),
    )

    # =========================================================================
    # 2. Create cost_control_sync_locks table
    # =========================================================================
    op.create_table(
        'cost_control_sync_locks',
        sa.Column('project_id', sa.String(length=64), nullable=False),
        sa.Column('locked_at', sa.DateTime(), nullable=True),
        sa.Column('holder', sa.String(length=100), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('project_id')
    )

    # =========================================================================
    # 3. Create cost_control_sync_runs table
    # =========================================================================
    op.create_table(
        'cost_control_sync_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.String(length=64), nullable=False),
        sa.Column('run_type', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='completed'),
        sa.Column('recalculate_parents', sa.Boolean(), nullable=True),
        sa.Column('created_count', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('updated_count', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('orphaned_count', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('deduplicated_count', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('warning', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_cost_control_sync_runs_id', 'cost_control_sync_runs', ['id'], unique=False)
    op.create_index('ix_cost_control_sync_runs_project_id', 'cost_control_sync_runs', ['project_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""

    op.drop_index('ix_cost_control_sync_runs_project_id', table_name='cost_control_sync_runs')
    op.drop_index('ix_cost_control_sync_runs_id', table_name='cost_control_sync_runs')
    op.drop_table('cost_control_sync_runs')

    op.drop_table('cost_control_sync_locks')

    op.drop_index('uq_cost_control_items_project_source_live', table_name='cost_control_items')
    op.drop_index('ix_cost_control_items_project_parent', table_name='cost_control_items')
    op.drop_index('ix_cost_control_items_is_deleted', table_name='cost_control_items')
    op.drop_index('ix_cost_control_items_project_id', table_name='cost_control_items')
    op.drop_table('cost_control_items')
