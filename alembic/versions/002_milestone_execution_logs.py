"""Allow trigger execution logs without a stored trigger

Revision ID: 002_milestone_execution_logs
Revises: 001_initial_schema
Create Date: 2026-10-17

Built-in campaign milestone steps (talent approval, admin approval,
auto-reservation, order creation) record their runs in
trigger_execution_logs with trigger_id NULL and a "milestone:" dedupe key.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '002_milestone_execution_logs'
down_revision: Union[str, None] = '001_initial_schema'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Make trigger_execution_logs.trigger_id nullable."""
    bind = op.get_bind()
    is_postgres = bind.dialect.name == 'postgresql'

    if is_postgres:
        op.execute("ALTER TABLE trigger_execution_logs ALTER COLUMN trigger_id DROP NOT NULL")
    else:
        # SQLite rebuilds the table to change a column constraint
        with op.batch_alter_table('trigger_execution_logs') as batch_op:
            batch_op.alter_column('trigger_id', existing_type=sa.String(36), nullable=True)


def downgrade() -> None:
    """
    Restore NOT NULL on trigger_id.
    WARNING: milestone rows (trigger_id NULL) are deleted first!
    """
    op.execute("DELETE FROM trigger_execution_logs WHERE trigger_id IS NULL")

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        op.execute("ALTER TABLE trigger_execution_logs ALTER COLUMN trigger_id SET NOT NULL")
    else:
        with op.batch_alter_table('trigger_execution_logs') as batch_op:
            batch_op.alter_column('trigger_id', existing_type=sa.String(36), nullable=False)
