"""event outbox: partial index for pending rows

Revision ID: 002
Revises: 001
Create Date: 2026-10-18

"""
from alembic import op

revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name != "postgresql":
        return
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_event_outbox_pending "
        "ON event_outbox (created_at) WHERE status = 'pending'"
    )


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name != "postgresql":
        return
    op.execute("DROP INDEX IF EXISTS idx_event_outbox_pending")
