"""Add approval lease columns to events

Revision ID: 002_approval_claims
Revises: 001_initial_schema
Create Date: 2026-10-19

Approval records a lease token in the event row before writing to the
external calendar, so that only one request (in any worker process)
publishes a given event.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '002_approval_claims'
down_revision = '001_initial_schema'
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Add approval_claim and approval_claimed_at to events."""
    op.add_column('events', sa.Column('approval_claim', sa.String(length=64), nullable=True))
    op.add_column('events', sa.Column('approval_claimed_at', sa.DateTime(), nullable=True))


def downgrade() -> None:
    """Drop the approval lease columns."""
    op.drop_column('events', 'approval_claimed_at')
    op.drop_column('events', 'approval_claim')
