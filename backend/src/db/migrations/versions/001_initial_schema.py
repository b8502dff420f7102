"""Initial temple-events schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-02-02

Creates locations and events tables with:
- Locations table for the room registry (aliases, status, merge/delete audit)
- Events table for reservations (lifecycle status, history, pending edit,
  external calendar linkage, optimistic version counter)
- UUIDv7 columns backing the loc_/evt_ GUIDs
- Indexes for query performance
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _uuid_column() -> sa.Column:
    # PostgreSQL UUID, LargeBinary for SQLite
    return sa.Column(
        'uuid',
        postgresql.UUID(as_uuid=True).with_variant(sa.LargeBinary(16), 'sqlite'),
        nullable=False,
    )


def _json_type():
    return postgresql.JSONB().with_variant(sa.JSON(), 'sqlite')


def upgrade() -> None:
    """
    Create locations and events tables.

    Tables:
    - locations: Registry of rooms and spaces
    - events: Reservations and synced calendar events
    """

    # Create locations table
    op.create_table(
        'locations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _uuid_column(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=True),
        sa.Column('location_code', sa.String(length=50), nullable=True),
        sa.Column('aliases', _json_type(), nullable=False),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('building', sa.String(length=255), nullable=True),
        sa.Column('floor', sa.String(length=50), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('features', _json_type(), nullable=False),
        sa.Column('accessibility', _json_type(), nullable=False),
        sa.Column('is_reservable', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('parent_location_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='approved'),
        sa.Column('merged_into_id', sa.Integer(), nullable=True),
        sa.Column('merged_by', sa.String(length=255), nullable=True),
        sa.Column('merged_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_by', sa.String(length=255), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('reviewed_by', sa.String(length=255), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['parent_location_id'], ['locations.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['merged_into_id'], ['locations.id']),
    )
    op.create_index('ix_locations_uuid', 'locations', ['uuid'], unique=True)
    op.create_index('ix_locations_status', 'locations', ['status'])
    op.create_index('ix_locations_parent_location_id', 'locations', ['parent_location_id'])
    op.create_index('idx_locations_status_name', 'locations', ['status', 'name'])

    # Create events table
    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _uuid_column(),
        sa.Column('event_id', sa.String(length=64), nullable=False),
        sa.Column('external_id', sa.String(length=512), nullable=True),
        sa.Column('calendar_id', sa.String(length=512), nullable=True),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=255), nullable=True),
        sa.Column('categories', _json_type(), nullable=False),
        sa.Column('start_at', sa.DateTime(), nullable=False),
        sa.Column('end_at', sa.DateTime(), nullable=False),
        sa.Column('start_timezone', sa.String(length=64), nullable=True),
        sa.Column('end_timezone', sa.String(length=64), nullable=True),
        sa.Column('is_all_day', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('location_text', sa.Text(), nullable=True),
        sa.Column('location_ids', _json_type(), nullable=False),
        sa.Column('attendee_count', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='draft'),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('previous_status', sa.String(length=20), nullable=True),
        sa.Column('pending_edit_request', _json_type(), nullable=True),
        sa.Column('status_history', _json_type(), nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_by', sa.String(length=255), nullable=True),
        sa.Column('setup_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('teardown_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('assigned_to', sa.String(length=255), nullable=True),
        sa.Column('internal_notes', sa.Text(), nullable=True),
        sa.Column('registration_event_id', sa.String(length=512), nullable=True),
        sa.Column('extensions', _json_type(), nullable=False),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('created_by_email', sa.String(length=255), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_events_uuid', 'events', ['uuid'], unique=True)
    op.create_index('ix_events_event_id', 'events', ['event_id'], unique=True)
    op.create_index('ix_events_external_id', 'events', ['external_id'], unique=True)
    op.create_index('ix_events_calendar_id', 'events', ['calendar_id'])
    op.create_index('ix_events_start_at', 'events', ['start_at'])
    op.create_index('ix_events_end_at', 'events', ['end_at'])
    op.create_index('ix_events_status', 'events', ['status'])
    op.create_index('ix_events_is_deleted', 'events', ['is_deleted'])
    op.create_index('ix_events_created_by', 'events', ['created_by'])
    op.create_index('idx_events_calendar_start', 'events', ['calendar_id', 'start_at'])
    op.create_index('idx_events_status_deleted', 'events', ['status', 'is_deleted'])


def downgrade() -> None:
    """Drop events and locations tables."""
    op.drop_index('idx_events_status_deleted', table_name='events')
    op.drop_index('idx_events_calendar_start', table_name='events')
    op.drop_index('ix_events_created_by', table_name='events')
    op.drop_index('ix_events_is_deleted', table_name='events')
    op.drop_index('ix_events_status', table_name='events')
    op.drop_index('ix_events_end_at', table_name='events')
    op.drop_index('ix_events_start_at', table_name='events')
    op.drop_index('ix_events_calendar_id', table_name='events')
    op.drop_index('ix_events_external_id', table_name='events')
    op.drop_index('ix_events_event_id', table_name='events')
    op.drop_index('ix_events_uuid', table_name='events')
    op.drop_table('events')

    op.drop_index('idx_locations_status_name', table_name='locations')
    op.drop_index('ix_locations_parent_location_id', table_name='locations')
    op.drop_index('ix_locations_status', table_name='locations')
    op.drop_index('ix_locations_uuid', table_name='locations')
    op.drop_table('locations')
