"""Initial schema with tracking links, clicks, sessions, conversions and revenue entries

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial schema."""

    # Enable pgcrypto extension for gen_random_uuid()
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')

    # Create tracking_links table
    op.create_table(
        'tracking_links',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('tracking_id', sa.String(64), nullable=False),
        sa.Column('token', sa.String(64), nullable=False),
        sa.Column('short_code', sa.String(16), nullable=False),
        sa.Column('campaign_name', sa.Text(), nullable=False),
        sa.Column('source', sa.String(100), nullable=False),
        sa.Column('medium', sa.String(100), nullable=False),
        sa.Column('target_url', sa.Text(), nullable=False),
        sa.Column('tracking_url', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('max_clicks', sa.Integer(), nullable=True),
        sa.Column('total_clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_conversions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_revenue', sa.Float(), nullable=False, server_default='0'),
        sa.Column('attributed_revenue', sa.Float(), nullable=False, server_default='0'),
        sa.Column('conversion_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('average_order_value', sa.Float(), nullable=False, server_default='0'),
        sa.Column('geo_stats', sa.JSON(), nullable=False),
        sa.Column('device_stats', sa.JSON(), nullable=False),
        sa.Column('browser_stats', sa.JSON(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('last_click_at', sa.DateTime(), nullable=True),
        sa.Column('last_conversion_at', sa.DateTime(), nullable=True),
        sa.Column('last_revenue_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('tracking_id', name='uq_tracking_links_tracking_id'),
        sa.UniqueConstraint('token', name='uq_tracking_links_token'),
        sa.UniqueConstraint('short_code', name='uq_tracking_links_short_code'),
    )
    op.create_index('ix_tracking_links_campaign_name', 'tracking_links', ['campaign_name'])
    op.create_index('ix_tracking_links_status', 'tracking_links', ['status'])
    op.create_index('ix_tracking_links_expires_at', 'tracking_links', ['expires_at'])

    # Create link_sessions table
    op.create_table(
        'link_sessions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('link_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('session_id', sa.String(32), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=True),
        sa.Column('click_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('last_activity_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['link_id'], ['tracking_links.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('link_id', 'session_id', name='uq_link_session'),
    )
    op.create_index('ix_link_sessions_link_id', 'link_sessions', ['link_id'])
    op.create_index('ix_link_sessions_session_id', 'link_sessions', ['session_id'])

    # Create link_clicks table
    op.create_table(
        'link_clicks',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('link_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('session_id', sa.String(32), nullable=False),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.Column('ip_encrypted', sa.LargeBinary(), nullable=True),
        sa.Column('ip_hash', sa.Text(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=False, server_default='direct'),
        sa.Column('landing_page', sa.Text(), nullable=False, server_default='/'),
        sa.Column('utm_source', sa.Text(), nullable=True),
        sa.Column('utm_medium', sa.Text(), nullable=True),
        sa.Column('utm_campaign', sa.Text(), nullable=True),
        sa.Column('utm_term', sa.Text(), nullable=True),
        sa.Column('utm_content', sa.Text(), nullable=True),
        sa.Column('user_id', sa.String(255), nullable=True),
        sa.Column('location', sa.JSON(), nullable=True),
        sa.Column('device', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['link_id'], ['tracking_links.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_link_clicks_link_id', 'link_clicks', ['link_id'])
    op.create_index('ix_link_clicks_session_id', 'link_clicks', ['session_id'])
    op.create_index('ix_link_clicks_occurred_at', 'link_clicks', ['occurred_at'])

    # Create link_conversions table
    op.create_table(
        'link_conversions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('link_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('session_pk', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('session_id', sa.String(32), nullable=False),
        sa.Column('order_ref', sa.String(255), nullable=True),
        sa.Column('amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('revenue', sa.Float(), nullable=False, server_default='0'),
        sa.Column('user_id', sa.String(255), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='completed'),
        sa.Column('attribution_model', sa.String(20), nullable=False, server_default='last_click'),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.Column('ledger_recorded_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['link_id'], ['tracking_links.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['session_pk'], ['link_sessions.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_link_conversions_link_id', 'link_conversions', ['link_id'])
    op.create_index('ix_link_conversions_session_pk', 'link_conversions', ['session_pk'])
    op.create_index('ix_link_conversions_order_ref', 'link_conversions', ['order_ref'])
    op.create_index('ix_link_conversions_occurred_at', 'link_conversions', ['occurred_at'])

    # Create revenue_entries table
    op.create_table(
        'revenue_entries',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('source', sa.String(50), nullable=False),
        sa.Column('payment_method', sa.String(50), nullable=False, server_default='attributed'),
        sa.Column('order_ref', sa.String(255), nullable=True),
        sa.Column('user_ref', sa.String(255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('attribution_metadata', sa.JSON(), nullable=False),
        sa.Column('recorded_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_revenue_entries_source', 'revenue_entries', ['source'])
    op.create_index('ix_revenue_entries_order_ref', 'revenue_entries', ['order_ref'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('revenue_entries')
    op.drop_table('link_conversions')
    op.drop_table('link_clicks')
    op.drop_table('link_sessions')
    op.drop_table('tracking_links')
