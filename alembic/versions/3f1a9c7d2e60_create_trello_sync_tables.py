"""Create users, settings_trello, leads and sync_runs tables

Revision ID: 3f1a9c7d2e60
Revises:
Create Date: 2026-10-12 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c7d2e60'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agency_id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('role', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_agency_id', 'users', ['agency_id'])

    op.create_table('settings_trello',
        sa.Column('agency_id', sa.Text(), nullable=False),
        sa.Column('trello_api_key', sa.Text(), nullable=True),
        sa.Column('trello_token', sa.Text(), nullable=True),
        sa.Column('board_id', sa.Text(), nullable=True),
        sa.Column('list_status_mapping', sa.JSON(), nullable=True),
        sa.Column('list_region_mapping', sa.JSON(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('agency_id'),
    )
    op.create_index('ix_settings_trello_board_id', 'settings_trello', ['board_id'])

    op.create_table('leads',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agency_id', sa.Text(), nullable=False),
        sa.Column('source', sa.Text(), nullable=False),
        sa.Column('external_id', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('region', sa.Text(), nullable=False),
        sa.Column('destination', sa.Text(), nullable=True),
        sa.Column('contact_name', sa.Text(), nullable=True),
        sa.Column('contact_phone', sa.Text(), nullable=True),
        sa.Column('contact_email', sa.Text(), nullable=True),
        sa.Column('contact_instagram', sa.Text(), nullable=True),
        sa.Column('trello_url', sa.Text(), nullable=True),
        sa.Column('trello_list_id', sa.Text(), nullable=True),
        sa.Column('trello_list_name', sa.Text(), nullable=True),
        sa.Column('trello_full_data', sa.JSON(), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_seller_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['assigned_seller_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('agency_id', 'source', 'external_id', name='uq_lead_agency_source_external'),
    )
    op.create_index('ix_leads_agency_id', 'leads', ['agency_id'])
    op.create_index('ix_leads_agency_source_list', 'leads', ['agency_id', 'source', 'trello_list_id'])

    op.create_table('sync_runs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agency_id', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('incremental', sa.Boolean(), nullable=True),
        sa.Column('total', sa.Integer(), nullable=True),
        sa.Column('created', sa.Integer(), nullable=True),
        sa.Column('updated', sa.Integer(), nullable=True),
        sa.Column('deleted', sa.Integer(), nullable=True),
        sa.Column('orphaned_deleted', sa.Integer(), nullable=True),
        sa.Column('errors', sa.Integer(), nullable=True),
        sa.Column('rate_limited', sa.Integer(), nullable=True),
        sa.Column('total_cards', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sync_runs_agency_id', 'sync_runs', ['agency_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_sync_runs_agency_id', table_name='sync_runs')
    op.drop_table('sync_runs')
    op.drop_index('ix_leads_agency_source_list', table_name='leads')
    op.drop_index('ix_leads_agency_id', table_name='leads')
    op.drop_table('leads')
    op.drop_index('ix_settings_trello_board_id', table_name='settings_trello')
    op.drop_table('settings_trello')
    op.drop_index('ix_users_agency_id', table_name='users')
    op.drop_table('users')
