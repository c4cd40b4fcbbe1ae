"""Initial catalog sync schema

Revision ID: 001_initial_catalog_sync_schema
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_catalog_sync_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    'sync_type': ('inventory', 'pricing', 'kits'),
    'sync_channel': ('api', 'bulk'),
    'sync_mode': ('full', 'incremental', 'single'),
    'sync_log_status': ('running', 'completed', 'failed', 'rate_limited'),
    'item_sync_status': ('synced', 'failed', 'not_found', 'error'),
    'record_state': ('active', 'removed'),
    'upload_status': ('processing', 'completed', 'failed', 'cancelled'),
    'upload_stage': ('parsing', 'validating', 'staging', 'syncing', 'completed'),
    'staging_status': ('valid', 'invalid', 'processed'),
    'staging_action': ('insert', 'update', 'unknown'),
    'update_request_status': ('pending', 'processing', 'completed', 'failed'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _id_column() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'))


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name, create_type=True).create(bind, checkfirst=True)

    # Catalog store
    op.create_table(
        'catalog_items',
        _id_column(),
        sa.Column('vcpn', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('part_number', sa.String(length=100), nullable=True),
        sa.Column('manufacturer_part_no', sa.String(length=100), nullable=True),
        sa.Column('brand', sa.String(length=255), nullable=True),
        sa.Column('category', sa.String(length=255), nullable=True),
        sa.Column('supplier', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('regional_quantities', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('cost', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('core_charge', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('weight', sa.Numeric(precision=10, scale=3), nullable=True),
        sa.Column('height', sa.Numeric(precision=10, scale=3), nullable=True),
        sa.Column('length', sa.Numeric(precision=10, scale=3), nullable=True),
        sa.Column('width', sa.Numeric(precision=10, scale=3), nullable=True),
        sa.Column('case_qty', sa.Integer(), nullable=True),
        sa.Column('is_kit', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_hazmat', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_oversized', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_non_returnable', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_chemical', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('upsable', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('attributes', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('sync_status', _enum('item_sync_status'), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_error', sa.Text(), nullable=True),
        sa.Column('upload_id', sa.String(length=100), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('record_state', _enum('record_state'), nullable=False, server_default='active'),
        sa.Column('removed_by_session', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('removed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('vcpn', name='catalog_items_vcpn_key'),
        sa.CheckConstraint('quantity >= 0', name='check_catalog_quantity_non_negative'),
        sa.CheckConstraint('price IS NULL OR price >= 0', name='check_catalog_price_non_negative'),
    )
    op.create_index('idx_catalog_items_part_number', 'catalog_items', ['part_number'])
    op.create_index('idx_catalog_items_sync_status', 'catalog_items', ['sync_status'])
    op.create_index('idx_catalog_items_last_synced', 'catalog_items', ['last_synced_at'])
    op.create_index('idx_catalog_items_upload', 'catalog_items', ['upload_id'])
    op.create_index('idx_catalog_items_record_state', 'catalog_items', ['record_state'])
    op.create_index('idx_catalog_items_removed_by', 'catalog_items', ['removed_by_session'])

    op.create_table(
        'price_records',
        _id_column(),
        sa.Column('vcpn', sa.String(length=100), nullable=False),
        sa.Column('list_price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('dealer_price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('jobber_price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('retail_price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('cost', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('core_charge', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('effective_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('vcpn', name='price_records_vcpn_key'),
    )

    op.create_table(
        'kit_components',
        _id_column(),
        sa.Column('kit_vcpn', sa.String(length=100), nullable=False),
        sa.Column('component_vcpn', sa.String(length=100), nullable=False),
        sa.Column('component_name', sa.String(length=500), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('core_charge', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('is_required', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('kit_vcpn', 'component_vcpn', name='unique_kit_component'),
        sa.CheckConstraint('quantity > 0', name='check_kit_component_quantity'),
    )
    op.create_index('idx_kit_components_kit', 'kit_components', ['kit_vcpn'])
    op.create_index('idx_kit_components_component', 'kit_components', ['component_vcpn'])

    # Sync bookkeeping
    op.create_table(
        'sync_logs',
        _id_column(),
        sa.Column('sync_type', _enum('sync_type'), nullable=False),
        sa.Column('channel', _enum('sync_channel'), nullable=False),
        sa.Column('mode', _enum('sync_mode'), nullable=False),
        sa.Column('status', _enum('sync_log_status'), nullable=False, server_default='running'),
        sa.Column('triggered_by', sa.String(length=50), nullable=False, server_default='manual'),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('records_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_updated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_added', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('rate_limit_reset_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_sync_logs_type', 'sync_logs', ['sync_type'])
    op.create_index('idx_sync_logs_mode', 'sync_logs', ['mode'])
    op.create_index('idx_sync_logs_status', 'sync_logs', ['status'])
    op.create_index('idx_sync_logs_started', 'sync_logs', [sa.text('started_at DESC')])

    op.create_table(
        'pending_update_requests',
        _id_column(),
        sa.Column('vcpn', sa.String(length=100), nullable=False),
        sa.Column('requested_by', sa.String(length=255), nullable=False, server_default='user'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('status', _enum('update_request_status'), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('priority >= 1 AND priority <= 10', name='check_update_priority'),
    )
    op.create_index('idx_pending_updates_vcpn', 'pending_update_requests', ['vcpn'])
    op.create_index('idx_pending_updates_queue', 'pending_update_requests', ['status', 'priority', 'created_at'])

    op.create_table(
        'sync_schedules',
        _id_column(),
        sa.Column('job_name', sa.String(length=100), nullable=False),
        sa.Column('sync_type', sa.String(length=50), nullable=False, server_default='all'),
        sa.Column('schedule', sa.String(length=100), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('last_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('job_name', name='sync_schedules_job_name_key'),
    )

    # Bulk uploads
    op.create_table(
        'upload_sessions',
        _id_column(),
        sa.Column('filename', sa.String(length=500), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('uploaded_by', sa.String(length=255), nullable=True),
        sa.Column('status', _enum('upload_status'), nullable=False, server_default='processing'),
        sa.Column('stage', _enum('upload_stage'), nullable=False, server_default='parsing'),
        sa.Column('total_records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('valid_records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('invalid_records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('corrected_records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_records', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('idx_upload_sessions_uploaded_by', 'upload_sessions', ['uploaded_by'])
    op.create_index('idx_upload_sessions_status', 'upload_sessions', ['status'])

    op.create_table(
        'staging_records',
        _id_column(),
        sa.Column('session_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('row_number', sa.Integer(), nullable=False),
        sa.Column('vcpn', sa.String(length=100), nullable=True),
        sa.Column('original_data', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('processed_data', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('validation_status', _enum('staging_status'), nullable=False),
        sa.Column('corrected', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('needs_review', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('validation_notes', sa.Text(), nullable=True),
        sa.Column('action_type', _enum('staging_action'), nullable=False, server_default='unknown'),
        sa.Column('existing_item_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['session_id'], ['upload_sessions.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('session_id', 'row_number', name='unique_staging_row'),
    )
    op.create_index('idx_staging_records_session', 'staging_records', ['session_id'])
    op.create_index('idx_staging_records_vcpn', 'staging_records', ['vcpn'])
    op.create_index('idx_staging_records_status', 'staging_records', ['validation_status'])
    op.create_index('idx_staging_records_review', 'staging_records', ['needs_review'])


def downgrade() -> None:
    op.drop_table('staging_records')
    op.drop_table('upload_sessions')
    op.drop_table('sync_schedules')
    op.drop_table('pending_update_requests')
    op.drop_table('sync_logs')
    op.drop_table('kit_components')
    op.drop_table('price_records')
    op.drop_table('catalog_items')

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
