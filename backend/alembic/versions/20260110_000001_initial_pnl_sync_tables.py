"""Create clients, financial_profiles and daily_metrics tables

Revision ID: 20260110_000001
Revises:
Create Date: 2026-01-10

WHAT:
    Creates the record store for the P&L sheet sync: clients (with the
    encrypted Google credential, report sheet and sync watermark), the
    per-client cost model, and raw daily platform metrics.

WHY:
    - CredentialStore persists tokens on clients
    - MetricsAggregator reads financial_profiles and daily_metrics
    - SyncEngine advances clients.last_synced_at after successful syncs
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20260110_000001'
down_revision = None
branch_labels = None
depends_on = None


platform_enum = sa.Enum('google', 'meta', 'tiktok', 'shopify', 'other', name='platformenum')


def upgrade() -> None:
    """Create P&L sync tables."""
    op.create_table(
        'clients',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('google_access_token_enc', sa.String(), nullable=True),
        sa.Column('google_refresh_token_enc', sa.String(), nullable=True),
        sa.Column('google_token_expiry', sa.DateTime(timezone=True), nullable=True),
        sa.Column('google_sheet_id', sa.String(), nullable=True),
        sa.Column('google_sheet_url', sa.String(), nullable=True),
        sa.Column('auto_sync_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'financial_profiles',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('client_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('clients.id'), nullable=False, unique=True),
        sa.Column('cogs_percentage', sa.Numeric(9, 4), nullable=False, server_default='0'),
        sa.Column('payment_processing_fee_percentage', sa.Numeric(9, 4), nullable=False, server_default='0'),
        sa.Column('merchant_account_fee_flat', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('shipping_cost_per_order', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('fulfillment_cost_per_order', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('target_margin_percentage', sa.Numeric(9, 4), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'daily_metrics',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('client_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('platform', platform_enum, nullable=False),
        sa.Column('revenue', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ad_spend', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('impressions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('client_id', 'date', 'platform', name='uq_daily_metric_client_date_platform'),
    )
    op.create_index('ix_daily_metrics_client_id', 'daily_metrics', ['client_id'])
    op.create_index('ix_daily_metrics_date', 'daily_metrics', ['date'])


def downgrade() -> None:
    """Drop P&L sync tables."""
    op.drop_index('ix_daily_metrics_date', table_name='daily_metrics')
    op.drop_index('ix_daily_metrics_client_id', table_name='daily_metrics')
    op.drop_table('daily_metrics')
    op.drop_table('financial_profiles')
    op.drop_table('clients')
    platform_enum.drop(op.get_bind(), checkfirst=True)
