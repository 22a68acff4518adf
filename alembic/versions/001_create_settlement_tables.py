"""Create settlement tables

Revision ID: 001_settlement
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers
revision = '001_settlement'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create commission, payout and audit tables"""

    # ====================
    # COMMISSION RATES TABLE
    # ====================
    op.create_table(
        'commission_rates',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('vendor_id', UUID(as_uuid=True), nullable=False),
        sa.Column('category_id', UUID(as_uuid=True), nullable=True, comment='NULL = vendor default rate'),
        sa.Column('rate', sa.Numeric(12, 4), nullable=False),
        sa.Column('rate_type', sa.String(50), server_default='PERCENTAGE', nullable=False),
        sa.Column('min_amount', sa.Numeric(14, 2), nullable=True),
        sa.Column('max_amount', sa.Numeric(14, 2), nullable=True),
        sa.Column('effective_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('effective_to', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_commission_rates_vendor_id', 'commission_rates', ['vendor_id'])
    op.create_index('ix_commission_rates_lookup', 'commission_rates', ['vendor_id', 'category_id', 'effective_from'])

    # ====================
    # PAYOUT POLICIES TABLE
    # ====================
    op.create_table(
        'payout_policies',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('vendor_id', UUID(as_uuid=True), unique=True, nullable=False),
        sa.Column('frequency', sa.String(50), server_default='WEEKLY', nullable=False),
        sa.Column('minimum_payout', sa.Numeric(14, 2), server_default='50.00', nullable=False),
        sa.Column('method', sa.String(50), server_default='BANK_TRANSFER', nullable=False),
        sa.Column('account_reference', sa.String(100), nullable=True),
        sa.Column('next_scheduled_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_payout_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_payout_policies_vendor_id', 'payout_policies', ['vendor_id'])

    # ====================
    # PAYOUTS TABLE
    # ====================
    op.create_table(
        'payouts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()'),
                  comment='Also the gateway idempotency key'),
        sa.Column('vendor_id', UUID(as_uuid=True), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('entry_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('status', sa.String(50), server_default='PENDING', nullable=False),
        sa.Column('method', sa.String(50), nullable=False),
        sa.Column('account_reference', sa.String(100), nullable=True),
        sa.Column('scheduled_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processing_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attempt_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('failure_kind', sa.String(50), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('requires_review', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('gateway_reference', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED')",
            name='ck_payouts_status'
        ),
    )
    op.create_index('ix_payouts_vendor_id', 'payouts', ['vendor_id'])
    op.create_index('ix_payouts_vendor_status', 'payouts', ['vendor_id', 'status'])
    op.create_index('ix_payouts_status', 'payouts', ['status'])

    # ====================
    # COMMISSION ENTRIES TABLE
    # ====================
    op.create_table(
        'commission_entries',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('vendor_id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=False, comment='Idempotency key: one entry per order'),
        sa.Column('category_id', UUID(as_uuid=True), nullable=True),
        sa.Column('order_total', sa.Numeric(14, 2), nullable=False),
        sa.Column('rate', sa.Numeric(12, 4), nullable=False),
        sa.Column('rate_type', sa.String(50), nullable=False),
        sa.Column('rate_source', sa.String(50), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('status', sa.String(50), server_default='CALCULATED', nullable=False),
        sa.Column('payout_id', UUID(as_uuid=True), sa.ForeignKey('payouts.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('order_id', name='uq_commission_entries_order'),
    )
    op.create_index('ix_commission_entries_vendor_id', 'commission_entries', ['vendor_id'])
    op.create_index('ix_commission_entries_unsettled', 'commission_entries', ['vendor_id', 'payout_id', 'created_at'])
    op.create_index('ix_commission_entries_status', 'commission_entries', ['status'])

    # ====================
    # AUDIT LOGS TABLE
    # ====================
    op.create_table(
        'audit_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', UUID(as_uuid=True), nullable=True),
        sa.Column('vendor_id', UUID(as_uuid=True), nullable=True),
        sa.Column('actor', sa.String(100), nullable=True),
        sa.Column('old_values', JSONB, nullable=True),
        sa.Column('new_values', JSONB, nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
    op.create_index('ix_audit_logs_vendor_id', 'audit_logs', ['vendor_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade():
    """Drop settlement tables"""
    op.drop_table('audit_logs')
    op.drop_table('commission_entries')
    op.drop_table('payouts')
    op.drop_table('payout_policies')
    op.drop_table('commission_rates')
