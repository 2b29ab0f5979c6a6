"""Create affiliate schema

Revision ID: 001_affiliate_schema
Revises:
Create Date: 2026-10-18

Tables:
- affiliates (referral forest via referrer_id)
- onboarding_records (one per affiliate, versioned)
- leads, lead_status_history
- payout_requests, commissions (unique per lead/type/beneficiary)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_affiliate_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==================== affiliates ====================
    op.create_table(
        'affiliates',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('referral_code', sa.String(20), nullable=False),
        sa.Column('referrer_id', sa.Uuid(), sa.ForeignKey('affiliates.id', ondelete='SET NULL'), nullable=True),
        sa.Column('onboarding_state', sa.String(20), nullable=False, server_default='WELCOME'),
        sa.Column('kyc_status', sa.String(20), nullable=False, server_default='not_submitted'),
        sa.Column('agreement_status', sa.String(20), nullable=False, server_default='not_started'),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('referrer_id IS NULL OR referrer_id <> id', name='ck_affiliates_no_self_referral'),
    )
    op.create_index('ix_affiliates_email', 'affiliates', ['email'], unique=True)
    op.create_index('ix_affiliates_referral_code', 'affiliates', ['referral_code'], unique=True)
    op.create_index('ix_affiliates_referrer_id', 'affiliates', ['referrer_id'])

    # ==================== onboarding_records ====================
    op.create_table(
        'onboarding_records',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('affiliate_id', sa.Uuid(), sa.ForeignKey('affiliates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('current_stage', sa.String(20), nullable=False, server_default='WELCOME'),
        sa.Column('personal_info', sa.JSON(), nullable=True),
        sa.Column('signature_session_ref', sa.String(255), nullable=True),
        sa.Column('signing_url', sa.String(1000), nullable=True),
        sa.Column('kyc_document_ref', sa.String(500), nullable=True),
        sa.Column('kyc_document_type', sa.String(30), nullable=True),
        sa.Column('kyc_document_mime_type', sa.String(50), nullable=True),
        sa.Column('kyc_document_size', sa.Integer(), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.Column('personal_info_submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('signature_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('signature_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('kyc_uploaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('review_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_onboarding_records_affiliate_id', 'onboarding_records', ['affiliate_id'], unique=True)
    op.create_index('ix_onboarding_records_current_stage', 'onboarding_records', ['current_stage'])

    # ==================== leads ====================
    op.create_table(
        'leads',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('lead_id', sa.String(30), nullable=False),
        sa.Column('owner_affiliate_id', sa.Uuid(), sa.ForeignKey('affiliates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='submitted'),
        sa.Column('lead_type', sa.String(20), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('address', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('zip_code', sa.String(10), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_leads_lead_id', 'leads', ['lead_id'], unique=True)
    op.create_index('ix_leads_owner_affiliate_id', 'leads', ['owner_affiliate_id'])
    op.create_index('ix_leads_status', 'leads', ['status'])

    op.create_table(
        'lead_status_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('lead_id', sa.Uuid(), sa.ForeignKey('leads.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('from_status', sa.String(20), nullable=False),
        sa.Column('to_status', sa.String(20), nullable=False),
        sa.Column('changed_by', sa.Uuid(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('lead_id', 'sequence', name='uq_lead_status_history_sequence'),
    )
    op.create_index('ix_lead_status_history_lead_id', 'lead_status_history', ['lead_id'])
    op.create_index('ix_lead_status_history_processed_at', 'lead_status_history', ['processed_at'])

    # ==================== payout_requests ====================
    op.create_table(
        'payout_requests',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('affiliate_id', sa.Uuid(), sa.ForeignKey('affiliates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='requested'),
        sa.Column('payment_method', sa.String(20), nullable=False, server_default='bank_transfer'),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_by', sa.Uuid(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
    )
    op.create_index('ix_payout_requests_affiliate_id', 'payout_requests', ['affiliate_id'])
    op.create_index('ix_payout_requests_status', 'payout_requests', ['status'])

    # ==================== commissions ====================
    op.create_table(
        'commissions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('lead_id', sa.Uuid(), sa.ForeignKey('leads.id', ondelete='CASCADE'), nullable=False),
        sa.Column('beneficiary_affiliate_id', sa.Uuid(), sa.ForeignKey('affiliates.id', ondelete='CASCADE'), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('commission_type', sa.String(30), nullable=False),
        sa.Column('trigger_status', sa.String(20), nullable=False),
        sa.Column('base_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payout_request_id', sa.Uuid(), sa.ForeignKey('payout_requests.id', ondelete='SET NULL'), nullable=True),
        sa.Column('payout_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            'lead_id', 'commission_type', 'beneficiary_affiliate_id',
            name='uq_commission_lead_type_beneficiary'
        ),
        sa.CheckConstraint('level IN (0, 1, 2)', name='ck_commissions_level'),
    )
    op.create_index('ix_commissions_lead_id', 'commissions', ['lead_id'])
    op.create_index('ix_commissions_payout_request_id', 'commissions', ['payout_request_id'])
    op.create_index('ix_commissions_beneficiary_status', 'commissions', ['beneficiary_affiliate_id', 'status'])


def downgrade() -> None:
    op.drop_table('commissions')
    op.drop_table('payout_requests')
    op.drop_table('lead_status_history')
    op.drop_table('leads')
    op.drop_table('onboarding_records')
    op.drop_table('affiliates')
