"""Pydantic schemas for commissions, payouts and referral views."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel

from affiliate_hub.models.commission import PayoutMethod
from affiliate_hub.schemas.base import BaseCreateSchema, BaseResponseSchema


# ==================== Commission Schemas ====================

class CommissionResponse(BaseResponseSchema):
    """Response schema for a commission row."""
    id: UUID
    lead_id: UUID
    beneficiary_affiliate_id: UUID
    level: int
    commission_type: str
    trigger_status: str
    base_amount: Decimal
    amount: Decimal
    status: str
    payout_request_id: Optional[UUID] = None
    payout_date: Optional[datetime] = None
    created_at: datetime


class CommissionSummary(BaseModel):
    total_earned: Decimal
    pending_amount: Decimal
    processing_amount: Decimal
    paid_amount: Decimal
    this_month_earned: Decimal
    last_month_earned: Decimal


# ==================== Payout Schemas ====================

class PayoutRequestCreate(BaseCreateSchema):
    payment_method: PayoutMethod = PayoutMethod.BANK_TRANSFER


class PayoutReject(BaseCreateSchema):
    reason: Optional[str] = None


class PayoutResponse(BaseResponseSchema):
    """Response schema for a payout request."""
    id: UUID
    affiliate_id: UUID
    amount: Decimal
    status: str
    payment_method: str
    requested_at: datetime
    processed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class PendingPayoutResponse(PayoutResponse):
    """Admin queue entry; carries the affiliate's display fields."""
    affiliate_name: str
    affiliate_email: str


# ==================== Referral Schemas ====================

class ReferralLevels(BaseModel):
    level_1: int
    level_2: int


class ReferralStats(BaseModel):
    total_referrals: int
    active_referrals: int
    levels: ReferralLevels
    level_1_earnings: Decimal
    level_2_earnings: Decimal
    total_commission_from_referrals: Decimal


class ReferralNode(BaseModel):
    id: UUID
    name: str
    referral_code: str
    level: int
    onboarding_state: str
    joined_at: datetime
    total_leads: int
    total_earnings: Decimal
    children: List["ReferralNode"] = []


ReferralNode.model_rebuild()


# ==================== Admin Schemas ====================

class AdminStats(BaseModel):
    total_affiliates: int
    onboarded_affiliates: int
    pending_reviews: int
    total_leads: int
    qualified_leads: int
    sold_leads: int
    total_commissions: Decimal
    pending_payouts_count: int
    pending_payouts_amount: Decimal


class TopAffiliate(BaseModel):
    id: UUID
    name: str
    email: str
    referral_code: str
    total_leads: int
    total_earnings: Decimal
