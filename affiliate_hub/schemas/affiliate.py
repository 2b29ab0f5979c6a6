"""Pydantic schemas for affiliates."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
from pydantic import EmailStr, Field

from affiliate_hub.schemas.base import BaseCreateSchema, BaseResponseSchema
from affiliate_hub.schemas.lead import LeadResponse
from affiliate_hub.schemas.onboarding import OnboardingStatusResponse


class AffiliateRegister(BaseCreateSchema):
    """Schema for affiliate registration."""
    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    referral_code: Optional[str] = Field(None, max_length=20)


class AffiliateResponse(BaseResponseSchema):
    """Response schema for an affiliate."""
    id: UUID
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    referral_code: str
    referrer_id: Optional[UUID] = None
    onboarding_state: str
    kyc_status: str
    agreement_status: str
    is_admin: bool = False
    is_active: bool = True
    created_at: datetime


class AffiliateRegisterResponse(BaseResponseSchema):
    """Registration result: the account plus a bearer token."""
    affiliate: AffiliateResponse
    access_token: str
    token_type: str = "bearer"


class DashboardResponse(BaseResponseSchema):
    affiliate_id: UUID
    name: str
    referral_code: str
    total_leads: int
    leads_by_status: dict
    total_commission: Decimal
    pending_commission: Decimal
    paid_commission: Decimal
    this_month_earned: Decimal
    last_month_earned: Decimal
    recent_leads: List[LeadResponse]
    direct_referrals: int
    onboarding: OnboardingStatusResponse
