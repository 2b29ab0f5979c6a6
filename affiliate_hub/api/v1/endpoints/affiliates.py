"""
Affiliate API Endpoints

- Registration (public)
- Profile
- Dashboard (requires completed onboarding)
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_hub.api.deps import get_db, get_current_affiliate, require_onboarded_affiliate
from affiliate_hub.core.security import create_access_token
from affiliate_hub.models.affiliate import Affiliate
from affiliate_hub.schemas.affiliate import (
    AffiliateRegister,
    AffiliateRegisterResponse,
    AffiliateResponse,
    DashboardResponse,
)
from affiliate_hub.services.affiliate_service import AffiliateService
from affiliate_hub.services.status_projection import StatusProjection


router = APIRouter(prefix="/affiliates", tags=["Affiliates"])


@router.post("/register", response_model=AffiliateRegisterResponse, status_code=status.HTTP_201_CREATED)
async def register_affiliate(
    data: AffiliateRegister,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a new affiliate.

    An optional ``referral_code`` links the new affiliate under its referrer.
    """
    service = AffiliateService(db)
    affiliate = await service.register(
        email=data.email,
        first_name=data.first_name,
        last_name=data.last_name,
        phone=data.phone,
        referral_code=data.referral_code,
    )
    return {
        "affiliate": AffiliateResponse.model_validate(affiliate),
        "access_token": create_access_token(affiliate.id),
    }


@router.get("/me", response_model=AffiliateResponse)
async def get_my_profile(
    affiliate: Affiliate = Depends(get_current_affiliate),
):
    return affiliate


@router.get("/me/dashboard", response_model=DashboardResponse)
async def get_my_dashboard(
    affiliate: Affiliate = Depends(require_onboarded_affiliate),
    db: AsyncSession = Depends(get_db)
):
    """Dashboard summary: leads, commissions, referrals, onboarding."""
    return await StatusProjection(db).dashboard(affiliate)
