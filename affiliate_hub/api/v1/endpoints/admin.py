"""
Admin API Endpoints

- Lead status changes (feed the commission engine)
- Payout approval queue
- KYC review
- Program statistics
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_hub.api.deps import get_db, get_onboarding_service, require_admin
from affiliate_hub.models.affiliate import Affiliate
from affiliate_hub.schemas.commission import (
    AdminStats,
    PayoutReject,
    PayoutResponse,
    PendingPayoutResponse,
    TopAffiliate,
)
from affiliate_hub.schemas.lead import LeadResponse, LeadStatusUpdate
from affiliate_hub.schemas.onboarding import ReviewDecision, ReviewResponse
from affiliate_hub.services.commission_engine import CommissionEngine
from affiliate_hub.services.lead_events import LeadEventDispatcher, get_lead_event_dispatcher
from affiliate_hub.services.lead_service import LeadService
from affiliate_hub.services.onboarding_service import OnboardingService
from affiliate_hub.services.onboarding_state_machine import stage_projection
from affiliate_hub.services.status_projection import StatusProjection


router = APIRouter(prefix="/admin", tags=["Admin"])


@router.put("/leads/{lead_id}/status", response_model=LeadResponse)
async def update_lead_status(
    lead_id: uuid.UUID,
    data: LeadStatusUpdate,
    admin: Affiliate = Depends(require_admin),
    dispatcher: LeadEventDispatcher = Depends(get_lead_event_dispatcher),
    db: AsyncSession = Depends(get_db)
):
    """
    Change a lead's status.

    Commissions for qualified/sold transitions are recorded asynchronously,
    in the order the changes were made.
    """
    service = LeadService(db, dispatcher)
    return await service.change_status(lead_id, data.status.value, changed_by=admin.id)


@router.get("/stats", response_model=AdminStats)
async def get_admin_stats(
    admin: Affiliate = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await StatusProjection(db).admin_stats()


@router.get("/affiliates/top", response_model=list[TopAffiliate])
async def get_top_affiliates(
    admin: Affiliate = Depends(require_admin),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    return await StatusProjection(db).top_affiliates(limit)


@router.get("/payouts/pending", response_model=list[PendingPayoutResponse])
async def get_pending_payouts(
    admin: Affiliate = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    rows = await CommissionEngine(db).pending_payouts()
    return [
        {
            **PayoutResponse.model_validate(payout).model_dump(),
            "affiliate_name": affiliate.full_name,
            "affiliate_email": affiliate.email,
        }
        for payout, affiliate in rows
    ]


@router.post("/payouts/{payout_id}/approve", response_model=PayoutResponse)
async def approve_payout(
    payout_id: uuid.UUID,
    admin: Affiliate = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await CommissionEngine(db).approve_payout(payout_id, processed_by=admin.id)


@router.post("/payouts/{payout_id}/reject", response_model=PayoutResponse)
async def reject_payout(
    payout_id: uuid.UUID,
    data: PayoutReject,
    admin: Affiliate = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await CommissionEngine(db).reject_payout(
        payout_id, reason=data.reason, processed_by=admin.id
    )


@router.post("/onboarding/{affiliate_id}/review", response_model=ReviewResponse)
async def review_kyc(
    affiliate_id: uuid.UUID,
    data: ReviewDecision,
    admin: Affiliate = Depends(require_admin),
    service: OnboardingService = Depends(get_onboarding_service),
    db: AsyncSession = Depends(get_db)
):
    """Approve (-> COMPLETE) or reject (-> KYC_UPLOAD) an affiliate's KYC."""
    record = await service.complete_review(
        affiliate_id, data.approved, notes=data.notes, reviewer_id=admin.id
    )
    affiliate = await db.get(Affiliate, affiliate_id)
    return {
        "affiliate_id": affiliate_id,
        "status": stage_projection(record.current_stage),
        "kyc_status": affiliate.kyc_status,
    }
