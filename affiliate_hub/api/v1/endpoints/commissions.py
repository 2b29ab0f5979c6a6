"""
Commission API Endpoints

- Commission history and summary
- Payout requests
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_hub.api.deps import get_db, require_onboarded_affiliate
from affiliate_hub.models.affiliate import Affiliate
from affiliate_hub.models.commission import CommissionStatus
from affiliate_hub.schemas.base import PaginatedResponse
from affiliate_hub.schemas.commission import (
    CommissionResponse,
    CommissionSummary,
    PayoutRequestCreate,
    PayoutResponse,
)
from affiliate_hub.services.commission_engine import CommissionEngine
from affiliate_hub.services.status_projection import StatusProjection


router = APIRouter(prefix="/commissions", tags=["Commissions"])


@router.get("", response_model=PaginatedResponse[CommissionResponse])
async def list_my_commissions(
    affiliate: Affiliate = Depends(require_onboarded_affiliate),
    status: Optional[CommissionStatus] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    items, total = await CommissionEngine(db).list_commissions(
        affiliate.id, status.value if status else None, page, size
    )
    return {
        "items": [CommissionResponse.model_validate(c) for c in items],
        "total": total,
        "page": page,
        "size": size,
        "pages": (total + size - 1) // size,
    }


@router.get("/summary", response_model=CommissionSummary)
async def get_my_commission_summary(
    affiliate: Affiliate = Depends(require_onboarded_affiliate),
    db: AsyncSession = Depends(get_db)
):
    return await StatusProjection(db).commission_summary(affiliate.id)


@router.post("/request-payout", response_model=PayoutResponse, status_code=status.HTTP_201_CREATED)
async def request_payout(
    request: PayoutRequestCreate,
    affiliate: Affiliate = Depends(require_onboarded_affiliate),
    db: AsyncSession = Depends(get_db)
):
    """
    Request payout of every pending commission.

    Fails with ``no_pending_funds`` when nothing is claimable.
    """
    return await CommissionEngine(db).request_payout(affiliate.id, request.payment_method.value)


@router.get("/payouts", response_model=list[PayoutResponse])
async def get_my_payouts(
    affiliate: Affiliate = Depends(require_onboarded_affiliate),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    return await CommissionEngine(db).list_payouts(affiliate.id, page, size)
