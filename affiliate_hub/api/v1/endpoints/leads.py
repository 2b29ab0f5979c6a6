"""Lead API Endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_hub.api.deps import get_db, require_onboarded_affiliate
from affiliate_hub.models.affiliate import Affiliate
from affiliate_hub.models.lead import LeadStatus
from affiliate_hub.schemas.base import PaginatedResponse
from affiliate_hub.schemas.lead import LeadCreate, LeadResponse
from affiliate_hub.services.lead_service import LeadService


router = APIRouter(prefix="/leads", tags=["Leads"])


@router.get("", response_model=PaginatedResponse[LeadResponse])
async def list_my_leads(
    affiliate: Affiliate = Depends(require_onboarded_affiliate),
    status: Optional[LeadStatus] = None,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    """Leads submitted by the current affiliate, newest first."""
    items, total = await LeadService(db).list_leads(
        affiliate.id, status.value if status else None, page, size
    )
    return {
        "items": [LeadResponse.model_validate(lead) for lead in items],
        "total": total,
        "page": page,
        "size": size,
        "pages": (total + size - 1) // size,
    }


@router.post("", response_model=LeadResponse, status_code=status.HTTP_201_CREATED)
async def submit_lead(
    data: LeadCreate,
    affiliate: Affiliate = Depends(require_onboarded_affiliate),
    db: AsyncSession = Depends(get_db)
):
    return await LeadService(db).submit_lead(affiliate.id, data.model_dump(mode="json"))
