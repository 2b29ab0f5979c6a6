"""Referral network endpoints."""

from fastapi import APIRouter, Query

from affiliate_hub.api.deps import DB, OnboardedAffiliate
from affiliate_hub.schemas.commission import ReferralNode, ReferralStats
from affiliate_hub.services.status_projection import StatusProjection


router = APIRouter(prefix="/referrals", tags=["Referrals"])


@router.get("/stats", response_model=ReferralStats)
async def get_referral_stats(affiliate: OnboardedAffiliate, db: DB):
    return await StatusProjection(db).aggregate_stats(affiliate.id)


@router.get("/tree", response_model=ReferralNode)
async def get_referral_tree(
    affiliate: OnboardedAffiliate,
    db: DB,
    depth: int = Query(2, ge=1, le=10),
):
    """Referral tree rooted at the current affiliate."""
    return await StatusProjection(db).referral_tree(affiliate.id, max_depth=depth)
