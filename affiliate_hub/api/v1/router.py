from fastapi import APIRouter

from affiliate_hub.api.v1.endpoints import (
    affiliates,
    onboarding,
    leads,
    commissions,
    referrals,
    admin,
)

api_router = APIRouter()

api_router.include_router(affiliates.router)
api_router.include_router(onboarding.router)
api_router.include_router(leads.router)
api_router.include_router(commissions.router)
api_router.include_router(referrals.router)
api_router.include_router(admin.router)
