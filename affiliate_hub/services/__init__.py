# Services module
from affiliate_hub.services.affiliate_service import AffiliateService
from affiliate_hub.services.onboarding_service import OnboardingService
from affiliate_hub.services.lead_service import LeadService
from affiliate_hub.services.commission_engine import CommissionEngine
from affiliate_hub.services.referral_graph import ReferralGraphStore
from affiliate_hub.services.status_projection import StatusProjection

__all__ = [
    "AffiliateService",
    "OnboardingService",
    "LeadService",
    "CommissionEngine",
    "ReferralGraphStore",
    "StatusProjection",
]
