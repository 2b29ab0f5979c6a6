from affiliate_hub.models.affiliate import Affiliate, KYCStatus, AgreementStatus
from affiliate_hub.models.lead import Lead, LeadStatus, LeadType, LeadStatusHistory
from affiliate_hub.models.commission import (
    Commission,
    CommissionType,
    CommissionStatus,
    PayoutRequest,
    PayoutStatus,
    PayoutMethod,
)
from affiliate_hub.models.onboarding import OnboardingRecord

__all__ = [
    "Affiliate",
    "KYCStatus",
    "AgreementStatus",
    "Lead",
    "LeadStatus",
    "LeadType",
    "LeadStatusHistory",
    "Commission",
    "CommissionType",
    "CommissionStatus",
    "PayoutRequest",
    "PayoutStatus",
    "PayoutMethod",
    "OnboardingRecord",
]
