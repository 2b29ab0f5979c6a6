"""Pydantic schemas for onboarding."""
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field

from affiliate_hub.schemas.base import BaseCreateSchema


class OnboardingStatusResponse(BaseModel):
    """Projection of the onboarding stage; derived from the stage alone."""
    current_stage: str
    current_step: int
    total_steps: int
    progress_percentage: int
    next_action: str
    can_access_dashboard: bool


class PersonalInfoSubmit(BaseCreateSchema):
    """Personal info collected in the PERSONAL_INFO step."""
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    phone: str = Field(..., max_length=20)
    address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    zip_code: Optional[str] = Field(None, max_length=10)


class SignatureSessionResponse(BaseModel):
    status: OnboardingStatusResponse
    session_ref: Optional[str] = None
    signing_url: Optional[str] = None
    agreement_status: str


class SignatureWebhook(BaseModel):
    """Notification from the e-signature provider."""
    session_id: str
    event: Optional[str] = None


class KYCUploadResponse(BaseModel):
    status: OnboardingStatusResponse
    document_type: str
    kyc_status: str


class ReviewDecision(BaseCreateSchema):
    """Manual KYC review result."""
    approved: bool
    notes: Optional[str] = Field(None, max_length=2000)


class ReviewResponse(BaseModel):
    affiliate_id: UUID
    status: OnboardingStatusResponse
    kyc_status: str
