"""
Onboarding API Endpoints

The client polls ``GET /onboarding/status`` and renders the step named by
``next_action``. Every write goes through OnboardingService.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, UploadFile, status

from affiliate_hub.api.deps import get_current_affiliate, get_onboarding_service
from affiliate_hub.config import settings
from affiliate_hub.models.affiliate import Affiliate
from affiliate_hub.schemas.onboarding import (
    KYCUploadResponse,
    OnboardingStatusResponse,
    PersonalInfoSubmit,
    SignatureSessionResponse,
    SignatureWebhook,
)
from affiliate_hub.services.onboarding_service import OnboardingService
from affiliate_hub.services.onboarding_state_machine import stage_projection


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/onboarding", tags=["Onboarding"])


def _signature_response(record, affiliate: Affiliate) -> dict:
    return {
        "status": stage_projection(record.current_stage),
        "session_ref": record.signature_session_ref,
        "signing_url": record.signing_url,
        "agreement_status": affiliate.agreement_status,
    }


@router.get("/status", response_model=OnboardingStatusResponse)
async def get_onboarding_status(
    affiliate: Affiliate = Depends(get_current_affiliate),
    service: OnboardingService = Depends(get_onboarding_service),
):
    """Current stage, progress and next required action."""
    return await service.current_status(affiliate.id)


@router.post("/start", response_model=OnboardingStatusResponse)
async def start_onboarding(
    affiliate: Affiliate = Depends(get_current_affiliate),
    service: OnboardingService = Depends(get_onboarding_service),
):
    record = await service.begin(affiliate.id)
    return stage_projection(record.current_stage)


@router.post("/personal-info", response_model=OnboardingStatusResponse)
async def submit_personal_info(
    data: PersonalInfoSubmit,
    affiliate: Affiliate = Depends(get_current_affiliate),
    service: OnboardingService = Depends(get_onboarding_service),
):
    record = await service.submit_personal_info(affiliate.id, data.model_dump())
    return stage_projection(record.current_stage)


@router.post("/signature", response_model=SignatureSessionResponse)
async def start_signature(
    affiliate: Affiliate = Depends(get_current_affiliate),
    service: OnboardingService = Depends(get_onboarding_service),
):
    """
    Open the agreement signing session (or return the outstanding one).

    The client redirects to ``signing_url`` and then polls
    ``POST /onboarding/signature/sync``.
    """
    record = await service.start_signature(affiliate.id)
    return _signature_response(record, affiliate)


@router.post("/signature/sync", response_model=SignatureSessionResponse)
async def sync_signature(
    affiliate: Affiliate = Depends(get_current_affiliate),
    service: OnboardingService = Depends(get_onboarding_service),
):
    record = await service.sync_signature(affiliate.id)
    return _signature_response(record, affiliate)


@router.post("/signature/webhook", status_code=status.HTTP_202_ACCEPTED)
async def signature_webhook(
    payload: SignatureWebhook,
    x_webhook_secret: Optional[str] = Header(None),
    service: OnboardingService = Depends(get_onboarding_service),
):
    """
    Provider notification. The payload is only a hint: the session status
    is always re-read from the provider.
    """
    if settings.ESIGN_WEBHOOK_SECRET and not hmac.compare_digest(
        x_webhook_secret or "", settings.ESIGN_WEBHOOK_SECRET
    ):
        logger.warning(f"Rejected signature webhook for session {payload.session_id}: bad secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    record = await service.sync_signature_by_session(payload.session_id)
    return {"affiliate_id": str(record.affiliate_id), "current_stage": record.current_stage}


@router.post("/kyc", response_model=KYCUploadResponse)
async def upload_kyc_document(
    document_type: str = Form(...),
    file: UploadFile = File(...),
    affiliate: Affiliate = Depends(get_current_affiliate),
    service: OnboardingService = Depends(get_onboarding_service),
):
    """
    Upload an identity document (PDF, JPEG or PNG, max 10MB).

    At most one byte over the limit is read, so an oversized upload is
    rejected without being held in memory.
    """
    content = await file.read(settings.KYC_MAX_DOCUMENT_SIZE + 1)
    record = await service.upload_kyc_document(
        affiliate.id,
        content=content,
        mime_type=file.content_type,
        document_type=document_type,
        declared_size=file.size if file.size is not None else len(content),
    )
    return {
        "status": stage_projection(record.current_stage),
        "document_type": record.kyc_document_type,
        "kyc_status": affiliate.kyc_status,
    }
