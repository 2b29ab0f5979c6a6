from typing import Annotated
import uuid
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_hub.core.exceptions import PermissionDeniedError
from affiliate_hub.core.security import verify_access_token
from affiliate_hub.database import get_db
from affiliate_hub.models.affiliate import Affiliate
from affiliate_hub.services.document_storage import DocumentStorage, get_document_storage
from affiliate_hub.services.onboarding_service import OnboardingService
from affiliate_hub.services.signature_provider import SignatureProvider, get_signature_provider


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_affiliate(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Affiliate:
    """
    Dependency to get the current authenticated affiliate.
    Validates the JWT token and returns the affiliate row.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    affiliate_id = verify_access_token(credentials.credentials)
    if affiliate_id is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    try:
        affiliate_uuid = uuid.UUID(affiliate_id)
    except ValueError:
        logger.warning(f"Invalid affiliate_id in token: {affiliate_id}")
        raise credentials_exception

    affiliate = await db.get(Affiliate, affiliate_uuid)
    if affiliate is None:
        logger.warning(f"Affiliate {affiliate_id} not found")
        raise credentials_exception

    if not affiliate.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Affiliate account is deactivated"
        )

    return affiliate


def get_onboarding_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    signature_provider: Annotated[SignatureProvider, Depends(get_signature_provider)],
    document_storage: Annotated[DocumentStorage, Depends(get_document_storage)],
) -> OnboardingService:
    return OnboardingService(db, signature_provider, document_storage)


async def require_onboarded_affiliate(
    affiliate: Annotated[Affiliate, Depends(get_current_affiliate)],
    onboarding: Annotated[OnboardingService, Depends(get_onboarding_service)],
) -> Affiliate:
    """
    Dashboard gate: only affiliates whose onboarding is COMPLETE pass.

    Evaluated against the onboarding record on every request.
    """
    if not await onboarding.can_access_dashboard(affiliate.id):
        status_info = await onboarding.current_status(affiliate.id)
        logger.info(f"Affiliate {affiliate.id} blocked by onboarding gate ({status_info['current_stage']})")
        raise PermissionDeniedError(
            "Complete onboarding to access this page",
            {"onboarding": status_info},
        )
    return affiliate


async def require_admin(
    affiliate: Annotated[Affiliate, Depends(get_current_affiliate)],
) -> Affiliate:
    if not affiliate.is_admin:
        logger.warning(f"Affiliate {affiliate.id} attempted an admin operation")
        raise PermissionDeniedError("Admin access required")
    return affiliate


# Type aliases for cleaner endpoint signatures
DB = Annotated[AsyncSession, Depends(get_db)]
OnboardedAffiliate = Annotated[Affiliate, Depends(require_onboarded_affiliate)]
