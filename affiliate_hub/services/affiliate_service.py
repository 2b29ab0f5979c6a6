"""
Affiliate Service

Handles affiliate registration:
- Unique email check
- Referral code generation
- Referrer lookup by referral code
- Onboarding record creation

``referrer_id`` is only ever written here, on a brand new row, so the
referral graph cannot gain a cycle.
"""

import logging
import random
import string
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_hub.core.exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from affiliate_hub.models.affiliate import Affiliate
from affiliate_hub.models.onboarding import OnboardingRecord
from affiliate_hub.services.onboarding_state_machine import OnboardingStage

logger = logging.getLogger(__name__)

REGISTER_ATTEMPTS = 3


class AffiliateService:
    """Service for affiliate accounts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========================================================================
    # Referral Code Generation
    # ========================================================================

    async def generate_referral_code(self, name: str) -> str:
        """
        Generate unique referral code from affiliate name
        Example: JANE7K2M (first 4 letters of name + 4 random)
        """
        prefix = ''.join(c for c in name.upper() if c.isalpha())[:4]
        if len(prefix) < 4:
            prefix = prefix.ljust(4, 'X')

        while True:
            suffix = ''.join(random.choices(string.ascii_uppercase + string.digits, k=4))
            code = f"{prefix}{suffix}"

            result = await self.db.execute(
                select(Affiliate.id).where(Affiliate.referral_code == code)
            )
            if not result.scalar_one_or_none():
                return code

    # ========================================================================
    # Lookups
    # ========================================================================

    async def get_affiliate(self, affiliate_id: uuid.UUID) -> Affiliate:
        affiliate = await self.db.get(Affiliate, affiliate_id)
        if affiliate is None:
            raise NotFoundError("Affiliate", affiliate_id)
        return affiliate

    async def email_taken(self, email: str) -> bool:
        result = await self.db.execute(select(Affiliate.id).where(Affiliate.email == email))
        return result.scalar_one_or_none() is not None

    async def get_by_referral_code(self, referral_code: str) -> Optional[Affiliate]:
        result = await self.db.execute(
            select(Affiliate).where(Affiliate.referral_code == referral_code.strip().upper())
        )
        return result.scalar_one_or_none()

    # ========================================================================
    # Registration
    # ========================================================================

    async def register(
        self,
        email: str,
        first_name: str,
        last_name: str,
        phone: Optional[str] = None,
        referral_code: Optional[str] = None,
    ) -> Affiliate:
        """
        Register a new affiliate.

        Flow:
        1. Validate email is not already registered
        2. Resolve the referrer from ``referral_code`` (unknown code is an error)
        3. Generate a unique referral code
        4. Create the affiliate and its onboarding record in WELCOME
        """
        email = email.strip().lower()
        if await self.email_taken(email):
            raise ValidationError("email", f"{email} is already registered")

        referrer_id = None
        if referral_code:
            referrer = await self.get_by_referral_code(referral_code)
            if referrer is None:
                raise ValidationError("referral_code", f"unknown referral code '{referral_code}'")
            if not referrer.is_active:
                raise ValidationError("referral_code", "referring affiliate is inactive")
            referrer_id = referrer.id

        affiliate_id = uuid.uuid4()
        for attempt in range(1, REGISTER_ATTEMPTS + 1):
            code = await self.generate_referral_code(f"{first_name}{last_name}")
            affiliate = Affiliate(
                id=affiliate_id,
                email=email,
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                phone=phone,
                referral_code=code,
                referrer_id=referrer_id,
                onboarding_state=OnboardingStage.WELCOME.value,
            )
            self.db.add(affiliate)
            self.db.add(
                OnboardingRecord(
                    id=uuid.uuid4(),
                    affiliate_id=affiliate_id,
                    current_stage=OnboardingStage.WELCOME.value,
                )
            )

            try:
                await self.db.commit()
                break
            except IntegrityError as e:
                await self.db.rollback()
                if await self.email_taken(email):
                    raise ValidationError("email", f"{email} is already registered") from e
                logger.warning(
                    f"Referral code {code} taken concurrently (attempt {attempt}/{REGISTER_ATTEMPTS})"
                )
        else:
            raise ConcurrencyConflict(affiliate_id, "register")

        logger.info(
            f"Affiliate {affiliate.id} registered ({affiliate.referral_code}"
            f"{f', referred by {referrer_id}' if referrer_id else ''})"
        )
        return affiliate
