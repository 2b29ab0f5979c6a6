"""
Onboarding Jobs

Reconciles signature sessions with the e-signature provider so affiliates
whose webhook never arrived (or whose completion was lost in a crash) still
advance out of SIGNATURE.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from affiliate_hub.core.exceptions import AffiliateHubError
from affiliate_hub.database import get_db_session
from affiliate_hub.services.onboarding_service import OnboardingService
from affiliate_hub.services.onboarding_state_machine import OnboardingStage
from affiliate_hub.services.signature_provider import SignatureProvider

logger = logging.getLogger(__name__)


async def sync_signature_sessions(
    signature_provider: Optional[SignatureProvider] = None,
    session_factory=get_db_session,
    batch_size: int = 100,
) -> Dict[str, Any]:
    """
    Sync every outstanding signature session with the provider.

    Sessions are walked page by page (``batch_size`` per query) until all of
    them have been checked once. One affiliate failing (provider error, lock
    timeout) does not stop the rest; it is picked up again on the next run.
    """
    logger.info("Starting signature session sync...")
    start_time = datetime.now(timezone.utc)
    processed_count = 0
    advanced_count = 0
    failed_count = 0

    async with session_factory() as session:
        service = OnboardingService(session, signature_provider=signature_provider)
        after = None

        while True:
            affiliate_ids = await service.affiliates_awaiting_signature(limit=batch_size, after=after)
            if not affiliate_ids:
                break

            for affiliate_id in affiliate_ids:
                processed_count += 1
                try:
                    record = await service.sync_signature(affiliate_id)
                    if record.current_stage != OnboardingStage.SIGNATURE.value:
                        advanced_count += 1
                except AffiliateHubError as e:
                    failed_count += 1
                    logger.warning(f"Signature sync failed for affiliate {affiliate_id}: {e.message}")

            if len(affiliate_ids) < batch_size:
                break
            after = affiliate_ids[-1]

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Signature session sync completed: {processed_count} checked, "
        f"{advanced_count} advanced, {failed_count} failed in {duration:.2f}s"
    )
    return {
        "processed": processed_count,
        "advanced": advanced_count,
        "failed": failed_count,
        "duration_seconds": duration,
    }
