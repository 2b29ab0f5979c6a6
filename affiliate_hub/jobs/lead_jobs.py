"""
Lead Event Jobs

Re-submits lead status changes that were committed but never applied to
the commission engine (process restart, failed event).
"""

import logging
from typing import Optional

from affiliate_hub.database import get_db_session
from affiliate_hub.services.lead_events import (
    LeadEventDispatcher,
    get_lead_event_dispatcher,
    sweep_unprocessed_events,
)

logger = logging.getLogger(__name__)


async def sweep_lead_events(
    dispatcher: Optional[LeadEventDispatcher] = None,
    session_factory=get_db_session,
) -> int:
    dispatcher = dispatcher or get_lead_event_dispatcher()
    async with session_factory() as session:
        count = await sweep_unprocessed_events(session, dispatcher)
    if count:
        logger.info(f"Lead event sweep queued {count} event(s)")
    return count
