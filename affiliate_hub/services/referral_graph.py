"""
Referral Graph Store

Answers ancestry and descendant queries over the affiliate -> referrer
forest. ``referrer_id`` is written once at registration and never changes,
so reads need no locking.
"""

import logging
import uuid
from typing import AsyncIterator, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_hub.config import settings
from affiliate_hub.core.exceptions import NotFoundError
from affiliate_hub.models.affiliate import Affiliate

logger = logging.getLogger(__name__)

# Commission attribution never looks further up than this
REFERRAL_DEPTH = 2


class ReferralGraphStore:
    """Read-only queries over the referral forest."""

    def __init__(self, db: AsyncSession, page_size: Optional[int] = None):
        self.db = db
        self.page_size = page_size or settings.REFERRAL_TREE_PAGE_SIZE

    async def get_affiliate(self, affiliate_id: uuid.UUID) -> Affiliate:
        affiliate = await self.db.get(Affiliate, affiliate_id)
        if affiliate is None:
            raise NotFoundError("Affiliate", affiliate_id)
        return affiliate

    async def get_referrer(self, affiliate_id: uuid.UUID) -> Optional[Affiliate]:
        """Direct referrer, or None for a root affiliate."""
        affiliate = await self.get_affiliate(affiliate_id)
        if affiliate.referrer_id is None:
            return None
        return await self.db.get(Affiliate, affiliate.referrer_id)

    async def ancestors_of(
        self,
        affiliate_id: uuid.UUID,
        max_depth: int = REFERRAL_DEPTH,
    ) -> AsyncIterator[Affiliate]:
        """
        Yield ancestors nearest-first, at most ``max_depth`` of them.

        Stops early at a root. A chain that is shorter than ``max_depth`` is
        not an error. Each hop is fetched only when the caller asks for it.
        """
        current = await self.get_affiliate(affiliate_id)
        seen = {current.id}
        depth = 0

        while depth < max_depth and current.referrer_id is not None:
            if current.referrer_id in seen:
                # referrer_id is immutable, so this means corrupt data
                logger.error(
                    f"Referral cycle detected above affiliate {affiliate_id} "
                    f"at {current.referrer_id}; stopping traversal"
                )
                return

            parent = await self.db.get(Affiliate, current.referrer_id)
            if parent is None:
                return

            seen.add(parent.id)
            depth += 1
            yield parent
            current = parent

    async def subtree_of(
        self,
        affiliate_id: uuid.UUID,
        max_depth: Optional[int] = None,
    ) -> AsyncIterator[Tuple[Affiliate, int]]:
        """
        Yield ``(descendant, level)`` breadth-first, level 1 = direct referrals.

        Children are fetched one level at a time in pages of ``page_size``
        parent ids, so only the current frontier's ids are held in memory,
        never the materialized tree.
        """
        await self.get_affiliate(affiliate_id)

        frontier: List[uuid.UUID] = [affiliate_id]
        level = 0

        while frontier and (max_depth is None or level < max_depth):
            level += 1
            next_frontier: List[uuid.UUID] = []

            for start in range(0, len(frontier), self.page_size):
                page = frontier[start:start + self.page_size]
                result = await self.db.execute(
                    select(Affiliate)
                    .where(Affiliate.referrer_id.in_(page))
                    .order_by(Affiliate.created_at.asc(), Affiliate.id.asc())
                )
                for child in result.scalars():
                    if child.id == affiliate_id:
                        # Every node has one parent, so only a loop back to
                        # the root can be reached from the root
                        logger.error(f"Referral cycle through affiliate {affiliate_id}")
                        return
                    next_frontier.append(child.id)
                    yield child, level

            frontier = next_frontier

