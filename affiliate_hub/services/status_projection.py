"""
Status Projection

Read side for the dashboard, referral and admin views:
- Referral statistics and the referral tree
- Commission summary
- Affiliate dashboard
- Program-wide admin statistics

Nothing in this module writes.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import case, select, func
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_hub.models.affiliate import Affiliate
from affiliate_hub.models.commission import (
    Commission,
    CommissionStatus,
    CommissionType,
    PayoutRequest,
    PayoutStatus,
)
from affiliate_hub.models.lead import Lead, LeadStatus
from affiliate_hub.models.onboarding import OnboardingRecord
from affiliate_hub.services.commission_engine import to_money
from affiliate_hub.services.onboarding_state_machine import OnboardingStage, stage_projection
from affiliate_hub.services.referral_graph import ReferralGraphStore

logger = logging.getLogger(__name__)

REFERRAL_COMMISSION_TYPES = (
    CommissionType.REFERRAL_LEVEL1.value,
    CommissionType.REFERRAL_LEVEL2.value,
)

RECENT_LEADS_LIMIT = 5


def month_start() -> datetime:
    return datetime.now(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def last_month_start() -> datetime:
    return (month_start() - timedelta(days=1)).replace(day=1)


class StatusProjection:
    """Aggregates for presentation."""

    def __init__(self, db: AsyncSession, graph: Optional[ReferralGraphStore] = None):
        self.db = db
        self.graph = graph or ReferralGraphStore(db)

    # ========================================================================
    # Referrals
    # ========================================================================

    async def _affiliates_with_leads(self, affiliate_ids: List[uuid.UUID]) -> set:
        if not affiliate_ids:
            return set()
        result = await self.db.execute(
            select(Lead.owner_affiliate_id)
            .where(Lead.owner_affiliate_id.in_(affiliate_ids))
            .distinct()
        )
        return set(result.scalars().all())

    async def aggregate_stats(self, affiliate_id: uuid.UUID) -> dict:
        """
        Referral statistics for one affiliate.

        Walks the subtree in pages, so only one batch of ids is held at a
        time regardless of network size.
        """
        total = 0
        active = 0
        levels = {1: 0, 2: 0}
        batch: List[uuid.UUID] = []

        async for descendant, level in self.graph.subtree_of(affiliate_id):
            total += 1
            if level in levels:
                levels[level] += 1
            batch.append(descendant.id)
            if len(batch) >= self.graph.page_size:
                active += len(await self._affiliates_with_leads(batch))
                batch = []
        active += len(await self._affiliates_with_leads(batch))

        earnings_result = await self.db.execute(
            select(Commission.commission_type, func.coalesce(func.sum(Commission.amount), 0))
            .where(
                Commission.beneficiary_affiliate_id == affiliate_id,
                Commission.commission_type.in_(REFERRAL_COMMISSION_TYPES),
                Commission.status != CommissionStatus.REJECTED.value,
            )
            .group_by(Commission.commission_type)
        )
        earnings = {row[0]: to_money(row[1]) for row in earnings_result.all()}
        level_1_earnings = earnings.get(CommissionType.REFERRAL_LEVEL1.value, to_money(0))
        level_2_earnings = earnings.get(CommissionType.REFERRAL_LEVEL2.value, to_money(0))

        return {
            "total_referrals": total,
            "active_referrals": active,
            "levels": {"level_1": levels[1], "level_2": levels[2]},
            "level_1_earnings": level_1_earnings,
            "level_2_earnings": level_2_earnings,
            "total_commission_from_referrals": to_money(level_1_earnings + level_2_earnings),
        }

    async def _node_metrics(self, affiliate_ids: List[uuid.UUID]) -> Dict[uuid.UUID, dict]:
        metrics = {aid: {"total_leads": 0, "total_earnings": to_money(0)} for aid in affiliate_ids}
        if not affiliate_ids:
            return metrics

        leads_result = await self.db.execute(
            select(Lead.owner_affiliate_id, func.count(Lead.id))
            .where(Lead.owner_affiliate_id.in_(affiliate_ids))
            .group_by(Lead.owner_affiliate_id)
        )
        for owner_id, count in leads_result.all():
            metrics[owner_id]["total_leads"] = count

        earnings_result = await self.db.execute(
            select(Commission.beneficiary_affiliate_id, func.coalesce(func.sum(Commission.amount), 0))
            .where(
                Commission.beneficiary_affiliate_id.in_(affiliate_ids),
                Commission.status != CommissionStatus.REJECTED.value,
            )
            .group_by(Commission.beneficiary_affiliate_id)
        )
        for beneficiary_id, amount in earnings_result.all():
            metrics[beneficiary_id]["total_earnings"] = to_money(amount)
        return metrics

    @staticmethod
    def _node(affiliate: Affiliate, level: int) -> dict:
        return {
            "id": affiliate.id,
            "name": affiliate.full_name,
            "referral_code": affiliate.referral_code,
            "level": level,
            "onboarding_state": affiliate.onboarding_state,
            "joined_at": affiliate.created_at,
            "total_leads": 0,
            "total_earnings": to_money(0),
            "children": [],
        }

    async def referral_tree(self, affiliate_id: uuid.UUID, max_depth: int = 2) -> dict:
        """Nested referral tree for display, ``max_depth`` levels deep."""
        root = await self.graph.get_affiliate(affiliate_id)
        root_node = self._node(root, 0)
        nodes: Dict[uuid.UUID, dict] = {root.id: root_node}

        async for descendant, level in self.graph.subtree_of(affiliate_id, max_depth=max_depth):
            node = self._node(descendant, level)
            nodes[descendant.id] = node
            nodes[descendant.referrer_id]["children"].append(node)

        metrics = await self._node_metrics(list(nodes))
        for node_id, node in nodes.items():
            node.update(metrics[node_id])
        return root_node

    # ========================================================================
    # Commissions
    # ========================================================================

    async def commission_summary(self, affiliate_id: uuid.UUID) -> dict:
        """Commission totals by status plus this and last month's earnings."""
        result = await self.db.execute(
            select(Commission.status, func.coalesce(func.sum(Commission.amount), 0))
            .where(Commission.beneficiary_affiliate_id == affiliate_id)
            .group_by(Commission.status)
        )
        by_status = {row[0]: to_money(row[1]) for row in result.all()}

        pending = by_status.get(CommissionStatus.PENDING.value, to_money(0))
        processing = by_status.get(CommissionStatus.PROCESSING.value, to_money(0))
        paid = by_status.get(CommissionStatus.PAID.value, to_money(0))

        this_month = month_start()
        month_result = await self.db.execute(
            select(
                func.coalesce(
                    func.sum(case((Commission.created_at >= this_month, Commission.amount), else_=0)), 0
                ),
                func.coalesce(
                    func.sum(case((Commission.created_at < this_month, Commission.amount), else_=0)), 0
                ),
            )
            .where(
                Commission.beneficiary_affiliate_id == affiliate_id,
                Commission.status != CommissionStatus.REJECTED.value,
                Commission.created_at >= last_month_start(),
            )
        )
        this_month_earned, last_month_earned = month_result.one()

        return {
            "total_earned": to_money(pending + processing + paid),
            "pending_amount": pending,
            "processing_amount": processing,
            "paid_amount": paid,
            "this_month_earned": to_money(this_month_earned),
            "last_month_earned": to_money(last_month_earned),
        }

    # ========================================================================
    # Dashboard
    # ========================================================================

    async def leads_by_status(self, affiliate_id: uuid.UUID) -> Dict[str, int]:
        result = await self.db.execute(
            select(Lead.status, func.count(Lead.id))
            .where(Lead.owner_affiliate_id == affiliate_id)
            .group_by(Lead.status)
        )
        counts = {status.value: 0 for status in LeadStatus}
        counts.update({row[0]: row[1] for row in result.all()})
        return counts

    async def recent_leads(self, affiliate_id: uuid.UUID, limit: int = RECENT_LEADS_LIMIT) -> List[Lead]:
        result = await self.db.execute(
            select(Lead)
            .where(Lead.owner_affiliate_id == affiliate_id)
            .order_by(Lead.created_at.desc(), Lead.lead_id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def dashboard(self, affiliate: Affiliate) -> dict:
        """Everything the affiliate dashboard shows on load."""
        leads = await self.leads_by_status(affiliate.id)
        recent = await self.recent_leads(affiliate.id)
        commissions = await self.commission_summary(affiliate.id)

        direct_result = await self.db.execute(
            select(func.count(Affiliate.id)).where(Affiliate.referrer_id == affiliate.id)
        )

        return {
            "affiliate_id": affiliate.id,
            "name": affiliate.full_name,
            "referral_code": affiliate.referral_code,
            "total_leads": sum(leads.values()),
            "leads_by_status": leads,
            "total_commission": commissions["total_earned"],
            "pending_commission": commissions["pending_amount"],
            "paid_commission": commissions["paid_amount"],
            "this_month_earned": commissions["this_month_earned"],
            "last_month_earned": commissions["last_month_earned"],
            "recent_leads": recent,
            "direct_referrals": direct_result.scalar() or 0,
            "onboarding": stage_projection(affiliate.onboarding_state),
        }

    # ========================================================================
    # Admin
    # ========================================================================

    async def admin_stats(self) -> dict:
        """Program-wide statistics for the admin overview."""
        total_affiliates = (await self.db.execute(select(func.count(Affiliate.id)))).scalar()

        onboarded_result = await self.db.execute(
            select(func.count(OnboardingRecord.id))
            .where(OnboardingRecord.current_stage == OnboardingStage.COMPLETE.value)
        )
        pending_review_result = await self.db.execute(
            select(func.count(OnboardingRecord.id))
            .where(OnboardingRecord.current_stage == OnboardingStage.REVIEW.value)
        )

        lead_result = await self.db.execute(
            select(Lead.status, func.count(Lead.id)).group_by(Lead.status)
        )
        lead_counts = {row[0]: row[1] for row in lead_result.all()}

        commissions_result = await self.db.execute(
            select(func.coalesce(func.sum(Commission.amount), 0))
            .where(Commission.status != CommissionStatus.REJECTED.value)
        )
        payouts_result = await self.db.execute(
            select(func.count(PayoutRequest.id), func.coalesce(func.sum(PayoutRequest.amount), 0))
            .where(PayoutRequest.status == PayoutStatus.REQUESTED.value)
        )
        pending_payouts_count, pending_payouts_amount = payouts_result.one()

        return {
            "total_affiliates": total_affiliates or 0,
            "onboarded_affiliates": onboarded_result.scalar() or 0,
            "pending_reviews": pending_review_result.scalar() or 0,
            "total_leads": sum(lead_counts.values()),
            "qualified_leads": lead_counts.get(LeadStatus.QUALIFIED.value, 0),
            "sold_leads": lead_counts.get(LeadStatus.SOLD.value, 0),
            "total_commissions": to_money(commissions_result.scalar()),
            "pending_payouts_count": pending_payouts_count or 0,
            "pending_payouts_amount": to_money(pending_payouts_amount),
        }

    async def top_affiliates(self, limit: int = 10) -> List[dict]:
        """Affiliates ranked by earned (non-rejected) commission."""
        earned = func.coalesce(func.sum(Commission.amount), 0)
        result = await self.db.execute(
            select(Affiliate, earned.label("earned"))
            .outerjoin(
                Commission,
                (Commission.beneficiary_affiliate_id == Affiliate.id)
                & (Commission.status != CommissionStatus.REJECTED.value),
            )
            .group_by(Affiliate.id)
            .order_by(earned.desc(), Affiliate.created_at.asc())
            .limit(limit)
        )
        rows = result.all()

        metrics = await self._node_metrics([row[0].id for row in rows])
        return [
            {
                "id": affiliate.id,
                "name": affiliate.full_name,
                "email": affiliate.email,
                "referral_code": affiliate.referral_code,
                "total_leads": metrics[affiliate.id]["total_leads"],
                "total_earnings": to_money(amount),
            }
            for affiliate, amount in rows
        ]
