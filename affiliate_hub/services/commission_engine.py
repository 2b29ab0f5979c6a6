"""
Commission Engine

Turns lead status events into commission rows and manages payout
reservation:
- Direct commission for the lead owner when a lead becomes qualified or sold
- Referral commissions for up to two referrer levels
- Payout requests that reserve every pending commission of an affiliate
- Payout approval / rejection

Only-once guarantees live in the database: commissions are unique per
(lead, commission type, beneficiary) and payout reservation is a conditional
pending -> processing update.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_hub.core.exceptions import (
    ConcurrencyConflict,
    InvalidTransition,
    NoPendingFunds,
    NotFoundError,
)
from affiliate_hub.core.locks import AffiliateLockRegistry, get_lock_registry
from affiliate_hub.db_types import ZERO
from affiliate_hub.models.affiliate import Affiliate
from affiliate_hub.models.commission import (
    Commission,
    CommissionStatus,
    CommissionType,
    PayoutMethod,
    PayoutRequest,
    PayoutStatus,
)
from affiliate_hub.models.lead import Lead, LeadStatus
from affiliate_hub.services.referral_graph import ReferralGraphStore, REFERRAL_DEPTH

logger = logging.getLogger(__name__)


# =============================================================================
# RATE TABLE
# =============================================================================

CENT = Decimal("0.01")

# Direct commission per triggering lead status
DIRECT_RATES: Dict[str, Tuple[CommissionType, Decimal]] = {
    LeadStatus.QUALIFIED.value: (CommissionType.QUALIFIED_LEAD, Decimal("50.00")),
    LeadStatus.SOLD.value: (CommissionType.SOLD_LEAD, Decimal("150.00")),
}

# Share of the direct commission paid to each referrer level
REFERRAL_RATES: Dict[int, Tuple[CommissionType, Decimal]] = {
    1: (CommissionType.REFERRAL_LEVEL1, Decimal("0.10")),
    2: (CommissionType.REFERRAL_LEVEL2, Decimal("0.05")),
}


def to_money(value) -> Decimal:
    """Normalize a DB/Python number to a 2-place Decimal."""
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def referral_amount(base_amount: Decimal, level: int) -> Decimal:
    _, rate = REFERRAL_RATES[level]
    return (base_amount * rate).quantize(CENT, rounding=ROUND_HALF_UP)


def is_commissionable_transition(previous_status: Optional[str], new_status: str) -> bool:
    """Only a transition *into* qualified or sold earns commission."""
    return new_status in DIRECT_RATES and previous_status != new_status


class CommissionEngine:
    """Service for commission recording and payouts."""

    def __init__(
        self,
        db: AsyncSession,
        graph: Optional[ReferralGraphStore] = None,
        locks: Optional[AffiliateLockRegistry] = None,
    ):
        self.db = db
        self.graph = graph or ReferralGraphStore(db)
        self.locks = locks or get_lock_registry()

    # ========================================================================
    # Commission Recording
    # ========================================================================

    async def _plan_commissions(
        self, lead: Lead, new_status: str
    ) -> List[Tuple[uuid.UUID, int, CommissionType, Decimal, Decimal]]:
        """(beneficiary, level, type, base_amount, amount) for owner and ancestors."""
        direct_type, base_amount = DIRECT_RATES[new_status]
        planned = [(lead.owner_affiliate_id, 0, direct_type, base_amount, base_amount)]

        level = 0
        async for ancestor in self.graph.ancestors_of(lead.owner_affiliate_id, REFERRAL_DEPTH):
            level += 1
            referral_type, _ = REFERRAL_RATES[level]
            planned.append(
                (ancestor.id, level, referral_type, base_amount, referral_amount(base_amount, level))
            )
        return planned

    async def _existing_keys(self, lead_id: uuid.UUID) -> set:
        result = await self.db.execute(
            select(Commission.commission_type, Commission.beneficiary_affiliate_id)
            .where(Commission.lead_id == lead_id)
        )
        return {(row[0], row[1]) for row in result.all()}

    async def on_lead_status_changed(
        self,
        lead: Lead,
        previous_status: Optional[str],
        new_status: str,
    ) -> List[Commission]:
        """
        Record commissions for a lead status transition.

        Fires only on a transition into ``qualified`` or ``sold``. Replaying
        the same event creates nothing new.

        Returns:
            Commissions created by this call (empty on replay or non-trigger)
        """
        if not is_commissionable_transition(previous_status, new_status):
            return []

        # Rollback expires ORM state, so keep plain copies of what is reused
        lead_pk, lead_code, owner_id = lead.id, lead.lead_id, lead.owner_affiliate_id
        planned = await self._plan_commissions(lead, new_status)

        async with self.locks.hold(owner_id, "record_commissions"):
            # A concurrent writer in another process can still win the unique
            # constraint; the second pass then sees its rows and skips them.
            for attempt in range(2):
                existing = await self._existing_keys(lead_pk)
                created: List[Commission] = []

                for beneficiary_id, level, commission_type, base_amount, amount in planned:
                    if (commission_type.value, beneficiary_id) in existing:
                        continue
                    commission = Commission(
                        id=uuid.uuid4(),
                        lead_id=lead_pk,
                        beneficiary_affiliate_id=beneficiary_id,
                        level=level,
                        commission_type=commission_type.value,
                        trigger_status=new_status,
                        base_amount=base_amount,
                        amount=amount,
                        status=CommissionStatus.PENDING.value,
                    )
                    self.db.add(commission)
                    created.append(commission)

                try:
                    await self.db.commit()
                except IntegrityError:
                    await self.db.rollback()
                    if attempt == 1:
                        raise
                    logger.warning(
                        f"Commission insert for lead {lead_code} raced another writer; re-checking"
                    )
                    continue
                break

        for commission in created:
            logger.info(
                f"Commission {commission.commission_type} {commission.amount} recorded "
                f"for affiliate {commission.beneficiary_affiliate_id} (lead {lead_code}, level {commission.level})"
            )
        return created

    # ========================================================================
    # Commission Queries
    # ========================================================================

    async def list_commissions(
        self,
        affiliate_id: uuid.UUID,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Commission], int]:
        filters = [Commission.beneficiary_affiliate_id == affiliate_id]
        if status:
            filters.append(Commission.status == status)

        total_result = await self.db.execute(
            select(func.count(Commission.id)).where(*filters)
        )
        total = total_result.scalar() or 0

        result = await self.db.execute(
            select(Commission)
            .where(*filters)
            .order_by(Commission.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def pending_total(self, affiliate_id: uuid.UUID) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Commission.amount), 0))
            .where(
                Commission.beneficiary_affiliate_id == affiliate_id,
                Commission.status == CommissionStatus.PENDING.value,
            )
        )
        return to_money(result.scalar())

    async def commissions_for_payout(self, payout_id: uuid.UUID) -> List[Commission]:
        result = await self.db.execute(
            select(Commission).where(Commission.payout_request_id == payout_id)
        )
        return list(result.scalars().all())

    # ========================================================================
    # Payout Management
    # ========================================================================

    async def request_payout(
        self,
        affiliate_id: uuid.UUID,
        payment_method: str = PayoutMethod.BANK_TRANSFER.value,
    ) -> PayoutRequest:
        """
        Reserve every pending commission of the affiliate into one payout.

        Raises:
            NoPendingFunds: nothing is claimable
            ConcurrencyConflict: another request claimed some rows first
        """
        async with self.locks.hold(affiliate_id, "request_payout"):
            try:
                result = await self.db.execute(
                    select(Commission)
                    .where(
                        Commission.beneficiary_affiliate_id == affiliate_id,
                        Commission.status == CommissionStatus.PENDING.value,
                    )
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                pending = list(result.scalars().all())
                total = to_money(sum((to_money(c.amount) for c in pending), ZERO))

                if not pending or total <= ZERO:
                    raise NoPendingFunds(affiliate_id)

                payout = PayoutRequest(
                    id=uuid.uuid4(),
                    affiliate_id=affiliate_id,
                    amount=total,
                    status=PayoutStatus.REQUESTED.value,
                    payment_method=payment_method,
                )
                self.db.add(payout)
                await self.db.flush()

                claimed = await self.db.execute(
                    update(Commission)
                    .where(
                        Commission.id.in_([c.id for c in pending]),
                        Commission.status == CommissionStatus.PENDING.value,
                    )
                    .values(
                        status=CommissionStatus.PROCESSING.value,
                        payout_request_id=payout.id,
                    )
                    .execution_options(synchronize_session="evaluate")
                )
                if claimed.rowcount != len(pending):
                    raise ConcurrencyConflict(affiliate_id, "request_payout")

                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            f"Payout {payout.id} requested by affiliate {affiliate_id}: "
            f"{total} across {len(pending)} commissions"
        )
        return payout

    async def _get_payout_for_update(self, payout_id: uuid.UUID) -> PayoutRequest:
        result = await self.db.execute(
            select(PayoutRequest)
            .where(PayoutRequest.id == payout_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        payout = result.scalar_one_or_none()
        if payout is None:
            raise NotFoundError("Payout request", payout_id)
        return payout

    async def _settle_payout(
        self,
        payout_id: uuid.UUID,
        approve: bool,
        processed_by: Optional[uuid.UUID],
        reason: Optional[str] = None,
    ) -> PayoutRequest:
        operation = "approve_payout" if approve else "reject_payout"

        # Look up the owner first so the lock covers the whole read-modify-write
        owner_result = await self.db.execute(
            select(PayoutRequest.affiliate_id).where(PayoutRequest.id == payout_id)
        )
        affiliate_id = owner_result.scalar_one_or_none()
        if affiliate_id is None:
            raise NotFoundError("Payout request", payout_id)

        async with self.locks.hold(affiliate_id, operation):
            try:
                payout = await self._get_payout_for_update(payout_id)
                if payout.status != PayoutStatus.REQUESTED.value:
                    raise InvalidTransition(
                        current_state=payout.status,
                        operation=operation,
                        allowed_from=[PayoutStatus.REQUESTED.value],
                    )

                now = datetime.now(timezone.utc)
                if approve:
                    values = {"status": CommissionStatus.PAID.value, "payout_date": now}
                    payout.status = PayoutStatus.PAID.value
                else:
                    values = {"status": CommissionStatus.PENDING.value, "payout_request_id": None}
                    payout.status = PayoutStatus.REJECTED.value
                    payout.rejection_reason = reason

                payout.processed_at = now
                payout.processed_by = processed_by

                await self.db.execute(
                    update(Commission)
                    .where(
                        Commission.payout_request_id == payout.id,
                        Commission.status == CommissionStatus.PROCESSING.value,
                    )
                    .values(**values)
                    .execution_options(synchronize_session="fetch")
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(f"Payout {payout.id} {payout.status} ({payout.amount}) for affiliate {affiliate_id}")
        return payout

    async def approve_payout(
        self, payout_id: uuid.UUID, processed_by: Optional[uuid.UUID] = None
    ) -> PayoutRequest:
        """Pay out: reserved commissions -> paid with payout_date set."""
        return await self._settle_payout(payout_id, approve=True, processed_by=processed_by)

    async def reject_payout(
        self,
        payout_id: uuid.UUID,
        reason: Optional[str] = None,
        processed_by: Optional[uuid.UUID] = None,
    ) -> PayoutRequest:
        """Reject: reserved commissions return to the claimable pool."""
        return await self._settle_payout(
            payout_id, approve=False, processed_by=processed_by, reason=reason
        )

    async def list_payouts(
        self,
        affiliate_id: uuid.UUID,
        page: int = 1,
        page_size: int = 20,
    ) -> List[PayoutRequest]:
        result = await self.db.execute(
            select(PayoutRequest)
            .where(PayoutRequest.affiliate_id == affiliate_id)
            .order_by(PayoutRequest.requested_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all())

    async def pending_payouts(self) -> List[Tuple[PayoutRequest, Affiliate]]:
        """Requested payouts with their affiliates, oldest first (admin queue)."""
        result = await self.db.execute(
            select(PayoutRequest, Affiliate)
            .join(Affiliate, Affiliate.id == PayoutRequest.affiliate_id)
            .where(PayoutRequest.status == PayoutStatus.REQUESTED.value)
            .order_by(PayoutRequest.requested_at.asc())
        )
        return [(row[0], row[1]) for row in result.all()]
