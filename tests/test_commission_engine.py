"""Tests for commission recording and payout reservation."""

import asyncio
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from affiliate_hub.core.exceptions import InvalidTransition, NoPendingFunds, NotFoundError
from affiliate_hub.models.commission import Commission, PayoutRequest
from affiliate_hub.services.commission_engine import (
    CommissionEngine,
    is_commissionable_transition,
    referral_amount,
    to_money,
)


async def chain(make_affiliate):
    """A refers B, B refers C."""
    a = await make_affiliate(first_name="Alice")
    b = await make_affiliate(first_name="Bob", referrer=a)
    c = await make_affiliate(first_name="Carol", referrer=b)
    return a, b, c


async def commissions_by_beneficiary(db, lead_id):
    result = await db.execute(select(Commission).where(Commission.lead_id == lead_id))
    return {(c.beneficiary_affiliate_id, c.commission_type): c for c in result.scalars().all()}


class TestRates:
    def test_referral_amounts(self):
        assert referral_amount(Decimal("150.00"), 1) == Decimal("15.00")
        assert referral_amount(Decimal("150.00"), 2) == Decimal("7.50")
        assert referral_amount(Decimal("50.00"), 2) == Decimal("2.50")

    def test_to_money(self):
        assert to_money(None) == Decimal("0.00")
        assert to_money(7.5) == Decimal("7.50")
        assert to_money("2.345") == Decimal("2.35")

    @pytest.mark.parametrize(
        "previous,new,expected",
        [
            ("submitted", "qualified", True),
            ("qualified", "sold", True),
            ("submitted", "sold", True),
            ("sold", "sold", False),
            ("submitted", "in_review", False),
            ("qualified", "rejected", False),
        ],
    )
    def test_commissionable_transition(self, previous, new, expected):
        assert is_commissionable_transition(previous, new) is expected


class TestCommissionRecording:
    @pytest.mark.asyncio
    async def test_sold_lead_pays_two_levels_up(self, db, locks, make_affiliate, make_lead):
        a, b, c = await chain(make_affiliate)
        lead = await make_lead(c, status="sold")

        created = await CommissionEngine(db, locks=locks).on_lead_status_changed(
            lead, "submitted", "sold"
        )

        assert len(created) == 3
        rows = await commissions_by_beneficiary(db, lead.id)
        assert rows[(c.id, "sold_lead")].amount == Decimal("150.00")
        assert rows[(c.id, "sold_lead")].level == 0
        assert rows[(b.id, "referral_level1")].amount == Decimal("15.00")
        assert rows[(a.id, "referral_level2")].amount == Decimal("7.50")
        assert all(row.status == "pending" for row in rows.values())

    @pytest.mark.asyncio
    async def test_depth_never_exceeds_two(self, db, locks, make_affiliate, make_lead):
        root = await make_affiliate(first_name="Root")
        a, b, c = await chain(make_affiliate)
        a.referrer_id = root.id
        await db.commit()
        lead = await make_lead(c, status="qualified")

        await CommissionEngine(db, locks=locks).on_lead_status_changed(lead, "submitted", "qualified")

        rows = await commissions_by_beneficiary(db, lead.id)
        assert len(rows) == 3
        assert all(beneficiary != root.id for beneficiary, _ in rows)

    @pytest.mark.asyncio
    async def test_root_affiliate_gets_direct_only(self, db, locks, make_affiliate, make_lead):
        owner = await make_affiliate()
        lead = await make_lead(owner, status="qualified")

        created = await CommissionEngine(db, locks=locks).on_lead_status_changed(
            lead, "submitted", "qualified"
        )

        assert [(c.commission_type, c.amount) for c in created] == [("qualified_lead", Decimal("50.00"))]

    @pytest.mark.asyncio
    async def test_replay_creates_nothing(self, db, locks, make_affiliate, make_lead):
        _, _, c = await chain(make_affiliate)
        lead = await make_lead(c, status="sold")
        engine = CommissionEngine(db, locks=locks)

        await engine.on_lead_status_changed(lead, "submitted", "sold")
        replayed = await engine.on_lead_status_changed(lead, "submitted", "sold")

        assert replayed == []
        assert len(await commissions_by_beneficiary(db, lead.id)) == 3

    @pytest.mark.asyncio
    async def test_qualified_then_sold_pays_owner_once_each(self, db, locks, make_affiliate, make_lead):
        a, b, c = await chain(make_affiliate)
        lead = await make_lead(c, status="sold")
        engine = CommissionEngine(db, locks=locks)

        await engine.on_lead_status_changed(lead, "submitted", "qualified")
        await engine.on_lead_status_changed(lead, "qualified", "sold")
        await engine.on_lead_status_changed(lead, "qualified", "sold")

        rows = await commissions_by_beneficiary(db, lead.id)
        owner_types = sorted(t for beneficiary, t in rows if beneficiary == c.id)
        assert owner_types == ["qualified_lead", "sold_lead"]
        # One referral commission per level per lead, from the first trigger
        assert rows[(b.id, "referral_level1")].amount == Decimal("5.00")
        assert rows[(a.id, "referral_level2")].amount == Decimal("2.50")

    @pytest.mark.asyncio
    async def test_non_trigger_status_creates_nothing(self, db, locks, make_affiliate, make_lead):
        owner = await make_affiliate()
        lead = await make_lead(owner, status="in_review")

        created = await CommissionEngine(db, locks=locks).on_lead_status_changed(
            lead, "submitted", "in_review"
        )

        assert created == []

    @pytest.mark.asyncio
    async def test_duplicate_row_blocked_by_database(self, db, make_affiliate, make_lead):
        owner = await make_affiliate()
        lead = await make_lead(owner, status="qualified")

        for _ in range(2):
            db.add(
                Commission(
                    id=uuid.uuid4(),
                    lead_id=lead.id,
                    beneficiary_affiliate_id=owner.id,
                    level=0,
                    commission_type="qualified_lead",
                    trigger_status="qualified",
                    base_amount=Decimal("50.00"),
                    amount=Decimal("50.00"),
                )
            )

        with pytest.raises(IntegrityError):
            await db.commit()
        await db.rollback()


class TestCommissionQueries:
    @pytest.mark.asyncio
    async def test_list_and_pending_total(self, db, locks, make_affiliate, make_lead):
        owner = await make_affiliate()
        engine = CommissionEngine(db, locks=locks)
        for status in ("qualified", "sold"):
            lead = await make_lead(owner, status=status)
            await engine.on_lead_status_changed(lead, "submitted", status)

        items, total = await engine.list_commissions(owner.id, page_size=1)

        assert total == 2
        assert len(items) == 1
        assert await engine.pending_total(owner.id) == Decimal("200.00")


class TestPayouts:
    async def _pending_200(self, db, locks, make_affiliate, make_lead):
        owner = await make_affiliate()
        lead = await make_lead(owner, status="sold")
        engine = CommissionEngine(db, locks=locks)
        await engine.on_lead_status_changed(lead, "submitted", "qualified")
        await engine.on_lead_status_changed(lead, "qualified", "sold")
        return owner, engine

    @pytest.mark.asyncio
    async def test_nothing_pending(self, db, locks, make_affiliate):
        owner = await make_affiliate()

        with pytest.raises(NoPendingFunds) as exc_info:
            await CommissionEngine(db, locks=locks).request_payout(owner.id)

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_request_reserves_everything(self, db, locks, make_affiliate, make_lead):
        owner, engine = await self._pending_200(db, locks, make_affiliate, make_lead)
        owner_id = owner.id

        payout = await engine.request_payout(owner_id, "paypal")

        assert payout.amount == Decimal("200.00")
        assert payout.status == "requested"
        reserved = await engine.commissions_for_payout(payout.id)
        assert len(reserved) == 2
        assert {c.status for c in reserved} == {"processing"}
        assert await engine.pending_total(owner_id) == Decimal("0.00")

        with pytest.raises(NoPendingFunds):
            await engine.request_payout(owner_id)

    @pytest.mark.asyncio
    async def test_concurrent_requests_claim_once(
        self, db, session_factory, locks, make_affiliate, make_lead
    ):
        owner, _ = await self._pending_200(db, locks, make_affiliate, make_lead)
        owner_id = owner.id

        async def request():
            async with session_factory() as session:
                try:
                    payout = await CommissionEngine(session, locks=locks).request_payout(owner_id)
                    return payout.amount
                except NoPendingFunds:
                    return None

        results = await asyncio.gather(request(), request())

        assert sorted(results, key=lambda r: r is None) == [Decimal("200.00"), None]
        count = await db.execute(select(PayoutRequest).where(PayoutRequest.affiliate_id == owner_id))
        assert len(count.scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_approve_marks_paid(self, db, locks, make_affiliate, make_lead):
        owner, engine = await self._pending_200(db, locks, make_affiliate, make_lead)
        payout = await engine.request_payout(owner.id)
        admin_id = uuid.uuid4()

        payout = await engine.approve_payout(payout.id, processed_by=admin_id)

        assert payout.status == "paid"
        assert payout.processed_by == admin_id
        paid = await engine.commissions_for_payout(payout.id)
        assert {c.status for c in paid} == {"paid"}
        assert all(c.payout_date is not None for c in paid)

    @pytest.mark.asyncio
    async def test_reject_returns_funds(self, db, locks, make_affiliate, make_lead):
        owner, engine = await self._pending_200(db, locks, make_affiliate, make_lead)
        owner_id = owner.id
        payout = await engine.request_payout(owner_id)

        payout = await engine.reject_payout(payout.id, reason="Bank details missing")

        assert payout.status == "rejected"
        assert payout.rejection_reason == "Bank details missing"
        assert await engine.commissions_for_payout(payout.id) == []
        assert await engine.pending_total(owner_id) == Decimal("200.00")

        again = await engine.request_payout(owner_id)
        assert again.amount == Decimal("200.00")

    @pytest.mark.asyncio
    async def test_settled_payout_cannot_be_settled_again(self, db, locks, make_affiliate, make_lead):
        owner, engine = await self._pending_200(db, locks, make_affiliate, make_lead)
        payout = await engine.request_payout(owner.id)
        payout_id = payout.id
        await engine.approve_payout(payout_id)

        with pytest.raises(InvalidTransition):
            await engine.reject_payout(payout_id)

    @pytest.mark.asyncio
    async def test_unknown_payout(self, db, locks):
        with pytest.raises(NotFoundError):
            await CommissionEngine(db, locks=locks).approve_payout(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_pending_payout_queue(self, db, locks, make_affiliate, make_lead):
        owner, engine = await self._pending_200(db, locks, make_affiliate, make_lead)
        payout = await engine.request_payout(owner.id)

        queue = await engine.pending_payouts()

        assert [(p.id, a.id) for p, a in queue] == [(payout.id, owner.id)]
