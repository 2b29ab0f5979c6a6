"""Tests for lead status changes and ordered commission event delivery."""

import uuid

import pytest
from sqlalchemy import select

from affiliate_hub.core.exceptions import NotFoundError, ValidationError
from affiliate_hub.jobs.lead_jobs import sweep_lead_events
from affiliate_hub.models.commission import Commission
from affiliate_hub.models.lead import LeadStatusHistory
from affiliate_hub.services.commission_engine import CommissionEngine
from affiliate_hub.services.lead_events import apply_pending_status_changes, sweep_unprocessed_events
from affiliate_hub.services.lead_service import LeadService, generate_lead_id


@pytest.fixture
def engine_calls(monkeypatch):
    """Record every transition handed to the commission engine."""
    calls = []
    state = {"fail": False}
    original = CommissionEngine.on_lead_status_changed

    async def recording(self, lead, previous_status, new_status):
        calls.append((previous_status, new_status))
        if state["fail"]:
            raise RuntimeError("commission store unavailable")
        return await original(self, lead, previous_status, new_status)

    monkeypatch.setattr(CommissionEngine, "on_lead_status_changed", recording)
    return calls, state


async def history(db, lead_id):
    result = await db.execute(
        select(LeadStatusHistory)
        .where(LeadStatusHistory.lead_id == lead_id)
        .order_by(LeadStatusHistory.sequence)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def commission_types(db, lead_id):
    result = await db.execute(
        select(Commission.commission_type).where(Commission.lead_id == lead_id)
    )
    return sorted(result.scalars().all())


class TestLeadService:
    def test_lead_code_format(self):
        code = generate_lead_id()

        assert code.startswith("LD-")
        assert len(code) == len("LD-20260101-ABCDEF")

    @pytest.mark.asyncio
    async def test_submit(self, db, make_affiliate):
        owner = await make_affiliate()

        lead = await LeadService(db).submit_lead(
            owner.id,
            {
                "lead_type": "roofing",
                "first_name": "Sam",
                "last_name": "Lee",
                "email": "sam@example.com",
                "phone": "5550111",
            },
        )

        assert lead.status == "submitted"
        items, total = await LeadService(db).list_leads(owner.id)
        assert total == 1
        assert items[0].lead_id == lead.lead_id

    @pytest.mark.asyncio
    async def test_submit_unknown_type(self, db, make_affiliate):
        owner = await make_affiliate()

        with pytest.raises(ValidationError) as exc_info:
            await LeadService(db).submit_lead(owner.id, {"lead_type": "yachts"})

        assert exc_info.value.field == "lead_type"

    @pytest.mark.asyncio
    async def test_change_appends_history(self, db, make_affiliate, make_lead):
        owner = await make_affiliate()
        lead = await make_lead(owner)
        service = LeadService(db)

        await service.change_status(lead.id, "in_review")
        await service.change_status(lead.id, "qualified")
        await service.change_status(lead.id, "qualified")

        rows = await history(db, lead.id)
        assert [(r.sequence, r.from_status, r.to_status) for r in rows] == [
            (1, "submitted", "in_review"),
            (2, "in_review", "qualified"),
        ]
        assert lead.status == "qualified"

    @pytest.mark.asyncio
    async def test_change_invalid_status(self, db, make_affiliate, make_lead):
        owner = await make_affiliate()
        lead = await make_lead(owner)

        with pytest.raises(ValidationError):
            await LeadService(db).change_status(lead.id, "closed_won")

    @pytest.mark.asyncio
    async def test_change_unknown_lead(self, db):
        with pytest.raises(NotFoundError):
            await LeadService(db).change_status(uuid.uuid4(), "qualified")


class TestEventDelivery:
    @pytest.mark.asyncio
    async def test_events_applied_in_order(
        self, db, dispatcher, engine_calls, make_affiliate, make_lead
    ):
        calls, _ = engine_calls
        owner = await make_affiliate()
        lead = await make_lead(owner)
        lead_id = lead.id
        service = LeadService(db, dispatcher)

        await service.change_status(lead_id, "qualified")
        await service.change_status(lead_id, "sold")
        await dispatcher.drain()

        assert calls == [("submitted", "qualified"), ("qualified", "sold")]
        assert await commission_types(db, lead_id) == ["qualified_lead", "sold_lead"]
        assert all(row.processed_at is not None for row in await history(db, lead_id))
        assert dispatcher.pending_leads() == 0

    @pytest.mark.asyncio
    async def test_failure_defers_later_events_to_sweep(
        self, db, dispatcher, engine_calls, make_affiliate, make_lead
    ):
        calls, state = engine_calls
        owner = await make_affiliate()
        lead = await make_lead(owner)
        lead_id = lead.id
        service = LeadService(db, dispatcher)
        state["fail"] = True

        await service.change_status(lead_id, "qualified")
        await service.change_status(lead_id, "sold")
        await dispatcher.drain()

        # The second event is never applied ahead of the failed first one
        assert ("qualified", "sold") not in calls
        assert await commission_types(db, lead_id) == []
        assert all(row.processed_at is None for row in await history(db, lead_id))

        state["fail"] = False
        calls.clear()
        assert await sweep_unprocessed_events(db, dispatcher) == 2
        await dispatcher.drain()

        assert calls == [("submitted", "qualified"), ("qualified", "sold")]
        assert await commission_types(db, lead_id) == ["qualified_lead", "sold_lead"]

    @pytest.mark.asyncio
    async def test_apply_is_idempotent(self, db, make_affiliate, make_lead):
        owner = await make_affiliate()
        lead = await make_lead(owner)
        lead_id = lead.id
        await LeadService(db).change_status(lead_id, "sold")

        created = await apply_pending_status_changes(db, lead_id)
        again = await apply_pending_status_changes(db, lead_id)

        assert [c.commission_type for c in created] == ["sold_lead"]
        assert again == []

    @pytest.mark.asyncio
    async def test_sweep_job_picks_up_undelivered_changes(
        self, db, session_factory, dispatcher, make_affiliate, make_lead
    ):
        owner = await make_affiliate()
        lead = await make_lead(owner)
        lead_id = lead.id
        # No dispatcher: simulates a restart between commit and delivery
        await LeadService(db).change_status(lead_id, "qualified")

        count = await sweep_lead_events(dispatcher=dispatcher, session_factory=session_factory)
        await dispatcher.drain()

        assert count == 1
        assert await commission_types(db, lead_id) == ["qualified_lead"]
        assert await sweep_lead_events(dispatcher=dispatcher, session_factory=session_factory) == 0
