"""
Lead status event delivery.

A lead status change is committed together with a ``lead_status_history``
row. The history row is the durable outbox: the dispatcher only nudges a
per-lead worker, and the worker applies that lead's unprocessed history rows
to the commission engine strictly in ``sequence`` order, marking each one
processed. Different leads are processed concurrently.

If a row fails, the worker stops for that lead so later rows are never
applied ahead of it; the periodic sweep retries from the failed row.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_hub.database import async_session_factory
from affiliate_hub.models.commission import Commission
from affiliate_hub.models.lead import Lead, LeadStatusHistory
from affiliate_hub.services.commission_engine import CommissionEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeadStatusEvent:
    """A committed lead status transition."""
    lead_id: uuid.UUID
    sequence: int
    previous_status: Optional[str]
    new_status: str


async def apply_pending_status_changes(
    db: AsyncSession,
    lead_id: uuid.UUID,
    up_to_sequence: Optional[int] = None,
) -> List[Commission]:
    """
    Feed the lead's unprocessed transitions to the commission engine in order.

    Returns every commission created along the way.
    """
    query = (
        select(
            LeadStatusHistory.id,
            LeadStatusHistory.sequence,
            LeadStatusHistory.from_status,
            LeadStatusHistory.to_status,
        )
        .where(
            LeadStatusHistory.lead_id == lead_id,
            LeadStatusHistory.processed_at.is_(None),
        )
        .order_by(LeadStatusHistory.sequence.asc())
    )
    if up_to_sequence is not None:
        query = query.where(LeadStatusHistory.sequence <= up_to_sequence)

    rows = (await db.execute(query)).all()
    if not rows:
        return []

    engine = CommissionEngine(db)
    created: List[Commission] = []

    for history_id, sequence, from_status, to_status in rows:
        # Re-fetched each pass; a rollback inside the engine expires it
        lead = await db.get(Lead, lead_id)
        if lead is None:
            logger.warning(f"Lead {lead_id} vanished before its status events were applied")
            break
        created.extend(await engine.on_lead_status_changed(lead, from_status, to_status))
        await db.execute(
            update(LeadStatusHistory)
            .where(LeadStatusHistory.id == history_id)
            .values(processed_at=datetime.now(timezone.utc))
        )
        await db.commit()
        logger.debug(f"Lead {lead_id} event #{sequence} {from_status} -> {to_status} applied")

    return created


class LeadEventDispatcher:
    """
    Per-lead ordered, asynchronous event processing.

    One worker task per lead with queued events. A worker exits as soon as
    its queue is empty, so idle leads cost nothing.
    """

    def __init__(self, session_factory: Optional[Callable[[], AsyncSession]] = None):
        self.session_factory = session_factory or async_session_factory
        self._queues: Dict[uuid.UUID, asyncio.Queue] = {}
        self._workers: Dict[uuid.UUID, asyncio.Task] = {}

    def submit(self, event: LeadStatusEvent) -> None:
        """Queue ``event``; start the lead's worker if it is not running."""
        queue = self._queues.get(event.lead_id)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[event.lead_id] = queue
        queue.put_nowait(event)

        if event.lead_id not in self._workers:
            self._workers[event.lead_id] = asyncio.create_task(
                self._run(event.lead_id), name=f"lead-events-{event.lead_id}"
            )

    async def _run(self, lead_id: uuid.UUID) -> None:
        queue = self._queues[lead_id]
        try:
            while not queue.empty():
                event: LeadStatusEvent = queue.get_nowait()
                try:
                    async with self.session_factory() as db:
                        await apply_pending_status_changes(db, lead_id, event.sequence)
                except Exception:
                    logger.exception(
                        f"Failed to apply status event #{event.sequence} "
                        f"({event.previous_status} -> {event.new_status}) for lead {lead_id}; "
                        f"{queue.qsize()} later event(s) deferred to the sweep"
                    )
                    return
        finally:
            self._workers.pop(lead_id, None)
            self._queues.pop(lead_id, None)

    def pending_leads(self) -> int:
        return len(self._workers)

    async def drain(self) -> None:
        """Wait until every queued event has been processed."""
        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)


async def sweep_unprocessed_events(
    db: AsyncSession,
    dispatcher: "LeadEventDispatcher",
    limit: int = 500,
) -> int:
    """Re-submit history rows that were never applied. Returns rows found."""
    result = await db.execute(
        select(LeadStatusHistory)
        .where(LeadStatusHistory.processed_at.is_(None))
        .order_by(LeadStatusHistory.created_at.asc(), LeadStatusHistory.sequence.asc())
        .limit(limit)
    )
    rows = list(result.scalars().all())
    for row in rows:
        dispatcher.submit(
            LeadStatusEvent(
                lead_id=row.lead_id,
                sequence=row.sequence,
                previous_status=row.from_status,
                new_status=row.to_status,
            )
        )
    if rows:
        logger.info(f"Re-submitted {len(rows)} unprocessed lead status event(s)")
    return len(rows)


_dispatcher: Optional[LeadEventDispatcher] = None


def get_lead_event_dispatcher() -> LeadEventDispatcher:
    """Process-wide dispatcher (FastAPI dependency)."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = LeadEventDispatcher()
    return _dispatcher
