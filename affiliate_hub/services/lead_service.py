"""Lead submission and admin status changes."""
import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_hub.core.exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from affiliate_hub.models.lead import Lead, LeadStatus, LeadStatusHistory, LeadType
from affiliate_hub.services.lead_events import LeadEventDispatcher, LeadStatusEvent

logger = logging.getLogger(__name__)


def generate_lead_id() -> str:
    """External lead code: LD-YYYYMMDD-XXXXXX."""
    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    return f"LD-{today}-{secrets.token_hex(3).upper()}"


class LeadService:
    """Service for leads owned by affiliates."""

    def __init__(self, db: AsyncSession, dispatcher: Optional[LeadEventDispatcher] = None):
        self.db = db
        self.dispatcher = dispatcher

    async def get_lead(self, lead_id: uuid.UUID) -> Lead:
        lead = await self.db.get(Lead, lead_id)
        if lead is None:
            raise NotFoundError("Lead", lead_id)
        return lead

    async def submit_lead(self, owner_affiliate_id: uuid.UUID, data: Dict) -> Lead:
        """Create a lead in ``submitted`` status."""
        lead_type = data.get("lead_type")
        if lead_type not in {t.value for t in LeadType}:
            raise ValidationError(
                "lead_type", f"must be one of: {', '.join(t.value for t in LeadType)}"
            )

        # Lead codes are random; retry the rare collision
        for attempt in range(3):
            lead = Lead(
                id=uuid.uuid4(),
                lead_id=generate_lead_id(),
                owner_affiliate_id=owner_affiliate_id,
                status=LeadStatus.SUBMITTED.value,
                lead_type=lead_type,
                first_name=data["first_name"],
                last_name=data["last_name"],
                email=data["email"],
                phone=data["phone"],
                address=data.get("address"),
                city=data.get("city"),
                state=data.get("state"),
                zip_code=data.get("zip_code"),
                notes=data.get("notes"),
            )
            self.db.add(lead)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                if attempt == 2:
                    raise
                continue
            break

        logger.info(f"Lead {lead.lead_id} submitted by affiliate {owner_affiliate_id}")
        return lead

    async def list_leads(
        self,
        owner_affiliate_id: uuid.UUID,
        status: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Lead], int]:
        filters = [Lead.owner_affiliate_id == owner_affiliate_id]
        if status:
            filters.append(Lead.status == status)

        total = (await self.db.execute(select(func.count(Lead.id)).where(*filters))).scalar() or 0
        result = await self.db.execute(
            select(Lead)
            .where(*filters)
            .order_by(Lead.created_at.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        return list(result.scalars().all()), total

    async def change_status(
        self,
        lead_id: uuid.UUID,
        new_status: str,
        changed_by: Optional[uuid.UUID] = None,
    ) -> Lead:
        """
        Set a lead's status and emit the transition to the commission engine.

        Setting the current status again is a no-op and emits nothing.
        """
        if new_status not in {s.value for s in LeadStatus}:
            raise ValidationError(
                "status", f"must be one of: {', '.join(s.value for s in LeadStatus)}"
            )

        try:
            result = await self.db.execute(
                select(Lead)
                .where(Lead.id == lead_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            lead = result.scalar_one_or_none()
            if lead is None:
                raise NotFoundError("Lead", lead_id)

            previous_status = lead.status
            owner_id = lead.owner_affiliate_id
            if previous_status == new_status:
                return lead

            seq_result = await self.db.execute(
                select(func.coalesce(func.max(LeadStatusHistory.sequence), 0))
                .where(LeadStatusHistory.lead_id == lead_id)
            )
            sequence = (seq_result.scalar() or 0) + 1

            self.db.add(
                LeadStatusHistory(
                    id=uuid.uuid4(),
                    lead_id=lead_id,
                    sequence=sequence,
                    from_status=previous_status,
                    to_status=new_status,
                    changed_by=changed_by,
                )
            )
            lead.status = new_status
            await self.db.commit()
        except IntegrityError as e:
            # Another writer took this sequence number
            await self.db.rollback()
            raise ConcurrencyConflict(owner_id, "change_lead_status") from e
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Lead {lead.lead_id} status: {previous_status} -> {new_status} (event #{sequence})"
        )

        if self.dispatcher is not None:
            self.dispatcher.submit(
                LeadStatusEvent(
                    lead_id=lead_id,
                    sequence=sequence,
                    previous_status=previous_status,
                    new_status=new_status,
                )
            )
        return lead
