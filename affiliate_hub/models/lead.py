"""
Lead models.

A lead is owned by exactly one affiliate. Its status is changed only by an
admin action; every change is appended to ``lead_status_history`` with a
per-lead sequence number, which is also the ordering key used when the
change is delivered to the commission engine.
"""
import uuid
import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_hub.database import Base
from affiliate_hub.db_types import UUIDType


class LeadStatus(str, enum.Enum):
    """Status of lead in pipeline."""
    SUBMITTED = "submitted"
    IN_REVIEW = "in_review"
    QUALIFIED = "qualified"
    SOLD = "sold"
    REJECTED = "rejected"


class LeadType(str, enum.Enum):
    """Product line the lead is interested in."""
    SOLAR = "solar"
    ROOFING = "roofing"
    HVAC = "hvac"
    WINDOWS = "windows"
    INSURANCE = "insurance"
    OTHER = "other"


class Lead(Base):
    """Lead submitted by an affiliate."""
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, primary_key=True, default=uuid.uuid4
    )
    lead_id: Mapped[str] = mapped_column(
        String(30), unique=True, index=True, nullable=False
    )  # LD-YYYYMMDD-XXXXXX

    owner_affiliate_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=LeadStatus.SUBMITTED.value,
        nullable=False,
        index=True,
        comment="submitted, in_review, qualified, sold, rejected"
    )
    lead_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="solar, roofing, hvac, windows, insurance, other"
    )

    # Contact
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False)

    # Address
    address: Mapped[Optional[str]] = mapped_column(String(255))
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(100))
    zip_code: Mapped[Optional[str]] = mapped_column(String(10))

    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Lead {self.lead_id} ({self.status})>"


class LeadStatusHistory(Base):
    """Ordered log of lead status transitions."""
    __tablename__ = "lead_status_history"
    __table_args__ = (
        UniqueConstraint("lead_id", "sequence", name="uq_lead_status_history_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, primary_key=True, default=uuid.uuid4
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[str] = mapped_column(String(20), nullable=False)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    # Set once the commission engine has consumed this transition
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
