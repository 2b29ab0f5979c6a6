"""
Commission and payout models.

Commission rows are written once by the commission engine and only their
``status`` / ``payout_request_id`` / ``payout_date`` change afterwards.
The unique constraint on (lead, commission type, beneficiary) is the
data-layer guarantee that replayed lead events never double-pay.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Integer, DateTime, ForeignKey, Text,
    UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_hub.database import Base
from affiliate_hub.db_types import UUIDType, MoneyType


# ==================== ENUMS (stored as VARCHAR) ====================

class CommissionType(str, Enum):
    QUALIFIED_LEAD = "qualified_lead"
    SOLD_LEAD = "sold_lead"
    REFERRAL_LEVEL1 = "referral_level1"
    REFERRAL_LEVEL2 = "referral_level2"


class CommissionStatus(str, Enum):
    """Commission payout status."""
    PENDING = "pending"          # Claimable
    PROCESSING = "processing"    # Reserved by a payout request
    PAID = "paid"
    REJECTED = "rejected"


class PayoutStatus(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class PayoutMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"
    CHECK = "check"


class Commission(Base):
    """A monetary credit owed to one affiliate for one lead event."""
    __tablename__ = "commissions"
    __table_args__ = (
        UniqueConstraint(
            "lead_id", "commission_type", "beneficiary_affiliate_id",
            name="uq_commission_lead_type_beneficiary"
        ),
        CheckConstraint("level IN (0, 1, 2)", name="ck_commissions_level"),
        Index("ix_commissions_beneficiary_status", "beneficiary_affiliate_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    beneficiary_affiliate_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False
    )

    level: Mapped[int] = mapped_column(Integer, nullable=False, comment="0=direct, 1, 2")
    commission_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="qualified_lead, sold_lead, referral_level1, referral_level2"
    )
    trigger_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Lead status that produced this commission: qualified or sold"
    )

    base_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=CommissionStatus.PENDING.value,
        nullable=False,
        comment="pending, processing, paid, rejected"
    )

    payout_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("payout_requests.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    payout_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Commission {self.commission_type} {self.amount} ({self.status})>"


class PayoutRequest(Base):
    """Request to pay out every pending commission of one affiliate."""
    __tablename__ = "payout_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=PayoutStatus.REQUESTED.value,
        nullable=False,
        index=True,
        comment="requested, approved, rejected, paid"
    )
    payment_method: Mapped[str] = mapped_column(
        String(20),
        default=PayoutMethod.BANK_TRANSFER.value,
        nullable=False
    )

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<PayoutRequest {self.amount} ({self.status})>"
