"""
Affiliate model.

An affiliate submits leads, earns commissions and may refer other
affiliates. The referral graph is stored as a single nullable back-reference
(``referrer_id``) that is set once at registration and never reassigned, so
the graph is an append-only forest.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_hub.database import Base
from affiliate_hub.db_types import UUIDType


# ==================== ENUMS (stored as VARCHAR) ====================

class KYCStatus(str, Enum):
    """Identity verification status."""
    NOT_SUBMITTED = "not_submitted"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class AgreementStatus(str, Enum):
    """Affiliate agreement (e-signature) status."""
    NOT_STARTED = "not_started"
    SENT = "sent"
    SIGNED = "signed"
    EXPIRED = "expired"


class Affiliate(Base):
    """Affiliate account."""
    __tablename__ = "affiliates"
    __table_args__ = (
        CheckConstraint(
            "referrer_id IS NULL OR referrer_id <> id",
            name="ck_affiliates_no_self_referral",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identity
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20))

    # Referral
    referral_code: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        index=True,
        comment="Assigned at creation, immutable, never reused"
    )
    referrer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("affiliates.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Onboarding (mirrors OnboardingRecord.current_stage for listings)
    onboarding_state: Mapped[str] = mapped_column(
        String(20),
        default="WELCOME",
        nullable=False,
        comment="WELCOME, PERSONAL_INFO, SIGNATURE, KYC_UPLOAD, REVIEW, COMPLETE"
    )
    kyc_status: Mapped[str] = mapped_column(
        String(20),
        default=KYCStatus.NOT_SUBMITTED.value,
        nullable=False
    )
    agreement_status: Mapped[str] = mapped_column(
        String(20),
        default=AgreementStatus.NOT_STARTED.value,
        nullable=False
    )

    # Access
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

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
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Affiliate {self.email} ({self.referral_code})>"
