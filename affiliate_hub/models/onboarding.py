"""
Onboarding record: one per affiliate, owned by the onboarding state machine.

``version`` is a SQLAlchemy version counter; two writers that loaded the same
version cannot both commit a transition.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Integer, DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_hub.database import Base
from affiliate_hub.db_types import UUIDType, JSONType


class OnboardingRecord(Base):
    """Per-affiliate onboarding progress."""
    __tablename__ = "onboarding_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True
    )

    current_stage: Mapped[str] = mapped_column(
        String(20),
        default="WELCOME",
        nullable=False,
        index=True
    )

    # Personal info (mutable until the stage advances past collection)
    personal_info: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # E-signature session (opaque handle owned by the provider)
    signature_session_ref: Mapped[Optional[str]] = mapped_column(String(255))
    signing_url: Mapped[Optional[str]] = mapped_column(String(1000))

    # KYC document (opaque handle owned by document storage)
    kyc_document_ref: Mapped[Optional[str]] = mapped_column(String(500))
    kyc_document_type: Mapped[Optional[str]] = mapped_column(String(30))
    kyc_document_mime_type: Mapped[Optional[str]] = mapped_column(String(50))
    kyc_document_size: Mapped[Optional[int]] = mapped_column(Integer)

    review_notes: Mapped[Optional[str]] = mapped_column(Text)

    # Stage transition timestamps
    personal_info_submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    signature_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    signature_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    kyc_uploaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    review_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

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

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<OnboardingRecord {self.affiliate_id} {self.current_stage}>"
