"""
Onboarding Service

Runs the onboarding operations against the database and the external
collaborators (e-signature provider, document storage). Every stage change
goes through ``transition_record``; this module only adds persistence,
per-affiliate serialization and the provider calls.

Each mutating operation:
1. Takes the affiliate lock
2. Re-reads the onboarding row FOR UPDATE
3. Validates the operation against the current stage
4. Performs any external call
5. Commits, or rolls back so nothing partial is kept
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from affiliate_hub.core.exceptions import ConcurrencyConflict, NotFoundError, ValidationError
from affiliate_hub.core.locks import AffiliateLockRegistry, get_lock_registry
from affiliate_hub.models.affiliate import Affiliate, AgreementStatus, KYCStatus
from affiliate_hub.models.onboarding import OnboardingRecord
from affiliate_hub.services.document_storage import (
    DocumentStorage,
    get_document_storage,
    validate_kyc_document,
)
from affiliate_hub.services.onboarding_state_machine import (
    OnboardingStage,
    Operation,
    can_access_dashboard,
    stage_projection,
    transition_record,
    validate_operation,
)
from affiliate_hub.services.signature_provider import (
    SignatureProvider,
    SignatureSessionStatus,
    get_signature_provider,
)

logger = logging.getLogger(__name__)


REQUIRED_PERSONAL_FIELDS = ("first_name", "last_name", "phone")
OPTIONAL_PERSONAL_FIELDS = ("address", "city", "state", "zip_code")


def clean_personal_info(info: Dict) -> Dict[str, Optional[str]]:
    """Strip values and check required fields. Whitespace-only is empty."""
    cleaned: Dict[str, Optional[str]] = {}
    for field in REQUIRED_PERSONAL_FIELDS:
        value = (info.get(field) or "").strip()
        if not value:
            raise ValidationError(field, "is required")
        cleaned[field] = value
    for field in OPTIONAL_PERSONAL_FIELDS:
        value = info.get(field)
        cleaned[field] = value.strip() if isinstance(value, str) and value.strip() else None
    return cleaned


class OnboardingService:
    """Service for onboarding state transitions."""

    def __init__(
        self,
        db: AsyncSession,
        signature_provider: Optional[SignatureProvider] = None,
        document_storage: Optional[DocumentStorage] = None,
        locks: Optional[AffiliateLockRegistry] = None,
    ):
        self.db = db
        self.signature_provider = signature_provider or get_signature_provider()
        self.document_storage = document_storage or get_document_storage()
        self.locks = locks or get_lock_registry()

    # ========================================================================
    # Loading
    # ========================================================================

    async def get_record(self, affiliate_id: uuid.UUID) -> OnboardingRecord:
        result = await self.db.execute(
            select(OnboardingRecord).where(OnboardingRecord.affiliate_id == affiliate_id)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError("Onboarding record", affiliate_id)
        return record

    async def _load_for_update(
        self, affiliate_id: uuid.UUID
    ) -> Tuple[OnboardingRecord, Affiliate]:
        result = await self.db.execute(
            select(OnboardingRecord)
            .where(OnboardingRecord.affiliate_id == affiliate_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError("Onboarding record", affiliate_id)

        result = await self.db.execute(
            select(Affiliate)
            .where(Affiliate.id == affiliate_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        affiliate = result.scalar_one()
        return record, affiliate

    @asynccontextmanager
    async def _mutation(self, affiliate_id: uuid.UUID, operation: Operation):
        """Lock, load FOR UPDATE, then commit on success or roll back."""
        async with self.locks.hold(affiliate_id, operation.value):
            try:
                record, affiliate = await self._load_for_update(affiliate_id)
                yield record, affiliate
                await self.db.commit()
            except StaleDataError as e:
                await self.db.rollback()
                logger.warning(f"Stale onboarding record for affiliate {affiliate_id} during {operation.value}")
                raise ConcurrencyConflict(affiliate_id, operation.value) from e
            except Exception:
                await self.db.rollback()
                raise

    def _log_transition(self, affiliate_id: uuid.UUID, from_stage: str, record: OnboardingRecord) -> None:
        if from_stage != record.current_stage:
            logger.info(
                f"Affiliate {affiliate_id} onboarding: {from_stage} -> {record.current_stage}"
            )

    # ========================================================================
    # Queries
    # ========================================================================

    async def current_status(self, affiliate_id: uuid.UUID) -> dict:
        """Stage, progress and next action. Pure read, safe to poll."""
        record = await self.get_record(affiliate_id)
        return stage_projection(record.current_stage)

    async def can_access_dashboard(self, affiliate_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(OnboardingRecord.current_stage)
            .where(OnboardingRecord.affiliate_id == affiliate_id)
        )
        stage = result.scalar_one_or_none()
        return stage is not None and can_access_dashboard(stage)

    async def affiliates_awaiting_signature(
        self, limit: int = 100, after: Optional[uuid.UUID] = None
    ) -> List[uuid.UUID]:
        """
        Affiliates in SIGNATURE that have an outstanding provider session.

        Keyset-paged by affiliate id: pass the last id of the previous page
        as ``after`` to get the next one.
        """
        query = (
            select(OnboardingRecord.affiliate_id)
            .where(
                OnboardingRecord.current_stage == OnboardingStage.SIGNATURE.value,
                OnboardingRecord.signature_session_ref.is_not(None),
            )
            .order_by(OnboardingRecord.affiliate_id.asc())
            .limit(limit)
        )
        if after is not None:
            query = query.where(OnboardingRecord.affiliate_id > after)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ========================================================================
    # Transitions
    # ========================================================================

    async def begin(self, affiliate_id: uuid.UUID) -> OnboardingRecord:
        """WELCOME -> PERSONAL_INFO."""
        async with self._mutation(affiliate_id, Operation.BEGIN_ONBOARDING) as (record, affiliate):
            from_stage = record.current_stage
            transition_record(record, affiliate, Operation.BEGIN_ONBOARDING)
        self._log_transition(affiliate_id, from_stage, record)
        return record

    async def submit_personal_info(self, affiliate_id: uuid.UUID, info: Dict) -> OnboardingRecord:
        """
        Save personal info and advance to SIGNATURE.

        Allowed from WELCOME or PERSONAL_INFO; a repeat call overwrites the
        stored values.

        Raises:
            InvalidTransition: stage is past personal info collection
            ValidationError: first name, last name or phone is empty
        """
        async with self._mutation(affiliate_id, Operation.SUBMIT_PERSONAL_INFO) as (record, affiliate):
            validate_operation(record.current_stage, Operation.SUBMIT_PERSONAL_INFO)
            cleaned = clean_personal_info(info)

            from_stage = record.current_stage
            record.personal_info = cleaned
            affiliate.first_name = cleaned["first_name"]
            affiliate.last_name = cleaned["last_name"]
            affiliate.phone = cleaned["phone"]
            transition_record(record, affiliate, Operation.SUBMIT_PERSONAL_INFO)

        self._log_transition(affiliate_id, from_stage, record)
        return record

    def _apply_signature_completed(self, record: OnboardingRecord, affiliate: Affiliate) -> None:
        transition_record(record, affiliate, Operation.COMPLETE_SIGNATURE)
        record.signing_url = None
        affiliate.agreement_status = AgreementStatus.SIGNED.value
        logger.info(f"Agreement signed for affiliate {affiliate.id} (session {record.signature_session_ref})")

    async def start_signature(self, affiliate_id: uuid.UUID) -> OnboardingRecord:
        """
        Open (or reuse) the agreement signing session.

        An outstanding session is checked with the provider first:
        pending is reused, completed advances to KYC_UPLOAD, expired is
        replaced. The stage never advances here on its own.

        Raises:
            InvalidTransition: not in SIGNATURE
            ExternalProviderError: provider failure; nothing is written
        """
        async with self._mutation(affiliate_id, Operation.START_SIGNATURE) as (record, affiliate):
            validate_operation(record.current_stage, Operation.START_SIGNATURE)
            from_stage = record.current_stage

            if record.signature_session_ref:
                status = await self.signature_provider.session_status(record.signature_session_ref)

                if status == SignatureSessionStatus.PENDING:
                    logger.info(
                        f"Reusing signature session {record.signature_session_ref} for affiliate {affiliate_id}"
                    )
                    return record

                if status == SignatureSessionStatus.COMPLETED:
                    self._apply_signature_completed(record, affiliate)
                    return record

                logger.info(
                    f"Signature session {record.signature_session_ref} expired; replacing it "
                    f"for affiliate {affiliate_id}"
                )

            # Same key until a session is recorded, so a lost response on
            # retry yields the same provider session
            session = await self.signature_provider.create_session(
                affiliate_id,
                idempotency_key=f"agreement-{affiliate_id}-{record.version}",
            )
            record.signature_session_ref = session.session_ref
            record.signing_url = session.signing_url
            affiliate.agreement_status = AgreementStatus.SENT.value
            transition_record(record, affiliate, Operation.START_SIGNATURE)

        logger.info(f"Signature session {record.signature_session_ref} opened for affiliate {affiliate_id}")
        self._log_transition(affiliate_id, from_stage, record)
        return record

    async def sync_signature(self, affiliate_id: uuid.UUID) -> OnboardingRecord:
        """
        Reconcile the stored session with the provider.

        Outside SIGNATURE, or with no session yet, this is a no-op.
        """
        async with self._mutation(affiliate_id, Operation.COMPLETE_SIGNATURE) as (record, affiliate):
            from_stage = record.current_stage
            if from_stage != OnboardingStage.SIGNATURE.value or not record.signature_session_ref:
                return record

            status = await self.signature_provider.session_status(record.signature_session_ref)

            if status == SignatureSessionStatus.COMPLETED:
                self._apply_signature_completed(record, affiliate)
            elif status == SignatureSessionStatus.EXPIRED:
                logger.info(
                    f"Signature session {record.signature_session_ref} expired for affiliate {affiliate_id}"
                )
                record.signature_session_ref = None
                record.signing_url = None
                affiliate.agreement_status = AgreementStatus.EXPIRED.value

        self._log_transition(affiliate_id, from_stage, record)
        return record

    async def sync_signature_by_session(self, session_ref: str) -> OnboardingRecord:
        """Provider webhook entry point: resolve the affiliate, then sync."""
        result = await self.db.execute(
            select(OnboardingRecord.affiliate_id)
            .where(OnboardingRecord.signature_session_ref == session_ref)
        )
        affiliate_id = result.scalar_one_or_none()
        if affiliate_id is None:
            raise NotFoundError("Signature session", session_ref)
        return await self.sync_signature(affiliate_id)

    async def upload_kyc_document(
        self,
        affiliate_id: uuid.UUID,
        content: bytes,
        mime_type: Optional[str],
        document_type: str,
        declared_size: Optional[int] = None,
    ) -> OnboardingRecord:
        """
        Validate and store an identity document, then advance to REVIEW.

        Raises:
            InvalidTransition: not in KYC_UPLOAD
            ValidationError: bad document type, MIME type or size;
                nothing is stored
            ExternalProviderError: storage failure; nothing is written
        """
        size = declared_size if declared_size is not None else len(content)

        async with self._mutation(affiliate_id, Operation.UPLOAD_KYC_DOCUMENT) as (record, affiliate):
            validate_operation(record.current_stage, Operation.UPLOAD_KYC_DOCUMENT)
            validate_kyc_document(document_type, mime_type, size)
            if len(content) > size:
                raise ValidationError("file", "content is larger than its declared size")

            from_stage = record.current_stage
            document_ref = await self.document_storage.store(content, mime_type)

            record.kyc_document_ref = document_ref
            record.kyc_document_type = document_type
            record.kyc_document_mime_type = mime_type
            record.kyc_document_size = size
            record.review_notes = None
            affiliate.kyc_status = KYCStatus.PENDING.value
            transition_record(record, affiliate, Operation.UPLOAD_KYC_DOCUMENT)

        self._log_transition(affiliate_id, from_stage, record)
        return record

    async def complete_review(
        self,
        affiliate_id: uuid.UUID,
        approved: bool,
        notes: Optional[str] = None,
        reviewer_id: Optional[uuid.UUID] = None,
    ) -> OnboardingRecord:
        """
        Record the manual KYC review.

        Approval completes onboarding. Rejection always returns to
        KYC_UPLOAD and discards the rejected document reference.
        """
        operation = Operation.APPROVE_REVIEW if approved else Operation.REJECT_REVIEW

        async with self._mutation(affiliate_id, operation) as (record, affiliate):
            from_stage = record.current_stage
            transition_record(record, affiliate, operation)
            record.review_notes = notes

            if approved:
                affiliate.kyc_status = KYCStatus.VERIFIED.value
            else:
                affiliate.kyc_status = KYCStatus.REJECTED.value
                record.kyc_document_ref = None
                record.kyc_document_type = None
                record.kyc_document_mime_type = None
                record.kyc_document_size = None

        logger.info(
            f"KYC review for affiliate {affiliate_id}: "
            f"{'approved' if approved else 'rejected'} by {reviewer_id or 'system'}"
        )
        self._log_transition(affiliate_id, from_stage, record)
        return record
