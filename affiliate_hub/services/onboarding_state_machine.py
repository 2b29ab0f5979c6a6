"""
Onboarding State Machine

This module is the SINGLE SOURCE OF TRUTH for all onboarding stage
transitions. All stage changes must go through ``transition_record``.

Stages (in order of progress):
    WELCOME -> PERSONAL_INFO -> SIGNATURE -> KYC_UPLOAD -> REVIEW -> COMPLETE

COMPLETE is terminal. A rejected review goes back to KYC_UPLOAD, never to
PERSONAL_INFO or SIGNATURE.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Tuple

from affiliate_hub.core.exceptions import InvalidTransition


# =============================================================================
# STAGE DEFINITIONS
# =============================================================================

class OnboardingStage(str, Enum):
    WELCOME = "WELCOME"
    PERSONAL_INFO = "PERSONAL_INFO"
    SIGNATURE = "SIGNATURE"
    KYC_UPLOAD = "KYC_UPLOAD"
    REVIEW = "REVIEW"
    COMPLETE = "COMPLETE"

    @classmethod
    def ordered(cls) -> List["OnboardingStage"]:
        return [
            cls.WELCOME, cls.PERSONAL_INFO, cls.SIGNATURE,
            cls.KYC_UPLOAD, cls.REVIEW, cls.COMPLETE,
        ]


class NextAction(str, Enum):
    """The single action the client must take next."""
    FILL_PERSONAL_INFO = "fill_personal_info"
    START_SIGNING = "start_signing"
    UPLOAD_DOCUMENT = "upload_document"
    WAIT_FOR_REVIEW = "wait_for_review"
    PROCEED_TO_DASHBOARD = "proceed_to_dashboard"


class Operation(str, Enum):
    """Operations that drive the state machine."""
    BEGIN_ONBOARDING = "begin_onboarding"
    SUBMIT_PERSONAL_INFO = "submit_personal_info"
    START_SIGNATURE = "start_signature"
    COMPLETE_SIGNATURE = "complete_signature"
    UPLOAD_KYC_DOCUMENT = "upload_kyc_document"
    APPROVE_REVIEW = "approve_review"
    REJECT_REVIEW = "reject_review"


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: operation -> (stages it may be invoked from, stage it moves to).
# START_SIGNATURE does not move the stage; completion is detected from the
# provider and applied through COMPLETE_SIGNATURE.
OPERATION_RULES: Dict[Operation, Tuple[List[OnboardingStage], OnboardingStage]] = {
    Operation.BEGIN_ONBOARDING: (
        [OnboardingStage.WELCOME],
        OnboardingStage.PERSONAL_INFO,
    ),
    Operation.SUBMIT_PERSONAL_INFO: (
        [OnboardingStage.WELCOME, OnboardingStage.PERSONAL_INFO],
        OnboardingStage.SIGNATURE,
    ),
    Operation.START_SIGNATURE: (
        [OnboardingStage.SIGNATURE],
        OnboardingStage.SIGNATURE,
    ),
    Operation.COMPLETE_SIGNATURE: (
        [OnboardingStage.SIGNATURE],
        OnboardingStage.KYC_UPLOAD,
    ),
    Operation.UPLOAD_KYC_DOCUMENT: (
        [OnboardingStage.KYC_UPLOAD],
        OnboardingStage.REVIEW,
    ),
    Operation.APPROVE_REVIEW: (
        [OnboardingStage.REVIEW],
        OnboardingStage.COMPLETE,
    ),
    Operation.REJECT_REVIEW: (
        [OnboardingStage.REVIEW],
        OnboardingStage.KYC_UPLOAD,
    ),
}

# Derived edge list: current_stage -> [allowed next stages]
ONBOARDING_TRANSITIONS: Dict[OnboardingStage, List[OnboardingStage]] = {
    stage: [] for stage in OnboardingStage.ordered()
}
for _allowed_from, _target in OPERATION_RULES.values():
    for _stage in _allowed_from:
        if _target not in ONBOARDING_TRANSITIONS[_stage]:
            ONBOARDING_TRANSITIONS[_stage].append(_target)

# Human-readable action names for each transition
TRANSITION_ACTIONS: Dict[tuple, str] = {
    (OnboardingStage.WELCOME, OnboardingStage.PERSONAL_INFO): "Get Started",
    (OnboardingStage.WELCOME, OnboardingStage.SIGNATURE): "Submit Personal Info",
    (OnboardingStage.PERSONAL_INFO, OnboardingStage.SIGNATURE): "Submit Personal Info",
    (OnboardingStage.SIGNATURE, OnboardingStage.SIGNATURE): "Start Signing",
    (OnboardingStage.SIGNATURE, OnboardingStage.KYC_UPLOAD): "Agreement Signed",
    (OnboardingStage.KYC_UPLOAD, OnboardingStage.REVIEW): "Upload ID Document",
    (OnboardingStage.REVIEW, OnboardingStage.COMPLETE): "Approve",
    (OnboardingStage.REVIEW, OnboardingStage.KYC_UPLOAD): "Reject - Re-upload Required",
}

NEXT_ACTIONS: Dict[OnboardingStage, NextAction] = {
    OnboardingStage.WELCOME: NextAction.FILL_PERSONAL_INFO,
    OnboardingStage.PERSONAL_INFO: NextAction.FILL_PERSONAL_INFO,
    OnboardingStage.SIGNATURE: NextAction.START_SIGNING,
    OnboardingStage.KYC_UPLOAD: NextAction.UPLOAD_DOCUMENT,
    OnboardingStage.REVIEW: NextAction.WAIT_FOR_REVIEW,
    OnboardingStage.COMPLETE: NextAction.PROCEED_TO_DASHBOARD,
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_stage: str, new_stage: str) -> bool:
    """Check if a stage-to-stage edge is allowed."""
    allowed = ONBOARDING_TRANSITIONS.get(OnboardingStage(current_stage), [])
    return OnboardingStage(new_stage) in allowed


def can_perform(current_stage: str, operation: Operation) -> bool:
    """Check if ``operation`` may be invoked from ``current_stage``."""
    allowed_from, _ = OPERATION_RULES[operation]
    return OnboardingStage(current_stage) in allowed_from


def get_transition_action(current_stage: str, new_stage: str) -> str:
    """Get human-readable action name for a transition."""
    return TRANSITION_ACTIONS.get(
        (OnboardingStage(current_stage), OnboardingStage(new_stage)),
        f"{current_stage} -> {new_stage}"
    )


def validate_operation(current_stage: str, operation: Operation) -> OnboardingStage:
    """
    Validate that ``operation`` is permitted from ``current_stage``.

    Returns the target stage. Raises InvalidTransition otherwise; the caller
    must not have touched the record yet.
    """
    allowed_from, target = OPERATION_RULES[operation]
    if OnboardingStage(current_stage) not in allowed_from:
        raise InvalidTransition(
            current_state=current_stage,
            operation=operation.value,
            allowed_from=[s.value for s in allowed_from],
        )
    return target


def is_terminal(stage: str) -> bool:
    return OnboardingStage(stage) == OnboardingStage.COMPLETE


def can_access_dashboard(stage: str) -> bool:
    """Dashboard gate: only a completed onboarding grants access."""
    return OnboardingStage(stage) == OnboardingStage.COMPLETE


# =============================================================================
# STATUS PROJECTION
# =============================================================================

def stage_projection(stage: str) -> dict:
    """
    Client-facing status derived solely from the stage.

    Depends on nothing but ``stage`` so it is safe to poll at any rate.
    """
    current = OnboardingStage(stage)
    ordered = OnboardingStage.ordered()
    step = ordered.index(current) + 1
    return {
        "current_stage": current.value,
        "current_step": step,
        "total_steps": len(ordered),
        "progress_percentage": step * 100 // len(ordered),
        "next_action": NEXT_ACTIONS[current].value,
        "can_access_dashboard": can_access_dashboard(current.value),
    }


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_record(record, affiliate, operation: Operation) -> OnboardingStage:
    """
    Apply ``operation`` to an onboarding record.

    This function:
    1. Validates the operation is allowed from the current stage
    2. Updates the stage on the record and its mirror on the affiliate
    3. Sets the per-stage timestamp

    Args:
        record: OnboardingRecord model instance
        affiliate: Affiliate model instance owning the record
        operation: Operation being applied

    Returns:
        The new stage

    Raises:
        InvalidTransition: If the operation is not allowed
    """
    target = validate_operation(record.current_stage, operation)

    record.current_stage = target.value
    affiliate.onboarding_state = target.value

    now = datetime.now(timezone.utc)

    if operation == Operation.SUBMIT_PERSONAL_INFO:
        record.personal_info_submitted_at = now

    elif operation == Operation.START_SIGNATURE:
        record.signature_started_at = now

    elif operation == Operation.COMPLETE_SIGNATURE:
        record.signature_completed_at = now

    elif operation == Operation.UPLOAD_KYC_DOCUMENT:
        record.kyc_uploaded_at = now

    elif operation == Operation.APPROVE_REVIEW:
        record.review_completed_at = now
        record.completed_at = now

    elif operation == Operation.REJECT_REVIEW:
        record.review_completed_at = now

    return target
