"""
Domain errors for the affiliate core.

Every error carries a stable ``code``, a human-readable ``message`` and a
``details`` dict with enough context for the frontend to render an
actionable message. ``status_code`` is the HTTP status the API layer uses.
"""

from typing import Any, Dict, Optional


class AffiliateHubError(Exception):
    """Base class for all domain errors."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(AffiliateHubError):
    """Bad input shape (missing field, disallowed MIME type, oversized file)."""

    code = "validation_error"
    status_code = 422

    def __init__(self, field: str, reason: str, details: Optional[Dict[str, Any]] = None):
        self.field = field
        self.reason = reason
        super().__init__(
            f"Invalid {field}: {reason}",
            {"field": field, "reason": reason, **(details or {})},
        )


class InvalidTransition(AffiliateHubError):
    """State-machine move not permitted from the current state."""

    code = "invalid_transition"
    status_code = 409

    def __init__(self, current_state: str, operation: str, allowed_from: Optional[list] = None):
        self.current_state = current_state
        self.operation = operation
        details: Dict[str, Any] = {"current_state": current_state, "operation": operation}
        message = f"Cannot {operation} while in '{current_state}'"
        if allowed_from:
            details["allowed_from"] = list(allowed_from)
            message += f". Allowed from: {', '.join(allowed_from)}"
        super().__init__(message, details)


class NoPendingFunds(AffiliateHubError):
    """Payout requested with nothing claimable."""

    code = "no_pending_funds"
    status_code = 400

    def __init__(self, affiliate_id):
        super().__init__(
            "No pending commissions available for payout",
            {"affiliate_id": str(affiliate_id)},
        )


class ExternalProviderError(AffiliateHubError):
    """Signing or storage provider failure. Always safe to retry."""

    code = "external_provider_error"
    status_code = 502

    def __init__(
        self,
        provider: str,
        message: str,
        timed_out: bool = False,
        upstream_status: Optional[int] = None,
    ):
        self.provider = provider
        self.timed_out = timed_out
        self.retryable = True
        if timed_out:
            self.status_code = 503
        details: Dict[str, Any] = {
            "provider": provider,
            "retryable": True,
            "timed_out": timed_out,
        }
        if upstream_status is not None:
            details["upstream_status"] = upstream_status
        super().__init__(f"{provider} error: {message}", details)


class ConcurrencyConflict(AffiliateHubError):
    """Another operation holds or changed this affiliate's state. Retry."""

    code = "concurrency_conflict"
    status_code = 409

    def __init__(self, affiliate_id, operation: str):
        super().__init__(
            f"Concurrent update detected during {operation}; please retry",
            {"affiliate_id": str(affiliate_id), "operation": operation, "retryable": True},
        )


class NotFoundError(AffiliateHubError):
    code = "not_found"
    status_code = 404

    def __init__(self, resource: str, identifier):
        super().__init__(
            f"{resource} not found",
            {"resource": resource, "id": str(identifier)},
        )


class PermissionDeniedError(AffiliateHubError):
    code = "permission_denied"
    status_code = 403

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
