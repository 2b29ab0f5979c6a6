"""
E-Signature Provider Integration.

The provider owns signing sessions and is the source of truth for whether
an affiliate agreement has been signed:
- create_session(affiliate_id) -> SignatureSession(session_ref, signing_url)
- session_status(session_ref) -> pending | completed | expired

Failures and timeouts surface as ExternalProviderError, which callers treat
as retryable with no local state written.
"""
import httpx
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Protocol

from affiliate_hub.config import settings
from affiliate_hub.core.exceptions import ExternalProviderError

logger = logging.getLogger(__name__)

PROVIDER_NAME = "e-signature provider"


class SignatureSessionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


@dataclass
class SignatureSession:
    """Session created by the provider."""
    session_ref: str
    signing_url: str


class SignatureProvider(Protocol):
    async def create_session(
        self, affiliate_id: uuid.UUID, idempotency_key: Optional[str] = None
    ) -> SignatureSession:
        ...

    async def session_status(self, session_ref: str) -> SignatureSessionStatus:
        ...


# Provider status strings that map onto our three states
_STATUS_MAP = {
    "pending": SignatureSessionStatus.PENDING,
    "sent": SignatureSessionStatus.PENDING,
    "viewed": SignatureSessionStatus.PENDING,
    "completed": SignatureSessionStatus.COMPLETED,
    "signed": SignatureSessionStatus.COMPLETED,
    "expired": SignatureSessionStatus.EXPIRED,
    "declined": SignatureSessionStatus.EXPIRED,
    "voided": SignatureSessionStatus.EXPIRED,
}


class HttpSignatureProvider:
    """
    REST client for the e-signature provider.

    Usage:
        provider = HttpSignatureProvider()
        session = await provider.create_session(affiliate.id)
        status = await provider.session_status(session.session_ref)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.ESIGN_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.ESIGN_API_KEY
        self.timeout = timeout or settings.ESIGN_TIMEOUT_SECONDS
        self._transport = transport

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict:
        """Make authenticated request to the provider API."""
        if not self.base_url:
            raise ExternalProviderError(PROVIDER_NAME, "ESIGN_API_URL is not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.request(method.upper(), url, headers=headers, json=data)
        except httpx.TimeoutException as e:
            logger.error(f"E-signature request timed out: {method} {endpoint}")
            raise ExternalProviderError(PROVIDER_NAME, "request timed out", timed_out=True) from e
        except httpx.HTTPError as e:
            logger.error(f"E-signature request failed: {method} {endpoint}: {e}")
            raise ExternalProviderError(PROVIDER_NAME, str(e)) from e

        if response.status_code >= 400:
            logger.error(f"E-signature API error: {response.status_code} - {response.text}")
            raise ExternalProviderError(
                PROVIDER_NAME,
                f"HTTP {response.status_code}",
                upstream_status=response.status_code,
            )

        if not response.text:
            return {}
        try:
            payload = response.json()
        except ValueError as e:
            logger.error(f"E-signature API returned non-JSON body for {method} {endpoint}")
            raise ExternalProviderError(PROVIDER_NAME, "malformed response") from e
        if not isinstance(payload, dict):
            raise ExternalProviderError(PROVIDER_NAME, "malformed response")
        return payload

    async def create_session(
        self, affiliate_id: uuid.UUID, idempotency_key: Optional[str] = None
    ) -> SignatureSession:
        """
        Create a signing session for the affiliate agreement.

        The provider returns the same session for a repeated idempotency key,
        so a retry after a lost response does not open a second session.
        """
        result = await self._request(
            "POST",
            "/sessions",
            data={"external_id": str(affiliate_id), "template": "affiliate_agreement"},
            idempotency_key=idempotency_key,
        )
        session_ref = result.get("id") or result.get("session_id")
        signing_url = result.get("signing_url") or result.get("url")
        if not session_ref or not signing_url:
            raise ExternalProviderError(PROVIDER_NAME, "malformed create-session response")

        logger.info(f"Signature session {session_ref} created for affiliate {affiliate_id}")
        return SignatureSession(session_ref=session_ref, signing_url=signing_url)

    async def session_status(self, session_ref: str) -> SignatureSessionStatus:
        """Get provider-side status of a session."""
        result = await self._request("GET", f"/sessions/{session_ref}")
        raw = str(result.get("status", "")).lower()
        status = _STATUS_MAP.get(raw)
        if status is None:
            raise ExternalProviderError(PROVIDER_NAME, f"unknown session status '{raw}'")
        return status


_provider: Optional[SignatureProvider] = None


def get_signature_provider() -> SignatureProvider:
    """FastAPI dependency / job helper returning the configured provider."""
    global _provider
    if _provider is None:
        _provider = HttpSignatureProvider()
    return _provider
