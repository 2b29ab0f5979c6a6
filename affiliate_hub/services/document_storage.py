"""KYC document validation and storage."""
import asyncio
import logging
from typing import Optional, Protocol

from affiliate_hub.config import settings
from affiliate_hub.core.exceptions import ExternalProviderError, ValidationError
from affiliate_hub.core.storage import StorageClient

logger = logging.getLogger(__name__)

PROVIDER_NAME = "document storage"

# Allowed MIME types for identity documents
ALLOWED_KYC_TYPES = {
    "application/pdf": ".pdf",
    "image/jpeg": ".jpg",
    "image/png": ".png",
}

KYC_DOCUMENT_TYPES = ("drivers_license", "passport", "state_id", "other")


def validate_kyc_document(
    document_type: str,
    content_type: Optional[str],
    size: int,
) -> None:
    """
    Validate an identity document before anything is stored.

    Args:
        document_type: One of KYC_DOCUMENT_TYPES
        content_type: Declared MIME type
        size: Declared size in bytes

    Raises:
        ValidationError naming the offending field
    """
    if document_type not in KYC_DOCUMENT_TYPES:
        raise ValidationError(
            "document_type",
            f"must be one of: {', '.join(KYC_DOCUMENT_TYPES)}",
        )

    if content_type not in ALLOWED_KYC_TYPES:
        raise ValidationError(
            "mime_type",
            f"'{content_type}' is not allowed. Allowed: {', '.join(ALLOWED_KYC_TYPES)}",
        )

    max_size = settings.KYC_MAX_DOCUMENT_SIZE
    if size <= 0:
        raise ValidationError("file", "file is empty")
    if size > max_size:
        max_mb = max_size / (1024 * 1024)
        actual_mb = size / (1024 * 1024)
        raise ValidationError(
            "file",
            f"file too large: {actual_mb:.1f}MB. Maximum: {max_mb:.0f}MB",
            {"size": size, "max_size": max_size},
        )


class DocumentStorage(Protocol):
    async def store(self, content: bytes, mime_type: str) -> str:
        ...


class SupabaseDocumentStorage:
    """Stores KYC documents in the private Supabase bucket."""

    def __init__(self, timeout: Optional[float] = None, prefix: str = "kyc"):
        self.timeout = timeout or settings.STORAGE_TIMEOUT_SECONDS
        self.prefix = prefix

    async def store(self, content: bytes, mime_type: str) -> str:
        """
        Upload ``content`` and return its document reference.

        The Supabase client is synchronous, so the upload runs in a worker
        thread bounded by the storage timeout.
        """
        path = StorageClient.generate_unique_filename(
            ALLOWED_KYC_TYPES.get(mime_type, ""), prefix=self.prefix
        )
        try:
            ref = await asyncio.wait_for(
                asyncio.to_thread(StorageClient.upload, content, path, mime_type),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"KYC document upload timed out ({path})")
            raise ExternalProviderError(PROVIDER_NAME, "upload timed out", timed_out=True) from e
        except Exception as e:
            logger.error(f"KYC document upload failed ({path}): {e}")
            raise ExternalProviderError(PROVIDER_NAME, str(e)) from e

        logger.info(f"KYC document stored at {ref}")
        return ref


_storage: Optional[DocumentStorage] = None


def get_document_storage() -> DocumentStorage:
    global _storage
    if _storage is None:
        _storage = SupabaseDocumentStorage()
    return _storage
