"""Supabase Storage client for KYC document uploads."""
import uuid

from affiliate_hub.config import settings


class StorageClient:
    """Client for Supabase Storage operations."""

    _client = None

    @classmethod
    def get_client(cls):
        """Get or create Supabase client."""
        if cls._client is None:
            if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
                raise ValueError(
                    "Supabase credentials not configured. "
                    "Set SUPABASE_URL and SUPABASE_SERVICE_KEY environment variables."
                )
            from supabase import create_client

            cls._client = create_client(
                settings.SUPABASE_URL,
                settings.SUPABASE_SERVICE_KEY
            )
        return cls._client

    @classmethod
    def get_bucket(cls):
        """Get the storage bucket."""
        client = cls.get_client()
        return client.storage.from_(settings.SUPABASE_STORAGE_BUCKET)

    @classmethod
    def upload(
        cls,
        content: bytes,
        path: str,
        content_type: str
    ) -> str:
        """
        Upload file to the private KYC bucket.

        Args:
            content: File content as bytes
            path: Storage path (e.g., "kyc/3f2a.../passport.pdf")
            content_type: MIME type (e.g., "application/pdf")

        Returns:
            Storage path of the uploaded file. KYC files are never public, so
            the path (not a URL) is the document reference.
        """
        bucket = cls.get_bucket()
        bucket.upload(
            path=path,
            file=content,
            file_options={"content-type": content_type, "upsert": "false"}
        )
        return path

    @classmethod
    def generate_unique_filename(cls, extension: str, prefix: str = "") -> str:
        """
        Generate a unique object name to prevent collisions.

        Args:
            extension: File extension including the dot (e.g., ".pdf")
            prefix: Optional folder prefix

        Returns:
            Unique path like "kyc/<uuid>.pdf"
        """
        name = f"{uuid.uuid4().hex}{extension}"
        return f"{prefix.rstrip('/')}/{name}" if prefix else name
