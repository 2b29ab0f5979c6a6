from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # App Settings
    APP_NAME: str = "Affiliate Hub"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # E-Signature Provider
    ESIGN_API_URL: str = ""  # e.g., "https://api.esign-provider.com/v1"
    ESIGN_API_KEY: str = ""
    ESIGN_TIMEOUT_SECONDS: float = 15.0
    ESIGN_SYNC_INTERVAL_MINUTES: int = 5  # Reconcile outstanding signing sessions
    ESIGN_WEBHOOK_SECRET: Optional[str] = None

    # Supabase Storage Settings (KYC documents)
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_KEY: str = ""  # Service role key (NOT anon key)
    SUPABASE_STORAGE_BUCKET: str = "kyc-documents"
    STORAGE_TIMEOUT_SECONDS: float = 30.0

    # KYC
    KYC_MAX_DOCUMENT_SIZE: int = 10 * 1024 * 1024  # 10MB

    # Concurrency
    AFFILIATE_LOCK_TIMEOUT_SECONDS: float = 10.0

    # Referral tree traversal
    REFERRAL_TREE_PAGE_SIZE: int = 500

    # Background jobs
    SCHEDULER_ENABLED: bool = True

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
