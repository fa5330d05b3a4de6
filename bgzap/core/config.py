"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "BGZap Background Removal"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Storage Settings
    # ==========================================================================
    # Processed images from the local backend are written here and served
    # under /static/storage
    LOCAL_STORAGE_PATH: str = "./data/storage"
    MAX_IMAGE_SIZE_BYTES: int = 10485760  # 10MB

    # ==========================================================================
    # Processing Settings
    # ==========================================================================
    DEFAULT_PROCESSING_METHOD: str = "local"  # local, remote

    # Local backend (rembg)
    REMBG_MODEL: str = "u2net"

    # Remote backend (Replicate predictions API)
    REPLICATE_API_URL: str = "https://api.replicate.com"
    REPLICATE_MODEL_VERSION: str = "e4a30157c2a6f43ea49e29e1fec5618b75b40af3e3dee8e0ba5c13cd7568daf8"  # u2net
    REPLICATE_API_TOKEN: Optional[str] = None  # Seeds the credential store when set
    HTTP_TIMEOUT_SECONDS: float = 60.0

    # Polling: 60 attempts x 5 seconds = 5 minutes
    POLL_INTERVAL_SECONDS: float = 5.0
    POLL_MAX_ATTEMPTS: int = 60

    # ==========================================================================
    # Credential Store
    # ==========================================================================
    CREDENTIAL_BACKEND: str = "file"  # memory, file, redis
    CREDENTIAL_FILE_PATH: str = "./data/credentials.json"
    CREDENTIAL_REDIS_KEY: str = "bgzap:api_token"
    REDIS_URL: str = "redis://localhost:6379/1"

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
