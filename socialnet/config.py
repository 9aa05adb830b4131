"""
Application configuration using environment variables.
"""
import os
import secrets
from functools import lru_cache
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "SocialNet API"
    debug: bool = False
    environment: str = "development"

    # Security
    secret_key: str = os.getenv("SECRET_KEY", "")
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7
    refresh_token_expire_days: int = 30
    admin_secret: str = ""
    external_identity_secret: str = ""

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./socialnet.db")

    # CORS
    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Rate limiting
    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"
    refresh_rate_limit: str = "20/minute"

    # Push gateway
    push_gateway_url: str = ""
    push_gateway_key: str = ""
    push_timeout_seconds: int = 10
    device_token_failure_threshold: int = 5
    device_token_stale_days: int = 90

    # Scheduler
    scheduler_enabled: bool = True
    scheduled_sweep_interval_seconds: int = 60
    cleanup_interval_seconds: int = 24 * 60 * 60
    session_sweep_interval_seconds: int = 5 * 60

    # Tracking
    session_idle_minutes: int = 30

    # Feed
    feed_min_limit: int = 10
    feed_max_limit: int = 30
    feed_recycle_after_page: int = 2
    feed_jitter: float = 1.5
    feed_infinite_scroll: bool = True

    # Moderation
    moderation_enabled: bool = True

    # Voice calls
    rtc_app_id: str = ""
    rtc_app_certificate: str = ""
    rtc_token_ttl_seconds: int = 3600

    # Geolocation
    geo_lookup_enabled: bool = True
    geo_lookup_url: str = "http://ip-api.com/json"
    geo_timeout_seconds: int = 5

    # Media storage
    media_root: str = "./media"
    media_base_url: str = "/media"
    max_upload_bytes: int = 50 * 1024 * 1024

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    if not settings.secret_key:
        if settings.environment == "production":
            raise ValueError(
                "SECRET_KEY must be set in production! "
                "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )
        settings.secret_key = secrets.token_urlsafe(32)
    return settings
