from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Paylive backend (carts, stores, shipments, Stripe proxy)
    PAYLIVE_API_URL: str = "http://localhost:5000"
    HTTP_TIMEOUT_SECONDS: float = 15.0
    STOCK_LOOKUP_CONCURRENCY: int = 4

    # Geocoding used to centre parcel point searches
    NOMINATIM_URL: str = "https://nominatim.openstreetmap.org"
    NOMINATIM_USER_AGENT: str = "paylive-checkout"

    # Boxtal
    BOXTAL_API_URL: str = "https://api.boxtal.com"
    BOXTAL_AUTH_URL: str = "https://api.boxtal.com/iam/account-app/token"
    BOXTAL_ACCESS_KEY: str = ""
    BOXTAL_SECRET_KEY: str = ""

    # Business registries
    INSEE_API_URL: str = "https://api.insee.fr"
    INSEE_API_KEY: Optional[str] = None
    BCE_API_URL: str = "https://cbeapi.be"
    BCE_API_KEY: Optional[str] = None

    # Prospecting email (SMTP)
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 465
    SMTP_SECURE: bool = True
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    DEFAULT_FROM_NAME: str = "Paylive"

    # Supabase (form responses)
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    SUPABASE_ANON_KEY: str = ""

    # Session tokens issued by the auth provider
    AUTH_JWT_SECRET: str = "test-jwt-secret"
    AUTH_JWT_ALGORITHM: str = "HS256"

    # Gateway
    CORS_ORIGIN_REGEX: str = (
        r"^(https://paylive\.cc|https://[A-Za-z0-9.-]+\.vercel\.app"
        r"|https?://(localhost|127\.0\.0\.1)(:\d+)?)$"
    )
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    DEFAULT_RATE_LIMIT: str = "100/minute"
    EMAIL_RATE_LIMIT: str = "10/minute"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("PAYLIVE_API_URL", "INSEE_API_URL", "BCE_API_URL", "BOXTAL_API_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
