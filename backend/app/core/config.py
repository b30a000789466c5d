# backend/app/core/config.py
"""
Production-ready configuration using pydantic-settings.

Security considerations:
- No hardcoded secrets in production (SECRET_KEY must be set via env)
- CORS_ORIGINS parsed from comma-separated env var, never defaults to "*"
- Database URLs normalized for async drivers automatically
- WebAuthn relying-party values are plain settings; the per-request
  RP ID is resolved from the host header in security/passkeys.py
"""
from functools import lru_cache
from typing import List

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

INSECURE_SECRET_KEY = "INSECURE_DEV_KEY_CHANGE_IN_PRODUCTION"


def _split_csv(raw: str) -> List[str]:
    if not raw or not raw.strip():
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Strictly typed application settings.

    Priority for loading:
    1. Environment variables (highest priority)
    2. .env file (via pydantic-settings)
    3. Default values (lowest priority, dev-safe only)
    """

    # ─────────────────────────────────────────────────────────────
    # Application metadata
    # ─────────────────────────────────────────────────────────────
    PROJECT_NAME: str = "Passbind"
    PROJECT_VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    # ─────────────────────────────────────────────────────────────
    # Environment mode and logging
    # ─────────────────────────────────────────────────────────────
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ─────────────────────────────────────────────────────────────
    # Security: session JWTs and signed recovery tokens
    # SECRET_KEY MUST be set in production via environment variable
    # ─────────────────────────────────────────────────────────────
    SECRET_KEY: str = INSECURE_SECRET_KEY
    ALGORITHM: str = "HS256"
    SESSION_EXPIRE_DAYS: int = 7
    SESSION_COOKIE_NAME: str = "passbind_session"

    # ─────────────────────────────────────────────────────────────
    # Database Configuration
    # Priority: DATABASE_URL env var → SQLite fallback for local dev
    # ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./passbind.db"

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """
        Normalize database URLs for async SQLAlchemy compatibility.

        Conversions:
        - postgres://     → postgresql+asyncpg://  (hosted Postgres style)
        - postgresql://   → postgresql+asyncpg://  (standard PostgreSQL)
        - sqlite:///      → sqlite+aiosqlite:///   (local development)
        """
        if v is None:
            return "sqlite+aiosqlite:///./passbind.db"

        url = v.strip()

        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)

        if url.startswith("postgresql://") and "+asyncpg" not in url:
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)

        if url.startswith("sqlite:///") and "+aiosqlite" not in url:
            return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)

        return url

    # MUST be False in production to prevent SQL query exposure
    DATABASE_ECHO: bool = False

    # ─────────────────────────────────────────────────────────────
    # CORS Configuration
    # Empty string → empty list (NOT "*" for security)
    # ─────────────────────────────────────────────────────────────
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # ─────────────────────────────────────────────────────────────
    # WebAuthn relying party
    # WEBAUTHN_RP_ID overrides host-based resolution when set.
    # ─────────────────────────────────────────────────────────────
    WEBAUTHN_RP_ID: str = ""
    WEBAUTHN_RP_NAME: str = "Passbind"
    PRIMARY_DOMAIN: str = "passbind.app"
    APP_URL: str = "https://app.passbind.app"
    ALLOWED_ORIGINS: str = "https://passbind.app,https://app.passbind.app,https://www.passbind.app"

    # ─────────────────────────────────────────────────────────────
    # Ceremony and recovery lifetimes
    # ─────────────────────────────────────────────────────────────
    CHALLENGE_TTL_MINUTES: int = 5
    RECOVERY_TOKEN_TTL_MINUTES: int = 10
    RESCUE_TOKEN_TTL_MINUTES: int = 10
    RESCUE_RATE_LIMIT_PER_HOUR: int = 3
    RESCUE_RATE_LIMIT_PER_IP_PER_HOUR: int = 10
    RECOVERY_CODE_EXPIRE_DAYS: int = 30

    # ─────────────────────────────────────────────────────────────
    # Account addressing
    # ADDRESS_NAMESPACE prefixes the credential id before hashing;
    # changing it re-keys every derived address.
    # ─────────────────────────────────────────────────────────────
    ADDRESS_NAMESPACE: str = "passkey-wallet"
    CHAIN_ID: int = 8453

    # Comma-separated addresses allowed to issue recovery codes
    ADMIN_ADDRESSES: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def reject_insecure_production_secret(self) -> "Settings":
        if self.is_production and self.SECRET_KEY == INSECURE_SECRET_KEY:
            raise ValueError("SECRET_KEY must be changed for production")
        return self

    @property
    def BACKEND_CORS_ORIGINS(self) -> List[str]:
        """
        Parse CORS_ORIGINS string into a list of allowed origins.

        Empty string returns empty list, NOT wildcard "*".
        """
        return _split_csv(self.CORS_ORIGINS)

    @property
    def webauthn_origins(self) -> List[str]:
        """Origins accepted in clientDataJSON, deduplicated, APP_URL first."""
        origins = [self.APP_URL] if self.APP_URL else []
        origins.extend(_split_csv(self.ALLOWED_ORIGINS))
        if not self.is_production:
            origins.extend(["http://localhost:3000", "http://127.0.0.1:3000"])
        return list(dict.fromkeys(origins))

    @property
    def admin_addresses(self) -> List[str]:
        return [address.lower() for address in _split_csv(self.ADMIN_ADDRESSES)]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database (local development)."""
        return "sqlite" in self.DATABASE_URL.lower()


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance.

    Using lru_cache ensures settings are only loaded once,
    providing consistent configuration across the application
    and avoiding repeated env var parsing.
    """
    return Settings()


# Existing code imports `settings` directly from this module
settings = get_settings()
