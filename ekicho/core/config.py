"""Application configuration."""

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "Ekicho"
    DEBUG: bool = False

    # Firestore Settings
    FIREBASE_PROJECT_ID: str | None = None
    FIRESTORE_DATABASE: str = "(default)"
    GOOGLE_APPLICATION_CREDENTIALS: str | None = None
    FIRESTORE_WATCH_CHECK_SECONDS: float = 5.0

    # Identity provider Settings (Firebase Authentication ID tokens)
    IDENTITY_JWKS_URL: str = (
        "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
    )
    IDENTITY_ISSUER_PREFIX: str = "https://securetoken.google.com/"
    IDENTITY_ALGORITHMS: str = "RS256"
    IDENTITY_JWKS_CACHE_TTL_SECONDS: int = 3600

    @field_validator("IDENTITY_ALGORITHMS", mode="after")
    @classmethod
    def parse_identity_algorithms(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated token algorithms or pass through list."""
        return v if isinstance(v, list) else [algo.strip() for algo in v.split(",")]

    # Local store Settings
    REDIS_URL: str = Field(default="redis://localhost:6379/0", validation_alias="SECRET_REDIS_URL")
    LOCAL_STORE_PREFIX: str = "ekicho:"

    # New user defaults
    DEFAULT_CITY_ID: str = "tokyo"
    DEFAULT_AUTH_PROVIDER: str = "apple"

    # Migration Settings
    MIGRATION_MAX_ATTEMPTS: int = 3
    MIGRATION_RETRY_BACKOFF_SECONDS: float = 0.5

    @field_validator("MIGRATION_MAX_ATTEMPTS", mode="after")
    @classmethod
    def validate_migration_max_attempts(cls, v: int) -> int:
        """Ensure every migration write is attempted at least once."""
        if v < 1:
            msg = "MIGRATION_MAX_ATTEMPTS must be at least 1"
            raise ValueError(msg)
        return v

    # PII Hashing Settings
    PII_HASH_SECRET: str = Field(validation_alias="SECRET_PII_HASH")

    @field_validator("PII_HASH_SECRET", mode="after")
    @classmethod
    def validate_pii_hash_secret(cls, v: str) -> str:
        """Ensure SECRET_PII_HASH meets minimum security requirements."""
        min_length = 32  # Minimum characters for cryptographic security
        if len(v) < min_length:
            msg = f"SECRET_PII_HASH must be at least {min_length} characters long for security"
            raise ValueError(msg)
        if v == "REPLACE_ME_WITH_RANDOM_SECRET":
            msg = (
                "SECRET_PII_HASH is set to placeholder value. "
                'Generate a secure secret using: python3 -c "import secrets; print(secrets.token_urlsafe(32))"'
            )
            raise ValueError(msg)
        return v

    # OpenTelemetry Settings
    OTEL_ENABLED: bool = False
    OTEL_SERVICE_NAME: str = "ekicho-sync"
    OTEL_ENVIRONMENT: str = "production"
    OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: str | None = None
    OTEL_EXPORTER_OTLP_HEADERS: str | None = Field(default=None, validation_alias="SECRET_OTEL_HEADERS")

    # Logging Settings
    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        normalized = v.upper()
        valid_levels = logging.getLevelNamesMapping()
        if normalized not in valid_levels:
            msg = f"Invalid LOG_LEVEL '{v}'. Must be one of: {', '.join(sorted(valid_levels.keys()))}"
            raise ValueError(msg)
        return normalized


settings = Settings()


def require_config(*field_names: str) -> None:
    """
    Validate that required configuration fields are set.

    Args:
        *field_names: Names of required configuration fields

    Raises:
        ValueError: If any required field is missing or None

    Example:
        from ekicho.core.config import require_config, settings
        require_config("FIREBASE_PROJECT_ID")
    """
    missing = []
    for field in field_names:
        value = getattr(settings, field, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)

    if missing:
        msg = f"Required configuration missing: {', '.join(missing)}"
        raise ValueError(msg)
