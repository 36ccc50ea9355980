"""
ClinicGuard Configuration Module

Centralized configuration management using Pydantic Settings.
Supports environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="CLINICGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = Field(default_factory=list)

    # Storage backend for role, relationship and resource stores
    store_backend: Literal["memory", "postgres"] = "memory"


class AuthSettings(BaseSettings):
    """Authentication settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        env_file=".env",
        extra="ignore",
    )

    # Provider: local (HS256 shared secret) or oidc (JWKS, RS256)
    provider: Literal["local", "oidc"] = "local"

    # Local JWT settings
    jwt_secret_key: SecretStr = Field(default=SecretStr("jwt-secret-change-me"))
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 30

    # Seconds of tolerance when re-checking session expiry
    session_leeway_seconds: int = 0

    # OIDC settings (when provider=oidc)
    oidc_issuer: str | None = None
    oidc_client_id: str | None = None
    oidc_jwks_url: str | None = None

    @property
    def jwks_url(self) -> str | None:
        if self.oidc_jwks_url:
            return self.oidc_jwks_url
        if self.oidc_issuer:
            return f"{self.oidc_issuer.rstrip('/')}/.well-known/jwks.json"
        return None


class AuditSettings(BaseSettings):
    """Audit pipeline settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUDIT_",
        env_file=".env",
        extra="ignore",
    )

    queue_size: int = 10_000
    workers: int = 1
    sink_timeout_seconds: float = 2.0
    drain_timeout_seconds: float = 5.0

    # memory, log (structlog) or postgres
    sink: Literal["memory", "log", "postgres"] = "log"

    # Additional metadata keys allowed through sanitization
    extra_allowed_keys: list[str] = Field(default_factory=list)


class PostgresSettings(BaseSettings):
    """PostgreSQL settings."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        env_file=".env",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 5432
    user: str = "clinicguard"
    password: SecretStr = Field(default=SecretStr("clinicguard_dev_password"))
    database: str = "clinicguard"
    min_pool_size: int = 2
    max_pool_size: int = 10

    @property
    def connection_url(self) -> str:
        """Get the PostgreSQL connection URL."""
        pwd = self.password.get_secret_value()
        return f"postgresql://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class Settings:
    """
    Aggregated settings container.

    Usage:
        from clinicguard.config import get_settings
        settings = get_settings()
        print(settings.auth.provider)
        print(settings.audit.queue_size)

    Groups can be passed explicitly, which is how tests build settings
    without touching the environment.
    """

    def __init__(
        self,
        app: AppSettings | None = None,
        auth: AuthSettings | None = None,
        audit: AuditSettings | None = None,
        postgres: PostgresSettings | None = None,
    ):
        self.app = app or AppSettings()
        self.auth = auth or AuthSettings()
        self.audit = audit or AuditSettings()
        self.postgres = postgres or PostgresSettings()

    @property
    def is_development(self) -> bool:
        return self.app.env == "development"

    @property
    def is_production(self) -> bool:
        return self.app.env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: The application settings
    """
    return Settings()
