"""
Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

DEV_JWT_SECRET = "dev-jwt-secret-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # ==========================================================================
    # Environment
    # ==========================================================================

    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # ==========================================================================
    # API Server
    # ==========================================================================

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000,http://localhost:5173"
    app_url: str = "http://localhost:3000"

    # ==========================================================================
    # Tokens
    # ==========================================================================

    jwt_secret_key: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 15
    jwt_refresh_token_expire_days: int = 7
    jwt_clock_skew_seconds: int = 30

    email_verification_expire_hours: int = 24
    password_reset_expire_minutes: int = 60

    # ==========================================================================
    # Passwords & lockout
    # ==========================================================================

    password_min_length: int = 8

    # scrypt cost: n must be a power of two; memory is roughly 128 * n * r bytes
    password_scrypt_n: int = 2**14
    password_scrypt_r: int = 8
    password_scrypt_p: int = 1

    lockout_threshold: int = 5
    lockout_minutes: int = 15
    unverified_login_grace_hours: int = 72

    # ==========================================================================
    # Roles
    # ==========================================================================

    default_role_id: str = "user"
    max_role_depth: int = 32
    roles_config_dir: str = str(Path(__file__).parent.parent / "config" / "roles")

    # ==========================================================================
    # Dependencies
    # ==========================================================================

    dependency_timeout_seconds: float = 5.0
    conditional_update_attempts: int = 5

    # ==========================================================================
    # AWS (email delivery)
    # ==========================================================================

    aws_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    aws_ses_from_email: str = ""

    # ==========================================================================
    # Optional Services
    # ==========================================================================

    sentry_dsn: str = ""

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def use_aws(self) -> bool:
        """Whether AWS services should be used."""
        return bool(self.aws_access_key_id and self.aws_secret_access_key)

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.jwt_access_token_expire_minutes * 60

    def validate_for_production(self) -> None:
        """Refuse to run production with development secrets."""
        if not self.is_production:
            return
        if self.jwt_secret_key == DEV_JWT_SECRET or len(self.jwt_secret_key) < 32:
            raise RuntimeError("JWT_SECRET_KEY must be set to a strong secret in production")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
