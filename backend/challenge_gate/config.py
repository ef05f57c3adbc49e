"""Application configuration using Pydantic settings."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "Challenge Gate"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database
    DATABASE_URL: str
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    LOGIN_TOKEN_EXPIRE_MINUTES: int = 15  # Window for finishing the second factor
    MASTER_ENCRYPTION_KEY: str
    ENCRYPTION_PREVIOUS_KEYS: list[str] = []  # Decrypt-only keys from before a rotation

    # Login session storage
    SESSION_BACKEND: str = "memory"  # memory, redis
    REDIS_URL: str = "redis://localhost:6379/0"
    SESSION_TTL_SECONDS: int = 3600
    LOGIN_COOKIE_NAME: str = "login_session"

    # URLs
    BASE_URL: str = "http://localhost:8000"
    DEFAULT_PAGE_PATH: str = "/"
    LOGOUT_REDIRECT_PATH: str = "/login"
    # When enabled, decoded redirect targets pointing at another host fall
    # back to the default page instead of leaving the application.
    RESTRICT_REDIRECTS_TO_APP: bool = False

    # Two-factor providers, in the order they are offered to the user
    ENABLED_PROVIDERS: list[str] = ["totp", "backup_codes"]
    TOTP_ISSUER: str = "Challenge Gate"
    TOTP_VALID_WINDOW: int = 1  # Accept one 30s step of clock drift
    BACKUP_CODE_COUNT: int = 10

    # Challenge submissions per user
    CHALLENGE_RATE_LIMIT_MAX: int = 5
    CHALLENGE_RATE_LIMIT_WINDOW_SECONDS: int = 100

    # Monitoring
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # 'text' or 'json' (json for production)

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Trusted hosts for production (prevents host header attacks)
    ALLOWED_HOSTS: list[str] = ["*"]  # Dev only - validator enforces specific hosts in production

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @field_validator("SECRET_KEY")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        """Validate SECRET_KEY is not using insecure defaults in production."""
        insecure_defaults = [
            "dev-secret-key-change-in-production",
            "your-secret-key-here",
            "change-me",
            "secret",
        ]

        # Read ENVIRONMENT directly, Settings is not fully initialized yet
        import os

        environment = os.getenv("ENVIRONMENT", "development")

        if environment == "production" and (v in insecure_defaults or len(v) < 32):
            raise ValueError(
                "Insecure SECRET_KEY detected in production! "
                "Generate a secure key with: openssl rand -hex 32"
            )

        return v

    @field_validator("ALLOWED_HOSTS")
    @classmethod
    def validate_allowed_hosts(cls, v: list[str]) -> list[str]:
        """Validate ALLOWED_HOSTS is configured for production."""
        import os

        environment = os.getenv("ENVIRONMENT", "development")

        if environment == "production" and "*" in v:
            raise ValueError(
                "ALLOWED_HOSTS=['*'] is insecure in production! "
                "Set specific domains like ['login.example.com']"
            )

        return v

    @field_validator("SESSION_BACKEND")
    @classmethod
    def validate_session_backend(cls, v: str) -> str:
        """Only the in-process and Redis session stores exist."""
        backend = v.strip().lower()
        if backend not in ("memory", "redis"):
            raise ValueError(f"Unknown SESSION_BACKEND {v!r} (expected 'memory' or 'redis')")
        return backend


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
