from typing import Optional, List
from urllib.parse import quote, urlsplit

from pydantic import Field, AliasChoices, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Known insecure default values that must be changed in production
_INSECURE_SECRET_KEYS = {
    "your-secret-key-change-this-in-production-min-32-chars",
    "changeme",
    "secret",
    "development-secret",
}
_INSECURE_DB_PASSWORDS = {
    "postgres",
    "password",
    "changeme",
}

_INSECURE_ALLOWED_ORIGINS_DEFAULTS = {
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
}


def _extract_password_from_database_url(database_url: str | None) -> str | None:
    if not database_url:
        return None
    try:
        return urlsplit(database_url).password
    except ValueError:
        return None


class Settings(BaseSettings):
    # Allow comma-separated env vars for list fields like ALLOWED_ORIGINS
    model_config = SettingsConfigDict(env_file=".env", env_parse_delimiter=",", extra="ignore")
    PROJECT_NAME: str = "WFM Authorization Core"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # CORS
    ALLOWED_ORIGINS: List[str] | str = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"],
        validation_alias=AliasChoices("ALLOWED_ORIGINS", "BACKEND_CORS_ORIGINS"),
    )

    # Database settings
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_SERVER: str = Field(
        default="db",
        validation_alias=AliasChoices("POSTGRES_SERVER", "POSTGRES_HOST", "POSTGRES_HOSTNAME"),
    )
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "wfm"

    DB_POOL_SIZE: int = Field(default=20, description="Number of persistent DB connections")
    DB_MAX_OVERFLOW: int = Field(default=40, description="Max additional connections under load")

    # Full DB URL (preferred in CI/containers). If not provided, we build it from POSTGRES_*.
    DATABASE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "SQLALCHEMY_DATABASE_URI"),
    )
    SQLALCHEMY_ECHO: bool = False

    # Session tokens
    SECRET_KEY: str = Field(
        default="your-secret-key-change-this-in-production-min-32-chars",
        validation_alias=AliasChoices("JWT_SECRET", "JWT_SECRET_KEY", "SECRET_KEY"),
    )
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Platform administrators allowed to hold master_admin tokens
    PLATFORM_ADMIN_EMAILS: List[str] | str = Field(default_factory=list)

    # Cache store. Either REDIS_URL (rediss:// for TLS) or the host/port/credential triple.
    REDIS_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("REDIS_URL", "CACHE_REDIS_URL"),
    )
    REDIS_HOST: Optional[str] = None
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DB: int = 0
    REDIS_TLS_CA_CERT: Optional[str] = None
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 2.0

    # Permission cache
    PERMISSION_CACHE_TTL_SECONDS: int = Field(default=30, ge=1)
    CACHE_PROBE_INTERVAL_SECONDS: float = Field(default=5.0, ge=0)

    # Audit recorder
    AUDIT_QUEUE_MAX_SIZE: int = Field(default=10000, ge=1)
    AUDIT_WORKER_COUNT: int = Field(default=4, ge=1)
    AUDIT_ENQUEUE_TIMEOUT_SECONDS: float = Field(default=0.0, ge=0)
    AUDIT_MAX_RETRIES: int = Field(default=3, ge=0)
    AUDIT_RETRY_BACKOFF_SECONDS: float = Field(default=0.5, ge=0)

    # Shutdown
    SHUTDOWN_DRAIN_TIMEOUT_SECONDS: float = Field(default=30.0, ge=0)

    @computed_field
    @property
    def COOKIE_SECURE(self) -> bool:
        """Only set secure cookies in production."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def redis_connection_url(self) -> Optional[str]:
        """REDIS_URL if set, otherwise a URL assembled from the host/port/credential triple."""
        if self.REDIS_URL:
            return self.REDIS_URL
        if not self.REDIS_HOST:
            return None
        auth = f":{quote(self.REDIS_PASSWORD, safe='')}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    def model_post_init(self, __context):
        """
        Validate configuration on startup. In production, fail hard if insecure defaults are detected.
        """
        if not self.DATABASE_URL:
            self.DATABASE_URL = (
                f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
                f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
            )

        is_prod = self.ENVIRONMENT.lower() == "production"
        errors = []

        if is_prod and (self.SECRET_KEY in _INSECURE_SECRET_KEYS or len(self.SECRET_KEY) < 32):
            errors.append(
                "SECRET_KEY is insecure. Generate a new key with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )

        db_url_password = _extract_password_from_database_url(self.DATABASE_URL)
        if is_prod and db_url_password in _INSECURE_DB_PASSWORDS:
            errors.append("DATABASE_URL contains an insecure password.")

        if is_prod and (not self.ALLOWED_ORIGINS or set(self.ALLOWED_ORIGINS).issubset(_INSECURE_ALLOWED_ORIGINS_DEFAULTS)):
            errors.append(
                "ALLOWED_ORIGINS must be set to your domain(s) in production (not localhost defaults)."
            )

        if is_prod and not self.redis_connection_url:
            errors.append("REDIS_URL or REDIS_HOST is required in production (permission cache and quotas).")

        if is_prod and self.DEBUG:
            errors.append("DEBUG must be False in production.")

        if errors:
            error_msg = "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)

    @field_validator("ALLOWED_ORIGINS", "PLATFORM_ADMIN_EMAILS", mode="before")
    @classmethod
    def _split_csv(cls, value):
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return value


settings = Settings()
