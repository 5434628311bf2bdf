"""
Tests for app/core/config.py - Configuration and settings validation.
"""
import pytest


SECURE_KEY = "a-very-secure-secret-key-that-is-long-enough-32chars"


def _production_env(monkeypatch, **overrides):
    env = {
        "ENVIRONMENT": "production",
        "DEBUG": "false",
        "SECRET_KEY": SECURE_KEY,
        "DATABASE_URL": "postgresql+asyncpg://wfm:s3cure-db-pass@db:5432/wfm",
        "ALLOWED_ORIGINS": "https://wfm.example.com",
        "REDIS_URL": "redis://cache:6379/0",
    }
    env.update(overrides)
    for key, value in env.items():
        if value is None:
            monkeypatch.delenv(key, raising=False)
        else:
            monkeypatch.setenv(key, value)


class TestSettingsValidation:
    """Test configuration validation logic."""

    def test_development_mode_allows_default_secrets(self, monkeypatch):
        """Development mode should allow default/insecure secrets."""
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.delenv("SECRET_KEY", raising=False)

        from app.core.config import Settings
        settings = Settings(_env_file=None)

        assert settings.ENVIRONMENT == "development"

    def test_production_mode_accepts_secure_configuration(self, monkeypatch):
        _production_env(monkeypatch)

        from app.core.config import Settings
        settings = Settings(_env_file=None)

        assert settings.ENVIRONMENT == "production"
        assert settings.COOKIE_SECURE is True

    def test_production_mode_rejects_default_secret_key(self, monkeypatch):
        """Production mode must reject default SECRET_KEY."""
        _production_env(monkeypatch, SECRET_KEY=None)

        from app.core.config import Settings

        with pytest.raises(ValueError) as exc_info:
            Settings(_env_file=None)

        assert "SECRET_KEY is insecure" in str(exc_info.value)

    def test_production_mode_rejects_insecure_db_password(self, monkeypatch):
        """Production mode must reject insecure database passwords."""
        _production_env(monkeypatch, DATABASE_URL="postgresql+asyncpg://wfm:postgres@db:5432/wfm")

        from app.core.config import Settings

        with pytest.raises(ValueError) as exc_info:
            Settings(_env_file=None)

        assert "insecure password" in str(exc_info.value)

    def test_production_mode_requires_cache_store(self, monkeypatch):
        _production_env(monkeypatch, REDIS_URL=None)
        monkeypatch.delenv("REDIS_HOST", raising=False)

        from app.core.config import Settings

        with pytest.raises(ValueError) as exc_info:
            Settings(_env_file=None)

        assert "REDIS_URL or REDIS_HOST" in str(exc_info.value)

    def test_production_mode_lists_every_error(self, monkeypatch):
        _production_env(monkeypatch, SECRET_KEY=None, DEBUG="true")

        from app.core.config import Settings

        with pytest.raises(ValueError) as exc_info:
            Settings(_env_file=None)

        message = str(exc_info.value)
        assert "SECRET_KEY" in message
        assert "DEBUG must be False" in message


class TestDatabaseUrl:
    """Test DATABASE_URL assembly."""

    def test_builds_url_from_postgres_parts(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("POSTGRES_USER", "wfm")
        monkeypatch.setenv("POSTGRES_PASSWORD", "pw")
        monkeypatch.setenv("POSTGRES_HOST", "pg")
        monkeypatch.setenv("POSTGRES_DB", "authz")

        from app.core.config import Settings
        settings = Settings(_env_file=None)

        assert settings.DATABASE_URL == "postgresql+asyncpg://wfm:pw@pg:5432/authz"

    def test_explicit_database_url_wins(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./test.db")

        from app.core.config import Settings
        settings = Settings(_env_file=None)

        assert settings.DATABASE_URL == "sqlite+aiosqlite:///./test.db"


class TestRedisConnectionUrl:
    """Test cache store URL resolution."""

    def test_no_cache_store_configured(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.delenv("REDIS_HOST", raising=False)

        from app.core.config import Settings

        assert Settings(_env_file=None).redis_connection_url is None

    def test_redis_url_takes_precedence(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "rediss://cache.example.com:6380/2")
        monkeypatch.setenv("REDIS_HOST", "ignored")

        from app.core.config import Settings

        assert Settings(_env_file=None).redis_connection_url == "rediss://cache.example.com:6380/2"

    def test_url_assembled_from_host_and_escaped_password(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.setenv("REDIS_HOST", "cache")
        monkeypatch.setenv("REDIS_PORT", "6380")
        monkeypatch.setenv("REDIS_PASSWORD", "p@ss/word")
        monkeypatch.setenv("REDIS_DB", "3")

        from app.core.config import Settings

        assert Settings(_env_file=None).redis_connection_url == "redis://:p%40ss%2Fword@cache:6380/3"


class TestAuditAndCacheSettings:
    """Test defaults for the authorization core."""

    def test_defaults(self, monkeypatch):
        for key in ("PERMISSION_CACHE_TTL_SECONDS", "AUDIT_WORKER_COUNT", "AUDIT_MAX_RETRIES"):
            monkeypatch.delenv(key, raising=False)

        from app.core.config import Settings
        settings = Settings(_env_file=None)

        assert settings.PERMISSION_CACHE_TTL_SECONDS == 30
        assert settings.AUDIT_WORKER_COUNT == 4
        assert settings.AUDIT_MAX_RETRIES == 3

    def test_rejects_non_positive_ttl(self, monkeypatch):
        monkeypatch.setenv("PERMISSION_CACHE_TTL_SECONDS", "0")

        from app.core.config import Settings

        with pytest.raises(ValueError):
            Settings(_env_file=None)
