"""Unit tests for Settings validation."""
import pytest
from pydantic import ValidationError

from amora.config import Settings


class TestSettings:
    """Defaults and validators."""

    def test_defaults(self, fernet_key):
        settings = Settings(_env_file=None, FERNET_KEY=fernet_key)
        assert settings.THREAD_ID_SEPARATOR == "_"
        assert settings.STRICT_MATCHING is False
        assert settings.REDIS_URL == ""

    def test_empty_separator_rejected(self, fernet_key):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, FERNET_KEY=fernet_key, THREAD_ID_SEPARATOR="")

    def test_non_positive_ttl_rejected(self, fernet_key):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, FERNET_KEY=fernet_key, SESSION_TTL_SECONDS=0)

    def test_allowed_origins_list(self, fernet_key):
        settings = Settings(
            _env_file=None,
            FERNET_KEY=fernet_key,
            ALLOWED_ORIGINS="https://a.example, https://b.example",
        )
        assert settings.allowed_origins_list == ["https://a.example", "https://b.example"]
