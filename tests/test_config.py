"""Tests for environment-driven settings."""

import pytest

from licensing_engine.config import DEFAULT_DATABASE_URL, Settings


@pytest.fixture(autouse=True)
def no_dotenv(monkeypatch):
    monkeypatch.setattr("licensing_engine.config.load_dotenv", lambda: False)
    for name in (
        "DATABASE_URL",
        "PORT",
        "DEBUG",
        "LOG_LEVEL",
        "PAYMENT_DUE_DAYS",
        "APPLICANT_WRITE_RETRIES",
        "GROUP_COUNTS_CACHE_TTL",
        "WEBHOOK_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)


class TestSettingsFromEnv:
    def test_defaults(self):
        settings = Settings.from_env()

        assert settings.database_url == DEFAULT_DATABASE_URL
        assert settings.payment_due_days == 30
        assert settings.license_duration == "3 Years"
        assert settings.certificate_license_duration == "1 Year"
        assert settings.applicant_write_retries == 3
        assert settings.webhook_token is None
        assert settings.debug is False

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("PAYMENT_DUE_DAYS", "14")
        monkeypatch.setenv("DEBUG", "yes")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("WEBHOOK_TOKEN", "s3cret")

        settings = Settings.from_env()

        assert settings.payment_due_days == 14
        assert settings.debug is True
        assert settings.log_level == "DEBUG"
        assert settings.webhook_token == "s3cret"

    def test_empty_token_disables_check(self, monkeypatch):
        monkeypatch.setenv("WEBHOOK_TOKEN", "")
        assert Settings.from_env().webhook_token is None

    def test_malformed_integer_names_the_variable(self, monkeypatch):
        monkeypatch.setenv("PAYMENT_DUE_DAYS", "thirty")

        with pytest.raises(ValueError, match="PAYMENT_DUE_DAYS"):
            Settings.from_env()

    def test_retries_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("APPLICANT_WRITE_RETRIES", "0")

        with pytest.raises(ValueError, match="APPLICANT_WRITE_RETRIES"):
            Settings.from_env()
