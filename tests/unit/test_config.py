"""Unit tests for configuration management."""

import os
from collections.abc import Generator
from pathlib import Path

import pytest
from pydantic import ValidationError

from bilags.shared.config import Settings, get_settings


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Clean environment variables before and after test."""
    original_env = dict(os.environ)
    env_vars = [k for k in os.environ if k.upper().startswith("APP_")]
    for var in env_vars:
        del os.environ[var]
    yield
    os.environ.clear()
    os.environ.update(original_env)


def test_settings_defaults(clean_env: None) -> None:
    """Test that settings have correct default values."""
    settings = Settings()

    assert settings.environment == "development"
    assert settings.log_level == "INFO"
    assert settings.service_name == "bilags-intake"
    assert settings.home_currency == "DKK"
    assert settings.main_warehouse == "MAIN"
    assert settings.ocr_vendor == "auto"
    assert settings.ocr_lang == "eng"
    assert settings.upload_dir == Path("uploads")
    assert settings.storage_enabled is False
    assert settings.mail_cron_enabled is False


def test_settings_from_env_vars(clean_env: None) -> None:
    """Test that settings can be overridden via environment variables."""
    os.environ["APP_OCR_VENDOR"] = "ocrspace"
    os.environ["APP_OCR_LANG"] = "dan+eng"
    os.environ["APP_MAIL_FETCH_LIMIT"] = "10"
    os.environ["APP_STORAGE_ENABLED"] = "true"

    settings = Settings()

    assert settings.ocr_vendor == "ocrspace"
    assert settings.ocr_lang == "dan+eng"
    assert settings.mail_fetch_limit == 10
    assert settings.storage_enabled is True


def test_settings_case_insensitive(clean_env: None) -> None:
    """Test that environment variables are case insensitive."""
    os.environ["app_log_level"] = "DEBUG"

    settings = Settings()

    assert settings.log_level == "DEBUG"


def test_settings_reject_unknown_vendor(clean_env: None) -> None:
    """Test that an unsupported OCR vendor is rejected."""
    os.environ["APP_OCR_VENDOR"] = "abbyy"

    with pytest.raises(ValidationError):
        Settings()


def test_llm_retries_must_be_positive() -> None:
    """Test that at least one LLM attempt is required."""
    with pytest.raises(ValidationError):
        Settings(llm_max_retries=0)


def test_get_settings_factory(clean_env: None) -> None:
    """Test that factory function returns Settings instance."""
    settings = get_settings()

    assert isinstance(settings, Settings)
    assert settings.service_name == "bilags-intake"
