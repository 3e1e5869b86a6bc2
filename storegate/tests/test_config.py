"""
Tests for settings validation and policy flags.
"""

import pytest
from pydantic import ValidationError

from storegate.config import Settings, validate_configuration

from .conftest import build_settings


def test_policy_flags_ignored_in_production(tmp_path):
    settings = build_settings(
        tmp_path, ENVIRONMENT="production", ALLOW_UNSIGNED_WEBHOOKS=True, ALLOW_DEV_ORIGINS=True
    )
    assert settings.is_production
    assert not settings.unsigned_webhooks_allowed
    assert not settings.dev_origins_allowed

    report = validate_configuration(settings)
    assert any("ALLOW_UNSIGNED_WEBHOOKS" in w for w in report["warnings"])
    assert any("ALLOW_DEV_ORIGINS" in w for w in report["warnings"])


def test_policy_flags_honoured_outside_production(tmp_path):
    settings = build_settings(tmp_path, ALLOW_UNSIGNED_WEBHOOKS=True, ALLOW_DEV_ORIGINS=True)
    assert settings.unsigned_webhooks_allowed
    assert settings.dev_origins_allowed


def test_environment_defaults_to_production(tmp_path, monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    settings = Settings(
        _env_file=None,
        PLATFORM_CLIENT_ID="id",
        PLATFORM_CLIENT_SECRET="secret",
        APP_URL="https://app.example.com",
        SESSION_SECRETS="s" * 32,
    )
    assert settings.is_production


def test_session_secrets_are_ordered(tmp_path):
    settings = build_settings(tmp_path, SESSION_SECRETS=f"{'a' * 32}, {'b' * 40}")
    assert settings.session_secrets_list == ["a" * 32, "b" * 40]


def test_short_session_secret_rejected(tmp_path):
    with pytest.raises(ValidationError):
        build_settings(tmp_path, SESSION_SECRETS=f"{'a' * 32},short")


def test_unknown_platform_rejected(tmp_path):
    with pytest.raises(ValidationError):
        build_settings(tmp_path, PLATFORM="woocommerce")


def test_webhook_secret_defaults_to_client_secret(tmp_path):
    settings = build_settings(tmp_path, WEBHOOK_SECRET=None)
    assert settings.webhook_secret == settings.PLATFORM_CLIENT_SECRET


def test_app_url_must_be_absolute(tmp_path):
    with pytest.raises(ValidationError):
        build_settings(tmp_path, APP_URL="app.example.com")


def test_http_app_url_is_an_error_in_production(tmp_path):
    settings = build_settings(tmp_path, ENVIRONMENT="production", APP_URL="http://app.example.com")
    report = validate_configuration(settings)
    assert report["valid"] is False


def test_install_callback_url(tmp_path):
    settings = build_settings(tmp_path, APP_URL="https://app.example.com/")
    assert settings.install_callback_url == "https://app.example.com/auth/install"
