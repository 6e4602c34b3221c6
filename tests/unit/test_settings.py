"""
Unit tests for environment driven configuration.
"""

import os

import pytest

from webhookq.errors import ConfigurationError
from webhookq.settings import (
    SenderKind,
    TransportKind,
    build_settings,
    configure,
    get_settings,
    reload_settings,
)


def test_defaults():
    settings = get_settings()

    assert settings.transport is TransportKind.POSTGRES
    assert settings.sender is SenderKind.HTTP
    assert settings.queue_name == "notifications.webhook"
    assert settings.concurrency == 1
    assert settings.retry_delay == 1.0
    assert settings.retry_max_delay is None


def test_environment_variables(monkeypatch):
    monkeypatch.setenv("WEBHOOKQ_TRANSPORT", "Redis")
    monkeypatch.setenv("WEBHOOKQ_SENDER", "CONSOLE")
    monkeypatch.setenv("WEBHOOKQ_CONCURRENCY", "4")
    monkeypatch.setenv("WEBHOOKQ_RETRY_DELAY_MS", "250")
    monkeypatch.setenv("WEBHOOKQ_RETRY_MAX_DELAY_MS", "2000")

    settings = reload_settings()

    assert settings.transport is TransportKind.REDIS
    assert settings.sender is SenderKind.CONSOLE
    assert settings.concurrency == 4
    assert settings.retry_delay == 0.25
    assert settings.retry_max_delay == 2.0


def test_zero_max_delay_disables_cap():
    assert build_settings(retry_max_delay_ms=0).retry_max_delay is None


def test_env_file(tmp_path):
    env_file = tmp_path / "webhookq.env"
    env_file.write_text("WEBHOOKQ_QUEUE_NAME=billing.webhooks\nWEBHOOKQ_LOG_FORMAT=Structured\n")

    settings = reload_settings(config_file=env_file)

    assert settings.queue_name == "billing.webhooks"
    assert settings.log_format == "structured"


def test_settings_are_cached():
    assert get_settings() is get_settings()
    assert reload_settings() is not None


@pytest.mark.parametrize(
    "overrides",
    [
        {"transport": "rabbitmq"},
        {"concurrency": 0},
        {"log_level": "LOUD"},
        {"log_format": "xml"},
        {"database_url": "mysql://localhost/db"},
        {"redis_url": "http://localhost:6379"},
    ],
)
def test_invalid_settings_raise_configuration_error(overrides):
    with pytest.raises(ConfigurationError):
        build_settings(**overrides)


def test_configure_exports_environment():
    settings = configure(transport=TransportKind.MEMORY, concurrency=2)

    assert os.environ["WEBHOOKQ_TRANSPORT"] == "memory"
    assert os.environ["WEBHOOKQ_CONCURRENCY"] == "2"
    assert settings.transport is TransportKind.MEMORY
    assert get_settings() is settings

    os.environ.pop("WEBHOOKQ_TRANSPORT")
    os.environ.pop("WEBHOOKQ_CONCURRENCY")


def test_configure_rejects_unknown_and_invalid_values():
    with pytest.raises(ConfigurationError, match="Unknown"):
        configure(not_a_setting=True)

    with pytest.raises(ConfigurationError):
        configure(concurrency=1000)
    assert "WEBHOOKQ_CONCURRENCY" not in os.environ
