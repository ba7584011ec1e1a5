"""Tests for configuration parsing and normalization."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from research_relay.config import RelayConfig, _is_env_placeholder, get_config


class TestFromEnv:
    """RelayConfig.from_env reads credentials and tuning knobs."""

    def test_defaults(self, monkeypatch):
        for name in ("RELAY_RETRY_MAX_RETRIES", "RELAY_BREAKER_THRESHOLD", "RELAY_RESEARCH_MODEL"):
            monkeypatch.delenv(name, raising=False)
        cfg = RelayConfig.from_env()
        assert cfg.retry_max_retries == 3
        assert cfg.breaker_failure_threshold == 5
        assert cfg.breaker_cooldown_seconds == 60.0
        assert cfg.research_model == "gemini-3-pro-preview"
        assert cfg.retry_rate_limited is False

    def test_keys_read_from_env(self):
        cfg = RelayConfig.from_env()
        assert cfg.google_api_key == "test-key-not-real"
        assert cfg.openai_api_key == "sk-test-key-not-real"

    def test_google_api_key_fallback(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY")
        monkeypatch.setenv("GOOGLE_API_KEY", "from-google-var")
        assert RelayConfig.from_env().google_api_key == "from-google-var"

    @pytest.mark.parametrize("value", ["${OPENAI_API_KEY}", "${OPENAI_API_KEY:-}", "$OPENAI_API_KEY"])
    def test_unresolved_placeholder_is_treated_as_unset(self, monkeypatch, value):
        monkeypatch.setenv("OPENAI_API_KEY", value)
        assert RelayConfig.from_env().openai_api_key == ""

    def test_tuning_overrides(self, monkeypatch):
        monkeypatch.setenv("RELAY_RETRY_MAX_RETRIES", "1")
        monkeypatch.setenv("RELAY_RETRY_RATE_LIMITED", "true")
        monkeypatch.setenv("RELAY_BREAKER_COOLDOWN", "5")
        monkeypatch.setenv("RELAY_FAMILY_TIMEOUTS", '{"openai-reasoning": 900}')
        cfg = RelayConfig.from_env()
        assert cfg.retry_max_retries == 1
        assert cfg.retry_rate_limited is True
        assert cfg.breaker_cooldown_seconds == 5.0
        assert cfg.family_timeouts == {"openai-reasoning": 900.0}

    def test_malformed_family_timeouts_ignored(self, monkeypatch, caplog):
        monkeypatch.setenv("RELAY_FAMILY_TIMEOUTS", "openai=900")
        with caplog.at_level(logging.WARNING, logger="research_relay.config"):
            cfg = RelayConfig.from_env()
        assert cfg.family_timeouts == {}
        assert "not valid JSON" in caplog.text

    def test_non_numeric_family_timeout_ignored(self, monkeypatch, caplog):
        monkeypatch.setenv("RELAY_FAMILY_TIMEOUTS", '{"google": "fast"}')
        with caplog.at_level(logging.WARNING, logger="research_relay.config"):
            cfg = RelayConfig.from_env()
        assert cfg.family_timeouts == {}
        assert "must be numbers" in caplog.text


class TestValidation:
    """Field validators reject nonsensical values."""

    @pytest.mark.parametrize("field,value", [
        ("retry_max_retries", -1),
        ("breaker_failure_threshold", 0),
        ("retry_base_delay", 0),
        ("research_timeout_seconds", -5),
        ("family_timeouts", {"google": 0}),
    ])
    def test_rejected(self, field, value):
        with pytest.raises(ValidationError):
            RelayConfig(**{field: value})

    def test_keys_hidden_from_repr(self):
        cfg = RelayConfig(google_api_key="AIzaSECRET", openai_api_key="sk-SECRET")
        assert "SECRET" not in repr(cfg)

    def test_secrets_skip_empty_keys(self):
        assert RelayConfig(openai_api_key="sk-x").secrets == ("sk-x",)


class TestPlaceholderDetection:
    @pytest.mark.parametrize("value,expected", [
        ("${FOO}", True),
        ("${FOO:-bar}", True),
        ("$FOO", True),
        ("real-value", False),
        ("${}", False),
    ])
    def test_is_env_placeholder(self, value, expected):
        assert _is_env_placeholder(value) is expected


def test_get_config_is_cached():
    assert get_config() is get_config()
