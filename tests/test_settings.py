"""Tests for Application Settings.

Tests environment-based configuration and validation.
"""

import pytest
from pydantic import ValidationError

from voicedev.config.constants import LIMITS
from voicedev.config.settings import Settings, get_settings
from voicedev.orchestrator.orchestrator import OrchestratorConfig


class TestSettingsDefaults:
    """Tests for default settings values."""

    @pytest.fixture(autouse=True)
    def clear_cache(self):
        """Clear settings cache before each test."""
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_api_defaults(self, monkeypatch):
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        settings = Settings(_env_file=None)
        assert settings.api_host == "0.0.0.0"
        assert settings.api_port == 3000
        assert settings.log_level == "INFO"
        assert settings.environment == "development"

    def test_delivery_defaults(self, test_settings):
        assert test_settings.max_voice_length == LIMITS.MAX_VOICE_LENGTH == 500
        assert test_settings.error_brief_length == LIMITS.ERROR_BRIEF_LENGTH == 100
        assert test_settings.inbox_max_size == LIMITS.INBOX_MAX_SIZE

    def test_realtime_defaults(self, test_settings):
        assert test_settings.realtime_voice == "cedar"
        assert test_settings.realtime_url == "wss://api.openai.com/v1/realtime"
        assert test_settings.voice_connect_retries == 3

    def test_env_selects_engines(self):
        """conftest sets AGENT_ENGINE=mock and VOICE_ENGINE=none."""
        settings = get_settings()
        assert settings.agent_engine == "mock"
        assert settings.voice_engine == "none"

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()


class TestSettingsValidation:
    """Tests for settings validation."""

    def test_port_range(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, api_port=80)

    def test_unknown_engine(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, agent_engine="gpt")

    def test_realtime_requires_key_in_production(self):
        with pytest.raises(ValueError, match="openai_api_key"):
            Settings(_env_file=None, environment="production", voice_engine="realtime")

    def test_realtime_without_key_in_development(self):
        settings = Settings(_env_file=None, environment="development", voice_engine="realtime")
        assert settings.openai_api_key is None

    def test_production_text_only(self):
        settings = Settings(_env_file=None, environment="production", voice_engine="none")
        assert settings.voice_engine == "none"


class TestOrchestratorConfigFromSettings:
    """Settings flow into the orchestrator."""

    def test_from_settings(self):
        settings = Settings(_env_file=None, max_voice_length=300, error_brief_length=40)
        config = OrchestratorConfig.from_settings(settings)

        assert config.max_voice_length == 300
        assert config.error_brief_length == 40
        assert config.text_max_turns == LIMITS.TEXT_MAX_TURNS
        assert config.session_id
