"""
Tests for configuration loading and log helpers.
"""

import dataclasses
import os
from unittest.mock import patch

import pytest

from src.aloha.config import ConfigError, get_config, init_config
from src.aloha.logging_setup import redact_for_logs


class TestConfig:
    def test_values_from_environment(self):
        config = get_config()
        assert config.agent_name == "Aloha"
        assert config.business_name == "Sunny Dental"
        assert config.tts_stream_buffer_chunks == 4
        assert config.classifier_timeout_seconds == 0.5
        assert config.tone_styling_enabled is False
        assert get_config() is config

    def test_init_config_validates(self):
        assert init_config().openai_api_key == "test_openai_key"

    def test_missing_api_key_fails_fast(self):
        with patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
            get_config.cache_clear()
            with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
                init_config()

    def test_invalid_response_format(self):
        config = dataclasses.replace(get_config(), tts_response_format="ogg")
        with pytest.raises(ConfigError, match="TTS_RESPONSE_FORMAT"):
            config.validate()

    def test_bad_numbers_fall_back_to_defaults(self):
        with patch.dict(os.environ, {"TTS_CHUNK_SIZE": "lots", "DIALOGUE_TIMEOUT_SECONDS": "soon"}):
            get_config.cache_clear()
            config = get_config()
        assert config.tts_chunk_size == 4096
        assert config.dialogue_timeout_seconds == 8.0

    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("on", True), ("no", False)])
    def test_bool_parsing(self, raw, expected):
        with patch.dict(os.environ, {"TONE_STYLING_ENABLED": raw}):
            get_config.cache_clear()
            assert get_config().tone_styling_enabled is expected

    def test_blank_agent_name_uses_default(self):
        with patch.dict(os.environ, {"AGENT_NAME": "   "}):
            get_config.cache_clear()
            assert get_config().agent_name == "Aloha"


class TestRedactForLogs:
    def test_masks_email_and_phone(self):
        text = "reach me at jane.doe@example.com or 555-123-4567"
        assert redact_for_logs(text) == "reach me at [EMAIL] or [PHONE-***4567]"

    def test_truncates(self):
        assert redact_for_logs("x" * 200, limit=10) == "x" * 10

    def test_empty(self):
        assert redact_for_logs("") == ""
