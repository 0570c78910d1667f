"""
Unit tests for configuration loading.

Tests defaults, environment overrides, YAML files, and fallback on
invalid values.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest
import yaml

from usage_gate.config.loader import (
    CACHE_FILENAME,
    EnforcementMode,
    GateLimits,
    default_cache_dir,
    load_settings,
)


class TestDefaults:
    """Test settings with an empty environment."""

    def test_defaults(self):
        """Test documented defaults."""
        settings = load_settings({})

        assert settings.limits == GateLimits(
            five_hour_limit=90,
            seven_day_limit=90,
            fallback_5h="sonnet",
            fallback_7d="sonnet",
            enabled=True,
        )
        assert settings.cache_ttl == 60
        assert settings.mode == EnforcementMode.TRANSPARENT
        assert settings.locale == "en"
        assert settings.chain_command is None
        assert settings.log_file is None

    def test_default_cache_file(self):
        """Test cache file sits in the platform default directory."""
        settings = load_settings({})

        assert settings.cache_file == default_cache_dir() / CACHE_FILENAME

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX default")
    def test_posix_cache_dir(self):
        """Test POSIX default cache directory."""
        assert default_cache_dir() == Path("/tmp")

    def test_cheap_models_are_lowercased_fallbacks(self):
        """Test cheap model set contains both fallbacks."""
        limits = GateLimits(fallback_5h="Sonnet", fallback_7d="haiku")

        assert limits.cheap_models == frozenset({"sonnet", "haiku"})

    def test_default_cheap_models_include_haiku(self):
        """Test haiku stays exempt when both fallbacks are sonnet."""
        settings = load_settings({})

        assert settings.limits.cheap_models == frozenset({"sonnet", "haiku"})


class TestEnvironment:
    """Test environment variable overrides."""

    def test_all_variables(self):
        """Test every supported variable is honoured."""
        settings = load_settings({
            "CLAUDE_USAGE_CACHE_DIR": "/var/cache/gate",
            "CLAUDE_OPUS_LIMIT_5H": "80",
            "CLAUDE_OPUS_LIMIT_7D": "70",
            "CLAUDE_FALLBACK_MODEL_5H": "haiku",
            "CLAUDE_FALLBACK_MODEL_7D": "sonnet",
            "CLAUDE_USAGE_CACHE_TTL": "120",
            "CLAUDE_USAGE_GATE_ENABLED": "true",
            "CLAUDE_USAGE_GATE_MODE": "block",
            "CLAUDE_USAGE_GATE_LOCALE": "ko",
            "USAGE_GATE_CHAIN_CMD": "npx claude-dashboard",
            "CLAUDE_USAGE_GATE_LOG_FILE": "/tmp/gate.log",
            "CLAUDE_USAGE_GATE_LOG_LEVEL": "debug",
        })

        assert settings.cache_file == Path("/var/cache/gate") / CACHE_FILENAME
        assert settings.limits.five_hour_limit == 80
        assert settings.limits.seven_day_limit == 70
        assert settings.limits.fallback_5h == "haiku"
        assert settings.limits.fallback_7d == "sonnet"
        assert settings.limits.enabled is True
        assert settings.cache_ttl == 120
        assert settings.mode == EnforcementMode.BLOCK
        assert settings.locale == "ko"
        assert settings.chain_command == "npx claude-dashboard"
        assert settings.log_file == "/tmp/gate.log"
        assert settings.log_level == "DEBUG"

    @pytest.mark.parametrize("value", ["false", "FALSE", "0", "no", "off"])
    def test_gate_disabled(self, value):
        """Test disabling values turn the gate off."""
        settings = load_settings({"CLAUDE_USAGE_GATE_ENABLED": value})

        assert settings.limits.enabled is False

    def test_cheap_models_list(self):
        """Test the extra cheap model list is split on commas."""
        settings = load_settings({"CLAUDE_USAGE_GATE_CHEAP_MODELS": " haiku , Claude-Haiku-4-5 ,,"})

        assert settings.limits.also_cheap == ("haiku", "Claude-Haiku-4-5")
        assert "claude-haiku-4-5" in settings.limits.cheap_models

    def test_unrecognised_enabled_value_keeps_gate_on(self):
        """Test anything other than a disabling value keeps the gate on."""
        settings = load_settings({"CLAUDE_USAGE_GATE_ENABLED": "maybe"})

        assert settings.limits.enabled is True


class TestInvalidValues:
    """Invalid values fall back to defaults and never raise."""

    @pytest.mark.parametrize("value", ["abc", "9O", "-5", "1.5"])
    def test_invalid_limit_uses_default(self, value):
        """Test unparsable limits fall back to 90."""
        settings = load_settings({"CLAUDE_OPUS_LIMIT_5H": value})

        assert settings.limits.five_hour_limit == 90

    def test_invalid_ttl_uses_default(self):
        """Test unparsable TTL falls back to 60."""
        settings = load_settings({"CLAUDE_USAGE_CACHE_TTL": "soon"})

        assert settings.cache_ttl == 60

    def test_unknown_mode_uses_transparent(self):
        """Test unknown enforcement mode falls back to transparent."""
        settings = load_settings({"CLAUDE_USAGE_GATE_MODE": "deny"})

        assert settings.mode == EnforcementMode.TRANSPARENT

    def test_unknown_locale_uses_english(self):
        """Test unsupported locale falls back to English."""
        settings = load_settings({"CLAUDE_USAGE_GATE_LOCALE": "fr"})

        assert settings.locale == "en"

    def test_empty_values_use_defaults(self):
        """Test empty strings are treated as unset."""
        settings = load_settings({
            "CLAUDE_OPUS_LIMIT_5H": "",
            "CLAUDE_FALLBACK_MODEL_5H": "",
            "CLAUDE_USAGE_CACHE_DIR": "",
        })

        assert settings.limits.five_hour_limit == 90
        assert settings.limits.fallback_5h == "sonnet"
        assert settings.cache_dir == default_cache_dir()


class TestConfigFile:
    """Test optional YAML configuration file."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "gate.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_file_values_load(self):
        """Test a valid file sets every section."""
        path = self._write_config({
            "limits": {"five_hour": 75, "seven_day": 85},
            "fallback": {"five_hour": "haiku", "seven_day": "sonnet"},
            "cache": {"dir": self.temp_dir, "ttl": 30},
            "enabled": True,
            "mode": "block",
            "locale": "ko",
            "chain_command": "echo hi",
        })

        settings = load_settings({"CLAUDE_USAGE_GATE_CONFIG": path})

        assert settings.limits.five_hour_limit == 75
        assert settings.limits.seven_day_limit == 85
        assert settings.limits.fallback_5h == "haiku"
        assert settings.cache_dir == Path(self.temp_dir)
        assert settings.cache_ttl == 30
        assert settings.mode == EnforcementMode.BLOCK
        assert settings.locale == "ko"
        assert settings.chain_command == "echo hi"

    def test_file_cheap_models_list(self):
        """Test the YAML fallback section accepts an extra cheap list."""
        path = self._write_config({"fallback": {"also_cheap": ["haiku", "claude-haiku-4-5"]}})

        settings = load_settings({"CLAUDE_USAGE_GATE_CONFIG": path})

        assert settings.limits.also_cheap == ("haiku", "claude-haiku-4-5")

    def test_file_empty_cheap_list_clears_default(self):
        """Test an empty YAML list leaves only the fallbacks exempt."""
        path = self._write_config({"fallback": {"also_cheap": []}})

        settings = load_settings({"CLAUDE_USAGE_GATE_CONFIG": path})

        assert settings.limits.cheap_models == frozenset({"sonnet"})

    def test_file_can_disable_gate(self):
        """Test YAML boolean false disables the gate."""
        path = self._write_config({"enabled": False})

        settings = load_settings({"CLAUDE_USAGE_GATE_CONFIG": path})

        assert settings.limits.enabled is False

    def test_environment_overrides_file(self):
        """Test environment takes precedence over the file."""
        path = self._write_config({"limits": {"five_hour": 75}})

        settings = load_settings({
            "CLAUDE_USAGE_GATE_CONFIG": path,
            "CLAUDE_OPUS_LIMIT_5H": "50",
        })

        assert settings.limits.five_hour_limit == 50

    def test_unknown_keys_ignore_file(self):
        """Test a file with unknown keys is ignored entirely."""
        path = self._write_config({
            "limits": {"five_hour": 75},
            "budget": {"daily": 10},
        })

        settings = load_settings({"CLAUDE_USAGE_GATE_CONFIG": path})

        assert settings.limits.five_hour_limit == 90

    def test_unknown_section_keys_ignore_file(self):
        """Test unknown keys inside a section invalidate the file."""
        path = self._write_config({"limits": {"five_hour": 75, "monthly": 99}})

        settings = load_settings({"CLAUDE_USAGE_GATE_CONFIG": path})

        assert settings.limits.five_hour_limit == 90

    def test_invalid_yaml_ignored(self):
        """Test invalid YAML never raises."""
        path = os.path.join(self.temp_dir, "broken.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("limits: [unclosed\n")

        settings = load_settings({"CLAUDE_USAGE_GATE_CONFIG": path})

        assert settings.limits.five_hour_limit == 90

    def test_missing_file_ignored(self):
        """Test a missing config file falls back to defaults."""
        settings = load_settings({
            "CLAUDE_USAGE_GATE_CONFIG": os.path.join(self.temp_dir, "missing.yaml")
        })

        assert settings.limits == GateLimits()

    def test_invalid_value_in_file_uses_default(self):
        """Test an unparsable number in the file falls back per value."""
        path = self._write_config({"limits": {"five_hour": "lots", "seven_day": 60}})

        settings = load_settings({"CLAUDE_USAGE_GATE_CONFIG": path})

        assert settings.limits.five_hour_limit == 90
        assert settings.limits.seven_day_limit == 60
