"""Tests for configuration management."""

from pathlib import Path
from unittest.mock import patch

import pytest

from cyberbrief.config import (
    DEFAULT_AGENT_IMAGE,
    DEFAULT_FEEDS,
    Config,
    ConfigError,
    FeedEntry,
    _feed_name_from_url,
    load_config,
)


CONFIG_VARS = [
    "RSS_FEEDS", "HOURS_BACK", "MAX_ARTICLES_PER_FEED", "AGENT_ENABLED",
    "AGENT_IMAGE", "AGENT_TIMEOUT_SECONDS", "AGENT_MAX_ATTEMPTS",
    "AGENT_RETRY_INTERVAL_SECONDS", "ANTHROPIC_API_KEY", "FLOWS_DIR",
    "FLOW_NAMESPACE", "OUTPUT_DIR", "WORK_DIR",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all config variables and stop .env files from being read."""
    for key in CONFIG_VARS:
        monkeypatch.delenv(key, raising=False)
    with patch("cyberbrief.config.load_dotenv"):
        yield monkeypatch


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_config_uses_defaults(self, clean_env):
        """Test that every optional value falls back to its default."""
        clean_env.setenv("ANTHROPIC_API_KEY", "sk-test")

        config = load_config()

        assert config.hours_back == 24
        assert config.max_articles_per_feed == 20
        assert config.agent_enabled is True
        assert config.agent_image == DEFAULT_AGENT_IMAGE
        assert config.agent_timeout_seconds == 900
        assert config.agent_max_attempts == 3
        assert config.agent_retry_interval_seconds == 30
        assert config.anthropic_api_key == "sk-test"
        assert config.flows_dir == Path("_flows")
        assert config.flow_namespace == "security"
        assert config.output_dir == Path("reports")
        assert config.work_dir == Path(".work")
        assert [f.url for f in config.feeds] == [f.url for f in DEFAULT_FEEDS]

    def test_load_config_all_values(self, clean_env):
        """Test that every variable is read from the environment."""
        clean_env.setenv("ANTHROPIC_API_KEY", "sk-test")
        clean_env.setenv("HOURS_BACK", "48")
        clean_env.setenv("MAX_ARTICLES_PER_FEED", "5")
        clean_env.setenv("AGENT_IMAGE", "registry.local/agent:2")
        clean_env.setenv("AGENT_TIMEOUT_SECONDS", "60")
        clean_env.setenv("AGENT_MAX_ATTEMPTS", "5")
        clean_env.setenv("AGENT_RETRY_INTERVAL_SECONDS", "10")
        clean_env.setenv("FLOWS_DIR", "flows")
        clean_env.setenv("FLOW_NAMESPACE", "security.daily")
        clean_env.setenv("OUTPUT_DIR", "/tmp/out")
        clean_env.setenv("WORK_DIR", "/tmp/work")

        config = load_config()

        assert config.hours_back == 48
        assert config.max_articles_per_feed == 5
        assert config.agent_image == "registry.local/agent:2"
        assert config.agent_timeout_seconds == 60
        assert config.agent_max_attempts == 5
        assert config.agent_retry_interval_seconds == 10
        assert config.flows_dir == Path("flows")
        assert config.flow_namespace == "security.daily"
        assert config.output_dir == Path("/tmp/out")
        assert config.work_dir == Path("/tmp/work")
        assert all(feed.limit == 5 for feed in config.feeds)

    def test_missing_api_key_with_agent_enabled(self, clean_env):
        """Test that the agent cannot be enabled without an API key."""
        with pytest.raises(ConfigError) as exc_info:
            load_config()

        assert "ANTHROPIC_API_KEY" in str(exc_info.value)

    def test_api_key_not_needed_when_agent_disabled(self, clean_env):
        """Test that AGENT_ENABLED=false removes the API key requirement."""
        clean_env.setenv("AGENT_ENABLED", "false")

        config = load_config()

        assert config.agent_enabled is False
        assert config.anthropic_api_key is None

    def test_agent_enabled_override(self, clean_env):
        """Test that the explicit override wins over AGENT_ENABLED."""
        clean_env.setenv("AGENT_ENABLED", "true")

        config = load_config(agent_enabled=False)

        assert config.agent_enabled is False

    def test_invalid_integer(self, clean_env):
        """Test that a non-numeric integer setting raises ConfigError."""
        clean_env.setenv("AGENT_ENABLED", "no")
        clean_env.setenv("HOURS_BACK", "a day")

        with pytest.raises(ConfigError) as exc_info:
            load_config()

        assert "HOURS_BACK must be an integer" in str(exc_info.value)

    def test_zero_is_rejected(self, clean_env):
        """Test that integer settings must be positive."""
        clean_env.setenv("AGENT_ENABLED", "0")
        clean_env.setenv("AGENT_MAX_ATTEMPTS", "0")

        with pytest.raises(ConfigError) as exc_info:
            load_config()

        assert "AGENT_MAX_ATTEMPTS must be at least 1" in str(exc_info.value)

    def test_env_file_is_loaded(self, monkeypatch, tmp_path):
        """Test that an explicit .env file is read."""
        for key in CONFIG_VARS:
            # setenv first so the values written by load_dotenv are undone afterwards
            monkeypatch.setenv(key, "unset")
            monkeypatch.delenv(key)
        env_file = tmp_path / ".env"
        env_file.write_text("AGENT_ENABLED=false\nHOURS_BACK=12\n")

        config = load_config(env_file)

        assert config.agent_enabled is False
        assert config.hours_back == 12


class TestParseFeeds:
    """Tests for RSS_FEEDS parsing."""

    def test_custom_feed_list(self, clean_env):
        """Test comma-separated feed URLs with surrounding whitespace."""
        clean_env.setenv("AGENT_ENABLED", "false")
        clean_env.setenv(
            "RSS_FEEDS",
            " https://www.bleepingcomputer.com/feed/ , https://krebsonsecurity.com/feed/,,",
        )

        config = load_config()

        assert [f.url for f in config.feeds] == [
            "https://www.bleepingcomputer.com/feed/",
            "https://krebsonsecurity.com/feed/",
        ]
        assert config.feeds[0].name == "Bleepingcomputer"
        assert all(f.enabled for f in config.feeds)

    def test_non_http_url_rejected(self, clean_env):
        """Test that feed entries must be http(s) URLs."""
        clean_env.setenv("AGENT_ENABLED", "false")
        clean_env.setenv("RSS_FEEDS", "ftp://example.com/feed.xml")

        with pytest.raises(ConfigError) as exc_info:
            load_config()

        assert "ftp://example.com/feed.xml" in str(exc_info.value)

    def test_feed_name_from_url(self):
        """Test display names derived from feed domains."""
        assert _feed_name_from_url("https://www.securityweek.com/feed/") == "Securityweek"
        assert _feed_name_from_url("not a url") == "RSS Feed"


class TestConfigDataclass:
    """Tests for the Config container."""

    def test_default_feeds_are_copied(self):
        """Test that each Config gets its own feed list."""
        first = Config()
        first.feeds.append(FeedEntry(name="Extra", url="https://example.com/rss"))

        assert len(Config().feeds) == len(DEFAULT_FEEDS)
