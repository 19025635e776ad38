"""
Configuration management for the cybersecurity briefing.

Loads settings from environment variables / .env file and provides
typed accessors with validation.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv


DEFAULT_AGENT_IMAGE = "cybersecurity-news-agent:latest"


class ConfigError(Exception):
    """Raised when configuration is invalid or missing required values."""
    pass


@dataclass
class FeedEntry:
    """Configuration for a single RSS feed from environment."""

    name: str
    url: str
    enabled: bool = True
    limit: int = 20


# Feeds used when RSS_FEEDS is not set
DEFAULT_FEEDS = [
    FeedEntry(name="The Hacker News", url="https://feeds.feedburner.com/TheHackersNews"),
    FeedEntry(name="BleepingComputer", url="https://www.bleepingcomputer.com/feed/"),
    FeedEntry(name="Krebs on Security", url="https://krebsonsecurity.com/feed/"),
    FeedEntry(name="Dark Reading", url="https://www.darkreading.com/rss.xml"),
    FeedEntry(name="SecurityWeek", url="https://www.securityweek.com/feed/"),
    FeedEntry(name="CISA Advisories", url="https://www.cisa.gov/cybersecurity-advisories/all.xml"),
]


@dataclass
class Config:
    """Application configuration container."""

    # Feed collection
    feeds: list[FeedEntry] = field(default_factory=lambda: list(DEFAULT_FEEDS))
    hours_back: int = 24
    max_articles_per_feed: int = 20

    # Agent container
    agent_enabled: bool = True
    agent_image: str = DEFAULT_AGENT_IMAGE
    agent_timeout_seconds: int = 900
    agent_max_attempts: int = 3
    agent_retry_interval_seconds: int = 30
    anthropic_api_key: Optional[str] = None

    # Flow definitions and storage
    flows_dir: Path = Path("_flows")
    flow_namespace: str = "security"
    output_dir: Path = Path("reports")
    work_dir: Path = Path(".work")


def _get_optional_env(key: str, default: str) -> str:
    """Get an optional environment variable with a default."""
    value = os.environ.get(key)
    return value if value else default


def _get_bool_env(key: str, default: bool = True) -> bool:
    """Get a boolean environment variable. Accepts true/false/1/0/yes/no."""
    value = os.environ.get(key)
    if value is None or value == "":
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_positive_int_env(key: str, default: int) -> int:
    """Get a positive integer environment variable or raise ConfigError."""
    raw = _get_optional_env(key, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got: {raw}")
    if value < 1:
        raise ConfigError(f"{key} must be at least 1, got: {value}")
    return value


def _feed_name_from_url(url: str) -> str:
    """Derive a display name from the feed URL domain."""
    domain = urlparse(url).netloc
    if not domain:
        return "RSS Feed"
    return domain.replace("www.", "").split(".")[0].title()


def _parse_feeds(limit: int) -> list[FeedEntry]:
    """
    Parse RSS feed configuration from environment variables.

    Format: RSS_FEEDS=url1,url2,url3 (comma-separated URLs)

    Returns:
        List of FeedEntry objects, or the default feed list when unset.
    """
    raw = os.environ.get("RSS_FEEDS", "")
    urls = [url.strip() for url in raw.split(",") if url.strip()]

    if not urls:
        return [
            FeedEntry(name=feed.name, url=feed.url, enabled=feed.enabled, limit=limit)
            for feed in DEFAULT_FEEDS
        ]

    feeds = []
    for url in urls:
        if urlparse(url).scheme not in ("http", "https"):
            raise ConfigError(f"RSS_FEEDS entry is not an http(s) URL: {url}")
        feeds.append(FeedEntry(name=_feed_name_from_url(url), url=url, limit=limit))
    return feeds


def load_config(env_path: Optional[Path] = None, agent_enabled: Optional[bool] = None) -> Config:
    """
    Load configuration from environment variables.

    Args:
        env_path: Optional path to .env file. If not provided,
                  searches for .env in current and parent directories.
        agent_enabled: Overrides AGENT_ENABLED when given.

    Returns:
        Config object with all settings populated.

    Raises:
        ConfigError: If settings are invalid, or the agent is enabled
                     without an API key.
    """
    if env_path:
        load_dotenv(env_path)
    else:
        load_dotenv()

    max_per_feed = _get_positive_int_env("MAX_ARTICLES_PER_FEED", 20)
    if agent_enabled is None:
        agent_enabled = _get_bool_env("AGENT_ENABLED", True)
    api_key = os.environ.get("ANTHROPIC_API_KEY") or None

    if agent_enabled and not api_key:
        raise ConfigError(
            "Missing required environment variable: ANTHROPIC_API_KEY "
            "(set AGENT_ENABLED=false to run the local analysis instead)"
        )

    namespace = _get_optional_env("FLOW_NAMESPACE", "security")

    return Config(
        feeds=_parse_feeds(max_per_feed),
        hours_back=_get_positive_int_env("HOURS_BACK", 24),
        max_articles_per_feed=max_per_feed,
        agent_enabled=agent_enabled,
        agent_image=_get_optional_env("AGENT_IMAGE", DEFAULT_AGENT_IMAGE),
        agent_timeout_seconds=_get_positive_int_env("AGENT_TIMEOUT_SECONDS", 900),
        agent_max_attempts=_get_positive_int_env("AGENT_MAX_ATTEMPTS", 3),
        agent_retry_interval_seconds=_get_positive_int_env("AGENT_RETRY_INTERVAL_SECONDS", 30),
        anthropic_api_key=api_key,
        flows_dir=Path(_get_optional_env("FLOWS_DIR", "_flows")),
        flow_namespace=namespace,
        output_dir=Path(_get_optional_env("OUTPUT_DIR", "reports")),
        work_dir=Path(_get_optional_env("WORK_DIR", ".work")),
    )
