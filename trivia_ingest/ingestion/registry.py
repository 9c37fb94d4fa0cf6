"""
Source Registry Module
======================

Manages source and pipeline configuration loaded from YAML. Sources define
which quiz listing providers are ingested and which adapter handles each.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


class ConfigurationError(RuntimeError):
    """Raised when required configuration (credentials, sources) is missing."""


@dataclass
class RateLimitConfig:
    """Per-source request rate limit applied by the crawler."""

    requests_per_second: float = 1.0
    burst_limit: int = 5

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RateLimitConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            requests_per_second=float(data.get("requests_per_second", 1.0)),
            burst_limit=int(data.get("burst_limit", 5)),
        )


@dataclass
class SourceConfig:
    """Configuration for a single listing source."""

    name: str
    slug: str
    adapter: str
    website_url: str = ""
    enabled: bool = True
    description: str = ""
    listing_url: str = ""
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    allowlist: list[str] = field(default_factory=list)
    denylist: list[str] = field(default_factory=list)
    custom_config: dict[str, Any] = field(default_factory=dict)

    # Compiled regex patterns (populated lazily)
    _allowlist_patterns: list[re.Pattern[str]] | None = field(
        default=None, repr=False, compare=False
    )
    _denylist_patterns: list[re.Pattern[str]] | None = field(
        default=None, repr=False, compare=False
    )

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], default_rate_limit: RateLimitConfig | None = None
    ) -> SourceConfig:
        """Create from dictionary."""
        rate_limit_data = data.get("rate_limit")
        if rate_limit_data:
            rate_limit = RateLimitConfig.from_dict(rate_limit_data)
        elif default_rate_limit:
            rate_limit = default_rate_limit
        else:
            rate_limit = RateLimitConfig()

        return cls(
            name=data["name"],
            slug=data["slug"],
            adapter=data.get("adapter", data["slug"]),
            website_url=data.get("website_url", ""),
            enabled=data.get("enabled", True),
            description=data.get("description", ""),
            listing_url=data.get("listing_url", ""),
            rate_limit=rate_limit,
            allowlist=data.get("allowlist", []),
            denylist=data.get("denylist", []),
            custom_config=data.get("custom_config", {}),
        )

    def _compile_patterns(self) -> None:
        """Compile regex patterns for URL filtering."""
        if self._allowlist_patterns is None:
            self._allowlist_patterns = [re.compile(p) for p in self.allowlist]
        if self._denylist_patterns is None:
            self._denylist_patterns = [re.compile(p) for p in self.denylist]

    def is_url_allowed(self, url: str) -> bool:
        """
        Check if a detail page URL may be fetched for this source.

        Rules:
        1. If URL matches any denylist pattern, it's denied
        2. If allowlist is empty, URL is allowed
        3. If allowlist is not empty, URL must match at least one pattern
        """
        self._compile_patterns()

        for pattern in self._denylist_patterns or []:
            if pattern.match(url):
                return False

        if not self._allowlist_patterns:
            return True

        for pattern in self._allowlist_patterns or []:
            if pattern.match(url):
                return True

        return False


@dataclass
class SchedulingConfig:
    """Spacing and retry settings for fanned-out detail jobs."""

    base_interval_seconds: float = 2.0
    max_attempts: int = 3
    detail_timeout_seconds: float = 60.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SchedulingConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            base_interval_seconds=float(data.get("base_interval_seconds", 2.0)),
            max_attempts=int(data.get("max_attempts", 3)),
            detail_timeout_seconds=float(data.get("detail_timeout_seconds", 60.0)),
        )


@dataclass
class GoogleConfig:
    """Mapping API settings shared by geocoding and photo refresh."""

    api_key: str | None = None
    retry_wait_seconds: float = 5.0
    max_retries: int = 3
    request_timeout: float = 15.0
    photo_max_width: int = 1200
    max_images: int = 5
    refresh_days: int = 90

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GoogleConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            api_key=data.get("api_key") or None,
            retry_wait_seconds=float(data.get("retry_wait_seconds", 5.0)),
            max_retries=int(data.get("max_retries", 3)),
            request_timeout=float(data.get("request_timeout", 15.0)),
            photo_max_width=int(data.get("photo_max_width", 1200)),
            max_images=int(data.get("max_images", 5)),
            refresh_days=int(data.get("refresh_days", 90)),
        )


@dataclass
class GlobalConfig:
    """Global configuration settings."""

    default_rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    user_agent: str = "TriviaIngest/0.1"
    photo_storage_path: str = "~/.trivia_ingest/uploads"
    request_timeout: float = 30.0
    max_retries: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            default_rate_limit=RateLimitConfig.from_dict(data.get("default_rate_limit")),
            user_agent=data.get("user_agent", "TriviaIngest/0.1"),
            photo_storage_path=data.get("photo_storage_path", "~/.trivia_ingest/uploads"),
            request_timeout=float(data.get("request_timeout", 30.0)),
            max_retries=int(data.get("max_retries", 3)),
        )


class SourceRegistry:
    """
    Registry for source configurations and pipeline settings.

    Loads definitions from a YAML file and provides methods to query them.
    """

    def __init__(self) -> None:
        self._sources: dict[str, SourceConfig] = {}
        self._global_config: GlobalConfig = GlobalConfig()
        self._scheduling: SchedulingConfig = SchedulingConfig()
        self._google: GoogleConfig = GoogleConfig()
        self._config_path: Path | None = None

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

    @property
    def scheduling(self) -> SchedulingConfig:
        return self._scheduling

    @property
    def google(self) -> GoogleConfig:
        return self._google

    @property
    def config_path(self) -> Path | None:
        return self._config_path

    def load_config(self, config_path: Path | str) -> None:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the sources.yaml file
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        self._config_path = config_path
        self._global_config = GlobalConfig.from_dict(data.get("global"))
        self._scheduling = SchedulingConfig.from_dict(data.get("scheduling"))
        self._google = GoogleConfig.from_dict(data.get("google"))

        self._sources.clear()
        for source_data in data.get("sources", []):
            self.register(
                SourceConfig.from_dict(source_data, self._global_config.default_rate_limit)
            )

    def register(self, source: SourceConfig) -> None:
        """Add or replace a source configuration."""
        self._sources[source.slug] = source

    def get_source(self, slug: str) -> SourceConfig | None:
        """
        Get a source configuration by slug.

        Returns:
            SourceConfig if found, None otherwise
        """
        return self._sources.get(slug)

    def require_source(self, slug: str) -> SourceConfig:
        """Like ``get_source`` but raises ``ConfigurationError`` when unknown."""
        source = self._sources.get(slug)
        if source is None:
            raise ConfigurationError(f"Unknown source: {slug}")
        return source

    def list_sources(self) -> list[SourceConfig]:
        """Get all registered sources."""
        return list(self._sources.values())

    def list_enabled_sources(self) -> list[SourceConfig]:
        """Get all enabled sources."""
        return [s for s in self._sources.values() if s.enabled]


# Global registry instance
_default_registry: SourceRegistry | None = None


def get_default_registry() -> SourceRegistry:
    """
    Get the default source registry instance.

    Loads configuration from the path specified in the SOURCES_CONFIG_PATH
    environment variable, or falls back to config/sources.yaml.

    Returns:
        The global SourceRegistry instance
    """
    global _default_registry

    if _default_registry is None:
        _default_registry = SourceRegistry()

        config_path = os.environ.get("SOURCES_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            project_root = Path(__file__).parent.parent.parent
            path = project_root / "config" / "sources.yaml"

        if path.exists():
            _default_registry.load_config(path)

    return _default_registry


def reset_default_registry() -> None:
    """Reset the default registry (useful for testing)."""
    global _default_registry
    _default_registry = None
