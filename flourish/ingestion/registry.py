"""
Source Registry Module
======================

Manages catalog API source configurations loaded from YAML files. A source
describes one upstream botanical API: where its list and detail endpoints
live, how the API token is passed and how hard we may call it.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import yaml

from flourish.core.enums import ApiFlavor

_ENV_REF = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


def _resolve_env(value: str) -> str:
    """Expand a ``${VAR}`` reference from the environment; other values pass through."""
    match = _ENV_REF.match(value.strip())
    if match is None:
        return value
    return os.environ.get(match.group(1), "")


@dataclass
class RateLimitConfig:
    """Request quota and backoff settings for a source."""

    requests_per_window: int = 100
    window_seconds: float = 60.0
    cooldown_seconds: float = 10.0
    page_delay_seconds: float = 1.0
    max_requests_per_run: int = 99

    @classmethod
    def from_dict(
        cls, data: dict[str, Any] | None, defaults: RateLimitConfig | None = None
    ) -> RateLimitConfig:
        """Create from dictionary; missing values come from ``defaults``."""
        base = defaults or cls()
        if data is None:
            return cls(**vars(base))
        return cls(
            requests_per_window=int(data.get("requests_per_window", base.requests_per_window)),
            window_seconds=float(data.get("window_seconds", base.window_seconds)),
            cooldown_seconds=float(data.get("cooldown_seconds", base.cooldown_seconds)),
            page_delay_seconds=float(data.get("page_delay_seconds", base.page_delay_seconds)),
            max_requests_per_run=int(data.get("max_requests_per_run", base.max_requests_per_run)),
        )


@dataclass
class SourceConfig:
    """Configuration for a single catalog API."""

    name: str
    base_url: str
    list_path: str
    details_path: str = ""
    flavor: ApiFlavor = ApiFlavor.TREFLE
    api_token: str = ""
    token_param: str = "token"
    first_page: int = 1
    enabled: bool = True
    description: str = ""
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], default_rate_limit: RateLimitConfig | None = None
    ) -> SourceConfig:
        """Create from dictionary."""
        rate_limit = RateLimitConfig.from_dict(data.get("rate_limit"), default_rate_limit)

        return cls(
            name=data["name"],
            base_url=data["base_url"].rstrip("/"),
            list_path=data["list_path"],
            details_path=data.get("details_path", ""),
            flavor=ApiFlavor(data.get("flavor", ApiFlavor.TREFLE.value)),
            api_token=_resolve_env(str(data.get("api_token", ""))),
            token_param=data.get("token_param", "token"),
            first_page=int(data.get("first_page", 1)),
            enabled=data.get("enabled", True),
            description=data.get("description", ""),
            rate_limit=rate_limit,
        )

    @property
    def list_url(self) -> str:
        return f"{self.base_url}/{self.list_path.lstrip('/')}"

    def details_url(self, plant_id: int) -> str:
        """URL of the detail endpoint for one id, with the token attached."""
        if not self.details_path:
            raise ValueError(f"Source '{self.name}' has no details endpoint")
        path = self.details_path.lstrip("/").rstrip("/")
        url = httpx.URL(f"{self.base_url}/{path}/{plant_id}")
        return str(url.copy_merge_params({self.token_param: self.api_token}))


@dataclass
class GlobalConfig:
    """Global configuration settings."""

    default_rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    user_agent: str = "Flourish/0.1"
    snapshot_path: str = "~/.flourish/snapshots"
    request_timeout: float = 10.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            default_rate_limit=RateLimitConfig.from_dict(data.get("default_rate_limit")),
            user_agent=data.get("user_agent", "Flourish/0.1"),
            snapshot_path=data.get("snapshot_path", "~/.flourish/snapshots"),
            request_timeout=float(data.get("request_timeout", 10.0)),
        )


class SourceRegistry:
    """
    Registry for catalog API source configurations.

    Loads source definitions from a YAML file and provides methods
    to query them.
    """

    def __init__(self) -> None:
        self._sources: dict[str, SourceConfig] = {}
        self._global_config: GlobalConfig = GlobalConfig()
        self._config_path: Path | None = None

    @property
    def global_config(self) -> GlobalConfig:
        """Get global configuration."""
        return self._global_config

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

        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        self._config_path = config_path
        self._global_config = GlobalConfig.from_dict(data.get("global"))

        self._sources.clear()
        for source_data in data.get("sources", []):
            source = SourceConfig.from_dict(source_data, self._global_config.default_rate_limit)
            self._sources[source.name] = source

    def get_source(self, name: str) -> SourceConfig | None:
        """
        Get a source configuration by name.

        Args:
            name: Source name

        Returns:
            SourceConfig if found, None otherwise
        """
        return self._sources.get(name)

    def list_sources(self) -> list[SourceConfig]:
        """Get all registered sources."""
        return list(self._sources.values())

    def list_enabled_sources(self) -> list[SourceConfig]:
        """Get all enabled sources."""
        return [s for s in self._sources.values() if s.enabled]


def default_config_path() -> Path:
    """
    Location of the sources file.

    Uses SOURCES_CONFIG_PATH when set, otherwise config/sources.yaml at
    the project root.
    """
    config_path = os.environ.get("SOURCES_CONFIG_PATH")
    if config_path:
        return Path(config_path)
    return Path(__file__).resolve().parent.parent.parent / "config" / "sources.yaml"


def load_registry(config_path: Path | str | None = None) -> SourceRegistry:
    """
    Build a registry from a sources file.

    A missing default file yields an empty registry; a missing explicit
    path raises FileNotFoundError.
    """
    registry = SourceRegistry()
    if config_path is not None:
        registry.load_config(config_path)
        return registry

    path = default_config_path()
    if path.exists():
        registry.load_config(path)
    return registry
