"""
Crawler Configuration Module
============================

Loads source definitions and pipeline tuning parameters from a YAML
file. Sources declared here are synced into the database registry,
which remains the authority for run status and counters.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from booth_beacon.core.enums import SourceType
from booth_beacon.core.schema import Source

# Trust rank used when a source does not set an explicit priority
DEFAULT_PRIORITY_BY_TYPE: dict[SourceType, int] = {
    SourceType.OPERATOR: 90,
    SourceType.DIRECTORY: 70,
    SourceType.CITY_GUIDE: 60,
    SourceType.BLOG: 45,
    SourceType.COMMUNITY: 40,
}


@dataclass
class RateLimitConfig:
    """Rate limiting configuration for a source."""

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
    """Configuration for a single crawl source."""

    name: str
    urls: list[str]
    extractor_type: str = "generic"
    source_type: SourceType = SourceType.DIRECTORY
    enabled: bool = True
    priority: int | None = None
    description: str = ""
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    custom_config: dict[str, Any] = field(default_factory=dict)

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

        urls = data.get("urls") or []
        if not urls and data.get("url"):
            urls = [data["url"]]

        priority = data.get("priority")
        return cls(
            name=data["name"],
            urls=list(urls),
            extractor_type=data.get("extractor_type", "generic"),
            source_type=SourceType(data.get("source_type", SourceType.DIRECTORY.value)),
            enabled=data.get("enabled", True),
            priority=int(priority) if priority is not None else None,
            description=data.get("description", ""),
            rate_limit=rate_limit,
            custom_config=data.get("custom_config", {}),
        )

    @property
    def trust_rank(self) -> int:
        """Explicit priority, or the default for the source type."""
        if self.priority is not None:
            return self.priority
        return DEFAULT_PRIORITY_BY_TYPE[self.source_type]

    def to_source(self) -> Source:
        """Build a registry Source from this configuration."""
        custom_config = dict(self.custom_config)
        custom_config.setdefault(
            "rate_limit",
            {
                "requests_per_second": self.rate_limit.requests_per_second,
                "burst_limit": self.rate_limit.burst_limit,
            },
        )
        return Source(
            name=self.name,
            urls=self.urls,
            extractor_type=self.extractor_type,
            source_type=self.source_type,
            enabled=self.enabled,
            priority=self.trust_rank,
            custom_config=custom_config,
        )


@dataclass
class DedupConfig:
    """Configuration for canonical record matching."""

    proximity_radius_m: float = 50.0
    # Same city, one side without a street number still counts as a match
    match_missing_street_prefix: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DedupConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            proximity_radius_m=float(data.get("proximity_radius_m", 50.0)),
            match_missing_street_prefix=bool(data.get("match_missing_street_prefix", True)),
        )


@dataclass
class PatternConfig:
    """Thresholds for the extraction pattern feedback loop."""

    min_records: int = 2
    min_pass_rate: float = 0.5
    initial_confidence: float = 0.6
    reinforce_step: float = 0.1
    decay_factor: float = 0.5
    usable_floor: float = 0.3

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PatternConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            min_records=int(data.get("min_records", 2)),
            min_pass_rate=float(data.get("min_pass_rate", 0.5)),
            initial_confidence=float(data.get("initial_confidence", 0.6)),
            reinforce_step=float(data.get("reinforce_step", 0.1)),
            decay_factor=float(data.get("decay_factor", 0.5)),
            usable_floor=float(data.get("usable_floor", 0.3)),
        )


@dataclass
class GlobalConfig:
    """Global configuration settings."""

    default_rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    user_agent: str = "BoothBeacon/0.1"
    scraper: str = "http"
    request_timeout: int = 30
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    freshness_window_hours: float = 24.0
    page_concurrency: int = 3
    run_deadline_seconds: float = 130.0
    stale_lock_minutes: float = 30.0
    llm_max_chunk_chars: int = 50_000

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        return cls(
            default_rate_limit=RateLimitConfig.from_dict(data.get("default_rate_limit")),
            user_agent=data.get("user_agent", "BoothBeacon/0.1"),
            scraper=data.get("scraper", "http"),
            request_timeout=int(data.get("request_timeout", 30)),
            max_retries=int(data.get("max_retries", 3)),
            backoff_base_seconds=float(data.get("backoff_base_seconds", 1.0)),
            backoff_max_seconds=float(data.get("backoff_max_seconds", 30.0)),
            freshness_window_hours=float(data.get("freshness_window_hours", 24.0)),
            page_concurrency=int(data.get("page_concurrency", 3)),
            run_deadline_seconds=float(data.get("run_deadline_seconds", 130.0)),
            stale_lock_minutes=float(data.get("stale_lock_minutes", 30.0)),
            llm_max_chunk_chars=int(data.get("llm_max_chunk_chars", 50_000)),
        )


@dataclass
class CrawlerConfig:
    """
    Complete pipeline configuration.

    Holds global settings, dedup and pattern thresholds, and the source
    definitions keyed by name.
    """

    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    patterns: PatternConfig = field(default_factory=PatternConfig)
    sources: dict[str, SourceConfig] = field(default_factory=dict)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CrawlerConfig:
        """Create from a parsed YAML document."""
        data = data or {}
        global_config = GlobalConfig.from_dict(data.get("global"))
        sources: dict[str, SourceConfig] = {}
        for source_data in data.get("sources", []):
            source = SourceConfig.from_dict(source_data, global_config.default_rate_limit)
            sources[source.name] = source
        return cls(
            global_config=global_config,
            dedup=DedupConfig.from_dict(data.get("dedup")),
            patterns=PatternConfig.from_dict(data.get("patterns")),
            sources=sources,
        )

    @classmethod
    def load(cls, config_path: Path | str) -> CrawlerConfig:
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the sources.yaml file

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        config_path = Path(config_path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f)

        config = cls.from_dict(data)
        config.config_path = config_path
        return config

    def get_source(self, name: str) -> SourceConfig | None:
        """Get a source configuration by name."""
        return self.sources.get(name)

    def list_sources(self) -> list[SourceConfig]:
        """Get all configured sources."""
        return list(self.sources.values())


# Global config instance
_default_config: CrawlerConfig | None = None


def get_default_config() -> CrawlerConfig:
    """
    Get the default crawler configuration.

    Loads configuration from the path specified in SOURCES_CONFIG_PATH
    environment variable, or falls back to config/sources.yaml. Missing
    files yield built-in defaults with no sources.

    Returns:
        The global CrawlerConfig instance
    """
    global _default_config

    if _default_config is None:
        config_path = os.environ.get("SOURCES_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            project_root = Path(__file__).parent.parent.parent
            path = project_root / "config" / "sources.yaml"

        if path.exists():
            _default_config = CrawlerConfig.load(path)
        else:
            _default_config = CrawlerConfig()

    return _default_config


def reset_default_config() -> None:
    """Reset the default config (useful for testing)."""
    global _default_config
    _default_config = None
