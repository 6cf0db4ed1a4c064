from dotenv import load_dotenv
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple
import os
import re

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from seocrawl.constants import (
    CACHE_SWEEP_INTERVAL_SECONDS,
    DEFAULT_CACHE_DIRECTORY,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_INCREMENTAL_DIRECTORY,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_MEMORY_MB,
    DEFAULT_MAX_REQUESTS_PER_SECOND,
    DEFAULT_MAX_RETRIES,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    DEFAULT_PAGE_RESTART_THRESHOLD,
    DEFAULT_REQUEST_TIMEOUT_MS,
    DEFAULT_RESOURCE_PRIORITIES,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_USER_AGENT,
    LOW_PRIORITY_THRESHOLD,
    MEMORY_SAMPLE_INTERVAL_SECONDS,
    PRIMARY_RESOURCE_TYPE,
)
from seocrawl.exceptions import ConfigError

load_dotenv()  # Loads variables from .env file

REGEX_PATTERN_PREFIX = "re:"

IncrementalStrategy = Literal["lastModified", "etag", "contentHash"]


class Settings:
    """
    Process-level settings loaded from environment variables.
    """
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE")
    CACHE_DIR = os.getenv("CACHE_DIR", DEFAULT_CACHE_DIRECTORY)
    INCREMENTAL_DIR = os.getenv("INCREMENTAL_DIR", DEFAULT_INCREMENTAL_DIRECTORY)
    USER_AGENT = os.getenv("USER_AGENT", DEFAULT_USER_AGENT)


settings = Settings()


# Presets are plain data; CrawlConfig.preset() turns them into validated configs.
PRESETS: Dict[str, Dict[str, Any]] = {
    "small": {
        "max_concurrency": 5,
        "max_requests_per_second": 15,
        "cache_enabled": True,
        "max_memory_mb": 1024,
        "page_restart_threshold": 25,
        "incremental_enabled": False,
        "max_depth": 10,
    },
    "medium": {
        "max_concurrency": 10,
        "max_requests_per_second": 30,
        "cache_enabled": True,
        "max_memory_mb": 2048,
        "page_restart_threshold": 15,
        "incremental_enabled": True,
        "max_depth": 15,
    },
    "large": {
        "max_concurrency": 20,
        "max_requests_per_second": 50,
        "cache_enabled": True,
        "cache_ttl": 43200,  # 12 hours
        "max_memory_mb": 4096,
        "page_restart_threshold": 10,
        "incremental_enabled": True,
        "max_depth": 20,
    },
}


def _compile_pattern(pattern: str) -> Optional[re.Pattern]:
    if pattern.startswith(REGEX_PATTERN_PREFIX):
        return re.compile(pattern[len(REGEX_PATTERN_PREFIX):])
    return None


def pattern_matches(pattern: str, url: str) -> bool:
    """Match a URL filter pattern.

    Plain patterns are substring matches; patterns prefixed with ``re:``
    are regular expressions searched anywhere in the URL.
    """
    compiled = _compile_pattern(pattern)
    if compiled is not None:
        return compiled.search(url) is not None
    return pattern in url


class CrawlConfig(BaseModel):
    """
    Immutable, validated crawl parameters.

    Construction fails with ConfigError if any value is out of range;
    values are never clamped.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Concurrency
    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, gt=0)
    max_requests_per_second: float = Field(default=DEFAULT_MAX_REQUESTS_PER_SECOND, gt=0)

    # Resource prioritization
    resource_priorities: Dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_RESOURCE_PRIORITIES),
        description="Weight per resource class in [0, 1]; missing classes use the defaults"
    )
    low_priority_threshold: float = Field(default=LOW_PRIORITY_THRESHOLD, ge=0, le=1)

    # Caching
    cache_enabled: bool = True
    cache_ttl: float = Field(default=DEFAULT_CACHE_TTL_SECONDS, ge=0, description="Seconds")
    cache_directory: str = DEFAULT_CACHE_DIRECTORY
    cache_sweep_interval: float = Field(default=CACHE_SWEEP_INTERVAL_SECONDS, gt=0)

    # Memory management
    max_memory_mb: float = Field(default=DEFAULT_MAX_MEMORY_MB, gt=0)
    page_restart_threshold: int = Field(default=DEFAULT_PAGE_RESTART_THRESHOLD, gt=0)
    memory_sample_interval: float = Field(default=MEMORY_SAMPLE_INTERVAL_SECONDS, gt=0)

    # Incremental crawling
    incremental_enabled: bool = False
    incremental_strategy: IncrementalStrategy = "lastModified"
    incremental_directory: str = DEFAULT_INCREMENTAL_DIRECTORY

    # Timeouts (milliseconds, as Playwright expects)
    navigation_timeout: int = Field(default=DEFAULT_NAVIGATION_TIMEOUT_MS, gt=0)
    request_timeout: int = Field(default=DEFAULT_REQUEST_TIMEOUT_MS, gt=0)

    # Retries for transient render failures
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    retry_backoff: float = Field(default=DEFAULT_RETRY_BACKOFF_SECONDS, ge=0)

    # URL filtering
    url_include_patterns: Tuple[str, ...] = ()
    url_exclude_patterns: Tuple[str, ...] = ()

    # Scope
    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, gt=0)
    max_pages: Optional[int] = Field(default=None, gt=0)
    respect_robots_txt: bool = True

    # Browser
    headless: bool = True
    user_agent: Optional[str] = None
    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = "networkidle"

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as e:
            messages = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            raise ConfigError(
                "Invalid crawl configuration: " + "; ".join(messages),
                errors=messages,
            ) from e

    @field_validator("resource_priorities")
    @classmethod
    def _check_priorities(cls, value: Dict[str, float]) -> Dict[str, float]:
        for resource_type, weight in value.items():
            if not 0 <= weight <= 1:
                raise ValueError(
                    f"priority for '{resource_type}' must be within [0, 1], got {weight}"
                )
        merged = dict(DEFAULT_RESOURCE_PRIORITIES)
        merged.update(value)
        return merged

    @field_validator("url_include_patterns", "url_exclude_patterns", mode="before")
    @classmethod
    def _split_patterns(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(p.strip() for p in value.split(",") if p.strip())
        return value

    @field_validator("url_include_patterns", "url_exclude_patterns")
    @classmethod
    def _check_patterns(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        for pattern in value:
            if not pattern:
                raise ValueError("URL patterns must be non-empty")
            try:
                _compile_pattern(pattern)
            except re.error as e:
                raise ValueError(f"invalid regular expression {pattern!r}: {e}")
        return value

    # ------------------------------------------------------------------
    # Derived behavior
    # ------------------------------------------------------------------

    def priority_for(self, resource_type: str) -> float:
        """Weight of a resource class, falling back to the 'other' weight."""
        return self.resource_priorities.get(
            resource_type, self.resource_priorities["other"]
        )

    def should_abort_resource(self, resource_type: str) -> bool:
        """Whether a sub-resource request should be aborted during rendering."""
        if resource_type == PRIMARY_RESOURCE_TYPE:
            return False
        return self.priority_for(resource_type) < self.low_priority_threshold

    def allows_url(self, url: str) -> bool:
        """Apply exclude patterns, then include patterns if any are configured."""
        if any(pattern_matches(p, url) for p in self.url_exclude_patterns):
            return False
        if self.url_include_patterns:
            return any(pattern_matches(p, url) for p in self.url_include_patterns)
        return True

    @property
    def min_request_interval(self) -> float:
        """Minimum seconds between two requests."""
        return 1.0 / self.max_requests_per_second

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def preset(cls, name: str, **overrides: Any) -> "CrawlConfig":
        """Build a config from a named preset.

        Args:
            name: One of 'small', 'medium', 'large'
            **overrides: Fields that replace preset values

        Returns:
            Validated CrawlConfig
        """
        if name not in PRESETS:
            raise ConfigError(
                f"Unknown preset '{name}'. Expected one of: {', '.join(PRESETS)}"
            )
        data = dict(PRESETS[name])
        data.update(overrides)
        return cls(**data)

    @classmethod
    def for_small_sites(cls, **overrides: Any) -> "CrawlConfig":
        """Configuration for small sites (<10K pages)."""
        return cls.preset("small", **overrides)

    @classmethod
    def for_medium_sites(cls, **overrides: Any) -> "CrawlConfig":
        """Configuration for medium sites (10K-100K pages)."""
        return cls.preset("medium", **overrides)

    @classmethod
    def for_large_sites(cls, **overrides: Any) -> "CrawlConfig":
        """Configuration for very large sites (100K+ pages)."""
        return cls.preset("large", **overrides)

    @classmethod
    def from_env(cls, prefix: str = "SEOCRAWL_") -> "CrawlConfig":
        """Load configuration from environment variables.

        Variables are named after the fields with a prefix,
        e.g. SEOCRAWL_MAX_CONCURRENCY=8. SEOCRAWL_PRESET selects a base preset.
        Values that fail validation raise ConfigError.

        Returns:
            CrawlConfig with values from environment
        """
        data: Dict[str, Any] = {}
        for field_name in cls.model_fields:
            if field_name == "resource_priorities":
                continue
            env_value = os.getenv(f"{prefix}{field_name.upper()}")
            if env_value is not None:
                data[field_name] = env_value

        if "user_agent" not in data and os.getenv("USER_AGENT"):
            data["user_agent"] = os.getenv("USER_AGENT")

        preset_name = os.getenv(f"{prefix}PRESET")
        if preset_name:
            return cls.preset(preset_name, **data)
        return cls(**data)

    @classmethod
    def from_file(cls, path: str) -> "CrawlConfig":
        """Load configuration from a YAML or JSON file.

        The file may hold the fields at the top level or under a 'crawl' key,
        plus an optional 'preset' name used as the base.

        Args:
            path: Path to the configuration file

        Returns:
            CrawlConfig with values from file
        """
        file_path = Path(path)
        if not file_path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(file_path, 'r') as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Could not parse {path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(f"Configuration file {path} must contain a mapping")

        data = dict(raw.get('crawl', raw))
        preset_name = data.pop('preset', None) or raw.get('preset')
        if preset_name:
            return cls.preset(preset_name, **data)
        return cls(**data)

    def to_dict(self) -> dict:
        """Convert configuration to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")
