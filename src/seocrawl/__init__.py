"""Concurrent SEO crawl engine with page caching and incremental recrawls."""

__version__ = "0.1.0"

from seocrawl.config import CrawlConfig, PRESETS, settings
from seocrawl.engine import CrawlEngine
from seocrawl.events import (
    CrawlEvent,
    DiscoveredEvent,
    ErrorEvent,
    EventBus,
    MemoryEvent,
    PageEvent,
)
from seocrawl.exceptions import (
    BusyError,
    CacheError,
    ConfigError,
    CrawlerError,
    ExtractionError,
    FetchError,
    InvalidSeedError,
    NetworkError,
    PersistenceError,
    RenderServiceError,
    RenderTimeoutError,
    SessionRetiredError,
)
from seocrawl.models import (
    AnalyzerPage,
    CrawlResult,
    CrawlState,
    CrawlStats,
    FrontierEntry,
    PageRecord,
    SeoSignals,
    UrlState,
)
from seocrawl.cache_store import PageCache
from seocrawl.incremental import (
    Fingerprint,
    FingerprintProbe,
    IncrementalSnapshot,
    IncrementalStateTracker,
)
from seocrawl.rendering import Renderer, RenderOptions, RenderResult
from seocrawl.robots import RobotsPolicy, load_robots_policy

__all__ = [
    "__version__",
    # Configuration
    "CrawlConfig",
    "PRESETS",
    "settings",
    # Engine
    "CrawlEngine",
    # Events
    "CrawlEvent",
    "DiscoveredEvent",
    "ErrorEvent",
    "EventBus",
    "MemoryEvent",
    "PageEvent",
    # Errors
    "BusyError",
    "CacheError",
    "ConfigError",
    "CrawlerError",
    "ExtractionError",
    "FetchError",
    "InvalidSeedError",
    "NetworkError",
    "PersistenceError",
    "RenderServiceError",
    "RenderTimeoutError",
    "SessionRetiredError",
    # Models
    "AnalyzerPage",
    "CrawlResult",
    "CrawlState",
    "CrawlStats",
    "FrontierEntry",
    "PageRecord",
    "SeoSignals",
    "UrlState",
    # Storage
    "PageCache",
    "Fingerprint",
    "FingerprintProbe",
    "IncrementalSnapshot",
    "IncrementalStateTracker",
    # Rendering
    "Renderer",
    "RenderOptions",
    "RenderResult",
    # robots.txt
    "RobotsPolicy",
    "load_robots_policy",
]
