# src/seocrawl/constants.py
"""Centralized constants for the crawl engine.

This module contains magic numbers and default values that are used across
multiple modules. For per-crawl settings, see config.py and CrawlConfig.
"""

# =============================================================================
# Concurrency / Rate Limiting
# =============================================================================

# Default number of concurrent workers
DEFAULT_MAX_CONCURRENCY = 5

# Default upper bound on requests per second (shared across all workers)
DEFAULT_MAX_REQUESTS_PER_SECOND = 10.0

# Default maximum crawl depth (seed is depth 0)
DEFAULT_MAX_DEPTH = 10


# =============================================================================
# Resource Prioritization
# =============================================================================

# Weight assigned to each sub-resource class (0 = never needed, 1 = essential)
DEFAULT_RESOURCE_PRIORITIES = {
    "document": 1.0,
    "script": 0.8,
    "stylesheet": 0.8,
    "image": 0.5,
    "media": 0.3,
    "font": 0.3,
    "other": 0.2,
}

# Resource classes with a weight below this are aborted during rendering
LOW_PRIORITY_THRESHOLD = 0.3

# Resource class that is never aborted
PRIMARY_RESOURCE_TYPE = "document"


# =============================================================================
# Caching
# =============================================================================

DEFAULT_CACHE_DIRECTORY = "./cache"

# Cache time-to-live in seconds (24 hours)
DEFAULT_CACHE_TTL_SECONDS = 86400

# Interval between sweeps of expired cache entries (1 hour)
CACHE_SWEEP_INTERVAL_SECONDS = 3600


# =============================================================================
# Incremental Crawling
# =============================================================================

DEFAULT_INCREMENTAL_DIRECTORY = "./incremental"

# File name of the per-site snapshot
SNAPSHOT_FILENAME = "site-data.json"

# Snapshot format version
SNAPSHOT_VERSION = 1

# Rough seconds saved per unchanged page (used for reporting only)
ESTIMATED_SECONDS_PER_PAGE = 2

# Timeout for fingerprint probe requests (seconds)
PROBE_TIMEOUT_SECONDS = 10.0


# =============================================================================
# Memory Management
# =============================================================================

DEFAULT_MAX_MEMORY_MB = 2048

# Number of fetched pages between memory samples
DEFAULT_PAGE_RESTART_THRESHOLD = 20

# Interval of the background memory monitor (seconds)
MEMORY_SAMPLE_INTERVAL_SECONDS = 30.0

# Longest a restart waits for in-flight fetches before retiring the session
SESSION_DRAIN_TIMEOUT_SECONDS = 30.0


# =============================================================================
# Timeouts / Retries
# =============================================================================

# Navigation timeout in milliseconds
DEFAULT_NAVIGATION_TIMEOUT_MS = 30000

# Sub-request timeout in milliseconds
DEFAULT_REQUEST_TIMEOUT_MS = 15000

DEFAULT_MAX_RETRIES = 1

# Seconds added to the backoff for each successive retry
DEFAULT_RETRY_BACKOFF_SECONDS = 1.0

# Timeout for the robots.txt request (seconds)
ROBOTS_TIMEOUT_SECONDS = 5.0


# =============================================================================
# Page Records
# =============================================================================

# Response headers kept on each PageRecord
RECORDED_HEADERS = (
    "content-type",
    "content-length",
    "last-modified",
    "etag",
    "cache-control",
    "x-robots-tag",
    "location",
    "server",
)

DEFAULT_USER_AGENT = "SEOCrawl-Bot/1.0"
