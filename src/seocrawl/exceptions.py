"""Exception hierarchy for the crawl engine.

Only orchestration-level errors abort a run. Page-level errors
(FetchError, ExtractionError) are recorded and surfaced as events,
and CacheError never leaves the cache store.
"""

from typing import Optional


class CrawlerError(Exception):
    """Base class for all crawler errors."""


class ConfigError(CrawlerError):
    """Raised when crawl parameters fail validation."""

    def __init__(self, message: str, errors: Optional[list] = None):
        self.errors = errors or []
        super().__init__(message)


class BusyError(CrawlerError):
    """Raised when a crawl is started while another is running on the same engine."""


class RenderServiceError(CrawlerError):
    """Raised when the rendering service cannot be started or restarted."""


class FetchError(CrawlerError):
    """A single URL could not be fetched or navigated."""

    retryable = False

    def __init__(self, url: str, message: str, cause: Optional[BaseException] = None):
        self.url = url
        self.cause = cause
        super().__init__(f"{message} ({url})")


class RenderTimeoutError(FetchError):
    """Navigation or a sub-request exceeded its timeout."""

    retryable = True


class NetworkError(FetchError):
    """Connection, DNS, or protocol failure while loading a page."""

    retryable = True


class SessionRetiredError(FetchError):
    """The browser session was closed underneath an in-flight fetch."""

    retryable = True


class ExtractionError(CrawlerError):
    """The page loaded but its data could not be extracted."""

    def __init__(self, url: str, message: str, cause: Optional[BaseException] = None):
        self.url = url
        self.cause = cause
        super().__init__(f"{message} ({url})")


class CacheError(CrawlerError):
    """A cache entry could not be read or written."""


class PersistenceError(CrawlerError):
    """The incremental snapshot could not be saved."""

    def __init__(self, site_id: str, message: str):
        self.site_id = site_id
        super().__init__(message)


class InvalidSeedError(CrawlerError):
    """The seed URL is not an absolute http(s) URL."""
