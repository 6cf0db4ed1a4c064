"""Data models for the crawl engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class UrlState(Enum):
    """Lifecycle of a normalized URL within one crawl run."""
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class CrawlState(Enum):
    """Lifecycle of a crawl engine."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class FrontierEntry:
    """A URL waiting for a worker."""
    url: str
    depth: int
    referrer: Optional[str] = None


@dataclass(frozen=True)
class SeoSignals:
    """On-page SEO signals extracted from a rendered page."""
    headings: dict[str, list[str]] = field(default_factory=dict)
    links: list[dict[str, Any]] = field(default_factory=list)
    images: list[dict[str, Any]] = field(default_factory=list)
    structured_data: list[Any] = field(default_factory=list)
    canonical: Optional[str] = None
    robots: Optional[str] = None
    word_count: int = 0
    has_breadcrumbs: bool = False

    @property
    def has_structured_data(self) -> bool:
        return bool(self.structured_data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "headings": self.headings,
            "links": self.links,
            "images": self.images,
            "structured_data": self.structured_data,
            "canonical": self.canonical,
            "robots": self.robots,
            "word_count": self.word_count,
            "has_breadcrumbs": self.has_breadcrumbs,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SeoSignals":
        return cls(
            headings=data.get("headings", {}),
            links=data.get("links", []),
            images=data.get("images", []),
            structured_data=data.get("structured_data", []),
            canonical=data.get("canonical"),
            robots=data.get("robots"),
            word_count=data.get("word_count", 0),
            has_breadcrumbs=data.get("has_breadcrumbs", False),
        )


@dataclass(frozen=True)
class AnalyzerPage:
    """Flat page shape consumed by downstream analyzers."""
    url: str
    content: str
    links: list[str]
    keywords: Optional[list[str]] = None


@dataclass(frozen=True)
class PageRecord:
    """Data extracted for one fetched URL.

    Created once per fetched URL and never mutated afterwards. A record
    reused from the previous crawl keeps that crawl's depth and referrer;
    one whose stored depth exceeds the current max_depth is fetched again
    instead of reused.
    """

    url: str
    title: Optional[str] = None
    meta_description: Optional[str] = None
    status_code: Optional[int] = None
    headers: dict[str, str] = field(default_factory=dict)
    content_hash: str = ""
    byte_size: int = 0
    depth: int = 0
    referrer: Optional[str] = None
    fetched_at: datetime = field(default_factory=datetime.now)
    metadata_tags: dict[str, str] = field(default_factory=dict)
    performance_metrics: dict[str, Any] = field(default_factory=dict)
    seo_signals: SeoSignals = field(default_factory=SeoSignals)
    content_text: str = ""

    @property
    def last_modified(self) -> Optional[str]:
        return self.headers.get("last-modified")

    @property
    def etag(self) -> Optional[str]:
        return self.headers.get("etag")

    @property
    def links(self) -> list[str]:
        """Absolute hrefs of every outbound link on the page."""
        return [link["href"] for link in self.seo_signals.links if link.get("href")]

    @property
    def keywords(self) -> Optional[list[str]]:
        raw = self.metadata_tags.get("keywords")
        if not raw:
            return None
        return [k.strip() for k in raw.split(",") if k.strip()]

    def to_analyzer_page(self) -> AnalyzerPage:
        """Convert to the shape downstream analyzers expect."""
        return AnalyzerPage(
            url=self.url,
            content=self.content_text,
            links=self.links,
            keywords=self.keywords,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "url": self.url,
            "title": self.title,
            "meta_description": self.meta_description,
            "status_code": self.status_code,
            "headers": self.headers,
            "content_hash": self.content_hash,
            "byte_size": self.byte_size,
            "depth": self.depth,
            "referrer": self.referrer,
            "fetched_at": self.fetched_at.isoformat(),
            "metadata_tags": self.metadata_tags,
            "performance_metrics": self.performance_metrics,
            "seo_signals": self.seo_signals.to_dict(),
            "content_text": self.content_text,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PageRecord":
        """Deserialize from dictionary."""
        return cls(
            url=data["url"],
            title=data.get("title"),
            meta_description=data.get("meta_description"),
            status_code=data.get("status_code"),
            headers=data.get("headers", {}),
            content_hash=data.get("content_hash", ""),
            byte_size=data.get("byte_size", 0),
            depth=data.get("depth", 0),
            referrer=data.get("referrer"),
            fetched_at=datetime.fromisoformat(data["fetched_at"]),
            metadata_tags=data.get("metadata_tags", {}),
            performance_metrics=data.get("performance_metrics", {}),
            seo_signals=SeoSignals.from_dict(data.get("seo_signals", {})),
            content_text=data.get("content_text", ""),
        )


@dataclass
class CrawlStats:
    """Counters for a single crawl run.

    A fresh instance is created at the start of every run.
    """

    pages_fetched: int = 0
    urls_discovered: int = 0
    errors: int = 0
    pages_from_cache: int = 0
    pages_reused: int = 0
    retries: int = 0
    browser_restarts: int = 0
    urls_disallowed: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    cache_stats: dict[str, Any] = field(default_factory=dict)
    incremental_stats: dict[str, Any] = field(default_factory=dict)
    memory_mb: Optional[float] = None

    @property
    def duration(self) -> float:
        """Run duration in seconds (0 until the run has started)."""
        if self.started_at is None:
            return 0.0
        end = self.finished_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "pages_fetched": self.pages_fetched,
            "urls_discovered": self.urls_discovered,
            "errors": self.errors,
            "pages_from_cache": self.pages_from_cache,
            "pages_reused": self.pages_reused,
            "retries": self.retries,
            "browser_restarts": self.browser_restarts,
            "urls_disallowed": self.urls_disallowed,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration, 3),
            "cache_stats": self.cache_stats,
            "incremental_stats": self.incremental_stats,
            "memory_mb": self.memory_mb,
        }


@dataclass
class CrawlResult:
    """Everything a completed run hands back to the caller."""

    seed_url: str
    site_id: str
    pages: dict[str, PageRecord]
    stats: CrawlStats
    failed_urls: dict[str, str] = field(default_factory=dict)
    snapshot: Any = None  # IncrementalSnapshot; opaque to callers
    persistence_error: Optional[str] = None
    stopped: bool = False

    def analyzer_pages(self) -> list[AnalyzerPage]:
        """Pages in the flat shape used by duplicate-content and link analyzers."""
        return [record.to_analyzer_page() for record in self.pages.values()]

    def to_dict(self) -> dict[str, Any]:
        return {
            "seed_url": self.seed_url,
            "site_id": self.site_id,
            "stopped": self.stopped,
            "persistence_error": self.persistence_error,
            "stats": self.stats.to_dict(),
            "failed_urls": self.failed_urls,
            "pages": {url: record.to_dict() for url, record in self.pages.items()},
        }
