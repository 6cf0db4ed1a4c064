"""Concurrent crawl engine.

Drains a shared frontier with a fixed pool of asyncio workers. Each URL
is claimed exactly once; the worker consults the incremental state, then
the page cache, and only then renders the page through the shared
browser session, subject to the global rate limiter.

All frontier and membership bookkeeping happens on the event loop thread
between awaits, so the check-and-claim of a URL cannot interleave with
another worker.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Set

import psutil

from seocrawl.cache_store import CacheSweeper, PageCache
from seocrawl.config import CrawlConfig
from seocrawl.events import DiscoveredEvent, ErrorEvent, EventBus, MemoryEvent, PageEvent
from seocrawl.exceptions import (
    BusyError,
    ExtractionError,
    FetchError,
    InvalidSeedError,
    PersistenceError,
    RenderServiceError,
)
from seocrawl.extraction import content_hash
from seocrawl.incremental import Fingerprint, FingerprintProbe, IncrementalStateTracker
from seocrawl.infrastructure.browser_session import BrowserSession
from seocrawl.infrastructure.memory import MemoryMonitor, process_tree_rss_mb
from seocrawl.infrastructure.rate_limiter import RateLimiter
from seocrawl.models import (
    CrawlResult,
    CrawlState,
    CrawlStats,
    FrontierEntry,
    PageRecord,
    SeoSignals,
    UrlState,
)
from seocrawl.rendering import RenderOptions, Renderer, RenderResult
from seocrawl.robots import RobotsPolicy, load_robots_policy
from seocrawl.urls import hostname_of, is_same_host, normalize_url, site_id_for

logger = logging.getLogger(__name__)

ProbeFactory = Callable[[str, Optional[str]], FingerprintProbe]
RobotsLoader = Callable[[str, Optional[str]], Awaitable[RobotsPolicy]]


class CrawlEngine:
    """Crawls one site at a time and returns a URL -> PageRecord map.

    Usage:
        async with CrawlEngine(CrawlConfig.for_small_sites()) as engine:
            engine.events.subscribe(print)
            result = await engine.crawl("https://example.com/")
    """

    def __init__(
        self,
        config: Optional[CrawlConfig] = None,
        renderer: Optional[Renderer] = None,
        cache: Optional[PageCache] = None,
        tracker: Optional[IncrementalStateTracker] = None,
        rate_limiter: Optional[RateLimiter] = None,
        probe_factory: Optional[ProbeFactory] = None,
        memory_sampler: Callable[[], float] = process_tree_rss_mb,
        robots_loader: Optional[RobotsLoader] = None,
    ):
        """Initialize the crawl engine.

        Args:
            config: Crawl parameters (defaults to CrawlConfig())
            renderer: Page renderer (defaults to a Playwright BrowserSession)
            cache: Page cache (defaults to a file cache from config)
            tracker: Incremental state tracker (defaults to one from config)
            rate_limiter: Shared request gate (defaults to one from config)
            probe_factory: Builds the fingerprint probe for incremental runs
            memory_sampler: Returns current memory usage in MB
            robots_loader: Loads the robots.txt policy for the seed's origin
        """
        self.config = config or CrawlConfig()

        self.renderer = renderer or BrowserSession(
            headless=self.config.headless,
            user_agent=self.config.user_agent,
        )
        self.cache = cache or PageCache(
            Path(self.config.cache_directory),
            ttl_seconds=self.config.cache_ttl,
            enabled=self.config.cache_enabled,
        )
        self.tracker = tracker or IncrementalStateTracker(
            Path(self.config.incremental_directory),
            strategy=self.config.incremental_strategy,
            enabled=self.config.incremental_enabled,
        )
        self.rate_limiter = rate_limiter or RateLimiter(self.config.max_requests_per_second)
        self.events = EventBus()

        self._probe_factory = probe_factory or (
            lambda strategy, user_agent: FingerprintProbe(strategy, user_agent=user_agent)
        )
        self._memory_sampler = memory_sampler
        self._robots_loader = robots_loader or load_robots_policy
        self._render_options = RenderOptions.from_config(self.config)

        self._state = CrawlState.IDLE
        self._renderer_started = False
        self._restart_lock = asyncio.Lock()

        self._reset_run_state()

    def _reset_run_state(self) -> None:
        self.stats = CrawlStats()
        self._frontier: asyncio.Queue[FrontierEntry] = asyncio.Queue()
        self._url_states: Dict[str, UrlState] = {}
        self._pages: Dict[str, PageRecord] = {}
        self._failed: Dict[str, str] = {}
        self._hints: Dict[str, Fingerprint] = {}
        self._host = ""
        self._claimed = 0
        self._pages_since_sample = 0
        self._stop_requested = False
        self._fatal_error: Optional[BaseException] = None
        self._probe: Optional[FingerprintProbe] = None
        self._robots = RobotsPolicy.allow_all()
        self._disallowed: Set[str] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "CrawlEngine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def state(self) -> CrawlState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == CrawlState.RUNNING

    def request_stop(self) -> None:
        """Stop taking new URLs; in-flight fetches are allowed to finish."""
        if self.is_running and not self._stop_requested:
            logger.info("Stop requested; finishing in-flight pages")
        self._stop_requested = True

    async def close(self) -> None:
        """Release the renderer."""
        self.request_stop()
        if self._renderer_started:
            await self.renderer.close()
            self._renderer_started = False

    async def _ensure_renderer(self) -> None:
        if self._renderer_started:
            return
        try:
            await self.renderer.start()
        except RenderServiceError:
            raise
        except Exception as e:
            raise RenderServiceError(f"Rendering service failed to start: {e}") from e
        self._renderer_started = True

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def crawl(self, seed_url: str) -> CrawlResult:
        """Crawl a site starting from a seed URL.

        Args:
            seed_url: Absolute http(s) URL to start from

        Returns:
            CrawlResult with every PageRecord and aggregate statistics

        Raises:
            BusyError: A crawl is already running on this engine
            InvalidSeedError: The seed is not an http(s) URL
            RenderServiceError: The renderer could not be started or restarted
        """
        if self._state == CrawlState.RUNNING:
            raise BusyError("Crawler is already running")

        seed = normalize_url(seed_url)
        if seed is None:
            raise InvalidSeedError(f"Invalid seed URL: {seed_url!r}")

        self._state = CrawlState.RUNNING
        self._reset_run_state()
        self._host = hostname_of(seed)
        site_id = site_id_for(seed)
        self.stats.started_at = datetime.now()
        self.rate_limiter.reset()
        self.cache.reset_stats()

        sweeper = CacheSweeper(self.cache, self.config.cache_sweep_interval)
        monitor = MemoryMonitor(
            self.config.memory_sample_interval,
            self._on_memory_sample,
            sampler=self._memory_sampler,
        )

        logger.info(f"Starting crawl from: {seed}")
        logger.info(
            f"Max concurrency: {self.config.max_concurrency}, "
            f"max depth: {self.config.max_depth}, "
            f"rate limit: {self.config.max_requests_per_second} req/s"
        )

        try:
            await asyncio.to_thread(self.cache.initialize)
            await asyncio.to_thread(self.tracker.load, site_id)
            await self._ensure_renderer()

            if self.tracker.enabled:
                self._probe = self._probe_factory(
                    self.config.incremental_strategy, self.config.user_agent
                )

            if self.config.respect_robots_txt:
                await self.rate_limiter.wait()
                self._robots = await self._robots_loader(seed, self.config.user_agent)

            sweeper.start()
            monitor.start()

            if self._robots_allows(seed):
                self._enqueue(FrontierEntry(url=seed, depth=0, referrer=None))
            await self._run_workers()

            if self._fatal_error is not None:
                raise self._fatal_error

            result = await self._finish(seed, site_id)
            self._state = CrawlState.COMPLETED
            return result

        except BaseException:
            self._state = CrawlState.FAILED
            self.stats.finished_at = datetime.now()
            logger.error(f"Crawl failed for {seed}")
            raise
        finally:
            await monitor.stop()
            await sweeper.stop()
            if self._probe is not None:
                await self._probe.close()
                self._probe = None

    async def _run_workers(self) -> None:
        workers = [
            asyncio.create_task(self._worker(i))
            for i in range(self.config.max_concurrency)
        ]
        try:
            # Frontier empty and every worker idle
            await self._frontier.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

    async def _worker(self, worker_id: int) -> None:
        while True:
            entry = await self._frontier.get()
            try:
                if self._stop_requested or self._limit_reached():
                    continue
                if not self._claim(entry.url):
                    continue
                await self._process(entry)
            except RenderServiceError as e:
                logger.error(f"Worker {worker_id}: rendering service failed: {e}")
                if self._fatal_error is None:
                    self._fatal_error = e
                self.request_stop()
            except Exception as e:
                logger.exception(f"Worker {worker_id}: error after processing {entry.url}")
                self._url_states[entry.url] = UrlState.DONE
                await self._record_failure(entry.url, e)
            finally:
                self._frontier.task_done()

    def _robots_allows(self, url: str) -> bool:
        if self._robots.allows(url):
            return True
        if url not in self._disallowed:
            self._disallowed.add(url)
            self.stats.urls_disallowed += 1
            logger.warning(f"Skipping {url} (disallowed by robots.txt)")
        return False

    def _limit_reached(self) -> bool:
        return self.config.max_pages is not None and self._claimed >= self.config.max_pages

    def _claim(self, url: str) -> bool:
        """Move a URL to InProgress unless it is already InProgress or Done."""
        if self._url_states.get(url) in (UrlState.IN_PROGRESS, UrlState.DONE):
            return False
        self._url_states[url] = UrlState.IN_PROGRESS
        self._claimed += 1
        return True

    def _enqueue(self, entry: FrontierEntry) -> bool:
        """Add a URL to the frontier unless it has been seen this run."""
        if entry.url in self._url_states:
            return False
        self._url_states[entry.url] = UrlState.QUEUED
        self._frontier.put_nowait(entry)
        self.stats.urls_discovered += 1
        return True

    # ------------------------------------------------------------------
    # Per-URL processing
    # ------------------------------------------------------------------

    async def _process(self, entry: FrontierEntry) -> None:
        url = entry.url
        logger.info(f"[D{entry.depth}] Processing ({self._claimed}): {url}")

        try:
            record, source = await self._obtain_record(entry)
        except RenderServiceError:
            raise
        except (FetchError, ExtractionError) as e:
            await self._record_failure(url, e)
            return
        except Exception as e:
            logger.exception(f"Unexpected error processing {url}")
            await self._record_failure(url, e)
            return
        finally:
            self._url_states[url] = UrlState.DONE

        self._pages[url] = record
        await self.events.emit(PageEvent(
            url=url,
            record=record,
            from_cache=source == "cache",
            reused=source == "reused",
        ))
        await self._discover_links(entry, record)

    async def _obtain_record(self, entry: FrontierEntry) -> tuple[PageRecord, str]:
        url = entry.url

        if self.tracker.enabled:
            hints = Fingerprint()
            if self._probe is not None:
                await self.rate_limiter.wait()
                hints = await self._probe.probe(url)
            self._hints[url] = hints
            if not self.tracker.should_fetch(url, hints):
                previous = self.tracker.previous_record(url)
                if previous is not None and previous.depth <= self.config.max_depth:
                    self.stats.pages_reused += 1
                    logger.debug(f"Unchanged since last crawl: {url}")
                    return previous, "reused"
                if previous is not None:
                    logger.debug(f"Stored record for {url} is deeper than max_depth, refetching")

        cached = await self._cache_get(url)
        if cached is not None:
            self.stats.pages_from_cache += 1
            return replace(cached, depth=entry.depth, referrer=entry.referrer), "cache"

        record = await self._fetch(entry)
        await self._cache_set(url, record)
        return record, "fetched"

    async def _cache_get(self, url: str) -> Optional[PageRecord]:
        if not self.cache.enabled:
            return None
        try:
            return await asyncio.to_thread(self.cache.get, url)
        except Exception as e:
            logger.warning(f"Cache read failed for {url}, treating as miss: {e}")
            return None

    async def _cache_set(self, url: str, record: PageRecord) -> None:
        if not self.cache.enabled:
            return
        try:
            await asyncio.to_thread(self.cache.set, url, record)
        except Exception as e:
            logger.warning(f"Cache write failed for {url}: {e}")

    async def _fetch(self, entry: FrontierEntry) -> PageRecord:
        """Render a page, retrying transient failures."""
        url = entry.url
        attempt = 0

        while True:
            await self.rate_limiter.wait()
            try:
                result = await self.renderer.render(url, self._render_options)
                break
            except FetchError as e:
                if not e.retryable or attempt >= self.config.max_retries or self._stop_requested:
                    raise
                attempt += 1
                self.stats.retries += 1
                logger.info(
                    f"Will retry ({attempt}/{self.config.max_retries}) "
                    f"after {type(e).__name__}: {url}"
                )
                await asyncio.sleep(self.config.retry_backoff * attempt)
            finally:
                await self._count_rendered_page()

        self.stats.pages_fetched += 1
        return self._build_record(entry, result)

    def _build_record(self, entry: FrontierEntry, result: RenderResult) -> PageRecord:
        try:
            fields = result.extracted
            return PageRecord(
                url=entry.url,
                title=fields.title,
                meta_description=fields.meta_description,
                status_code=result.status_code,
                headers=dict(result.headers),
                content_hash=content_hash(result.html),
                byte_size=len(result.html.encode("utf-8")),
                depth=entry.depth,
                referrer=entry.referrer,
                fetched_at=datetime.now(),
                metadata_tags=dict(fields.metadata_tags),
                performance_metrics=dict(result.performance_metrics),
                seo_signals=SeoSignals(
                    headings=fields.headings,
                    links=fields.links,
                    images=fields.images,
                    structured_data=fields.structured_data,
                    canonical=fields.canonical,
                    robots=fields.robots,
                    word_count=fields.word_count,
                    has_breadcrumbs=fields.has_breadcrumbs,
                ),
                content_text=fields.content_text,
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise ExtractionError(entry.url, f"Could not build page record: {e}", e) from e

    async def _record_failure(self, url: str, error: BaseException) -> None:
        self.stats.errors += 1
        self._failed[url] = str(error)[:500]
        logger.warning(f"Failed to process {url}: {error}")
        await self.events.emit(ErrorEvent(url=url, cause=error))

    async def _discover_links(self, entry: FrontierEntry, record: PageRecord) -> None:
        if entry.depth >= self.config.max_depth:
            return

        new_urls = []
        for href in record.links:
            normalized = normalize_url(href, base=entry.url)
            if normalized is None:
                continue
            if not is_same_host(normalized, self._host):
                continue
            if not self.config.allows_url(normalized):
                continue
            if not self._robots_allows(normalized):
                continue
            child = FrontierEntry(url=normalized, depth=entry.depth + 1, referrer=entry.url)
            if self._enqueue(child):
                new_urls.append(normalized)

        if new_urls:
            logger.debug(f"Discovered {len(new_urls)} new URLs on {entry.url}")
            await self.events.emit(DiscoveredEvent(parent_url=entry.url, new_urls=tuple(new_urls)))

    # ------------------------------------------------------------------
    # Memory management
    # ------------------------------------------------------------------

    async def _count_rendered_page(self) -> None:
        """Sample memory after every page_restart_threshold renders."""
        self._pages_since_sample += 1
        if self._pages_since_sample < self.config.page_restart_threshold:
            return
        self._pages_since_sample = 0

        try:
            usage = self._memory_sampler()
        except psutil.Error as e:
            logger.warning(f"Memory sample failed: {e}")
            return

        self.stats.memory_mb = round(usage, 1)
        restarted = False
        if usage > self.config.max_memory_mb:
            logger.warning(
                f"Memory usage is high ({usage:.0f}MB > {self.config.max_memory_mb:.0f}MB). "
                f"Restarting browser..."
            )
            await self._restart_renderer()
            restarted = True

        await self.events.emit(MemoryEvent(
            rss_mb=usage,
            limit_mb=self.config.max_memory_mb,
            restarted=restarted,
        ))

    async def _restart_renderer(self) -> None:
        async with self._restart_lock:
            try:
                await self.renderer.restart()
            except Exception as e:
                # The next crawl() must start a fresh renderer
                self._renderer_started = False
                if isinstance(e, RenderServiceError):
                    raise
                raise RenderServiceError(f"Rendering service failed to restart: {e}") from e
            self.stats.browser_restarts += 1
            logger.info("Browser restarted successfully")

    async def _on_memory_sample(self, usage: float) -> None:
        self.stats.memory_mb = round(usage, 1)
        await self.events.emit(MemoryEvent(rss_mb=usage, limit_mb=self.config.max_memory_mb))

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _finish(self, seed: str, site_id: str) -> CrawlResult:
        stopped = self._stop_requested
        self.stats.finished_at = datetime.now()
        self.stats.cache_stats = await asyncio.to_thread(self.cache.stats)
        self.stats.incremental_stats = self.tracker.stats()

        snapshot = None
        persistence_error = None
        if stopped:
            logger.info("Crawl was stopped early; incremental snapshot not replaced")
        else:
            snapshot = self.tracker.build_snapshot(site_id, self._pages, self._hints)
            try:
                await asyncio.to_thread(self.tracker.save, site_id, snapshot)
            except PersistenceError as e:
                logger.error(str(e))
                persistence_error = str(e)

        logger.info(f"\n{'=' * 60}")
        logger.info(
            f"Crawl completed: {len(self._pages)} pages "
            f"({self.stats.pages_fetched} fetched, {self.stats.pages_from_cache} cached, "
            f"{self.stats.pages_reused} unchanged) in {self.stats.duration:.1f}s"
        )
        if self._failed:
            logger.info(f"Failed pages: {len(self._failed)}")
        logger.info(f"{'=' * 60}\n")

        return CrawlResult(
            seed_url=seed,
            site_id=site_id,
            pages=dict(self._pages),
            stats=self.stats,
            failed_urls=dict(self._failed),
            snapshot=snapshot,
            persistence_error=persistence_error,
            stopped=stopped,
        )
