"""
Swappable browser session.

A single Playwright browser shared by every crawl worker. Workers borrow
the session for one fetch at a time (each fetch gets its own isolated
context and page). A restart blocks new borrows, waits for outstanding
ones to drain, then closes the browser and launches a replacement.
Fetches still running against a retired browser fail with
SessionRetiredError instead of crashing the crawl.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from playwright.async_api import (
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from seocrawl.constants import (
    PRIMARY_RESOURCE_TYPE,
    RECORDED_HEADERS,
    SESSION_DRAIN_TIMEOUT_SECONDS,
)
from seocrawl.exceptions import (
    ExtractionError,
    NetworkError,
    RenderServiceError,
    RenderTimeoutError,
    SessionRetiredError,
)
from seocrawl.extraction import NAVIGATION_TIMING_SCRIPT, extract_fields
from seocrawl.rendering import RenderOptions, RenderResult

logger = logging.getLogger(__name__)

# Substrings of Playwright error messages that mean the browser went away
_CLOSED_MARKERS = ("target closed", "browser has been closed", "context closed", "has been closed")


@dataclass
class SessionStatus:
    """Current status of the browser session."""
    started: bool
    generation: int
    active_borrows: int
    total_renders: int
    total_errors: int
    restarts: int
    uptime_seconds: float


class BrowserSession:
    """
    Playwright-backed renderer with safe hot-swap.

    Usage:
        session = BrowserSession(headless=True)
        await session.start()
        result = await session.render(url, options)
        await session.restart()   # e.g. under memory pressure
        await session.close()
    """

    def __init__(
        self,
        headless: bool = True,
        user_agent: str | None = None,
        drain_timeout: float = SESSION_DRAIN_TIMEOUT_SECONDS,
    ):
        """
        Initialize browser session.

        Args:
            headless: Run browser in headless mode
            user_agent: Custom user agent string
            drain_timeout: Seconds a restart waits for in-flight fetches
        """
        self.headless = headless
        self.user_agent = user_agent
        self.drain_timeout = drain_timeout

        self._playwright = None
        self._browser = None
        self._generation = 0
        self._active_borrows = 0
        self._swapping = False
        self._condition = asyncio.Condition()
        self._restart_lock = asyncio.Lock()
        self._started = False
        self._start_time: datetime | None = None
        self._total_renders = 0
        self._total_errors = 0
        self._restarts = 0

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        """
        Launch Playwright and the browser.

        Raises:
            RenderServiceError: If the browser cannot be launched
        """
        if self._started:
            return

        try:
            self._playwright = await async_playwright().start()
            await self._launch_browser()
        except Exception as e:
            await self._stop_playwright()
            raise RenderServiceError(f"Failed to start browser: {e}") from e

        self._start_time = datetime.now()
        self._started = True
        logger.info(f"Browser session started (headless={self.headless})")

    async def _launch_browser(self) -> None:
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        self._generation += 1
        logger.debug(f"Launched browser generation {self._generation}")

    async def _close_browser(self) -> None:
        if self._browser:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None

    async def _stop_playwright(self) -> None:
        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
            self._playwright = None

    async def close(self) -> None:
        """Shut the session down gracefully."""
        if not self._started:
            return

        await self._close_browser()
        await self._stop_playwright()
        self._started = False
        logger.info("Browser session closed")

    async def restart(self) -> None:
        """
        Replace the browser with a fresh one.

        New borrows wait until the swap completes. Outstanding borrows get
        up to drain_timeout seconds to finish; anything still running after
        that fails with SessionRetiredError.

        Raises:
            RenderServiceError: If the replacement browser cannot be launched
        """
        if not self._started:
            raise RenderServiceError("Browser session not started. Call start() first.")

        async with self._restart_lock:
            async with self._condition:
                self._swapping = True
                try:
                    await asyncio.wait_for(
                        self._condition.wait_for(lambda: self._active_borrows == 0),
                        timeout=self.drain_timeout,
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Retiring browser with {self._active_borrows} fetches still in flight"
                    )

            try:
                await self._close_browser()
                await self._launch_browser()
                self._restarts += 1
                logger.info(f"Browser restarted (generation {self._generation})")
            except Exception as e:
                await self._stop_playwright()
                self._started = False
                raise RenderServiceError(f"Failed to relaunch browser: {e}") from e
            finally:
                async with self._condition:
                    self._swapping = False
                    self._condition.notify_all()

    @asynccontextmanager
    async def acquire(self):
        """
        Borrow the browser for one fetch.

        Usage:
            async with session.acquire() as (context, page, generation):
                await page.goto(url)

        Yields:
            Tuple of (BrowserContext, Page, generation)
        """
        if not self._started:
            raise RenderServiceError("Browser session not started. Call start() first.")

        async with self._condition:
            await self._condition.wait_for(lambda: not self._swapping)
            browser = self._browser
            if browser is None:
                raise RenderServiceError("Browser session has no running browser")
            self._active_borrows += 1
            generation = self._generation

        context = None
        page = None
        try:
            context_options: dict[str, Any] = {"ignore_https_errors": True}
            if self.user_agent:
                context_options["user_agent"] = self.user_agent
            context = await browser.new_context(**context_options)
            page = await context.new_page()
            yield context, page, generation
        finally:
            for closable in (page, context):
                if closable is not None:
                    try:
                        await closable.close()
                    except Exception:
                        pass  # Browser may already be retired
            async with self._condition:
                self._active_borrows -= 1
                self._condition.notify_all()

    def _is_retired(self, generation: int) -> bool:
        return generation != self._generation or self._browser is None

    async def render(self, url: str, options: RenderOptions) -> RenderResult:
        """
        Load a URL in a fresh page and extract its fields.

        Args:
            url: URL to render
            options: Timeouts and resource filter

        Returns:
            RenderResult for the page

        Raises:
            RenderTimeoutError: Navigation timed out
            NetworkError: Connection or protocol failure
            SessionRetiredError: The browser was replaced mid-fetch
            ExtractionError: The page loaded but could not be parsed
        """
        self._total_renders += 1
        generation = self._generation
        aborted = 0

        async def route_handler(route):
            nonlocal aborted
            resource_type = route.request.resource_type
            try:
                if (
                    resource_type != PRIMARY_RESOURCE_TYPE
                    and options.resource_filter is not None
                    and options.resource_filter(resource_type)
                ):
                    aborted += 1
                    await route.abort()
                else:
                    await route.continue_()
            except PlaywrightError:
                pass  # Page closed while the request was pending

        try:
            async with self.acquire() as (context, page, generation):
                page.set_default_navigation_timeout(options.navigation_timeout)
                page.set_default_timeout(options.request_timeout)
                await page.route("**/*", route_handler)

                response = await page.goto(
                    url,
                    wait_until=options.wait_until,
                    timeout=options.navigation_timeout,
                )
                html = await page.content()
                final_url = page.url

                status_code = response.status if response else None
                headers: dict[str, str] = {}
                if response:
                    all_headers = await response.all_headers()
                    headers = {
                        name.lower(): value
                        for name, value in all_headers.items()
                        if name.lower() in RECORDED_HEADERS
                    }

                performance_metrics = await self._collect_timing(page)

        except PlaywrightTimeoutError as e:
            self._total_errors += 1
            raise RenderTimeoutError(url, f"Navigation timed out after {options.navigation_timeout}ms", e) from e
        except PlaywrightError as e:
            self._total_errors += 1
            message = str(e).lower()
            if self._is_retired(generation) or any(m in message for m in _CLOSED_MARKERS):
                raise SessionRetiredError(url, "Browser session was retired during fetch", e) from e
            raise NetworkError(url, f"Navigation failed: {e}", e) from e

        try:
            extracted = extract_fields(html, final_url or url)
        except Exception as e:
            self._total_errors += 1
            raise ExtractionError(url, f"Could not extract page fields: {e}", e) from e

        return RenderResult(
            url=url,
            html=html,
            status_code=status_code,
            headers=headers,
            extracted=extracted,
            performance_metrics=performance_metrics,
            final_url=final_url,
            aborted_requests=aborted,
        )

    async def _collect_timing(self, page) -> dict[str, Any]:
        try:
            return await page.evaluate(NAVIGATION_TIMING_SCRIPT) or {}
        except PlaywrightError as e:
            logger.debug(f"Could not collect navigation timing: {e}")
            return {}

    def get_status(self) -> SessionStatus:
        """Get current session status."""
        uptime = 0.0
        if self._start_time:
            uptime = (datetime.now() - self._start_time).total_seconds()

        return SessionStatus(
            started=self._started,
            generation=self._generation,
            active_borrows=self._active_borrows,
            total_renders=self._total_renders,
            total_errors=self._total_errors,
            restarts=self._restarts,
            uptime_seconds=uptime,
        )

    @property
    def generation(self) -> int:
        """Counter incremented each time a browser is launched."""
        return self._generation

    @property
    def is_started(self) -> bool:
        """Whether the session has been started."""
        return self._started
