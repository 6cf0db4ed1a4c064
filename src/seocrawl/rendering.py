"""
Rendering service contract.

The engine talks to the page renderer only through the Renderer protocol,
so a Playwright browser, a plain HTTP client, or a test double can sit
behind it.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from seocrawl.config import CrawlConfig
from seocrawl.extraction import ExtractedFields

# Returns True when a sub-resource request of the given type should be aborted
ResourceFilter = Callable[[str], bool]


@dataclass(frozen=True)
class RenderOptions:
    """Per-request rendering options."""
    navigation_timeout: int  # ms
    request_timeout: int  # ms
    resource_filter: Optional[ResourceFilter] = None
    wait_until: str = "networkidle"

    @classmethod
    def from_config(cls, config: CrawlConfig) -> "RenderOptions":
        return cls(
            navigation_timeout=config.navigation_timeout,
            request_timeout=config.request_timeout,
            resource_filter=config.should_abort_resource,
            wait_until=config.wait_until,
        )


@dataclass
class RenderResult:
    """What the renderer hands back for one URL."""
    url: str
    html: str
    status_code: Optional[int]
    headers: dict[str, str]
    extracted: ExtractedFields
    performance_metrics: dict[str, Any] = field(default_factory=dict)
    final_url: Optional[str] = None
    aborted_requests: int = 0


@runtime_checkable
class Renderer(Protocol):
    """Capability the crawl engine needs from a page renderer.

    ``render`` raises RenderTimeoutError on timeouts, NetworkError on
    connection failures, and SessionRetiredError when the session was
    swapped out mid-fetch. ``start`` and ``restart`` raise
    RenderServiceError when the underlying service cannot be launched.
    """

    async def start(self) -> None: ...

    async def restart(self) -> None: ...

    async def close(self) -> None: ...

    async def render(self, url: str, options: RenderOptions) -> RenderResult: ...
