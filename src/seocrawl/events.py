"""
Crawl lifecycle events.

The engine publishes a fixed set of event variants. Consumers register a
listener on the EventBus and dispatch on the event type, e.g.::

    def on_event(event):
        if isinstance(event, PageEvent):
            ...

    engine.events.subscribe(on_event)
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from seocrawl.models import PageRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageEvent:
    """A page record was produced (fetched, cached, or reused)."""
    url: str
    record: PageRecord
    from_cache: bool = False
    reused: bool = False
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class DiscoveredEvent:
    """New same-site URLs were added to the frontier."""
    parent_url: str
    new_urls: tuple[str, ...]
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ErrorEvent:
    """A URL failed to fetch or extract."""
    url: str
    cause: BaseException
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def message(self) -> str:
        return str(self.cause)


@dataclass(frozen=True)
class MemoryEvent:
    """A memory usage sample."""
    rss_mb: float
    limit_mb: float
    restarted: bool = False
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def over_limit(self) -> bool:
        return self.rss_mb > self.limit_mb


CrawlEvent = Union[PageEvent, DiscoveredEvent, ErrorEvent, MemoryEvent]

Listener = Callable[[CrawlEvent], Optional[Awaitable[Any]]]


class EventBus:
    """
    Fan-out of crawl events to registered listeners.

    Listeners may be plain functions or coroutine functions. A listener
    that raises is logged and skipped; it never interrupts the crawl.
    """

    def __init__(self):
        self._listeners: list[tuple[Listener, tuple[type, ...]]] = []

    def subscribe(
        self,
        listener: Listener,
        kinds: Optional[tuple[type, ...]] = None,
    ) -> Callable[[], None]:
        """
        Register a listener.

        Args:
            listener: Callable receiving each event
            kinds: Optional event classes to filter on (default: all)

        Returns:
            Function that removes the listener
        """
        entry = (listener, kinds or ())
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    async def emit(self, event: CrawlEvent) -> None:
        """Deliver an event to every matching listener."""
        for listener, kinds in list(self._listeners):
            if kinds and not isinstance(event, kinds):
                continue
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    f"Event listener {getattr(listener, '__name__', listener)!r} "
                    f"failed on {type(event).__name__}: {e}"
                )

    def __len__(self) -> int:
        return len(self._listeners)
