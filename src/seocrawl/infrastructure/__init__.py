"""
Infrastructure Package.

Provides the shared browser session, request rate limiting, and memory
sampling used by the crawl engine.
"""

from .browser_session import BrowserSession, SessionStatus
from .memory import MemoryMonitor, process_tree_rss_mb
from .rate_limiter import RateLimiter, RateLimitMetrics

__all__ = [
    # Browser Session
    "BrowserSession",
    "SessionStatus",
    # Rate Limiter
    "RateLimiter",
    "RateLimitMetrics",
    # Memory
    "MemoryMonitor",
    "process_tree_rss_mb",
]
