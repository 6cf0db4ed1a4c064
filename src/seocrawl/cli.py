"""Command line entry point: crawl a site and write the records as JSON."""

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path

from seocrawl.config import PRESETS, CrawlConfig, settings
from seocrawl.engine import CrawlEngine
from seocrawl.events import ErrorEvent, MemoryEvent, PageEvent
from seocrawl.exceptions import ConfigError, CrawlerError
from seocrawl.logging_config import setup_logging


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="seocrawl",
        description="Concurrent SEO crawler with caching and incremental recrawls"
    )
    parser.add_argument("url", help="Seed URL to crawl")
    parser.add_argument(
        "--preset", choices=sorted(PRESETS),
        help="Base configuration preset (ignored with --config; set 'preset' in the file)"
    )
    parser.add_argument(
        "--config", type=str, metavar="FILE",
        help="YAML or JSON configuration file"
    )
    parser.add_argument(
        "--max-depth", type=int, default=None,
        help="Maximum link depth from the seed"
    )
    parser.add_argument(
        "--max-pages", type=int, default=None,
        help="Stop after this many pages"
    )
    parser.add_argument(
        "--concurrency", type=int, default=None,
        help="Number of concurrent workers"
    )
    parser.add_argument(
        "--rps", type=float, default=None,
        help="Maximum requests per second"
    )
    parser.add_argument(
        "--no-cache", action="store_true",
        help="Disable the page cache"
    )
    parser.add_argument(
        "--incremental", action="store_true",
        help="Skip pages unchanged since the previous crawl"
    )
    parser.add_argument(
        "--strategy", choices=["lastModified", "etag", "contentHash"], default=None,
        help="Change detection strategy for incremental crawls"
    )
    parser.add_argument(
        "--include", action="append", default=None, metavar="PATTERN",
        help="Only crawl URLs matching this pattern (repeatable; 're:' prefix for regex)"
    )
    parser.add_argument(
        "--exclude", action="append", default=None, metavar="PATTERN",
        help="Never crawl URLs matching this pattern (repeatable; 're:' prefix for regex)"
    )
    parser.add_argument(
        "--ignore-robots", action="store_true",
        help="Ignore robots.txt restrictions"
    )
    parser.add_argument(
        "--headed", action="store_true",
        help="Show the browser window"
    )
    parser.add_argument(
        "--output", "-o", type=str, metavar="FILE",
        help="Write the crawl result as JSON (default: stdout summary only)"
    )
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL,
        help=f"Log level (default: {settings.LOG_LEVEL})"
    )
    return parser.parse_args(argv)


def build_config(args) -> CrawlConfig:
    """Combine file, preset, and flag values into one CrawlConfig."""
    overrides = {}
    if args.max_depth is not None:
        overrides["max_depth"] = args.max_depth
    if args.max_pages is not None:
        overrides["max_pages"] = args.max_pages
    if args.concurrency is not None:
        overrides["max_concurrency"] = args.concurrency
    if args.rps is not None:
        overrides["max_requests_per_second"] = args.rps
    if args.no_cache:
        overrides["cache_enabled"] = False
    if args.incremental:
        overrides["incremental_enabled"] = True
    if args.strategy:
        overrides["incremental_strategy"] = args.strategy
    if args.include:
        overrides["url_include_patterns"] = tuple(args.include)
    if args.exclude:
        overrides["url_exclude_patterns"] = tuple(args.exclude)
    if args.headed:
        overrides["headless"] = False
    if args.ignore_robots:
        overrides["respect_robots_txt"] = False

    if args.config:
        base = CrawlConfig.from_file(args.config).to_dict()
        return CrawlConfig(**{**base, **overrides})
    if args.preset:
        return CrawlConfig.preset(args.preset, **overrides)
    return CrawlConfig(**overrides)


def print_event(event) -> None:
    """Console progress for crawl events."""
    if isinstance(event, PageEvent):
        source = "cache" if event.from_cache else "unchanged" if event.reused else "fetched"
        print(f"  [{source}] {event.url}")
    elif isinstance(event, ErrorEvent):
        print(f"  [error] {event.url}: {event.message}")
    elif isinstance(event, MemoryEvent) and event.restarted:
        print(f"  [memory] {event.rss_mb:.0f}MB over {event.limit_mb:.0f}MB, browser restarted")


async def run(args) -> int:
    try:
        config = build_config(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    start_url = args.url
    if not start_url.startswith("http"):
        start_url = f"https://{start_url}"

    print(f"Crawling {start_url}")
    print(f"Max depth: {config.max_depth}")
    print(f"Concurrency: {config.max_concurrency}")
    print(f"Rate limit: {config.max_requests_per_second} req/s")
    print(f"Cache: {'ENABLED' if config.cache_enabled else 'DISABLED'}")
    print(f"Incremental: {config.incremental_strategy if config.incremental_enabled else 'DISABLED'}")
    print(f"robots.txt: {'RESPECTED' if config.respect_robots_txt else 'IGNORED'}")
    print()

    async with CrawlEngine(config) as engine:
        engine.events.subscribe(print_event)

        loop = asyncio.get_running_loop()
        handled = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, engine.request_stop)
                handled.append(sig)
            except NotImplementedError:
                pass  # Windows event loops have no signal handlers

        try:
            result = await engine.crawl(start_url)
        except CrawlerError as e:
            print(f"\nCrawl failed: {e}", file=sys.stderr)
            return 1
        finally:
            for sig in handled:
                loop.remove_signal_handler(sig)

    stats = result.stats
    print()
    print(f"{'=' * 60}")
    print(f"Pages: {len(result.pages)} "
          f"(fetched {stats.pages_fetched}, cached {stats.pages_from_cache}, "
          f"unchanged {stats.pages_reused})")
    print(f"Errors: {stats.errors}")
    if stats.urls_disallowed:
        print(f"Skipped by robots.txt: {stats.urls_disallowed}")
    print(f"Duration: {stats.duration:.1f}s")
    if result.stopped:
        print("Crawl was stopped before the frontier was exhausted.")
    if result.persistence_error:
        print(f"Warning: {result.persistence_error}")
    print(f"{'=' * 60}")

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        print(f"Results written to {output_path}")

    return 0


def main(argv=None) -> None:
    args = parse_args(argv)
    setup_logging(level=args.log_level, log_file=settings.LOG_FILE)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
