"""
Incremental crawl state.

Keeps, per site, the change-detection fingerprint and PageRecord of every
URL from the previous completed crawl, so unchanged pages can be reused
instead of rendered again.
"""

import hashlib
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import httpx

from seocrawl.constants import (
    ESTIMATED_SECONDS_PER_PAGE,
    PROBE_TIMEOUT_SECONDS,
    SNAPSHOT_FILENAME,
    SNAPSHOT_VERSION,
)
from seocrawl.exceptions import PersistenceError
from seocrawl.models import PageRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fingerprint:
    """Cheap change-detection signals for one URL."""
    last_modified: Optional[str] = None
    etag: Optional[str] = None
    content_hash: Optional[str] = None

    def value_for(self, strategy: str) -> Optional[str]:
        """Signal used by a comparison strategy."""
        if strategy == "lastModified":
            return self.last_modified
        if strategy == "etag":
            return self.etag
        if strategy == "contentHash":
            return self.content_hash
        return None

    def merged_with(self, fallback: "Fingerprint") -> "Fingerprint":
        """Fill missing signals from another fingerprint."""
        return Fingerprint(
            last_modified=self.last_modified or fallback.last_modified,
            etag=self.etag or fallback.etag,
            content_hash=self.content_hash or fallback.content_hash,
        )

    @classmethod
    def from_record(cls, record: PageRecord) -> "Fingerprint":
        return cls(
            last_modified=record.last_modified,
            etag=record.etag,
            content_hash=record.content_hash or None,
        )


@dataclass
class SnapshotPage:
    """Snapshot entry: fingerprint plus the record it was taken from."""
    fingerprint: Fingerprint
    record: Optional[PageRecord] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastModified": self.fingerprint.last_modified,
            "etag": self.fingerprint.etag,
            "contentHash": self.fingerprint.content_hash,
            "record": self.record.to_dict() if self.record else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SnapshotPage":
        record_data = data.get("record")
        return cls(
            fingerprint=Fingerprint(
                last_modified=data.get("lastModified"),
                etag=data.get("etag"),
                content_hash=data.get("contentHash"),
            ),
            record=PageRecord.from_dict(record_data) if record_data else None,
        )


@dataclass
class IncrementalSnapshot:
    """Per-site state of the previous completed crawl."""
    site_id: str
    crawl_date: Optional[datetime] = None
    pages: dict[str, SnapshotPage] = field(default_factory=dict)

    @classmethod
    def empty(cls, site_id: str) -> "IncrementalSnapshot":
        return cls(site_id=site_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "siteId": self.site_id,
            "crawlDate": self.crawl_date.isoformat() if self.crawl_date else None,
            "pages": {url: page.to_dict() for url, page in self.pages.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IncrementalSnapshot":
        crawl_date = data.get("crawlDate")
        return cls(
            site_id=data["siteId"],
            crawl_date=datetime.fromisoformat(crawl_date) if crawl_date else None,
            pages={
                url: SnapshotPage.from_dict(page)
                for url, page in data.get("pages", {}).items()
            },
        )


class IncrementalStateTracker:
    """
    Decides which URLs need re-fetching based on the previous crawl.

    Comparison fails open: a missing fingerprint on either side counts
    as a change.
    """

    STRATEGIES = ("lastModified", "etag", "contentHash")

    def __init__(
        self,
        directory: Path,
        strategy: str = "lastModified",
        enabled: bool = False,
    ):
        """
        Args:
            directory: Root directory holding one subdirectory per site
            strategy: 'lastModified', 'etag', or 'contentHash'
            enabled: When False every URL is fetched
        """
        if strategy not in self.STRATEGIES:
            raise ValueError(f"Unknown comparison strategy: {strategy}")

        self.directory = Path(directory)
        self.strategy = strategy
        self.enabled = enabled
        self._previous: Optional[IncrementalSnapshot] = None
        self._lock = threading.Lock()
        self._reset_stats()

    def _reset_stats(self) -> None:
        self._stats = {"new": 0, "changed": 0, "unchanged": 0, "total": 0}

    def _snapshot_path(self, site_id: str) -> Path:
        return self.directory / site_id / SNAPSHOT_FILENAME

    @property
    def previous(self) -> Optional[IncrementalSnapshot]:
        """Snapshot loaded for the current run."""
        return self._previous

    def load(self, site_id: str) -> IncrementalSnapshot:
        """
        Load the previous snapshot for a site.

        A missing snapshot is a first crawl and yields an empty one. An
        unreadable snapshot is logged and also treated as empty, so every
        URL is fetched again.

        Args:
            site_id: Site identifier

        Returns:
            The loaded (or empty) snapshot
        """
        self._reset_stats()
        snapshot = IncrementalSnapshot.empty(site_id)

        if self.enabled:
            path = self._snapshot_path(site_id)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    snapshot = IncrementalSnapshot.from_dict(json.load(f))
                logger.info(f"Loaded previous crawl data with {len(snapshot.pages)} pages")
            except FileNotFoundError:
                logger.info("No previous crawl data found. Starting fresh crawl.")
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Ignoring unreadable crawl snapshot {path}: {e}")

        self._previous = snapshot
        return snapshot

    def should_fetch(self, url: str, current: Optional[Fingerprint] = None) -> bool:
        """
        Whether a URL must be fetched in this run.

        Args:
            url: Normalized URL
            current: Fingerprint hints observed now (may be partial)

        Returns:
            True if the URL is new, changed, or cannot be proven unchanged
        """
        if not self.enabled or self._previous is None:
            return True

        with self._lock:
            self._stats["total"] += 1

            previous_page = self._previous.pages.get(url)
            if previous_page is None or previous_page.record is None:
                self._stats["new"] += 1
                return True

            current_value = (current or Fingerprint()).value_for(self.strategy)
            previous_value = previous_page.fingerprint.value_for(self.strategy)
            changed = (
                not current_value
                or not previous_value
                or current_value != previous_value
            )

            if changed:
                self._stats["changed"] += 1
            else:
                self._stats["unchanged"] += 1
            return changed

    def previous_record(self, url: str) -> Optional[PageRecord]:
        """PageRecord stored for a URL by the previous crawl."""
        if self._previous is None:
            return None
        page = self._previous.pages.get(url)
        return page.record if page else None

    def build_snapshot(
        self,
        site_id: str,
        records: dict[str, PageRecord],
        hints: Optional[dict[str, Fingerprint]] = None,
    ) -> IncrementalSnapshot:
        """
        Assemble the snapshot for a finished run.

        Probe hints take precedence over values derived from the record so
        the next run compares like with like.
        """
        hints = hints or {}
        pages = {}
        for url, record in records.items():
            fingerprint = hints.get(url, Fingerprint()).merged_with(
                Fingerprint.from_record(record)
            )
            pages[url] = SnapshotPage(fingerprint=fingerprint, record=record)
        return IncrementalSnapshot(site_id=site_id, crawl_date=datetime.now(), pages=pages)

    def save(self, site_id: str, snapshot: IncrementalSnapshot) -> None:
        """
        Atomically replace the stored snapshot for a site.

        Raises:
            PersistenceError: If the snapshot cannot be written
        """
        if not self.enabled:
            return

        path = self._snapshot_path(site_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(snapshot.to_dict(), f, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(site_id, f"Failed to save crawl data for {site_id}: {e}") from e

        logger.info(f"Saved crawl data with {len(snapshot.pages)} pages")

    @staticmethod
    def content_hash(content: str) -> str:
        """Create a content hash from page content."""
        return hashlib.sha256(content.encode("utf-8")).hexdigest()

    def stats(self) -> dict[str, Any]:
        """Get incremental crawling statistics."""
        total = self._stats["total"]
        unchanged = self._stats["unchanged"]
        unchanged_percent = round(unchanged / total * 100, 2) if total else 0.0
        return {
            "enabled": self.enabled,
            "strategy": self.strategy,
            **self._stats,
            "unchanged_percent": unchanged_percent,
            "estimated_seconds_saved": unchanged * ESTIMATED_SECONDS_PER_PAGE,
        }


class FingerprintProbe:
    """
    Collects current fingerprint hints with a lightweight HTTP request.

    lastModified and etag use a HEAD request; contentHash needs the body
    and uses GET. Any HTTP failure yields an empty fingerprint, which
    makes the tracker re-fetch the page.
    """

    def __init__(
        self,
        strategy: str,
        user_agent: Optional[str] = None,
        timeout: float = PROBE_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.strategy = strategy
        self._owns_client = client is None
        headers = {"User-Agent": user_agent} if user_agent else {}
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers=headers,
        )

    async def __aenter__(self) -> "FingerprintProbe":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def probe(self, url: str) -> Fingerprint:
        """
        Fetch fingerprint hints for a URL.

        Args:
            url: URL to probe

        Returns:
            Fingerprint (empty on failure)
        """
        try:
            if self.strategy == "contentHash":
                response = await self._client.get(url)
            else:
                response = await self._client.head(url)
                if response.status_code == 405:
                    response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"Fingerprint probe failed for {url}: {e}")
            return Fingerprint()

        if response.status_code >= 400:
            return Fingerprint()

        content_hash = None
        if self.strategy == "contentHash":
            content_hash = IncrementalStateTracker.content_hash(response.text)

        return Fingerprint(
            last_modified=response.headers.get("last-modified"),
            etag=response.headers.get("etag"),
            content_hash=content_hash,
        )
