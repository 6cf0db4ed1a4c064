"""Stateless helpers that turn rendered HTML into page fields."""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup


@dataclass
class ExtractedFields:
    """Fields pulled out of a rendered document."""
    title: Optional[str] = None
    meta_description: Optional[str] = None
    headings: dict[str, list[str]] = field(default_factory=dict)
    metadata_tags: dict[str, str] = field(default_factory=dict)
    structured_data: list[Any] = field(default_factory=list)
    images: list[dict[str, Any]] = field(default_factory=list)
    links: list[dict[str, Any]] = field(default_factory=list)
    canonical: Optional[str] = None
    robots: Optional[str] = None
    content_text: str = ""
    word_count: int = 0
    has_breadcrumbs: bool = False


def content_hash(content: str) -> str:
    """SHA-256 hex digest of page content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def extract_fields(html: str, url: str) -> ExtractedFields:
    """Extract SEO fields from HTML.

    Args:
        html: Rendered HTML document
        url: Page URL, used to resolve relative links and images

    Returns:
        ExtractedFields for the document
    """
    soup = BeautifulSoup(html, "html.parser")

    title_tag = soup.find("title")
    title = title_tag.get_text(strip=True) if title_tag else None

    # Every named meta tag (name= or property=)
    metadata_tags: dict[str, str] = {}
    for meta in soup.find_all("meta"):
        name = meta.get("name") or meta.get("property")
        content = meta.get("content")
        if name and content:
            metadata_tags[name] = content

    headings = {
        level: [h.get_text(strip=True) for h in soup.find_all(level)]
        for level in ("h1", "h2", "h3")
    }

    structured_data = []
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            if script.string:
                structured_data.append(json.loads(script.string))
        except (json.JSONDecodeError, ValueError):
            pass

    images = []
    for img in soup.find_all("img"):
        src = img.get("src", "")
        if src:
            try:
                src = urljoin(url, src)
            except ValueError:
                continue  # Malformed src, e.g. an unclosed IPv6 bracket
        images.append({
            "src": src,
            "alt": img.get("alt", ""),
            "width": img.get("width"),
            "height": img.get("height"),
            "loading": img.get("loading"),
        })

    links = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("javascript:", "mailto:", "tel:")):
            continue
        try:
            absolute = urljoin(url, href)
        except ValueError:
            continue
        rel = anchor.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        links.append({
            "href": absolute,
            "text": anchor.get_text(strip=True),
            "nofollow": "nofollow" in rel,
            "target": anchor.get("target"),
        })

    canonical_tag = soup.find("link", attrs={"rel": "canonical"})
    canonical = canonical_tag.get("href") if canonical_tag else None

    breadcrumbs = soup.find(attrs={"itemtype": lambda v: bool(v) and "BreadcrumbList" in v})

    # Text content, without scripts and styles
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    body = soup.body or soup
    content_text = body.get_text(separator=" ", strip=True)

    return ExtractedFields(
        title=title,
        meta_description=metadata_tags.get("description"),
        headings=headings,
        metadata_tags=metadata_tags,
        structured_data=structured_data,
        images=images,
        links=links,
        canonical=canonical,
        robots=metadata_tags.get("robots"),
        content_text=content_text,
        word_count=len(content_text.split()),
        has_breadcrumbs=breadcrumbs is not None,
    )


# Navigation timing, evaluated in the page after load
NAVIGATION_TIMING_SCRIPT = """() => {
    const nav = performance.getEntriesByType('navigation')[0];
    if (!nav) { return null; }
    const paint = {};
    performance.getEntriesByType('paint').forEach(p => { paint[p.name] = p.startTime; });
    return {
        ttfb: nav.responseStart - nav.requestStart,
        domInteractive: nav.domInteractive,
        domContentLoaded: nav.domContentLoadedEventEnd,
        load: nav.loadEventEnd,
        transferSize: nav.transferSize,
        fcp: paint['first-contentful-paint'] || null,
        resourceCount: performance.getEntriesByType('resource').length,
    };
}"""
