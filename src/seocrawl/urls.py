"""URL normalization and scoping helpers."""

import hashlib
from typing import Optional
from urllib.parse import urljoin, urlparse, urlunparse

DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: str, base: Optional[str] = None) -> Optional[str]:
    """Normalize a URL for deduplication.

    Resolves relative URLs against ``base``, lowercases scheme and host,
    drops default ports, strips the fragment, and removes a trailing slash
    from any path other than the root.

    Args:
        url: URL to normalize
        base: Optional page URL used to resolve relative links

    Returns:
        Normalized URL, or None if it is not an http(s) URL
    """
    if not url:
        return None
    url = url.strip()

    try:
        if base:
            url = urljoin(base, url)
        parsed = urlparse(url)
        port = parsed.port
    except ValueError:
        return None

    scheme = parsed.scheme.lower()
    if scheme not in DEFAULT_PORTS or not parsed.hostname:
        return None

    host = parsed.hostname.lower()
    if port and port != DEFAULT_PORTS[scheme]:
        host = f"{host}:{port}"

    path = parsed.path or "/"
    if path.endswith("/") and len(path) > 1:
        path = path.rstrip("/") or "/"

    return urlunparse((scheme, host, path, parsed.params, parsed.query, ""))


def hostname_of(url: str) -> str:
    """Lowercased hostname of a URL (empty string if none)."""
    return (urlparse(url).hostname or "").lower()


def is_same_host(url: str, host: str) -> bool:
    """Whether a URL belongs to the given hostname."""
    return hostname_of(url) == host.lower()


def site_id_for(url: str) -> str:
    """Stable site identifier derived from the URL's hostname."""
    return hashlib.md5(hostname_of(url).encode("utf-8")).hexdigest()


def url_key(url: str) -> str:
    """Stable content-addressable key for a normalized URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()
