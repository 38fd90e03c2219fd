"""URL normalisation and crawl-scope helpers."""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Iterable, Optional, Pattern, Sequence, Tuple
from urllib.parse import parse_qsl, urlencode, urldefrag, urljoin, urlparse, urlunparse

import tldextract

from .config import TRACKING_PARAMS

LOGGER = logging.getLogger(__name__)

_SKIPPED_SCHEMES = ("javascript:", "mailto:", "tel:", "data:", "about:", "blob:")
_DEFAULT_PORTS = {"http": "80", "https": "443"}
# "mailto:x" carries a scheme, "example.com:8080/x" does not.
_SCHEME_PREFIX = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:(?!\d)")


def _normalize_host(host: Optional[str]) -> str:
    """Normalize hostname by removing port and lowercasing."""
    if not host:
        return ""
    return host.split(":")[0].lower().rstrip(".")


@lru_cache(maxsize=256)
def _registrable_domain(host: str) -> Optional[str]:
    """Extract the registrable domain from a hostname."""
    if not host:
        return None
    extracted = tldextract.extract(host)
    if not extracted.domain or not extracted.suffix:
        return host
    domain = ".".join(part for part in (extracted.domain, extracted.suffix) if part)
    return domain or host


def ensure_scheme(url: str) -> str:
    """Prefix ``https://`` onto input typed without a scheme, e.g. ``example.com``."""
    url = (url or "").strip()
    if not url or "://" in url or _SCHEME_PREFIX.match(url):
        return url
    return f"https://{url.lstrip('/')}"


def is_http_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def normalize_url(url: str) -> str:
    """Canonical form used for the visited set.

    Drops the fragment and tracking parameters, lowercases scheme and host,
    strips default ports and the trailing slash of non-root paths. A URL
    that cannot be parsed is returned stripped but otherwise untouched.
    """
    url = url.strip()
    try:
        url, _ = urldefrag(url)
        parsed = urlparse(url)
    except ValueError:
        return url
    scheme = parsed.scheme.lower()
    host = _normalize_host(parsed.netloc.rsplit("@", 1)[-1])
    try:
        port = parsed.port
    except ValueError:
        port = None
    netloc = host
    if port is not None and _DEFAULT_PORTS.get(scheme) != str(port):
        netloc = f"{host}:{port}"

    path = parsed.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"

    query = ""
    if parsed.query:
        pairs = [
            (key, value)
            for key, value in parse_qsl(parsed.query, keep_blank_values=True)
            if key.lower() not in TRACKING_PARAMS
        ]
        query = urlencode(pairs)

    return urlunparse((scheme, netloc, path, parsed.params, query, ""))


def join_url(base_url: str, href: str) -> Optional[str]:
    """``urljoin`` that returns ``None`` instead of raising on malformed input."""
    try:
        return urljoin(base_url, href)
    except ValueError:
        LOGGER.debug("Skipping invalid URL %s", href)
        return None


def resolve_link(href: str, base_url: str) -> Optional[str]:
    """Resolve ``href`` against ``base_url``; ``None`` for non-navigable links."""
    href = (href or "").strip()
    if not href or href.startswith("#"):
        return None
    if href.lower().startswith(_SKIPPED_SCHEMES):
        return None
    absolute = join_url(base_url, href)
    if absolute is None or not is_http_url(absolute):
        return None
    return urldefrag(absolute)[0]


def host_of(url: str) -> str:
    try:
        netloc = urlparse(url).netloc
    except ValueError:
        return ""
    return _normalize_host(netloc.rsplit("@", 1)[-1])


def is_in_scope(
    url: str,
    root_url: str,
    *,
    include_subdomains: bool = False,
    allowed_domains: Iterable[str] = (),
) -> bool:
    """Whether ``url`` belongs to the crawl rooted at ``root_url``."""
    host = host_of(url)
    if not host:
        return False
    root_host = host_of(root_url)
    if host == root_host:
        return True
    for domain in allowed_domains:
        domain = _normalize_host(domain)
        if domain and (host == domain or host.endswith("." + domain)):
            return True
    if include_subdomains:
        return _registrable_domain(host) == _registrable_domain(root_host)
    return False


@lru_cache(maxsize=32)
def _compile_patterns(patterns: Tuple[str, ...]) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


def should_skip(url: str, patterns: Sequence[str]) -> bool:
    """Whether the URL path matches any skip pattern."""
    path = urlparse(url).path or "/"
    return any(regex.search(path) for regex in _compile_patterns(tuple(patterns)))
