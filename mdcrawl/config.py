"""Crawl configuration, defaults and selector tables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

LOGGER = logging.getLogger(__name__)

# Main-content selectors in priority order; the first match whose text
# passes the quality threshold wins.
CONTENT_SELECTORS: List[str] = [
    "main",
    "article",
    "[role='main']",
    ".content",
    "#content",
    ".article",
    ".post-content",
    ".main-content",
    ".markdown-body",
    ".documentation",
    ".docs-content",
    ".article-content",
    ".post-body",
    ".entry-content",
    ".blog-post",
    ".page-content",
    "div[class*='content']",
    "div[class*='article']",
    "div[class*='post']",
    ".container main",
    ".wrapper main",
    ".layout main",
    "#main-content",
    "#primary",
]

# Buttons worth clicking to get rid of cookie banners and modal overlays.
OVERLAY_DISMISS_SELECTORS: List[str] = [
    "#onetrust-accept-btn-handler",
    "button#accept-cookies",
    "button.cookie-accept",
    "button.accept-cookies",
    ".cky-btn-accept",
    "button[aria-label*='accept' i]",
    "button[aria-label*='close' i]",
    "button[title*='close' i]",
    "button.close",
    "button.dismiss",
]

# Elements whose presence means the page is still rendering.
LOADING_INDICATOR_SELECTORS: List[str] = [
    "[aria-busy='true']",
    ".loading",
    ".spinner",
    ".skeleton",
    "[class*='loading-indicator']",
]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS: Dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,"
    "image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

# Links matching any of these are never queued during a site crawl.
SKIP_URL_PATTERNS: List[str] = [
    r"\.(css|js|json|xml|txt|pdf|zip|rar|gz|tar|7z|exe|dmg|iso|mp3|mp4|avi|mov"
    r"|wmv|flv|swf|woff2?|eot|ttf|otf|svg|png|jpe?g|gif|webp|ico|bmp|tiff|webm"
    r"|wav|ogg|docx?|xlsx?|pptx?)$",
    r"/wp-admin/",
    r"/wp-json/",
    r"/feed/",
    r"/cdn-cgi/",
    r"/(login|logout|signup|register)/?$",
    r"/(cart|checkout|account)/",
]

# Query parameters stripped before URLs are compared or queued.
TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
        "_ga",
        "_hsenc",
        "_hsmi",
        "mc_cid",
        "mc_eid",
        "mkt_tok",
        "yclid",
    }
)

RETRYABLE_STATUS_CODES = frozenset(
    {408, 413, 429, 500, 502, 503, 504, 520, 521, 522, 523, 524}
)

RETRYABLE_ERROR_CODES = frozenset(
    {
        "ETIMEDOUT",
        "ECONNRESET",
        "EADDRINUSE",
        "ECONNREFUSED",
        "EPIPE",
        "ENOTFOUND",
        "ENETUNREACH",
        "EAI_AGAIN",
    }
)


@dataclass
class FetchTimeouts:
    """Independent sub-timeouts in seconds.

    Navigation is bounded by ``connect + response``; capturing HTML and each
    readiness probe by ``socket``.
    """

    connect: float = 5.0
    socket: float = 30.0
    response: float = 30.0

    @property
    def navigation(self) -> float:
        return self.connect + self.response


@dataclass
class CrawlConfig:
    """All knobs for a conversion or a site crawl.

    Durations are in seconds. The CLI and environment variables accept the
    millisecond spellings (``wait_between_requests``, ``max_wait_time``).
    """

    concurrent_limit: int = 30
    wait_between_requests: float = 0.5
    request_jitter: float = 0.25
    max_depth: int = 3
    max_pages: int = 100
    include_images: bool = True
    include_meta: bool = True
    handle_dynamic_content: bool = True
    wait_for_content: bool = True
    max_wait_time: float = 45.0
    wait_until: str = "domcontentloaded"

    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 10.0

    max_sessions: int = 8
    acquire_timeout: float = 300.0
    session_creation_attempts: int = 3

    timeouts: FetchTimeouts = field(default_factory=FetchTimeouts)
    max_overlay_clicks: int = 3
    min_content_length: int = 100

    include_subdomains: bool = False
    allowed_domains: List[str] = field(default_factory=list)
    skip_url_patterns: List[str] = field(
        default_factory=lambda: list(SKIP_URL_PATTERNS)
    )

    user_agent: str = DEFAULT_USER_AGENT
    headers: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_HEADERS))
    headless: bool = True

    def validate(self) -> None:
        """Raise ``ValueError`` for settings that cannot produce a crawl."""
        for name in ("concurrent_limit", "max_pages", "max_attempts", "max_sessions"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        if self.max_depth < 0:
            raise ValueError("max_depth must not be negative")
        for name in (
            "wait_between_requests",
            "request_jitter",
            "max_wait_time",
            "backoff_base",
            "backoff_max",
            "acquire_timeout",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if self.wait_until not in {"load", "domcontentloaded", "networkidle", "commit"}:
            raise ValueError(f"Unsupported wait_until value: {self.wait_until}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CrawlConfig":
        """Build a config from ``MDCRAWL_*`` environment variables.

        Unset or unparsable variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        config = cls()

        for name, kind in _ENV_FIELDS.items():
            raw = env.get(f"MDCRAWL_{name.upper()}")
            if raw is None:
                continue
            try:
                setattr(config, name, _parse_env_value(raw, kind))
            except ValueError:
                LOGGER.warning(
                    "Ignoring invalid value %r for MDCRAWL_%s", raw, name.upper()
                )

        for name in ("wait_between_requests", "max_wait_time"):
            raw = env.get(f"MDCRAWL_{name.upper()}_MS")
            if raw is None:
                continue
            try:
                setattr(config, name, float(raw) / 1000.0)
            except ValueError:
                LOGGER.warning(
                    "Ignoring invalid value %r for MDCRAWL_%s_MS", raw, name.upper()
                )

        domains = env.get("MDCRAWL_ALLOWED_DOMAINS")
        if domains:
            config.allowed_domains = [
                item.strip() for item in domains.split(",") if item.strip()
            ]
        return config


_ENV_FIELDS: Dict[str, type] = {
    "concurrent_limit": int,
    "max_depth": int,
    "max_pages": int,
    "max_attempts": int,
    "max_sessions": int,
    "include_images": bool,
    "include_meta": bool,
    "handle_dynamic_content": bool,
    "wait_for_content": bool,
    "include_subdomains": bool,
    "headless": bool,
    "acquire_timeout": float,
    "wait_until": str,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_env_value(raw: str, kind: type):
    value = raw.strip()
    if kind is bool:
        lowered = value.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(raw)
    return kind(value)
