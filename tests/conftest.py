"""Shared fixtures: an in-memory browser driver serving canned HTML."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pytest

from mdcrawl.browser import NavigationResponse
from mdcrawl.config import CrawlConfig
from mdcrawl.urls import normalize_url

READY_SAMPLE = {"textLength": 500, "elementCount": 40, "loading": False, "contentReady": True}


def article_html(
    title: str,
    body: str = "",
    *,
    links: Optional[List[str]] = None,
    images: Optional[List[str]] = None,
) -> str:
    """A page with a <main> block long enough to pass the quality check."""
    text = body or (
        f"{title} explains the topic in detail. " * 6
    )
    anchors = "".join(f'<li><a href="{href}">{href}</a></li>' for href in links or [])
    imgs = "".join(f'<img src="{src}" alt="figure">' for src in images or [])
    return (
        "<html><head>"
        f"<title>{title}</title>"
        '<meta name="description" content="A test page">'
        "</head><body>"
        f"<nav><ul>{anchors}</ul></nav>"
        f"<main><h1>{title}</h1><p>{text}</p>{imgs}</main>"
        "</body></html>"
    )


@dataclass
class Route:
    html: str = ""
    status: Optional[int] = 200
    final_url: Optional[str] = None
    delay: float = 0.0
    failures: List[BaseException] = field(default_factory=list)


class FakePage:
    def __init__(self, driver: "FakeDriver"):
        self._driver = driver
        self._route: Optional[Route] = None
        self._url = "about:blank"
        self.headers: Dict[str, str] = {}
        self.closed = False
        self.clicks: List[str] = []

    @property
    def url(self) -> str:
        return self._url

    async def goto(self, url: str, *, timeout: float, wait_until: str):
        driver = self._driver
        driver.goto_log.append(url)
        driver.active += 1
        driver.peak_active = max(driver.peak_active, driver.active)
        try:
            route = driver.routes.get(normalize_url(url))
            if route is None:
                return NavigationResponse(status=404, url=url)
            if route.failures:
                raise route.failures.pop(0)
            if route.delay:
                await asyncio.sleep(route.delay)
            self._route = route
            self._url = route.final_url or url
            return NavigationResponse(status=route.status, url=self._url)
        finally:
            driver.active -= 1

    async def content(self) -> str:
        return self._route.html if self._route else "<html></html>"

    async def click(self, selector: str, *, timeout: float) -> None:
        if selector not in self._driver.clickable:
            raise RuntimeError(f"No element matches {selector}")
        self.clicks.append(selector)

    async def evaluate(self, expression: str):
        samples = self._driver.samples
        if samples:
            return samples.pop(0)
        return dict(READY_SAMPLE)

    async def set_extra_headers(self, headers: Dict[str, str]) -> None:
        self.headers = dict(headers)

    async def close(self) -> None:
        self.closed = True


class FakeDriver:
    """Implements the driver contract against a dict of routes."""

    def __init__(self, routes: Optional[Dict[str, Route]] = None):
        self.routes: Dict[str, Route] = {}
        for url, route in (routes or {}).items():
            self.add(url, route)
        self.goto_log: List[str] = []
        self.pages: List[FakePage] = []
        self.create_failures = 0
        self.clickable: set = set()
        self.samples: List[dict] = []
        self.active = 0
        self.peak_active = 0
        self.closed = False

    def add(self, url: str, route) -> None:
        if isinstance(route, str):
            route = Route(html=route)
        self.routes[normalize_url(url)] = route

    async def new_page(self) -> FakePage:
        if self.create_failures:
            self.create_failures -= 1
            raise RuntimeError("browser context crashed")
        page = FakePage(self)
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def fast_config() -> CrawlConfig:
    """Config without spacing, backoff or dynamic waits so tests run quickly."""
    return CrawlConfig(
        concurrent_limit=4,
        wait_between_requests=0.0,
        request_jitter=0.0,
        backoff_base=0.01,
        backoff_max=0.02,
        handle_dynamic_content=False,
        include_images=False,
        max_sessions=4,
        acquire_timeout=5.0,
    )
