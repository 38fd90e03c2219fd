"""Headless-browser driver contract and its Playwright implementation.

The session pool and the fetcher only talk to :class:`BrowserDriver` and
:class:`PageHandle`; any object with the same coroutine methods (for
example a test double) can stand in for Playwright.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from .config import CrawlConfig, DEFAULT_USER_AGENT
from .errors import BrowserUnavailableError, FetchNetworkError, FetchTimeoutError

LOGGER = logging.getLogger(__name__)

LAUNCH_ARGS: List[str] = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
]

# Chromium net error names -> POSIX-style codes used for retry classification.
_NET_ERROR_CODES: Dict[str, str] = {
    "ERR_NAME_NOT_RESOLVED": "ENOTFOUND",
    "ERR_NAME_RESOLUTION_FAILED": "EAI_AGAIN",
    "ERR_CONNECTION_REFUSED": "ECONNREFUSED",
    "ERR_CONNECTION_RESET": "ECONNRESET",
    "ERR_CONNECTION_CLOSED": "ECONNRESET",
    "ERR_EMPTY_RESPONSE": "ECONNRESET",
    "ERR_CONNECTION_ABORTED": "EPIPE",
    "ERR_CONNECTION_TIMED_OUT": "ETIMEDOUT",
    "ERR_TIMED_OUT": "ETIMEDOUT",
    "ERR_INTERNET_DISCONNECTED": "ENETUNREACH",
    "ERR_NETWORK_CHANGED": "ENETUNREACH",
    "ERR_ADDRESS_UNREACHABLE": "ENETUNREACH",
    "ERR_ADDRESS_IN_USE": "EADDRINUSE",
}

_NET_ERROR_PATTERN = re.compile(r"net::(ERR_[A-Z_]+)")


@dataclass(frozen=True, slots=True)
class NavigationResponse:
    """Minimal view of the main-frame response after navigation."""

    status: Optional[int]
    url: str


class PageHandle(Protocol):
    """A single browser tab."""

    @property
    def url(self) -> str: ...

    async def goto(
        self, url: str, *, timeout: float, wait_until: str
    ) -> Optional[NavigationResponse]: ...

    async def content(self) -> str: ...

    async def click(self, selector: str, *, timeout: float) -> None: ...

    async def evaluate(self, expression: str) -> Any: ...

    async def set_extra_headers(self, headers: Dict[str, str]) -> None: ...

    async def close(self) -> None: ...


class BrowserDriver(Protocol):
    """Factory for pages; owns the browser process."""

    async def new_page(self) -> PageHandle: ...


def network_error_code(message: str) -> Optional[str]:
    """Map a Chromium ``net::ERR_*`` message to a POSIX-style error code."""
    match = _NET_ERROR_PATTERN.search(message or "")
    if not match:
        return None
    return _NET_ERROR_CODES.get(match.group(1), match.group(1))


class PlaywrightPage:
    """:class:`PageHandle` backed by a Playwright page in its own context."""

    def __init__(self, page: Any, context: Any):
        self._page = page
        self._context = context

    @property
    def url(self) -> str:
        return str(self._page.url or "")

    async def goto(
        self, url: str, *, timeout: float, wait_until: str
    ) -> Optional[NavigationResponse]:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        try:
            response = await self._page.goto(
                url, timeout=timeout * 1000, wait_until=wait_until
            )
        except PlaywrightTimeoutError as exc:
            raise FetchTimeoutError(url, timeout) from exc
        except PlaywrightError as exc:
            message = str(exc).splitlines()[0] if str(exc) else repr(exc)
            raise FetchNetworkError(url, network_error_code(message), message) from exc

        if response is None:
            return NavigationResponse(status=None, url=self.url)
        return NavigationResponse(status=response.status, url=response.url or self.url)

    async def content(self) -> str:
        return await self._page.content()

    async def click(self, selector: str, *, timeout: float) -> None:
        await self._page.click(selector, timeout=timeout * 1000)

    async def evaluate(self, expression: str) -> Any:
        return await self._page.evaluate(expression)

    async def set_extra_headers(self, headers: Dict[str, str]) -> None:
        await self._page.set_extra_http_headers(headers)

    async def close(self) -> None:
        try:
            await self._page.close()
        finally:
            await self._context.close()


class PlaywrightDriver:
    """Launch one Chromium instance and hand out isolated pages.

    Use as an async context manager::

        async with PlaywrightDriver.from_config(config) as driver:
            page = await driver.new_page()
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        user_agent: str = DEFAULT_USER_AGENT,
        viewport: Optional[Dict[str, int]] = None,
        launch_args: Optional[List[str]] = None,
    ):
        self.headless = headless
        self.user_agent = user_agent
        self.viewport = viewport or {"width": 1280, "height": 900}
        self.launch_args = list(launch_args or LAUNCH_ARGS)
        self._playwright: Any = None
        self._browser: Any = None

    @classmethod
    def from_config(cls, config: CrawlConfig) -> "PlaywrightDriver":
        return cls(headless=config.headless, user_agent=config.user_agent)

    async def start(self) -> None:
        try:
            from playwright.async_api import async_playwright
        except ImportError as exc:
            raise BrowserUnavailableError(
                "Playwright is required for crawling. "
                "Install it with: pip install playwright && playwright install chromium"
            ) from exc

        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=self.launch_args,
            )
        except Exception as exc:
            await self.close()
            raise BrowserUnavailableError(f"Could not launch Chromium: {exc}") from exc
        LOGGER.info("Launched Chromium (headless=%s)", self.headless)

    async def new_page(self) -> PlaywrightPage:
        if self._browser is None:
            raise BrowserUnavailableError("Browser driver has not been started")
        context = await self._browser.new_context(
            user_agent=self.user_agent,
            viewport=self.viewport,
        )
        try:
            page = await context.new_page()
        except Exception:
            await context.close()
            raise
        return PlaywrightPage(page, context)

    async def close(self) -> None:
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:
                LOGGER.debug("Ignoring error while closing browser: %s", exc)
        if playwright is not None:
            await playwright.stop()

    async def __aenter__(self) -> "PlaywrightDriver":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
