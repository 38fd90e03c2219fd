"""Navigate a leased browser page and capture its rendered HTML."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional, Sequence

from .config import (
    CONTENT_SELECTORS,
    CrawlConfig,
    FetchTimeouts,
    LOADING_INDICATOR_SELECTORS,
    OVERLAY_DISMISS_SELECTORS,
)
from .errors import FetchHttpError, FetchTimeoutError
from .pool import BrowserSession

LOGGER = logging.getLogger(__name__)

StatusOutcome = Literal["success", "client_error", "server_error", "timeout", "network_error"]


@dataclass(frozen=True, slots=True)
class FetchResponse:
    """Rendered HTML of a successfully navigated page."""

    html: str
    final_url: str
    status_code: Optional[int]
    outcome: StatusOutcome
    elapsed: float
    content_wait_timed_out: bool = False


def _readiness_script(loading_selectors: Sequence[str], content_selectors: Sequence[str]) -> str:
    return """
() => {
  const loadingSelectors = %s;
  const contentSelectors = %s;
  const body = document.body;
  const text = body ? (body.innerText || "") : "";
  const loading = loadingSelectors.some((sel) => {
    try { return document.querySelector(sel) !== null; } catch (e) { return false; }
  });
  const contentReady = contentSelectors.some((sel) => {
    try {
      const el = document.querySelector(sel);
      return el !== null && (el.innerText || "").trim().length > 0;
    } catch (e) { return false; }
  });
  return {
    textLength: text.length,
    elementCount: document.getElementsByTagName("*").length,
    loading: loading || document.readyState === "loading",
    contentReady: contentReady,
  };
}
""" % (json.dumps(list(loading_selectors)), json.dumps(list(content_selectors)))


class PageFetcher:
    """Fetch pages through leased sessions with bounded, named timeouts."""

    def __init__(
        self,
        *,
        headers: Optional[Dict[str, str]] = None,
        user_agent: Optional[str] = None,
        timeouts: Optional[FetchTimeouts] = None,
        wait_until: str = "domcontentloaded",
        handle_dynamic_content: bool = True,
        wait_for_content: bool = True,
        max_wait_time: float = 45.0,
        max_overlay_clicks: int = 3,
        poll_interval: float = 0.5,
    ):
        self.headers = dict(headers or {})
        if user_agent:
            self.headers["User-Agent"] = user_agent
        self.timeouts = timeouts or FetchTimeouts()
        self.wait_until = wait_until
        self.handle_dynamic_content = handle_dynamic_content
        self.wait_for_content = wait_for_content
        self.max_wait_time = max_wait_time
        self.max_overlay_clicks = max_overlay_clicks
        self.poll_interval = poll_interval
        self._probe = _readiness_script(LOADING_INDICATOR_SELECTORS, CONTENT_SELECTORS)

    @classmethod
    def from_config(cls, config: CrawlConfig) -> "PageFetcher":
        return cls(
            headers=config.headers,
            user_agent=config.user_agent,
            timeouts=config.timeouts,
            wait_until=config.wait_until,
            handle_dynamic_content=config.handle_dynamic_content,
            wait_for_content=config.wait_for_content,
            max_wait_time=config.max_wait_time,
            max_overlay_clicks=config.max_overlay_clicks,
        )

    async def fetch(self, session: BrowserSession, url: str) -> FetchResponse:
        """Navigate ``session`` to ``url`` and return the rendered HTML.

        Raises:
            FetchTimeoutError: navigation or HTML capture took too long.
            FetchNetworkError: the browser reported a connection failure.
            FetchHttpError: the main document had a non-2xx status.
        """
        page = session.page
        started = time.monotonic()
        navigation_timeout = self.timeouts.navigation

        await page.set_extra_headers(self.headers)
        try:
            response = await asyncio.wait_for(
                page.goto(url, timeout=navigation_timeout, wait_until=self.wait_until),
                timeout=navigation_timeout + 1.0,
            )
        except asyncio.TimeoutError:
            raise FetchTimeoutError(url, navigation_timeout) from None

        status = response.status if response is not None else None
        if status is not None and not 200 <= status < 300:
            raise FetchHttpError(url, status)

        content_wait_timed_out = False
        if self.handle_dynamic_content:
            content_wait_timed_out = not await self.wait_for_ready(page, url)
            await self.dismiss_overlays(page)

        try:
            html = await asyncio.wait_for(page.content(), timeout=self.timeouts.socket)
        except asyncio.TimeoutError:
            raise FetchTimeoutError(url, self.timeouts.socket, stage="content capture") from None

        final_url = (response.url if response is not None else "") or page.url or url
        elapsed = time.monotonic() - started
        LOGGER.debug("Fetched %s (status=%s) in %.2fs", url, status, elapsed)
        return FetchResponse(
            html=html,
            final_url=final_url,
            status_code=status,
            outcome="success",
            elapsed=elapsed,
            content_wait_timed_out=content_wait_timed_out,
        )

    async def _probe_once(self, page: Any) -> Optional[Dict[str, Any]]:
        try:
            sample = await asyncio.wait_for(
                page.evaluate(self._probe), timeout=self.timeouts.socket
            )
        except asyncio.TimeoutError:
            return None
        except Exception as exc:
            LOGGER.debug("Readiness probe failed: %s", exc)
            return None
        return sample if isinstance(sample, dict) else None

    def _is_settled(self, previous: Optional[Dict[str, Any]], current: Dict[str, Any]) -> bool:
        if current.get("loading"):
            return False
        if self.wait_for_content and not current.get("contentReady"):
            return False
        if previous is None:
            return False
        return (
            previous.get("textLength") == current.get("textLength")
            and previous.get("elementCount") == current.get("elementCount")
        )

    async def wait_for_ready(self, page: Any, url: str = "") -> bool:
        """Poll the readiness probe until two consecutive samples agree.

        Returns ``False`` when ``max_wait_time`` elapses first.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.max_wait_time
        previous: Optional[Dict[str, Any]] = None

        while True:
            current = await self._probe_once(page)
            if current is not None:
                if self._is_settled(previous, current):
                    return True
                previous = current
            remaining = deadline - loop.time()
            if remaining <= 0:
                LOGGER.warning(
                    "Content did not settle within %.1fs for %s; using what is rendered",
                    self.max_wait_time,
                    url or "page",
                )
                return False
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def dismiss_overlays(self, page: Any) -> int:
        """Click likely cookie/modal buttons; returns the number of clicks."""
        clicks = 0
        for selector in OVERLAY_DISMISS_SELECTORS:
            if clicks >= self.max_overlay_clicks:
                break
            try:
                await page.click(selector, timeout=0.5)
            except Exception:
                continue
            clicks += 1
            LOGGER.debug("Dismissed overlay via %s", selector)
        return clicks
