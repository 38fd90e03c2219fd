"""Breadth-first site crawler with bounded depth and page count."""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set, Tuple, Union

from .assets import ASSETS_DIRNAME, AssetDownloader
from .browser import BrowserDriver, PlaywrightDriver
from .config import CrawlConfig
from .document import CrawlEvent, CrawlStatistics, EventStatus, PageResult, SiteCrawlResult
from .errors import MdcrawlError
from .fetcher import PageFetcher
from .governor import RequestGovernor
from .output import BatchOutputAssembler
from .pipeline import PageConverter
from .pool import BrowserSessionPool
from .urls import ensure_scheme, is_http_url, is_in_scope, normalize_url, should_skip

LOGGER = logging.getLogger(__name__)

ProgressSink = Callable[[CrawlEvent], Union[None, Awaitable[None]]]


class CancellationToken:
    """Cooperative stop flag checked by the scheduling loop."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


async def emit_event(progress: Optional[ProgressSink], event: CrawlEvent) -> None:
    """Deliver ``event`` to a sync or async sink; sink errors are logged."""
    if progress is None:
        return
    try:
        outcome = progress(event)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as exc:
        LOGGER.warning("Progress sink raised on %s event: %s", event.status, exc)


@dataclass
class CrawlJob:
    """Bookkeeping for one crawl; only the scheduling loop touches it."""

    root_url: str
    config: CrawlConfig
    started_at: float = field(default_factory=time.monotonic)
    visited: Set[str] = field(default_factory=set)
    pending: Deque[Tuple[str, str, int]] = field(default_factory=deque)
    queued: Set[str] = field(default_factory=set)
    results: Dict[int, PageResult] = field(default_factory=dict)
    dropped: Set[str] = field(default_factory=set)
    scheduled: int = 0

    @property
    def known_count(self) -> int:
        return len(self.visited) + len(self.queued)

    @property
    def skipped(self) -> int:
        return len(self.dropped)

    def enqueue(self, url: str, depth: int) -> bool:
        """Queue ``url`` unless it is known already or the page cap is reached.

        Deduplication uses the normalised form; the URL as given is what
        gets fetched, so ``/docs/`` keeps its trailing slash.
        """
        key = normalize_url(url)
        if key in self.visited or key in self.queued:
            return False
        if self.known_count >= self.config.max_pages:
            self.dropped.add(key)
            return False
        self.pending.append((key, url, depth))
        self.queued.add(key)
        self.dropped.discard(key)
        return True

    def next_pending(self) -> Optional[Tuple[str, str, int]]:
        """Pop the next ``(key, url, depth)`` not yet visited."""
        while self.pending:
            key, url, depth = self.pending.popleft()
            self.queued.discard(key)
            if key in self.visited:
                continue
            return key, url, depth
        return None

    def mark_scheduled(self, key: str) -> int:
        self.visited.add(key)
        self.scheduled += 1
        return self.scheduled

    def ordered_results(self):
        return [self.results[index] for index in sorted(self.results)]


class SiteCrawler:
    """Schedule page conversions breadth-first under the governor."""

    def __init__(
        self,
        converter: PageConverter,
        governor: RequestGovernor,
        config: Optional[CrawlConfig] = None,
        progress: Optional[ProgressSink] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.converter = converter
        self.governor = governor
        self.config = config or CrawlConfig()
        self.progress = progress
        self._clock = clock

    async def _emit(
        self, status: EventStatus, stats: CrawlStatistics, message: Optional[str] = None
    ) -> None:
        snapshot = stats.snapshot()
        await emit_event(
            self.progress,
            CrawlEvent(
                status=status,
                processed_count=snapshot.processed_count,
                total_count=snapshot.total_count,
                current_url=snapshot.current_url,
                progress_percent=snapshot.progress_percent,
                message=message,
            ),
        )

    def _enqueue_links(self, job: CrawlJob, result: PageResult, depth: int) -> None:
        config = self.config
        for link in result.links:
            if not is_in_scope(
                link,
                job.root_url,
                include_subdomains=config.include_subdomains,
                allowed_domains=config.allowed_domains,
            ):
                continue
            if should_skip(link, config.skip_url_patterns):
                job.dropped.add(normalize_url(link))
                continue
            job.enqueue(link, depth + 1)

    @staticmethod
    def _task_result(task: "asyncio.Task[PageResult]", url: str, depth: int) -> PageResult:
        exc = task.exception()
        if exc is None:
            return task.result()
        LOGGER.error("Conversion of %s raised %s: %s", url, type(exc).__name__, exc)
        return PageResult.failed(url, str(exc) or type(exc).__name__, depth=depth)

    async def run(
        self, root_url: str, cancel_token: Optional[CancellationToken] = None
    ) -> SiteCrawlResult:
        config = self.config
        token = cancel_token or CancellationToken()
        root = normalize_url(root_url)
        job = CrawlJob(root_url=root, config=config, started_at=self._clock())
        stats = CrawlStatistics(started_at=job.started_at)
        job.enqueue(root_url.strip(), 0)
        stats.total_count = job.known_count

        LOGGER.info(
            "Crawling %s (max_depth=%d, max_pages=%d, concurrency=%d)",
            root,
            config.max_depth,
            config.max_pages,
            config.concurrent_limit,
        )
        await self._emit("started", stats, message=root)

        in_flight: Dict["asyncio.Task[PageResult]", Tuple[int, str, int]] = {}
        try:
            while True:
                while (
                    not token.cancelled
                    and len(in_flight) < config.concurrent_limit
                    and job.scheduled < config.max_pages
                ):
                    item = job.next_pending()
                    if item is None:
                        break
                    key, url, depth = item
                    index = job.mark_scheduled(key)
                    work = functools.partial(self.converter.convert, url, depth)
                    task = asyncio.ensure_future(
                        self.governor.submit(url, work, depth=depth)
                    )
                    in_flight[task] = (index, url, depth)

                if not in_flight:
                    break

                done, _ = await asyncio.wait(
                    in_flight.keys(), return_when=asyncio.FIRST_COMPLETED
                )
                for task in sorted(done, key=lambda t: in_flight[t][0]):
                    index, url, depth = in_flight.pop(task)
                    result = self._task_result(task, url, depth)
                    job.results[index] = result
                    stats.record(result)
                    if depth < config.max_depth and not token.cancelled:
                        self._enqueue_links(job, result, depth)
                    stats.total_count = job.known_count
                    stats.skipped = job.skipped
                    LOGGER.debug(
                        "[%d/%d] %s %s",
                        stats.processed_count,
                        stats.total_count,
                        result.status,
                        url,
                    )
                    await self._emit("progress", stats)
        finally:
            for task in in_flight:
                task.cancel()

        stats.finished_at = self._clock()
        stats.skipped = job.skipped
        status = "cancelled" if token.cancelled else "completed"
        await self._emit(status, stats)
        LOGGER.info(
            "Crawl %s: %d processed (%d succeeded, %d partial, %d failed, %d skipped)",
            status,
            stats.processed_count,
            stats.succeeded,
            stats.partial,
            stats.failed,
            stats.skipped,
        )
        return SiteCrawlResult(
            root_url=root,
            status=status,
            pages=job.ordered_results(),
            stats=stats.snapshot(),
        )


async def crawl_site_async(
    url: str,
    *,
    config: Optional[CrawlConfig] = None,
    output_dir: Union[str, Path] = ".",
    progress: Optional[ProgressSink] = None,
    cancel_token: Optional[CancellationToken] = None,
    driver: Optional[BrowserDriver] = None,
) -> SiteCrawlResult:
    """
    Crawl a site breadth-first and write it to ``<domain>_<date>/``.

    Args:
        url: Root URL; links are followed within its host.
        config: Crawl settings (defaults to :class:`CrawlConfig`).
        output_dir: Directory in which the site folder is created.
        progress: Optional sink receiving :class:`CrawlEvent` objects.
        cancel_token: Cancel to stop scheduling new pages.
        driver: Browser driver to use instead of launching Playwright.

    Returns:
        SiteCrawlResult with pages in scheduling order and the written output.

    Raises:
        ValueError: invalid URL or configuration.
        BrowserUnavailableError: the browser could not be started.
    """
    config = config or CrawlConfig()
    config.validate()
    url = ensure_scheme(url)
    if not is_http_url(url):
        raise ValueError(f"Not an http(s) URL: {url}")

    owns_driver = driver is None
    if driver is None:
        playwright_driver = PlaywrightDriver.from_config(config)
        try:
            await playwright_driver.start()
        except MdcrawlError as exc:
            await emit_event(progress, CrawlEvent(status="error", message=str(exc)))
            raise
        driver = playwright_driver

    assembler = BatchOutputAssembler(output_dir)
    pool = BrowserSessionPool.from_config(driver, config)
    try:
        site_dir = assembler.prepare_site_dir(url)
        async with AssetDownloader(
            site_dir / ASSETS_DIRNAME, headers={"User-Agent": config.user_agent}
        ) as assets:
            converter = PageConverter(
                pool,
                PageFetcher.from_config(config),
                config,
                assets=assets if config.include_images else None,
            )
            crawler = SiteCrawler(converter, RequestGovernor.from_config(config), config, progress)
            result = await crawler.run(url, cancel_token)
            asset_count = assets.file_count
    finally:
        await pool.shutdown()
        if owns_driver:
            await driver.close()  # type: ignore[attr-defined]

    result.output = assembler.write_site(result, site_dir, config=config, asset_count=asset_count)
    return result


def crawl_site(url: str, **kwargs: Any) -> SiteCrawlResult:
    """Synchronous wrapper for :func:`crawl_site_async`."""
    return asyncio.run(crawl_site_async(url, **kwargs))
