"""Convert web pages and whole sites into Markdown notes.

This package renders pages in a headless browser, extracts their main
content and writes Markdown with locally saved images. It supports:

- Single page conversion into ``<title-slug>/index.md``
- Site crawling (breadth-first, bounded depth and page count) into
  ``<domain>_<date>/`` with an index
- Rate limiting per domain, retries with backoff and a bounded browser pool

Example usage:

    from mdcrawl import CrawlConfig, convert_url, crawl_site

    # Single page
    result = convert_url("https://example.com/article", output_dir="notes")
    print(result.output.index_path)

    # Site crawl
    site = crawl_site(
        "https://docs.example.com",
        config=CrawlConfig(max_depth=1, max_pages=20),
        output_dir="notes",
    )
    for page in site.pages:
        print(page.status, page.final_url)
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import uuid
from pathlib import Path
from typing import Optional, Union

from .assets import AssetDownloader
from .browser import BrowserDriver, PlaywrightDriver
from .config import CrawlConfig
from .document import (
    CrawlEvent,
    CrawlStatistics,
    ImageRef,
    PageConversionResult,
    PageResult,
    SiteCrawlResult,
    WrittenOutput,
)
from .errors import (
    AssemblerWriteError,
    BrowserUnavailableError,
    FetchError,
    MdcrawlError,
    PoolError,
    RetryExhaustedError,
)
from .fetcher import PageFetcher
from .governor import RequestGovernor
from .output import BatchOutputAssembler
from .pipeline import PageConverter
from .pool import BrowserSessionPool
from .site import CancellationToken, crawl_site, crawl_site_async
from .urls import ensure_scheme, is_http_url

LOGGER = logging.getLogger(__name__)

__all__ = [
    # Results
    "CrawlEvent",
    "CrawlStatistics",
    "ImageRef",
    "PageConversionResult",
    "PageResult",
    "SiteCrawlResult",
    "WrittenOutput",
    # Errors
    "AssemblerWriteError",
    "BrowserUnavailableError",
    "FetchError",
    "MdcrawlError",
    "PoolError",
    "RetryExhaustedError",
    # Config
    "CrawlConfig",
    # Single page
    "convert_url",
    "convert_url_async",
    # Site crawl
    "CancellationToken",
    "crawl_site",
    "crawl_site_async",
    # MCP Server
    "mcp",
]


# Lazy import for mcp to avoid requiring fastmcp if not used
def __getattr__(name):
    if name == "mcp":
        from .mcp_server import mcp

        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


async def convert_url_async(
    url: str,
    *,
    config: Optional[CrawlConfig] = None,
    output_dir: Union[str, Path, None] = ".",
    driver: Optional[BrowserDriver] = None,
) -> PageConversionResult:
    """
    Convert a single page to Markdown.

    Args:
        url: The page to convert.
        config: Optional CrawlConfig; retries, timeouts and image handling
            apply as in a site crawl.
        output_dir: Where ``<title-slug>/`` is created. ``None`` skips writing
            (images are then not downloaded).
        driver: Browser driver to use instead of launching Playwright.

    Returns:
        PageConversionResult with the page and, if written, the output paths.

    Raises:
        ValueError: invalid URL or configuration.
        BrowserUnavailableError: the browser could not be started.
    """
    config = config or CrawlConfig()
    config.validate()
    url = ensure_scheme(url)
    if not is_http_url(url):
        raise ValueError(f"Not an http(s) URL: {url}")

    assembler = BatchOutputAssembler(output_dir) if output_dir is not None else None
    staging: Optional[Path] = None
    if assembler is not None and config.include_images:
        staging = assembler.output_root / f".mdcrawl-assets-{uuid.uuid4().hex[:8]}"

    owns_driver = driver is None
    if driver is None:
        playwright_driver = PlaywrightDriver.from_config(config)
        await playwright_driver.start()
        driver = playwright_driver

    pool = BrowserSessionPool.from_config(driver, config)
    try:
        assets = AssetDownloader(staging, headers={"User-Agent": config.user_agent}) if staging else None
        try:
            converter = PageConverter(pool, PageFetcher.from_config(config), config, assets=assets)
            governor = RequestGovernor.from_config(config)
            page = await governor.submit(url, lambda: converter.convert(url))
        finally:
            if assets is not None:
                await assets.aclose()

        output = assembler.write_single(page, staging) if assembler is not None else None
    finally:
        await pool.shutdown()
        if owns_driver:
            await driver.close()  # type: ignore[attr-defined]
        if staging is not None and staging.exists():
            shutil.rmtree(staging, ignore_errors=True)

    LOGGER.info("Converted %s (%s)", url, page.status)
    return PageConversionResult(page=page, output=output)


def convert_url(url: str, **kwargs) -> PageConversionResult:
    """Synchronous wrapper for convert_url_async."""
    return asyncio.run(convert_url_async(url, **kwargs))
