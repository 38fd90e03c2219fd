"""Single-page conversion: lease, fetch, extract, localise, render."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from crawl4ai.markdown_generation_strategy import DefaultMarkdownGenerator

from .assets import AssetDownloader
from .config import CrawlConfig
from .document import ImageRef, PageResult
from .errors import FetchError, PoolError
from .extractor import ExtractedContent, extract_content
from .fetcher import FetchResponse, PageFetcher
from .markdown import (
    assemble_page,
    build_markdown_generator,
    dedup_sections,
    html_to_markdown,
    localize_content,
)
from .pool import BrowserSessionPool

LOGGER = logging.getLogger(__name__)


class PageConverter:
    """Turn one URL into a :class:`PageResult`.

    Fetch errors are re-raised so the governor can decide whether to retry;
    pool errors and unexpected failures become a failed result.
    """

    def __init__(
        self,
        pool: BrowserSessionPool,
        fetcher: PageFetcher,
        config: Optional[CrawlConfig] = None,
        *,
        assets: Optional[AssetDownloader] = None,
        generator: Optional[DefaultMarkdownGenerator] = None,
    ):
        self.pool = pool
        self.fetcher = fetcher
        self.config = config or CrawlConfig()
        self.assets = assets
        self.generator = generator or build_markdown_generator()

    async def convert(self, url: str, depth: int = 0) -> PageResult:
        started = time.monotonic()
        try:
            async with self.pool.lease() as session:
                response = await self.fetcher.fetch(session, url)
        except FetchError:
            raise
        except PoolError as exc:
            LOGGER.warning("No browser session for %s: %s", url, exc)
            return PageResult.failed(
                url, str(exc), depth=depth, fetch_duration=time.monotonic() - started
            )
        except Exception as exc:
            LOGGER.exception("Unexpected error while fetching %s", url)
            return PageResult.failed(
                url, f"Unexpected error: {exc}", depth=depth,
                fetch_duration=time.monotonic() - started,
            )

        try:
            return await self._build_result(url, depth, response)
        except Exception as exc:
            LOGGER.exception("Failed to convert %s", url)
            return PageResult.failed(
                url, f"Conversion failed: {exc}", depth=depth,
                fetch_duration=response.elapsed,
            )

    async def _download_images(self, images: List[ImageRef]) -> List[ImageRef]:
        if not images or self.assets is None:
            return images
        paths = await asyncio.gather(*(self.assets.download(img.url) for img in images))
        return [
            ImageRef(url=img.url, alt=img.alt, local_path=path)
            for img, path in zip(images, paths)
        ]

    def _metadata(self, content: ExtractedContent, response: FetchResponse) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "title": content.title,
            "source": response.final_url,
        }
        metadata.update(content.metadata())
        metadata["captured"] = datetime.now(timezone.utc).isoformat(timespec="seconds")
        return metadata

    async def _build_result(
        self, url: str, depth: int, response: FetchResponse
    ) -> PageResult:
        config = self.config
        # Parsing and rendering are CPU-bound; keep them off the event loop.
        content = await asyncio.to_thread(
            extract_content,
            response.html,
            response.final_url,
            min_content_length=config.min_content_length,
            allowed_hosts=config.allowed_domains,
            include_subdomains=config.include_subdomains,
        )

        images = await self._download_images(content.images) if config.include_images else []
        image_map = {img.url: img.local_path for img in images if img.local_path}

        body = ""
        if not content.empty:
            localized = await asyncio.to_thread(
                localize_content,
                content.content_html,
                response.final_url,
                image_map,
                keep_images=config.include_images,
            )
            body = await asyncio.to_thread(html_to_markdown, localized, self.generator)
            body, removed = dedup_sections(body)
            if removed:
                LOGGER.debug("Removed %d duplicate section(s) from %s", removed, url)

        metadata = self._metadata(content, response)
        markdown = assemble_page(
            content.title,
            body,
            metadata=metadata,
            include_meta=config.include_meta,
        )

        degraded = response.content_wait_timed_out or content.degraded or not body
        if degraded:
            LOGGER.info(
                "Partial conversion for %s (selector=%s, wait_timed_out=%s)",
                url,
                content.selector,
                response.content_wait_timed_out,
            )
        return PageResult(
            source_url=url,
            final_url=response.final_url,
            status="partial" if degraded else "success",
            title=content.title,
            markdown=markdown,
            images=images,
            links=list(content.links),
            fetch_duration=response.elapsed,
            depth=depth,
            selector=content.selector,
            metadata=metadata,
        )
