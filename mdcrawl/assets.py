"""Image downloader shared by all pages of a run."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx

LOGGER = logging.getLogger(__name__)

ASSETS_DIRNAME = "assets"
_KNOWN_SUFFIXES = {
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".avif", ".bmp", ".ico", ".tif", ".tiff",
}


def _suffix_for(url: str, content_type: Optional[str]) -> str:
    suffix = Path(urlparse(url).path).suffix.lower()
    if suffix in _KNOWN_SUFFIXES:
        return ".jpg" if suffix == ".jpeg" else suffix
    if content_type:
        guessed = mimetypes.guess_extension(content_type.split(";")[0].strip())
        if guessed:
            return ".jpg" if guessed in (".jpe", ".jpeg") else guessed
    return ".bin"


class AssetDownloader:
    """Download images into one ``assets/`` folder.

    Each source URL is fetched at most once per run, concurrent requests for
    the same URL share one task, and identical bytes are stored once (files
    are named after their content hash).
    """

    def __init__(
        self,
        assets_dir: Path,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.assets_dir = Path(assets_dir)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers=headers, timeout=timeout, follow_redirects=True
        )
        self._tasks: Dict[str, "asyncio.Task[Optional[str]]"] = {}
        self._by_digest: Dict[str, str] = {}

    @property
    def downloaded(self) -> Dict[str, str]:
        """Source URL -> relative asset path for completed downloads."""
        done = {}
        for url, task in self._tasks.items():
            if task.done() and not task.cancelled() and task.exception() is None:
                path = task.result()
                if path:
                    done[url] = path
        return done

    @property
    def file_count(self) -> int:
        return len(self._by_digest)

    async def download(self, url: str) -> Optional[str]:
        """Return ``assets/<file>`` for ``url``, or ``None`` if it failed."""
        task = self._tasks.get(url)
        if task is None:
            task = asyncio.ensure_future(self._fetch(url))
            self._tasks[url] = task
        return await asyncio.shield(task)

    async def _fetch(self, url: str) -> Optional[str]:
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.warning("Could not download asset %s: %s", url, exc)
            return None

        content = response.content
        digest = hashlib.sha256(content).hexdigest()
        existing = self._by_digest.get(digest)
        if existing is not None:
            return existing

        name = digest[:16] + _suffix_for(url, response.headers.get("content-type"))
        target = self.assets_dir / name
        try:
            self.assets_dir.mkdir(parents=True, exist_ok=True)
            if not target.exists():
                target.write_bytes(content)
        except OSError as exc:
            LOGGER.warning("Could not save asset %s to %s: %s", url, target, exc)
            return None

        relative = f"{ASSETS_DIRNAME}/{name}"
        self._by_digest[digest] = relative
        LOGGER.debug("Saved %s as %s", url, relative)
        return relative

    async def aclose(self) -> None:
        pending = [task for task in self._tasks.values() if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AssetDownloader":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
