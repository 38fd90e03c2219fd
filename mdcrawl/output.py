"""Write conversion results to disk and build the crawl index."""

from __future__ import annotations

import logging
import re
import shutil
import time
import unicodedata
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Union
from urllib.parse import urlparse

from .assets import ASSETS_DIRNAME
from .config import CrawlConfig
from .document import CrawlStatistics, PageResult, SiteCrawlResult, WrittenOutput
from .errors import AssemblerWriteError

LOGGER = logging.getLogger(__name__)

INDEX_FILENAME = "index.md"
DISK_WRITE_ERROR = "disk write error"
MAX_FILENAME_LENGTH = 80

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_DASH_RUNS = re.compile(r"-{2,}")


def sanitize_filename(name: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """Reduce ``name`` to ``[A-Za-z0-9._-]`` without separators or traversal."""
    cleaned = _UNSAFE_CHARS.sub("-", name or "")
    cleaned = _DASH_RUNS.sub("-", cleaned).strip("-.")
    cleaned = cleaned[:max_length].rstrip("-.")
    return cleaned or "untitled"


def slugify(text: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """Lowercase ASCII slug for folder names."""
    normalized = unicodedata.normalize("NFKD", text or "")
    ascii_text = normalized.encode("ascii", "ignore").decode("ascii").lower()
    return sanitize_filename(re.sub(r"[\s_]+", "-", ascii_text), max_length)


def _unique_dir(parent: Path, name: str) -> Path:
    candidate = parent / name
    counter = 2
    while candidate.exists():
        candidate = parent / f"{name}-{counter}"
        counter += 1
    return candidate


def _escape_cell(text: str) -> str:
    return str(text).replace("|", "\\|").replace("\n", " ")


def _link_label(text: str) -> str:
    return str(text).replace("[", "\\[").replace("]", "\\]").replace("\n", " ")


class BatchOutputAssembler:
    """Lay out converted pages under ``output_root``."""

    def __init__(self, output_root: Union[str, Path] = "."):
        self.output_root = Path(output_root)

    # -- directories -------------------------------------------------------

    def prepare_site_dir(self, root_url: str, today: Optional[date] = None) -> Path:
        """Create ``<domain>_<YYYY-MM-DD>`` (``-2``, ``-3``... if taken)."""
        host = urlparse(root_url).hostname or "site"
        day = (today or date.today()).isoformat()
        site_dir = _unique_dir(self.output_root, f"{sanitize_filename(host)}_{day}")
        try:
            site_dir.mkdir(parents=True)
        except OSError as exc:
            raise AssemblerWriteError(str(site_dir), exc) from exc
        return site_dir

    def _write(self, path: Path, text: str) -> None:
        try:
            path.write_text(text, encoding="utf-8")
        except OSError as exc:
            raise AssemblerWriteError(str(path), exc) from exc

    # -- single page -------------------------------------------------------

    def write_single(
        self, page: PageResult, staging_assets: Optional[Path] = None
    ) -> WrittenOutput:
        """Write ``<title-slug>/index.md`` and move its images next to it."""
        slug = slugify(page.title) if page.title else ""
        if slug == "untitled" or not slug:
            slug = slugify(urlparse(page.final_url).hostname or "page")
        page_dir = _unique_dir(self.output_root, slug)
        try:
            page_dir.mkdir(parents=True)
        except OSError as exc:
            raise AssemblerWriteError(str(page_dir), exc) from exc

        asset_count = 0
        if staging_assets is not None and page.image_map:
            target_assets = page_dir / ASSETS_DIRNAME
            for relative in sorted(set(page.image_map.values())):
                source = staging_assets / Path(relative).name
                if not source.exists():
                    continue
                target_assets.mkdir(exist_ok=True)
                try:
                    shutil.move(str(source), str(target_assets / source.name))
                except OSError as exc:
                    raise AssemblerWriteError(str(target_assets / source.name), exc) from exc
                asset_count += 1

        index_path = page_dir / INDEX_FILENAME
        self._write(index_path, page.markdown if page.ok else _failed_page(page))
        LOGGER.info("Wrote %s", index_path)
        return WrittenOutput(
            directory=page_dir,
            index_path=index_path,
            page_files={page.source_url: index_path},
            asset_count=asset_count,
        )

    # -- site --------------------------------------------------------------

    def write_site(
        self,
        result: SiteCrawlResult,
        site_dir: Path,
        *,
        config: Optional[CrawlConfig] = None,
        asset_count: int = 0,
    ) -> WrittenOutput:
        """Write ``page1.md``... and ``index.md`` for a finished crawl.

        A page that cannot be written is turned into a failed entry; the
        index itself must be written or :class:`AssemblerWriteError` is raised.
        """
        page_files: Dict[str, Path] = {}
        written: List[tuple] = []
        number = 0
        for position, page in enumerate(result.pages):
            if not page.ok:
                continue
            number += 1
            path = site_dir / f"page{number}.md"
            try:
                self._write(path, page.markdown)
            except AssemblerWriteError as exc:
                LOGGER.error("%s", exc)
                number -= 1
                failed = page.with_updates(
                    status="failed", error=DISK_WRITE_ERROR, error_code=None
                )
                _move_to_failed(result.stats, page)
                result.pages[position] = failed
                continue
            page_files[page.source_url] = path
            written.append((number, page, path.name))

        index_path = site_dir / INDEX_FILENAME
        self._write(index_path, self.render_index(result, written, config=config))
        LOGGER.info("Wrote %d page(s) and index to %s", len(written), site_dir)
        return WrittenOutput(
            directory=site_dir,
            index_path=index_path,
            page_files=page_files,
            asset_count=asset_count,
        )

    def render_index(
        self,
        result: SiteCrawlResult,
        written: List[tuple],
        *,
        config: Optional[CrawlConfig] = None,
    ) -> str:
        stats = result.stats
        host = urlparse(result.root_url).hostname or result.root_url
        lines = [f"# {host}", ""]

        lines.append("| Property | Value |")
        lines.append("| --- | --- |")
        lines.append(f"| Root URL | {_escape_cell(result.root_url)} |")
        lines.append(f"| Crawled | {date.today().isoformat()} |")
        lines.append(f"| Status | {result.status} |")
        if config is not None:
            lines.append(f"| Max depth | {config.max_depth} |")
            lines.append(f"| Max pages | {config.max_pages} |")
        lines.append("")

        lines.append("## Pages")
        lines.append("")
        if written:
            for number, page, filename in written:
                label = _link_label(page.title or page.final_url)
                suffix = " _(partial)_" if page.status == "partial" else ""
                lines.append(f"{number}. [{label}]({filename}) - {page.final_url}{suffix}")
        else:
            lines.append("_No pages were converted._")
        lines.append("")

        failed = [page for page in result.pages if not page.ok]
        if failed:
            lines.append("## Failed pages")
            lines.append("")
            for page in failed:
                code = f" ({page.error_code})" if page.error_code is not None else ""
                lines.append(f"- {page.source_url}: {page.error or 'unknown error'}{code}")
            lines.append("")

        elapsed = stats.elapsed(stats.finished_at if stats.finished_at is not None else time.monotonic())
        lines.append("## Summary")
        lines.append("")
        lines.append(f"- Attempted: {stats.processed_count}")
        lines.append(f"- Succeeded: {stats.succeeded}")
        lines.append(f"- Partial: {stats.partial}")
        lines.append(f"- Failed: {stats.failed}")
        lines.append(f"- Skipped: {stats.skipped}")
        lines.append(f"- Elapsed: {elapsed:.1f}s")
        if result.status == "cancelled":
            lines.append("")
            lines.append(
                "> The crawl was cancelled; pages discovered but not yet "
                "scheduled were not converted."
            )
        lines.append("")
        return "\n".join(lines)


def _move_to_failed(stats: CrawlStatistics, before: PageResult) -> None:
    if before.status == "success":
        stats.succeeded -= 1
    elif before.status == "partial":
        stats.partial -= 1
    stats.failed += 1
    stats.error_count += 1


def _failed_page(page: PageResult) -> str:
    lines = [
        f"# {page.title or page.source_url}",
        "",
        f"Conversion of <{page.source_url}> failed: {page.error or 'unknown error'}",
        "",
    ]
    return "\n".join(lines)


def page_summary(page: PageResult) -> Dict[str, object]:
    """JSON-serialisable view of one page result (without the Markdown)."""
    return {
        "source_url": page.source_url,
        "final_url": page.final_url,
        "status": page.status,
        "title": page.title,
        "depth": page.depth,
        "retry_count": page.retry_count,
        "selector": page.selector,
        "images": len(page.images),
        "links": len(page.links),
        "error": page.error,
        "error_code": page.error_code,
    }


def site_summary(result: SiteCrawlResult) -> Dict[str, object]:
    """JSON-serialisable summary of a site crawl."""
    stats = result.stats
    output = result.output
    return {
        "root_url": result.root_url,
        "status": result.status,
        "output_dir": str(output.directory) if output else None,
        "index": str(output.index_path) if output else None,
        "assets": output.asset_count if output else 0,
        "summary": stats.to_dict(stats.finished_at if stats.finished_at is not None else time.monotonic()),
        "pages": [page_summary(page) for page in result.pages],
    }
