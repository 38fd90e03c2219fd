"""Data structures produced by conversions and crawls."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

PageStatus = Literal["success", "partial", "failed"]
CrawlStatus = Literal["completed", "cancelled"]
EventStatus = Literal["started", "progress", "completed", "cancelled", "error"]


@dataclass(frozen=True, slots=True)
class ImageRef:
    """An image referenced by a page and where it ended up locally."""

    url: str
    alt: str = ""
    local_path: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PageResult:
    """Finalized outcome of converting one URL."""

    source_url: str
    final_url: str
    status: PageStatus
    title: str = ""
    markdown: str = ""
    images: List[ImageRef] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[Union[int, str]] = None
    fetch_duration: float = 0.0
    retry_count: int = 0
    depth: int = 0
    selector: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status != "failed"

    @property
    def image_map(self) -> Dict[str, str]:
        """Original image URL -> local asset path, for downloaded images only."""
        return {img.url: img.local_path for img in self.images if img.local_path}

    def with_updates(self, **changes: Any) -> "PageResult":
        return replace(self, **changes)

    @classmethod
    def failed(
        cls,
        url: str,
        error: str,
        *,
        error_code: Optional[Union[int, str]] = None,
        retry_count: int = 0,
        depth: int = 0,
        fetch_duration: float = 0.0,
    ) -> "PageResult":
        return cls(
            source_url=url,
            final_url=url,
            status="failed",
            error=error,
            error_code=error_code,
            retry_count=retry_count,
            depth=depth,
            fetch_duration=fetch_duration,
        )


@dataclass(slots=True)
class CrawlStatistics:
    """Running aggregate for a crawl; listeners only ever see copies."""

    started_at: float = 0.0
    finished_at: Optional[float] = None
    processed_count: int = 0
    total_count: int = 0
    current_url: Optional[str] = None
    error_count: int = 0
    succeeded: int = 0
    partial: int = 0
    failed: int = 0
    skipped: int = 0

    def elapsed(self, now: float) -> float:
        end = self.finished_at if self.finished_at is not None else now
        return max(0.0, end - self.started_at)

    @property
    def progress_percent(self) -> float:
        if self.total_count <= 0:
            return 0.0
        return round(min(100.0, self.processed_count * 100.0 / self.total_count), 1)

    def record(self, result: PageResult) -> None:
        self.processed_count += 1
        self.current_url = result.source_url
        if result.status == "success":
            self.succeeded += 1
        elif result.status == "partial":
            self.partial += 1
        else:
            self.failed += 1
            self.error_count += 1

    def snapshot(self) -> "CrawlStatistics":
        return replace(self)

    def to_dict(self, now: float) -> Dict[str, Any]:
        return {
            "processed_count": self.processed_count,
            "total_count": self.total_count,
            "succeeded": self.succeeded,
            "partial": self.partial,
            "failed": self.failed,
            "skipped": self.skipped,
            "error_count": self.error_count,
            "elapsed_seconds": round(self.elapsed(now), 3),
        }


@dataclass(frozen=True, slots=True)
class CrawlEvent:
    """Payload delivered to progress sinks."""

    status: EventStatus
    processed_count: int = 0
    total_count: int = 0
    current_url: Optional[str] = None
    progress_percent: float = 0.0
    message: Optional[str] = None


@dataclass(slots=True)
class WrittenOutput:
    """Files produced by the output assembler."""

    directory: Path
    index_path: Path
    page_files: Dict[str, Path] = field(default_factory=dict)
    asset_count: int = 0


@dataclass(slots=True)
class SiteCrawlResult:
    """Aggregate result of a site crawl; produced even on partial failure."""

    root_url: str
    status: CrawlStatus
    pages: List[PageResult] = field(default_factory=list)
    stats: CrawlStatistics = field(default_factory=CrawlStatistics)
    output: Optional[WrittenOutput] = None

    @property
    def succeeded(self) -> List[PageResult]:
        return [page for page in self.pages if page.ok]

    @property
    def failed(self) -> List[PageResult]:
        return [page for page in self.pages if not page.ok]


@dataclass(slots=True)
class PageConversionResult:
    """Result of converting a single URL to a standalone Markdown folder."""

    page: PageResult
    output: Optional[WrittenOutput] = None
