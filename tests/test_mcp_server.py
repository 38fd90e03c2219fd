from __future__ import annotations

import json
from pathlib import Path

import pytest

import mdcrawl
from mdcrawl import mcp_server
from mdcrawl.document import (
    CrawlStatistics,
    PageConversionResult,
    PageResult,
    SiteCrawlResult,
    WrittenOutput,
)
from mdcrawl.errors import BrowserUnavailableError


def _tool(tool):
    """The plain coroutine behind a registered tool."""
    return getattr(tool, "fn", tool)


def _page(markdown: str = "# ok\n") -> PageResult:
    return PageResult(
        source_url="https://example.com",
        final_url="https://example.com/",
        status="success",
        title="ok",
        markdown=markdown,
    )


@pytest.mark.asyncio
async def test_convert_url_forwards_options(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    async def fake_convert(url: str, *, config=None, output_dir="."):
        captured["url"] = url
        captured["config"] = config
        captured["output_dir"] = output_dir
        index = Path(output_dir) / "ok" / "index.md"
        return PageConversionResult(
            page=_page(), output=WrittenOutput(directory=index.parent, index_path=index)
        )

    monkeypatch.setattr(mdcrawl, "convert_url_async", fake_convert)

    raw = await _tool(mcp_server.convert_url)(
        url="https://example.com",
        output_dir="/tmp/notes",
        include_images=False,
        include_meta=False,
    )

    payload = json.loads(raw)
    assert payload["status"] == "success"
    assert payload["output"] == str(Path("/tmp/notes") / "ok" / "index.md")
    assert "markdown" not in payload
    assert "converted_at" in payload
    assert captured["output_dir"] == "/tmp/notes"
    assert captured["config"].include_images is False
    assert captured["config"].include_meta is False


@pytest.mark.asyncio
async def test_convert_url_can_return_markdown(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_convert(url: str, **kwargs):
        return PageConversionResult(page=_page("# Hello\n"))

    monkeypatch.setattr(mdcrawl, "convert_url_async", fake_convert)

    payload = json.loads(
        await _tool(mcp_server.convert_url)(url="https://example.com", return_markdown=True)
    )
    assert payload["markdown"] == "# Hello\n"
    assert payload["output"] is None


@pytest.mark.asyncio
async def test_convert_url_uses_default_output_dir(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    async def fake_convert(url: str, *, config=None, output_dir="."):
        captured["output_dir"] = output_dir
        return PageConversionResult(page=_page())

    monkeypatch.setattr(mdcrawl, "convert_url_async", fake_convert)
    monkeypatch.setattr(mcp_server, "DEFAULT_OUTPUT_DIR", "/srv/notes")

    await _tool(mcp_server.convert_url)(url="https://example.com")
    assert captured["output_dir"] == "/srv/notes"


@pytest.mark.asyncio
async def test_convert_url_error_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    async def broken(url: str, **kwargs):
        raise BrowserUnavailableError("Could not launch Chromium")

    monkeypatch.setattr(mdcrawl, "convert_url_async", broken)

    payload = json.loads(await _tool(mcp_server.convert_url)(url="https://example.com"))
    assert payload["status"] == "error"
    assert payload["error"] == "Could not launch Chromium"
    assert payload["url"] == "https://example.com"


@pytest.mark.asyncio
async def test_crawl_site_forwards_limits(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    async def fake_site_crawl(url: str, *, config=None, output_dir="."):
        captured["config"] = config
        return SiteCrawlResult(
            root_url="https://example.com/",
            status="completed",
            pages=[_page()],
            stats=CrawlStatistics(processed_count=1, succeeded=1, finished_at=2.0),
        )

    monkeypatch.setattr(mdcrawl, "crawl_site_async", fake_site_crawl)

    payload = json.loads(
        await _tool(mcp_server.crawl_site)(
            url="https://example.com",
            max_depth=1,
            max_pages=20,
            include_subdomains=True,
        )
    )

    config = captured["config"]
    assert config.max_depth == 1
    assert config.max_pages == 20
    assert config.include_subdomains is True
    assert payload["status"] == "completed"
    assert payload["summary"]["processed_count"] == 1
    assert payload["pages"][0]["final_url"] == "https://example.com/"
    assert "crawled_at" in payload


@pytest.mark.asyncio
async def test_crawl_site_error_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    async def broken(url: str, **kwargs):
        raise ValueError("Not an http(s) URL: ftp://x")

    monkeypatch.setattr(mdcrawl, "crawl_site_async", broken)

    payload = json.loads(await _tool(mcp_server.crawl_site)(url="ftp://x"))
    assert payload["status"] == "error"
    assert "Not an http(s) URL" in payload["error"]


def test_package_exposes_server() -> None:
    assert mdcrawl.mcp is mcp_server.mcp
