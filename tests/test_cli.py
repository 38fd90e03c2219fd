"""Tests for mdcrawl.cli module."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

import mdcrawl
from mdcrawl import cli
from mdcrawl.cli import _build_config, _parse_args, main
from mdcrawl.document import (
    CrawlStatistics,
    PageConversionResult,
    PageResult,
    SiteCrawlResult,
    WrittenOutput,
)
from mdcrawl.errors import BrowserUnavailableError


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """No .env files or MDCRAWL_* variables leak into the tests."""
    import os

    for key in list(os.environ):
        if key.startswith("MDCRAWL_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "CONFIG_ENV_FILE", tmp_path / "no-such" / ".env")


def _ok_page(url: str = "https://example.com/a") -> PageResult:
    return PageResult(source_url=url, final_url=url, status="success", title="A", markdown="# A\n")


class TestParseArgs:
    def test_defaults(self):
        args = _parse_args(["https://example.com"])
        assert args.url == "https://example.com"
        assert args.site is False
        assert args.output == "."
        assert args.max_depth is None
        assert args.json_output is False

    def test_site_options(self):
        args = _parse_args(
            [
                "https://example.com",
                "--site",
                "--max-depth", "1",
                "--max-pages", "20",
                "--wait-between-requests", "1500",
                "--allowed-domain", "cdn.example.org",
                "--allowed-domain", "docs.example.org",
                "--no-images",
                "-o", "notes",
            ]
        )
        assert args.site is True
        assert args.max_depth == 1
        assert args.max_pages == 20
        assert args.wait_between_requests == 1500
        assert args.allowed_domains == ["cdn.example.org", "docs.example.org"]
        assert args.no_images is True
        assert args.output == "notes"


class TestBuildConfig:
    def test_flags_override_env(self, monkeypatch):
        monkeypatch.setenv("MDCRAWL_MAX_PAGES", "5")
        monkeypatch.setenv("MDCRAWL_MAX_DEPTH", "4")
        args = _parse_args(
            ["https://example.com", "--max-depth", "1", "--max-wait-time", "2000", "--headed"]
        )
        config = _build_config(args)
        assert config.max_pages == 5
        assert config.max_depth == 1
        assert config.max_wait_time == 2.0
        assert config.headless is False

    def test_boolean_flags(self):
        args = _parse_args(
            ["https://example.com", "--no-meta", "--no-dynamic", "--no-wait-for-content",
             "--include-subdomains"]
        )
        config = _build_config(args)
        assert config.include_meta is False
        assert config.handle_dynamic_content is False
        assert config.wait_for_content is False
        assert config.include_subdomains is True

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            _build_config(_parse_args(["https://example.com", "--max-pages", "0"]))


class TestMain:
    def test_single_page_json(self, monkeypatch, capsys, tmp_path):
        index = tmp_path / "a" / "index.md"
        fake = AsyncMock(
            return_value=PageConversionResult(
                page=_ok_page(),
                output=WrittenOutput(directory=index.parent, index_path=index),
            )
        )
        monkeypatch.setattr(mdcrawl, "convert_url_async", fake)

        code = main(["https://example.com/a", "--json", "-o", str(tmp_path)])

        assert code == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["status"] == "success"
        assert payload["output"] == str(index)
        assert fake.await_args.kwargs["output_dir"] == str(tmp_path)

    def test_failed_page_with_report_exits_zero(self, monkeypatch, tmp_path):
        failed = PageResult.failed("https://example.com/a", "HTTP 404", error_code=404)
        index = tmp_path / "a" / "index.md"
        conversion = PageConversionResult(
            page=failed, output=WrittenOutput(directory=index.parent, index_path=index)
        )
        monkeypatch.setattr(mdcrawl, "convert_url_async", AsyncMock(return_value=conversion))
        assert main(["https://example.com/a"]) == 0

    def test_failed_page_without_report(self, monkeypatch):
        failed = PageResult.failed("https://example.com/a", "HTTP 404", error_code=404)
        monkeypatch.setattr(
            mdcrawl, "convert_url_async", AsyncMock(return_value=PageConversionResult(page=failed))
        )
        assert main(["https://example.com/a"]) == 1

    def test_site_mode(self, monkeypatch, capsys):
        result = SiteCrawlResult(
            root_url="https://example.com/",
            status="completed",
            pages=[_ok_page()],
            stats=CrawlStatistics(processed_count=1, succeeded=1, finished_at=1.0),
        )
        fake = AsyncMock(return_value=result)
        monkeypatch.setattr(mdcrawl, "crawl_site_async", fake)

        code = main(["https://example.com/", "--site", "--max-depth", "0", "--json"])

        assert code == 0
        assert fake.await_args.kwargs["config"].max_depth == 0
        assert fake.await_args.kwargs["cancel_token"] is not None
        payload = json.loads(capsys.readouterr().out)
        assert payload["status"] == "completed"
        assert payload["summary"]["succeeded"] == 1

    def test_browser_unavailable(self, monkeypatch):
        monkeypatch.setattr(
            mdcrawl,
            "convert_url_async",
            AsyncMock(side_effect=BrowserUnavailableError("no chromium")),
        )
        assert main(["https://example.com/a"]) == 1

    def test_invalid_config(self):
        assert main(["https://example.com", "--concurrency", "0"]) == 1

    def test_local_env_file_is_loaded(self, monkeypatch, tmp_path):
        Path(".env").write_text("MDCRAWL_MAX_PAGES=9\n", encoding="utf-8")
        fake = AsyncMock(
            return_value=SiteCrawlResult(root_url="https://example.com/", status="completed")
        )
        monkeypatch.setattr(mdcrawl, "crawl_site_async", fake)
        # Registered with monkeypatch so the value loaded from .env is undone.
        monkeypatch.setenv("MDCRAWL_MAX_PAGES", "")
        monkeypatch.delenv("MDCRAWL_MAX_PAGES")

        assert main(["https://example.com/", "--site"]) == 0
        assert fake.await_args.kwargs["config"].max_pages == 9
