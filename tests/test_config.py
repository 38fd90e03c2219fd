"""Tests for mdcrawl.config module."""

from __future__ import annotations

import logging

import pytest

from mdcrawl.config import (
    CONTENT_SELECTORS,
    DEFAULT_HEADERS,
    RETRYABLE_ERROR_CODES,
    RETRYABLE_STATUS_CODES,
    CrawlConfig,
    FetchTimeouts,
    _parse_env_value,
)


class TestDefaults:
    def test_crawl_defaults(self):
        config = CrawlConfig()
        assert config.concurrent_limit == 30
        assert config.wait_between_requests == 0.5
        assert config.max_depth == 3
        assert config.max_pages == 100
        assert config.include_images is True
        assert config.include_meta is True
        assert config.handle_dynamic_content is True
        assert config.wait_for_content is True
        assert config.max_wait_time == 45.0
        assert config.max_attempts == 3

    def test_timeouts(self):
        timeouts = FetchTimeouts()
        assert timeouts.connect == 5.0
        assert timeouts.socket == 30.0
        assert timeouts.navigation == 35.0

    def test_selector_priority(self):
        assert CONTENT_SELECTORS[:3] == ["main", "article", "[role='main']"]
        assert CONTENT_SELECTORS[-1] == "#primary"

    def test_retry_sets(self):
        assert {408, 429, 503, 520, 524} <= RETRYABLE_STATUS_CODES
        assert 404 not in RETRYABLE_STATUS_CODES
        assert "ECONNRESET" in RETRYABLE_ERROR_CODES

    def test_headers_are_copied(self):
        config = CrawlConfig()
        config.headers["X-Test"] = "1"
        assert "X-Test" not in DEFAULT_HEADERS


class TestValidate:
    def test_defaults_valid(self):
        CrawlConfig().validate()

    @pytest.mark.parametrize(
        "field,value",
        [
            ("concurrent_limit", 0),
            ("max_pages", 0),
            ("max_sessions", 0),
            ("max_depth", -1),
            ("wait_between_requests", -0.1),
        ],
    )
    def test_rejects(self, field, value):
        config = CrawlConfig(**{field: value})
        with pytest.raises(ValueError):
            config.validate()

    def test_rejects_wait_until(self):
        with pytest.raises(ValueError, match="wait_until"):
            CrawlConfig(wait_until="eventually").validate()


class TestFromEnv:
    def test_empty_env_keeps_defaults(self):
        assert CrawlConfig.from_env({}) == CrawlConfig()

    def test_reads_values(self):
        config = CrawlConfig.from_env(
            {
                "MDCRAWL_MAX_DEPTH": "1",
                "MDCRAWL_MAX_PAGES": "7",
                "MDCRAWL_INCLUDE_IMAGES": "false",
                "MDCRAWL_HEADLESS": "no",
                "MDCRAWL_WAIT_BETWEEN_REQUESTS_MS": "1500",
                "MDCRAWL_MAX_WAIT_TIME_MS": "2000",
                "MDCRAWL_ALLOWED_DOMAINS": "docs.example.org, cdn.example.org,",
            }
        )
        assert config.max_depth == 1
        assert config.max_pages == 7
        assert config.include_images is False
        assert config.headless is False
        assert config.wait_between_requests == 1.5
        assert config.max_wait_time == 2.0
        assert config.allowed_domains == ["docs.example.org", "cdn.example.org"]

    def test_invalid_value_is_ignored(self, caplog):
        with caplog.at_level(logging.WARNING, logger="mdcrawl.config"):
            config = CrawlConfig.from_env({"MDCRAWL_MAX_PAGES": "lots"})
        assert config.max_pages == 100
        assert "MDCRAWL_MAX_PAGES" in caplog.text


class TestParseEnvValue:
    def test_bool_words(self):
        assert _parse_env_value("Yes", bool) is True
        assert _parse_env_value("0", bool) is False

    def test_bool_invalid(self):
        with pytest.raises(ValueError):
            _parse_env_value("maybe", bool)

    def test_int(self):
        assert _parse_env_value(" 12 ", int) == 12
