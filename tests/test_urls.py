"""Tests for mdcrawl.urls module."""

from __future__ import annotations

from mdcrawl.config import SKIP_URL_PATTERNS
from mdcrawl.urls import (
    _normalize_host,
    _registrable_domain,
    ensure_scheme,
    host_of,
    is_http_url,
    is_in_scope,
    normalize_url,
    resolve_link,
    should_skip,
)


class TestNormalizeHost:
    def test_basic(self):
        assert _normalize_host("Example.COM") == "example.com"

    def test_with_port(self):
        assert _normalize_host("Example.COM:8080") == "example.com"

    def test_empty(self):
        assert _normalize_host("") == ""

    def test_none(self):
        assert _normalize_host(None) == ""


class TestRegistrableDomain:
    def test_domain(self):
        assert _registrable_domain("www.example.com") == "example.com"

    def test_empty(self):
        assert _registrable_domain("") is None

    def test_simple_host(self):
        assert _registrable_domain("localhost") == "localhost"


class TestNormalizeUrl:
    def test_strips_fragment(self):
        assert normalize_url("https://example.com/a#top") == "https://example.com/a"

    def test_lowercases_host_and_scheme(self):
        assert normalize_url("HTTPS://Example.COM/Path") == "https://example.com/Path"

    def test_trailing_slash(self):
        assert normalize_url("https://example.com/docs/") == "https://example.com/docs"
        assert normalize_url("https://example.com") == "https://example.com/"

    def test_default_port(self):
        assert normalize_url("https://example.com:443/a") == "https://example.com/a"
        assert normalize_url("http://example.com:8080/a") == "http://example.com:8080/a"

    def test_tracking_params(self):
        url = "https://example.com/a?utm_source=x&id=3&fbclid=abc"
        assert normalize_url(url) == "https://example.com/a?id=3"

    def test_idempotent(self):
        url = "https://Example.com/docs/?utm_medium=m&q=1#frag"
        assert normalize_url(normalize_url(url)) == normalize_url(url)

    def test_unparseable_url_returned_as_is(self):
        assert normalize_url(" http://[oops/x ") == "http://[oops/x"


class TestResolveLink:
    def test_relative(self):
        assert resolve_link("../b", "https://example.com/a/c") == "https://example.com/b"

    def test_skips_non_navigable(self):
        base = "https://example.com/"
        assert resolve_link("javascript:void(0)", base) is None
        assert resolve_link("mailto:me@example.com", base) is None
        assert resolve_link("tel:+123", base) is None
        assert resolve_link("#section", base) is None
        assert resolve_link("", base) is None

    def test_strips_fragment(self):
        assert resolve_link("/x#y", "https://example.com/") == "https://example.com/x"

    def test_is_http_url(self):
        assert is_http_url("https://example.com")
        assert not is_http_url("ftp://example.com")
        assert not is_http_url("example.com")
        assert not is_http_url("http://[oops/")

    def test_malformed_link_skipped(self):
        assert resolve_link("http://[oops/", "https://example.com/") is None
        assert resolve_link("/a", "http://[oops/") is None
        assert host_of("http://[oops/") == ""


class TestEnsureScheme:
    def test_bare_host_gets_https(self):
        assert ensure_scheme("example.com") == "https://example.com"
        assert ensure_scheme(" example.com:8080/docs/ ") == "https://example.com:8080/docs/"
        assert ensure_scheme("//cdn.example.com/x") == "https://cdn.example.com/x"

    def test_existing_scheme_kept(self):
        assert ensure_scheme("http://example.com") == "http://example.com"
        assert ensure_scheme("ftp://example.com") == "ftp://example.com"
        assert ensure_scheme("mailto:me@example.com") == "mailto:me@example.com"
        assert ensure_scheme("") == ""


class TestScope:
    root = "https://docs.example.com/"

    def test_same_host(self):
        assert is_in_scope("https://docs.example.com/x", self.root)

    def test_other_host(self):
        assert not is_in_scope("https://other.org/x", self.root)

    def test_subdomain_requires_flag(self):
        url = "https://blog.example.com/post"
        assert not is_in_scope(url, self.root)
        assert is_in_scope(url, self.root, include_subdomains=True)

    def test_allowed_domains(self):
        url = "https://cdn.partner.net/guide"
        assert is_in_scope(url, self.root, allowed_domains=["partner.net"])


class TestShouldSkip:
    def test_binary_files(self):
        assert should_skip("https://example.com/file.pdf", SKIP_URL_PATTERNS)
        assert should_skip("https://example.com/img/logo.PNG", SKIP_URL_PATTERNS)

    def test_admin_paths(self):
        assert should_skip("https://example.com/wp-admin/edit", SKIP_URL_PATTERNS)

    def test_regular_page(self):
        assert not should_skip("https://example.com/docs/intro", SKIP_URL_PATTERNS)
